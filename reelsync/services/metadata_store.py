from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Sequence

from sqlalchemy import delete, func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from reelsync.core.logging import get_logger
from reelsync.db.models import SyncEventKind, SyncRun, SyncStatus, VideoAsset, VideoStatus

_INSERT_BY_DIALECT = {
    "sqlite": sqlite_insert,
    "postgresql": pg_insert,
}


class MetadataStore:
    """Keyed VideoAsset persistence.

    Every call opens its own session so concurrent calls for distinct keys
    never share a transaction.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory
        self.logger = get_logger(component="metadata_store")

    async def upsert(
        self,
        key: str,
        fields: dict[str, Any],
        *,
        on_insert: dict[str, Any] | None = None,
    ) -> VideoAsset:
        """Merge ``fields`` into the record for ``key``, creating it if absent.

        ``on_insert`` values are written only when the row is created and are
        left untouched on later upserts.
        """
        async with self.session_factory() as session:
            insert = _INSERT_BY_DIALECT.get(session.get_bind().dialect.name)
            if insert is None:
                raise RuntimeError(f"upsert unsupported for dialect {session.get_bind().dialect.name}")

            values = {**(on_insert or {}), **fields, "key": key}
            stmt = insert(VideoAsset).values(**values)
            set_ = {name: stmt.excluded[name] for name in fields}
            set_["updated_at"] = func.now()
            stmt = stmt.on_conflict_do_update(index_elements=[VideoAsset.key], set_=set_)

            await session.execute(stmt)
            await session.commit()
            asset = await session.get(VideoAsset, key, populate_existing=True)
        assert asset is not None
        self.logger.debug("asset_upserted", key=key, fields=sorted(fields))
        return asset

    async def update_fields(self, key: str, fields: dict[str, Any]) -> VideoAsset | None:
        """Set ``fields`` on an existing record; returns None if the record is gone."""
        async with self.session_factory() as session:
            result = await session.execute(
                update(VideoAsset)
                .where(VideoAsset.key == key)
                .values(**fields, updated_at=func.now())
            )
            await session.commit()
            if result.rowcount == 0:
                self.logger.info("asset_update_skipped_missing", key=key, fields=sorted(fields))
                return None
            return await session.get(VideoAsset, key, populate_existing=True)

    async def delete_by_key(self, key: str) -> bool:
        async with self.session_factory() as session:
            result = await session.execute(delete(VideoAsset).where(VideoAsset.key == key))
            await session.commit()
        deleted = result.rowcount > 0
        self.logger.debug("asset_deleted", key=key, deleted=deleted)
        return deleted

    async def find_by_id(self, key: str) -> VideoAsset | None:
        async with self.session_factory() as session:
            return await session.get(VideoAsset, key)

    async def find_by_status_ordered_by_recency(self, statuses: Sequence[VideoStatus]) -> list[VideoAsset]:
        stmt = (
            select(VideoAsset)
            .where(VideoAsset.status.in_(list(statuses)))
            .order_by(VideoAsset.upload_date.desc(), VideoAsset.key)
        )
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def count(self) -> int:
        async with self.session_factory() as session:
            result = await session.execute(select(func.count()).select_from(VideoAsset))
            return int(result.scalar_one())


class SyncRunLog:
    """Append-only audit trail of distribution sync attempts."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def start(self, key: str, kind: SyncEventKind) -> int:
        async with self.session_factory() as session:
            run = SyncRun(key=key, event_kind=kind, status=SyncStatus.running)
            session.add(run)
            await session.commit()
            return run.id

    async def finish(
        self,
        run_id: int,
        *,
        status: SyncStatus,
        instance_id: str | None = None,
        public_address: str | None = None,
        error: str | None = None,
    ) -> None:
        async with self.session_factory() as session:
            run = await session.get(SyncRun, run_id)
            if run is None:
                raise LookupError(run_id)
            run.status = status
            run.instance_id = instance_id
            run.public_address = public_address
            run.error = error
            run.finished_at = datetime.now(timezone.utc)
            await session.commit()

    async def for_key(self, key: str) -> list[SyncRun]:
        stmt = select(SyncRun).where(SyncRun.key == key).order_by(SyncRun.id)
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())


__all__ = ["MetadataStore", "SyncRunLog"]
