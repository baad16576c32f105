from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from reelsync.core.compute import InstanceController, InstanceDescription, TagSelector, distribution_selector
from reelsync.core.config import Settings
from reelsync.core.deadline import Deadline
from reelsync.core.logging import get_logger
from reelsync.db.models import SyncEventKind, SyncStatus
from reelsync.errors import DeadlineExceeded, SyncError, SyncTimeoutError
from reelsync.ingest.events import StorageChangeRecord

from .boot_scripts import HostLayout, render_user_data
from .metadata_store import SyncRunLog

Sleeper = Callable[[float], Awaitable[None]]


@dataclass(frozen=True, slots=True)
class SyncResult:
    instance_id: str
    public_address: str
    streaming_url: str | None


class DistributionSyncer:
    """Republishes an asset change by cycling the serving instance.

    One cycle is: describe, write the boot script, stop, wait for ``stopped``,
    start. Cycles are serialised per syncer because they all target the same
    instance.
    """

    def __init__(
        self,
        settings: Settings,
        controller: InstanceController,
        *,
        run_log: SyncRunLog | None = None,
        sleep: Sleeper = asyncio.sleep,
    ):
        self.settings = settings
        self.controller = controller
        self.run_log = run_log
        self.sleep = sleep
        self.selector: TagSelector = distribution_selector(settings)
        self.layout = HostLayout(
            web_root=settings.distribution_web_root,
            namespace=settings.distribution_namespace,
            server_unit=settings.distribution_server_unit,
        )
        self._cycle_lock = asyncio.Lock()
        self.logger = get_logger(component="distribution_syncer")

    def streaming_url(self, address: str, filename: str) -> str:
        return f"http://{address}/{self.settings.distribution_namespace.strip('/')}/{filename}"

    async def sync(self, kind: SyncEventKind, record: StorageChangeRecord, deadline: Deadline) -> SyncResult:
        logger = self.logger.bind(key=record.key, event_kind=kind.value)
        run_id = await self.run_log.start(record.key, kind) if self.run_log else None
        try:
            async with self._cycle_lock:
                result = await self._cycle(kind, record, deadline)
        except Exception as exc:
            error = _as_sync_error(exc)
            status = SyncStatus.timed_out if isinstance(error, SyncTimeoutError) else SyncStatus.failed
            logger.warning("sync_failed", error=str(error), status=status.value)
            if run_id is not None:
                await self.run_log.finish(run_id, status=status, error=str(error))
            if error is exc:
                raise
            raise error from exc

        logger.info("sync_succeeded", instance_id=result.instance_id, public_address=result.public_address)
        if run_id is not None:
            await self.run_log.finish(
                run_id,
                status=SyncStatus.succeeded,
                instance_id=result.instance_id,
                public_address=result.public_address,
            )
        return result

    async def _cycle(self, kind: SyncEventKind, record: StorageChangeRecord, deadline: Deadline) -> SyncResult:
        described = await self._describe(deadline)
        instance_id = described.instance_id
        logger = self.logger.bind(key=record.key, instance_id=instance_id)
        logger.info("sync_described", state=described.state, public_address=described.public_address)

        user_data = render_user_data(
            kind,
            bucket=record.bucket,
            key=record.key,
            filename=record.filename,
            layout=self.layout,
        )
        await self._call(deadline, self.controller.set_boot_script, instance_id, user_data)
        logger.info("sync_boot_script_written", bytes=len(user_data))

        await self._call(deadline, self.controller.stop, instance_id)
        logger.info("sync_stop_requested")
        await self._await_state(instance_id, "stopped", deadline)

        await self._call(deadline, self.controller.start, instance_id)
        logger.info("sync_start_requested")

        address = await self._restarted_address(instance_id, deadline, logger) or described.public_address
        if not address:
            raise SyncError(f"instance {instance_id} has no public address")

        streaming_url = self.streaming_url(address, record.filename) if kind == SyncEventKind.created else None
        return SyncResult(instance_id=instance_id, public_address=address, streaming_url=streaming_url)

    async def _await_state(self, instance_id: str, target: str, deadline: Deadline) -> InstanceDescription:
        """Poll with bounded exponential backoff until the instance reports ``target``."""
        settings = self.settings
        delay = settings.sync_poll_interval_s
        waited = 0.0
        attempts = 0
        while True:
            described = await self._describe(deadline)
            attempts += 1
            if described.instance_id != instance_id:
                raise SyncError(f"tag selector now matches {described.instance_id}, expected {instance_id}")
            if described.state == target:
                self.logger.info("sync_state_reached", instance_id=instance_id, state=target, attempts=attempts)
                return described

            self.logger.debug("sync_state_pending", instance_id=instance_id, state=described.state, attempts=attempts)
            if waited + delay > settings.sync_max_wait_s:
                raise SyncTimeoutError(
                    f"instance {instance_id} still {described.state} after {waited:.1f}s ({attempts} polls)"
                )
            if delay >= deadline.remaining():
                raise SyncTimeoutError(f"invocation deadline reached waiting for {instance_id} to stop")
            await self.sleep(delay)
            waited += delay
            delay = min(delay * settings.sync_poll_backoff, settings.sync_poll_max_interval_s)

    async def _restarted_address(self, instance_id: str, deadline: Deadline, logger: Any) -> str | None:
        """A stop/start cycle may assign a new public address; the start is already accepted either way."""
        try:
            restarted = await self._describe(deadline)
        except Exception as exc:  # best-effort: fall back to the pre-stop address
            logger.warning("sync_restart_describe_failed", error=f"{type(exc).__name__}: {exc}")
            return None
        if restarted.instance_id != instance_id:
            logger.warning("sync_restart_describe_mismatch", described=restarted.instance_id)
            return None
        return restarted.public_address

    async def _describe(self, deadline: Deadline) -> InstanceDescription:
        return await self._call(deadline, self.controller.describe, self.selector)

    async def _call(self, deadline: Deadline, func: Callable[..., Any], *args: Any) -> Any:
        return await deadline.run(asyncio.to_thread(func, *args))


def _as_sync_error(exc: Exception) -> SyncError:
    if isinstance(exc, SyncError):
        return exc
    if isinstance(exc, (DeadlineExceeded, asyncio.TimeoutError)):
        return SyncTimeoutError(str(exc) or "sync timed out")
    return SyncError(f"{type(exc).__name__}: {exc}")


__all__ = ["DistributionSyncer", "SyncResult"]
