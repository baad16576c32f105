from __future__ import annotations

import enum
from datetime import datetime
from typing import Any

from sqlalchemy import BigInteger, DateTime, Enum, Float, Index, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from reelsync.core.db import Base


class VideoStatus(str, enum.Enum):
    processing = "processing"
    ready = "ready"
    error = "error"
    active = "active"


class SyncEventKind(str, enum.Enum):
    created = "created"
    removed = "removed"


class SyncStatus(str, enum.Enum):
    running = "running"
    succeeded = "succeeded"
    failed = "failed"
    timed_out = "timed_out"


LISTABLE_STATUSES = (VideoStatus.ready, VideoStatus.active)


class VideoAsset(Base):
    __tablename__ = "video_assets"
    __table_args__ = (Index("ix_video_assets_status_upload_date", "status", "upload_date"),)

    key: Mapped[str] = mapped_column(String(1024), primary_key=True)
    bucket: Mapped[str | None] = mapped_column(String(255), nullable=True)
    filename: Mapped[str] = mapped_column(String(512), nullable=False)
    size_bytes: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    content_type: Mapped[str | None] = mapped_column(String(255), nullable=True)
    last_modified: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    upload_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    duration_s: Mapped[float | None] = mapped_column(Float, nullable=True)
    thumbnail_url: Mapped[str | None] = mapped_column(String(2048), nullable=True)
    streaming_url: Mapped[str | None] = mapped_column(String(2048), nullable=True)
    status: Mapped[VideoStatus] = mapped_column(Enum(VideoStatus), default=VideoStatus.processing, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def to_document(self) -> dict[str, Any]:
        """Render the record in its public JSON shape, omitting unset optional fields."""
        document: dict[str, Any] = {
            "key": self.key,
            "filename": self.filename,
            "size": self.size_bytes,
            "contentType": self.content_type,
            "lastModified": _isoformat(self.last_modified),
            "uploadDate": _isoformat(self.upload_date),
            "status": self.status.value,
        }
        if self.duration_s is not None:
            document["duration"] = self.duration_s
        if self.thumbnail_url:
            document["thumbnailUrl"] = self.thumbnail_url
        if self.streaming_url:
            document["streamingUrl"] = self.streaming_url
        return document


class SyncRun(Base):
    __tablename__ = "sync_runs"
    __table_args__ = (Index("ix_sync_runs_key", "key"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    key: Mapped[str] = mapped_column(String(1024), nullable=False)
    event_kind: Mapped[SyncEventKind] = mapped_column(Enum(SyncEventKind), nullable=False)
    status: Mapped[SyncStatus] = mapped_column(Enum(SyncStatus), default=SyncStatus.running, nullable=False)
    instance_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    public_address: Mapped[str | None] = mapped_column(String(255), nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    finished_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


def _isoformat(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.isoformat()


__all__ = [
    "VideoAsset",
    "VideoStatus",
    "SyncRun",
    "SyncEventKind",
    "SyncStatus",
    "LISTABLE_STATUSES",
]
