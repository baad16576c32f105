from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class HealthResponse(BaseModel):
    status: str = Field(default="ok", description="Health status indicator.")
    time: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    version: Optional[str] = None


class StorageChangeBatch(BaseModel):
    """A batch of storage-change notifications in either the flat or the native envelope shape."""

    model_config = ConfigDict(extra="allow")

    records: Optional[List[Dict[str, Any]]] = None
    Records: Optional[List[Dict[str, Any]]] = None


class EventAcceptedResponse(BaseModel):
    job_id: str
    status: str = Field(default="queued")


class UploadSlotRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    fileName: Optional[str] = Field(default=None, json_schema_extra={"example": "clip.mp4"})
    contentType: Optional[str] = Field(default=None, json_schema_extra={"example": "video/mp4"})


__all__ = [
    "HealthResponse",
    "StorageChangeBatch",
    "EventAcceptedResponse",
    "UploadSlotRequest",
]
