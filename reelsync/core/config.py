from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Secrets(BaseSettings):
    """Secrets configuration, loaded from the environment or a secrets management service."""

    model_config = SettingsConfigDict(
        env_prefix="REELSYNC_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    jwt_secret: str = Field(default="change-me", description="Signing secret for bearer token validation.")

    @classmethod
    def from_settings(cls, settings: "Settings") -> "Secrets":
        return cls()


class Settings(BaseSettings):
    """Centralised runtime configuration for the Reelsync pipeline and API."""

    model_config = SettingsConfigDict(
        env_prefix="REELSYNC_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    app_name: str = "Reelsync API"
    environment: str = Field(default="development", description="Deployment environment label.")
    version: str = Field(default="0.1.0", description="API version for metadata and OpenAPI.")
    log_level: str = Field(default="info")

    database_url: str = Field(
        default="sqlite+aiosqlite:///./reelsync.db",
        description="SQLAlchemy compatible DSN.",
    )
    database_auto_create: bool = Field(
        default=True,
        description="Create missing tables on startup; disable when migrations own the schema.",
    )
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Redis URL for background jobs.",
    )
    job_queue_backend: Literal["immediate", "inline", "rq"] = Field(
        default="immediate",
        description="Backend for storage-change batches (inline processes in-request; rq schedules via Redis).",
    )

    storage_backend: Literal["local", "s3"] = Field(default="local", description="Active object storage implementation.")
    local_storage_base_path: Path = Field(
        default_factory=lambda: Path("storage"),
        description="Root for the filesystem storage backend; buckets are subdirectories.",
    )
    s3_bucket: Optional[str] = Field(default=None, description="Default bucket when a call does not name one.")
    aws_region: Optional[str] = None
    s3_endpoint_url: Optional[str] = Field(default=None, description="Override for S3 compatible endpoints.")
    presign_expiry_s: int = Field(default=3600, description="Lifetime of presigned read and upload URLs.")

    video_prefix: str = Field(default="videos/", description="Only keys under this prefix are ingested.")
    video_extension: str = Field(default=".mp4", description="Only keys with this extension are ingested.")
    collection_path: str = Field(default="/videos", description="Collection path for direct requests.")

    probe_timeout_s: float = Field(default=30.0, description="Upper bound for a single ffprobe duration probe.")

    thumbnails_enabled: bool = Field(default=True)
    thumbnail_prefix: str = Field(default="thumbnails/", description="Namespace for derived preview images.")
    thumbnail_offset_s: float = Field(default=1.0, description="Offset into the stream for the preview frame.")
    thumbnail_width: int = Field(default=320)
    thumbnail_height: int = Field(default=240)
    thumbnail_timeout_s: float = Field(default=60.0, description="Upper bound for frame extraction.")
    thumbnail_signed_urls: bool = Field(
        default=False,
        description="Return presigned references for thumbnails instead of public object URLs.",
    )

    sync_enabled: bool = Field(default=False, description="Republish changed assets to the distribution host.")
    compute_backend: Literal["ec2"] = Field(default="ec2")
    distribution_tag_key: str = Field(default="Name", description="Tag used to select the serving instance.")
    distribution_tag_value: str = Field(default="video-server")
    distribution_namespace: str = Field(default="videos", description="URL path segment served by the host.")
    distribution_web_root: str = Field(default="/var/www/html", description="Document root on the serving host.")
    distribution_server_unit: str = Field(default="nginx", description="systemd unit restarted after a change.")
    sync_poll_interval_s: float = Field(default=5.0, description="Initial delay between instance state polls.")
    sync_poll_backoff: float = Field(default=1.5, description="Multiplier applied to the poll delay after each poll.")
    sync_poll_max_interval_s: float = Field(default=30.0, description="Ceiling for the poll delay.")
    sync_max_wait_s: float = Field(default=600.0, description="Give up waiting for the instance to stop after this long.")

    invocation_timeout_s: float = Field(default=900.0, description="Deadline for processing one envelope.")

    auth_required: bool = Field(default=False, description="Require a bearer token on the video routes.")
    jwt_algorithm: str = Field(default="HS256", description="Algorithm used for JWT tokens.")
    jwt_issuer: Optional[str] = None
    jwt_audience: Optional[str] = None

    secrets: Secrets = Field(default_factory=Secrets, description="Holds sensitive configuration.")

    @property
    def environment_lower(self) -> str:
        return self.environment.lower()

    @property
    def normalized_job_backend(self) -> str:
        if self.job_queue_backend == "inline":
            return "immediate"
        return self.job_queue_backend

    @property
    def normalized_video_prefix(self) -> str:
        prefix = self.video_prefix.strip("/")
        return f"{prefix}/" if prefix else ""


@lru_cache()
def get_settings() -> Settings:
    load_dotenv(".env", override=False)

    _ENV_ALIAS_MAP = {
        "REELSYNC_ENV": "REELSYNC_ENVIRONMENT",
        "REELSYNC_DB_URL": "REELSYNC_DATABASE_URL",
        "REELSYNC_JOB_BACKEND": "REELSYNC_JOB_QUEUE_BACKEND",
    }

    for source, target in _ENV_ALIAS_MAP.items():
        value = os.getenv(source)
        if value:
            os.environ[target] = value

    settings = Settings()
    secrets = Secrets.from_settings(settings)

    if settings.environment == "production" and secrets.jwt_secret == "change-me":
        raise ValueError("Production environment must have a non-default JWT secret.")

    settings.secrets = secrets
    return settings


__all__ = ["Settings", "Secrets", "get_settings"]
