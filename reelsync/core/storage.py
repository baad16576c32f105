from __future__ import annotations

import mimetypes
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from urllib.parse import quote

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .config import Settings

# Failures a storage call may raise across backends.
StorageError = (OSError, ClientError, BotoCoreError)


@dataclass(slots=True)
class ObjectHead:
    content_type: str
    size_bytes: int
    last_modified: datetime
    etag: str | None = None


@dataclass(slots=True)
class PresignedURL:
    url: str
    method: str = "GET"
    headers: dict[str, str] | None = None


class Storage(ABC):
    """Object storage client. Calls block; async callers wrap them in ``asyncio.to_thread``."""

    def __init__(self, default_bucket: str | None = None):
        self.default_bucket = default_bucket

    def _bucket(self, bucket: str | None) -> str:
        resolved = bucket or self.default_bucket
        if not resolved:
            raise ValueError("bucket_not_configured")
        return resolved

    @abstractmethod
    def head(self, key: str, *, bucket: str | None = None) -> ObjectHead: ...

    @abstractmethod
    def write_bytes(self, key: str, payload: bytes, *, content_type: str, bucket: str | None = None) -> str: ...

    @abstractmethod
    def delete(self, key: str, *, bucket: str | None = None) -> None: ...

    @abstractmethod
    def presign_get(self, key: str, *, bucket: str | None = None, expires_s: int = 3600) -> PresignedURL: ...

    @abstractmethod
    def presign_put(
        self,
        key: str,
        *,
        content_type: str | None,
        bucket: str | None = None,
        expires_s: int = 3600,
    ) -> PresignedURL: ...

    @abstractmethod
    def public_url(self, key: str, *, bucket: str | None = None) -> str: ...


class LocalStorage(Storage):
    """Filesystem-backed storage suitable for development; each bucket is a directory."""

    def __init__(self, base_path: Path, default_bucket: str | None = None):
        super().__init__(default_bucket or "local")
        self.base_path = base_path
        self.base_path.mkdir(parents=True, exist_ok=True)

    def _resolve(self, key: str, bucket: str | None) -> Path:
        root = (self.base_path / self._bucket(bucket)).resolve()
        path = (root / key).resolve()
        if root not in path.parents:
            raise ValueError(f"key escapes bucket root: {key}")
        return path

    def head(self, key: str, *, bucket: str | None = None) -> ObjectHead:
        path = self._resolve(key, bucket)
        if not path.is_file():
            raise FileNotFoundError(key)
        stat = path.stat()
        content_type, _ = mimetypes.guess_type(path.name)
        return ObjectHead(
            content_type=content_type or "application/octet-stream",
            size_bytes=stat.st_size,
            last_modified=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
        )

    def write_bytes(self, key: str, payload: bytes, *, content_type: str, bucket: str | None = None) -> str:
        path = self._resolve(key, bucket)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(payload)
        return path.as_uri()

    def delete(self, key: str, *, bucket: str | None = None) -> None:
        self._resolve(key, bucket).unlink(missing_ok=True)

    def presign_get(self, key: str, *, bucket: str | None = None, expires_s: int = 3600) -> PresignedURL:
        return PresignedURL(url=self._resolve(key, bucket).as_uri(), method="GET")

    def presign_put(
        self,
        key: str,
        *,
        content_type: str | None,
        bucket: str | None = None,
        expires_s: int = 3600,
    ) -> PresignedURL:
        target = self._resolve(key, bucket)
        target.parent.mkdir(parents=True, exist_ok=True)
        return PresignedURL(
            url=target.as_uri(),
            method="PUT",
            headers={"Content-Type": content_type or "application/octet-stream"},
        )

    def public_url(self, key: str, *, bucket: str | None = None) -> str:
        return self._resolve(key, bucket).as_uri()


class S3Storage(Storage):
    """S3 implementation backed by a boto3 client."""

    def __init__(
        self,
        *,
        default_bucket: str | None,
        region: str | None = None,
        endpoint_url: str | None = None,
        client=None,
    ):
        super().__init__(default_bucket)
        self.region = region
        self.endpoint_url = endpoint_url
        self.client = client or boto3.client("s3", region_name=region, endpoint_url=endpoint_url)

    def head(self, key: str, *, bucket: str | None = None) -> ObjectHead:
        try:
            response = self.client.head_object(Bucket=self._bucket(bucket), Key=key)
        except ClientError as exc:
            code = exc.response.get("Error", {}).get("Code")
            if code in {"404", "NoSuchKey", "NotFound"}:
                raise FileNotFoundError(key) from exc
            raise
        last_modified = response.get("LastModified") or datetime.now(timezone.utc)
        return ObjectHead(
            content_type=response.get("ContentType") or "application/octet-stream",
            size_bytes=int(response.get("ContentLength") or 0),
            last_modified=last_modified,
            etag=(response.get("ETag") or "").strip('"') or None,
        )

    def write_bytes(self, key: str, payload: bytes, *, content_type: str, bucket: str | None = None) -> str:
        resolved = self._bucket(bucket)
        self.client.put_object(Bucket=resolved, Key=key, Body=payload, ContentType=content_type)
        return f"s3://{resolved}/{key}"

    def delete(self, key: str, *, bucket: str | None = None) -> None:
        # DeleteObject succeeds for keys that do not exist.
        self.client.delete_object(Bucket=self._bucket(bucket), Key=key)

    def presign_get(self, key: str, *, bucket: str | None = None, expires_s: int = 3600) -> PresignedURL:
        url = self.client.generate_presigned_url(
            "get_object",
            Params={"Bucket": self._bucket(bucket), "Key": key},
            ExpiresIn=expires_s,
        )
        return PresignedURL(url=url, method="GET")

    def presign_put(
        self,
        key: str,
        *,
        content_type: str | None,
        bucket: str | None = None,
        expires_s: int = 3600,
    ) -> PresignedURL:
        params: dict[str, str] = {"Bucket": self._bucket(bucket), "Key": key}
        if content_type:
            params["ContentType"] = content_type
        url = self.client.generate_presigned_url("put_object", Params=params, ExpiresIn=expires_s)
        headers = {"Content-Type": content_type} if content_type else None
        return PresignedURL(url=url, method="PUT", headers=headers)

    def public_url(self, key: str, *, bucket: str | None = None) -> str:
        resolved = self._bucket(bucket)
        if self.endpoint_url:
            return f"{self.endpoint_url.rstrip('/')}/{resolved}/{quote(key)}"
        if self.region:
            return f"https://{resolved}.s3.{self.region}.amazonaws.com/{quote(key)}"
        return f"https://{resolved}.s3.amazonaws.com/{quote(key)}"


def get_storage(settings: Settings) -> Storage:
    if settings.storage_backend == "local":
        return LocalStorage(base_path=Path(settings.local_storage_base_path), default_bucket=settings.s3_bucket)
    if settings.storage_backend == "s3":
        return S3Storage(
            default_bucket=settings.s3_bucket,
            region=settings.aws_region,
            endpoint_url=settings.s3_endpoint_url,
        )
    raise ValueError(f"Unsupported storage backend: {settings.storage_backend}")


__all__ = [
    "Storage",
    "LocalStorage",
    "S3Storage",
    "ObjectHead",
    "PresignedURL",
    "StorageError",
    "get_storage",
]
