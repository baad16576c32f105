import asyncio
from datetime import datetime, timezone

import jwt
import pytest
from fastapi.testclient import TestClient

from reelsync.core.compute import InstanceController, InstanceDescription, TagSelector
from reelsync.core.config import get_settings
from reelsync.core.db import Base, DatabaseHandle, create_engine
from reelsync.core.jobs import get_job_backend
from reelsync.core.storage import ObjectHead, PresignedURL, Storage
from reelsync.main import create_app


def pytest_configure(config):
    config.addinivalue_line(
        "markers",
        "no_default_env: disable the default Reelsync environment bootstrap fixture for tests that manage their own .env",
    )


@pytest.fixture(autouse=True)
def configure_environment(request, monkeypatch, tmp_path):
    if request.node.get_closest_marker("no_default_env"):
        get_settings.cache_clear()
        get_job_backend.cache_clear()
        yield
        get_job_backend.cache_clear()
        get_settings.cache_clear()
        return
    db_path = tmp_path / "reelsync_test.db"

    monkeypatch.setenv("REELSYNC_ENV", "test")
    monkeypatch.setenv("REELSYNC_LOG_LEVEL", "debug")
    monkeypatch.setenv("REELSYNC_DB_URL", f"sqlite+aiosqlite:///{db_path}")
    monkeypatch.setenv("REELSYNC_STORAGE_BACKEND", "local")
    monkeypatch.setenv("REELSYNC_LOCAL_STORAGE_BASE_PATH", str(tmp_path / "storage"))
    monkeypatch.setenv("REELSYNC_JOB_BACKEND", "inline")
    monkeypatch.setenv("REELSYNC_REDIS_URL", "redis://localhost:6379/0")
    monkeypatch.setenv("REELSYNC_JWT_SECRET", "test-secret")
    monkeypatch.setenv("REELSYNC_JWT_ISSUER", "reelsync-test")
    monkeypatch.setenv("REELSYNC_JWT_AUDIENCE", "reelsync")
    monkeypatch.setenv("REELSYNC_THUMBNAILS_ENABLED", "false")
    monkeypatch.setenv("REELSYNC_SYNC_ENABLED", "false")

    get_settings.cache_clear()
    get_job_backend.cache_clear()
    settings = get_settings()
    engine = create_engine(settings)

    async def _setup() -> None:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        await engine.dispose()

    asyncio.run(_setup())

    yield

    get_job_backend.cache_clear()
    get_settings.cache_clear()


@pytest.fixture()
def client(configure_environment):
    app = create_app()
    with TestClient(app) as client:
        yield client


@pytest.fixture()
def run_with_database(configure_environment):
    """Run ``scenario(session_factory)`` on a fresh engine inside one event loop."""

    def _run(scenario):
        async def _runner():
            handle = DatabaseHandle(get_settings())
            try:
                return await scenario(await handle.session_factory())
            finally:
                await handle.dispose()

        return asyncio.run(_runner())

    return _run


def build_token(user_id: str | None = "user-1", *, secret: str = "test-secret", **claims) -> str:
    payload = {"iss": "reelsync-test", "aud": "reelsync", **claims}
    if user_id:
        payload["sub"] = user_id
    return jwt.encode(payload, secret, algorithm="HS256")


@pytest.fixture()
def user_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {build_token('user-1')}"}


class FakeStorage(Storage):
    """In-memory object storage keyed by (bucket, key)."""

    def __init__(self, default_bucket: str = "media"):
        super().__init__(default_bucket)
        self.objects: dict[tuple[str, str], tuple[bytes, str]] = {}
        self.deleted: list[tuple[str, str]] = []
        self.fail_delete = False
        self.fail_head = False

    def add(self, key: str, payload: bytes = b"\x00" * 64, *, bucket: str = "media", content_type: str = "video/mp4"):
        self.objects[(bucket, key)] = (payload, content_type)

    def head(self, key, *, bucket=None):
        if self.fail_head:
            raise OSError("storage unavailable")
        entry = self.objects.get((self._bucket(bucket), key))
        if entry is None:
            raise FileNotFoundError(key)
        payload, content_type = entry
        return ObjectHead(
            content_type=content_type,
            size_bytes=len(payload),
            last_modified=datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc),
        )

    def write_bytes(self, key, payload, *, content_type, bucket=None):
        self.objects[(self._bucket(bucket), key)] = (payload, content_type)
        return f"memory://{self._bucket(bucket)}/{key}"

    def delete(self, key, *, bucket=None):
        if self.fail_delete:
            raise OSError("delete refused")
        self.objects.pop((self._bucket(bucket), key), None)
        self.deleted.append((self._bucket(bucket), key))

    def presign_get(self, key, *, bucket=None, expires_s=3600):
        return PresignedURL(url=f"https://signed.example.test/{self._bucket(bucket)}/{key}?ttl={expires_s}")

    def presign_put(self, key, *, content_type, bucket=None, expires_s=3600):
        return PresignedURL(
            url=f"https://upload.example.test/{self._bucket(bucket)}/{key}",
            method="PUT",
            headers={"Content-Type": content_type or "application/octet-stream"},
        )

    def public_url(self, key, *, bucket=None):
        return f"https://{self._bucket(bucket)}.example.test/{key}"


class FakeController(InstanceController):
    """Serving instance that reports ``stopping`` for a number of polls after a stop request."""

    def __init__(self, *, address: str | None = "1.2.3.4", stopping_polls: int | None = 0):
        self.instance_id = "i-0123456789"
        self.address = address
        self.state = "running"
        self.stopping_polls = stopping_polls
        self._pending = 0
        self.calls: list[tuple] = []
        self.boot_scripts: list[str] = []

    def describe(self, selector: TagSelector) -> InstanceDescription:
        self.calls.append(("describe", selector.key, selector.value))
        if self.state == "stopping":
            if self.stopping_polls is not None and self._pending >= self.stopping_polls:
                self.state = "stopped"
            self._pending += 1
        return InstanceDescription(instance_id=self.instance_id, state=self.state, public_address=self.address)

    def set_boot_script(self, instance_id: str, script: str) -> None:
        self.calls.append(("set_boot_script", instance_id))
        self.boot_scripts.append(script)

    def stop(self, instance_id: str) -> None:
        self.calls.append(("stop", instance_id))
        self.state = "stopping"
        self._pending = 0

    def start(self, instance_id: str) -> None:
        self.calls.append(("start", instance_id))
        self.state = "running"

    def call_names(self) -> list[str]:
        return [call[0] for call in self.calls]


@pytest.fixture()
def fake_storage() -> FakeStorage:
    return FakeStorage()


@pytest.fixture()
def fake_controller() -> FakeController:
    return FakeController()
