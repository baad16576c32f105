from __future__ import annotations

import os
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from reelsync.core.config import get_settings
from reelsync.main import create_app

pytestmark = pytest.mark.no_default_env


def _write_env(target_dir: Path, *, environment: str, secret: str = "dev-secret") -> Path:
    target_dir.mkdir(parents=True, exist_ok=True)
    env_text = f"""
REELSYNC_ENV={environment}
REELSYNC_LOG_LEVEL=debug
REELSYNC_JWT_SECRET={secret}
REELSYNC_STORAGE_BACKEND=local
REELSYNC_LOCAL_STORAGE_BASE_PATH=storage
REELSYNC_DB_URL=sqlite+aiosqlite:///./reelsync.db
REELSYNC_JOB_BACKEND=inline
REELSYNC_THUMBNAILS_ENABLED=false
""".strip()
    env_path = target_dir / ".env"
    env_path.write_text(env_text)
    return env_path


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch: pytest.MonkeyPatch, tmp_path: Path):
    before = {key: value for key, value in os.environ.items() if key.startswith("REELSYNC_")}
    for key in before:
        monkeypatch.delenv(key, raising=False)
    monkeypatch.chdir(tmp_path)
    get_settings.cache_clear()
    yield
    # load_dotenv and the alias map write os.environ directly.
    for key in [key for key in os.environ if key.startswith("REELSYNC_")]:
        del os.environ[key]
    get_settings.cache_clear()


def test_env_file_boots_without_shell_exports(tmp_path: Path):
    _write_env(tmp_path, environment="development")
    app = create_app()
    with TestClient(app) as client:
        response = client.get("/v1/health")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    settings = get_settings()
    assert settings.environment == "development"
    assert settings.normalized_job_backend == "immediate"
    assert settings.secrets.jwt_secret == "dev-secret"
    assert (tmp_path / "reelsync.db").exists()


def test_production_refuses_default_secret(tmp_path: Path):
    _write_env(tmp_path, environment="production", secret="change-me")
    with pytest.raises(ValueError, match="non-default JWT secret"):
        get_settings()


def test_video_prefix_is_normalised(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("REELSYNC_VIDEO_PREFIX", "/uploads")
    assert get_settings().normalized_video_prefix == "uploads/"
