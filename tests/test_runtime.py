from __future__ import annotations

import asyncio
import io
import json
from unittest.mock import patch

import pytest
from rich.console import Console

from reelsync import cli
from reelsync.core.config import get_settings
from reelsync.core.db import DatabaseHandle
from reelsync.core.deadline import Deadline
from reelsync.errors import DeadlineExceeded
from reelsync.workers import tasks


def test_deadline_bounds_timeouts():
    deadline = Deadline.after(10)
    assert deadline.bound(30) <= 10
    assert deadline.bound(2) == 2
    assert not deadline.expired


def test_expired_deadline_refuses_work():
    async def scenario():
        await Deadline.after(0).run(asyncio.sleep(1))

    with pytest.raises(DeadlineExceeded):
        asyncio.run(scenario())


def test_slow_call_hits_deadline():
    async def scenario():
        await Deadline.after(0.05).run(asyncio.sleep(5))

    with pytest.raises(DeadlineExceeded):
        asyncio.run(scenario())


def test_database_handle_initialises_once():
    handle = DatabaseHandle(get_settings())

    async def scenario():
        factories = await asyncio.gather(*(handle.session_factory() for _ in range(8)))
        engine = handle._engine
        await handle.dispose()
        return factories, engine

    factories, engine = asyncio.run(scenario())
    assert engine is not None
    assert all(factory is factories[0] for factory in factories)
    assert not handle.initialised


def test_worker_reuses_database_between_jobs():
    target = get_settings().local_storage_base_path / "media" / "videos" / "clip.mp4"
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_bytes(b"\x00" * 32)
    envelope = {"records": [{"eventName": "ObjectCreated:Put", "bucket": "media", "key": "videos/clip.mp4"}]}

    try:
        with patch("reelsync.ingest.ffprobe.run_ffprobe", return_value={"format": {"duration": "2.0"}}):
            first = tasks.run_envelope(envelope)
            database = tasks._database
            second = tasks.run_envelope(envelope)
        assert tasks._database is database
    finally:
        tasks.shutdown()

    assert first["statusCode"] == 200
    assert second["body"]["results"][0]["status"] == "ready"


@pytest.fixture()
def cli_output(monkeypatch):
    buffer = io.StringIO()
    monkeypatch.setattr(cli, "console", Console(file=buffer, width=200))
    return buffer


def test_cli_probe_prints_duration(tmp_path, cli_output):
    media = tmp_path / "clip.mp4"
    media.write_bytes(b"\x00")
    with patch("reelsync.cli.run_ffprobe", return_value={"format": {"duration": "7.5"}}):
        cli.main(["probe", "--file", str(media)])
    output = json.loads(cli_output.getvalue())
    assert output["duration"] == 7.5
    assert output["warning"] is None


def test_cli_replay_runs_direct_request(tmp_path, cli_output):
    event = tmp_path / "event.json"
    event.write_text(json.dumps({"method": "GET", "path": "/videos"}))
    cli.main(["replay", "--event", str(event)])
    output = json.loads(cli_output.getvalue())
    assert output["statusCode"] == 200
    assert output["body"] == []


def test_cli_missing_file_exits(tmp_path, cli_output):
    with pytest.raises(SystemExit) as excinfo:
        cli.main(["probe", "--file", str(tmp_path / "nope.mp4")])
    assert excinfo.value.code == 2


def test_cli_inspect_reports_catalog_and_asset(tmp_path, cli_output):
    target = get_settings().local_storage_base_path / "media" / "videos" / "clip.mp4"
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_bytes(b"\x00" * 32)
    event = tmp_path / "event.json"
    event.write_text(
        json.dumps({"records": [{"eventName": "ObjectCreated:Put", "bucket": "media", "key": "videos/clip.mp4"}]})
    )
    with patch("reelsync.ingest.ffprobe.run_ffprobe", return_value={"format": {"duration": "2.0"}}):
        cli.main(["replay", "--event", str(event)])

    cli_output.seek(0)
    cli_output.truncate()
    cli.main(["inspect"])
    assert json.loads(cli_output.getvalue()) == {"assets": 1}

    cli_output.seek(0)
    cli_output.truncate()
    cli.main(["inspect", "--key", "videos/clip.mp4"])
    output = json.loads(cli_output.getvalue())
    assert output["asset"]["status"] == "ready"
    assert output["syncRuns"] == []


def test_cli_inspect_missing_key_exits(cli_output):
    with pytest.raises(SystemExit) as excinfo:
        cli.main(["inspect", "--key", "videos/nope.mp4"])
    assert excinfo.value.code == 1
    assert json.loads(cli_output.getvalue())["error"] == "Video not found"
