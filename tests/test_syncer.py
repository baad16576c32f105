from __future__ import annotations

import asyncio

import pytest

from reelsync.core.config import get_settings
from reelsync.core.deadline import Deadline
from reelsync.db.models import SyncEventKind, SyncStatus
from reelsync.errors import SyncError, SyncTimeoutError
from reelsync.ingest.events import StorageChangeRecord
from reelsync.services.boot_scripts import HostLayout, render_user_data
from reelsync.services.metadata_store import SyncRunLog
from reelsync.services.syncer import DistributionSyncer

from conftest import FakeController

RECORD = StorageChangeRecord(event_name="ObjectCreated:Put", kind="created", bucket="media", key="videos/clip.mp4")
LAYOUT = HostLayout(web_root="/var/www/html", namespace="videos", server_unit="nginx")


class RecordingSleep:
    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def test_creation_user_data_runs_on_every_boot():
    user_data = render_user_data(
        SyncEventKind.created, bucket="media", key="videos/my clip.mp4", filename="my clip.mp4", layout=LAYOUT
    )
    assert "cloud_final_modules" in user_data
    assert "[scripts-user, always]" in user_data
    assert "mkdir -p /var/www/html/videos" in user_data
    assert "aws s3 cp 's3://media/videos/my clip.mp4' '/var/www/html/videos/my clip.mp4'" in user_data
    assert "systemctl restart nginx" in user_data


def test_removal_user_data_deletes_served_copy():
    user_data = render_user_data(
        SyncEventKind.removed, bucket="media", key="videos/clip.mp4", filename="clip.mp4", layout=LAYOUT
    )
    assert "rm -f /var/www/html/videos/clip.mp4" in user_data
    assert "aws s3 cp" not in user_data


def test_sync_cycle_order_and_streaming_url(run_with_database):
    controller = FakeController(address="1.2.3.4", stopping_polls=2)
    sleep = RecordingSleep()

    async def scenario(session_factory):
        syncer = DistributionSyncer(get_settings(), controller, run_log=SyncRunLog(session_factory), sleep=sleep)
        result = await syncer.sync(SyncEventKind.created, RECORD, Deadline.after(900))
        return result, await SyncRunLog(session_factory).for_key(RECORD.key)

    result, runs = run_with_database(scenario)
    assert result.streaming_url == "http://1.2.3.4/videos/clip.mp4"
    assert controller.call_names() == [
        "describe",
        "set_boot_script",
        "stop",
        "describe",
        "describe",
        "describe",
        "start",
        "describe",
    ]
    assert controller.calls[0][1:] == ("Name", "video-server")
    assert sleep.delays == [5.0, 7.5]
    assert runs[0].status == SyncStatus.succeeded
    assert runs[0].instance_id == controller.instance_id


def test_removal_sync_has_no_streaming_url():
    controller = FakeController()
    syncer = DistributionSyncer(get_settings(), controller, sleep=RecordingSleep())
    removed = StorageChangeRecord(event_name="ObjectRemoved:Delete", kind="removed", bucket="media", key=RECORD.key)
    result = asyncio.run(syncer.sync(SyncEventKind.removed, removed, Deadline.after(900)))
    assert result.streaming_url is None
    assert "rm -f" in controller.boot_scripts[0]


def test_stuck_instance_times_out_with_bounded_backoff(run_with_database):
    settings = get_settings().model_copy(
        update={
            "sync_poll_interval_s": 1.0,
            "sync_poll_backoff": 2.0,
            "sync_poll_max_interval_s": 4.0,
            "sync_max_wait_s": 10.0,
        }
    )
    controller = FakeController(stopping_polls=None)
    sleep = RecordingSleep()

    async def scenario(session_factory):
        syncer = DistributionSyncer(settings, controller, run_log=SyncRunLog(session_factory), sleep=sleep)
        with pytest.raises(SyncTimeoutError):
            await syncer.sync(SyncEventKind.created, RECORD, Deadline.after(900))
        return await SyncRunLog(session_factory).for_key(RECORD.key)

    runs = run_with_database(scenario)
    assert sleep.delays == [1.0, 2.0, 4.0]
    assert "start" not in controller.call_names()
    assert runs[0].status == SyncStatus.timed_out


def test_poll_stops_before_invocation_deadline():
    controller = FakeController(stopping_polls=None)
    syncer = DistributionSyncer(get_settings(), controller, sleep=RecordingSleep())
    with pytest.raises(SyncTimeoutError):
        asyncio.run(syncer.sync(SyncEventKind.created, RECORD, Deadline.after(3)))


def test_missing_address_is_a_sync_error():
    controller = FakeController(address=None)
    syncer = DistributionSyncer(get_settings(), controller, sleep=RecordingSleep())
    with pytest.raises(SyncError, match="no public address"):
        asyncio.run(syncer.sync(SyncEventKind.created, RECORD, Deadline.after(900)))


def test_controller_errors_are_wrapped():
    class ExplodingController(FakeController):
        def stop(self, instance_id):
            raise RuntimeError("UnauthorizedOperation")

    syncer = DistributionSyncer(get_settings(), ExplodingController(), sleep=RecordingSleep())
    with pytest.raises(SyncError, match="RuntimeError: UnauthorizedOperation"):
        asyncio.run(syncer.sync(SyncEventKind.created, RECORD, Deadline.after(900)))


def test_concurrent_cycles_do_not_interleave():
    controller = FakeController()
    syncer = DistributionSyncer(get_settings(), controller, sleep=RecordingSleep())
    other = StorageChangeRecord(event_name="ObjectCreated:Put", kind="created", bucket="media", key="videos/b.mp4")

    async def scenario():
        await asyncio.gather(
            syncer.sync(SyncEventKind.created, RECORD, Deadline.after(900)),
            syncer.sync(SyncEventKind.created, other, Deadline.after(900)),
        )

    asyncio.run(scenario())
    names = controller.call_names()
    first_start = names.index("start")
    assert names.index("set_boot_script", 2) > first_start


class RestartBlindController(FakeController):
    """Fails every describe issued after the start request."""

    def describe(self, selector):
        if "start" in self.call_names():
            self.calls.append(("describe", selector.key, selector.value))
            raise RuntimeError("DescribeInstances throttled")
        return super().describe(selector)


def test_describe_failure_after_start_keeps_known_address(run_with_database):
    controller = RestartBlindController(address="5.6.7.8")

    async def scenario(session_factory):
        run_log = SyncRunLog(session_factory)
        syncer = DistributionSyncer(get_settings(), controller, run_log=run_log, sleep=RecordingSleep())
        result = await syncer.sync(SyncEventKind.created, RECORD, Deadline.after(900))
        return result, await run_log.for_key(RECORD.key)

    result, runs = run_with_database(scenario)
    assert controller.call_names()[-2:] == ["start", "describe"]
    assert result.public_address == "5.6.7.8"
    assert result.streaming_url == "http://5.6.7.8/videos/clip.mp4"
    assert runs[0].status == SyncStatus.succeeded
