"""Tests for shipit.cleanup: durable tracking, recovery and session sweep."""

import asyncio
import json

import pytest

from shipit.cleanup import CleanupTracker, ephemeral_session, read_state
from shipit.errors import ProviderError


class FakeDeleter:
    """Provider stub that records deletes; ids in *failing* raise."""

    def __init__(self, failing=()):
        self.failing = set(failing)
        self.deleted = []

    async def delete_server(self, server_id):
        if server_id in self.failing:
            raise ProviderError(f"server {server_id} is locked", status_code=423)
        self.deleted.append(server_id)


@pytest.fixture
def state_file(tmp_path):
    return tmp_path / "ship-it-cleanup.json"


# ── Tracking ────────────────────────────────────────────────────────


async def test_track_persists_before_returning(state_file):
    tracker = CleanupTracker(FakeDeleter(), state_file)
    await tracker.init("T")

    tracker.track(101)
    assert json.loads(state_file.read_text()) == {"credential": "T", "serverIds": [101]}

    tracker.track(102)
    tracker.track(101)
    assert read_state(state_file) == ("T", [101, 102])


async def test_untrack_removes_without_deleting(state_file):
    provider = FakeDeleter()
    tracker = CleanupTracker(provider, state_file)
    await tracker.init("T")
    tracker.track(101)
    tracker.track(102)

    tracker.untrack(101)
    assert read_state(state_file) == ("T", [102])

    tracker.untrack(102)
    assert not state_file.exists()
    assert provider.deleted == []


def test_no_temp_file_left_behind(state_file):
    tracker = CleanupTracker(FakeDeleter(), state_file)
    tracker.track(7)
    assert [p.name for p in state_file.parent.iterdir()] == [state_file.name]


# ── Sweep ───────────────────────────────────────────────────────────


async def test_run_cleanup_deletes_and_clears(state_file):
    provider = FakeDeleter()
    tracker = CleanupTracker(provider, state_file)
    await tracker.init("T")
    tracker.track(1)
    tracker.track(2)

    assert await tracker.run_cleanup() == []
    assert provider.deleted == [1, 2]
    assert tracker.tracked == []
    assert not state_file.exists()


async def test_run_cleanup_twice_is_a_noop(state_file):
    provider = FakeDeleter()
    tracker = CleanupTracker(provider, state_file)
    tracker.track(1)

    await tracker.run_cleanup()
    await tracker.run_cleanup()
    assert provider.deleted == [1]


async def test_run_cleanup_continues_after_failed_delete(state_file, caplog):
    provider = FakeDeleter(failing={2})
    tracker = CleanupTracker(provider, state_file)
    for server_id in (1, 2, 3):
        tracker.track(server_id)

    failed = await tracker.run_cleanup()

    assert failed == [2]
    assert provider.deleted == [1, 3]
    assert "Failed to delete server 2" in caplog.text
    assert not state_file.exists()


# ── Recovery ────────────────────────────────────────────────────────


async def test_init_recovers_orphans_from_previous_run(state_file):
    state_file.write_text(json.dumps({"credential": "T", "serverIds": [101, 102]}))
    provider = FakeDeleter()
    tracker = CleanupTracker(provider, state_file)

    await tracker.init("T")

    assert provider.deleted == [101, 102]
    assert not state_file.exists()
    assert tracker.tracked == []


async def test_init_recovers_only_once(state_file):
    provider = FakeDeleter()
    tracker = CleanupTracker(provider, state_file)
    await tracker.init("T")
    tracker.track(5)

    await tracker.init("T")

    assert provider.deleted == []
    assert tracker.tracked == [5]


async def test_init_warns_on_different_credential(state_file, caplog):
    state_file.write_text(json.dumps({"credential": "OLD", "serverIds": [9]}))
    provider = FakeDeleter()

    await CleanupTracker(provider, state_file).init("NEW")

    assert "different token" in caplog.text
    assert provider.deleted == [9]


def test_read_state_ignores_garbage(state_file):
    state_file.write_text("{not json")
    assert read_state(state_file) == (None, [])


# ── Session ─────────────────────────────────────────────────────────


async def test_session_sweeps_on_error(state_file):
    provider = FakeDeleter()
    tracker = CleanupTracker(provider, state_file)

    with pytest.raises(RuntimeError):
        async with ephemeral_session(tracker, "T"):
            tracker.track(11)
            tracker.track(12)
            raise RuntimeError("step failed")

    assert provider.deleted == [11, 12]
    assert not state_file.exists()


async def test_session_sweeps_on_normal_exit(state_file):
    provider = FakeDeleter()
    tracker = CleanupTracker(provider, state_file)

    async with ephemeral_session(tracker, "T"):
        tracker.track(11)

    assert provider.deleted == [11]


async def test_session_sweeps_on_cancel(state_file):
    provider = FakeDeleter()
    tracker = CleanupTracker(provider, state_file)
    started = asyncio.Event()

    async def run():
        async with ephemeral_session(tracker, "T"):
            tracker.track(21)
            started.set()
            await asyncio.sleep(3600)

    task = asyncio.create_task(run())
    await started.wait()
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert provider.deleted == [21]
    assert not state_file.exists()
