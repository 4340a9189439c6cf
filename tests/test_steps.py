"""Tests for shipit.steps.StepTracker."""

import pytest

from shipit.errors import ProvisionTimeoutError, StepError
from shipit.steps import StepStatus, StepTracker

DEFS = [("one", "Step one"), ("two", "Step two")]


async def test_run_success_sets_message():
    tracker = StepTracker(DEFS)

    async def work():
        return 41

    assert await tracker.run("one", work, lambda r: f"got {r + 1}") == 41
    step = tracker.get("one")
    assert step.status == StepStatus.DONE
    assert step.message == "got 42"
    assert tracker.get("two").status == StepStatus.PENDING


async def test_run_failure_wraps_and_freezes():
    seen = []
    tracker = StepTracker(DEFS, on_progress=seen.append)

    async def work():
        raise ProvisionTimeoutError("server 1 to start", 120)

    with pytest.raises(StepError) as exc_info:
        await tracker.run("one", work)

    assert str(exc_info.value) == "Step one: server 1 to start timed out after 120s"
    assert exc_info.value.is_timeout
    assert tracker.get("one").status == StepStatus.ERROR
    assert [s[0].status for s in seen] == [StepStatus.RUNNING, StepStatus.ERROR]

    with pytest.raises(RuntimeError):
        tracker.update("two", StepStatus.RUNNING)


def test_snapshot_is_detached():
    tracker = StepTracker(DEFS)
    before = tracker.snapshot()
    tracker.skip("one", "nothing to do")
    assert before[0].status == StepStatus.PENDING
    assert tracker.snapshot()[0].message == "nothing to do"
