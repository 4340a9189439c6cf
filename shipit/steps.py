"""Pipeline steps with observable status, published as immutable snapshots."""

import logging
from dataclasses import dataclass, replace
from enum import Enum

from shipit.errors import StepError

logger = logging.getLogger(__name__)


class StepStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    DONE = "done"
    ERROR = "error"


@dataclass(frozen=True)
class Step:
    id: str
    name: str
    status: StepStatus = StepStatus.PENDING
    message: str | None = None


class StepTracker:
    """Owns the live step list for one run.

    Observers only ever see tuples of frozen Step objects, never the list
    itself. Once a step has failed the tracker refuses further transitions.
    """

    def __init__(self, definitions, on_progress=None):
        self._steps = [Step(id=step_id, name=name) for step_id, name in definitions]
        self._on_progress = on_progress
        self._failed = False

    def snapshot(self):
        return tuple(self._steps)

    def get(self, step_id) -> Step:
        for step in self._steps:
            if step.id == step_id:
                return step
        raise KeyError(step_id)

    def update(self, step_id, status, message=None):
        if self._failed:
            raise RuntimeError(f"Run already failed; refusing to move '{step_id}' to {status.value}")
        index = next(i for i, s in enumerate(self._steps) if s.id == step_id)
        self._steps[index] = replace(self._steps[index], status=status, message=message)
        if status is StepStatus.ERROR:
            self._failed = True
        if self._on_progress is not None:
            self._on_progress(self.snapshot())

    def skip(self, step_id, message):
        """Mark a step done without running anything."""
        self.update(step_id, StepStatus.DONE, message)
        logger.info(f"{self.get(step_id).name}: {message}")

    async def run(self, step_id, fn, success_message=None):
        """Run one step: running -> done, or running -> error and raise StepError.

        Args:
            fn: zero-argument coroutine function producing the step result.
            success_message: string, or callable(result) -> string, for the done state.
        """
        step = self.get(step_id)
        self.update(step_id, StepStatus.RUNNING)
        logger.info(f"{step.name}...")
        try:
            result = await fn()
        except Exception as e:
            message = str(e) or type(e).__name__
            self.update(step_id, StepStatus.ERROR, message)
            logger.error(f"{step.name} failed: {message}")
            raise StepError(step_id, step.name, e) from e

        message = success_message(result) if callable(success_message) else success_message
        self.update(step_id, StepStatus.DONE, message)
        if message:
            logger.info(f"{step.name}: {message}")
        return result
