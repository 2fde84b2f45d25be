"""Plan runner: sequences steps and collects the files they touched."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import List, Set

from ..errors import PlanParseError
from ..planning.schema import Step
from .steps import StepExecutor, StepOutcome

__all__ = ["PlanRunner"]


LOGGER = logging.getLogger(__name__)


class PlanRunner:
    """Run steps in array order through a shared :class:`StepExecutor`.

    The index only advances once the current step is succeeded or skipped.
    Cancellation propagates as :class:`ExecutionCancelledError` and is left
    for the caller to unwind.
    """

    def __init__(self, executor: StepExecutor) -> None:
        self._executor = executor
        self.outcomes: List[StepOutcome] = []

    @property
    def executor(self) -> StepExecutor:
        return self._executor

    def run(self, steps: Sequence[Step]) -> Set[str]:
        """Execute ``steps`` and return the workspace-relative paths created or modified."""
        if not steps:
            raise PlanParseError("Plan contains no steps.")

        cancel = self._executor.context.cancel
        affected: Set[str] = set()
        total = len(steps)
        for index, step in enumerate(steps):
            cancel.raise_if_cancelled()
            outcome = self._executor.execute(step, index, total)
            self.outcomes.append(outcome)
            affected.update(outcome.affected_paths)
        LOGGER.info("Executed %d step(s); %d file(s) affected.", total, len(affected))
        return affected
