"""Ordered steps with compensating actions.

Steps run in order. When step N raises, the undo actions of steps N-1..1
run in reverse and the original exception is re-raised with the names of
the compensated steps attached as ``rolled_back_steps``. A failing undo is
logged and does not stop the remaining undos.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import structlog


logger = structlog.get_logger(__name__)


def _noop() -> None:
    return None


@dataclass
class SagaStep:
    name: str
    do: Callable[[], Any]
    undo: Callable[[], Any] = _noop


@dataclass
class SagaResult:
    completed: list[str] = field(default_factory=list)
    results: dict[str, Any] = field(default_factory=dict)


class Saga:
    def __init__(self, name: str, steps: list[SagaStep] | None = None) -> None:
        self.name = name
        self.steps: list[SagaStep] = list(steps or [])

    def step(self, name: str, do: Callable[[], Any], undo: Callable[[], Any] = _noop) -> "Saga":
        self.steps.append(SagaStep(name, do, undo))
        return self

    def run(self) -> SagaResult:
        result = SagaResult()
        for step in self.steps:
            try:
                result.results[step.name] = step.do()
            except Exception as exc:
                logger.warning(
                    "saga_step_failed",
                    saga=self.name,
                    step=step.name,
                    error=repr(exc),
                )
                undone, failed = self._compensate(result.completed)
                exc.rolled_back_steps = tuple(undone)  # type: ignore[attr-defined]
                exc.compensation_failures = tuple(failed)  # type: ignore[attr-defined]
                raise
            result.completed.append(step.name)
        return result

    def _compensate(self, completed: list[str]) -> tuple[list[str], list[str]]:
        by_name = {step.name: step for step in self.steps}
        undone: list[str] = []
        failed: list[str] = []
        for name in reversed(completed):
            try:
                by_name[name].undo()
            except Exception as exc:
                logger.error(
                    "saga_compensation_failed",
                    saga=self.name,
                    step=name,
                    error=repr(exc),
                )
                failed.append(name)
                continue
            undone.append(name)
        return undone, failed
