"""
Ordered multi-step workflows with compensation.

A saga is a list of steps, each an action paired with an optional
compensation that undoes it. ``run_saga`` executes the actions in order; if
one fails, the compensations of every step that already succeeded run in
reverse order and the failure is re-raised as ``SagaError``.

Compensation is best-effort: a failing compensation is logged and the
remaining ones still run.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable

from proxicloud.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class SagaStep:
    """One action and the callable that undoes it."""

    name: str
    action: Callable[[], Any]
    compensation: Callable[[], Any] | None = None


class SagaError(Exception):
    """A saga step failed; completed steps have been compensated."""

    def __init__(self, step: str, cause: BaseException):
        self.step = step
        self.cause = cause
        super().__init__(f"step '{step}' failed: {cause}")


def run_saga(steps: list[SagaStep]) -> dict[str, Any]:
    """
    Run saga steps in order.

    Args:
        steps: Steps to execute.

    Returns:
        Mapping of step name -> value returned by its action.

    Raises:
        SagaError: If any action raises. Compensations of the steps that
            completed before it have run (in reverse order) by then.
    """
    results: dict[str, Any] = {}
    completed: list[SagaStep] = []

    for step in steps:
        logger.debug(f"Saga step '{step.name}' starting")
        try:
            results[step.name] = step.action()
        except Exception as e:
            logger.error(f"Saga step '{step.name}' failed: {e}")
            _compensate(completed)
            raise SagaError(step.name, e) from e
        completed.append(step)

    return results


def _compensate(completed: list[SagaStep]) -> None:
    """Undo completed steps, newest first."""
    for step in reversed(completed):
        if step.compensation is None:
            continue
        logger.info(f"Compensating saga step '{step.name}'")
        try:
            step.compensation()
        except Exception as e:
            logger.warning(f"Compensation for step '{step.name}' failed: {e}")
