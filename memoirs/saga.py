"""
Ordered multi-step writes with compensating actions.

Each step runs against a shared context dict and stores its return value
under its own name. When a step fails, the steps that already completed are
compensated in reverse order and the outcome records what happened.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from memoirs.errors import MemoirsError
from memoirs.results import BACKEND_ERRORS

logger = logging.getLogger(__name__)

Action = Callable[[dict], Any]
Compensation = Callable[[dict, Any], None]


@dataclass
class SagaStep:
    name: str
    action: Action
    compensate: Optional[Compensation] = None
    # Also undo a step that failed partway (its result is passed as None).
    compensate_on_failure: bool = False


@dataclass
class SagaOutcome:
    context: dict
    completed: list[str] = field(default_factory=list)
    failed_step: Optional[str] = None
    error: Optional[str] = None
    compensated: list[str] = field(default_factory=list)
    compensation_errors: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.failed_step is None


class Saga:
    def __init__(self, name: str):
        self.name = name
        self.steps: list[SagaStep] = []

    def step(
        self,
        name: str,
        action: Action,
        compensate: Optional[Compensation] = None,
        *,
        compensate_on_failure: bool = False,
    ) -> "Saga":
        if any(existing.name == name for existing in self.steps):
            raise ValueError(f"Duplicate saga step {name}")
        self.steps.append(
            SagaStep(
                name=name,
                action=action,
                compensate=compensate,
                compensate_on_failure=compensate_on_failure,
            )
        )
        return self

    def run(self, context: Optional[dict] = None) -> SagaOutcome:
        outcome = SagaOutcome(context=context if context is not None else {})
        done: list[SagaStep] = []
        for step in self.steps:
            try:
                outcome.context[step.name] = step.action(outcome.context)
            except (MemoirsError, *BACKEND_ERRORS) as exc:
                logger.warning("[%s] step %s failed: %s", self.name, step.name, exc)
                outcome.failed_step = step.name
                outcome.error = getattr(exc, "message", None) or str(exc)
                if step.compensate_on_failure:
                    outcome.context[step.name] = None
                    done.append(step)
                self._compensate(done, outcome)
                return outcome
            done.append(step)
            outcome.completed.append(step.name)
        logger.info("[%s] completed %d steps", self.name, len(done))
        return outcome

    def _compensate(self, done: list[SagaStep], outcome: SagaOutcome) -> None:
        for step in reversed(done):
            if step.compensate is None:
                continue
            try:
                step.compensate(outcome.context, outcome.context.get(step.name))
            except (MemoirsError, *BACKEND_ERRORS) as exc:
                logger.error(
                    "[%s] compensation for %s failed: %s", self.name, step.name, exc
                )
                outcome.compensation_errors.append(step.name)
                continue
            outcome.compensated.append(step.name)
