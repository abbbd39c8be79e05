"""Compensating saga for multi-step ledger operations.

The ledger store commits record by record, so an operation that touches
several records is declared as an ordered list of steps. Critical steps carry
an optional compensation; when a critical step fails, the compensations of
the critical steps that already ran are executed in reverse order and the
original error is re-raised. Non-critical steps form a best-effort tail: they
run only after every critical step succeeded and a failure there is logged
without undoing anything.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger("ecoswap.saga")

Action = Callable[[dict], Awaitable[Any]]


@dataclass
class SagaStep:
    name: str
    action: Action
    compensation: Optional[Action] = None
    critical: bool = True


@dataclass
class SagaResult:
    context: dict
    completed: list[str] = field(default_factory=list)
    tail_failures: list[str] = field(default_factory=list)

    @property
    def clean(self) -> bool:
        return not self.tail_failures


class Saga:
    """Run steps in order, sharing a context dict between them.

    Each action receives the context and its return value is stored under
    ``context[step.name]`` so later steps and compensations can use it.
    """

    def __init__(self, name: str, steps: list[SagaStep] | None = None):
        self.name = name
        self.steps: list[SagaStep] = list(steps or [])

    def step(self, name: str, action: Action, compensation: Optional[Action] = None, *, critical: bool = True) -> "Saga":
        self.steps.append(SagaStep(name, action, compensation, critical))
        return self

    async def run(self, context: dict | None = None) -> SagaResult:
        result = SagaResult(context=dict(context or {}))
        done: list[SagaStep] = []
        critical = [s for s in self.steps if s.critical]
        tail = [s for s in self.steps if not s.critical]

        for step in critical:
            try:
                result.context[step.name] = await step.action(result.context)
            except Exception as exc:
                logger.warning("SAGA_STEP_FAIL saga=%s step=%s error=%r", self.name, step.name, exc)
                await self._compensate(done, result.context)
                raise
            done.append(step)
            result.completed.append(step.name)

        for step in tail:
            try:
                result.context[step.name] = await step.action(result.context)
                result.completed.append(step.name)
            except Exception as exc:
                logger.error("SAGA_TAIL_FAIL saga=%s step=%s error=%r", self.name, step.name, exc)
                result.tail_failures.append(step.name)
        return result

    async def _compensate(self, done: list[SagaStep], context: dict) -> None:
        for step in reversed(done):
            if step.compensation is None:
                continue
            try:
                await step.compensation(context)
                logger.info("SAGA_COMPENSATED saga=%s step=%s", self.name, step.name)
            except Exception:
                logger.exception("SAGA_COMPENSATION_FAIL saga=%s step=%s", self.name, step.name)
