"""Funding saga: ordered steps, each with a compensating action."""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional


logger = logging.getLogger(__name__)


@dataclass
class SagaStep:
    """One forward action and how to undo it."""

    name: str
    action: Callable[[Dict[str, Any]], Any]
    compensation: Optional[Callable[[Dict[str, Any]], None]] = None


@dataclass
class FundingSaga:
    """
    Runs steps in order, sharing a context dict.

    Each step's return value is stored in the context under the step name.
    When a step raises, compensations for the steps that already ran are
    executed in reverse order and the original exception is re-raised.
    """

    name: str
    steps: List[SagaStep] = field(default_factory=list)
    context: Dict[str, Any] = field(default_factory=dict)
    completed: List[str] = field(default_factory=list)

    def add_step(
        self,
        name: str,
        action: Callable[[Dict[str, Any]], Any],
        compensation: Optional[Callable[[Dict[str, Any]], None]] = None,
    ) -> "FundingSaga":
        self.steps.append(SagaStep(name=name, action=action, compensation=compensation))
        return self

    def run(self) -> Dict[str, Any]:
        executed: List[SagaStep] = []
        for step in self.steps:
            try:
                self.context[step.name] = step.action(self.context)
            except Exception as e:
                logger.warning(f"Saga {self.name} failed at step '{step.name}': {e}")
                self.compensate(executed, failed_step=step)
                raise
            executed.append(step)
            self.completed.append(step.name)
        return self.context

    def compensate(self, executed: List[SagaStep], failed_step: SagaStep) -> None:
        # The failed step may have partially applied, so it is compensated too
        for step in reversed(executed + [failed_step]):
            if step.compensation is None:
                continue
            try:
                step.compensation(self.context)
            except Exception as e:
                logger.error(f"Saga {self.name} compensation '{step.name}' failed: {e}")
