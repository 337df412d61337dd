"""
FSM executor.

Holds a workflow definition and the current step pointer. It does not
persist anything; the engine writes every accepted transition through
the state manager.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from arcanum.engine.evaluator import GateEvaluator
from arcanum.exceptions import GateBlockedError, NoSuchTransitionError
from arcanum.protocol.schema import (
    InvokeConfig,
    StepDefinition,
    TransitionDefinition,
    WorkflowDefinition,
)

logger = logging.getLogger(__name__)


class TransitionOutcome(Enum):
    """Why a transition attempt ended the way it did."""

    SUCCESS = "success"
    NO_SUCH_TRANSITION = "no_such_transition"
    GATE_BLOCKED = "gate_blocked"
    ABORTED = "aborted"
    INVALID = "invalid"


@dataclass
class TransitionResult:
    """Outcome of a single step(), invoke or return."""

    success: bool
    from_step: str
    to_step: str
    error: Optional[str] = None
    outcome: TransitionOutcome = TransitionOutcome.SUCCESS

    @classmethod
    def failed(
        cls,
        from_step: str,
        to_step: str,
        error: str,
        outcome: TransitionOutcome = TransitionOutcome.INVALID,
    ) -> "TransitionResult":
        return cls(False, from_step, to_step, error=error, outcome=outcome)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "success": self.success,
            "from": self.from_step,
            "to": self.to_step,
        }
        if self.error is not None:
            data["error"] = self.error
        return data


@dataclass
class InvokeCheck:
    """Whether the current step wants to call a sub-workflow."""

    should_invoke: bool
    config: Optional[InvokeConfig] = None


def _priority(transition: TransitionDefinition) -> int:
    return transition.priority if transition.priority is not None else 0


def initial_step(workflow: WorkflowDefinition) -> str:
    """First declared step of a workflow."""
    if not workflow.steps:
        raise ValueError(f"Workflow '{workflow.id}' has no steps")
    return workflow.steps[0].id


class FSMExecutor:
    """
    Step pointer plus gate-checked transitions for one workflow.

    Example:
        ```python
        fsm = FSMExecutor(workflow, GateEvaluator(project_dir), "decompose")
        available = await fsm.get_available_transitions(state)
        if available:
            await fsm.transition(available[0].to_step, state)
        ```
    """

    def __init__(
        self,
        workflow: WorkflowDefinition,
        evaluator: GateEvaluator,
        current_step: Optional[str] = None,
    ):
        self.workflow = workflow
        self.evaluator = evaluator
        self._current_step = current_step or initial_step(workflow)
        if not workflow.has_step(self._current_step):
            raise ValueError(
                f"Unknown step '{self._current_step}' in workflow '{workflow.id}'"
            )

    @property
    def current_step(self) -> str:
        return self._current_step

    @property
    def current_step_definition(self) -> StepDefinition:
        step = self.workflow.get_step(self._current_step)
        assert step is not None
        return step

    def outgoing_transitions(self) -> List[TransitionDefinition]:
        """Transitions out of the current step, by priority then declaration order."""
        # sorted() is stable, so ties keep declaration order
        return sorted(
            self.workflow.get_transitions_from(self._current_step), key=_priority
        )

    def find_transition(
        self, from_step: str, to_step: str
    ) -> Optional[TransitionDefinition]:
        for t in self.workflow.transitions:
            if t.from_step == from_step and t.to_step == to_step:
                return t
        return None

    async def get_available_transitions(
        self, state: Mapping[str, Any]
    ) -> List[TransitionDefinition]:
        """Transitions whose gates pass right now, highest priority first."""
        available = []
        for t in self.outgoing_transitions():
            if await self.evaluator.evaluate(t.resolved_gate(), state):
                available.append(t)
        return available

    async def can_transition(
        self,
        to_step: str,
        state: Mapping[str, Any],
        manual_approved: bool = False,
    ) -> bool:
        t = self.find_transition(self._current_step, to_step)
        if t is None:
            return False
        return await self.evaluator.evaluate(
            t.resolved_gate(), state, manual_approved=manual_approved
        )

    async def transition(
        self,
        to_step: str,
        state: Mapping[str, Any],
        manual_approved: bool = False,
    ) -> TransitionResult:
        """
        Move the step pointer to ``to_step``.

        Raises:
            NoSuchTransitionError: If no transition is declared
            GateBlockedError: If the transition's gate does not pass
        """
        from_step = self._current_step
        t = self.find_transition(from_step, to_step)
        if t is None:
            raise NoSuchTransitionError(
                f"No transition from '{from_step}' to '{to_step}'",
                from_step,
                to_step,
                context={"workflow": self.workflow.id},
            )

        passed = await self.evaluator.evaluate(
            t.resolved_gate(), state, manual_approved=manual_approved
        )
        if not passed:
            raise GateBlockedError(
                f"Gate blocked transition from '{from_step}' to '{to_step}'",
                from_step,
                to_step,
                context={"workflow": self.workflow.id, "gate": t.gate_for_log()},
            )

        self._current_step = to_step
        logger.debug(f"[{self.workflow.id}] {from_step} -> {to_step}")
        return TransitionResult(True, from_step, to_step)

    def is_terminal(self) -> bool:
        return self.current_step_definition.terminal

    def check_invoke(self) -> InvokeCheck:
        invoke = self.current_step_definition.invoke
        return InvokeCheck(should_invoke=invoke is not None, config=invoke)
