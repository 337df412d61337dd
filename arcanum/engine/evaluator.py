"""
Gate evaluation.

Gates guard transitions. The evaluator never raises for a gate it cannot
understand: unsupported conditions evaluate to False with a warning so a
single odd gate cannot stall the whole engine.
"""

import asyncio
import logging
from pathlib import Path
from typing import Any, Mapping, Optional, Union

from arcanum.engine.expressions import MISSING, evaluate_expression
from arcanum.protocol.schema import GateDefinition, GateType
from arcanum.utils import to_display_string

logger = logging.getLogger(__name__)


def _status_string(value: Any) -> str:
    if value is MISSING:
        return "undefined"
    return to_display_string(value)


class GateEvaluator:
    """
    Evaluate gate definitions against the runtime state.

    ``manual`` gates never pass during the automatic transition scan. A
    directed transition request passes ``manual_approved=True``, which is
    how an operator moves past them.

    Example:
        ```python
        evaluator = GateEvaluator(project_dir)
        ok = await evaluator.evaluate(transition.resolved_gate(), state)
        ```
    """

    def __init__(self, project_dir: Union[str, Path]):
        self.project_dir = Path(project_dir)

    async def evaluate(
        self,
        gate: Optional[Union[str, GateDefinition]],
        state: Mapping[str, Any],
        manual_approved: bool = False,
    ) -> bool:
        """
        Evaluate a gate.

        Args:
            gate: Gate definition, bare condition string, or None (always passes)
            state: Plain mapping view of the runtime state
            manual_approved: Whether this is a directed, operator-driven request

        Returns:
            True if the transition guarded by this gate may be taken
        """
        if gate is None:
            return True
        if isinstance(gate, str):
            return evaluate_expression(gate, state)

        if gate.type == GateType.MANUAL:
            return manual_approved

        if gate.type in (GateType.CRITERIA, GateType.EXPRESSION):
            return evaluate_expression(gate.check or "", state)

        if gate.type == GateType.FILE_EXISTS:
            return await self._file_exists(gate.path or "")

        if gate.type == GateType.STATUS:
            actual = state.get(gate.field, MISSING) if gate.field else MISSING
            return _status_string(actual) == gate.value

        logger.warning(f"Unknown gate type: {gate.type}")
        return False

    async def _file_exists(self, path: str) -> bool:
        target = Path(path)
        if not target.is_absolute():
            target = self.project_dir / target
        return await asyncio.to_thread(target.exists)
