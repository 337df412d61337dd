"""
Execution engine: gate expressions, gate evaluation, the FSM executor
and the engine lifecycle.
"""

from arcanum.engine.evaluator import GateEvaluator
from arcanum.engine.expressions import (
    ExpressionSyntaxError,
    evaluate_expression,
    parse_expression,
)
from arcanum.engine.fsm import (
    FSMExecutor,
    InvokeCheck,
    TransitionOutcome,
    TransitionResult,
    initial_step,
)
from arcanum.engine.lifecycle import ArcanumEngine, EngineState, EngineStatus

__all__ = [
    "GateEvaluator",
    "ExpressionSyntaxError",
    "evaluate_expression",
    "parse_expression",
    "FSMExecutor",
    "InvokeCheck",
    "TransitionOutcome",
    "TransitionResult",
    "initial_step",
    "ArcanumEngine",
    "EngineState",
    "EngineStatus",
]
