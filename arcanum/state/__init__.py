"""Persisted runtime state and transition history."""

from arcanum.state.manager import (
    DEFAULT_STATE_DIR,
    MAX_NESTING_DEPTH,
    StateManager,
    atomic_write_text,
)
from arcanum.state.transition_log import (
    TransitionLog,
    TransitionLogEntry,
    TransitionType,
)

__all__ = [
    "DEFAULT_STATE_DIR",
    "MAX_NESTING_DEPTH",
    "StateManager",
    "atomic_write_text",
    "TransitionLog",
    "TransitionLogEntry",
    "TransitionType",
]
