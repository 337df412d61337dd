"""
Exception hierarchy for the Arcanum engine.

Errors fall into four groups:

1. Load-time: the protocol directory or one of its documents is unusable.
   Fatal, the engine enters ``failed``.
2. State consistency: the persisted state violates the nesting bookkeeping.
   Fatal on load, never repaired automatically.
3. Transition-time: an expected, recoverable outcome local to one call
   (undeclared transition, blocked gate, nesting limit, ...).
4. Engine usage: an operation was called in the wrong lifecycle status.

Hook failures and unsupported gate expressions are deliberately absent:
those are converted to ``abort`` results and ``False`` respectively.
"""

from typing import Any, Dict, Optional


class ArcanumError(Exception):
    """Base class for all Arcanum errors."""

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.context = context or {}


# ---------------------------------------------------------------------------
# Load-time
# ---------------------------------------------------------------------------


class ProtocolNotFoundError(ArcanumError, FileNotFoundError):
    """No protocol index exists at the conventional location."""


class SchemaValidationError(ArcanumError, ValueError):
    """A protocol or state document failed structural validation."""


class WorkflowNotFoundError(ArcanumError, KeyError):
    """A workflow id does not exist in the loaded protocol."""

    def __str__(self) -> str:
        # KeyError would otherwise repr() the message
        return self.args[0] if self.args else ""


# ---------------------------------------------------------------------------
# State
# ---------------------------------------------------------------------------


class StateNotFoundError(ArcanumError, FileNotFoundError):
    """No state file has been written yet."""


class StateConsistencyError(ArcanumError):
    """The persisted depth does not match the call stack length."""


# ---------------------------------------------------------------------------
# Transition-time
# ---------------------------------------------------------------------------


class TransitionError(ArcanumError):
    """A requested transition could not be taken."""

    def __init__(
        self,
        message: str,
        from_step: str,
        to_step: str,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, context)
        self.from_step = from_step
        self.to_step = to_step


class NoSuchTransitionError(TransitionError):
    """No transition is declared between the two steps."""


class GateBlockedError(TransitionError):
    """The transition exists but its gate does not currently pass."""


class MaxNestingDepthExceededError(ArcanumError):
    """Invoking another child would exceed the nesting bound."""


class NotNestedError(ArcanumError):
    """A return or abort was requested at depth 0."""


class InvalidResumeStepError(ArcanumError):
    """An invoke block names a resume step missing from the parent workflow."""


# ---------------------------------------------------------------------------
# Engine usage
# ---------------------------------------------------------------------------


class EngineNotReadyError(ArcanumError, RuntimeError):
    """The engine is uninitialized or has failed."""


class EngineStateError(ArcanumError, RuntimeError):
    """The operation is not valid for the engine's current status."""


# ---------------------------------------------------------------------------
# Hooks and agents
# ---------------------------------------------------------------------------


class SnippetLoadError(ArcanumError):
    """A snippet could not be located, imported or is not callable."""


class AgentNotFoundError(ArcanumError, KeyError):
    """An agent or base agent id is unknown."""

    def __str__(self) -> str:
        return self.args[0] if self.args else ""
