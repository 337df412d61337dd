"""
Arcanum - Protocol execution engine.

Runs declarative, file-based workflow protocols: steps joined by gated
transitions, sub-workflows invoked on a bounded call stack, and trusted
step hooks (snippets). Runtime state lives in a JSON document next to
the protocol and survives restarts.

Protocol layout (under ``.opencode/protocol`` by default):
    index.yaml          name, version, default workflow, snippet registry
    workflows/*.yaml    steps and transitions
    agents/*.yaml       agent definitions extending host base agents
    rules/*.json        rule files referenced by agents
    snippets/*.py       hook functions

Quick Start:
    ```bash
    arcanum init task_loop
    arcanum validate
    arcanum run
    ```

    Or programmatically:
    ```python
    from arcanum import ArcanumEngine

    engine = ArcanumEngine("/path/to/project")
    await engine.initialize()

    result = await engine.step()
    if result is None:
        print(engine.get_status().status)  # waiting / completed
    ```
"""

__version__ = "0.1.0"

# Configuration
from arcanum.config.settings import ArcanumSettings

# Protocol documents
from arcanum.protocol.loader import ProtocolDefinition, ProtocolLoader
from arcanum.protocol.schema import (
    GateDefinition,
    GateType,
    ProtocolState,
    RunStatus,
    StepDefinition,
    TransitionDefinition,
    WorkflowDefinition,
)

# Engine
from arcanum.engine.evaluator import GateEvaluator
from arcanum.engine.fsm import FSMExecutor, TransitionResult
from arcanum.engine.lifecycle import ArcanumEngine, EngineState, EngineStatus

# State
from arcanum.state.manager import StateManager
from arcanum.state.transition_log import TransitionLog

# Snippets
from arcanum.snippets.types import (
    AbortResult,
    OkResult,
    PatchResult,
    SnippetContext,
    TransitionRequest,
)

# Exceptions
from arcanum.exceptions import ArcanumError

__all__ = [
    # Version
    "__version__",
    # Configuration
    "ArcanumSettings",
    # Protocol
    "ProtocolDefinition",
    "ProtocolLoader",
    "GateDefinition",
    "GateType",
    "ProtocolState",
    "RunStatus",
    "StepDefinition",
    "TransitionDefinition",
    "WorkflowDefinition",
    # Engine
    "GateEvaluator",
    "FSMExecutor",
    "TransitionResult",
    "ArcanumEngine",
    "EngineState",
    "EngineStatus",
    # State
    "StateManager",
    "TransitionLog",
    # Snippets
    "AbortResult",
    "OkResult",
    "PatchResult",
    "SnippetContext",
    "TransitionRequest",
    # Exceptions
    "ArcanumError",
]
