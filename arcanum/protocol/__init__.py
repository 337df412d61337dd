"""
Protocol documents: schema models and the directory loader.

``arcanum.protocol.validation`` is imported separately; it depends on the
engine and agent packages.
"""

from arcanum.protocol.loader import (
    DEFAULT_PROTOCOL_DIR,
    ProtocolDefinition,
    ProtocolLoader,
)
from arcanum.protocol.schema import (
    AgentDefinition,
    CallStackEntry,
    GateDefinition,
    GateType,
    IndexConfig,
    InvokeConfig,
    NestedState,
    ProtocolState,
    RunStatus,
    SnippetDefinition,
    StateFormat,
    StepDefinition,
    TransitionDefinition,
    WorkflowDefinition,
)

__all__ = [
    "DEFAULT_PROTOCOL_DIR",
    "ProtocolDefinition",
    "ProtocolLoader",
    "AgentDefinition",
    "CallStackEntry",
    "GateDefinition",
    "GateType",
    "IndexConfig",
    "InvokeConfig",
    "NestedState",
    "ProtocolState",
    "RunStatus",
    "SnippetDefinition",
    "StateFormat",
    "StepDefinition",
    "TransitionDefinition",
    "WorkflowDefinition",
]
