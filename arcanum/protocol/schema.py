"""
Protocol document schema using Pydantic models.

Covers every document the engine reads or writes:
- Protocol index (index.yaml)
- Workflows with steps, transitions and gates
- Agents with inheritance settings
- Runtime state (current.json) including the nesting call stack

Example workflow YAML:
```yaml
id: task_loop
steps:
  - id: decompose
    on_enter: announce
  - id: work_loop
  - id: done
    terminal: true

transitions:
  - from: decompose
    to: work_loop
    priority: 2
    gate: "state.tasks && state.tasks.length > 0"

  - from: decompose
    to: done
    priority: 1
    gate: "!state.tasks || state.tasks.length === 0"

  - from: work_loop
    to: done
    gate:
      type: criteria
      check: "state.tasks.every(t => t.status === 'done')"
```
"""

from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)

from arcanum.utils import to_display_string


# ---------------------------------------------------------------------------
# Index
# ---------------------------------------------------------------------------


class StateFormat(str, Enum):
    """On-disk layout of the runtime state."""

    SINGLE = "single"
    MULTI = "multi"


class StateConfig(BaseModel):
    """State persistence settings declared by the protocol index."""

    format: StateFormat = StateFormat.SINGLE


class SnippetDefinition(BaseModel):
    """Location of a trusted hook implementation."""

    file: str
    # Callable to invoke; falls back to ``run`` and then the snippet id
    function: Optional[str] = None
    description: Optional[str] = None


class IndexConfig(BaseModel):
    """
    Protocol index: metadata and global settings.

    Unknown keys are preserved so protocols can carry their own metadata.
    """

    model_config = ConfigDict(extra="allow")

    name: str = Field(..., min_length=1)
    version: str
    description: Optional[str] = None
    default_workflow: str = Field(..., min_length=1)
    state: StateConfig = Field(default_factory=StateConfig)
    snippets: Dict[str, SnippetDefinition] = Field(default_factory=dict)
    metadata: Optional[Dict[str, Any]] = None

    @field_validator("version", mode="before")
    @classmethod
    def coerce_version(cls, v: Any) -> Any:
        """YAML reads ``version: 1.0`` as a float."""
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return str(v)
        return v


# ---------------------------------------------------------------------------
# Workflow
# ---------------------------------------------------------------------------


class GateType(str, Enum):
    """Kinds of transition guards."""

    MANUAL = "manual"
    CRITERIA = "criteria"
    EXPRESSION = "expression"
    FILE_EXISTS = "file_exists"
    STATUS = "status"


class GateRetry(BaseModel):
    """Retry hints for hosts that poll gates. Informational only."""

    mode: Optional[Literal["fixed", "exponential"]] = None
    interval: Optional[str] = None
    max_attempts: Optional[int] = None


class GateDefinition(BaseModel):
    """
    Condition guarding a transition.

    Required fields depend on the type:
    - criteria / expression: ``check``
    - file_exists: ``path``
    - status: ``field`` and ``value``
    - manual: nothing
    """

    model_config = ConfigDict(extra="allow")

    type: GateType
    description: Optional[str] = None
    check: Optional[str] = None
    path: Optional[str] = None
    field: Optional[str] = None
    value: Optional[str] = None
    retry: Optional[GateRetry] = None

    @field_validator("value", mode="before")
    @classmethod
    def coerce_value(cls, v: Any) -> Any:
        """Status values are compared as strings; accept YAML scalars."""
        if v is None or isinstance(v, str):
            return v
        if isinstance(v, (bool, int, float)):
            return to_display_string(v)
        return v

    @model_validator(mode="after")
    def validate_gate_params(self):
        """Validate that required parameters are present for each gate type."""
        t = self.type

        if t in (GateType.CRITERIA, GateType.EXPRESSION) and not self.check:
            raise ValueError(f"{t.value} gate requires 'check'")

        if t == GateType.FILE_EXISTS and not self.path:
            raise ValueError("file_exists gate requires 'path'")

        if t == GateType.STATUS and (self.field is None or self.value is None):
            raise ValueError("status gate requires 'field' and 'value'")

        return self


class InvokeConfig(BaseModel):
    """Sub-workflow call declared on a step."""

    workflow: str = Field(..., min_length=1)
    # child input key -> dot-path into the parent state
    input: Dict[str, str] = Field(default_factory=dict)
    # parent state key -> dot-path into the child result
    output: Dict[str, str] = Field(default_factory=dict)
    # Parent step to resume at; defaults to the invoking step
    on_complete: Optional[str] = None


class StepDefinition(BaseModel):
    """A step (FSM state) within a workflow."""

    model_config = ConfigDict(extra="allow")

    id: str = Field(..., min_length=1)
    name: Optional[str] = None
    description: Optional[str] = None
    terminal: bool = False
    on_enter: Optional[str] = None
    on_exit: Optional[str] = None
    invoke: Optional[InvokeConfig] = None

    @field_validator("terminal", mode="before")
    @classmethod
    def none_is_false(cls, v: Any) -> Any:
        return False if v is None else v


class TransitionDefinition(BaseModel):
    """
    A transition between two steps.

    Lower ``priority`` values are evaluated first; ties keep declaration order.
    A bare string gate is shorthand for a criteria gate.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    from_step: str = Field(..., validation_alias=AliasChoices("from", "from_step"))
    to_step: str = Field(..., validation_alias=AliasChoices("to", "to_step"))
    priority: Optional[int] = None
    gate: Optional[Union[str, GateDefinition]] = None

    def resolved_gate(self) -> Optional[GateDefinition]:
        """Expand the string shorthand into a full gate definition."""
        if self.gate is None:
            return None
        if isinstance(self.gate, str):
            return GateDefinition(type=GateType.CRITERIA, check=self.gate)
        return self.gate

    def gate_for_log(self) -> Optional[Union[str, Dict[str, Any]]]:
        """Gate in the form recorded by the transition log."""
        if self.gate is None or isinstance(self.gate, str):
            return self.gate
        return self.gate.model_dump(mode="json", exclude_none=True)


class WorkflowDefinition(BaseModel):
    """
    Complete workflow definition.

    The first step is the initial step by convention.
    """

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    id: str = Field(..., min_length=1)
    name: Optional[str] = None
    description: Optional[str] = None
    include: Optional[Union[str, List[str]]] = None

    steps: List[StepDefinition] = Field(
        ..., validation_alias=AliasChoices("steps", "phases")
    )
    transitions: List[TransitionDefinition] = Field(default_factory=list)

    @field_validator("steps")
    @classmethod
    def validate_has_steps(cls, v: List[StepDefinition]) -> List[StepDefinition]:
        """Validate that at least one step exists and ids are unique."""
        if not v:
            raise ValueError("Workflow must declare at least one step")
        seen: set[str] = set()
        for step in v:
            if step.id in seen:
                raise ValueError(f"Duplicate step id: {step.id}")
            seen.add(step.id)
        return v

    @model_validator(mode="after")
    def validate_references(self):
        """Validate that all step references are valid."""
        step_ids = {s.id for s in self.steps}

        for t in self.transitions:
            if t.from_step not in step_ids:
                raise ValueError(f"Transition references unknown step: {t.from_step}")
            if t.to_step not in step_ids:
                raise ValueError(f"Transition references unknown step: {t.to_step}")

        return self

    @property
    def initial_step(self) -> str:
        return self.steps[0].id

    def get_step(self, step_id: str) -> Optional[StepDefinition]:
        """Get step by id."""
        for step in self.steps:
            if step.id == step_id:
                return step
        return None

    def has_step(self, step_id: str) -> bool:
        return self.get_step(step_id) is not None

    def get_terminal_steps(self) -> List[StepDefinition]:
        """Get all terminal steps."""
        return [s for s in self.steps if s.terminal]

    def get_transitions_from(self, step_id: str) -> List[TransitionDefinition]:
        """Get all transitions from a step, in declaration order."""
        return [t for t in self.transitions if t.from_step == step_id]


# ---------------------------------------------------------------------------
# Agents
# ---------------------------------------------------------------------------


class PromptMode(str, Enum):
    """How an agent's prompt combines with its base agent's prompt."""

    APPEND = "append"
    PREPEND = "prepend"
    REPLACE = "replace"
    PATCH = "patch"


class ModelPolicy(str, Enum):
    INHERIT = "inherit"
    OVERRIDE = "override"


class ToolsPolicy(str, Enum):
    INHERIT = "inherit"
    ADD = "add"
    REPLACE = "replace"


class AgentModelConfig(BaseModel):
    """Concrete model settings for an agent."""

    name: str
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None


class AgentDefinition(BaseModel):
    """
    Agent role declared by a protocol.

    Agents either stand alone (own prompt) or extend a base agent provided
    by the host, merging prompts, model and tools according to their policies.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    base: Optional[str] = None
    mode: PromptMode = PromptMode.APPEND
    prompt: Optional[str] = None

    model: ModelPolicy = ModelPolicy.INHERIT
    llm_config: Optional[AgentModelConfig] = Field(
        default=None, validation_alias=AliasChoices("model_config", "llm_config")
    )

    tools: ToolsPolicy = ToolsPolicy.INHERIT
    tools_list: Optional[List[str]] = None
    skills: Optional[List[str]] = None
    rules: Optional[List[str]] = None

    @model_validator(mode="after")
    def validate_agent(self):
        if not self.base and not self.prompt:
            raise ValueError("Agent without 'base' requires 'prompt'")
        if self.model == ModelPolicy.OVERRIDE and (
            self.llm_config is None or not self.llm_config.name
        ):
            raise ValueError("Agent with model='override' requires model_config.name")
        return self


# ---------------------------------------------------------------------------
# Runtime state
# ---------------------------------------------------------------------------


class RunStatus(str, Enum):
    """Persisted execution status."""

    RUNNING = "running"
    WAITING = "waiting"
    HALTED = "halted"
    COMPLETED = "completed"
    FAILED = "failed"


class CallStackEntry(BaseModel):
    """A paused parent workflow."""

    model_config = ConfigDict(populate_by_name=True)

    workflow: str
    step: str = Field(..., validation_alias=AliasChoices("step", "phase"))
    resume_to: Optional[str] = None
    # parent state key -> dot-path into the child result
    output_mapping: Optional[Dict[str, str]] = None


class NestedState(BaseModel):
    """Descriptor of the child invocation currently in flight."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    workflow: str
    step: str = Field(..., validation_alias=AliasChoices("step", "phase"))
    status: RunStatus = RunStatus.RUNNING
    input: Dict[str, Any] = Field(default_factory=dict)
    depth: int = Field(default=1, ge=1)
    result: Optional[Dict[str, Any]] = None


class ProtocolState(BaseModel):
    """
    Runtime state persisted between ticks.

    Core fields are typed; anything else (``tasks``, ``current_task_id``,
    sprint data, child outputs) is carried as passthrough extra fields.
    The depth/call-stack invariant is asserted by the state manager, not
    here, so a violating document can still be parsed and reported.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    workflow: str = Field(..., min_length=1)
    step: str = Field(
        ..., min_length=1, validation_alias=AliasChoices("step", "phase")
    )
    status: RunStatus = RunStatus.RUNNING
    updated_at: Optional[str] = None
    depth: int = Field(default=0, ge=0)
    call_stack: List[CallStackEntry] = Field(default_factory=list)
    nested: Optional[NestedState] = None
    # One-shot marker set when a child returns; cleared by the next tick
    child_result: Optional[Dict[str, Any]] = None

    @field_validator("call_stack", mode="before")
    @classmethod
    def none_is_empty(cls, v: Any) -> Any:
        return [] if v is None else v

    @property
    def extra(self) -> Dict[str, Any]:
        """Passthrough fields the engine does not interpret."""
        return dict(self.model_extra or {})

    def to_document(self) -> Dict[str, Any]:
        """JSON-ready document as written to disk."""
        data = self.model_dump(mode="json")
        for key in ("updated_at", "nested", "child_result"):
            if data.get(key) is None:
                data.pop(key, None)
        # Optional bookkeeping keys are omitted rather than written as null;
        # passthrough values are kept exactly as given.
        data["call_stack"] = [
            entry.model_dump(mode="json", exclude_none=True)
            for entry in self.call_stack
        ]
        if self.nested is not None:
            data["nested"] = self.nested.model_dump(mode="json", exclude_none=True)
        return data

    def as_mapping(self) -> Dict[str, Any]:
        """Plain mapping view used by gates, hooks and path resolution."""
        return self.to_document()

    def is_consistent(self) -> bool:
        return self.depth == len(self.call_stack)
