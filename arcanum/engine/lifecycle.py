"""
Arcanum engine lifecycle.

The engine ties the loader, state manager, gate evaluator, FSM executor
and hook runner together. Each ``step()`` call is one external tick:

1. If the state carries the one-shot child-result marker, clear it.
   Otherwise, if the current step declares ``invoke``, call the child
   workflow and return.
2. On a terminal step, return to the parent workflow when nested, else
   mark the run ``completed``.
3. With no passing transition, mark the run ``waiting``.
4. Otherwise take the highest-priority transition, running the source
   step's ``on_exit`` before the commit and the target's ``on_enter``
   after it.

Calls into one engine must be serialized by the caller; there is no
internal locking.
"""

import asyncio
import functools
import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from arcanum.config.settings import ArcanumSettings
from arcanum.engine.evaluator import GateEvaluator
from arcanum.engine.fsm import (
    FSMExecutor,
    TransitionOutcome,
    TransitionResult,
    initial_step,
)
from arcanum.exceptions import (
    ArcanumError,
    EngineNotReadyError,
    EngineStateError,
    InvalidResumeStepError,
    NoSuchTransitionError,
    NotNestedError,
    StateConsistencyError,
    StateNotFoundError,
    TransitionError,
)
from arcanum.protocol.loader import ProtocolDefinition, ProtocolLoader
from arcanum.protocol.schema import (
    InvokeConfig,
    ProtocolState,
    RunStatus,
    StepDefinition,
)
from arcanum.snippets.executor import HookRunner, SnippetExecutor
from arcanum.snippets.loader import SnippetLoader
from arcanum.snippets.types import (
    AbortResult,
    PatchResult,
    SnippetMeta,
    SnippetResult,
    TransitionRequest,
)
from arcanum.state.manager import StateManager
from arcanum.state.transition_log import (
    TransitionLog,
    TransitionLogEntry,
    TransitionType,
)
from arcanum.utils import resolve_path

logger = logging.getLogger(__name__)


class EngineStatus(str, Enum):
    """Engine lifecycle status. ``invoking`` is transient around child calls."""

    UNINITIALIZED = "uninitialized"
    LOADING = "loading"
    READY = "ready"
    RUNNING = "running"
    WAITING = "waiting"
    HALTED = "halted"
    COMPLETED = "completed"
    FAILED = "failed"
    INVOKING = "invoking"


HALTABLE = (
    EngineStatus.READY,
    EngineStatus.RUNNING,
    EngineStatus.WAITING,
    EngineStatus.INVOKING,
)


@dataclass
class EngineState:
    """Snapshot returned by get_status()."""

    status: EngineStatus
    workflow: Optional[str] = None
    step: Optional[str] = None
    depth: int = 0
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "status": self.status.value,
            "workflow": self.workflow,
            "step": self.step,
            "depth": self.depth,
        }
        if self.error is not None:
            data["error"] = self.error
        return data


def require_ready(method):
    """
    Decorator to ensure the engine is initialized and has not failed.
    Raises EngineNotReadyError otherwise.
    """

    @functools.wraps(method)
    async def wrapper(self, *args, **kwargs):
        if self._status in (EngineStatus.UNINITIALIZED, EngineStatus.LOADING):
            raise EngineNotReadyError(
                f"{type(self).__name__} not initialized. Call initialize() first."
            )
        if self._status == EngineStatus.FAILED:
            raise EngineNotReadyError(f"Engine failed: {self._error}")
        return await method(self, *args, **kwargs)

    return wrapper


class ArcanumEngine:
    """
    Protocol execution engine for one project directory.

    Example:
        ```python
        engine = ArcanumEngine("/path/to/project")
        await engine.initialize()

        result = await engine.step()
        if result is None:
            print(engine.get_status().status)  # waiting / completed
        ```
    """

    def __init__(
        self,
        project_dir: Union[str, Path],
        settings: Optional[ArcanumSettings] = None,
        hook_runner: Optional[HookRunner] = None,
    ):
        self.project_dir = Path(project_dir)
        self.settings = settings or ArcanumSettings()
        self._loader = ProtocolLoader(self.settings.protocol_dir)
        self._evaluator = GateEvaluator(self.project_dir)
        self._custom_hook_runner = hook_runner

        self._protocol: Optional[ProtocolDefinition] = None
        self._state_manager: Optional[StateManager] = None
        self._transition_log: Optional[TransitionLog] = None
        self._hook_runner: Optional[HookRunner] = hook_runner
        self._fsm: Optional[FSMExecutor] = None

        self._status = EngineStatus.UNINITIALIZED
        self._error: Optional[str] = None

    # ------------------------------------------------------------------
    # Initialization
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        """
        Load the protocol and restore (or create) the runtime state.

        Fresh state starts at the default workflow's first step, whose
        ``on_enter`` hook runs exactly once. Any failure leaves the engine
        ``failed`` and is re-raised.
        """
        self._status = EngineStatus.LOADING
        self._error = None

        try:
            protocol = await asyncio.to_thread(self._loader.load, self.project_dir)
            self._protocol = protocol

            if self._custom_hook_runner is None:
                snippet_loader = SnippetLoader(
                    protocol.protocol_dir,
                    protocol.snippets,
                    snippets_dir=self.settings.engine.snippets_dir,
                )
                self._hook_runner = SnippetExecutor(snippet_loader, self.project_dir)

            state_dir = self.settings.resolve_state_dir(self.project_dir)
            self._state_manager = StateManager(
                self.project_dir,
                format=protocol.index.state.format,
                state_dir=state_dir,
                max_depth=self.settings.engine.max_nesting_depth,
            )
            self._transition_log = TransitionLog(
                state_dir, max_entries=self.settings.engine.transition_log_max_entries
            )

            fresh = False
            try:
                state = await self._state_manager.load()
            except StateNotFoundError:
                workflow = protocol.default_workflow
                state = await self._state_manager.initialize(
                    workflow.id, initial_step(workflow)
                )
                fresh = True

            self._bind_fsm(state)

            if fresh:
                await self._run_hook("on_enter", self._fsm.current_step_definition)
                state = await self._state_manager.get_state()

            if state.status == RunStatus.HALTED:
                self._status = EngineStatus.HALTED
            elif state.status == RunStatus.COMPLETED:
                self._status = EngineStatus.COMPLETED
            else:
                self._status = EngineStatus.READY

            logger.info(
                f"Engine ready: workflow '{state.workflow}' at '{state.step}' "
                f"(depth {state.depth}, status {self._status.value})"
            )
        except Exception as e:
            self._status = EngineStatus.FAILED
            self._error = str(e)
            logger.error(f"Engine initialization failed: {e}")
            raise

    def _executor_for(self, state: ProtocolState) -> FSMExecutor:
        """FSM executor positioned at the state's workflow and step."""
        workflow = self._protocol.get_workflow(state.workflow)
        if not workflow.has_step(state.step):
            raise StateConsistencyError(
                f"Step '{state.step}' not found in workflow '{workflow.id}'",
                context={"workflow": workflow.id, "step": state.step},
            )
        return FSMExecutor(workflow, self._evaluator, state.step)

    def _bind_fsm(self, state: ProtocolState) -> None:
        self._fsm = self._executor_for(state)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    @require_ready
    async def step(self) -> Optional[TransitionResult]:
        """
        Run one tick.

        Returns:
            The transition, invocation or return taken, or None when the
            run completed, is waiting on gates, or is halted
        """
        if self._status == EngineStatus.HALTED:
            logger.debug("Engine halted; step() makes no progress")
            return None

        state = await self._state_manager.get_state()

        if state.child_result is not None:
            # Just resumed from a child; do not invoke it again right away
            state = await self._state_manager.merge({"child_result": None})
        else:
            invoke = self._fsm.check_invoke()
            if invoke.should_invoke and invoke.config is not None:
                return await self._invoke(invoke.config, state)

        if self._fsm.is_terminal():
            if state.depth > 0:
                return await self._return_to_parent(state)
            self._status = EngineStatus.COMPLETED
            if state.status != RunStatus.COMPLETED:
                await self._state_manager.update_status(RunStatus.COMPLETED)
                logger.info(f"Workflow '{state.workflow}' completed at '{state.step}'")
            return None

        available = await self._fsm.get_available_transitions(state.as_mapping())
        if not available:
            self._status = EngineStatus.WAITING
            if state.status != RunStatus.WAITING:
                await self._state_manager.update_status(RunStatus.WAITING)
            return None

        return await self._commit(state, available[0].to_step)

    @require_ready
    async def request_transition(self, to_step: str) -> TransitionResult:
        """
        Directed transition to ``to_step``, bypassing the automatic scan.

        The transition must still be declared; its gate must pass, except
        that ``manual`` gates are treated as approved.
        """
        if self._status == EngineStatus.HALTED:
            raise EngineStateError("Cannot transition: engine is halted")
        state = await self._state_manager.get_state()
        return await self._commit(state, to_step, manual_approved=True)

    async def _commit(
        self,
        state: ProtocolState,
        target: str,
        manual_approved: bool = False,
    ) -> TransitionResult:
        from_step = state.step
        source = self._fsm.current_step_definition

        exit_result = await self._run_hook("on_exit", source, transition_to=target)
        if isinstance(exit_result, AbortResult):
            return TransitionResult.failed(
                from_step,
                target,
                exit_result.reason or f"on_exit hook of '{from_step}' aborted the transition",
                TransitionOutcome.ABORTED,
            )
        if isinstance(exit_result, TransitionRequest):
            logger.info(
                f"on_exit hook of '{from_step}' redirected {target} -> {exit_result.to}"
            )
            target = exit_result.to

        # Hooks may have patched the state
        current = await self._state_manager.get_state()
        try:
            result = await self._fsm.transition(
                target, current.as_mapping(), manual_approved=manual_approved
            )
        except TransitionError as e:
            outcome = (
                TransitionOutcome.NO_SUCH_TRANSITION
                if isinstance(e, NoSuchTransitionError)
                else TransitionOutcome.GATE_BLOCKED
            )
            return TransitionResult.failed(from_step, target, str(e), outcome)

        await self._state_manager.update(step=result.to_step, status=RunStatus.RUNNING.value)
        self._status = EngineStatus.RUNNING

        taken = self._fsm.find_transition(from_step, result.to_step)
        await self._transition_log.append(
            current.workflow,
            from_step,
            result.to_step,
            TransitionType.TRANSITION,
            gate=taken.gate_for_log() if taken else None,
        )
        logger.debug(f"Transitioned {current.workflow}: {from_step} -> {result.to_step}")

        enter_result = await self._run_hook("on_enter", self._fsm.current_step_definition)
        if isinstance(enter_result, (AbortResult, TransitionRequest)):
            logger.warning(
                f"Hook 'on_enter' for step '{result.to_step}' returned "
                f"'{enter_result.type}'; the transition is already committed and "
                f"is not rolled back or redirected"
            )

        return result

    async def _run_hook(
        self,
        hook_type: str,
        step: StepDefinition,
        transition_to: Optional[str] = None,
    ) -> Optional[SnippetResult]:
        hook_id = getattr(step, hook_type)
        if not hook_id or self._hook_runner is None:
            return None

        state = await self._state_manager.get_state()
        meta = SnippetMeta(
            workflow_id=state.workflow,
            step_id=step.id,
            transition_to=transition_to,
        )
        result = await self._hook_runner.execute(hook_id, state.as_mapping(), meta)
        logger.debug(f"Hook {hook_type} '{hook_id}' on '{step.id}' -> {result.type}")

        if isinstance(result, AbortResult):
            logger.info(f"Hook '{hook_id}' aborted: {result.reason}")
        if isinstance(result, PatchResult) and result.patch:
            try:
                await self._state_manager.merge(result.patch)
            except ArcanumError as e:
                logger.warning(f"Hook '{hook_id}' returned a patch that was rejected: {e}")
                return AbortResult(reason=f"Hook '{hook_id}' returned an invalid patch: {e}")
        return result

    # ------------------------------------------------------------------
    # Nesting
    # ------------------------------------------------------------------

    async def _invoke(self, config: InvokeConfig, state: ProtocolState) -> TransitionResult:
        from_step = state.step
        mapping = state.as_mapping()
        child_input = {
            child_key: resolve_path(mapping, parent_path)
            for child_key, parent_path in config.input.items()
        }

        if config.on_complete:
            parent = self._protocol.get_workflow(state.workflow)
            if not parent.has_step(config.on_complete):
                raise InvalidResumeStepError(
                    f"Invalid on_complete step '{config.on_complete}' "
                    f"in workflow '{state.workflow}'",
                    context={"workflow": state.workflow, "step": from_step},
                )

        child = self._protocol.get_workflow(config.workflow)
        child_first = initial_step(child)

        previous = self._status
        self._status = EngineStatus.INVOKING
        try:
            await self._state_manager.invoke_child(
                config.workflow,
                child_first,
                input=child_input,
                resume_to=config.on_complete,
                output_mapping=config.output or None,
            )
        except ArcanumError:
            self._status = previous
            raise

        self._fsm = FSMExecutor(child, self._evaluator, child_first)
        self._status = EngineStatus.RUNNING

        label = f"{config.workflow}:{child_first}"
        await self._transition_log.append(
            state.workflow, from_step, label, TransitionType.INVOKE
        )
        logger.info(f"Invoked '{config.workflow}' from {state.workflow}:{from_step}")
        return TransitionResult(True, from_step, label)

    async def _return_to_parent(
        self, state: ProtocolState, result: Optional[Dict[str, Any]] = None
    ) -> TransitionResult:
        from_label = f"{state.workflow}:{state.step}"

        child_result = None
        if result is None:
            child_result = dict(state.nested.result or {}) if state.nested else {}
            parent_entry = state.call_stack[-1]
            result = {
                parent_key: resolve_path(child_result, child_path)
                for parent_key, child_path in (parent_entry.output_mapping or {}).items()
            }

        self._status = EngineStatus.INVOKING
        new_state = await self._state_manager.return_to_parent(result, child_result)
        self._bind_fsm(new_state)
        self._status = EngineStatus.RUNNING

        await self._transition_log.append(
            state.workflow, from_label, new_state.step, TransitionType.RETURN
        )
        logger.info(f"Returned from '{state.workflow}' to {new_state.workflow}:{new_state.step}")
        return TransitionResult(True, from_label, new_state.step)

    @require_ready
    async def abort_child(self) -> TransitionResult:
        """
        Discard the current child workflow and resume the parent.

        The parent state receives ``aborted: true``.

        Raises:
            NotNestedError: At depth 0
        """
        state = await self._state_manager.get_state()
        if state.depth == 0:
            raise NotNestedError("Cannot abort: not in a nested workflow")
        return await self._return_to_parent(state, result={"aborted": True})

    @require_ready
    async def report_child_result(self, result: Dict[str, Any]) -> ProtocolState:
        """Record output of the running child, read on return via ``invoke.output``."""
        state = await self._state_manager.get_state()
        if state.nested is None:
            raise NotNestedError("Cannot report a child result: not in a nested workflow")
        nested = state.nested.model_dump(mode="json", exclude_none=True)
        nested["result"] = {**(state.nested.result or {}), **result}
        return await self._state_manager.merge({"nested": nested})

    # ------------------------------------------------------------------
    # Operator controls
    # ------------------------------------------------------------------

    @require_ready
    async def halt(self) -> None:
        if self._status not in HALTABLE:
            raise EngineStateError(f"Cannot halt: engine is {self._status.value}")
        await self._state_manager.update_status(RunStatus.HALTED)
        self._status = EngineStatus.HALTED
        logger.info("Engine halted")

    @require_ready
    async def resume(self) -> None:
        if self._status != EngineStatus.HALTED:
            raise EngineStateError("Cannot resume: engine is not halted")
        await self._state_manager.update_status(RunStatus.RUNNING)
        self._status = EngineStatus.RUNNING
        logger.info("Engine resumed")

    @require_ready
    async def update_state(self, patch: Dict[str, Any]) -> ProtocolState:
        """
        Merge arbitrary fields into the state and persist them.

        The merged document is checked against the protocol first; a
        patch naming an unknown workflow or step raises and writes nothing.
        """
        candidate = await self._state_manager.preview(patch)
        fsm = self._fsm
        if (
            candidate.workflow != self._fsm.workflow.id
            or candidate.step != self._fsm.current_step
        ):
            fsm = self._executor_for(candidate)
        state = await self._state_manager.save(candidate)
        self._fsm = fsm
        return state

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_state(self) -> Optional[ProtocolState]:
        if self._state_manager is None:
            return None
        return await self._state_manager.get_state()

    def get_status(self) -> EngineState:
        state = self._state_manager.peek() if self._state_manager else None
        return EngineState(
            status=self._status,
            workflow=state.workflow if state else None,
            step=state.step if state else None,
            depth=state.depth if state else 0,
            error=self._error,
        )

    def get_protocol(self) -> Optional[ProtocolDefinition]:
        return self._protocol

    @require_ready
    async def get_available_transitions(self) -> List[str]:
        state = await self._state_manager.get_state()
        available = await self._fsm.get_available_transitions(state.as_mapping())
        return [t.to_step for t in available]

    async def get_depth(self) -> int:
        if self._state_manager is None:
            return 0
        return (await self._state_manager.get_state()).depth

    async def is_nested(self) -> bool:
        return await self.get_depth() > 0

    @require_ready
    async def get_history(self, n: int = 20) -> List[TransitionLogEntry]:
        return await self._transition_log.tail(n)
