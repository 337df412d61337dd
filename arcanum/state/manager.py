"""
Persisted runtime state.

The state manager owns ``current.json`` (or ``workflow.json`` in multi
format) under the state directory. Every write goes through a temp file
plus ``os.replace`` so a reader never sees a half-written document, even
if the process dies mid-write.

There is no locking: one engine instance is the single writer for a
project directory.
"""

import asyncio
import copy
import json
import logging
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from pydantic import ValidationError

from arcanum.exceptions import (
    MaxNestingDepthExceededError,
    NotNestedError,
    SchemaValidationError,
    StateConsistencyError,
    StateNotFoundError,
)
from arcanum.protocol.loader import format_validation_error
from arcanum.protocol.schema import (
    CallStackEntry,
    NestedState,
    ProtocolState,
    RunStatus,
    StateFormat,
)

logger = logging.getLogger(__name__)

MAX_NESTING_DEPTH = 10
DEFAULT_STATE_DIR = Path(".opencode") / "state"

STATE_FILENAMES = {
    StateFormat.SINGLE: "current.json",
    # Multi format currently stores the same single document
    StateFormat.MULTI: "workflow.json",
}


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def atomic_write_text(path: Path, content: str) -> None:
    """
    Write ``content`` to ``path`` atomically.

    Writes a temporary sibling file, fsyncs it and renames it over the
    target with ``os.replace``.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(
        dir=str(path.parent),
        prefix=f".{path.name}.",
        suffix=".tmp",
    )
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(content)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_path, str(path))
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


def _check_consistency(state: ProtocolState, path: Path) -> None:
    if not state.is_consistent():
        raise StateConsistencyError(
            f"State consistency error: depth ({state.depth}) does not match "
            f"call_stack length ({len(state.call_stack)})",
            context={"path": str(path)},
        )


class StateManager:
    """
    Load, validate and atomically persist ProtocolState.

    The manager remembers the last document it loaded or saved;
    ``get_state()`` hands out deep copies of it, and mutating operations
    re-read the file before writing.

    Example:
        ```python
        manager = StateManager(project_dir)
        await manager.initialize("task_loop", "decompose")
        await manager.merge({"tasks": [{"id": "1", "status": "pending"}]})
        state = await manager.get_state()
        ```
    """

    def __init__(
        self,
        project_dir: Union[str, Path],
        format: Union[str, StateFormat] = StateFormat.SINGLE,
        state_dir: Optional[Union[str, Path]] = None,
        max_depth: int = MAX_NESTING_DEPTH,
    ):
        self.project_dir = Path(project_dir)
        self.format = StateFormat(format)
        state_dir = Path(state_dir) if state_dir is not None else DEFAULT_STATE_DIR
        self.state_dir = state_dir if state_dir.is_absolute() else self.project_dir / state_dir
        self.max_depth = max_depth
        self._current: Optional[ProtocolState] = None

    @property
    def state_path(self) -> Path:
        return self.state_dir / STATE_FILENAMES[self.format]

    # ------------------------------------------------------------------
    # Load / save
    # ------------------------------------------------------------------

    def _read(self) -> ProtocolState:
        path = self.state_path
        try:
            content = path.read_text(encoding="utf-8")
        except FileNotFoundError as e:
            raise StateNotFoundError(
                "State not initialized. Run the workflow first.",
                context={"path": str(path)},
            ) from e

        try:
            data = json.loads(content)
        except json.JSONDecodeError as e:
            raise SchemaValidationError(
                f"Invalid state file {path}: {e}", context={"path": str(path)}
            ) from e

        try:
            state = ProtocolState.model_validate(data)
        except ValidationError as e:
            raise SchemaValidationError(
                f"Invalid state file {path}: {format_validation_error(e)}",
                context={"path": str(path)},
            ) from e

        _check_consistency(state, path)
        return state

    async def load(self) -> ProtocolState:
        """
        Read the state file from disk.

        Raises:
            StateNotFoundError: If no state has been written yet
            SchemaValidationError: If the document is not valid state
            StateConsistencyError: If depth != len(call_stack)
        """
        state = await asyncio.to_thread(self._read)
        self._current = state
        return state.model_copy(deep=True)

    async def save(self, state: Union[ProtocolState, Dict[str, Any]]) -> ProtocolState:
        """
        Stamp ``updated_at``, re-validate and atomically write the state.

        Returns:
            The validated state as written
        """
        data = state.to_document() if isinstance(state, ProtocolState) else dict(state)
        data["updated_at"] = utc_now_iso()
        validated = self._validate(data)

        content = json.dumps(validated.to_document(), indent=2)
        await asyncio.to_thread(atomic_write_text, self.state_path, content)
        self._current = validated
        return validated.model_copy(deep=True)

    def _validate(self, data: Dict[str, Any]) -> ProtocolState:
        try:
            validated = ProtocolState.model_validate(data)
        except ValidationError as e:
            raise SchemaValidationError(
                f"Refusing to save invalid state: {format_validation_error(e)}"
            ) from e
        _check_consistency(validated, self.state_path)
        return validated

    async def get_state(self) -> ProtocolState:
        """Last loaded or saved state, reading from disk if nothing is known yet."""
        if self._current is None:
            return await self.load()
        return self._current.model_copy(deep=True)

    def peek(self) -> Optional[ProtocolState]:
        """Last known state without touching the disk, or None."""
        return self._current.model_copy(deep=True) if self._current else None

    async def exists(self) -> bool:
        return await asyncio.to_thread(self.state_path.is_file)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def initialize(self, workflow_id: str, initial_step: str) -> ProtocolState:
        """Create fresh depth-0 state for a workflow."""
        state = ProtocolState(
            workflow=workflow_id,
            step=initial_step,
            status=RunStatus.RUNNING,
            depth=0,
            call_stack=[],
        )
        logger.info(f"Initialized state for workflow '{workflow_id}' at '{initial_step}'")
        return await self.save(state)

    async def update(self, **fields: Any) -> ProtocolState:
        return await self.merge(fields)

    async def update_step(self, step: str) -> ProtocolState:
        return await self.merge({"step": step})

    async def update_status(self, status: Union[str, RunStatus]) -> ProtocolState:
        return await self.merge({"status": RunStatus(status).value})

    async def preview(self, patch: Dict[str, Any]) -> ProtocolState:
        """
        Validate the persisted document with ``patch`` merged in, without writing.

        Raises:
            SchemaValidationError: If the merged document is not valid state
            StateConsistencyError: If the merge breaks depth == len(call_stack)
        """
        state = await self.load()
        data = state.to_document()
        data.update(copy.deepcopy(patch))
        return self._validate(data)

    async def merge(self, patch: Dict[str, Any]) -> ProtocolState:
        """Shallow-merge ``patch`` into the persisted document and save."""
        return await self.save(await self.preview(patch))

    # ------------------------------------------------------------------
    # Nesting
    # ------------------------------------------------------------------

    async def invoke_child(
        self,
        child_workflow: str,
        child_initial_step: str,
        input: Optional[Dict[str, Any]] = None,
        resume_to: Optional[str] = None,
        output_mapping: Optional[Dict[str, str]] = None,
    ) -> ProtocolState:
        """
        Push the current workflow onto the call stack and switch to a child.

        Raises:
            MaxNestingDepthExceededError: If the stack already holds
                ``max_depth`` entries. The state is left untouched.
        """
        state = await self.load()

        if len(state.call_stack) >= self.max_depth:
            raise MaxNestingDepthExceededError(
                f"Maximum nesting depth ({self.max_depth}) exceeded",
                context={"workflow": state.workflow, "child": child_workflow},
            )

        state.call_stack.append(
            CallStackEntry(
                workflow=state.workflow,
                step=state.step,
                resume_to=resume_to,
                output_mapping=output_mapping or None,
            )
        )
        state.depth = len(state.call_stack)
        state.nested = NestedState(
            workflow=child_workflow,
            step=child_initial_step,
            status=RunStatus.RUNNING,
            input=dict(input or {}),
            depth=state.depth,
        )
        state.workflow = child_workflow
        state.step = child_initial_step
        state.status = RunStatus.RUNNING

        logger.debug(f"Invoked child '{child_workflow}' at depth {state.depth}")
        return await self.save(state)

    async def return_to_parent(
        self,
        result: Optional[Dict[str, Any]] = None,
        child_result: Optional[Dict[str, Any]] = None,
    ) -> ProtocolState:
        """
        Pop the call stack and resume the parent workflow.

        ``result`` fields are merged into the state. ``child_result`` (the
        child's raw output, defaulting to ``result``) is recorded as the
        one-shot ``child_result`` marker, which stops the engine from
        invoking the same child again on the next tick.

        Raises:
            NotNestedError: If the call stack is empty
        """
        state = await self.load()
        if not state.call_stack:
            raise NotNestedError("Cannot return to parent: not in a nested workflow")

        parent = state.call_stack[-1]
        result = dict(result or {})

        data = state.to_document()
        data.update(copy.deepcopy(result))
        data["workflow"] = parent.workflow
        data["step"] = parent.resume_to or parent.step
        data["status"] = RunStatus.RUNNING.value
        data["call_stack"] = data["call_stack"][:-1]
        data["depth"] = len(data["call_stack"])
        data.pop("nested", None)
        data["child_result"] = copy.deepcopy(result if child_result is None else child_result)

        logger.debug(
            f"Returned to parent '{parent.workflow}' at '{data['step']}' "
            f"(depth {data['depth']})"
        )
        return await self.save(data)

    async def is_nested(self) -> bool:
        return (await self.load()).depth > 0

    async def get_depth(self) -> int:
        return (await self.load()).depth

    async def get_call_stack(self) -> List[CallStackEntry]:
        return (await self.load()).call_stack

    async def reset(self) -> None:
        """Delete the state file and forget the remembered state."""

        def _unlink() -> None:
            for name in STATE_FILENAMES.values():
                (self.state_dir / name).unlink(missing_ok=True)

        await asyncio.to_thread(_unlink)
        self._current = None
        logger.info(f"Reset state in {self.state_dir}")
