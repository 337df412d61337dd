"""Bounded, append-only history of transitions, invocations and returns."""

import asyncio
import json
import logging
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from arcanum.state.manager import atomic_write_text, utc_now_iso

logger = logging.getLogger(__name__)

LOG_FILENAME = "transitions.log.json"
DEFAULT_MAX_ENTRIES = 1000


class TransitionType(str, Enum):
    TRANSITION = "transition"
    INVOKE = "invoke"
    RETURN = "return"


class TransitionLogEntry(BaseModel):
    """One line of history. Serialized with ``from``/``to`` keys."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    ts: str
    workflow: str
    from_step: str = Field(
        ..., validation_alias=AliasChoices("from", "from_step"), serialization_alias="from"
    )
    to_step: str = Field(
        ..., validation_alias=AliasChoices("to", "to_step"), serialization_alias="to"
    )
    type: TransitionType = TransitionType.TRANSITION
    gate: Optional[Union[str, Dict[str, Any]]] = None

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class TransitionLog:
    """
    History file kept next to the state.

    The newest entry is appended last; once more than ``max_entries``
    exist the oldest are dropped in the same atomic write.
    """

    def __init__(
        self,
        state_dir: Union[str, Path],
        max_entries: int = DEFAULT_MAX_ENTRIES,
    ):
        self.path = Path(state_dir) / LOG_FILENAME
        self.max_entries = max_entries

    def _read(self) -> List[Dict[str, Any]]:
        try:
            content = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return []
        entries = json.loads(content)
        if not isinstance(entries, list):
            raise ValueError(f"Transition log {self.path} is not a JSON array")
        return entries

    def _append(self, entry: TransitionLogEntry) -> None:
        entries = self._read()
        entries.append(entry.to_document())
        if len(entries) > self.max_entries:
            entries = entries[-self.max_entries:]
        atomic_write_text(self.path, json.dumps(entries, indent=2))

    async def append(
        self,
        workflow: str,
        from_step: str,
        to_step: str,
        type: Union[str, TransitionType] = TransitionType.TRANSITION,
        gate: Optional[Union[str, Dict[str, Any]]] = None,
    ) -> TransitionLogEntry:
        entry = TransitionLogEntry(
            ts=utc_now_iso(),
            workflow=workflow,
            from_step=from_step,
            to_step=to_step,
            type=TransitionType(type),
            gate=gate,
        )
        await asyncio.to_thread(self._append, entry)
        return entry

    async def tail(self, n: int = 20) -> List[TransitionLogEntry]:
        """Last ``n`` entries, oldest first."""
        if n <= 0:
            return []
        entries = await asyncio.to_thread(self._read)
        return [TransitionLogEntry.model_validate(e) for e in entries[-n:]]

    async def clear(self) -> None:
        await asyncio.to_thread(self.path.unlink, missing_ok=True)
