"""
Directive extraction from agent responses.

Agents report progress with inline directives:

    [STATE:path.to.field=value]
    [TRANSITION:step_id]
    [TASK_DONE:task_id]   or   [COMPLETE:task_id]
    [UPDATE_TASK:task_id:field=value]
"""

import copy
import json
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from arcanum.utils import set_path

STATE_PATTERN = re.compile(r"\[STATE:([a-zA-Z0-9_.\[\]]+)=([^\]]+)\]")
TRANSITION_PATTERN = re.compile(r"\[TRANSITION:([a-zA-Z0-9_-]+)\]")
TASK_COMPLETE_PATTERN = re.compile(r"\[(?:TASK_DONE|COMPLETE):([a-zA-Z0-9_-]+)\]")
TASK_UPDATE_PATTERN = re.compile(r"\[UPDATE_TASK:([a-zA-Z0-9_-]+):([a-zA-Z0-9_]+)=([^\]]+)\]")

_NUMBER = re.compile(r"^-?\d+(\.\d+)?$")


@dataclass
class StateUpdate:
    """One requested change. ``task_id`` targets an entry of ``tasks`` by id."""

    path: str
    value: Any
    operation: str = "set"
    task_id: Optional[str] = None


@dataclass
class ParsedResponse:
    state_updates: List[StateUpdate] = field(default_factory=list)
    transition_to: Optional[str] = None
    completed_tasks: List[str] = field(default_factory=list)
    # Response text with directives removed
    content: str = ""


def parse_value(raw: str) -> Any:
    """Interpret a directive value: booleans, numbers, JSON, else a string."""
    text = raw.strip()
    if text == "true":
        return True
    if text == "false":
        return False
    if _NUMBER.match(text):
        return float(text) if "." in text else int(text)
    if (text.startswith("{") and text.endswith("}")) or (
        text.startswith("[") and text.endswith("]")
    ):
        try:
            return json.loads(text)
        except json.JSONDecodeError:
            return text
    return re.sub(r"^['\"]|['\"]$", "", text)


class ResponseParser:
    """Extract directives and apply them to a copy of the state."""

    def parse(self, response: str) -> ParsedResponse:
        parsed = ParsedResponse()
        content = response

        for match in STATE_PATTERN.finditer(response):
            parsed.state_updates.append(StateUpdate(match.group(1), parse_value(match.group(2))))
            content = content.replace(match.group(0), "", 1)

        transition = TRANSITION_PATTERN.search(response)
        if transition:
            parsed.transition_to = transition.group(1)
            content = content.replace(transition.group(0), "", 1)

        for match in TASK_COMPLETE_PATTERN.finditer(response):
            parsed.completed_tasks.append(match.group(1))
            content = content.replace(match.group(0), "", 1)

        for match in TASK_UPDATE_PATTERN.finditer(response):
            task_id, task_field, value = match.groups()
            parsed.state_updates.append(
                StateUpdate(task_field, parse_value(value), task_id=task_id)
            )
            content = content.replace(match.group(0), "", 1)

        parsed.content = content.strip()
        return parsed

    def has_directives(self, response: str) -> bool:
        return any(
            pattern.search(response)
            for pattern in (
                STATE_PATTERN,
                TRANSITION_PATTERN,
                TASK_COMPLETE_PATTERN,
                TASK_UPDATE_PATTERN,
            )
        )

    def apply_updates(
        self, state: Mapping[str, Any], updates: List[StateUpdate]
    ) -> Dict[str, Any]:
        """Return a new state with ``updates`` applied."""
        new_state = copy.deepcopy(dict(state))
        for update in updates:
            if update.task_id is not None:
                task = _find_task(new_state, update.task_id)
                if task is not None:
                    set_path(task, update.path, update.value, update.operation)
                continue
            set_path(new_state, update.path, update.value, update.operation)
        return new_state

    def mark_tasks_completed(
        self, state: Mapping[str, Any], task_ids: List[str]
    ) -> Dict[str, Any]:
        new_state = copy.deepcopy(dict(state))
        for task_id in task_ids:
            task = _find_task(new_state, task_id)
            if task is not None:
                task["status"] = "done"
        return new_state


def _find_task(state: Dict[str, Any], task_id: str) -> Optional[Dict[str, Any]]:
    tasks = state.get("tasks")
    if not isinstance(tasks, list):
        return None
    for task in tasks:
        if isinstance(task, dict) and str(task.get("id")) == task_id:
            return task
    return None
