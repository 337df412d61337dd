"""Prompt assembly: agent prompt, protocol state, rules and custom sections."""

import json
import re
from typing import Any, Dict, List, Mapping, Optional

from arcanum.agents.resolver import ResolvedAgent

SECTION_SEPARATOR = "\n\n---\n\n"

_RULE_PREFIX = re.compile(r"^rules/")
_RULE_SUFFIX = re.compile(r"\.(json|yaml|yml)$")


def normalize_rule_name(reference: str) -> str:
    """``rules/PROJECT_RULES.json`` -> ``PROJECT_RULES``"""
    return _RULE_SUFFIX.sub("", _RULE_PREFIX.sub("", reference))


class ContextBuilder:
    """
    Build the full prompt handed to an agent.

    Sections are joined with horizontal rules in this order: the agent's
    merged prompt, the current protocol state, the agent's rules, then any
    custom sections.
    """

    def __init__(self, rules: Optional[Mapping[str, Any]] = None):
        self.rules = dict(rules or {})

    def build_prompt(
        self,
        agent: ResolvedAgent,
        state: Mapping[str, Any],
        include_state: bool = True,
        include_rules: bool = True,
        custom_sections: Optional[Dict[str, str]] = None,
    ) -> str:
        sections: List[str] = [agent.prompt]

        if include_state:
            sections.append(self.build_protocol_context(state))

        if include_rules and agent.rules:
            rules_context = self.build_rules_context(agent.rules)
            if rules_context:
                sections.append(rules_context)

        for title, content in (custom_sections or {}).items():
            sections.append(f"## {title}\n{content}")

        return SECTION_SEPARATOR.join(s for s in sections if s)

    def build_protocol_context(self, state: Mapping[str, Any]) -> str:
        lines = [
            "## Current Protocol State",
            "",
            f"**Workflow**: {state.get('workflow')}",
            f"**Step**: {state.get('step')}",
            f"**Status**: {state.get('status')}",
        ]

        if state.get("depth"):
            lines.append(f"**Depth**: {state['depth']}")
        if state.get("updated_at"):
            lines.append(f"**Last Updated**: {state['updated_at']}")
        if state.get("current_task_id"):
            lines.append(f"**Current Task**: {state['current_task_id']}")

        tasks = state.get("tasks")
        if isinstance(tasks, list) and tasks:
            lines.extend(["", "### Tasks:"])
            for task in tasks:
                if not isinstance(task, Mapping):
                    continue
                agent = f" (agent: {task['agent']})" if task.get("agent") else ""
                lines.append(f"- {task.get('id')}: {task.get('status', 'unknown')}{agent}")

        return "\n".join(lines)

    def build_rules_context(self, rule_refs: List[str]) -> str:
        lines = ["## Applicable Rules", ""]
        for ref in rule_refs:
            name = normalize_rule_name(ref)
            rule = self.rules.get(name)
            if rule is None:
                continue
            lines.extend([f"### {name}", "```json", json.dumps(rule, indent=2), "```", ""])
        return "\n".join(lines) if len(lines) > 2 else ""

    @staticmethod
    def format_state_compact(state: Mapping[str, Any]) -> str:
        tasks = state.get("tasks")
        return json.dumps(
            {
                "workflow": state.get("workflow"),
                "step": state.get("step"),
                "status": state.get("status"),
                "tasks": len(tasks) if isinstance(tasks, list) else 0,
            }
        )
