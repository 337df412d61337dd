"""
Agent resolution.

Protocol agents either stand alone or extend a base agent provided by
the host. Resolution flattens the inheritance into a ResolvedAgent with
the merged prompt, effective model and effective tool list.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from arcanum.exceptions import AgentNotFoundError
from arcanum.protocol.schema import (
    AgentDefinition,
    ModelPolicy,
    PromptMode,
    ToolsPolicy,
)

logger = logging.getLogger(__name__)

DEFAULT_BASE_AGENTS = (
    "orchestrator",
    "oracle",
    "librarian",
    "explorer",
    "designer",
    "fixer",
)

_SECTION_HEADING = re.compile(r"^##\s+(.+?)\s*$", re.MULTILINE)


@dataclass
class ResolvedModel:
    name: str
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None


@dataclass
class ResolvedAgent:
    """Flattened agent. Derived on demand, never persisted."""

    id: str
    description: str
    prompt: str
    model: Optional[ResolvedModel] = None
    tools: List[str] = field(default_factory=list)
    skills: List[str] = field(default_factory=list)
    rules: List[str] = field(default_factory=list)
    base_id: Optional[str] = None


@dataclass
class BaseAgentInfo:
    """A host-provided agent that protocol agents may extend."""

    id: str
    prompt: str
    model: Optional[str] = None
    tools: List[str] = field(default_factory=list)


def build_base_agent_map(plugin_agents: Iterable[Mapping[str, Any]]) -> Dict[str, BaseAgentInfo]:
    """
    Build the base agent map from host agent descriptions.

    Each entry looks like ``{"name": ..., "config": {"prompt": ..., "model": ...},
    "tools": [...]}``.
    """
    agents: Dict[str, BaseAgentInfo] = {}
    for agent in plugin_agents:
        config = agent.get("config") or {}
        agents[agent["name"]] = BaseAgentInfo(
            id=agent["name"],
            prompt=config.get("prompt", ""),
            model=config.get("model"),
            tools=list(agent.get("tools") or []),
        )
    return agents


def _split_sections(prompt: str) -> Tuple[str, List[Tuple[str, str]]]:
    """Split a prompt into its preamble and ``## Heading`` sections."""
    matches = list(_SECTION_HEADING.finditer(prompt))
    if not matches:
        return prompt, []
    preamble = prompt[: matches[0].start()]
    sections = []
    for i, match in enumerate(matches):
        end = matches[i + 1].start() if i + 1 < len(matches) else len(prompt)
        sections.append((match.group(1), prompt[match.start():end]))
    return preamble, sections


def patch_prompt(base_prompt: str, patch: str) -> str:
    """
    Replace ``## Heading`` sections of the base prompt with same-titled
    sections of the patch. Sections the base does not have are appended.
    Text before the first heading in the patch is appended as well.
    """
    base_preamble, base_sections = _split_sections(base_prompt)
    patch_preamble, patch_sections = _split_sections(patch)

    replacements = {title: body for title, body in patch_sections}
    merged = [base_preamble]
    for title, body in base_sections:
        if title in replacements:
            replacement = replacements.pop(title)
            merged.append(replacement if replacement.endswith("\n") else replacement + "\n\n")
        else:
            merged.append(body)

    result = "".join(merged).rstrip()
    extras = [patch_preamble.strip()] + [
        body.strip() for title, body in patch_sections if title in replacements
    ]
    extras = [e for e in extras if e]
    if extras:
        result = "\n\n".join([result] + extras) if result else "\n\n".join(extras)
    return result


def merge_prompts(base_prompt: str, custom_prompt: str, mode: PromptMode) -> str:
    """Combine a base prompt with an agent's own prompt."""
    if not custom_prompt:
        return base_prompt
    if mode == PromptMode.APPEND:
        return f"{base_prompt}\n\n{custom_prompt}"
    if mode == PromptMode.PREPEND:
        return f"{custom_prompt}\n\n{base_prompt}"
    if mode == PromptMode.REPLACE:
        return custom_prompt
    if mode == PromptMode.PATCH:
        return patch_prompt(base_prompt, custom_prompt)
    return base_prompt


def resolve_tools(base_tools: List[str], agent: AgentDefinition) -> List[str]:
    custom = agent.tools_list or []
    if agent.tools == ToolsPolicy.ADD:
        return list(dict.fromkeys(base_tools + custom))
    if agent.tools == ToolsPolicy.REPLACE:
        return list(custom)
    return list(base_tools)


class AgentResolver:
    """
    Resolve protocol agents against the host's base agents.

    Example:
        ```python
        resolver = AgentResolver(protocol.agents, build_base_agent_map(host_agents))
        agent = resolver.resolve("reviewer")
        print(agent.prompt)
        ```
    """

    def __init__(
        self,
        protocol_agents: Mapping[str, AgentDefinition],
        base_agents: Mapping[str, BaseAgentInfo],
    ):
        self.protocol_agents = dict(protocol_agents)
        self.base_agents = dict(base_agents)

    def is_base_agent(self, agent_id: str) -> bool:
        return agent_id in self.base_agents

    def get_base_agent(self, base_id: str) -> Optional[BaseAgentInfo]:
        return self.base_agents.get(base_id)

    def resolve(self, agent_id: str) -> ResolvedAgent:
        """
        Resolve an agent by id.

        Raises:
            AgentNotFoundError: If the agent or its base is unknown
        """
        agent = self.protocol_agents.get(agent_id)
        if agent is None:
            raise AgentNotFoundError(f"Agent not found: {agent_id}")
        if not agent.base:
            return self._resolve_standalone(agent)
        return self._resolve_with_base(agent)

    def resolve_all(self) -> Dict[str, ResolvedAgent]:
        return {agent_id: self.resolve(agent_id) for agent_id in self.protocol_agents}

    def validate(self) -> Tuple[bool, List[str]]:
        """Check every agent for bad references and policy mistakes."""
        errors: List[str] = []

        for agent_id, agent in self.protocol_agents.items():
            if agent.base and agent.base not in self.base_agents:
                errors.append(f"Agent '{agent_id}': base '{agent.base}' not found in base agents")

            if agent_id in self.base_agents:
                errors.append(f"Agent '{agent_id}': cannot use same ID as a base agent")

            if not agent.base and not agent.prompt:
                errors.append(f"Agent '{agent_id}': standalone agent requires 'prompt'")

            if agent.model == ModelPolicy.OVERRIDE and (
                agent.llm_config is None or not agent.llm_config.name
            ):
                errors.append(
                    f"Agent '{agent_id}': model='override' requires model_config.name"
                )

            if agent.tools in (ToolsPolicy.ADD, ToolsPolicy.REPLACE) and not agent.tools_list:
                errors.append(
                    f"Agent '{agent_id}': tools policy '{agent.tools.value}' "
                    f"requires non-empty tools_list"
                )

        return (not errors, errors)

    def _override_model(self, agent: AgentDefinition) -> Optional[ResolvedModel]:
        if agent.model == ModelPolicy.OVERRIDE and agent.llm_config is not None:
            return ResolvedModel(
                name=agent.llm_config.name,
                temperature=agent.llm_config.temperature,
                max_tokens=agent.llm_config.max_tokens,
            )
        return None

    def _resolve_standalone(self, agent: AgentDefinition) -> ResolvedAgent:
        return ResolvedAgent(
            id=agent.id,
            description=agent.description,
            prompt=agent.prompt or "",
            model=self._override_model(agent),
            tools=list(agent.tools_list or []),
            skills=list(agent.skills or []),
            rules=list(agent.rules or []),
        )

    def _resolve_with_base(self, agent: AgentDefinition) -> ResolvedAgent:
        base = self.base_agents.get(agent.base)
        if base is None:
            raise AgentNotFoundError(f"Base agent not found: {agent.base}")

        model = self._override_model(agent)
        if model is None and base.model:
            model = ResolvedModel(name=base.model)

        return ResolvedAgent(
            id=agent.id,
            description=agent.description,
            prompt=merge_prompts(base.prompt, agent.prompt or "", agent.mode),
            model=model,
            tools=resolve_tools(base.tools, agent),
            skills=list(agent.skills or []),
            rules=list(agent.rules or []),
            base_id=agent.base,
        )
