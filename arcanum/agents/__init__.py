"""Agent inheritance, prompt context and response directives."""

from arcanum.agents.context import ContextBuilder, normalize_rule_name
from arcanum.agents.parser import ParsedResponse, ResponseParser, StateUpdate
from arcanum.agents.resolver import (
    DEFAULT_BASE_AGENTS,
    AgentResolver,
    BaseAgentInfo,
    ResolvedAgent,
    ResolvedModel,
    build_base_agent_map,
    merge_prompts,
    patch_prompt,
)

__all__ = [
    "ContextBuilder",
    "normalize_rule_name",
    "ParsedResponse",
    "ResponseParser",
    "StateUpdate",
    "DEFAULT_BASE_AGENTS",
    "AgentResolver",
    "BaseAgentInfo",
    "ResolvedAgent",
    "ResolvedModel",
    "build_base_agent_map",
    "merge_prompts",
    "patch_prompt",
]
