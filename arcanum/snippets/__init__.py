"""Trusted step hooks (snippets)."""

from arcanum.snippets.executor import HookRunner, SnippetExecutor
from arcanum.snippets.loader import SnippetLoader
from arcanum.snippets.types import (
    AbortResult,
    OkResult,
    PatchResult,
    SnippetContext,
    SnippetMeta,
    SnippetResult,
    TransitionRequest,
)

__all__ = [
    "HookRunner",
    "SnippetExecutor",
    "SnippetLoader",
    "AbortResult",
    "OkResult",
    "PatchResult",
    "SnippetContext",
    "SnippetMeta",
    "SnippetResult",
    "TransitionRequest",
]
