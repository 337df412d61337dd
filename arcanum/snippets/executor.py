"""Run snippets and normalise whatever they return into a SnippetResult."""

import inspect
import logging
from pathlib import Path
from typing import Any, Mapping, Protocol, Union, runtime_checkable

from pydantic import BaseModel, ValidationError

from arcanum.protocol.loader import format_validation_error
from arcanum.snippets.loader import SnippetLoader
from arcanum.snippets.types import (
    AbortResult,
    OkResult,
    PatchResult,
    SnippetContext,
    SnippetMeta,
    SnippetResult,
    snippet_result_adapter,
)

logger = logging.getLogger(__name__)


@runtime_checkable
class HookRunner(Protocol):
    """What the engine needs from a hook implementation."""

    async def execute(
        self, hook_id: str, state: Mapping[str, Any], meta: SnippetMeta
    ) -> SnippetResult:
        ...


class SnippetExecutor:
    """
    HookRunner backed by Python snippet files.

    A hook that raises, or returns something outside the four result
    shapes, yields an ``abort`` result instead of propagating.
    """

    def __init__(self, loader: SnippetLoader, project_dir: Union[str, Path]):
        self.loader = loader
        self.project_dir = Path(project_dir)

    async def execute(
        self, hook_id: str, state: Mapping[str, Any], meta: SnippetMeta
    ) -> SnippetResult:
        context = SnippetContext.create(hook_id, state, meta, self.project_dir)

        try:
            fn = self.loader.load(hook_id)
            raw = fn(context)
            if inspect.isawaitable(raw):
                raw = await raw
        except Exception as e:
            logger.warning(f"Snippet '{hook_id}' failed: {e}")
            return AbortResult(reason=str(e) or type(e).__name__)

        result = self._coerce(hook_id, raw)

        if context.pending_patch:
            if isinstance(result, OkResult):
                return PatchResult(patch=dict(context.pending_patch))
            if isinstance(result, PatchResult):
                return PatchResult(patch={**context.pending_patch, **result.patch})
        return result

    def _coerce(self, hook_id: str, raw: Any) -> SnippetResult:
        if isinstance(raw, BaseModel):
            raw = raw.model_dump()
        if not isinstance(raw, Mapping) or "type" not in raw:
            return AbortResult(reason=f"Snippet '{hook_id}' returned invalid result")
        try:
            return snippet_result_adapter.validate_python(dict(raw))
        except ValidationError as e:
            return AbortResult(
                reason=f"Snippet '{hook_id}' returned invalid result: {format_validation_error(e)}"
            )
