"""
Hook contract.

A snippet is a trusted Python callable run on step entry or exit. It
receives a SnippetContext and returns one of four results:

    {"type": "ok"}
    {"type": "abort", "reason": "..."}
    {"type": "patch", "patch": {...}}
    {"type": "transition", "to": "step_id", "reason": "..."}

Plain dicts of those shapes are accepted as well as the models below.
"""

import copy
import logging
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import (
    Annotated,
    Any,
    Awaitable,
    Callable,
    Dict,
    Literal,
    Mapping,
    Optional,
    Union,
)

from pydantic import BaseModel, Field, TypeAdapter


class OkResult(BaseModel):
    type: Literal["ok"] = "ok"


class AbortResult(BaseModel):
    type: Literal["abort"] = "abort"
    reason: Optional[str] = None


class PatchResult(BaseModel):
    type: Literal["patch"] = "patch"
    patch: Dict[str, Any] = Field(default_factory=dict)


class TransitionRequest(BaseModel):
    type: Literal["transition"] = "transition"
    to: str = Field(..., min_length=1)
    reason: Optional[str] = None


SnippetResult = Annotated[
    Union[OkResult, AbortResult, PatchResult, TransitionRequest],
    Field(discriminator="type"),
]

snippet_result_adapter: TypeAdapter = TypeAdapter(SnippetResult)


@dataclass(frozen=True)
class SnippetMeta:
    """Where in the workflow a hook is running."""

    workflow_id: str
    step_id: str
    transition_to: Optional[str] = None
    gate_id: Optional[str] = None


@dataclass
class SnippetContext:
    """
    Everything a hook may see or do.

    ``state`` is a read-only snapshot; hooks change state either by
    returning a patch or by calling ``set_state()``, which queues a patch
    that the executor folds into the result.
    """

    snippet_id: str
    state: Mapping[str, Any]
    meta: SnippetMeta
    project_dir: Path
    pending_patch: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def create(
        cls,
        snippet_id: str,
        state: Mapping[str, Any],
        meta: SnippetMeta,
        project_dir: Union[str, Path],
    ) -> "SnippetContext":
        return cls(
            snippet_id=snippet_id,
            state=MappingProxyType(copy.deepcopy(dict(state))),
            meta=meta,
            project_dir=Path(project_dir),
        )

    def set_state(self, patch: Dict[str, Any]) -> None:
        self.pending_patch.update(patch)

    def log(self, msg: str, data: Any = None) -> None:
        hook_logger = logging.getLogger(f"arcanum.snippets.{self.snippet_id}")
        if data is None:
            hook_logger.info(msg)
        else:
            hook_logger.info(f"{msg} {data!r}")


SnippetFn = Callable[[SnippetContext], Union[Any, Awaitable[Any]]]
