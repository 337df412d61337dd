"""
Snippet loading.

Snippets are plain Python files inside the protocol directory. They are
imported in-process and run with full trust: there is no sandbox.
"""

import importlib.util
import logging
from pathlib import Path
from types import ModuleType
from typing import Dict, Optional, Union

from arcanum.exceptions import SnippetLoadError
from arcanum.protocol.schema import SnippetDefinition
from arcanum.snippets.types import SnippetFn

logger = logging.getLogger(__name__)

DEFAULT_SNIPPETS_DIR = "snippets"
DEFAULT_FUNCTION = "run"


def import_module_from_path(module_name: str, file_path: Path) -> ModuleType:
    """Import a module from a file path."""
    spec = importlib.util.spec_from_file_location(module_name, file_path)
    if spec is None or spec.loader is None:
        raise ImportError(f"Cannot import {file_path}")
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


class SnippetLoader:
    """
    Resolve snippet ids to callables, caching each one after first import.

    The callable is the attribute named by the definition's ``function``,
    else ``run``, else an attribute named after the snippet id.
    """

    def __init__(
        self,
        protocol_dir: Union[str, Path],
        definitions: Optional[Dict[str, SnippetDefinition]] = None,
        snippets_dir: str = DEFAULT_SNIPPETS_DIR,
    ):
        self.protocol_dir = Path(protocol_dir)
        self.definitions = dict(definitions or {})
        self.snippets_dir = snippets_dir
        self._cache: Dict[str, SnippetFn] = {}

    def has(self, snippet_id: str) -> bool:
        return snippet_id in self.definitions

    def resolve_path(self, definition: SnippetDefinition) -> Path:
        path = Path(definition.file)
        if path.is_absolute():
            return path
        return self.protocol_dir / self.snippets_dir / path

    def load(self, snippet_id: str) -> SnippetFn:
        """
        Import a snippet and return its callable.

        Raises:
            SnippetLoadError: If the snippet is undeclared, fails to import
                or exposes no callable
        """
        if snippet_id in self._cache:
            return self._cache[snippet_id]

        definition = self.definitions.get(snippet_id)
        if definition is None:
            raise SnippetLoadError(f"Snippet definition not found: {snippet_id}")

        path = self.resolve_path(definition)
        try:
            module = import_module_from_path(f"arcanum_snippet_{snippet_id}", path)
        except Exception as e:
            raise SnippetLoadError(
                f"Failed to load snippet {snippet_id} from {path}: {e}",
                context={"path": str(path)},
            ) from e

        names = [definition.function] if definition.function else [DEFAULT_FUNCTION, snippet_id]
        for name in names:
            fn = getattr(module, name, None)
            if callable(fn):
                self._cache[snippet_id] = fn
                logger.debug(f"Loaded snippet '{snippet_id}' ({name}) from {path}")
                return fn

        raise SnippetLoadError(
            f"Snippet {snippet_id} does not define a callable (checked {', '.join(names)})",
            context={"path": str(path)},
        )

    def clear_cache(self) -> None:
        self._cache.clear()
