"""
Protocol loader.

Reads a protocol directory into an immutable ProtocolDefinition:

    <project>/.opencode/protocol/
        index.yaml          # required
        workflows/*.yaml    # workflow documents
        agents/*.yaml       # agent documents
        rules/*.json        # opaque documents keyed by file stem
        snippets/*.py       # trusted hook implementations

Any malformed document fails the whole load; there is no partial protocol.
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Type, TypeVar, Union

import yaml
from pydantic import BaseModel, ValidationError

from arcanum.exceptions import (
    ProtocolNotFoundError,
    SchemaValidationError,
    WorkflowNotFoundError,
)
from arcanum.protocol.schema import (
    AgentDefinition,
    IndexConfig,
    SnippetDefinition,
    WorkflowDefinition,
)

logger = logging.getLogger(__name__)

DEFAULT_PROTOCOL_DIR = Path(".opencode") / "protocol"
INDEX_FILENAMES = ("index.yaml", "index.yml")
DOCUMENT_SUFFIXES = (".yaml", ".yml", ".json")

ModelT = TypeVar("ModelT", bound=BaseModel)


@dataclass(frozen=True)
class ProtocolDefinition:
    """Everything loaded from a protocol directory. Built once per initialize()."""

    index: IndexConfig
    workflows: Dict[str, WorkflowDefinition]
    agents: Dict[str, AgentDefinition] = field(default_factory=dict)
    rules: Dict[str, Any] = field(default_factory=dict)
    snippets: Dict[str, SnippetDefinition] = field(default_factory=dict)
    protocol_dir: Path = field(default_factory=Path)

    @property
    def default_workflow(self) -> WorkflowDefinition:
        return self.get_workflow(self.index.default_workflow)

    def get_workflow(self, workflow_id: str) -> WorkflowDefinition:
        """Get workflow by id, raising WorkflowNotFoundError when absent."""
        workflow = self.workflows.get(workflow_id)
        if workflow is None:
            raise WorkflowNotFoundError(
                f"Workflow not found: {workflow_id}",
                context={"available": sorted(self.workflows)},
            )
        return workflow


def format_validation_error(exc: ValidationError) -> str:
    """First identifiable cause of a pydantic validation error."""
    errors = exc.errors()
    if not errors:
        return str(exc)
    first = errors[0]
    loc = ".".join(str(part) for part in first.get("loc", ()))
    msg = first.get("msg", "invalid value")
    return f"{loc}: {msg}" if loc else msg


def read_document(path: Path) -> Any:
    """
    Read a YAML or JSON document.

    Raises:
        SchemaValidationError: If the file cannot be parsed or is empty
    """
    try:
        content = path.read_text(encoding="utf-8")
    except UnicodeDecodeError as e:
        raise SchemaValidationError(
            f"{path} contains invalid UTF-8 data", context={"path": str(path)}
        ) from e

    try:
        if path.suffix.lower() == ".json":
            data = json.loads(content)
        else:
            data = yaml.safe_load(content)
    except (yaml.YAMLError, json.JSONDecodeError) as e:
        raise SchemaValidationError(
            f"Failed to parse {path}: {e}", context={"path": str(path)}
        ) from e

    if data is None:
        raise SchemaValidationError(
            f"Empty document: {path}", context={"path": str(path)}
        )
    return data


def parse_document(path: Path, model: Type[ModelT], label: str) -> ModelT:
    """Read ``path`` and validate it against ``model``."""
    data = read_document(path)
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise SchemaValidationError(
            f"Invalid {label} {path}: {format_validation_error(e)}",
            context={"path": str(path), "errors": e.errors(include_url=False)},
        ) from e


def _iter_documents(directory: Path):
    if not directory.is_dir():
        return
    for path in sorted(directory.iterdir()):
        if path.is_file() and path.suffix.lower() in DOCUMENT_SUFFIXES:
            yield path


class ProtocolLoader:
    """
    Load and validate protocol directories.

    Example:
        ```python
        protocol = ProtocolLoader().load("/path/to/project")
        workflow = protocol.default_workflow
        ```
    """

    def __init__(self, protocol_dir: Union[str, Path] = DEFAULT_PROTOCOL_DIR):
        self.protocol_subdir = Path(protocol_dir)

    def protocol_dir_for(self, project_dir: Union[str, Path]) -> Path:
        """Resolve the protocol directory for a project."""
        if self.protocol_subdir.is_absolute():
            return self.protocol_subdir
        return Path(project_dir) / self.protocol_subdir

    def find_index(self, protocol_dir: Path) -> Optional[Path]:
        for name in INDEX_FILENAMES:
            candidate = protocol_dir / name
            if candidate.is_file():
                return candidate
        return None

    def load(self, project_dir: Union[str, Path]) -> ProtocolDefinition:
        """
        Load a complete protocol from a project directory.

        Raises:
            ProtocolNotFoundError: If no index document exists
            SchemaValidationError: If any document is invalid or the
                default workflow is missing
        """
        protocol_dir = self.protocol_dir_for(project_dir)

        index_path = self.find_index(protocol_dir)
        if index_path is None:
            raise ProtocolNotFoundError(
                f"Protocol index not found: {protocol_dir / INDEX_FILENAMES[0]}",
                context={"protocol_dir": str(protocol_dir)},
            )

        index = self.load_index(index_path)
        workflows = self.load_workflows(protocol_dir / "workflows")
        agents = self.load_agents(protocol_dir / "agents")
        rules = self.load_rules(protocol_dir / "rules")
        snippets = self.load_snippets(protocol_dir / "snippets", index)

        if index.default_workflow not in workflows:
            available = ", ".join(workflows) or "none"
            raise SchemaValidationError(
                f"Invalid protocol: default_workflow '{index.default_workflow}' "
                f"not found. Available workflows: {available}",
                context={"available": list(workflows)},
            )

        logger.info(
            f"Loaded protocol '{index.name}' v{index.version} "
            f"({len(workflows)} workflows, {len(agents)} agents, "
            f"{len(rules)} rules, {len(snippets)} snippets)"
        )

        return ProtocolDefinition(
            index=index,
            workflows=workflows,
            agents=agents,
            rules=rules,
            snippets=snippets,
            protocol_dir=protocol_dir,
        )

    @staticmethod
    def load_index(path: Path) -> IndexConfig:
        return parse_document(path, IndexConfig, "protocol index")

    @staticmethod
    def load_workflows(directory: Path) -> Dict[str, WorkflowDefinition]:
        workflows: Dict[str, WorkflowDefinition] = {}
        for path in _iter_documents(directory):
            workflow = parse_document(path, WorkflowDefinition, "workflow")
            if workflow.id in workflows:
                raise SchemaValidationError(
                    f"Duplicate workflow id '{workflow.id}' in {path}",
                    context={"path": str(path)},
                )
            workflows[workflow.id] = workflow
            logger.debug(f"Loaded workflow '{workflow.id}' from {path.name}")
        return workflows

    @staticmethod
    def load_agents(directory: Path) -> Dict[str, AgentDefinition]:
        agents: Dict[str, AgentDefinition] = {}
        for path in _iter_documents(directory):
            agent = parse_document(path, AgentDefinition, "agent")
            if agent.id in agents:
                raise SchemaValidationError(
                    f"Duplicate agent id '{agent.id}' in {path}",
                    context={"path": str(path)},
                )
            agents[agent.id] = agent
        return agents

    @staticmethod
    def load_rules(directory: Path) -> Dict[str, Any]:
        return {path.stem: read_document(path) for path in _iter_documents(directory)}

    @staticmethod
    def load_snippets(
        directory: Path, index: IndexConfig
    ) -> Dict[str, SnippetDefinition]:
        """Discover ``snippets/*.py``; entries declared in the index win."""
        snippets: Dict[str, SnippetDefinition] = {}
        if directory.is_dir():
            for path in sorted(directory.glob("*.py")):
                if path.stem.startswith("_"):
                    continue
                snippets[path.stem] = SnippetDefinition(file=path.name)
        snippets.update(index.snippets)
        return snippets
