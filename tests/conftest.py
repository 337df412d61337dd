"""Pytest fixtures for Arcanum tests."""

import json
import textwrap
from pathlib import Path
from typing import Any, Dict, Optional

import pytest
import yaml

from arcanum.scaffold import copy_template

PROTOCOL_SUBDIR = Path(".opencode") / "protocol"
STATE_SUBDIR = Path(".opencode") / "state"


@pytest.fixture
def project_dir(tmp_path: Path) -> Path:
    """Empty project directory."""
    return tmp_path


@pytest.fixture
def task_loop_project(tmp_path: Path) -> Path:
    """Project initialized from the bundled task_loop template."""
    copy_template("task_loop", tmp_path / PROTOCOL_SUBDIR)
    return tmp_path


@pytest.fixture
def review_cycle_project(tmp_path: Path) -> Path:
    """Project initialized from the bundled review_cycle template."""
    copy_template("review_cycle", tmp_path / PROTOCOL_SUBDIR)
    return tmp_path


@pytest.fixture
def simple_workflow_dict() -> Dict[str, Any]:
    """Minimal three-step workflow as a dict."""
    return {
        "id": "simple",
        "steps": [
            {"id": "start"},
            {"id": "middle"},
            {"id": "end", "terminal": True},
        ],
        "transitions": [
            {"from": "start", "to": "middle"},
            {"from": "middle", "to": "end", "gate": "state.ready === true"},
        ],
    }


@pytest.fixture
def make_protocol(tmp_path: Path):
    """
    Write a protocol into the project directory.

    Usage:
        make_protocol(workflows=[wf_dict], snippets={"hook": "def run(ctx): ..."})
    """

    def _make(
        workflows,
        default_workflow: Optional[str] = None,
        snippets: Optional[Dict[str, str]] = None,
        agents=None,
        rules: Optional[Dict[str, Any]] = None,
        index_extra: Optional[Dict[str, Any]] = None,
    ) -> Path:
        protocol_dir = tmp_path / PROTOCOL_SUBDIR
        (protocol_dir / "workflows").mkdir(parents=True, exist_ok=True)

        index = {
            "name": "test-protocol",
            "version": "1.0",
            "default_workflow": default_workflow or workflows[0]["id"],
        }
        index.update(index_extra or {})
        (protocol_dir / "index.yaml").write_text(yaml.safe_dump(index))

        for workflow in workflows:
            path = protocol_dir / "workflows" / f"{workflow['id']}.yaml"
            path.write_text(yaml.safe_dump(workflow, sort_keys=False))

        if snippets:
            (protocol_dir / "snippets").mkdir(exist_ok=True)
            for name, source in snippets.items():
                (protocol_dir / "snippets" / f"{name}.py").write_text(
                    textwrap.dedent(source)
                )

        for agent in agents or []:
            (protocol_dir / "agents").mkdir(exist_ok=True)
            (protocol_dir / "agents" / f"{agent['id']}.yaml").write_text(
                yaml.safe_dump(agent)
            )

        for name, rule in (rules or {}).items():
            (protocol_dir / "rules").mkdir(exist_ok=True)
            (protocol_dir / "rules" / f"{name}.json").write_text(json.dumps(rule))

        return tmp_path

    return _make


@pytest.fixture
def read_state():
    """Read the persisted state document of a project."""

    def _read(project: Path) -> Dict[str, Any]:
        return json.loads((project / STATE_SUBDIR / "current.json").read_text())

    return _read
