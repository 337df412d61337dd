"""Tests for the protocol loader."""

import pytest

from arcanum.exceptions import (
    ProtocolNotFoundError,
    SchemaValidationError,
    WorkflowNotFoundError,
)
from arcanum.protocol.loader import ProtocolLoader, read_document
from arcanum.protocol.schema import GateType

PROTOCOL = ".opencode/protocol"


class TestProtocolLoader:
    def test_load_template(self, task_loop_project):
        protocol = ProtocolLoader().load(task_loop_project)

        assert protocol.index.name == "task-loop"
        assert protocol.index.version == "1.0"
        assert set(protocol.workflows) == {"task_loop"}
        assert protocol.default_workflow.id == "task_loop"
        assert "worker" in protocol.agents
        assert protocol.rules["TASK_RULES"]["max_tasks_in_progress"] == 1
        assert protocol.snippets["pick_task"].file == "pick_task.py"
        assert protocol.protocol_dir == task_loop_project / PROTOCOL

    def test_missing_index(self, project_dir):
        with pytest.raises(ProtocolNotFoundError):
            ProtocolLoader().load(project_dir)

    def test_missing_default_workflow(self, make_protocol, simple_workflow_dict):
        project = make_protocol([simple_workflow_dict], default_workflow="other")
        with pytest.raises(SchemaValidationError, match="default_workflow 'other' not found"):
            ProtocolLoader().load(project)

    def test_invalid_workflow_fails_whole_load(self, make_protocol, simple_workflow_dict):
        broken = {"id": "broken", "steps": []}
        project = make_protocol([simple_workflow_dict, broken])
        with pytest.raises(SchemaValidationError, match="Invalid workflow"):
            ProtocolLoader().load(project)

    def test_duplicate_workflow_id(self, make_protocol, simple_workflow_dict, tmp_path):
        project = make_protocol([simple_workflow_dict])
        copy = tmp_path / PROTOCOL / "workflows" / "copy.yaml"
        copy.write_text((tmp_path / PROTOCOL / "workflows" / "simple.yaml").read_text())
        with pytest.raises(SchemaValidationError, match="Duplicate workflow id"):
            ProtocolLoader().load(project)

    def test_malformed_yaml(self, make_protocol, simple_workflow_dict, tmp_path):
        project = make_protocol([simple_workflow_dict])
        (tmp_path / PROTOCOL / "workflows" / "bad.yaml").write_text("id: [unclosed")
        with pytest.raises(SchemaValidationError, match="Failed to parse"):
            ProtocolLoader().load(project)

    def test_index_declared_snippet_wins(self, make_protocol, simple_workflow_dict):
        project = make_protocol(
            [simple_workflow_dict],
            snippets={"hook": "def run(ctx):\n    return {'type': 'ok'}\n"},
            index_extra={"snippets": {"hook": {"file": "hook.py", "function": "main"}}},
        )
        protocol = ProtocolLoader().load(project)
        assert protocol.snippets["hook"].function == "main"

    def test_private_snippet_files_ignored(self, make_protocol, simple_workflow_dict):
        project = make_protocol(
            [simple_workflow_dict],
            snippets={"_helpers": "X = 1\n", "hook": "def run(ctx):\n    pass\n"},
        )
        protocol = ProtocolLoader().load(project)
        assert set(protocol.snippets) == {"hook"}

    def test_custom_protocol_dir(self, tmp_path, simple_workflow_dict, make_protocol):
        make_protocol([simple_workflow_dict])
        loader = ProtocolLoader(tmp_path / PROTOCOL)
        protocol = loader.load("/somewhere/else")
        assert protocol.default_workflow.id == "simple"

    def test_string_gate_shorthand(self, task_loop_project):
        workflow = ProtocolLoader().load(task_loop_project).get_workflow("task_loop")
        gates = [t.resolved_gate() for t in workflow.get_transitions_from("decompose")]
        assert all(g.type == GateType.CRITERIA for g in gates)


class TestProtocolDefinition:
    def test_get_workflow_unknown(self, task_loop_project):
        protocol = ProtocolLoader().load(task_loop_project)
        with pytest.raises(WorkflowNotFoundError) as exc_info:
            protocol.get_workflow("missing")
        assert str(exc_info.value) == "Workflow not found: missing"
        assert exc_info.value.context["available"] == ["task_loop"]


class TestReadDocument:
    def test_json(self, tmp_path):
        path = tmp_path / "rule.json"
        path.write_text('{"a": 1}')
        assert read_document(path) == {"a": 1}

    def test_empty_document(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        with pytest.raises(SchemaValidationError, match="Empty document"):
            read_document(path)

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text("{nope")
        with pytest.raises(SchemaValidationError):
            read_document(path)
