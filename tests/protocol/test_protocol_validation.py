"""Tests for static protocol validation."""

from arcanum.protocol.validation import validate_protocol


class TestValidateProtocol:
    def test_template_is_valid(self, task_loop_project):
        report = validate_protocol(task_loop_project)
        assert report.valid
        assert report.protocol is not None
        assert report.errors == []

    def test_missing_state_dir_warns(self, task_loop_project):
        report = validate_protocol(task_loop_project)
        assert any("State directory does not exist" in w for w in report.warnings)

    def test_existing_state_dir_does_not_warn(self, task_loop_project):
        (task_loop_project / ".opencode" / "state").mkdir(parents=True)
        report = validate_protocol(task_loop_project)
        assert report.warnings == []

    def test_load_failure_reported(self, project_dir):
        report = validate_protocol(project_dir)
        assert not report.valid
        assert report.protocol is None
        assert report.errors[0].startswith("Failed to load protocol")

    def test_unknown_snippet(self, make_protocol):
        project = make_protocol(
            [
                {
                    "id": "w",
                    "steps": [{"id": "a", "on_enter": "ghost"}, {"id": "b", "terminal": True}],
                    "transitions": [{"from": "a", "to": "b"}],
                }
            ]
        )
        report = validate_protocol(project)
        assert not report.valid
        assert "unknown snippet 'ghost'" in report.errors[0]

    def test_invoke_unknown_workflow_and_resume_step(self, make_protocol):
        project = make_protocol(
            [
                {
                    "id": "w",
                    "steps": [
                        {"id": "a", "invoke": {"workflow": "child", "on_complete": "zz"}},
                        {"id": "b", "terminal": True},
                    ],
                }
            ]
        )
        report = validate_protocol(project)
        assert len(report.errors) == 2
        assert any("invokes unknown workflow 'child'" in e for e in report.errors)
        assert any("unknown step 'zz'" in e for e in report.errors)

    def test_no_terminal_step_warns(self, make_protocol):
        project = make_protocol(
            [{"id": "w", "steps": [{"id": "a"}, {"id": "b"}], "transitions": [{"from": "a", "to": "b"}]}]
        )
        report = validate_protocol(project)
        assert report.valid
        assert any("no terminal step" in w for w in report.warnings)

    def test_unsupported_gate_expression_warns(self, make_protocol):
        project = make_protocol(
            [
                {
                    "id": "w",
                    "steps": [{"id": "a"}, {"id": "b", "terminal": True}],
                    "transitions": [
                        {"from": "a", "to": "b", "gate": "state.tasks.map(t => t.id)"}
                    ],
                }
            ]
        )
        report = validate_protocol(project)
        assert report.valid
        assert any("not a supported expression" in w for w in report.warnings)

    def test_agent_with_unknown_base(self, make_protocol, simple_workflow_dict):
        project = make_protocol(
            [simple_workflow_dict],
            agents=[{"id": "helper", "description": "d", "base": "wizard"}],
        )
        report = validate_protocol(project)
        assert not report.valid
        assert "base 'wizard' not found" in report.errors[0]

    def test_custom_base_agents(self, make_protocol, simple_workflow_dict):
        project = make_protocol(
            [simple_workflow_dict],
            agents=[{"id": "helper", "description": "d", "base": "wizard"}],
        )
        report = validate_protocol(project, base_agents=["wizard"])
        assert report.valid
