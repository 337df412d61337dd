"""
Static protocol checks used by ``arcanum validate``.

Loading already enforces the schema; this adds the cross-document checks
that do not make a protocol unloadable but will bite at run time.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Optional, Union

from arcanum.agents.resolver import DEFAULT_BASE_AGENTS, AgentResolver, BaseAgentInfo
from arcanum.engine.expressions import ExpressionSyntaxError, parse_expression
from arcanum.exceptions import ArcanumError
from arcanum.protocol.loader import ProtocolDefinition, ProtocolLoader
from arcanum.protocol.schema import GateType, WorkflowDefinition


@dataclass
class ValidationReport:
    protocol: Optional[ProtocolDefinition] = None
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.errors


def _check_workflow(
    workflow: WorkflowDefinition, protocol: ProtocolDefinition, report: ValidationReport
) -> None:
    wid = workflow.id

    if not workflow.get_terminal_steps():
        report.warnings.append(f"Workflow '{wid}': no terminal step defined")

    for step in workflow.steps:
        for hook in (step.on_enter, step.on_exit):
            if hook and hook not in protocol.snippets:
                report.errors.append(f"Workflow '{wid}': step '{step.id}' uses unknown snippet '{hook}'")

        if step.invoke is None:
            continue
        if step.invoke.workflow not in protocol.workflows:
            report.errors.append(
                f"Workflow '{wid}': step '{step.id}' invokes unknown workflow '{step.invoke.workflow}'"
            )
        if step.invoke.on_complete and not workflow.has_step(step.invoke.on_complete):
            report.errors.append(
                f"Workflow '{wid}': step '{step.id}' resumes at unknown step "
                f"'{step.invoke.on_complete}'"
            )

    for transition in workflow.transitions:
        gate = transition.resolved_gate()
        if gate is None or gate.type not in (GateType.CRITERIA, GateType.EXPRESSION):
            continue
        try:
            parse_expression(gate.check or "")
        except ExpressionSyntaxError as e:
            report.warnings.append(
                f"Workflow '{wid}': gate {transition.from_step} -> {transition.to_step} "
                f"is not a supported expression and will never pass ({e})"
            )


def validate_protocol(
    project_dir: Union[str, Path],
    loader: Optional[ProtocolLoader] = None,
    state_dir: Optional[Union[str, Path]] = None,
    base_agents: Optional[Iterable[str]] = None,
) -> ValidationReport:
    """
    Load a protocol and collect errors and warnings.

    Args:
        project_dir: Project root
        loader: Loader to use (defaults to the conventional layout)
        state_dir: State directory to check for; relative to the project
        base_agents: Ids of host base agents agents may extend

    Returns:
        ValidationReport; ``protocol`` is None if loading failed
    """
    project_dir = Path(project_dir)
    loader = loader or ProtocolLoader()
    report = ValidationReport()

    try:
        protocol = loader.load(project_dir)
    except ArcanumError as e:
        report.errors.append(f"Failed to load protocol: {e}")
        return report
    report.protocol = protocol

    for workflow in protocol.workflows.values():
        _check_workflow(workflow, protocol, report)

    if protocol.agents:
        bases = {
            agent_id: BaseAgentInfo(id=agent_id, prompt="")
            for agent_id in (base_agents or DEFAULT_BASE_AGENTS)
        }
        _, agent_errors = AgentResolver(protocol.agents, bases).validate()
        report.errors.extend(agent_errors)

    state_path = Path(state_dir) if state_dir is not None else Path(".opencode") / "state"
    if not state_path.is_absolute():
        state_path = project_dir / state_path
    if not state_path.is_dir():
        report.warnings.append("State directory does not exist. Run 'arcanum run' to initialize.")

    return report
