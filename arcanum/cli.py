"""
Arcanum CLI entry point.

Commands:
- arcanum init: Copy a protocol template into the project
- arcanum status: Show the current workflow state
- arcanum validate: Validate the protocol
- arcanum run: Execute one (or more) engine steps
- arcanum transition: Request a specific transition (passes manual gates)
- arcanum history: Show recent transitions
- arcanum halt / resume: Pause and continue execution
- arcanum update: Set a state field
- arcanum reset: Delete the runtime state
- arcanum templates: List bundled templates
"""

import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional

import click
from rich.text import Text

from arcanum import __version__
from arcanum.agents.parser import parse_value
from arcanum.cli_ui import (
    banner,
    confirm,
    config_panel,
    console,
    dim,
    error,
    format_status,
    heading,
    is_interactive,
    key_value,
    make_table,
    next_steps,
    spinner,
    success,
    task_icon,
    warning,
    yaml_preview,
)
from arcanum.config.settings import ArcanumSettings
from arcanum.engine.lifecycle import ArcanumEngine, EngineStatus
from arcanum.exceptions import ArcanumError, ProtocolNotFoundError
from arcanum.utils import set_path, split_path


def setup_logging(debug: bool = False) -> None:
    """Configure logging."""
    level = logging.DEBUG if debug else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stderr)],
    )


class CliContext:
    def __init__(self, project_dir: Path, config: Optional[Path], debug: bool):
        self.project_dir = project_dir
        self.config = config
        self.debug = debug

    def settings(self) -> ArcanumSettings:
        return ArcanumSettings(
            _config_path=str(self.config) if self.config else None,
            debug=self.debug,
        )

    def engine(self) -> ArcanumEngine:
        return ArcanumEngine(self.project_dir, settings=self.settings())


pass_ctx = click.make_pass_decorator(CliContext)


def _fail(e: Exception, debug: bool = False) -> None:
    if isinstance(e, ProtocolNotFoundError):
        error("No protocol found.", hint="Run: arcanum init")
    elif isinstance(e, KeyError) and e.args:
        # str(KeyError) quotes its message
        error(str(e.args[0]))
    else:
        error(str(e))
    if debug:
        import traceback

        traceback.print_exc()
    raise SystemExit(1)


async def _open_engine(ctx: CliContext) -> ArcanumEngine:
    engine = ctx.engine()
    await engine.initialize()
    return engine


@click.group()
@click.version_option(version=__version__, prog_name="arcanum")
@click.option(
    "--project-dir",
    "-C",
    type=click.Path(file_okay=False, path_type=Path),
    default=Path("."),
    help="Project directory (default: current directory)",
)
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Path to arcanum.yaml config file",
)
@click.option(
    "--debug/--no-debug",
    default=False,
    help="Enable debug logging",
)
@click.pass_context
def main(click_ctx: click.Context, project_dir: Path, config: Optional[Path], debug: bool) -> None:
    """Arcanum - Protocol execution engine.

    Runs declarative workflows with gated transitions, nested
    sub-workflows and persisted state.
    """
    setup_logging(debug)
    click_ctx.obj = CliContext(project_dir, config, debug)


@main.command()
@click.argument("template", required=False, default="task_loop")
@click.option("--force", "-f", is_flag=True, help="Overwrite an existing protocol")
@pass_ctx
def init(ctx: CliContext, template: str, force: bool) -> None:
    """Initialize a protocol from a bundled template.

    Example:
        arcanum init task_loop
    """
    from arcanum.scaffold import copy_template

    banner(__version__)
    protocol_dir = ctx.settings().resolve_protocol_dir(ctx.project_dir)
    if (protocol_dir / "index.yaml").exists() and not force:
        if not is_interactive() or not confirm(
            f"A protocol already exists at {protocol_dir}. Overwrite?", default=False
        ):
            error(f"Protocol already exists at {protocol_dir}", hint="Use --force to overwrite")
            raise SystemExit(1)
        force = True

    try:
        written = copy_template(template, protocol_dir, force=force)
    except (KeyError, FileExistsError) as e:
        _fail(e)

    success(f"Initialized protocol from template '{template}'")
    for path in written:
        dim(str(path))

    index = protocol_dir / "index.yaml"
    yaml_preview(index.read_text(encoding="utf-8"), title=str(index))
    next_steps(["Check the protocol: arcanum validate", "Run the first step: arcanum run"])


@main.command()
@pass_ctx
def status(ctx: CliContext) -> None:
    """Show the current workflow state."""

    async def show() -> None:
        engine = await _open_engine(ctx)
        protocol = engine.get_protocol()
        state = await engine.get_state()
        engine_state = engine.get_status()
        available = await engine.get_available_transitions()

        items = {
            "Protocol": f"{protocol.index.name} v{protocol.index.version}",
            "Workflow": state.workflow,
            "Step": state.step,
            "Status": format_status(state.status.value),
            "Engine": format_status(engine_state.status.value),
            "Depth": str(state.depth),
        }
        if state.updated_at:
            items["Updated"] = state.updated_at
        if available:
            items["Next"] = ", ".join(available)
        config_panel("Arcanum Protocol Status", items)

        if state.call_stack:
            rows = [
                [str(i), entry.workflow, entry.step, entry.resume_to or "-"]
                for i, entry in enumerate(state.call_stack)
            ]
            make_table("Call stack", ["#", "Workflow", "Step", "Resume to"], rows)

        tasks = state.extra.get("tasks")
        if isinstance(tasks, list) and tasks:
            done = sum(1 for t in tasks if isinstance(t, dict) and t.get("status") == "done")
            heading(f"Tasks ({done}/{len(tasks)} completed)")
            for task in tasks:
                if not isinstance(task, dict):
                    continue
                agent = f" [dim]({task['agent']})[/]" if task.get("agent") else ""
                console.print(
                    f"  {task_icon(task.get('status', ''))} {task.get('id')}: "
                    f"{task.get('status', 'unknown')}{agent}"
                )
        console.print()

    try:
        asyncio.run(show())
    except ArcanumError as e:
        _fail(e, ctx.debug)


@main.command()
@pass_ctx
def validate(ctx: CliContext) -> None:
    """Validate the protocol documents.

    Checks schemas, cross-references, agents and gate expressions.
    """
    from arcanum.protocol.loader import ProtocolLoader
    from arcanum.protocol.validation import validate_protocol

    settings = ctx.settings()
    with spinner("Validating protocol..."):
        report = validate_protocol(
            ctx.project_dir,
            loader=ProtocolLoader(settings.protocol_dir),
            state_dir=settings.state_dir,
        )

    protocol = report.protocol
    if protocol is not None:
        config_panel(
            "Protocol",
            {
                "Name": protocol.index.name,
                "Version": protocol.index.version,
                "Workflows": str(len(protocol.workflows)),
                "Agents": str(len(protocol.agents)),
                "Rules": str(len(protocol.rules)),
                "Snippets": str(len(protocol.snippets)),
            },
        )
        rows = [
            [wid, str(len(w.steps)), str(len(w.transitions))]
            for wid, w in protocol.workflows.items()
        ]
        make_table("Workflows", ["Id", "Steps", "Transitions"], rows)

    console.print()
    for message in report.warnings:
        warning(message)
    for message in report.errors:
        error(message)

    if not report.valid:
        error(f"Validation failed with {len(report.errors)} error(s)")
        raise SystemExit(1)
    success("Protocol is valid")


@main.command()
@click.option("--steps", "-n", type=int, default=1, help="Maximum number of steps to run")
@pass_ctx
def run(ctx: CliContext, steps: int) -> None:
    """Execute workflow steps.

    Stops early when the workflow completes, waits on a gate, or a
    transition fails.
    """

    async def execute() -> int:
        engine = await _open_engine(ctx)
        state = await engine.get_state()
        key_value("Workflow", state.workflow)
        key_value("Step", state.step)

        engine_status = engine.get_status().status
        if engine_status == EngineStatus.COMPLETED:
            success("Workflow is already completed.")
            return 0
        if engine_status == EngineStatus.HALTED:
            warning("Workflow is halted. Run: arcanum resume")
            return 1

        for _ in range(max(steps, 1)):
            result = await engine.step()
            if result is None:
                status_now = engine.get_status().status
                if status_now == EngineStatus.COMPLETED:
                    success("Workflow completed!")
                elif status_now == EngineStatus.WAITING:
                    warning("Waiting for gate conditions to be met.")
                    dim("No available transitions from the current step.")
                else:
                    dim(f"Status: {status_now.value}")
                return 0
            if not result.success:
                error(f"Transition failed: {result.error}")
                return 1
            console.print(f"  [cyan]→[/] {result.from_step} → {result.to_step}")

        state = await engine.get_state()
        key_value("Now at", f"{state.workflow}:{state.step} ({state.status.value})")
        return 0

    try:
        code = asyncio.run(execute())
    except ArcanumError as e:
        _fail(e, ctx.debug)
    raise SystemExit(code)


@main.command()
@click.argument("to_step")
@pass_ctx
def transition(ctx: CliContext, to_step: str) -> None:
    """Request a transition to TO_STEP.

    The transition must be declared and its gate must pass; manual gates
    count as approved.
    """

    async def request():
        engine = await _open_engine(ctx)
        return await engine.request_transition(to_step)

    try:
        result = asyncio.run(request())
    except ArcanumError as e:
        _fail(e, ctx.debug)

    if not result.success:
        error(f"Transition failed: {result.error}")
        raise SystemExit(1)
    success(f"{result.from_step} → {result.to_step}")


@main.command()
@click.option("--lines", "-n", type=int, default=20, help="Number of entries to show")
@pass_ctx
def history(ctx: CliContext, lines: int) -> None:
    """Show recent transitions."""

    async def show() -> None:
        engine = await _open_engine(ctx)
        entries = await engine.get_history(lines)
        if not entries:
            dim("No transitions recorded yet.")
            return
        rows = [
            [e.ts, e.workflow, e.type.value, e.from_step, e.to_step]
            for e in entries
        ]
        make_table(
            "Transition history",
            ["Time", "Workflow", "Type", "From", "To"],
            rows,
            styles={"Time": "muted", "Type": "muted"},
        )

    try:
        asyncio.run(show())
    except ArcanumError as e:
        _fail(e, ctx.debug)


@main.command()
@pass_ctx
def halt(ctx: CliContext) -> None:
    """Halt the workflow."""

    async def do_halt() -> None:
        engine = await _open_engine(ctx)
        await engine.halt()

    try:
        asyncio.run(do_halt())
    except ArcanumError as e:
        _fail(e, ctx.debug)
    success("Workflow halted")


@main.command()
@pass_ctx
def resume(ctx: CliContext) -> None:
    """Resume a halted workflow."""

    async def do_resume() -> None:
        engine = await _open_engine(ctx)
        await engine.resume()

    try:
        asyncio.run(do_resume())
    except ArcanumError as e:
        _fail(e, ctx.debug)
    success("Workflow resumed")


@main.command()
@click.argument("field")
@click.argument("value")
@pass_ctx
def update(ctx: CliContext, field: str, value: str) -> None:
    """Set a state FIELD (dot-path) to VALUE.

    VALUE is parsed like agent directives: true/false, numbers and JSON
    are converted, anything else is a string.

    Example:
        arcanum update tasks '[{"id": "1", "status": "pending"}]'
    """
    parts = split_path(field)
    if not parts:
        error("FIELD must not be empty")
        raise SystemExit(1)

    async def do_update() -> None:
        engine = await _open_engine(ctx)
        document = (await engine.get_state()).to_document()
        set_path(document, field, parse_value(value))
        await engine.update_state({parts[0]: document[parts[0]]})

    try:
        asyncio.run(do_update())
    except (ArcanumError, ValueError, IndexError, TypeError) as e:
        _fail(e, ctx.debug)
    success(f"Updated {field}")


@main.command()
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation")
@pass_ctx
def reset(ctx: CliContext, yes: bool) -> None:
    """Delete the runtime state and transition history."""
    from arcanum.state.manager import StateManager
    from arcanum.state.transition_log import TransitionLog

    if not yes and is_interactive() and not confirm("Delete the workflow state?", default=False):
        dim("Aborted.")
        return

    state_dir = ctx.settings().resolve_state_dir(ctx.project_dir)

    async def do_reset() -> None:
        await StateManager(ctx.project_dir, state_dir=state_dir).reset()
        await TransitionLog(state_dir).clear()

    asyncio.run(do_reset())
    success("State reset")
    dim("The next 'arcanum run' starts from the initial step.")


@main.command()
def templates() -> None:
    """List bundled protocol templates."""
    from arcanum.scaffold import list_templates

    rows = [[t.name, t.description] for t in list_templates()]
    make_table("Templates", ["Name", "Description"], rows)


@main.command()
def version() -> None:
    """Show version information."""
    console.print(
        Text.assemble(
            ("Arcanum", "bold"),
            (f" v{__version__}", "dim"),
        )
    )


if __name__ == "__main__":
    main()
