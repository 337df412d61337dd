"""Console output and prompts for the ``arcanum`` command.

Every command prints through the shared ``console`` defined here so tests can
redirect a single file handle. Prompts go through questionary and are only
shown when stdin is a terminal.
"""

from __future__ import annotations

import sys
from typing import Any, Optional, Sequence

from rich.console import Console
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table
from rich.text import Text
from rich.theme import Theme

import questionary
from questionary import Style as QStyle

STATUS_STYLES = {
    "running": "cyan",
    "ready": "cyan",
    "waiting": "yellow",
    "halted": "magenta",
    "completed": "green",
    "failed": "red",
    "invoking": "blue",
}

THEME = Theme(
    {
        "muted": "dim",
        "ok": "green",
        "bad": "bold red",
        "warn": "yellow",
        "label": "bold",
    }
)

console = Console(theme=THEME, highlight=False)

PROMPT_STYLE = QStyle(
    [
        ("qmark", "fg:magenta bold"),
        ("question", "bold"),
        ("answer", "fg:magenta"),
    ]
)

TASK_ICONS = {
    "done": "[ok]✓[/]",
    "in_progress": "[cyan]◐[/]",
    "blocked": "[bad]✗[/]",
}

PANEL_MAX_WIDTH = 80
PREVIEW_MAX_LINES = 30


def _panel_width() -> int:
    return min(console.width, PANEL_MAX_WIDTH)


def _framed(body: Any, title: str) -> Panel:
    return Panel(
        body,
        title=title,
        title_align="left",
        border_style="muted",
        width=_panel_width(),
        padding=(0, 1),
    )


def banner(version: str) -> None:
    console.print()
    console.print(Text.assemble(("Arcanum", "bold magenta"), " ", (f"v{version}", "muted")))
    console.print("[muted]Protocol execution engine[/]")
    console.print()


def heading(text: str) -> None:
    console.print()
    console.print(f"[label]{text}[/]")


def success(msg: str) -> None:
    console.print(f"  [ok]✓[/] {msg}")


def error(msg: str, hint: Optional[str] = None) -> None:
    """Print an error line, with an optional hint underneath."""
    console.print(f"  [bad]✗ {msg}[/]")
    if hint:
        console.print(f"    [muted]{hint}[/]")


def warning(msg: str) -> None:
    console.print(f"  [warn]![/] {msg}")


def dim(msg: str) -> None:
    console.print(f"  [muted]{msg}[/]")


def key_value(key: str, value: str, indent: int = 2) -> None:
    console.print(f"{' ' * indent}[label]{key}:[/] {value}")


def format_status(status: str) -> str:
    """Wrap a run status in its colour markup."""
    style = STATUS_STYLES.get(status, "white")
    return f"[{style}]{status}[/]"


def task_icon(status: str) -> str:
    return TASK_ICONS.get(status, "[dim]○[/]")


def next_steps(steps: Sequence[str]) -> None:
    console.print()
    console.print("[label]Next steps:[/]")
    for number, step in enumerate(steps, start=1):
        console.print(f"  {number}. {step}")
    console.print()


def yaml_preview(content: str, title: str = "", max_lines: int = PREVIEW_MAX_LINES) -> None:
    """Show the head of a YAML document in a panel."""
    lines = content.splitlines()
    shown = "\n".join(lines[:max_lines])
    if len(lines) > max_lines:
        shown += f"\n# ... truncated ({len(lines) - max_lines} more lines)"
    console.print()
    console.print(_framed(Syntax(shown, "yaml", theme="ansi_dark"), title or "YAML"))


def config_panel(title: str, items: dict[str, str]) -> None:
    body = "\n".join(f"[label]{key}:[/] {value}" for key, value in items.items())
    console.print()
    console.print(_framed(body, title))


def spinner(message: str) -> Any:
    """Spinner context manager for slow file operations."""
    return console.status(f"  {message}", spinner="dots")


def make_table(
    title: str,
    columns: Sequence[str],
    rows: Sequence[Sequence[str]],
    styles: Optional[dict[str, str]] = None,
) -> None:
    """Print rows under ``columns``; ``styles`` maps a column name to a Rich style."""
    styles = styles or {}
    table = Table(
        title=title,
        title_style="label",
        header_style="bold dim",
        border_style="muted",
        width=_panel_width(),
        padding=(0, 1),
    )
    for column in columns:
        table.add_column(column, style=styles.get(column))
    for row in rows:
        table.add_row(*row)
    console.print()
    console.print(table)


def confirm(message: str, default: bool = True) -> bool:
    """Ask a yes/no question. Ctrl-C exits the command cleanly."""
    answer: Optional[bool] = questionary.confirm(
        message, default=default, style=PROMPT_STYLE
    ).ask()
    if answer is None:
        raise SystemExit(0)
    return answer


def is_interactive() -> bool:
    return hasattr(sys.stdin, "isatty") and sys.stdin.isatty()
