"""Helpers shared by the CLI commands: config lookup, service construction, output."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, NoReturn

import typer
from rich.console import Console
from rich.panel import Panel

from axpilot.config import PROJECT_DIR_NAME, AXPilotConfig, AXPilotConfigError

console = Console(stderr=True)
output_console = Console()  # stdout for machine-readable output

OUTPUT_FORMATS = ("text", "json")


def fail(message: str, title: str = "Error", code: int = 2) -> NoReturn:
    """Print an error panel and exit."""
    console.print(Panel(message, title=f"[red]{title}[/red]", border_style="red"))
    raise typer.Exit(code=code)


def check_output_format(output_format: str) -> None:
    if output_format not in OUTPUT_FORMATS:
        fail(
            f"[red]Invalid output format:[/red] {output_format}\n\nValid formats: text, json",
            title="Config Error",
        )


def load_config(dir: Path | None = None) -> AXPilotConfig:
    """Load the project config from *dir* (or the nearest .axpilot/ above cwd)."""
    start = None
    if dir is not None:
        start = dir.resolve()
        if start.name == PROJECT_DIR_NAME:
            start = start.parent
    try:
        return AXPilotConfig.load(start)
    except AXPilotConfigError as exc:
        fail(f"[red]{exc}[/red]", title="Config Error")


def make_service(config: AXPilotConfig) -> Any:
    """Build the automation service, exiting with a readable panel when AX is unavailable."""
    from axpilot.engine.service import build_service

    try:
        return build_service(config)
    except RuntimeError as exc:
        fail(
            f"[red]{exc}[/red]\n\n"
            "AXPilot needs pyobjc and Accessibility permission on macOS.\n"
            "Try: [bold]pip install 'axpilot[native]'[/bold]",
            title="Accessibility Unavailable",
        )


def emit_json(data: Any) -> None:
    output_console.print_json(json.dumps(data, default=str))
