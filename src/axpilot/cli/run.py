"""axpilot run -- Execute a saved recipe.

Resolves config, builds the automation service, runs the recipe with the
given parameters and prints per-step results.  Exit code 0 when every step
succeeded, 1 when the run failed, 2 on usage or configuration errors.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import typer
from rich.panel import Panel
from rich.table import Table

from axpilot.cli.common import check_output_format, console, emit_json, fail, load_config, make_service
from axpilot.engine.protocols import INVALID_DEFINITION, INVALID_PARAMETER, MISSING_PARAMETER
from axpilot.engine.recipe_runner import RunReport

logger = logging.getLogger("axpilot.cli.run")

# Failures that mean the invocation was wrong, not the UI
_USAGE_ERRORS = frozenset({INVALID_DEFINITION, INVALID_PARAMETER, MISSING_PARAMETER})


def _parse_params(raw: list[str]) -> dict[str, str]:
    """Parse repeated KEY=VALUE options."""
    params: dict[str, str] = {}
    for item in raw:
        key, sep, value = item.partition("=")
        if not sep or not key.strip():
            fail(
                f"[red]Invalid parameter:[/red] {item}\n\nExpected format: KEY=VALUE (e.g., -p to=ann@example.com)",
                title="Usage Error",
            )
        params[key.strip()] = value
    return params


def _print_report(report: RunReport) -> None:
    table = Table(title=f"Recipe: {report.recipe_name}", border_style="cyan")
    table.add_column("Step", justify="right")
    table.add_column("Action")
    table.add_column("Result")
    table.add_column("Method")
    table.add_column("Time", justify="right")
    table.add_column("Detail")

    for step in report.step_results:
        if step.success:
            status = "[green]✓ OK[/green]"
            detail = step.note or ""
        else:
            status = "[red]✗ FAIL[/red]"
            error = step.error or ""
            detail = error if len(error) <= 80 else error[:77] + "..."
        table.add_row(
            str(step.step_id),
            step.action,
            status,
            step.method or "",
            f"{step.duration_ms}ms",
            detail,
        )

    console.print()
    if report.step_results:
        console.print(table)

    if report.success:
        lines = [
            "[bold green]RECIPE SUCCEEDED[/bold green]",
            "",
            f"  Steps:     {report.steps_completed}/{report.total_steps}",
            f"  Duration:  {report.duration_ms / 1000:.1f}s",
        ]
        border = "green"
    else:
        lines = [
            "[bold red]RECIPE FAILED[/bold red]",
            "",
            f"  Steps:     {report.steps_completed}/{report.total_steps}",
            f"  Error:     [{report.error_code}] {report.error}",
        ]
        if report.suggestion:
            lines.append(f"  Hint:      {report.suggestion}")
        context = report.failure_context or {}
        if context.get("window"):
            lines.append(f"  Window:    {context['window']}")
        if context.get("url"):
            lines.append(f"  URL:       {context['url']}")
        border = "red"
    console.print(Panel("\n".join(lines), border_style=border))
    console.print()


def run(
    recipe: str = typer.Argument(..., help="Recipe name (see: axpilot recipes list)."),
    param: Optional[list[str]] = typer.Option(
        None,
        "--param",
        "-p",
        help="Recipe parameter as KEY=VALUE. Repeatable.",
    ),
    output_format: str = typer.Option(
        "text",
        "--output",
        "-o",
        help="Output format: text or json.",
    ),
    dir: Optional[Path] = typer.Option(
        None,
        "--dir",
        "-d",
        help="AXPilot project directory. Defaults to auto-detected .axpilot/ from cwd.",
    ),
) -> None:
    """Run a saved recipe against the live UI.

    \b
    Examples:
      axpilot run gmail-send -p to=ann@example.com -p subject=Hi
      axpilot run gmail-send -p to=ann@example.com -o json
    """
    check_output_format(output_format)
    params = _parse_params(param or [])
    config = load_config(dir)
    service = make_service(config)

    if output_format == "text":
        console.print(f"[bold]Running recipe[/bold] [cyan]{recipe}[/cyan]...")

    try:
        report = service.run_recipe(recipe, params)
    except KeyboardInterrupt:
        console.print("\n[yellow]Run interrupted by user.[/yellow]")
        raise typer.Exit(code=1)

    if output_format == "json":
        emit_json(report.to_dict())
    else:
        _print_report(report)

    if report.success:
        raise typer.Exit(code=0)
    if report.error_code in _USAGE_ERRORS and not report.step_results:
        raise typer.Exit(code=2)
    raise typer.Exit(code=1)
