"""axpilot find / wait / context / state / read / inspect / element-at -- Observe the live UI from the shell."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Optional

import typer
from rich.panel import Panel
from rich.table import Table

from axpilot.cli.common import (
    check_output_format,
    console,
    emit_json,
    fail,
    load_config,
    make_service,
    output_console,
)
from axpilot.engine.locator import Locator
from axpilot.engine.protocols import TIMEOUT

_DIR_OPTION_HELP = "AXPilot project directory. Defaults to auto-detected .axpilot/ from cwd."


def find(
    query: Optional[str] = typer.Argument(None, help="Text to match against element labels."),
    role: Optional[str] = typer.Option(None, "--role", "-r", help="Accessibility role, e.g. AXButton."),
    dom_id: Optional[str] = typer.Option(None, "--dom-id", help="DOM id of a web element."),
    dom_class: Optional[str] = typer.Option(None, "--dom-class", help="DOM class the element must carry."),
    identifier: Optional[str] = typer.Option(None, "--identifier", help="AXIdentifier of a native element."),
    app: Optional[str] = typer.Option(None, "--app", "-a", help="Application name. Default: frontmost app."),
    depth: Optional[int] = typer.Option(None, "--depth", help="Semantic depth budget override."),
    output_format: str = typer.Option("text", "--output", "-o", help="Output format: text or json."),
    dir: Optional[Path] = typer.Option(None, "--dir", "-d", help=_DIR_OPTION_HELP),
) -> None:
    """Search an app's accessibility tree.

    \b
    Examples:
      axpilot find Compose --app "Google Chrome"
      axpilot find --dom-id search-input -o json
    """
    check_output_format(output_format)
    locator = Locator.build(query=query, role=role, dom_id=dom_id, dom_class=dom_class, identifier=identifier)
    if locator.is_empty:
        fail("Provide a query or at least one of --role, --dom-id, --dom-class, --identifier.", title="Usage Error")

    service = make_service(load_config(dir))
    if app and not service.app_running(app):
        fail(
            f"[red]App '{app}' not found.[/red]\n\nRunning apps: {', '.join(service.running_app_names())}",
            title="App Not Found",
            code=1,
        )
    elements = service.find_elements(locator, depth=depth, app=app)

    if output_format == "json":
        emit_json({"query": locator.describe(), "count": len(elements), "elements": elements})
    else:
        table = Table(title=f"{len(elements)} match(es) for {locator.describe()}", border_style="cyan")
        table.add_column("Role", style="bold")
        table.add_column("Name")
        table.add_column("Position")
        table.add_column("Size")
        table.add_column("Actionable")
        table.add_column("DOM id")
        for el in elements:
            position = el.get("position")
            size = el.get("size")
            table.add_row(
                el.get("role", ""),
                el.get("name", ""),
                f"{position['x']},{position['y']}" if position else "",
                f"{size['width']}x{size['height']}" if size else "",
                "yes" if el.get("actionable") else "",
                el.get("dom_id") or "",
            )
        console.print(table)

    raise typer.Exit(code=0 if elements else 1)


def wait(
    condition: str = typer.Argument(
        ..., help="urlContains, titleContains, elementExists, elementGone, urlChanged, titleChanged or delay."
    ),
    value: Optional[str] = typer.Argument(None, help="Text the condition looks for."),
    timeout: Optional[float] = typer.Option(None, "--timeout", "-t", help="Seconds before giving up."),
    interval: Optional[float] = typer.Option(None, "--interval", "-i", help="Seconds between checks."),
    app: Optional[str] = typer.Option(None, "--app", "-a", help="Application to observe."),
    output_format: str = typer.Option("text", "--output", "-o", help="Output format: text or json."),
    dir: Optional[Path] = typer.Option(None, "--dir", "-d", help=_DIR_OPTION_HELP),
) -> None:
    """Wait for a UI condition.

    \b
    Examples:
      axpilot wait urlContains inbox --app "Google Chrome" -t 15
      axpilot wait elementGone Loading
    """
    check_output_format(output_format)
    service = make_service(load_config(dir))
    result = service.wait_for(condition, value, timeout=timeout, interval=interval, app=app)

    if output_format == "json":
        emit_json(result.to_dict())
    elif result.met:
        console.print(f"[bold green]✓[/bold green] {condition} met after {result.elapsed_seconds:.1f}s")
    else:
        message = f"[red]{result.error}[/red]"
        if result.suggestion:
            message += f"\n\n{result.suggestion}"
        console.print(Panel(message, title=f"[red]{result.error_code}[/red]", border_style="red"))

    if result.met:
        raise typer.Exit(code=0)
    raise typer.Exit(code=1 if result.error_code == TIMEOUT else 2)


def context(
    app: Optional[str] = typer.Option(None, "--app", "-a", help="Application name. Default: frontmost app."),
    output_format: str = typer.Option("text", "--output", "-o", help="Output format: text or json."),
    dir: Optional[Path] = typer.Option(None, "--dir", "-d", help=_DIR_OPTION_HELP),
) -> None:
    """Show the current app, window, URL, focused element and interactive controls."""
    check_output_format(output_format)
    service = make_service(load_config(dir))
    data = service.get_context(app)

    if output_format == "json":
        emit_json(data)
        raise typer.Exit(code=1 if "error" in data else 0)

    if "error" in data:
        fail(f"[red]{data['error']}[/red]\n\n{data.get('suggestion', '')}", title="App Not Found", code=1)

    lines = [
        f"[bold]App:[/bold]      {data.get('app')}  [dim]({data.get('bundle_id') or '?'}, pid {data.get('pid')})[/dim]",
        f"[bold]Window:[/bold]   {data.get('window') or '-'}",
        f"[bold]URL:[/bold]      {data.get('url') or '-'}",
    ]
    focused = data.get("focused_element")
    if focused:
        lines.append(f"[bold]Focused:[/bold]  {focused.get('role')} {focused.get('name') or ''}")
    console.print(Panel("\n".join(lines), title="[bold cyan]Context[/bold cyan]", border_style="cyan"))

    elements = data.get("interactive_elements") or []
    if elements:
        table = Table(title="Interactive elements", border_style="dim")
        table.add_column("Role", style="bold")
        table.add_column("Name")
        for el in elements:
            table.add_row(el.get("role", ""), el.get("name", ""))
        console.print(table)


def _emit_or_fail(data: dict[str, Any], output_format: str, title: str) -> None:
    """JSON-print *data* and exit, or exit with its error.  Returns only for text output of a success."""
    if output_format == "json":
        emit_json(data)
        raise typer.Exit(code=1 if "error" in data else 0)
    if "error" in data:
        message = f"[red]{data['error']}[/red]"
        if data.get("suggestion"):
            message += f"\n\n{data['suggestion']}"
        fail(message, title=title, code=1)


def _details_panel(data: dict[str, Any], title: str) -> Panel:
    lines = []
    for key, value in data.items():
        if isinstance(value, dict):
            value = ", ".join(f"{k}={v}" for k, v in value.items())
        elif isinstance(value, list):
            value = ", ".join(str(v) for v in value)
        lines.append(f"[bold]{key}:[/bold] {value}")
    return Panel("\n".join(lines), title=f"[bold cyan]{title}[/bold cyan]", border_style="cyan")


def state(
    app: Optional[str] = typer.Option(None, "--app", "-a", help="Restrict the listing to one application."),
    output_format: str = typer.Option("text", "--output", "-o", help="Output format: text or json."),
    dir: Optional[Path] = typer.Option(None, "--dir", "-d", help=_DIR_OPTION_HELP),
) -> None:
    """List running apps and their windows."""
    check_output_format(output_format)
    data = make_service(load_config(dir)).get_state(app)
    _emit_or_fail(data, output_format, "App Not Found")

    table = Table(title=f"{data['app_count']} running app(s)", border_style="cyan")
    table.add_column("App", style="bold")
    table.add_column("Pid")
    table.add_column("Window")
    table.add_column("Position")
    table.add_column("Size")
    for entry in data["apps"]:
        name = entry["name"] + (" [green]*[/green]" if entry.get("active") else "")
        windows = entry.get("windows") or [{}]
        for index, window in enumerate(windows):
            position = window.get("position")
            size = window.get("size")
            table.add_row(
                name if index == 0 else "",
                str(entry["pid"]) if index == 0 else "",
                window.get("title", ""),
                f"{position['x']},{position['y']}" if position else "",
                f"{size['width']}x{size['height']}" if size else "",
            )
    console.print(table)


def read(
    query: Optional[str] = typer.Argument(None, help="Read only the subtree of the element matching this text."),
    app: Optional[str] = typer.Option(None, "--app", "-a", help="Application name. Default: frontmost app."),
    depth: Optional[int] = typer.Option(None, "--depth", min=0, help="Content levels to read (default 25)."),
    output_format: str = typer.Option("text", "--output", "-o", help="Output format: text or json."),
    dir: Optional[Path] = typer.Option(None, "--dir", "-d", help=_DIR_OPTION_HELP),
) -> None:
    """Print the text content of the focused window or an element.

    \b
    Examples:
      axpilot read --app "Google Chrome"
      axpilot read "New Message" --app Chrome -o json
    """
    check_output_format(output_format)
    data = make_service(load_config(dir)).read_text(app, query, depth)
    _emit_or_fail(data, output_format, "Read Failed")
    output_console.print(data["content"], markup=False, highlight=False)


def inspect(
    query: Optional[str] = typer.Argument(None, help="Text identifying the element."),
    role: Optional[str] = typer.Option(None, "--role", "-r", help="Accessibility role, e.g. AXButton."),
    dom_id: Optional[str] = typer.Option(None, "--dom-id", help="DOM id of a web element."),
    identifier: Optional[str] = typer.Option(None, "--identifier", help="AXIdentifier of a native element."),
    app: Optional[str] = typer.Option(None, "--app", "-a", help="Application name. Default: frontmost app."),
    output_format: str = typer.Option("text", "--output", "-o", help="Output format: text or json."),
    dir: Optional[Path] = typer.Option(None, "--dir", "-d", help=_DIR_OPTION_HELP),
) -> None:
    """Show full metadata for one element."""
    check_output_format(output_format)
    locator = Locator.build(query=query, role=role, dom_id=dom_id, identifier=identifier)
    if locator.is_empty:
        fail("Provide a query or at least one of --role, --dom-id, --identifier.", title="Usage Error")
    data = make_service(load_config(dir)).inspect(locator, app)
    _emit_or_fail(data, output_format, "Element Not Found")
    console.print(_details_panel(data, locator.describe()))


def element_at(
    x: float = typer.Argument(..., help="Global screen x coordinate."),
    y: float = typer.Argument(..., help="Global screen y coordinate."),
    output_format: str = typer.Option("text", "--output", "-o", help="Output format: text or json."),
    dir: Optional[Path] = typer.Option(None, "--dir", "-d", help=_DIR_OPTION_HELP),
) -> None:
    """Show the element at a screen point."""
    check_output_format(output_format)
    data = make_service(load_config(dir)).element_at(x, y)
    _emit_or_fail(data, output_format, "Nothing There")
    console.print(_details_panel(data, f"Element at ({x:g}, {y:g})"))
