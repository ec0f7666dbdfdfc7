"""AXPilot CLI -- Main Typer entry point.

Registers all subcommands and provides --version / --verbose global options.
"""

from __future__ import annotations

import typer
from rich.console import Console

from axpilot import __version__

TAGLINE = "Drive macOS apps and browsers through the accessibility tree."

console = Console()

# ── Version callback ──────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        console.print("[bold cyan]axpilot[/bold cyan]", f"v{__version__}")
        console.print(f"  {TAGLINE}", style="dim")
        raise typer.Exit()


# ── Main app ──────────────────────────────────────────────────────────────

app = typer.Typer(
    name="axpilot",
    help=TAGLINE,
    rich_markup_mode="rich",
    no_args_is_help=True,
    add_completion=False,
)


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        help="Show AXPilot version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable verbose output.",
    ),
) -> None:
    """AXPilot -- semantic UI automation for macOS.

    Find elements, act on them, wait for the result, and replay saved recipes.
    """
    if verbose:
        import logging

        logging.basicConfig(level=logging.DEBUG, format="%(name)s  %(message)s")


# ── Register subcommands ──────────────────────────────────────────────────
# Each subcommand is a separate module to keep this file lean.

from axpilot.cli.init_cmd import init  # noqa: E402
from axpilot.cli.recipes_cmd import recipes_app  # noqa: E402
from axpilot.cli.run import run  # noqa: E402
from axpilot.cli.ui_cmd import context, element_at, find, inspect, read, state, wait  # noqa: E402
from axpilot.cli.validate import validate  # noqa: E402

app.command(name="init", help="Initialize a .axpilot/ project directory.")(init)
app.command(name="run", help="Run a saved recipe.")(run)
app.command(name="find", help="Search an app's accessibility tree.")(find)
app.command(name="wait", help="Wait for a URL, title or element condition.")(wait)
app.command(name="context", help="Show the current app, window, URL and controls.")(context)
app.command(name="state", help="List running apps and their windows.")(state)
app.command(name="read", help="Print the text content of a window or element.")(read)
app.command(name="inspect", help="Show full metadata for one element.")(inspect)
app.command(name="element-at", help="Show the element at a screen point.")(element_at)
app.command(name="validate", help="Validate recipe files without touching the UI.")(validate)
app.add_typer(recipes_app, name="recipes", help="List, show and delete saved recipes.")
