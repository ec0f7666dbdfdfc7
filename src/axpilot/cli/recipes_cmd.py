"""axpilot recipes -- List, show and delete saved recipes.

Subcommands: list, show, delete.  None of them touch the UI, so they work
without accessibility permission.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer
import yaml
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table

from axpilot.cli.common import check_output_format, console, emit_json, fail, load_config
from axpilot.engine.recipe_store import FileRecipeStore
from axpilot.engine.recipes import RecipeDefinitionError

recipes_app = typer.Typer(
    name="recipes",
    help="List, show and delete saved recipes.",
    no_args_is_help=True,
)

_DIR_OPTION_HELP = "AXPilot project directory. Defaults to auto-detected .axpilot/ from cwd."


def _store(dir: Path | None) -> FileRecipeStore:
    return FileRecipeStore(load_config(dir).recipes_dir)


@recipes_app.command(name="list")
def recipes_list(
    output_format: str = typer.Option("text", "--output", "-o", help="Output format: text or json."),
    dir: Optional[Path] = typer.Option(None, "--dir", "-d", help=_DIR_OPTION_HELP),
) -> None:
    """List saved recipes."""
    check_output_format(output_format)
    store = _store(dir)
    summaries = [r.summary() for r in store.list_recipes()]

    if output_format == "json":
        emit_json({"count": len(summaries), "recipes": summaries})
        return

    if not summaries:
        console.print(
            Panel(
                f"[yellow]No recipes found.[/yellow]\n\nLooked in: {store.recipes_dir}\n\n"
                "Run [bold]axpilot init[/bold] to scaffold a sample recipe.",
                title="No Recipes",
                border_style="yellow",
            )
        )
        return

    table = Table(title="AXPilot Recipes", border_style="cyan")
    table.add_column("Name", style="bold")
    table.add_column("App")
    table.add_column("Steps", justify="right")
    table.add_column("Params")
    table.add_column("Description")
    for s in summaries:
        table.add_row(s["name"], s["app"] or "", str(s["steps"]), ", ".join(s["params"]), s["description"])
    console.print(table)


@recipes_app.command(name="show")
def recipes_show(
    name: str = typer.Argument(..., help="Recipe name."),
    output_format: str = typer.Option("text", "--output", "-o", help="Output format: text or json."),
    dir: Optional[Path] = typer.Option(None, "--dir", "-d", help=_DIR_OPTION_HELP),
) -> None:
    """Show a recipe definition."""
    check_output_format(output_format)
    store = _store(dir)
    try:
        recipe = store.load_recipe(name)
    except RecipeDefinitionError as exc:
        fail(f"[red]{exc}[/red]", title="Invalid Recipe")
    if recipe is None:
        fail(
            f"[red]Recipe '{name}' not found.[/red]\n\nRun [bold]axpilot recipes list[/bold] to see available recipes.",
            title="Recipe Not Found",
            code=1,
        )

    if output_format == "json":
        emit_json(recipe.to_dict())
        return
    text = yaml.safe_dump(recipe.to_dict(), sort_keys=False, allow_unicode=True)
    console.print(Syntax(text, "yaml", theme="ansi_dark", background_color="default"))


@recipes_app.command(name="delete")
def recipes_delete(
    name: str = typer.Argument(..., help="Recipe name."),
    yes: bool = typer.Option(False, "--yes", "-y", help="Delete without asking."),
    dir: Optional[Path] = typer.Option(None, "--dir", "-d", help=_DIR_OPTION_HELP),
) -> None:
    """Delete a saved recipe."""
    store = _store(dir)
    path = store.path_for(name)
    if path is None:
        fail(f"[red]Recipe '{name}' not found.[/red]", title="Recipe Not Found", code=1)
    if not yes and not typer.confirm(f"Delete {path}?"):
        raise typer.Exit(code=1)
    store.delete_recipe(name)
    console.print(f"[green]Deleted[/green] {path}")
