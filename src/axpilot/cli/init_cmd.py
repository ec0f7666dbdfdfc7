"""axpilot init -- Initialize a .axpilot/ project directory.

Creates the directory structure, config template, and a sample recipe
that AXPilot needs to discover and run recipes.
"""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console
from rich.panel import Panel
from rich.tree import Tree

from axpilot.config import PROJECT_DIR_NAME

console = Console()

# ── Sample file contents ──────────────────────────────────────────────────

_SAMPLE_CONFIG = """\
# AXPilot project configuration

# Recipes directory, relative to this file
recipes_dir: recipes

# Browser checked by url_contains preconditions that name no app
default_browser: Google Chrome

search:
  # Content-bearing levels to descend; anonymous containers are free
  semantic_depth_budget: 25
  max_results: 50
  max_candidates_scanned: 100
  dom_id_depth: 50
  wait_element_depth: 15

cache:
  # Seconds a resolved element is reused
  node_ttl: 2.0
  # Seconds a remembered tree path is tried first
  path_hint_ttl: 10.0

wait:
  timeout: 10.0
  interval: 0.5
"""

_SAMPLE_RECIPE = """\
schema_version: 2
name: chrome-open-url
description: Open a URL in a new Chrome tab and wait for it to load
app: Google Chrome
params:
  url:
    type: string
    description: Address to open
    required: true
  expect:
    type: string
    description: Text the loaded URL should contain
    required: true
preconditions:
  app_running: Google Chrome
steps:
  - id: 1
    action: hotkey
    params: {keys: "cmd,t"}
    note: New tab
  - id: 2
    action: type
    params: {text: "{{url}}"}
  - id: 3
    action: press
    params: {key: return}
    wait_after: {condition: urlContains, value: "{{expect}}", timeout: 15}
on_failure: stop
"""


def init(
    dir: Path = typer.Option(
        Path("."),
        "--dir",
        "-d",
        help="Parent directory for .axpilot/ project. Defaults to current directory.",
    ),
    force: bool = typer.Option(
        False,
        "--force",
        "-f",
        help="Overwrite existing .axpilot/ config and sample recipe.",
    ),
) -> None:
    """Initialize a new AXPilot project directory.

    Creates .axpilot/ with a recipes/ subdirectory, a config.yaml template,
    and a sample recipe.
    """
    project_dir = dir.resolve() / PROJECT_DIR_NAME

    if project_dir.exists() and not force:
        console.print(
            Panel(
                f"[yellow]Directory already exists:[/yellow] {project_dir}\n\n"
                "Use [bold]--force[/bold] to overwrite.",
                title="Already Initialized",
                border_style="yellow",
            )
        )
        raise typer.Exit(code=2)

    recipes_dir = project_dir / "recipes"
    recipes_dir.mkdir(parents=True, exist_ok=True)

    (project_dir / "config.yaml").write_text(_SAMPLE_CONFIG, encoding="utf-8")
    (recipes_dir / "chrome-open-url.yaml").write_text(_SAMPLE_RECIPE, encoding="utf-8")

    # Display result as a Rich tree
    tree = Tree(f"[bold green]{project_dir}[/bold green]", guide_style="dim")
    tree.add("[cyan]config.yaml[/cyan]")
    branch = tree.add("[blue]recipes/[/blue]")
    for child in sorted(recipes_dir.iterdir()):
        if child.is_file():
            branch.add(f"[dim]{child.name}[/dim]")

    console.print()
    console.print(
        Panel(
            tree,
            title="[bold green]AXPilot Initialized[/bold green]",
            border_style="green",
        )
    )
    console.print()
    console.print("[dim]Next steps:[/dim]")
    console.print("  1. Grant your terminal Accessibility access (System Settings > Privacy & Security)")
    console.print("  2. Run [bold]axpilot validate[/bold] to check the sample recipe")
    console.print("  3. Run [bold]axpilot run chrome-open-url -p url=example.com -p expect=example[/bold]")
    console.print()
