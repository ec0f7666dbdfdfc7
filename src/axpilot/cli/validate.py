"""axpilot validate -- Parse and validate recipe files without touching the UI.

Loads every recipe file in the project's recipes directory (or the files
given on the command line), runs the same load-time validation the runner
uses, and adds a few lint checks on top.  Safe to run anywhere, including
machines without accessibility access.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Iterator, Optional

import typer
import yaml
from rich.console import Console
from rich.panel import Panel

from axpilot.cli.common import load_config
from axpilot.engine.recipe_store import RECIPE_SUFFIXES
from axpilot.engine.recipes import PLACEHOLDER_RE, Recipe, RecipeDefinitionError

console = Console(stderr=True)

# ── Severity ordering ─────────────────────────────────────────────────────

_SEVERITY_ORDER = {"error": 0, "warning": 1, "info": 2}


def _sev_style(severity: str) -> str:
    return {"error": "bold red", "warning": "yellow", "info": "dim"}.get(severity, "")


# ── Validation helpers ────────────────────────────────────────────────────


def _strings(value: Any) -> Iterator[str]:
    if isinstance(value, str):
        yield value
    elif isinstance(value, dict):
        for item in value.values():
            yield from _strings(item)
    elif isinstance(value, list):
        for item in value:
            yield from _strings(item)


def _validate_recipe_file(path: Path) -> tuple[Recipe | None, list[dict[str, Any]]]:
    """Validate one recipe file.  Returns the parsed recipe (if valid) and issue dicts."""
    issues: list[dict[str, Any]] = []

    try:
        text = path.read_text(encoding="utf-8")
        data = json.loads(text) if path.suffix == ".json" else yaml.safe_load(text)
    except (OSError, json.JSONDecodeError, yaml.YAMLError) as exc:
        issues.append({"severity": "error", "field": "syntax", "message": f"Parse error: {exc}"})
        return None, issues

    try:
        recipe = Recipe.from_dict(data)
    except RecipeDefinitionError as exc:
        field = f"steps[{exc.step_id}]" if exc.step_id is not None else "root"
        issues.append({"severity": "error", "field": field, "message": str(exc)})
        return None, issues

    if recipe.name != path.stem:
        issues.append(
            {
                "severity": "error",
                "field": "name",
                "message": f"Recipe name '{recipe.name}' differs from file name '{path.stem}' -- "
                "the recipe cannot be loaded until the file is renamed",
            }
        )

    if not recipe.description:
        issues.append({"severity": "info", "field": "description", "message": "No description"})

    # Placeholders vs declared params
    used = {m.strip() for s in _strings(data.get("steps")) for m in PLACEHOLDER_RE.findall(s)}
    for name in sorted(used - set(recipe.params)):
        issues.append(
            {
                "severity": "warning",
                "field": "params",
                "message": f"Placeholder '{{{{{name}}}}}' is not declared in params -- it stays verbatim unless passed",
            }
        )
    for name in sorted(set(recipe.params) - used):
        issues.append(
            {
                "severity": "info",
                "field": f"params.{name}",
                "message": f"Parameter '{name}' is declared but never used",
            }
        )

    return recipe, issues


def _print_file_result(path: Path, issues: list[dict[str, Any]], base: Path) -> None:
    try:
        label = path.relative_to(base)
    except ValueError:
        label = path
    if not any(i["severity"] in ("error", "warning") for i in issues):
        console.print(f"  [green]✓[/green] {label}")
    else:
        console.print(f"  [red]✗[/red] {label}" if any(i["severity"] == "error" for i in issues)
                      else f"  [yellow]![/yellow] {label}")
    for issue in sorted(issues, key=lambda i: _SEVERITY_ORDER.get(i["severity"], 9)):
        style = _sev_style(issue["severity"])
        console.print(f"      [{style}]{issue['severity']:<7}[/{style}] {issue['field']}: {issue['message']}")


# ── CLI command ───────────────────────────────────────────────────────────


def validate(
    files: Optional[list[Path]] = typer.Argument(
        None,
        help="Recipe files to validate. Omit to validate the project's recipes directory.",
    ),
    dir: Optional[Path] = typer.Option(
        None,
        "--dir",
        "-d",
        help="AXPilot project directory. Defaults to auto-detected .axpilot/ from cwd.",
    ),
    strict: bool = typer.Option(
        False,
        "--strict",
        help="Exit 1 on warnings as well as errors (default: exit 1 on errors only).",
    ),
) -> None:
    """Validate recipe files without running them.

    \b
    Examples:
      axpilot validate                        # Validate all recipes
      axpilot validate my-recipe.yaml         # Validate one file
      axpilot validate --strict               # Fail on warnings too
    """
    if files:
        recipe_files = list(files)
        base = Path.cwd()
        missing = [f for f in recipe_files if not f.is_file()]
        if missing:
            console.print(
                Panel(
                    "[red]File(s) not found:[/red]\n" + "\n".join(f"  {f}" for f in missing),
                    title="[red]Not Found[/red]",
                    border_style="red",
                )
            )
            raise typer.Exit(code=2)
    else:
        recipes_dir = load_config(dir).recipes_dir
        base = recipes_dir
        recipe_files = (
            sorted(p for p in recipes_dir.iterdir() if p.is_file() and p.suffix in RECIPE_SUFFIXES)
            if recipes_dir.is_dir()
            else []
        )
        if not recipe_files:
            console.print(
                Panel(
                    "[yellow]No recipe files found to validate.[/yellow]\n\n"
                    f"Looked in: {recipes_dir}\n\n"
                    "Run [bold]axpilot init[/bold] to scaffold a sample recipe.",
                    title="No Files Found",
                    border_style="yellow",
                )
            )
            raise typer.Exit(code=0)

    total_errors = 0
    total_warnings = 0
    seen: dict[str, Path] = {}

    for path in recipe_files:
        recipe, issues = _validate_recipe_file(path)
        if recipe is not None:
            if recipe.name in seen:
                issues.append(
                    {
                        "severity": "error",
                        "field": "name",
                        "message": f"Duplicate recipe name '{recipe.name}' (also in {seen[recipe.name].name})",
                    }
                )
            else:
                seen[recipe.name] = path
        total_errors += sum(1 for i in issues if i["severity"] == "error")
        total_warnings += sum(1 for i in issues if i["severity"] == "warning")
        _print_file_result(path, issues, base)

    # ── Summary ────────────────────────────────────────────────────────
    console.print()
    if total_errors == 0 and total_warnings == 0:
        console.print(Panel("[bold green]All recipes valid. No errors or warnings.[/bold green]", border_style="green"))
    elif total_errors > 0:
        console.print(
            Panel(
                f"[bold red]Validation failed.[/bold red]  "
                f"{total_errors} error(s), {total_warnings} warning(s)\n\n"
                "Fix the errors above before running these recipes.",
                border_style="red",
            )
        )
    else:
        console.print(
            Panel(
                f"[bold yellow]Valid with warnings.[/bold yellow]  {total_warnings} warning(s)",
                border_style="yellow",
            )
        )

    if total_errors > 0 or (strict and total_warnings > 0):
        raise typer.Exit(code=1)
