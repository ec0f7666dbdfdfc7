"""Recipe storage -- YAML/JSON recipe files in the project's recipes directory."""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Protocol, runtime_checkable

import yaml

from axpilot.engine.recipes import Recipe, RecipeDefinitionError

logger = logging.getLogger("axpilot.engine.recipe_store")

RECIPE_SUFFIXES = (".yaml", ".yml", ".json")

_SAFE_NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")


@runtime_checkable
class RecipeStore(Protocol):
    """Where the runner gets recipe definitions from."""

    def list_recipes(self) -> list[Recipe]: ...

    def load_recipe(self, name: str) -> Recipe | None: ...


class FileRecipeStore:
    """One recipe per file, named ``<recipe name>.yaml`` (``.yml``/``.json`` also read).

    A file whose declared name differs from its file name is invalid.  Files
    that fail to parse or validate are logged and skipped when listing.
    """

    def __init__(self, recipes_dir: Path) -> None:
        self.recipes_dir = Path(recipes_dir)

    # -- RecipeStore protocol ------------------------------------------------

    def list_recipes(self) -> list[Recipe]:
        if not self.recipes_dir.is_dir():
            return []
        recipes: dict[str, Recipe] = {}
        for path in sorted(self.recipes_dir.iterdir()):
            if path.suffix not in RECIPE_SUFFIXES or not path.is_file():
                continue
            try:
                recipe = self._read(path)
            except RecipeDefinitionError as exc:
                logger.warning("Skipping invalid recipe %s: %s", path.name, exc)
                continue
            if recipe.name in recipes:
                logger.warning("Duplicate recipe name '%s' in %s -- keeping the first", recipe.name, path.name)
                continue
            recipes[recipe.name] = recipe
        return sorted(recipes.values(), key=lambda r: r.name)

    def load_recipe(self, name: str) -> Recipe | None:
        """Load a recipe by name.  Raises ``RecipeDefinitionError`` if its file is invalid."""
        path = self.path_for(name)
        if path is None:
            return None
        return self._read(path)

    # -- CRUD ----------------------------------------------------------------

    def path_for(self, name: str) -> Path | None:
        """Existing file for *name*, if any."""
        if not _SAFE_NAME_RE.match(name):
            return None
        for suffix in RECIPE_SUFFIXES:
            path = self.recipes_dir / f"{name}{suffix}"
            if path.is_file():
                return path
        return None

    def save_recipe(self, recipe: Recipe) -> Path:
        """Write *recipe* as YAML, replacing any existing file for the same name."""
        _check_name(recipe.name)
        self.recipes_dir.mkdir(parents=True, exist_ok=True)
        existing = self.path_for(recipe.name)
        if existing is not None and existing.suffix != ".yaml":
            existing.unlink()
        path = self.recipes_dir / f"{recipe.name}.yaml"
        with open(path, "w") as f:
            yaml.safe_dump(recipe.to_dict(), f, sort_keys=False, allow_unicode=True)
        logger.info("Saved recipe '%s' to %s", recipe.name, path)
        return path

    def save_recipe_text(self, text: str) -> Recipe:
        """Parse a JSON or YAML recipe document, validate it, and save it."""
        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as exc:
            raise RecipeDefinitionError(f"Recipe is neither valid JSON nor YAML: {exc}") from exc
        recipe = Recipe.from_dict(data)
        self.save_recipe(recipe)
        return recipe

    def delete_recipe(self, name: str) -> bool:
        path = self.path_for(name)
        if path is None:
            return False
        path.unlink()
        logger.info("Deleted recipe '%s'", name)
        return True

    # -- Helpers -------------------------------------------------------------

    @staticmethod
    def _read(path: Path) -> Recipe:
        try:
            text = path.read_text()
            if path.suffix == ".json":
                data = json.loads(text)
            else:
                data = yaml.safe_load(text)
        except (OSError, json.JSONDecodeError, yaml.YAMLError) as exc:
            raise RecipeDefinitionError(f"Cannot read {path.name}: {exc}") from exc
        recipe = Recipe.from_dict(data)
        if recipe.name != path.stem:
            raise RecipeDefinitionError(
                f"{path.name} declares name '{recipe.name}'; rename the file to {recipe.name}{path.suffix}",
                recipe=recipe.name,
            )
        return recipe


def _check_name(name: str) -> None:
    if not _SAFE_NAME_RE.match(name):
        raise RecipeDefinitionError(
            f"Recipe name {name!r} must start with a letter or digit and contain only "
            "letters, digits, '.', '_' or '-'"
        )
