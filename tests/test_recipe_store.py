"""Unit tests for axpilot.engine.recipe_store -- FileRecipeStore."""

from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest
import yaml

from axpilot.engine.recipe_store import FileRecipeStore, RecipeStore
from axpilot.engine.recipes import Recipe, RecipeDefinitionError

from conftest import write_recipe


def _minimal(name: str, **extra) -> dict:
    return {"name": name, "steps": [{"id": 1, "action": "press", "params": {"key": "tab"}}], **extra}


# ---------------------------------------------------------------------------
# 1. Listing and loading
# ---------------------------------------------------------------------------

class TestListAndLoad:
    """Recipes are read from YAML and JSON files; broken files are skipped."""

    def test_satisfies_protocol(self, recipes_dir: Path):
        assert isinstance(FileRecipeStore(recipes_dir), RecipeStore)

    def test_list_sorted_by_name(self, recipes_dir: Path):
        write_recipe(recipes_dir, _minimal("zeta"))
        write_recipe(recipes_dir, _minimal("alpha"))
        (recipes_dir / "mid.json").write_text(json.dumps(_minimal("mid")), encoding="utf-8")
        assert [r.name for r in FileRecipeStore(recipes_dir).list_recipes()] == ["alpha", "mid", "zeta"]

    def test_list_skips_invalid_files(self, recipes_dir: Path, caplog):
        write_recipe(recipes_dir, _minimal("good"))
        (recipes_dir / "bad.yaml").write_text("name: bad\nsteps: []\n", encoding="utf-8")
        (recipes_dir / "notes.txt").write_text("not a recipe", encoding="utf-8")
        with caplog.at_level(logging.WARNING, logger="axpilot.engine.recipe_store"):
            names = [r.name for r in FileRecipeStore(recipes_dir).list_recipes()]
        assert names == ["good"]
        assert "Skipping invalid recipe bad.yaml" in caplog.text

    def test_missing_directory_lists_nothing(self, tmp_path: Path):
        assert FileRecipeStore(tmp_path / "absent").list_recipes() == []

    def test_load_by_file_name(self, recipes_dir: Path):
        write_recipe(recipes_dir, _minimal("gmail-send", description="Send mail"))
        recipe = FileRecipeStore(recipes_dir).load_recipe("gmail-send")
        assert recipe.description == "Send mail"

    def test_declared_name_must_match_file_name(self, recipes_dir: Path):
        (recipes_dir / "foo.yaml").write_text(yaml.safe_dump(_minimal("bar")), encoding="utf-8")
        store = FileRecipeStore(recipes_dir)
        with pytest.raises(RecipeDefinitionError, match="foo.yaml declares name 'bar'"):
            store.load_recipe("foo")
        assert store.load_recipe("bar") is None

    def test_list_skips_misnamed_files(self, recipes_dir: Path, caplog):
        write_recipe(recipes_dir, _minimal("good"))
        (recipes_dir / "foo.json").write_text(json.dumps(_minimal("bar")), encoding="utf-8")
        with caplog.at_level(logging.WARNING, logger="axpilot.engine.recipe_store"):
            names = [r.name for r in FileRecipeStore(recipes_dir).list_recipes()]
        assert names == ["good"]
        assert "Skipping invalid recipe foo.json" in caplog.text

    def test_load_unknown_returns_none(self, recipes_dir: Path):
        assert FileRecipeStore(recipes_dir).load_recipe("nope") is None

    def test_load_invalid_file_raises(self, recipes_dir: Path):
        (recipes_dir / "broken.yaml").write_text("name: broken\nsteps: [", encoding="utf-8")
        with pytest.raises(RecipeDefinitionError, match="Cannot read broken.yaml"):
            FileRecipeStore(recipes_dir).load_recipe("broken")

    def test_unsafe_name_is_never_a_path(self, recipes_dir: Path):
        store = FileRecipeStore(recipes_dir)
        assert store.path_for("../config") is None
        assert store.load_recipe("../config") is None


# ---------------------------------------------------------------------------
# 2. Saving and deleting
# ---------------------------------------------------------------------------

class TestSaveAndDelete:
    """save_recipe_text validates before writing; delete removes the file."""

    def test_save_yaml_text(self, recipes_dir: Path):
        store = FileRecipeStore(recipes_dir)
        recipe = store.save_recipe_text(yaml.safe_dump(_minimal("tabber")))
        assert recipe.name == "tabber"
        assert (recipes_dir / "tabber.yaml").is_file()
        assert store.load_recipe("tabber") == recipe

    def test_save_json_text(self, recipes_dir: Path):
        store = FileRecipeStore(recipes_dir)
        store.save_recipe_text(json.dumps(_minimal("from-json")))
        assert store.load_recipe("from-json") is not None

    def test_save_replaces_json_file_with_yaml(self, recipes_dir: Path):
        (recipes_dir / "legacy.json").write_text(json.dumps(_minimal("legacy")), encoding="utf-8")
        store = FileRecipeStore(recipes_dir)
        store.save_recipe(Recipe.from_dict(_minimal("legacy", description="updated")))
        assert not (recipes_dir / "legacy.json").exists()
        assert store.load_recipe("legacy").description == "updated"

    def test_save_creates_directory(self, tmp_path: Path):
        store = FileRecipeStore(tmp_path / "new" / "recipes")
        store.save_recipe(Recipe.from_dict(_minimal("first")))
        assert (tmp_path / "new" / "recipes" / "first.yaml").is_file()

    def test_invalid_recipe_is_not_written(self, recipes_dir: Path):
        store = FileRecipeStore(recipes_dir)
        with pytest.raises(RecipeDefinitionError) as info:
            store.save_recipe_text(json.dumps({"name": "bad", "steps": [{"id": 3, "action": "type"}]}))
        assert info.value.step_id == 3
        assert list(recipes_dir.iterdir()) == []

    def test_unparseable_text(self, recipes_dir: Path):
        with pytest.raises(RecipeDefinitionError, match="neither valid JSON nor YAML"):
            FileRecipeStore(recipes_dir).save_recipe_text("steps: [unclosed")

    def test_unsafe_name_rejected(self, recipes_dir: Path):
        with pytest.raises(RecipeDefinitionError, match="must start with a letter or digit"):
            FileRecipeStore(recipes_dir).save_recipe(Recipe.from_dict(_minimal("../escape")))

    def test_delete(self, recipes_dir: Path):
        write_recipe(recipes_dir, _minimal("doomed"))
        store = FileRecipeStore(recipes_dir)
        assert store.delete_recipe("doomed") is True
        assert store.load_recipe("doomed") is None
        assert store.delete_recipe("doomed") is False
