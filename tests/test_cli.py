"""Tests for the axpilot CLI commands, driven through typer's CliRunner.

Commands that need the accessibility API get the fake-desktop service from
conftest by patching ``make_service`` in the command's module.
"""

from __future__ import annotations

import json
from pathlib import Path
from unittest.mock import patch

import pytest
import yaml
from typer.testing import CliRunner

from axpilot.cli.app import app
from axpilot.cli.init_cmd import _SAMPLE_CONFIG, _SAMPLE_RECIPE
from axpilot.config import AXPilotConfig
from axpilot.engine.recipes import Recipe

from conftest import write_recipe

runner = CliRunner()

PRESS_IT = {
    "name": "press-it",
    "description": "Press a key",
    "params": {"key": {"required": True}},
    "steps": [{"id": 1, "action": "press", "params": {"key": "{{key}}"}}],
}


@pytest.fixture(autouse=True)
def _no_env_override(monkeypatch):
    monkeypatch.delenv("AXPILOT_RECIPES_DIR", raising=False)


@pytest.fixture
def project(recipes_dir: Path) -> Path:
    """Parent directory of the test project's .axpilot/."""
    return recipes_dir.parent.parent


def _json_out(result) -> dict:
    return json.loads(result.stdout)


# ---------------------------------------------------------------------------
# 1. init
# ---------------------------------------------------------------------------

class TestInit:
    """axpilot init scaffolds config and a sample recipe."""

    def test_creates_project(self, tmp_path: Path):
        result = runner.invoke(app, ["init", "--dir", str(tmp_path)])
        assert result.exit_code == 0, result.output
        assert (tmp_path / ".axpilot" / "config.yaml").is_file()
        assert (tmp_path / ".axpilot" / "recipes" / "chrome-open-url.yaml").is_file()

    def test_existing_without_force(self, tmp_path: Path):
        (tmp_path / ".axpilot").mkdir()
        result = runner.invoke(app, ["init", "--dir", str(tmp_path)])
        assert result.exit_code == 2
        assert "Already Initialized" in result.output

    def test_force_overwrites(self, tmp_path: Path):
        config = tmp_path / ".axpilot" / "config.yaml"
        config.parent.mkdir()
        config.write_text("recipes_dir: elsewhere\n", encoding="utf-8")
        assert runner.invoke(app, ["init", "--dir", str(tmp_path), "--force"]).exit_code == 0
        assert config.read_text(encoding="utf-8") == _SAMPLE_CONFIG

    def test_sample_files_are_valid(self, tmp_path: Path):
        config_path = tmp_path / "config.yaml"
        config_path.write_text(_SAMPLE_CONFIG, encoding="utf-8")
        config = AXPilotConfig.from_file(config_path)
        assert config.recipes_dir == tmp_path / "recipes"
        recipe = Recipe.from_dict(yaml.safe_load(_SAMPLE_RECIPE))
        assert recipe.name == "chrome-open-url"
        assert sorted(recipe.params) == ["expect", "url"]

    def test_scaffold_passes_validate(self, tmp_path: Path):
        runner.invoke(app, ["init", "--dir", str(tmp_path)])
        result = runner.invoke(app, ["validate", "--dir", str(tmp_path), "--strict"])
        assert result.exit_code == 0, result.output


# ---------------------------------------------------------------------------
# 2. validate
# ---------------------------------------------------------------------------

class TestValidate:
    """axpilot validate reports errors and, with --strict, warnings."""

    def test_valid_directory(self, project: Path, recipes_dir: Path):
        write_recipe(recipes_dir, PRESS_IT)
        result = runner.invoke(app, ["validate", "--dir", str(project)])
        assert result.exit_code == 0, result.output
        assert "All recipes valid" in result.output

    def test_invalid_recipe_fails(self, project: Path, recipes_dir: Path):
        (recipes_dir / "bad.yaml").write_text(
            "name: bad\nsteps:\n  - id: 4\n    action: type\n", encoding="utf-8"
        )
        result = runner.invoke(app, ["validate", "--dir", str(project)])
        assert result.exit_code == 1
        assert "steps[4]" in result.output

    def test_parse_error(self, tmp_path: Path):
        path = tmp_path / "broken.yaml"
        path.write_text("steps: [", encoding="utf-8")
        result = runner.invoke(app, ["validate", str(path)])
        assert result.exit_code == 1
        assert "Parse error" in result.output

    def test_undeclared_placeholder_is_a_warning(self, project: Path, recipes_dir: Path):
        write_recipe(recipes_dir, {**PRESS_IT, "params": {}})
        assert runner.invoke(app, ["validate", "--dir", str(project)]).exit_code == 0
        strict = runner.invoke(app, ["validate", "--dir", str(project), "--strict"])
        assert strict.exit_code == 1
        assert "not declared" in strict.output

    def test_duplicate_names(self, project: Path, recipes_dir: Path):
        write_recipe(recipes_dir, PRESS_IT)
        (recipes_dir / "press-it.json").write_text(json.dumps(PRESS_IT), encoding="utf-8")
        result = runner.invoke(app, ["validate", "--dir", str(project)])
        assert result.exit_code == 1
        assert "Duplicate recipe name" in result.output

    def test_name_differs_from_file_name(self, project: Path, recipes_dir: Path):
        (recipes_dir / "copy.json").write_text(json.dumps(PRESS_IT), encoding="utf-8")
        result = runner.invoke(app, ["validate", "--dir", str(project)])
        assert result.exit_code == 1
        assert "differs from file name" in result.output

    def test_missing_file(self, tmp_path: Path):
        result = runner.invoke(app, ["validate", str(tmp_path / "nope.yaml")])
        assert result.exit_code == 2

    def test_empty_directory(self, project: Path):
        result = runner.invoke(app, ["validate", "--dir", str(project)])
        assert result.exit_code == 0
        assert "No recipe files found" in result.output


# ---------------------------------------------------------------------------
# 3. recipes list / show / delete
# ---------------------------------------------------------------------------

class TestRecipesCommands:
    """Recipe management works without touching the UI."""

    def test_list_json(self, project: Path, recipes_dir: Path):
        write_recipe(recipes_dir, PRESS_IT)
        result = runner.invoke(app, ["recipes", "list", "-o", "json", "--dir", str(project)])
        assert result.exit_code == 0, result.output
        data = _json_out(result)
        assert data["count"] == 1
        assert data["recipes"][0]["name"] == "press-it"

    def test_list_empty(self, project: Path):
        result = runner.invoke(app, ["recipes", "list", "--dir", str(project)])
        assert result.exit_code == 0
        assert "No recipes found" in result.output

    def test_show(self, project: Path, recipes_dir: Path):
        write_recipe(recipes_dir, PRESS_IT)
        result = runner.invoke(app, ["recipes", "show", "press-it", "-o", "json", "--dir", str(project)])
        assert result.exit_code == 0
        assert _json_out(result)["steps"][0]["params"] == {"key": "{{key}}"}

    def test_show_unknown(self, project: Path):
        result = runner.invoke(app, ["recipes", "show", "nope", "--dir", str(project)])
        assert result.exit_code == 1
        assert "not found" in result.output

    def test_delete_with_yes(self, project: Path, recipes_dir: Path):
        path = write_recipe(recipes_dir, PRESS_IT)
        result = runner.invoke(app, ["recipes", "delete", "press-it", "--yes", "--dir", str(project)])
        assert result.exit_code == 0
        assert not path.exists()

    def test_delete_declined(self, project: Path, recipes_dir: Path):
        path = write_recipe(recipes_dir, PRESS_IT)
        result = runner.invoke(app, ["recipes", "delete", "press-it", "--dir", str(project)], input="n\n")
        assert result.exit_code == 1
        assert path.exists()

    def test_invalid_output_format(self, project: Path):
        assert runner.invoke(app, ["recipes", "list", "-o", "xml", "--dir", str(project)]).exit_code == 2


# ---------------------------------------------------------------------------
# 4. run
# ---------------------------------------------------------------------------

class TestRun:
    """axpilot run exit codes: 0 success, 1 run failure, 2 usage error."""

    def test_success(self, project: Path, recipes_dir: Path, service, desktop):
        write_recipe(recipes_dir, PRESS_IT)
        with patch("axpilot.cli.run.make_service", return_value=service):
            result = runner.invoke(app, ["run", "press-it", "-p", "key=tab", "-o", "json", "--dir", str(project)])
        assert result.exit_code == 0, result.output
        assert _json_out(result)["success"] is True
        assert ("synthetic_key", "tab", ()) in desktop.tree.calls

    def test_text_output(self, project: Path, recipes_dir: Path, service):
        write_recipe(recipes_dir, PRESS_IT)
        with patch("axpilot.cli.run.make_service", return_value=service):
            result = runner.invoke(app, ["run", "press-it", "-p", "key=tab", "--dir", str(project)])
        assert result.exit_code == 0
        assert "RECIPE SUCCEEDED" in result.output

    def test_missing_parameter_is_usage_error(self, project: Path, recipes_dir: Path, service):
        write_recipe(recipes_dir, PRESS_IT)
        with patch("axpilot.cli.run.make_service", return_value=service):
            result = runner.invoke(app, ["run", "press-it", "--dir", str(project)])
        assert result.exit_code == 2
        assert "MISSING_PARAMETER" in result.output

    def test_unknown_recipe_is_usage_error(self, project: Path, service):
        with patch("axpilot.cli.run.make_service", return_value=service):
            assert runner.invoke(app, ["run", "nope", "--dir", str(project)]).exit_code == 2

    def test_failed_step(self, project: Path, recipes_dir: Path, service):
        write_recipe(recipes_dir, {
            "name": "archive",
            "app": "Google Chrome",
            "steps": [{"id": 1, "action": "click", "target": {"name_contains": "Archive"}}],
        })
        with patch("axpilot.cli.run.make_service", return_value=service):
            result = runner.invoke(app, ["run", "archive", "-o", "json", "--dir", str(project)])
        assert result.exit_code == 1
        data = _json_out(result)
        assert data["error_code"] == "ELEMENT_NOT_FOUND"
        assert data["failed_step"] == 1

    def test_malformed_param(self, project: Path):
        result = runner.invoke(app, ["run", "press-it", "-p", "novalue", "--dir", str(project)])
        assert result.exit_code == 2
        assert "KEY=VALUE" in result.output

    def test_accessibility_unavailable(self, project: Path):
        with patch("axpilot.engine.service.build_service", side_effect=RuntimeError("pyobjc is not installed")):
            result = runner.invoke(app, ["run", "press-it", "--dir", str(project)])
        assert result.exit_code == 2
        assert "pyobjc is not installed" in result.output


# ---------------------------------------------------------------------------
# 5. find / wait / context
# ---------------------------------------------------------------------------

class TestUiCommands:
    """Observation commands against the fake desktop."""

    def test_find_json(self, project: Path, service):
        with patch("axpilot.cli.ui_cmd.make_service", return_value=service):
            result = runner.invoke(app, ["find", "Compose", "--app", "Google Chrome", "-o", "json", "--dir", str(project)])
        assert result.exit_code == 0, result.output
        assert _json_out(result)["count"] == 1

    def test_find_no_matches(self, project: Path, service):
        with patch("axpilot.cli.ui_cmd.make_service", return_value=service):
            result = runner.invoke(app, ["find", "Archive", "--app", "Google Chrome", "--dir", str(project)])
        assert result.exit_code == 1

    def test_find_needs_locator(self, project: Path):
        assert runner.invoke(app, ["find", "--dir", str(project)]).exit_code == 2

    def test_find_unknown_app(self, project: Path, service):
        with patch("axpilot.cli.ui_cmd.make_service", return_value=service):
            result = runner.invoke(app, ["find", "Compose", "--app", "Safari", "--dir", str(project)])
        assert result.exit_code == 1
        assert "Google Chrome, TextEdit" in result.output

    def test_wait_met(self, project: Path, service):
        with patch("axpilot.cli.ui_cmd.make_service", return_value=service):
            result = runner.invoke(app, ["wait", "urlContains", "inbox", "--app", "Google Chrome", "--dir", str(project)])
        assert result.exit_code == 0
        assert "urlContains met" in result.output

    def test_wait_timeout(self, project: Path, service):
        with patch("axpilot.cli.ui_cmd.make_service", return_value=service):
            result = runner.invoke(
                app, ["wait", "urlContains", "sent", "--app", "Google Chrome", "-t", "0.5", "--dir", str(project)]
            )
        assert result.exit_code == 1

    def test_wait_unknown_condition(self, project: Path, service):
        with patch("axpilot.cli.ui_cmd.make_service", return_value=service):
            assert runner.invoke(app, ["wait", "pageLoaded", "x", "--dir", str(project)]).exit_code == 2

    def test_context_json(self, project: Path, service):
        with patch("axpilot.cli.ui_cmd.make_service", return_value=service):
            result = runner.invoke(app, ["context", "--app", "Google Chrome", "-o", "json", "--dir", str(project)])
        assert result.exit_code == 0
        assert _json_out(result)["window"] == "Inbox - Gmail"

    def test_context_unknown_app(self, project: Path, service):
        with patch("axpilot.cli.ui_cmd.make_service", return_value=service):
            assert runner.invoke(app, ["context", "--app", "Safari", "--dir", str(project)]).exit_code == 1

    def test_state_json(self, project: Path, service):
        with patch("axpilot.cli.ui_cmd.make_service", return_value=service):
            result = runner.invoke(app, ["state", "-o", "json", "--dir", str(project)])
        assert result.exit_code == 0, result.output
        assert _json_out(result)["app_count"] == 2

    def test_state_table(self, project: Path, service):
        with patch("axpilot.cli.ui_cmd.make_service", return_value=service):
            result = runner.invoke(app, ["state", "--dir", str(project)])
        assert result.exit_code == 0
        assert "Inbox - Gmail" in result.output

    def test_read_prints_content(self, project: Path, service):
        with patch("axpilot.cli.ui_cmd.make_service", return_value=service):
            result = runner.invoke(app, ["read", "New Message", "--app", "Google Chrome", "--dir", str(project)])
        assert result.exit_code == 0, result.output
        assert result.stdout.splitlines() == ["New Message", "To recipients", "Subject", "[button] Send"]

    def test_read_query_not_found(self, project: Path, service):
        with patch("axpilot.cli.ui_cmd.make_service", return_value=service):
            result = runner.invoke(app, ["read", "Archive", "--app", "Google Chrome", "--dir", str(project)])
        assert result.exit_code == 1

    def test_inspect_json(self, project: Path, service):
        with patch("axpilot.cli.ui_cmd.make_service", return_value=service):
            result = runner.invoke(
                app, ["inspect", "--dom-id", "send-btn", "--app", "Google Chrome", "-o", "json", "--dir", str(project)]
            )
        assert result.exit_code == 0, result.output
        data = _json_out(result)
        assert data["name"] == "Send"
        assert data["role"] == "AXButton"

    def test_inspect_needs_locator(self, project: Path):
        assert runner.invoke(app, ["inspect", "--dir", str(project)]).exit_code == 2

    def test_element_at_json(self, project: Path, service):
        with patch("axpilot.cli.ui_cmd.make_service", return_value=service):
            result = runner.invoke(app, ["element-at", "420", "610", "-o", "json", "--dir", str(project)])
        assert result.exit_code == 0, result.output
        assert _json_out(result)["dom_id"] == "send-btn"

    def test_element_at_empty_point(self, project: Path, service):
        with patch("axpilot.cli.ui_cmd.make_service", return_value=service):
            result = runner.invoke(app, ["element-at", "3000", "3000", "--dir", str(project)])
        assert result.exit_code == 1
        assert "No element found" in result.output


class TestVersion:
    def test_version(self):
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert "axpilot" in result.output
