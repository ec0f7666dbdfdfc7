"""AXPilot configuration management."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from axpilot.models import (
    DEFAULT_BROWSER,
    DEFAULT_POLL_INTERVAL,
    DEFAULT_WAIT_TIMEOUT,
    DOM_ID_SEARCH_DEPTH,
    MAX_CANDIDATES_SCANNED,
    MAX_SEARCH_RESULTS,
    NODE_CACHE_TTL,
    PATH_HINT_TTL,
    SEMANTIC_DEPTH_BUDGET,
    WAIT_ELEMENT_SEARCH_DEPTH,
)

PROJECT_DIR_NAME = ".axpilot"


class AXPilotConfigError(Exception):
    """Raised when configuration is invalid or missing."""

    pass


@dataclass
class AXPilotConfig:
    """Configuration for an AXPilot process."""

    # Paths
    project_dir: Path = field(default_factory=lambda: Path(PROJECT_DIR_NAME))
    recipes_dir: Path = field(default_factory=lambda: Path(PROJECT_DIR_NAME) / "recipes")

    # Browser used when a precondition checks a URL without naming an app
    default_browser: str = DEFAULT_BROWSER

    # Search budget
    semantic_depth_budget: int = SEMANTIC_DEPTH_BUDGET
    max_results: int = MAX_SEARCH_RESULTS
    max_candidates_scanned: int = MAX_CANDIDATES_SCANNED
    dom_id_search_depth: int = DOM_ID_SEARCH_DEPTH
    wait_element_search_depth: int = WAIT_ELEMENT_SEARCH_DEPTH

    # Resolution cache
    node_cache_ttl: float = NODE_CACHE_TTL
    path_hint_ttl: float = PATH_HINT_TTL

    # Waiting
    wait_timeout: float = DEFAULT_WAIT_TIMEOUT
    poll_interval: float = DEFAULT_POLL_INTERVAL

    @classmethod
    def from_file(cls, config_path: Path) -> AXPilotConfig:
        """Load config from a YAML file."""
        if not config_path.exists():
            raise AXPilotConfigError(f"Config file not found: {config_path}\n\nTo fix: axpilot init")
        with open(config_path) as f:
            try:
                data = yaml.safe_load(f) or {}
            except yaml.YAMLError as exc:
                raise AXPilotConfigError(f"Invalid YAML in {config_path}: {exc}") from exc
        if not isinstance(data, dict):
            raise AXPilotConfigError(f"Config file must be a YAML mapping: {config_path}")
        return cls._from_dict(data, config_path.parent)

    @classmethod
    def _from_dict(cls, data: dict[str, Any], project_dir: Path) -> AXPilotConfig:
        """Create config from a dictionary."""
        config = cls()
        config.project_dir = project_dir

        if "recipes_dir" in data:
            config.recipes_dir = project_dir / data["recipes_dir"]
        else:
            config.recipes_dir = project_dir / "recipes"

        if "default_browser" in data:
            config.default_browser = str(data["default_browser"])

        search = data.get("search") or {}
        if not isinstance(search, dict):
            raise AXPilotConfigError("'search' must be a mapping")
        try:
            if "semantic_depth_budget" in search:
                config.semantic_depth_budget = int(search["semantic_depth_budget"])
            if "max_results" in search:
                config.max_results = int(search["max_results"])
            if "max_candidates_scanned" in search:
                config.max_candidates_scanned = int(search["max_candidates_scanned"])
            if "dom_id_depth" in search:
                config.dom_id_search_depth = int(search["dom_id_depth"])
            if "wait_element_depth" in search:
                config.wait_element_search_depth = int(search["wait_element_depth"])

            cache = data.get("cache") or {}
            if "node_ttl" in cache:
                config.node_cache_ttl = float(cache["node_ttl"])
            if "path_hint_ttl" in cache:
                config.path_hint_ttl = float(cache["path_hint_ttl"])

            wait = data.get("wait") or {}
            if "timeout" in wait:
                config.wait_timeout = float(wait["timeout"])
            if "interval" in wait:
                config.poll_interval = float(wait["interval"])
        except (TypeError, ValueError) as exc:
            raise AXPilotConfigError(f"Invalid numeric value in config: {exc}") from exc

        if config.max_results > config.max_candidates_scanned:
            raise AXPilotConfigError(
                f"search.max_results ({config.max_results}) must not exceed "
                f"search.max_candidates_scanned ({config.max_candidates_scanned})"
            )

        return config

    @classmethod
    def load(cls, start: Path | None = None) -> AXPilotConfig:
        """Find and load the nearest project config, falling back to defaults.

        ``AXPILOT_RECIPES_DIR`` overrides the recipes directory either way.
        """
        project_dir = find_project_dir(start)
        config_path = project_dir / "config.yaml"
        if config_path.is_file():
            config = cls.from_file(config_path)
        else:
            config = cls()
            config.project_dir = project_dir
            config.recipes_dir = project_dir / "recipes"

        if env_dir := os.environ.get("AXPILOT_RECIPES_DIR"):
            config.recipes_dir = Path(env_dir).expanduser()
        return config


def find_project_dir(start: Path | None = None) -> Path:
    """Locate the .axpilot/ project directory by searching upward from *start*.

    Falls back to ``~/.axpilot`` when no project directory exists.
    """
    current = (start or Path.cwd()).resolve()
    for base in [current, *current.parents]:
        candidate = base / PROJECT_DIR_NAME
        if candidate.is_dir():
            return candidate
    return Path.home() / PROJECT_DIR_NAME
