"""Inbound service facade -- one object that owns the whole engine.

Front-ends (the CLI and the MCP server) talk only to ``AutomationService``.
It composes search, actions, waits and the recipe runner around a single
``TreeAccess`` and owns the resolution cache for the life of the process.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable

from axpilot.config import AXPilotConfig
from axpilot.engine.action_executor import ActionExecutor, ActionResult
from axpilot.engine.cache import ResolutionCache
from axpilot.engine.context import ContextProvider
from axpilot.engine.focus import FocusManager
from axpilot.engine.locator import Locator
from axpilot.engine.protocols import INVALID_DEFINITION, INVALID_PARAMETER, TreeAccess
from axpilot.engine.recipe_runner import RecipeRunner, RunReport
from axpilot.engine.recipe_store import FileRecipeStore, RecipeStore
from axpilot.engine.recipes import Recipe, RecipeDefinitionError
from axpilot.engine.search import SearchBudget, SemanticSearch
from axpilot.engine.waiter import ConditionPoller, WaitResult

logger = logging.getLogger("axpilot.engine.service")

# Actions whose focus changes are undone when the call returns
_FOCUS_RESTORING_ACTIONS = frozenset({"click", "type"})


class AutomationService:
    """Search, act, wait and run recipes against one UI session."""

    def __init__(
        self,
        tree: TreeAccess,
        store: RecipeStore,
        config: AXPilotConfig | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config or AXPilotConfig()
        self.tree = tree
        self.store = store
        self.cache = ResolutionCache(self.config.node_cache_ttl, self.config.path_hint_ttl, clock)
        self.budget = SearchBudget(
            semantic_depth_budget=self.config.semantic_depth_budget,
            max_results=self.config.max_results,
            max_candidates_scanned=self.config.max_candidates_scanned,
            dom_id_depth=self.config.dom_id_search_depth,
        )
        self.search = SemanticSearch(tree, self.cache, self.budget, self.config.wait_element_search_depth)
        self.focus = FocusManager(tree, sleep)
        self.executor = ActionExecutor(tree, self.search, self.focus, sleep, clock)
        self.poller = ConditionPoller(
            tree,
            self.search,
            self.focus,
            sleep,
            clock,
            default_timeout=self.config.wait_timeout,
            default_interval=self.config.poll_interval,
        )
        self.context = ContextProvider(tree, self.search, self.focus)
        self.runner = RecipeRunner(
            tree,
            self.executor,
            self.poller,
            self.focus,
            self.context,
            default_browser=self.config.default_browser,
            sleep=sleep,
            clock=clock,
        )

    # -- Recipes -------------------------------------------------------------

    def run_recipe(self, name: str, params: dict[str, Any] | None = None) -> RunReport:
        try:
            recipe = self.store.load_recipe(name)
        except RecipeDefinitionError as exc:
            return RunReport(
                recipe_name=name,
                success=False,
                steps_completed=0,
                total_steps=0,
                error=str(exc),
                error_code=INVALID_DEFINITION,
                suggestion="Fix the recipe file, or re-save it with recipe save.",
            )
        if recipe is None:
            available = ", ".join(r.name for r in self.store.list_recipes()) or "(none)"
            return RunReport(
                recipe_name=name,
                success=False,
                steps_completed=0,
                total_steps=0,
                error=f"Recipe '{name}' not found",
                error_code=INVALID_PARAMETER,
                suggestion=f"Available recipes: {available}",
            )
        logger.info("Running recipe '%s' (%d steps)", recipe.name, len(recipe.steps))
        return self.runner.run(recipe, params or {})

    def list_recipes(self) -> list[dict[str, Any]]:
        return [r.summary() for r in self.store.list_recipes()]

    def show_recipe(self, name: str) -> dict[str, Any] | None:
        recipe = self.store.load_recipe(name)
        return recipe.to_dict() if recipe is not None else None

    def save_recipe(self, text: str) -> Recipe:
        """Validate and store a JSON or YAML recipe document."""
        if not isinstance(self.store, FileRecipeStore):
            raise TypeError("The configured recipe store is read-only")
        return self.store.save_recipe_text(text)

    def delete_recipe(self, name: str) -> bool:
        if not isinstance(self.store, FileRecipeStore):
            raise TypeError("The configured recipe store is read-only")
        return self.store.delete_recipe(name)

    # -- Direct actions ------------------------------------------------------

    def perform_action(
        self,
        kind: str,
        locator: Locator | None = None,
        coordinates: tuple[float, float] | None = None,
        params: dict[str, Any] | None = None,
    ) -> ActionResult:
        """Run one action.  Click and type restore the previously frontmost app."""
        params = dict(params or {})
        if kind == "click":
            if locator is not None:
                params["locator"] = locator
            if coordinates is not None:
                params["x"], params["y"] = coordinates
        elif kind == "type" and locator is not None:
            if locator.dom_id:
                params.setdefault("dom_id", locator.dom_id)
            elif locator.name_contains:
                params.setdefault("into", locator.name_contains)
        elif kind == "scroll" and coordinates is not None:
            params["x"], params["y"] = coordinates

        if kind in _FOCUS_RESTORING_ACTIONS:
            with self.focus.preserved():
                return self.executor.perform(kind, **params)
        return self.executor.perform(kind, **params)

    def wait_for(
        self,
        condition: str,
        value: str | None = None,
        timeout: float | None = None,
        interval: float | None = None,
        app: str | None = None,
    ) -> WaitResult:
        return self.poller.wait_for(condition, value, app=app, timeout=timeout, interval=interval)

    # -- Perception ----------------------------------------------------------

    def find_elements(
        self,
        locator: Locator | str,
        depth: int | None = None,
        app: str | None = None,
        role: str | None = None,
    ) -> list[dict[str, Any]]:
        """Summaries of matching nodes in *app* (frontmost when None)."""
        info = self.focus.find_app(app) if app else self.tree.frontmost_application()
        if info is None:
            return []
        root = self.tree.application_root(info)
        if root is None:
            return []
        budget = self.budget
        if depth is not None:
            budget = SearchBudget(
                semantic_depth_budget=depth,
                max_results=self.budget.max_results,
                max_candidates_scanned=self.budget.max_candidates_scanned,
                dom_id_depth=self.budget.dom_id_depth,
            )
        return [el.summary() for el in self.search.resolve(locator, root, role=role, budget=budget)]

    def app_running(self, app: str) -> bool:
        return self.focus.find_app(app) is not None

    def running_app_names(self) -> list[str]:
        return sorted(a.name for a in self.tree.running_applications() if a.regular)

    def get_context(self, app: str | None = None) -> dict[str, Any]:
        return self.context.get_context(app)

    def get_state(self, app: str | None = None) -> dict[str, Any]:
        return self.context.get_state(app)

    def read_text(self, app: str | None = None, query: str | None = None, depth: int | None = None) -> dict[str, Any]:
        return self.context.read_content(app, query, depth)

    def inspect(self, locator: Locator | str, app: str | None = None, role: str | None = None) -> dict[str, Any]:
        return self.context.inspect(locator, app, role)

    def element_at(self, x: float, y: float) -> dict[str, Any]:
        return self.context.element_at(x, y)


def build_service(config: AXPilotConfig | None = None, tree: TreeAccess | None = None) -> AutomationService:
    """Compose a service for this machine.

    Without an explicit *tree* the macOS accessibility facade is used; its
    construction raises ``RuntimeError`` when pyobjc is missing or the
    process is not trusted for accessibility.
    """
    config = config or AXPilotConfig.load()
    if tree is None:
        from axpilot.engine.macos_tree import MacAccessibilityTree

        tree = MacAccessibilityTree()
    return AutomationService(tree, FileRecipeStore(config.recipes_dir), config)
