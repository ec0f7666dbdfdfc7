"""AXPilot engine -- core automation modules.

Provides the complete UI automation engine:
- SemanticSearch: tunnel-aware accessibility tree search with a resolution cache
- ActionExecutor: click / type / press / hotkey / scroll / focus with native-first fallbacks
- ConditionPoller: waits for URL, title and element conditions
- RecipeRunner: executes validated multi-step recipes with failure policies
- FileRecipeStore: YAML/JSON recipe files on disk
- AutomationService: one facade composing all of the above
"""

from axpilot.engine.action_executor import ActionExecutor, ActionResult
from axpilot.engine.cache import ResolutionCache, TTLCache
from axpilot.engine.context import ContextProvider
from axpilot.engine.focus import FocusManager
from axpilot.engine.locator import Criterion, Locator, MatchType
from axpilot.engine.protocols import AppInfo, Rect, TreeAccess, UIElement
from axpilot.engine.recipe_runner import RecipeRunner, RunReport, StepResult
from axpilot.engine.recipe_store import FileRecipeStore, RecipeStore
from axpilot.engine.recipes import Recipe, RecipeDefinitionError, RecipeStep
from axpilot.engine.search import SearchBudget, SemanticSearch
from axpilot.engine.service import AutomationService, build_service
from axpilot.engine.waiter import ConditionPoller, WaitCondition, WaitResult

# MacAccessibilityTree is NOT eagerly imported here because it depends on
# platform-specific packages (pyobjc).  Import it directly when needed:
#   from axpilot.engine.macos_tree import MacAccessibilityTree

__all__ = [
    "ActionExecutor",
    "ActionResult",
    "AppInfo",
    "AutomationService",
    "ConditionPoller",
    "ContextProvider",
    "Criterion",
    "FileRecipeStore",
    "FocusManager",
    "Locator",
    "MatchType",
    "Recipe",
    "RecipeDefinitionError",
    "RecipeRunner",
    "RecipeStep",
    "RecipeStore",
    "Rect",
    "ResolutionCache",
    "RunReport",
    "SearchBudget",
    "SemanticSearch",
    "StepResult",
    "TTLCache",
    "TreeAccess",
    "UIElement",
    "WaitCondition",
    "WaitResult",
    "build_service",
]
