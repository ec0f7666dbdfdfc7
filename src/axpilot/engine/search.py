"""Semantic search engine -- resolves locators against the live UI tree.

Structural depth is a poor cost metric for accessibility trees: web content
routinely buries a button 30+ levels under empty ``AXGroup`` wrappers.  The
walk here charges depth only for nodes that carry content.  A *tunnel node*
(layout-only role with no title, name, value or description) costs nothing,
so a budget of 25 semantic levels reaches content of any wrapper depth.

Exact ``dom_id`` locators take a separate structural walk with a fixed
ceiling and no semantic budget.
"""

from __future__ import annotations

import dataclasses
import logging
from typing import Any, Callable, Iterator

from axpilot.engine.cache import ResolutionCache
from axpilot.engine.locator import Locator, text_matches
from axpilot.engine.protocols import EDITABLE_ROLES, AppInfo, Rect, TreeAccess, UIElement
from axpilot.models import (
    DOM_ID_SEARCH_DEPTH,
    FIELD_SCORE_THRESHOLD,
    MAX_CANDIDATES_SCANNED,
    MAX_SEARCH_DEPTH,
    MAX_SEARCH_RESULTS,
    SCROLLABLE_SEARCH_DEPTH,
    SEMANTIC_DEPTH_BUDGET,
    WAIT_ELEMENT_SEARCH_DEPTH,
    WEB_AREA_SEARCH_DEPTH,
)

logger = logging.getLogger("axpilot.engine.search")

TUNNEL_ROLES = frozenset({
    "AXGroup",
    "AXGenericElement",
    "AXSection",
    "AXDiv",
    "AXList",
    "AXLandmarkMain",
    "AXLandmarkNavigation",
    "AXLandmarkBanner",
    "AXLandmarkContentInfo",
})

SCROLLABLE_ROLES = frozenset({"AXScrollArea", "AXWebArea"})

Path = tuple[int, ...]


def is_tunnel(element: UIElement) -> bool:
    """Layout-only role with no directly observable content."""
    if element.role not in TUNNEL_ROLES:
        return False
    return not (element.name or element.title or element.value or element.description)


@dataclasses.dataclass(frozen=True)
class SearchBudget:
    """Cost limits for one resolution."""

    semantic_depth_budget: int = SEMANTIC_DEPTH_BUDGET
    max_results: int = MAX_SEARCH_RESULTS
    max_candidates_scanned: int = MAX_CANDIDATES_SCANNED
    dom_id_depth: int = DOM_ID_SEARCH_DEPTH

    def __post_init__(self) -> None:
        if self.max_results > self.max_candidates_scanned:
            raise ValueError(
                f"max_results ({self.max_results}) must not exceed "
                f"max_candidates_scanned ({self.max_candidates_scanned})"
            )


class SemanticSearch:
    """Resolve locators and free-text queries to UI node snapshots.

    An empty result is never an error; callers decide whether it is one.
    """

    def __init__(
        self,
        tree: TreeAccess,
        cache: ResolutionCache | None = None,
        budget: SearchBudget | None = None,
        wait_element_depth: int = WAIT_ELEMENT_SEARCH_DEPTH,
    ) -> None:
        self._tree = tree
        self._cache = cache
        self.budget = budget or SearchBudget()
        self._wait_element_depth = wait_element_depth

    # -- General resolution --------------------------------------------------

    def resolve(
        self,
        target: Locator | str,
        root: Any,
        role: str | None = None,
        budget: SearchBudget | None = None,
        exact: bool = False,
    ) -> list[UIElement]:
        """Return nodes under *root* matching *target*, in traversal order.

        *target* is a Locator or a free-text query.  *role* narrows which
        matches are reported without stopping traversal through other roles.
        *exact* requires a whole-string (case-insensitive) text match for a
        free-text query.
        """
        return [el for el, _ in self._resolve_with_paths(target, root, role, budget, exact)]

    def _resolve_with_paths(
        self,
        target: Locator | str,
        root: Any,
        role: str | None = None,
        budget: SearchBudget | None = None,
        exact: bool = False,
    ) -> list[tuple[UIElement, Path]]:
        budget = budget or self.budget
        locator = target if isinstance(target, Locator) else None
        query = target if isinstance(target, str) else None

        if locator is not None and locator.dom_id:
            return self._resolve_dom_id(locator, root, budget)

        def _matches(el: UIElement) -> bool:
            if role and el.role != role:
                return False
            if locator is not None:
                return locator.matches(el)
            return bool(query) and text_matches(el, query, exact=exact)

        results: list[tuple[UIElement, Path]] = []
        seen: set[Any] = set()
        scanned = 0
        for el, path, tunnel in self._walk_semantic(root, budget.semantic_depth_budget):
            if tunnel:
                continue
            scanned += 1
            if _matches(el):
                key = self._tree.node_key(el._ref)
                if key not in seen:
                    seen.add(key)
                    results.append((el, path))
                    if len(results) >= budget.max_results:
                        break
            if scanned >= budget.max_candidates_scanned:
                logger.debug("Candidate cap (%d) reached", budget.max_candidates_scanned)
                break
        return results

    def _resolve_dom_id(
        self,
        locator: Locator,
        root: Any,
        budget: SearchBudget,
    ) -> list[tuple[UIElement, Path]]:
        results: list[tuple[UIElement, Path]] = []
        seen: set[Any] = set()
        for el, path in self._walk_structural(root, budget.dom_id_depth):
            if locator.matches_criteria(el):
                key = self._tree.node_key(el._ref)
                if key not in seen:
                    seen.add(key)
                    results.append((el, path))
                    if len(results) >= budget.max_results:
                        break
        return results

    # -- App-level lookup with cache -----------------------------------------

    def find_element(self, locator: Locator, app: AppInfo | None = None) -> UIElement | None:
        """Resolve *locator* in *app* (frontmost when None).

        Searches the focused window's web area first, then the whole
        application.  Each scope consults the node cache, then a validated
        path hint, before a full walk.  Expired cache entries are dropped on
        every call.
        """
        if self._cache is not None:
            self._cache.sweep()
        app = app or self._tree.frontmost_application()
        if app is None:
            return None
        root = self._tree.application_root(app)
        if root is None:
            return None

        scopes: list[tuple[str, Any]] = []
        web_area = self.find_web_area(root)
        if web_area is not None:
            scopes.append(("webarea", web_area))
        scopes.append(("app", root))

        for scope_name, scope_root in scopes:
            key = (f"{app.name}:{scope_name}", locator.cache_key())
            found = self._from_cache(key, locator, scope_root)
            if found is not None:
                return found
            matches = self._resolve_with_paths(locator, scope_root)
            if matches:
                element, path = matches[0]
                if self._cache is not None:
                    self._cache.remember(key, element._ref, path)
                return element
        return None

    def _from_cache(self, key: tuple[str, str], locator: Locator, scope_root: Any) -> UIElement | None:
        if self._cache is None:
            return None

        node = self._cache.nodes.get(key)
        if node is not None:
            element = self._read(node)
            if element is not None and locator.matches(element):
                logger.debug("Node cache hit for %s", locator.describe())
                return element
            self._cache.nodes.invalidate(key)

        path = self._cache.path_hints.get(key)
        if path is not None:
            element = self._follow_path(scope_root, path)
            if element is not None and locator.matches(element):
                logger.debug("Path hint hit for %s", locator.describe())
                self._cache.nodes.put(key, element._ref)
                return element
            self._cache.path_hints.invalidate(key)
        return None

    def _follow_path(self, root: Any, path: Path) -> UIElement | None:
        node = root
        for index in path:
            children = self._children(node)
            if index >= len(children):
                return None
            node = children[index]
        return self._read(node)

    # -- Field scoring -------------------------------------------------------

    def find_editable_field(self, name: str, app: AppInfo | None = None) -> UIElement | None:
        """Pick the text-entry node best labelled *name*.

        Scores exact / prefix / substring label matches (100 / 80 / 60) over
        title, description and name, plus 50 for an editable role and 20 for a
        visible, non-degenerate frame.  The highest score at or above the
        threshold wins; ties go to the first node in traversal order.
        """
        app = app or self._tree.frontmost_application()
        if app is None:
            return None
        root = self._tree.application_root(app)
        if root is None:
            return None

        search_root = root
        window = self._focused_window(root)
        if window is not None:
            search_root = self.find_web_area(root, window=window) or window

        screens = self._screen_frames()
        needle = name.lower()
        best: UIElement | None = None
        best_score = 0
        candidates = 0
        for el, _, _ in self._walk_semantic(
            search_root, self.budget.semantic_depth_budget, tunnel_test=_label_tunnel
        ):
            score = field_score(el, needle, screens)
            if score < FIELD_SCORE_THRESHOLD:
                continue
            candidates += 1
            if score > best_score:
                best, best_score = el, score
            if candidates >= self.budget.max_candidates_scanned:
                break
        if best is not None:
            logger.debug("Field '%s' resolved to %s (score %d)", name, best.role, best_score)
        return best

    # -- Existence checks and helpers ----------------------------------------

    def element_exists(self, query: str, root: Any, max_depth: int | None = None) -> bool:
        """True if a node under *root* is labelled *query*.

        Bounded structural walk; matches display name, title, description,
        identifier and value, never arbitrary descendant text.
        """
        depth = self._wait_element_depth if max_depth is None else max_depth
        for el, _ in self._walk_structural(root, depth):
            if text_matches(el, query):
                return True
        return False

    def iter_tree(self, root: Any, max_depth: int) -> Iterator[UIElement]:
        """Every node under *root* down to *max_depth* structural levels, in document order."""
        for element, _ in self._walk_structural(root, max_depth):
            yield element

    def iter_semantic(self, root: Any, max_semantic_depth: int) -> Iterator[tuple[UIElement, bool]]:
        """Nodes under *root* within *max_semantic_depth* content levels, with their tunnel flag."""
        for element, _, tunnel in self._walk_semantic(root, max_semantic_depth):
            yield element, tunnel

    def find_web_area(self, root: Any, window: Any | None = None) -> Any | None:
        """The ``AXWebArea`` under the focused window, if any."""
        window = window if window is not None else self._focused_window(root)
        if window is None:
            return None
        return self._find_role(window, frozenset({"AXWebArea"}), WEB_AREA_SEARCH_DEPTH)

    def find_scrollable(self, window: Any) -> UIElement | None:
        node = self._find_role(window, SCROLLABLE_ROLES, SCROLLABLE_SEARCH_DEPTH)
        return self._read(node) if node is not None else None

    def _find_role(self, root: Any, roles: frozenset[str], max_depth: int) -> Any | None:
        for el, _ in self._walk_structural(root, max_depth):
            if el.role in roles:
                return el._ref
        return None

    # -- Traversal -----------------------------------------------------------

    def _walk_semantic(
        self,
        root: Any,
        max_semantic_depth: int,
        tunnel_test: Callable[[UIElement], bool] | None = None,
    ) -> Iterator[tuple[UIElement, Path, bool]]:
        """Depth-first, document order.  Yields (element, path, is_tunnel).

        A node is visited while the number of its non-tunnel strict ancestors
        does not exceed *max_semantic_depth*.  ``MAX_SEARCH_DEPTH`` bounds the
        structural depth so cyclic trees terminate.
        """
        tunnel_test = tunnel_test or is_tunnel
        stack: list[tuple[Any, int, Path]] = [(root, 0, ())]
        visited: set[Any] = set()
        while stack:
            node, semantic_depth, path = stack.pop()
            if semantic_depth > max_semantic_depth or len(path) > MAX_SEARCH_DEPTH:
                continue
            element = self._read(node)
            if element is None:
                continue
            key = self._tree.node_key(node)
            if key in visited:
                continue
            visited.add(key)

            tunnel = tunnel_test(element)
            yield element, path, tunnel

            child_depth = semantic_depth if tunnel else semantic_depth + 1
            children = self._children(node)
            for index in range(len(children) - 1, -1, -1):
                stack.append((children[index], child_depth, path + (index,)))

    def _walk_structural(self, root: Any, max_depth: int) -> Iterator[tuple[UIElement, Path]]:
        stack: list[tuple[Any, Path]] = [(root, ())]
        visited: set[Any] = set()
        while stack:
            node, path = stack.pop()
            element = self._read(node)
            if element is None:
                continue
            key = self._tree.node_key(node)
            if key in visited:
                continue
            visited.add(key)
            yield element, path
            if len(path) >= max_depth:
                continue
            children = self._children(node)
            for index in range(len(children) - 1, -1, -1):
                stack.append((children[index], path + (index,)))

    # -- Facade wrappers -----------------------------------------------------

    def _read(self, node: Any) -> UIElement | None:
        try:
            element = self._tree.attributes(node)
        except Exception as exc:
            logger.debug("Attribute read failed: %s", exc)
            return None
        element._ref = node
        return element

    def _children(self, node: Any) -> list[Any]:
        try:
            return list(self._tree.children(node) or [])
        except Exception as exc:
            logger.debug("Child read failed: %s", exc)
            return []

    def _focused_window(self, root: Any) -> Any | None:
        try:
            return self._tree.focused_window(root)
        except Exception as exc:
            logger.debug("Focused window read failed: %s", exc)
            return None

    def _screen_frames(self) -> list[Rect]:
        try:
            return list(self._tree.screen_frames())
        except Exception as exc:
            logger.debug("Screen frame read failed: %s", exc)
            return []


def _label_tunnel(element: UIElement) -> bool:
    """Tunnel test used by field scoring: label text only, value ignored."""
    if element.role not in TUNNEL_ROLES:
        return False
    return not (element.title or element.description or element.name)


def field_score(element: UIElement, needle: str, screens: list[Rect]) -> int:
    """Score *element* as a text-entry target for the lower-cased *needle*."""
    labels = [s.lower() for s in (element.title, element.description, element.name) if s]
    if not needle or not labels:
        return 0
    if any(label == needle for label in labels):
        score = 100
    elif any(label.startswith(needle) for label in labels):
        score = 80
    elif any(needle in label for label in labels):
        score = 60
    else:
        return 0

    if element.role in EDITABLE_ROLES:
        score += 50
    frame = element.frame
    if frame is not None and frame.width > 1 and frame.height > 1:
        if any(screen.intersects(frame) for screen in screens):
            score += 20
    return score
