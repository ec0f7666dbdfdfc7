"""Unit tests for axpilot.engine.search -- tunnel-aware resolution, field scoring, caching.

All tests run against the in-memory FakeTree from conftest.
"""

from __future__ import annotations

from axpilot.engine.cache import ResolutionCache
from axpilot.engine.locator import Locator
from axpilot.engine.protocols import UIElement
from axpilot.engine.search import SearchBudget, SemanticSearch, field_score, is_tunnel

from conftest import FakeClock, FakeTree, node, wrap


def _search(tree: FakeTree, clock: FakeClock | None = None, **budget) -> SemanticSearch:
    cache = ResolutionCache(clock=clock or FakeClock())
    return SemanticSearch(tree, cache, SearchBudget(**budget))


# ---------------------------------------------------------------------------
# 1. Tunnel nodes
# ---------------------------------------------------------------------------

class TestTunnelTraversal:
    """Anonymous layout wrappers cost no semantic depth."""

    def test_is_tunnel(self):
        assert is_tunnel(UIElement(role="AXGroup"))
        assert not is_tunnel(UIElement(role="AXGroup", description="Toolbar"))
        assert not is_tunnel(UIElement(role="AXButton"))

    def test_finds_button_under_thirty_wrappers(self, desktop):
        search = _search(desktop.tree)
        found = search.resolve("Compose", desktop.web_area)
        assert [el._ref for el in found] == [desktop.compose]

    def test_structural_depth_limit_would_miss_it(self, desktop):
        search = _search(desktop.tree)
        assert not search.element_exists("Compose", desktop.web_area, max_depth=15)

    def test_budget_counts_content_bearing_levels(self):
        tree = FakeTree()
        target = node("AXButton", name="Deep")
        chain = target
        for level in range(4, -1, -1):
            chain = node("AXGroup", chain, description=f"Level {level}")

        assert _search(tree, semantic_depth_budget=4).resolve("Deep", chain) == []
        assert [el._ref for el in _search(tree, semantic_depth_budget=5).resolve("Deep", chain)] == [target]

    def test_cyclic_tree_terminates(self):
        tree = FakeTree()
        loop = node("AXGroup", name="loop")
        loop.children.append(loop)
        assert _search(tree).resolve("missing", loop) == []


# ---------------------------------------------------------------------------
# 2. Locator resolution
# ---------------------------------------------------------------------------

class TestResolve:
    """resolve() honours dom_id priority, role filters and the candidate cap."""

    def test_dom_id_ignores_other_criteria(self, desktop):
        search = _search(desktop.tree)
        loc = Locator.build(query="no such label", dom_id="send-btn")
        assert [el._ref for el in search.resolve(loc, desktop.web_area)] == [desktop.send]

    def test_dom_id_walk_ignores_semantic_budget(self, desktop):
        search = _search(desktop.tree, semantic_depth_budget=0)
        assert search.resolve(Locator.build(dom_id="send-btn"), desktop.web_area)

    def test_dom_id_walk_has_its_own_depth_ceiling(self, desktop):
        search = _search(desktop.tree, dom_id_depth=4)
        assert search.resolve(Locator.build(dom_id="send-btn"), desktop.web_area) == []

    def test_role_filter_narrows_results(self, desktop):
        search = _search(desktop.tree)
        assert [el._ref for el in search.resolve("Send", desktop.web_area, role="AXButton")] == [desktop.send]
        assert search.resolve("Subject", desktop.web_area, role="AXButton") == []

    def test_results_in_document_order(self, desktop):
        search = _search(desktop.tree)
        fields = search.resolve(Locator.build(role="AXTextField"), desktop.web_area)
        assert [el._ref for el in fields] == [desktop.to_field, desktop.subject_field]

    def test_exact_text_match(self, desktop):
        search = _search(desktop.tree)
        assert search.resolve("To", desktop.web_area, exact=True) == []
        assert search.resolve("to recipients", desktop.web_area, exact=True)

    def test_max_results(self):
        tree = FakeTree()
        root = node("AXList", *(node("AXButton", name=f"Item {i}") for i in range(10)))
        found = _search(tree, max_results=3, max_candidates_scanned=50).resolve("Item", root)
        assert [el.name for el in found] == ["Item 0", "Item 1", "Item 2"]

    def test_candidate_cap_stops_the_walk(self):
        tree = FakeTree()
        root = node("AXList", *(node("AXButton", name=f"Item {i}") for i in range(10)))
        assert _search(tree, max_results=3, max_candidates_scanned=5).resolve("Item 9", root) == []

    def test_tunnels_do_not_count_toward_candidate_cap(self):
        tree = FakeTree()
        target = node("AXButton", name="Target")
        root = node("AXList", wrap(target, 50))
        found = _search(tree, max_results=1, max_candidates_scanned=2).resolve("Target", root)
        assert [el._ref for el in found] == [target]


# ---------------------------------------------------------------------------
# 3. Field scoring
# ---------------------------------------------------------------------------

def _form(*fields):
    tree = FakeTree()
    window = node("AXWindow", *fields, title="Form", position=(0, 0), size=(800, 600))
    app = tree.add_app("Form", window)
    return tree, app


def _field(role="AXTextField", y=10, **attrs):
    return node(role, position=(10, y), size=(200, 20), **attrs)


class TestFieldScoring:
    """find_editable_field() picks the best-labelled text entry node."""

    def test_scores(self):
        screens = FakeTree().screen_frames()
        assert field_score(_el(title="Subject"), "subject", screens) == 170
        assert field_score(_el(description="Subject line"), "subject", screens) == 150
        assert field_score(_el(name="Email subject"), "subject", screens) == 130
        assert field_score(_el(role="AXStaticText", title="Subject"), "subject", screens) == 120
        assert field_score(_el(title="Subject", on_screen=False), "subject", screens) == 150
        assert field_score(_el(value="Subject"), "subject", screens) == 0

    def test_exact_label_beats_earlier_prefix_match(self):
        prefix = _field(title="Subject line", y=10)
        exact = _field(description="Subject", y=40)
        tree, app = _form(prefix, exact)
        assert _search(tree).find_editable_field("Subject", app)._ref is exact

    def test_editable_role_beats_static_label(self):
        label = _field(role="AXStaticText", name="Email", y=10)
        field = _field(description="Email address", y=40)
        tree, app = _form(label, field)
        assert _search(tree).find_editable_field("email", app)._ref is field

    def test_tie_goes_to_first_in_traversal_order(self):
        first = _field(title="Name", y=10)
        second = _field(title="Name", y=40)
        tree, app = _form(first, second)
        assert _search(tree).find_editable_field("Name", app)._ref is first

    def test_value_is_not_a_label(self):
        filled = _field(value="Subject", y=10)
        labelled = _field(title="Subject", y=40)
        tree, app = _form(filled, labelled)
        assert _search(tree).find_editable_field("Subject", app)._ref is labelled

    def test_no_match_returns_none(self):
        tree, app = _form(_field(title="Name"))
        assert _search(tree).find_editable_field("Password", app) is None

    def test_searches_web_area_of_focused_window(self, desktop):
        search = _search(desktop.tree)
        assert search.find_editable_field("To", desktop.chrome)._ref is desktop.to_field
        assert search.find_editable_field("Subject", desktop.chrome)._ref is desktop.subject_field


def _el(role="AXTextField", on_screen=True, **attrs) -> UIElement:
    if on_screen:
        attrs.update(position=(10, 10), size=(200, 20))
    return UIElement(role=role, **attrs)


# ---------------------------------------------------------------------------
# 4. find_element() and the resolution cache
# ---------------------------------------------------------------------------

class TestFindElement:
    """App-level lookup: web area first, cached, and always revalidated."""

    def test_prefers_web_area_scope(self, desktop):
        toolbar = desktop.window.children[0]
        toolbar.children.append(node("AXButton", name="Compose (toolbar)"))
        found = _search(desktop.tree).find_element(Locator.build(query="Compose"), desktop.chrome)
        assert found._ref is desktop.compose

    def test_falls_back_to_whole_app(self, desktop):
        found = _search(desktop.tree).find_element(Locator.build(query="Toolbar"), desktop.chrome)
        assert found is not None and found.role == "AXToolbar"

    def test_uses_frontmost_app_by_default(self, desktop):
        found = _search(desktop.tree).find_element(Locator.build(role="AXTextArea"))
        assert found is not None
        assert _search(desktop.tree).find_element(Locator.build(query="Compose")) is None

    def test_caches_under_scope_qualified_key(self, desktop):
        search = _search(desktop.tree)
        loc = Locator.build(query="Compose")
        search.find_element(loc, desktop.chrome)
        assert search._cache.nodes.get(("Google Chrome:webarea", loc.cache_key())) is desktop.compose

    def test_node_cache_hit_avoids_walk(self, desktop):
        search = _search(desktop.tree)
        loc = Locator.build(query="Compose")
        search.find_element(loc, desktop.chrome)
        desktop.tree.reads = 0
        assert search.find_element(loc, desktop.chrome)._ref is desktop.compose
        assert desktop.tree.reads < 10

    def test_path_hint_used_after_node_entry_expires(self, desktop):
        clock = FakeClock()
        search = _search(desktop.tree, clock)
        loc = Locator.build(query="Compose")
        search.find_element(loc, desktop.chrome)
        clock.now += 5  # node TTL (2 s) passed, path hint TTL (10 s) has not
        desktop.tree.reads = 0
        assert search.find_element(loc, desktop.chrome)._ref is desktop.compose
        assert desktop.tree.reads < 10

    def test_stale_entries_are_revalidated(self, desktop):
        search = _search(desktop.tree)
        loc = Locator.build(query="Compose")
        search.find_element(loc, desktop.chrome)

        desktop.compose.name = "Discard"
        replacement = node("AXButton", name="Compose", position=(20, 300), size=(100, 40))
        desktop.web_area.children.append(replacement)

        assert search.find_element(loc, desktop.chrome)._ref is replacement

    def test_vanished_element_is_not_returned_from_cache(self, desktop):
        search = _search(desktop.tree)
        loc = Locator.build(query="Compose")
        search.find_element(loc, desktop.chrome)
        desktop.compose.name = "Discard"
        assert search.find_element(loc, desktop.chrome) is None

    def test_expired_entries_are_swept_on_lookup(self, desktop):
        clock = FakeClock()
        search = _search(desktop.tree, clock)
        search.find_element(Locator.build(query="Compose"), desktop.chrome)
        search.find_element(Locator.build(query="Toolbar"), desktop.chrome)
        assert len(search._cache.path_hints) == 2
        clock.now += 11
        search.find_element(Locator.build(query="Send"), desktop.chrome)
        assert len(search._cache.nodes) == 1
        assert len(search._cache.path_hints) == 1


# ---------------------------------------------------------------------------
# 5. Helpers
# ---------------------------------------------------------------------------

class TestHelpers:
    """element_exists(), iter_tree(), find_web_area() and find_scrollable()."""

    def test_element_exists_matches_labels(self, desktop):
        search = _search(desktop.tree)
        assert search.element_exists("To recipients", desktop.web_area)
        assert not search.element_exists("Bcc", desktop.web_area)

    def test_iter_tree_respects_depth(self, desktop):
        search = _search(desktop.tree)
        roles = [el.role for el in search.iter_tree(desktop.window, 1)]
        assert roles == ["AXWindow", "AXToolbar", "AXWebArea"]

    def test_find_web_area(self, desktop):
        root = desktop.tree.root_of(desktop.chrome)
        assert _search(desktop.tree).find_web_area(root) is desktop.web_area
        assert _search(desktop.tree).find_web_area(desktop.tree.root_of(desktop.textedit)) is None

    def test_find_scrollable(self, desktop):
        window = desktop.tree.focused_windows[desktop.textedit.pid]
        found = _search(desktop.tree).find_scrollable(window)
        assert found is not None and found.role == "AXScrollArea"

    def test_unreadable_nodes_are_skipped(self, desktop):
        class Flaky(FakeTree):
            def attributes(self, n):
                if n.name == "Compose":
                    raise RuntimeError("kAXErrorCannotComplete")
                return super().attributes(n)

        flaky = Flaky()
        flaky.roots = desktop.tree.roots
        assert _search(flaky).resolve("Compose", desktop.web_area) == []
