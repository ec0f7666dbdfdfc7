"""Orientation snapshots: which app, window, URL and controls are in front.

Used directly by the ``context`` command and, best-effort, to enrich a
failed recipe run with the state the operator would need to diagnose it.
Also serves the read-only perception calls: running-app state, text
reading, single-element inspection and screen-point hit tests.
"""

from __future__ import annotations

import dataclasses
import logging
from typing import Any

from axpilot.engine.focus import FocusManager
from axpilot.engine.locator import Locator
from axpilot.engine.protocols import APP_NOT_FOUND, ELEMENT_NOT_FOUND, AppInfo, TreeAccess, UIElement
from axpilot.engine.search import SemanticSearch
from axpilot.models import CONTEXT_INTERACTIVE_DEPTH, MAX_INTERACTIVE_ELEMENTS

logger = logging.getLogger("axpilot.engine.context")

INTERACTIVE_ROLES = frozenset({
    "AXButton",
    "AXLink",
    "AXTextField",
    "AXTextArea",
    "AXCheckBox",
    "AXRadioButton",
    "AXPopUpButton",
    "AXComboBox",
    "AXMenuButton",
    "AXTab",
})

# Line prefixes for read output
_READ_PREFIXES = {"AXLink": "[link] ", "AXButton": "[button] "}


class ContextProvider:
    """Builds context dicts for an application (frontmost by default)."""

    def __init__(self, tree: TreeAccess, search: SemanticSearch, focus: FocusManager) -> None:
        self._tree = tree
        self._search = search
        self._focus = focus

    def get_context(self, app: str | None = None, interactive: bool = True) -> dict[str, Any]:
        """Return app, bundle id, pid, window title, URL, focused element and,
        when *interactive* is set, up to 30 named interactive controls.
        """
        info = self._focus.find_app(app) if app else self._tree.frontmost_application()
        if info is None:
            return _app_missing(app)

        data: dict[str, Any] = {"app": info.name, "bundle_id": info.bundle_id or "unknown", "pid": info.pid}
        root = self._tree.application_root(info)
        if root is None:
            data["note"] = "Could not read accessibility tree. App may need focus for native apps."
            return data

        window = self._tree.focused_window(root)
        if window is not None:
            title = self._tree.attributes(window).title
            if title:
                data["window"] = title
            web_area = self._search.find_web_area(root, window=window)
            if web_area is not None:
                url = self._tree.attributes(web_area).url
                if url:
                    data["url"] = url

        focused = self._tree.focused_element(root)
        if focused is not None:
            el = self._tree.attributes(focused)
            focused_info: dict[str, Any] = {"role": el.role, "editable": el.is_editable}
            if el.title:
                focused_info["title"] = el.title
            if el.name:
                focused_info["name"] = el.name
            data["focused_element"] = focused_info

        if interactive and window is not None:
            elements: list[dict[str, str]] = []
            for el in self._search.iter_tree(window, CONTEXT_INTERACTIVE_DEPTH - 1):
                if el.role in INTERACTIVE_ROLES and el.display_name:
                    elements.append({"role": el.role, "name": el.display_name})
                    if len(elements) >= MAX_INTERACTIVE_ELEMENTS:
                        break
            if elements:
                data["interactive_elements"] = elements

        return data

    # -- Running apps --------------------------------------------------------

    def get_state(self, app: str | None = None) -> dict[str, Any]:
        """Every regular running app (or just *app*) with its windows' titles, positions and sizes."""
        apps = [a for a in self._tree.running_applications() if a.regular]
        if app:
            info = self._focus.find_app(app)
            if info is None or not info.regular:
                return {
                    "error": f"Application '{app}' not found",
                    "error_code": APP_NOT_FOUND,
                    "suggestion": "Call state without an app to see all running apps",
                }
            apps = [info]
        front = self._tree.frontmost_application()
        entries = [self._app_state(info, front) for info in apps]
        return {"app_count": len(entries), "apps": entries}

    def _app_state(self, info: AppInfo, front: AppInfo | None) -> dict[str, Any]:
        entry: dict[str, Any] = {
            "name": info.name,
            "bundle_id": info.bundle_id or "unknown",
            "pid": info.pid,
            "active": front is not None and front.pid == info.pid,
        }
        root = self._tree.application_root(info)
        if root is None:
            return entry
        windows: list[dict[str, Any]] = []
        for window in self._tree.windows(root):
            el = self._tree.attributes(window)
            item: dict[str, Any] = {}
            if el.title:
                item["title"] = el.title
            if el.position is not None:
                item["position"] = {"x": int(el.position[0]), "y": int(el.position[1])}
            if el.size is not None:
                item["size"] = {"width": int(el.size[0]), "height": int(el.size[1])}
            if item:
                windows.append(item)
        if windows:
            entry["windows"] = windows
        return entry

    # -- Reading -------------------------------------------------------------

    def read_content(
        self,
        app: str | None = None,
        query: str | None = None,
        depth: int | None = None,
    ) -> dict[str, Any]:
        """Concatenated text of a subtree, one line per content node.

        Reads the element matching *query* when given, else the focused
        window's web area, else the focused window.  Layout-only wrappers
        cost no depth, so *depth* counts content levels.
        """
        info = self._focus.find_app(app) if app else self._tree.frontmost_application()
        if info is None:
            return _app_missing(app)
        root = self._tree.application_root(info)
        if root is None:
            return {
                "error": f"Could not read the accessibility tree of '{info.name}'",
                "error_code": APP_NOT_FOUND,
            }

        max_depth = self._search.budget.semantic_depth_budget if depth is None else depth
        read_root = root
        if query:
            budget = dataclasses.replace(self._search.budget, semantic_depth_budget=max_depth, max_results=1)
            found = self._search.resolve(query, root, budget=budget)
            if not found:
                return {
                    "error": f"Element '{query}' not found in '{info.name}'",
                    "error_code": ELEMENT_NOT_FOUND,
                    "suggestion": "Read without a query, or use find to see what elements are available",
                }
            read_root = found[0]._ref
        else:
            window = self._tree.focused_window(root)
            if window is not None:
                read_root = self._search.find_web_area(root, window=window) or window

        lines: list[str] = []
        for el, tunnel in self._search.iter_semantic(read_root, max_depth):
            if tunnel:
                continue
            text = el.value or el.title or el.name or el.description
            if not text:
                continue
            prefix = "# " if el.role.startswith("AXHeading") else _READ_PREFIXES.get(el.role, "")
            lines.append(prefix + text)
        return {"app": info.name, "content": "\n".join(lines), "item_count": len(lines)}

    # -- Inspection ----------------------------------------------------------

    def inspect(self, target: Locator | str, app: str | None = None, role: str | None = None) -> dict[str, Any]:
        """Full metadata for the first node matching *target*."""
        info = self._focus.find_app(app) if app else self._tree.frontmost_application()
        if info is None:
            return _app_missing(app)
        root = self._tree.application_root(info)
        found = self._search.resolve(target, root, role=role) if root is not None else []
        if not found:
            label = target.describe() if isinstance(target, Locator) else repr(target)
            return {
                "error": f"Element {label} not found in '{info.name}'",
                "error_code": ELEMENT_NOT_FOUND,
                "suggestion": "Use find to see what elements are available, or context for orientation",
            }
        return self._details(found[0])

    def element_at(self, x: float, y: float) -> dict[str, Any]:
        """Full metadata for the topmost node at screen point (*x*, *y*)."""
        node = self._tree.element_at((x, y))
        if node is None:
            return {
                "error": f"No element found at ({int(x)}, {int(y)})",
                "error_code": ELEMENT_NOT_FOUND,
                "suggestion": "The point may be outside every window. Use state to see window positions.",
            }
        element = self._tree.attributes(node)
        element._ref = node
        return self._details(element)

    def _details(self, element: UIElement) -> dict[str, Any]:
        info = element.details()
        if element._ref is not None:
            info["child_count"] = len(self._tree.children(element._ref) or [])
        return info

    def capture(self, app: str | None = None) -> dict[str, Any] | None:
        """Best-effort diagnostic snapshot.  Failures are logged and discarded."""
        try:
            return self.get_context(app, interactive=False)
        except Exception as exc:
            logger.warning("Failed to capture failure context: %s", exc)
            return None


def _app_missing(app: str | None) -> dict[str, Any]:
    return {
        "error": f"Application '{app}' not found" if app else "No frontmost application",
        "error_code": APP_NOT_FOUND,
    }
