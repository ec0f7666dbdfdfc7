"""Shared fixtures for AXPilot unit tests.

The engine only ever talks to the UI through ``TreeAccess``.  ``FakeTree``
implements it over plain ``FakeNode`` objects so searches, actions, waits and
whole recipe runs can be exercised without macOS.
"""

from __future__ import annotations

import dataclasses
from pathlib import Path
from typing import Any, Callable, Sequence

import pytest
import yaml

from axpilot.config import AXPilotConfig
from axpilot.engine.protocols import AppInfo, Rect, UIElement
from axpilot.engine.recipe_store import FileRecipeStore
from axpilot.engine.service import AutomationService


# ---------------------------------------------------------------------------
# Fake accessibility tree
# ---------------------------------------------------------------------------

@dataclasses.dataclass(eq=False)
class FakeNode:
    """One node of the in-memory tree.  Identity-hashed, like a real AX handle."""

    role: str
    name: str = ""
    title: str = ""
    value: str | None = None
    description: str = ""
    identifier: str = ""
    placeholder: str = ""
    dom_id: str = ""
    dom_classes: str = ""
    url: str = ""
    position: tuple[float, float] | None = None
    size: tuple[float, float] | None = None
    settable: frozenset[str] = frozenset()
    enabled: bool = True
    children: list[FakeNode] = dataclasses.field(default_factory=list)
    # Behaviour knobs
    press_ok: bool = True
    accepts_value: bool = True
    accepts_typing: bool = True
    on_press: Callable[[], None] | None = None


def node(role: str, *children: FakeNode, **attrs: Any) -> FakeNode:
    return FakeNode(role=role, children=list(children), **attrs)


def wrap(inner: FakeNode, levels: int, role: str = "AXGroup") -> FakeNode:
    """Bury *inner* under *levels* anonymous wrapper nodes."""
    current = inner
    for _ in range(levels):
        current = node(role, current)
    return current


class FakeTree:
    """``TreeAccess`` over FakeNodes, recording every UI side effect in ``calls``."""

    def __init__(self) -> None:
        self.apps: list[AppInfo] = []
        self.roots: dict[int, FakeNode] = {}
        self.focused_windows: dict[int, FakeNode | None] = {}
        self.frontmost_pid: int | None = None
        self.focused: FakeNode | None = None
        self.calls: list[tuple[Any, ...]] = []
        self.screens = [Rect(0, 0, 1920, 1080)]
        self.unresponsive: set[int] = set()  # pids whose activate() returns False
        self.stubborn: set[int] = set()  # pids that activate but never become frontmost
        self.synthetic_ok = True
        self.reads = 0
        self._selected = False
        self._next_pid = 100

    # -- Setup helpers -------------------------------------------------------

    def add_app(
        self,
        name: str,
        *windows: FakeNode,
        bundle_id: str = "",
        regular: bool = True,
        frontmost: bool = False,
    ) -> AppInfo:
        self._next_pid += 1
        info = AppInfo(name=name, pid=self._next_pid, bundle_id=bundle_id, regular=regular)
        self.apps.append(info)
        root = node("AXApplication", *windows, title=name)
        self.roots[info.pid] = root
        self.focused_windows[info.pid] = windows[0] if windows else None
        if frontmost or self.frontmost_pid is None:
            self.frontmost_pid = info.pid
        return info

    def root_of(self, app: AppInfo) -> FakeNode:
        return self.roots[app.pid]

    def calls_named(self, name: str) -> list[tuple[Any, ...]]:
        return [c for c in self.calls if c[0] == name]

    # -- Applications --------------------------------------------------------

    def running_applications(self) -> list[AppInfo]:
        return list(self.apps)

    def frontmost_application(self) -> AppInfo | None:
        return next((a for a in self.apps if a.pid == self.frontmost_pid), None)

    def activate(self, app: AppInfo) -> bool:
        self.calls.append(("activate", app.name))
        if app.pid in self.unresponsive:
            return False
        if app.pid not in self.stubborn:
            self.frontmost_pid = app.pid
        return True

    def application_root(self, app: AppInfo) -> FakeNode | None:
        return self.roots.get(app.pid)

    # -- Tree ----------------------------------------------------------------

    def attributes(self, n: FakeNode) -> UIElement:
        self.reads += 1
        return UIElement(
            role=n.role,
            name=n.name,
            title=n.title,
            value=n.value,
            description=n.description,
            identifier=n.identifier,
            placeholder=n.placeholder,
            dom_id=n.dom_id,
            dom_classes=n.dom_classes,
            url=n.url,
            position=n.position,
            size=n.size,
            settable=n.settable,
            enabled=n.enabled,
        )

    def children(self, n: FakeNode) -> Sequence[FakeNode]:
        return n.children

    def node_key(self, n: FakeNode) -> FakeNode:
        return n

    def focused_window(self, root: FakeNode) -> FakeNode | None:
        for pid, app_root in self.roots.items():
            if app_root is root:
                return self.focused_windows.get(pid)
        return None

    def windows(self, root: FakeNode) -> Sequence[FakeNode]:
        return [c for c in root.children if c.role == "AXWindow"]

    def focused_element(self, root: FakeNode) -> FakeNode | None:
        return self.focused

    def element_at(self, point: tuple[float, float]) -> FakeNode | None:
        """Deepest framed node under *point*, frontmost app first."""
        for _, root in sorted(self.roots.items(), key=lambda item: item[0] != self.frontmost_pid):
            hit = _deepest_at(root, point)
            if hit is not None:
                return hit
        return None

    def screen_frames(self) -> list[Rect]:
        return list(self.screens)

    # -- Native actions ------------------------------------------------------

    def perform_action(self, n: FakeNode, action: str) -> bool:
        self.calls.append(("perform_action", action, n.name or n.title or n.role))
        if action == "AXPress":
            if n.press_ok and n.on_press is not None:
                n.on_press()
            return n.press_ok
        return True

    def set_attribute(self, n: FakeNode, name: str, value: Any) -> bool:
        self.calls.append(("set_attribute", name, value))
        if name == "AXFocused":
            self.focused = n
            return True
        if name == "AXValue":
            if n.accepts_value:
                n.value = value
            return n.accepts_value
        return False

    def raise_window(self, window: FakeNode) -> bool:
        self.calls.append(("raise_window", window.title))
        return True

    # -- Synthetic input -----------------------------------------------------

    def synthetic_click(self, point: tuple[float, float], button: str = "left", count: int = 1) -> bool:
        self.calls.append(("synthetic_click", point, button, count))
        hit = self._node_at(point)
        if hit is not None:
            self.focused = hit
        return self.synthetic_ok

    def synthetic_type(self, text: str, per_char_delay: float = 0.0) -> bool:
        self.calls.append(("synthetic_type", text))
        if self.focused is not None and self.focused.accepts_typing:
            self.focused.value = (self.focused.value or "") + text
        return self.synthetic_ok

    def synthetic_key(self, key: str, modifiers: Sequence[str] = ()) -> bool:
        self.calls.append(("synthetic_key", key, tuple(modifiers)))
        if key == "a" and "cmd" in modifiers:
            self._selected = True
        elif key == "delete" and self._selected and self.focused is not None:
            self.focused.value = ""
            self._selected = False
        return self.synthetic_ok

    def synthetic_scroll(self, point: tuple[float, float] | None, direction: str, amount: int) -> bool:
        self.calls.append(("synthetic_scroll", point, direction, amount))
        return self.synthetic_ok

    def clear_modifiers(self) -> None:
        self.calls.append(("clear_modifiers",))

    def _node_at(self, point: tuple[float, float]) -> FakeNode | None:
        hit = None
        stack = list(self.roots.values())
        while stack:
            current = stack.pop()
            if current.position is not None and current.size is not None:
                x, y = current.position
                w, h = current.size
                if x <= point[0] <= x + w and y <= point[1] <= y + h:
                    hit = current
            stack.extend(reversed(current.children))
        return hit


def _deepest_at(n: FakeNode, point: tuple[float, float]) -> FakeNode | None:
    best = None
    if n.position is not None and n.size is not None:
        x, y = n.position
        w, h = n.size
        if not (x <= point[0] <= x + w and y <= point[1] <= y + h):
            return None
        best = n
    for child in reversed(n.children):
        hit = _deepest_at(child, point)
        if hit is not None:
            return hit
    return best

class FakeClock:
    """Manual clock.  ``sleep`` advances time and fires scheduled callbacks."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []
        self._scheduled: list[tuple[float, Callable[[], None]]] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        due = [item for item in self._scheduled if item[0] <= self.now + 1e-9]
        self._scheduled = [item for item in self._scheduled if item[0] > self.now + 1e-9]
        for _, callback in due:
            callback()

    def at(self, when: float, callback: Callable[[], None]) -> None:
        self._scheduled.append((when, callback))


# ---------------------------------------------------------------------------
# Fixture: a browser with a Gmail-like page and a native editor
# ---------------------------------------------------------------------------

@dataclasses.dataclass
class Desktop:
    tree: FakeTree
    clock: FakeClock
    chrome: AppInfo
    textedit: AppInfo
    window: FakeNode
    web_area: FakeNode
    compose: FakeNode
    to_field: FakeNode
    subject_field: FakeNode
    send: FakeNode


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def desktop(clock: FakeClock) -> Desktop:
    """Chrome showing an inbox (Compose buried 30 wrappers deep) plus TextEdit in front."""
    tree = FakeTree()

    compose = node("AXButton", name="Compose", position=(20, 120), size=(100, 40))
    to_field = node(
        "AXTextField", description="To recipients", position=(400, 200), size=(500, 24),
        settable=frozenset({"AXValue"}),
    )
    subject_field = node(
        "AXTextField", title="Subject", position=(400, 240), size=(500, 24),
        settable=frozenset({"AXValue"}),
    )
    send = node("AXButton", name="Send", dom_id="send-btn", position=(400, 600), size=(80, 30))

    compose_dialog = node("AXGroup", to_field, subject_field, send, description="New Message")
    web_area = node(
        "AXWebArea",
        wrap(node("AXLandmarkNavigation", wrap(compose, 30)), 2),
        wrap(compose_dialog, 3),
        title="Inbox - Gmail",
        url="https://mail.google.com/mail/u/0/#inbox",
        position=(0, 80),
        size=(1400, 900),
    )
    window = node("AXWindow", node("AXToolbar", name="Toolbar"), web_area, title="Inbox - Gmail",
                  position=(0, 0), size=(1400, 1000))
    chrome = tree.add_app("Google Chrome", window, bundle_id="com.google.Chrome")

    editor = node("AXTextArea", value="", position=(10, 50), size=(600, 400), settable=frozenset({"AXValue"}))
    doc_window = node("AXWindow", node("AXScrollArea", editor, position=(10, 50), size=(600, 400)),
                      title="Untitled", position=(0, 0), size=(640, 480))
    textedit = tree.add_app("TextEdit", doc_window, bundle_id="com.apple.TextEdit", frontmost=True)
    tree.add_app("Dock", regular=False)

    return Desktop(tree, clock, chrome, textedit, window, web_area, compose, to_field, subject_field, send)


@pytest.fixture
def recipes_dir(tmp_path: Path) -> Path:
    path = tmp_path / ".axpilot" / "recipes"
    path.mkdir(parents=True)
    return path


@pytest.fixture
def service(desktop: Desktop, recipes_dir: Path) -> AutomationService:
    config = AXPilotConfig(project_dir=recipes_dir.parent, recipes_dir=recipes_dir)
    return AutomationService(
        desktop.tree,
        FileRecipeStore(recipes_dir),
        config,
        sleep=desktop.clock.sleep,
        clock=desktop.clock,
    )


def write_recipe(recipes_dir: Path, data: dict[str, Any]) -> Path:
    path = recipes_dir / f"{data['name']}.yaml"
    path.write_text(yaml.safe_dump(data, sort_keys=False), encoding="utf-8")
    return path


# ---------------------------------------------------------------------------
# Fixture: sample config YAML string
# ---------------------------------------------------------------------------

@pytest.fixture
def sample_config_yaml() -> str:
    """Return a valid AXPilot config.yaml as a string."""
    return """\
recipes_dir: my-recipes
default_browser: Safari
search:
  semantic_depth_budget: 30
  max_results: 20
  max_candidates_scanned: 200
  dom_id_depth: 40
  wait_element_depth: 12
cache:
  node_ttl: 1.5
  path_hint_ttl: 8
wait:
  timeout: 5
  interval: 0.25
"""
