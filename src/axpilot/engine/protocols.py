"""Tree access protocol.

These types define the contract between AXPilot's search / action / wait
engine and the platform layer that actually talks to the accessibility API.
``MacAccessibilityTree`` implements it with pyobjc; tests implement it with an
in-memory tree.  Node handles are opaque to the engine: it only passes them
back into the facade.
"""

from __future__ import annotations

import dataclasses
from typing import Any, Hashable, Protocol, Sequence, runtime_checkable

# Error codes carried on ActionResult / WaitResult / RunReport
ELEMENT_NOT_FOUND = "ELEMENT_NOT_FOUND"
ACTION_FAILED = "ACTION_FAILED"
PRECONDITION_FAILED = "PRECONDITION_FAILED"
MISSING_PARAMETER = "MISSING_PARAMETER"
TIMEOUT = "TIMEOUT"
INVALID_DEFINITION = "INVALID_DEFINITION"
INVALID_PARAMETER = "INVALID_PARAMETER"
APP_NOT_FOUND = "APP_NOT_FOUND"

EDITABLE_ROLES = frozenset({
    "AXTextField",
    "AXTextArea",
    "AXComboBox",
    "AXSearchField",
    "AXSecureTextField",
})

ACTIONABLE_ROLES = frozenset({
    "AXButton",
    "AXLink",
    "AXCheckBox",
    "AXRadioButton",
    "AXPopUpButton",
    "AXMenuButton",
    "AXMenuItem",
    "AXTab",
    "AXCell",
    "AXRow",
    "AXStaticText",
    "AXImage",
    *EDITABLE_ROLES,
})


@dataclasses.dataclass(frozen=True)
class Rect:
    """Screen rectangle in global (top-left origin) coordinates."""

    x: float
    y: float
    width: float
    height: float

    def intersects(self, other: Rect) -> bool:
        return (
            self.x < other.x + other.width
            and other.x < self.x + self.width
            and self.y < other.y + other.height
            and other.y < self.y + self.height
        )

    @property
    def center(self) -> tuple[float, float]:
        return (self.x + self.width / 2, self.y + self.height / 2)


@dataclasses.dataclass(frozen=True)
class AppInfo:
    """A running application as seen by the facade."""

    name: str
    pid: int
    bundle_id: str = ""
    regular: bool = True  # shows in the Dock (NSApplicationActivationPolicyRegular)


@dataclasses.dataclass
class UIElement:
    """Lightweight snapshot of one accessibility node.

    Valid only for the resolve-act-verify cycle that produced it; the live
    tree may change at any time after.
    """

    role: str
    name: str = ""  # computed display name
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
    # Internal reference -- not serialised
    _ref: Any = dataclasses.field(default=None, repr=False, compare=False)

    @property
    def display_name(self) -> str:
        return self.name or self.title

    @property
    def frame(self) -> Rect | None:
        if self.position is None or self.size is None:
            return None
        return Rect(self.position[0], self.position[1], self.size[0], self.size[1])

    @property
    def center(self) -> tuple[float, float] | None:
        frame = self.frame
        return frame.center if frame else None

    @property
    def is_editable(self) -> bool:
        return self.role in EDITABLE_ROLES or "AXValue" in self.settable

    @property
    def is_actionable(self) -> bool:
        """Enabled and has a non-degenerate on-screen frame."""
        frame = self.frame
        return self.enabled and frame is not None and frame.width > 0 and frame.height > 0

    def summary(self) -> dict[str, Any]:
        """Concise dict used in find results."""
        info: dict[str, Any] = {"role": self.role}
        if self.display_name:
            info["name"] = self.display_name
        if self.position is not None:
            info["position"] = {"x": int(self.position[0]), "y": int(self.position[1])}
        if self.size is not None:
            info["size"] = {"width": int(self.size[0]), "height": int(self.size[1])}
        info["actionable"] = self.is_actionable
        if self.value:
            info["value"] = self.value[:200]
        if self.dom_id:
            info["dom_id"] = self.dom_id
        if self.identifier:
            info["identifier"] = self.identifier
        return info

    def details(self) -> dict[str, Any]:
        """Full metadata dict used by inspect and hit-test results.

        Values longer than 500 characters are truncated.  Text areas report
        only their length, since a scrollback buffer can run to megabytes.
        """
        info: dict[str, Any] = {"role": self.role}
        for key in ("title", "name", "identifier", "description", "placeholder", "dom_id", "dom_classes", "url"):
            text = getattr(self, key)
            if text:
                info[key] = text
        frame = self.frame
        if frame is not None:
            info["frame"] = {
                "x": int(frame.x), "y": int(frame.y), "width": int(frame.width), "height": int(frame.height),
            }
        info["actionable"] = self.is_actionable
        info["editable"] = self.is_editable
        info["enabled"] = self.enabled
        if self.settable:
            info["settable"] = sorted(self.settable)
        if self.value:
            if self.role == "AXTextArea":
                info["value_length"] = len(self.value)
            elif len(self.value) > 500:
                info["value"] = self.value[:500] + "..."
                info["value_length"] = len(self.value)
            else:
                info["value"] = self.value
        return info


@runtime_checkable
class TreeAccess(Protocol):
    """Black-box access to the live UI tree and to synthetic input.

    Every call may be slow, may return stale data, and may fail; the engine
    verifies instead of trusting.
    """

    # -- Applications --------------------------------------------------------

    def running_applications(self) -> list[AppInfo]: ...

    def frontmost_application(self) -> AppInfo | None: ...

    def activate(self, app: AppInfo) -> bool: ...

    def application_root(self, app: AppInfo) -> Any | None: ...

    # -- Tree ----------------------------------------------------------------

    def attributes(self, node: Any) -> UIElement: ...

    def children(self, node: Any) -> Sequence[Any]: ...

    def node_key(self, node: Any) -> Hashable: ...

    def focused_window(self, root: Any) -> Any | None: ...

    def windows(self, root: Any) -> Sequence[Any]: ...

    def focused_element(self, root: Any) -> Any | None: ...

    def element_at(self, point: tuple[float, float]) -> Any | None: ...

    def screen_frames(self) -> list[Rect]: ...

    # -- Native actions ------------------------------------------------------

    def perform_action(self, node: Any, action: str) -> bool: ...

    def set_attribute(self, node: Any, name: str, value: Any) -> bool: ...

    def raise_window(self, window: Any) -> bool: ...

    # -- Synthetic input -----------------------------------------------------

    def synthetic_click(self, point: tuple[float, float], button: str = "left", count: int = 1) -> bool: ...

    def synthetic_type(self, text: str, per_char_delay: float = 0.0) -> bool: ...

    def synthetic_key(self, key: str, modifiers: Sequence[str] = ()) -> bool: ...

    def synthetic_scroll(
        self,
        point: tuple[float, float] | None,
        direction: str,
        amount: int,
    ) -> bool: ...

    def clear_modifiers(self) -> None: ...
