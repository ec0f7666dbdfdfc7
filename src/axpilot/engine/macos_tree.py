"""AXPilot macOS tree -- ``TreeAccess`` over the Accessibility API.

Reads UI state from the accessibility tree (AXUIElement through
pyobjc-framework-ApplicationServices), resolves running applications via
NSWorkspace, and posts synthetic mouse / keyboard / scroll events through
Quartz CGEvent.

pyobjc dependencies are conditionally imported so that AXPilot continues to
import on systems where pyobjc is not installed (e.g. Linux CI, or macOS
without the ``[native]`` extra); constructing ``MacAccessibilityTree`` there
raises ``RuntimeError``.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Hashable, Sequence

from axpilot.engine.protocols import AppInfo, Rect, UIElement

logger = logging.getLogger("axpilot.engine.macos_tree")

# ---------------------------------------------------------------------------
# Conditional pyobjc imports
# ---------------------------------------------------------------------------
_HAS_PYOBJC = False

try:
    from ApplicationServices import (  # type: ignore[import-untyped]
        AXIsProcessTrusted,
        AXUIElementCopyAttributeValue,
        AXUIElementCopyElementAtPosition,
        AXUIElementCreateApplication,
        AXUIElementCreateSystemWide,
        AXUIElementIsAttributeSettable,
        AXUIElementPerformAction,
        AXUIElementSetAttributeValue,
        AXValueGetValue,
        kAXErrorSuccess,
    )

    # Constants from HIServices/AXValue.h -- used to unpack AXValueRef objects
    _kAXValueCGPointType = 1
    _kAXValueCGSizeType = 2

    from Cocoa import (  # type: ignore[import-untyped]
        NSApplicationActivateIgnoringOtherApps,
        NSApplicationActivationPolicyRegular,
        NSRunningApplication,
        NSScreen,
        NSWorkspace,
    )
    from Quartz import (  # type: ignore[import-untyped]
        CGEventCreate,
        CGEventCreateKeyboardEvent,
        CGEventCreateMouseEvent,
        CGEventCreateScrollWheelEvent,
        CGEventKeyboardSetUnicodeString,
        CGEventPost,
        CGEventSetFlags,
        CGEventSetIntegerValueField,
        CGEventSetType,
        CGPoint,
        kCGEventFlagMaskAlternate,
        kCGEventFlagMaskCommand,
        kCGEventFlagMaskControl,
        kCGEventFlagMaskSecondaryFn,
        kCGEventFlagMaskShift,
        kCGEventFlagsChanged,
        kCGEventLeftMouseDown,
        kCGEventLeftMouseUp,
        kCGEventMouseMoved,
        kCGEventOtherMouseDown,
        kCGEventOtherMouseUp,
        kCGEventRightMouseDown,
        kCGEventRightMouseUp,
        kCGHIDEventTap,
        kCGMouseButtonCenter,
        kCGMouseButtonLeft,
        kCGMouseButtonRight,
        kCGMouseEventClickState,
        kCGScrollEventUnitLine,
    )

    _MOUSE_EVENTS = {
        "left": (kCGEventLeftMouseDown, kCGEventLeftMouseUp, kCGMouseButtonLeft),
        "right": (kCGEventRightMouseDown, kCGEventRightMouseUp, kCGMouseButtonRight),
        "middle": (kCGEventOtherMouseDown, kCGEventOtherMouseUp, kCGMouseButtonCenter),
    }

    _MODIFIER_FLAGS = {
        "cmd": kCGEventFlagMaskCommand,
        "command": kCGEventFlagMaskCommand,
        "shift": kCGEventFlagMaskShift,
        "option": kCGEventFlagMaskAlternate,
        "alt": kCGEventFlagMaskAlternate,
        "ctrl": kCGEventFlagMaskControl,
        "control": kCGEventFlagMaskControl,
        "fn": kCGEventFlagMaskSecondaryFn,
    }

    _HAS_PYOBJC = True
except ImportError:
    pass


# ---------------------------------------------------------------------------
# Key-code mapping (macOS virtual key codes)
# ---------------------------------------------------------------------------

_KEY_CODES: dict[str, int] = {
    "return": 0x24,
    "enter": 0x24,
    "tab": 0x30,
    "space": 0x31,
    "delete": 0x33,
    "backspace": 0x33,
    "forwarddelete": 0x75,
    "escape": 0x35,
    "esc": 0x35,
    "left": 0x7B,
    "right": 0x7C,
    "down": 0x7D,
    "up": 0x7E,
    "home": 0x73,
    "end": 0x77,
    "pageup": 0x74,
    "pagedown": 0x79,
    "f1": 0x7A, "f2": 0x78, "f3": 0x63, "f4": 0x76, "f5": 0x60, "f6": 0x61,
    "f7": 0x62, "f8": 0x64, "f9": 0x65, "f10": 0x6D, "f11": 0x67, "f12": 0x6F,
    "a": 0x00, "b": 0x0B, "c": 0x08, "d": 0x02, "e": 0x0E,
    "f": 0x03, "g": 0x05, "h": 0x04, "i": 0x22, "j": 0x26,
    "k": 0x28, "l": 0x25, "m": 0x2E, "n": 0x2D, "o": 0x1F,
    "p": 0x23, "q": 0x0C, "r": 0x0F, "s": 0x01, "t": 0x11,
    "u": 0x20, "v": 0x09, "w": 0x0D, "x": 0x07, "y": 0x10,
    "z": 0x06,
    "0": 0x1D, "1": 0x12, "2": 0x13, "3": 0x14, "4": 0x15,
    "5": 0x17, "6": 0x16, "7": 0x1A, "8": 0x1C, "9": 0x19,
    "-": 0x1B, "=": 0x18, "[": 0x21, "]": 0x1E, ";": 0x29,
    "'": 0x27, ",": 0x2B, ".": 0x2F, "/": 0x2C, "\\": 0x2A, "`": 0x32,
}


class MacAccessibilityTree:
    """``TreeAccess`` implementation for the local macOS session.

    Raises ``RuntimeError`` at construction if pyobjc is unavailable or the
    Accessibility API is not trusted for this process.
    """

    def __init__(self) -> None:
        if not _HAS_PYOBJC:
            raise RuntimeError(
                "pyobjc is not installed. Install the native extra: pip install 'axpilot[native]'"
            )
        if not AXIsProcessTrusted():
            raise RuntimeError(
                "Accessibility API not trusted. Grant Terminal / IDE access "
                "in System Settings > Privacy & Security > Accessibility."
            )

    # -- Applications --------------------------------------------------------

    def running_applications(self) -> list[AppInfo]:
        apps: list[AppInfo] = []
        for app in NSWorkspace.sharedWorkspace().runningApplications():
            if app.isTerminated():
                continue
            info = self._app_info(app)
            if info is not None:
                apps.append(info)
        return apps

    def frontmost_application(self) -> AppInfo | None:
        app = NSWorkspace.sharedWorkspace().frontmostApplication()
        return self._app_info(app) if app is not None else None

    def activate(self, app: AppInfo) -> bool:
        running = NSRunningApplication.runningApplicationWithProcessIdentifier_(app.pid)
        if running is None:
            return False
        return bool(running.activateWithOptions_(NSApplicationActivateIgnoringOtherApps))

    def application_root(self, app: AppInfo) -> Any | None:
        return AXUIElementCreateApplication(app.pid)

    @staticmethod
    def _app_info(app: Any) -> AppInfo | None:
        name = app.localizedName()
        if not name:
            return None
        return AppInfo(
            name=str(name),
            pid=int(app.processIdentifier()),
            bundle_id=str(app.bundleIdentifier() or ""),
            regular=app.activationPolicy() == NSApplicationActivationPolicyRegular,
        )

    # -- Accessibility Tree --------------------------------------------------

    def _get_ax_attribute(self, element: Any, attr: str) -> Any:
        """Safely read an accessibility attribute from an AXUIElement.

        Returns ``None`` if the attribute does not exist or cannot be read.
        """
        try:
            err, value = AXUIElementCopyAttributeValue(element, attr, None)
            if err == kAXErrorSuccess:
                return value
        except Exception as exc:
            logger.debug("Reading %s failed: %s", attr, exc)
        return None

    def _is_settable(self, element: Any, attr: str) -> bool:
        try:
            err, settable = AXUIElementIsAttributeSettable(element, attr, None)
            return err == kAXErrorSuccess and bool(settable)
        except Exception:
            return False

    def _unpack(self, raw: Any, value_type: int, fields: tuple[str, str]) -> tuple[float, float] | None:
        if raw is None:
            return None
        try:
            ok, unpacked = AXValueGetValue(raw, value_type, None)
            if ok and unpacked is not None:
                return (float(getattr(unpacked, fields[0])), float(getattr(unpacked, fields[1])))
        except Exception:
            # Fallback for environments where AXValueGetValue is unavailable
            try:
                return (float(getattr(raw, fields[0])), float(getattr(raw, fields[1])))
            except Exception:
                pass
        return None

    def attributes(self, node: Any) -> UIElement:
        """Build a UIElement snapshot from an AXUIElement reference."""
        role = str(self._get_ax_attribute(node, "AXRole") or "")
        title = str(self._get_ax_attribute(node, "AXTitle") or "")
        value = self._get_ax_attribute(node, "AXValue")
        if value is not None:
            value = str(value)

        description = str(self._get_ax_attribute(node, "AXDescription") or "")
        identifier = str(self._get_ax_attribute(node, "AXIdentifier") or "")
        placeholder = str(self._get_ax_attribute(node, "AXPlaceholderValue") or "")
        dom_id = str(self._get_ax_attribute(node, "AXDOMIdentifier") or "")
        classes = self._get_ax_attribute(node, "AXDOMClassList")
        dom_classes = " ".join(str(c) for c in classes) if classes else ""

        url = ""
        url_raw = self._get_ax_attribute(node, "AXURL")
        if url_raw is not None:
            url = str(url_raw.absoluteString()) if hasattr(url_raw, "absoluteString") else str(url_raw)

        enabled_raw = self._get_ax_attribute(node, "AXEnabled")
        enabled = bool(enabled_raw) if enabled_raw is not None else True

        position = self._unpack(self._get_ax_attribute(node, "AXPosition"), _kAXValueCGPointType, ("x", "y"))
        size = self._unpack(self._get_ax_attribute(node, "AXSize"), _kAXValueCGSizeType, ("width", "height"))

        settable = frozenset(a for a in ("AXValue", "AXFocused") if self._is_settable(node, a))

        name = title or description
        if not name and role == "AXStaticText" and value:
            name = value
        name = name or placeholder

        return UIElement(
            role=role,
            name=name,
            title=title,
            value=value,
            description=description,
            identifier=identifier,
            placeholder=placeholder,
            dom_id=dom_id,
            dom_classes=dom_classes,
            url=url,
            position=position,
            size=size,
            settable=settable,
            enabled=enabled,
            _ref=node,
        )

    def children(self, node: Any) -> Sequence[Any]:
        children = self._get_ax_attribute(node, "AXChildren")
        return list(children) if children else []

    def node_key(self, node: Any) -> Hashable:
        # pyobjc CF wrappers hash and compare through CFHash / CFEqual
        return node

    def focused_window(self, root: Any) -> Any | None:
        return self._get_ax_attribute(root, "AXFocusedWindow") or self._get_ax_attribute(root, "AXMainWindow")

    def windows(self, root: Any) -> Sequence[Any]:
        windows = self._get_ax_attribute(root, "AXWindows")
        return list(windows) if windows else []

    def focused_element(self, root: Any) -> Any | None:
        return self._get_ax_attribute(root, "AXFocusedUIElement")

    def element_at(self, point: tuple[float, float]) -> Any | None:
        """Topmost node under a global screen point, across all applications."""
        try:
            err, element = AXUIElementCopyElementAtPosition(
                AXUIElementCreateSystemWide(), float(point[0]), float(point[1]), None
            )
        except Exception as exc:
            logger.debug("Hit test at %s failed: %s", point, exc)
            return None
        return element if err == kAXErrorSuccess else None

    def screen_frames(self) -> list[Rect]:
        """Screen frames converted to top-left-origin global coordinates."""
        screens = list(NSScreen.screens() or [])
        if not screens:
            return []
        primary_height = float(screens[0].frame().size.height)
        frames: list[Rect] = []
        for screen in screens:
            frame = screen.frame()
            top = primary_height - (float(frame.origin.y) + float(frame.size.height))
            frames.append(Rect(float(frame.origin.x), top, float(frame.size.width), float(frame.size.height)))
        return frames

    # -- Native actions ------------------------------------------------------

    def perform_action(self, node: Any, action: str) -> bool:
        try:
            return AXUIElementPerformAction(node, action) == kAXErrorSuccess
        except Exception as exc:
            logger.debug("%s failed: %s", action, exc)
            return False

    def set_attribute(self, node: Any, name: str, value: Any) -> bool:
        try:
            return AXUIElementSetAttributeValue(node, name, value) == kAXErrorSuccess
        except Exception as exc:
            logger.debug("Setting %s failed: %s", name, exc)
            return False

    def raise_window(self, window: Any) -> bool:
        raised = self.perform_action(window, "AXRaise")
        self.set_attribute(window, "AXMain", True)
        return raised

    # -- Synthetic input -----------------------------------------------------

    def synthetic_click(self, point: tuple[float, float], button: str = "left", count: int = 1) -> bool:
        """Send mouse-click events at screen coordinates."""
        down_type, up_type, cg_button = _MOUSE_EVENTS.get(button, _MOUSE_EVENTS["left"])
        try:
            cg_point = CGPoint(point[0], point[1])
            for click_state in range(1, max(1, count) + 1):
                event_down = CGEventCreateMouseEvent(None, down_type, cg_point, cg_button)
                event_up = CGEventCreateMouseEvent(None, up_type, cg_point, cg_button)
                CGEventSetIntegerValueField(event_down, kCGMouseEventClickState, click_state)
                CGEventSetIntegerValueField(event_up, kCGMouseEventClickState, click_state)
                CGEventPost(kCGHIDEventTap, event_down)
                CGEventPost(kCGHIDEventTap, event_up)
            return True
        except Exception as exc:
            logger.warning("Coordinate click at (%.0f, %.0f) failed: %s", point[0], point[1], exc)
            return False

    def synthetic_type(self, text: str, per_char_delay: float = 0.0) -> bool:
        """Type *text* as unicode keyboard events, one character at a time."""
        try:
            for char in text:
                event_down = CGEventCreateKeyboardEvent(None, 0, True)
                event_up = CGEventCreateKeyboardEvent(None, 0, False)
                CGEventKeyboardSetUnicodeString(event_down, len(char), char)
                CGEventKeyboardSetUnicodeString(event_up, len(char), char)
                CGEventPost(kCGHIDEventTap, event_down)
                CGEventPost(kCGHIDEventTap, event_up)
                if per_char_delay:
                    time.sleep(per_char_delay)
            return True
        except Exception as exc:
            logger.warning("Typing %d chars failed: %s", len(text), exc)
            return False

    def synthetic_key(self, key: str, modifiers: Sequence[str] = ()) -> bool:
        """Post a key press, with modifier flags set on the key events."""
        key_code = _KEY_CODES.get(key.lower())
        if key_code is None:
            if len(key) == 1 and not modifiers:
                return self.synthetic_type(key)
            logger.warning("Unknown key name: '%s'", key)
            return False

        flags = 0
        for modifier in modifiers:
            flag = _MODIFIER_FLAGS.get(modifier.lower())
            if flag is None:
                logger.warning("Unknown modifier: '%s'", modifier)
                return False
            flags |= flag

        try:
            event_down = CGEventCreateKeyboardEvent(None, key_code, True)
            event_up = CGEventCreateKeyboardEvent(None, key_code, False)
            if flags:
                CGEventSetFlags(event_down, flags)
                CGEventSetFlags(event_up, flags)
            CGEventPost(kCGHIDEventTap, event_down)
            CGEventPost(kCGHIDEventTap, event_up)
            return True
        except Exception as exc:
            logger.warning("Key event (code=%d) failed: %s", key_code, exc)
            return False

    def synthetic_scroll(
        self,
        point: tuple[float, float] | None,
        direction: str,
        amount: int,
    ) -> bool:
        """Scroll-wheel event in *direction*, at *point* or the current pointer."""
        vertical = {"up": amount, "down": -amount}.get(direction, 0)
        horizontal = {"left": amount, "right": -amount}.get(direction, 0)
        try:
            if point is not None:
                move = CGEventCreateMouseEvent(None, kCGEventMouseMoved, CGPoint(point[0], point[1]), kCGMouseButtonLeft)
                CGEventPost(kCGHIDEventTap, move)
            event = CGEventCreateScrollWheelEvent(None, kCGScrollEventUnitLine, 2, vertical, horizontal)
            CGEventPost(kCGHIDEventTap, event)
            return True
        except Exception as exc:
            logger.warning("CGEvent scroll failed: %s", exc)
            return False

    def clear_modifiers(self) -> None:
        """Post a flags-changed event with no modifiers held."""
        try:
            event = CGEventCreate(None)
            CGEventSetType(event, kCGEventFlagsChanged)
            CGEventSetFlags(event, 0)
            CGEventPost(kCGHIDEventTap, event)
        except Exception as exc:
            logger.warning("Clearing modifier flags failed: %s", exc)
