"""AXPilot Action Executor -- native-first, synthetic-fallback UI actions.

Every action follows the same shape: locate the target (unless coordinates
were given), try the highest-level native accessibility operation, verify,
and fall back to synthetic input events when the native path fails or is
ignored.  Text entry is always verified by reading the field back; a native
click is trusted when the primitive reports success.

Never raises on action failure -- failures come back as an ``ActionResult``
carrying an ``error_code`` and a human suggestion.
"""

from __future__ import annotations

import dataclasses
import logging
import time
from typing import Any, Callable, Sequence

from axpilot.engine.focus import FocusManager
from axpilot.engine.locator import Locator
from axpilot.engine.protocols import (
    ACTION_FAILED,
    APP_NOT_FOUND,
    ELEMENT_NOT_FOUND,
    INVALID_PARAMETER,
    AppInfo,
    TreeAccess,
)
from axpilot.engine.search import SemanticSearch
from axpilot.models import (
    APP_FOCUS_DELAY,
    CLEAR_FIELD_DELAY,
    DEFAULT_SCROLL_AMOUNT,
    FOCUS_ELEMENT_DELAY,
    HOTKEY_PROCESS_DELAY,
    MODIFIER_CLEAR_DELAY,
    NATIVE_REACTION_DELAY,
    READBACK_DELAY,
    READBACK_PREFIX_LENGTH,
    READBACK_TRUNCATION,
    SET_VALUE_DELAY,
    SYNTHETIC_CLICK_DELAY,
    TYPE_CHAR_DELAY,
)

logger = logging.getLogger("axpilot.engine.action_executor")

SPECIAL_KEYS = frozenset({
    "return", "enter", "tab", "escape", "esc", "space", "delete", "backspace",
    "up", "down", "left", "right", "home", "end", "pageup", "pagedown",
    *(f"f{n}" for n in range(1, 13)),
})

MODIFIER_KEYS = frozenset({"cmd", "command", "shift", "option", "alt", "ctrl", "control", "fn"})

SCROLL_DIRECTIONS = ("up", "down", "left", "right")

MOUSE_BUTTONS = ("left", "right", "middle")


@dataclasses.dataclass
class ActionResult:
    """Result of executing a single UI action."""

    success: bool
    action: str
    method: str | None = None  # native, synthetic, coordinate
    target: str = ""
    error: str | None = None
    error_code: str | None = None
    suggestion: str | None = None
    duration_ms: float = 0.0
    detail: dict[str, Any] = dataclasses.field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"success": self.success, "action": self.action}
        if self.method:
            data["method"] = self.method
        if self.target:
            data["target"] = self.target
        if self.error:
            data["error"] = self.error
            data["error_code"] = self.error_code
        if self.suggestion:
            data["suggestion"] = self.suggestion
        data["duration_ms"] = self.duration_ms
        data.update(self.detail)
        return data


class ActionExecutor:
    """Performs click / type / press / hotkey / scroll / focus actions.

    Usage::

        executor = ActionExecutor(tree, SemanticSearch(tree), FocusManager(tree))
        result = executor.click(Locator.build(query="Compose"), app="Google Chrome")
    """

    def __init__(
        self,
        tree: TreeAccess,
        search: SemanticSearch,
        focus: FocusManager,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._tree = tree
        self._search = search
        self._focus = focus
        self._sleep = sleep
        self._clock = clock

    # -- Dispatch ------------------------------------------------------------

    def perform(self, kind: str, **params: Any) -> ActionResult:
        """Route *kind* to its handler.  Unknown kinds are an INVALID_PARAMETER result."""
        handlers: dict[str, Callable[..., ActionResult]] = {
            "click": self.click,
            "type": self.type_text,
            "press": self.press_key,
            "hotkey": self.hotkey,
            "scroll": self.scroll,
            "focus": self.focus,
        }
        handler = handlers.get(kind)
        if handler is None:
            return _failure(
                kind,
                f"Unknown action: '{kind}'",
                INVALID_PARAMETER,
                suggestion=f"Valid actions: {', '.join(handlers)}",
            )
        try:
            return handler(**params)
        except (TypeError, ValueError) as exc:
            return _failure(kind, f"Invalid parameters for '{kind}': {exc}", INVALID_PARAMETER)

    # -- Click ---------------------------------------------------------------

    def click(
        self,
        locator: Locator | None = None,
        x: float | None = None,
        y: float | None = None,
        button: str = "left",
        count: int = 1,
        app: str | None = None,
    ) -> ActionResult:
        """Click an element or a screen point.

        AXPress is attempted only for a single left click; other buttons and
        multi-clicks always go synthetic.
        """
        if button not in MOUSE_BUTTONS:
            return _failure("click", f"Invalid button: '{button}'", INVALID_PARAMETER,
                            suggestion="Valid buttons: left, right, middle")
        count = max(1, int(count))
        return self._guarded("click", lambda: self._click(locator, x, y, button, count, app))

    def _click(
        self,
        locator: Locator | None,
        x: float | None,
        y: float | None,
        button: str,
        count: int,
        app: str | None,
    ) -> ActionResult:
        if x is not None and y is not None:
            if app:
                self._bring_forward(app)
            if not self._tree.synthetic_click((x, y), button, count):
                return _failure("click", f"Click at ({int(x)}, {int(y)}) failed", ACTION_FAILED,
                                method="coordinate")
            self._sleep(SYNTHETIC_CLICK_DELAY)
            return ActionResult(True, "click", method="coordinate", target=f"({int(x)}, {int(y)})",
                                detail={"x": x, "y": y})

        if locator is None or locator.is_empty:
            return _failure(
                "click",
                "Either a locator or x/y coordinates are required",
                INVALID_PARAMETER,
                suggestion="Use find to locate elements, or pass x/y coordinates",
            )

        app_info, error = self._lookup_app("click", app)
        if error is not None:
            return error

        target = locator.describe()
        element = self._search.find_element(locator, app_info)
        if element is None:
            return _failure(
                "click",
                f"Element {target} not found in {app or 'frontmost app'}",
                ELEMENT_NOT_FOUND,
                target=target,
                suggestion="Use find to see what elements are available, or broaden the query",
            )
        label = element.display_name or target

        if button == "left" and count == 1:
            if self._tree.perform_action(element._ref, "AXPress"):
                self._sleep(NATIVE_REACTION_DELAY)
                logger.info("AX-native press succeeded for %s", label)
                return ActionResult(True, "click", method="native", target=label)
            logger.info("AX-native press failed for %s -- trying synthetic", label)

        if not element.is_actionable or element.center is None:
            return _failure(
                "click",
                f"Element '{label}' is not actionable",
                ACTION_FAILED,
                method="synthetic",
                target=label,
                suggestion="Element may be disabled, hidden, or off-screen; try x/y coordinates",
            )

        if app:
            self._bring_forward(app)
        if not self._tree.synthetic_click(element.center, button, count):
            return _failure("click", f"Synthetic click on '{label}' failed", ACTION_FAILED,
                            method="synthetic", target=label,
                            suggestion="Try x/y coordinates instead")
        self._sleep(SYNTHETIC_CLICK_DELAY)
        return ActionResult(True, "click", method="synthetic", target=label)

    # -- Type ----------------------------------------------------------------

    def type_text(
        self,
        text: str,
        into: str | None = None,
        dom_id: str | None = None,
        app: str | None = None,
        clear: bool = False,
    ) -> ActionResult:
        """Type *text* into a named field, a dom_id field, or the current focus.

        With a target, the native ``AXValue`` set is tried first and verified
        by readback; the fallback clicks the field and types synthetically,
        and must verify as well.  Without a target the synthetic primitive is
        trusted.
        """
        return self._guarded("type", lambda: self._type(text, into, dom_id, app, clear))

    def _type(
        self,
        text: str,
        into: str | None,
        dom_id: str | None,
        app: str | None,
        clear: bool,
    ) -> ActionResult:
        if not into and not dom_id:
            if app:
                self._bring_forward(app)
            if clear:
                self._select_all_and_delete()
            if not self._tree.synthetic_type(text, TYPE_CHAR_DELAY):
                return _failure("type", "Synthetic typing failed", ACTION_FAILED, method="synthetic")
            self._sleep(FOCUS_ELEMENT_DELAY)
            return ActionResult(True, "type", method="synthetic", detail={"typed": text, "at_focus": True})

        app_info, error = self._lookup_app("type", app)
        if error is not None:
            return error

        field_name = into or dom_id or ""
        if dom_id:
            element = self._search.find_element(Locator.build(dom_id=dom_id), app_info)
        else:
            element = self._search.find_editable_field(field_name, app_info)
        if element is None:
            return _failure(
                "type",
                f"Field '{field_name}' not found",
                ELEMENT_NOT_FOUND,
                target=field_name,
                suggestion="Use find to see available fields, or context for orientation",
            )

        ref = element._ref
        prefix = text[:READBACK_PREFIX_LENGTH]

        if "AXValue" in element.settable:
            self._tree.set_attribute(ref, "AXFocused", True)
            self._sleep(FOCUS_ELEMENT_DELAY)
            if clear:
                self._tree.set_attribute(ref, "AXValue", "")
                self._sleep(CLEAR_FIELD_DELAY)
            if self._tree.set_attribute(ref, "AXValue", text):
                self._sleep(SET_VALUE_DELAY)
                readback = self._readback(ref)
                if prefix in readback:
                    return ActionResult(True, "type", method="native", target=field_name,
                                        detail={"typed": text, "readback": readback})
            logger.info("setValue for '%s' did not verify -- falling back to click-then-type", field_name)

        if app:
            self._bring_forward(app)
        center = element.center
        if element.is_actionable and center is not None:
            self._tree.synthetic_click(center, "left", 1)
            self._sleep(SYNTHETIC_CLICK_DELAY)
        else:
            self._tree.set_attribute(ref, "AXFocused", True)
            self._sleep(FOCUS_ELEMENT_DELAY)

        if clear:
            self._select_all_and_delete()
        if not self._tree.synthetic_type(text, TYPE_CHAR_DELAY):
            return _failure("type", f"Type into '{field_name}' failed", ACTION_FAILED,
                            method="synthetic", target=field_name)
        self._sleep(READBACK_DELAY)

        readback = self._readback(ref)
        if prefix in readback:
            return ActionResult(True, "type", method="synthetic", target=field_name,
                                detail={"typed": text, "readback": readback})
        return _failure(
            "type",
            f"Text typed into '{field_name}' did not verify (last method: synthetic); readback: {readback!r}",
            ACTION_FAILED,
            method="synthetic",
            target=field_name,
            suggestion="The field may reject programmatic input; try clicking it first or use coordinates",
        )

    def _readback(self, node: Any) -> str:
        try:
            element = self._tree.attributes(node)
        except Exception as exc:
            logger.debug("Readback failed: %s", exc)
            return ""
        for text in (element.value, element.title, element.name):
            if text:
                return text[:READBACK_TRUNCATION]
        return ""

    def _select_all_and_delete(self) -> None:
        try:
            self._tree.synthetic_key("a", ["cmd"])
        finally:
            self._tree.clear_modifiers()
        self._sleep(CLEAR_FIELD_DELAY)
        self._tree.synthetic_key("delete", [])
        self._sleep(CLEAR_FIELD_DELAY)

    # -- Keys ----------------------------------------------------------------

    def press_key(
        self,
        key: str,
        modifiers: Sequence[str] = (),
        app: str | None = None,
    ) -> ActionResult:
        """Press one key, optionally as a chord with *modifiers*."""
        modifiers = [m.strip().lower() for m in modifiers if m and m.strip()]
        bad = [m for m in modifiers if m not in MODIFIER_KEYS]
        if bad:
            return _failure("press", f"Unknown modifier(s): {', '.join(bad)}", INVALID_PARAMETER,
                            suggestion="Valid modifiers: cmd, shift, option, ctrl, fn")
        name = key.lower()
        if name not in SPECIAL_KEYS and len(key) != 1:
            return _failure(
                "press",
                f"Unknown key: '{key}'",
                INVALID_PARAMETER,
                suggestion="Valid: return, tab, escape, space, delete, up, down, left, right, "
                "home, end, pageup, pagedown, f1-f12, or a single character",
            )
        return self._guarded("press", lambda: self._press(key, modifiers, app))

    def _press(self, key: str, modifiers: list[str], app: str | None) -> ActionResult:
        if app:
            self._bring_forward(app)
        name = key.lower()
        if modifiers:
            try:
                ok = self._tree.synthetic_key(name, modifiers)
            finally:
                self._tree.clear_modifiers()
            self._sleep(MODIFIER_CLEAR_DELAY)
        elif name in SPECIAL_KEYS:
            ok = self._tree.synthetic_key(name, [])
        else:
            ok = self._tree.synthetic_type(key, 0.0)
        if not ok:
            return _failure("press", f"Key press '{key}' failed", ACTION_FAILED, method="synthetic")
        return ActionResult(True, "press", method="synthetic", target=key,
                            detail={"key": key, "modifiers": modifiers})

    def hotkey(self, keys: Sequence[str], app: str | None = None) -> ActionResult:
        """Press a key combination; the last key is the key, the rest modifiers.

        Modifier state is cleared immediately after the chord, before any
        settle delay, on success and on failure.
        """
        keys = [k.strip().lower() for k in keys if k and k.strip()]
        if not keys:
            return _failure("hotkey", "Keys list cannot be empty", INVALID_PARAMETER,
                            suggestion="Pass keys like cmd,shift,t")
        return self._guarded("hotkey", lambda: self._hotkey(keys, app))

    def _hotkey(self, keys: list[str], app: str | None) -> ActionResult:
        if app:
            self._bring_forward(app)
        combo = "+".join(keys)
        try:
            ok = self._tree.synthetic_key(keys[-1], keys[:-1])
        finally:
            self._tree.clear_modifiers()
        self._sleep(MODIFIER_CLEAR_DELAY)
        if not ok:
            return _failure("hotkey", f"Hotkey {combo} failed", ACTION_FAILED, method="synthetic")
        self._sleep(HOTKEY_PROCESS_DELAY)
        return ActionResult(True, "hotkey", method="synthetic", target=combo, detail={"keys": keys})

    # -- Scroll --------------------------------------------------------------

    def scroll(
        self,
        direction: str = "down",
        amount: int = DEFAULT_SCROLL_AMOUNT,
        app: str | None = None,
        x: float | None = None,
        y: float | None = None,
    ) -> ActionResult:
        """Scroll at a point, inside an app's scrollable area, or at the pointer."""
        direction = direction.lower()
        if direction not in SCROLL_DIRECTIONS:
            return _failure("scroll", f"Invalid direction: '{direction}'", INVALID_PARAMETER,
                            suggestion="Valid directions: up, down, left, right")
        amount = int(amount)
        if amount < 1:
            return _failure("scroll", f"Scroll amount must be positive, got {amount}", INVALID_PARAMETER)
        return self._guarded("scroll", lambda: self._scroll(direction, amount, app, x, y))

    def _scroll(
        self,
        direction: str,
        amount: int,
        app: str | None,
        x: float | None,
        y: float | None,
    ) -> ActionResult:
        detail = {"direction": direction, "amount": amount}
        point: tuple[float, float] | None = None
        method = "synthetic"

        if x is not None and y is not None:
            if app:
                self._bring_forward(app)
            point = (x, y)
            method = "coordinate"
        elif app:
            app_info, error = self._lookup_app("scroll", app)
            if error is not None:
                return error
            root = self._tree.application_root(app_info) if app_info is not None else None
            window = None
            if root is not None:
                window = self._tree.focused_window(root)
                if window is None:
                    windows = list(self._tree.windows(root))
                    window = windows[0] if windows else None
            if window is None:
                return _failure("scroll", f"No window found for '{app}'", ACTION_FAILED,
                                suggestion="Focus the app first")
            target = self._search.find_scrollable(window)
            point = target.center if target is not None else None
            if point is None:
                point = self._tree.attributes(window).center

        if not self._tree.synthetic_scroll(point, direction, amount):
            return _failure("scroll", f"Scroll {direction} failed", ACTION_FAILED, method=method)
        return ActionResult(True, "scroll", method=method, detail=detail)

    # -- Focus ---------------------------------------------------------------

    def focus(self, app: str, window: str | None = None) -> ActionResult:
        """Bring *app* (and optionally a window titled like *window*) to the front."""
        return self._guarded("focus", lambda: self._do_focus(app, window))

    def _do_focus(self, app: str, window: str | None) -> ActionResult:
        outcome = self._focus.focus(app, window)
        if outcome.app is None:
            return self._app_not_found("focus", app)
        if outcome.error:
            return _failure("focus", outcome.error, ACTION_FAILED, target=outcome.app.name,
                            suggestion="The app may be unresponsive; check it with context")
        detail: dict[str, Any] = {"app": outcome.app.name, "focused": outcome.focused}
        if window:
            detail["window_raised"] = outcome.window_raised
        if not outcome.focused:
            detail["note"] = "App was activated but focus verification failed. It may still be focused."
        return ActionResult(True, "focus", method="native", target=outcome.app.name, detail=detail)

    # -- Helpers -------------------------------------------------------------

    def _guarded(self, action: str, fn: Callable[[], ActionResult]) -> ActionResult:
        """Run *fn*, timing it and converting facade exceptions into ACTION_FAILED."""
        start = self._clock()
        try:
            result = fn()
        except Exception as exc:
            logger.error("Action '%s' failed: %s", action, exc, exc_info=True)
            result = _failure(action, f"{type(exc).__name__}: {exc}", ACTION_FAILED)
        result.duration_ms = round((self._clock() - start) * 1000, 1)
        return result

    def _bring_forward(self, app: str) -> None:
        """Focus *app* for synthetic input, then settle."""
        outcome = self._focus.focus(app)
        if outcome.app is None:
            logger.warning("Cannot focus '%s' for synthetic input: not running", app)
        self._sleep(APP_FOCUS_DELAY)

    def _lookup_app(self, action: str, app: str | None) -> tuple[AppInfo | None, ActionResult | None]:
        if not app:
            return None, None
        info = self._focus.find_app(app)
        if info is None:
            return None, self._app_not_found(action, app)
        return info, None

    def _app_not_found(self, action: str, app: str) -> ActionResult:
        running = sorted(a.name for a in self._tree.running_applications() if a.regular)
        return _failure(
            action,
            f"Application '{app}' not found",
            APP_NOT_FOUND,
            target=app,
            suggestion=f"Running apps: {', '.join(running) or '(none)'}",
        )


def _failure(
    action: str,
    error: str,
    error_code: str,
    method: str | None = None,
    target: str = "",
    suggestion: str | None = None,
) -> ActionResult:
    return ActionResult(
        success=False,
        action=action,
        method=method,
        target=target,
        error=error,
        error_code=error_code,
        suggestion=suggestion,
    )

