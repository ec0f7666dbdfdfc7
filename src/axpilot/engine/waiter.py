"""Condition poller -- bounded waits for asynchronous UI state.

Replaces fixed sleeps with a deadline loop: evaluate the predicate, sleep
one interval (clamped to the time left), repeat until it holds or the
deadline passes.  ``delay`` is the one exception, a single unconditional
sleep that keeps the same call shape.
"""

from __future__ import annotations

import dataclasses
import enum
import logging
import time
from typing import Any, Callable

from axpilot.engine.focus import FocusManager
from axpilot.engine.protocols import INVALID_DEFINITION, INVALID_PARAMETER, TIMEOUT, TreeAccess
from axpilot.engine.search import SemanticSearch
from axpilot.models import DEFAULT_DELAY_SECONDS, DEFAULT_POLL_INTERVAL, DEFAULT_WAIT_TIMEOUT

logger = logging.getLogger("axpilot.engine.waiter")


class WaitCondition(str, enum.Enum):
    URL_CONTAINS = "urlContains"
    TITLE_CONTAINS = "titleContains"
    ELEMENT_EXISTS = "elementExists"
    ELEMENT_GONE = "elementGone"
    URL_CHANGED = "urlChanged"
    TITLE_CHANGED = "titleChanged"
    DELAY = "delay"

    @property
    def needs_value(self) -> bool:
        return self in _VALUE_CONDITIONS


_VALUE_CONDITIONS = frozenset({
    WaitCondition.URL_CONTAINS,
    WaitCondition.TITLE_CONTAINS,
    WaitCondition.ELEMENT_EXISTS,
    WaitCondition.ELEMENT_GONE,
})


@dataclasses.dataclass
class WaitResult:
    """Outcome of one wait."""

    met: bool
    condition: str
    value: str | None = None
    elapsed_seconds: float = 0.0
    error: str | None = None
    error_code: str | None = None
    suggestion: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "met": self.met,
            "condition": self.condition,
            "elapsed_seconds": round(self.elapsed_seconds, 3),
        }
        if self.value is not None:
            data["value"] = self.value
        if self.error:
            data["error"] = self.error
            data["error_code"] = self.error_code
        if self.suggestion:
            data["suggestion"] = self.suggestion
        return data


class ConditionPoller:
    """Blocks until a named condition about the UI holds, or times out."""

    def __init__(
        self,
        tree: TreeAccess,
        search: SemanticSearch,
        focus: FocusManager,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
        default_timeout: float = DEFAULT_WAIT_TIMEOUT,
        default_interval: float = DEFAULT_POLL_INTERVAL,
    ) -> None:
        self._tree = tree
        self._search = search
        self._focus = focus
        self._sleep = sleep
        self._clock = clock
        self.default_timeout = default_timeout
        self.default_interval = default_interval

    def wait_for(
        self,
        condition: WaitCondition | str,
        value: str | None = None,
        app: str | None = None,
        timeout: float | None = None,
        interval: float | None = None,
    ) -> WaitResult:
        """Poll *condition* until it holds or *timeout* seconds pass.

        ``delay`` sleeps once for *timeout* (0.5 s when no timeout is given).
        An unknown condition fails immediately with INVALID_DEFINITION.
        """
        try:
            cond = WaitCondition(condition)
        except ValueError:
            valid = ", ".join(c.value for c in WaitCondition)
            return WaitResult(
                met=False,
                condition=str(condition),
                value=value,
                error=f"Unknown wait condition: '{condition}'",
                error_code=INVALID_DEFINITION,
                suggestion=f"Valid conditions: {valid}",
            )

        if cond is WaitCondition.DELAY:
            seconds = DEFAULT_DELAY_SECONDS if timeout is None else max(0.0, float(timeout))
            start = self._clock()
            self._sleep(seconds)
            return WaitResult(met=True, condition=cond.value, elapsed_seconds=self._clock() - start)

        if cond.needs_value and not value:
            return WaitResult(
                met=False,
                condition=cond.value,
                error=f"Condition '{cond.value}' requires a value",
                error_code=INVALID_PARAMETER,
            )

        timeout = self.default_timeout if timeout is None else float(timeout)
        interval = self.default_interval if interval is None else float(interval)
        if interval <= 0:
            interval = self.default_interval

        start = self._clock()
        deadline = start + timeout
        baseline = self._baseline(cond, app)

        while True:
            if self._check(cond, value, app, baseline):
                elapsed = self._clock() - start
                logger.debug("Condition %s met after %.2fs", cond.value, elapsed)
                return WaitResult(met=True, condition=cond.value, value=value, elapsed_seconds=elapsed)
            now = self._clock()
            if now >= deadline:
                break
            self._sleep(min(interval, deadline - now))

        elapsed = self._clock() - start
        description = cond.value + (f" '{value}'" if value else "")
        return WaitResult(
            met=False,
            condition=cond.value,
            value=value,
            elapsed_seconds=elapsed,
            error=f"Timed out after {elapsed:.1f}s waiting for {description}",
            error_code=TIMEOUT,
            suggestion="Increase timeout or check if the condition can be met. Use context to see current state.",
        )

    # -- Predicates ----------------------------------------------------------

    def _baseline(self, cond: WaitCondition, app: str | None) -> str | None:
        try:
            if cond is WaitCondition.URL_CHANGED:
                return self.current_url(app)
            if cond is WaitCondition.TITLE_CHANGED:
                return self.current_title(app)
        except Exception as exc:
            logger.debug("Baseline read for %s failed: %s", cond.value, exc)
        return None

    def _check(self, cond: WaitCondition, value: str | None, app: str | None, baseline: str | None) -> bool:
        try:
            if cond is WaitCondition.URL_CONTAINS:
                url = self.current_url(app)
                return url is not None and value is not None and value.lower() in url.lower()
            if cond is WaitCondition.TITLE_CONTAINS:
                title = self.current_title(app)
                return title is not None and value is not None and value.lower() in title.lower()
            if cond is WaitCondition.ELEMENT_EXISTS:
                return self._element_exists(value or "", app)
            if cond is WaitCondition.ELEMENT_GONE:
                return not self._element_exists(value or "", app)
            if cond is WaitCondition.URL_CHANGED:
                return self.current_url(app) != baseline
            if cond is WaitCondition.TITLE_CHANGED:
                return self.current_title(app) != baseline
        except Exception as exc:
            logger.debug("Condition check %s raised: %s", cond.value, exc)
        return False

    def _element_exists(self, query: str, app: str | None) -> bool:
        root = self._app_root(app)
        if root is None:
            return False
        return self._search.element_exists(query, root)

    # -- State readers -------------------------------------------------------

    def current_url(self, app: str | None = None) -> str | None:
        """URL of the focused window's web area, if any."""
        root = self._app_root(app)
        if root is None:
            return None
        web_area = self._search.find_web_area(root)
        if web_area is None:
            return None
        return self._tree.attributes(web_area).url or None

    def current_title(self, app: str | None = None) -> str | None:
        root = self._app_root(app)
        if root is None:
            return None
        window = self._tree.focused_window(root)
        if window is None:
            return None
        return self._tree.attributes(window).title or None

    def _app_root(self, app: str | None) -> Any | None:
        info = self._focus.find_app(app) if app else self._tree.frontmost_application()
        if info is None:
            return None
        return self._tree.application_root(info)
