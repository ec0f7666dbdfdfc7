"""Application focus: resolve, activate, verify, save and restore."""

from __future__ import annotations

import contextlib
import dataclasses
import logging
import time
from typing import Callable, Iterator

from axpilot.engine.protocols import AppInfo, TreeAccess
from axpilot.models import (
    FOCUS_RETRY_DELAY,
    FOCUS_RETRY_LONG_DELAY,
    FOCUS_VERIFY_DELAY,
    WINDOW_RAISE_DELAY,
)

logger = logging.getLogger("axpilot.engine.focus")


@dataclasses.dataclass
class FocusOutcome:
    """What a focus attempt achieved."""

    app: AppInfo | None
    activated: bool = False
    focused: bool = False  # frontmost pid verified
    window_raised: bool = False
    error: str | None = None


class FocusManager:
    """Brings applications to the front and puts the previous one back."""

    def __init__(self, tree: TreeAccess, sleep: Callable[[float], None] = time.sleep) -> None:
        self._tree = tree
        self._sleep = sleep

    def find_app(self, name: str) -> AppInfo | None:
        """Running app whose name contains *name*, case-insensitively.

        An exact name match wins over a partial one.
        """
        needle = name.lower()
        partial: AppInfo | None = None
        for app in self._tree.running_applications():
            app_name = app.name.lower()
            if app_name == needle:
                return app
            if partial is None and needle in app_name:
                partial = app
        return partial

    def focus(self, app_name: str, window_title: str | None = None) -> FocusOutcome:
        """Activate *app_name* and verify it became frontmost.

        Two activation attempts with increasing settle time.  When
        *window_title* is given, the first window whose title contains it is
        raised after each activation.  An app that activated but never
        verified as frontmost is reported with ``focused=False``.
        """
        app = self.find_app(app_name)
        if app is None:
            return FocusOutcome(app=None, error=f"Application '{app_name}' not found")

        outcome = FocusOutcome(app=app)
        for attempt in (1, 2):
            activated = self._tree.activate(app)
            if not activated and attempt == 2:
                outcome.error = f"Failed to activate '{app.name}'"
                return outcome
            outcome.activated = outcome.activated or activated
            self._sleep(FOCUS_RETRY_DELAY if attempt == 1 else FOCUS_RETRY_LONG_DELAY)

            if window_title:
                outcome.window_raised = self._raise_window(app, window_title) or outcome.window_raised

            self._sleep(FOCUS_VERIFY_DELAY)
            if self.is_frontmost(app):
                outcome.focused = True
                return outcome
            logger.debug("Focus attempt %d for '%s' not verified", attempt, app.name)

        logger.info("'%s' activated but focus could not be verified", app.name)
        return outcome

    def is_frontmost(self, app: AppInfo) -> bool:
        front = self._tree.frontmost_application()
        return front is not None and front.pid == app.pid

    def _raise_window(self, app: AppInfo, window_title: str) -> bool:
        root = self._tree.application_root(app)
        if root is None:
            return False
        needle = window_title.lower()
        for window in self._tree.windows(root):
            title = self._tree.attributes(window).title
            if title and needle in title.lower():
                raised = self._tree.raise_window(window)
                self._sleep(WINDOW_RAISE_DELAY)
                return raised
        logger.debug("No window of '%s' titled like '%s'", app.name, window_title)
        return False

    # -- Save / restore ------------------------------------------------------

    def save(self) -> AppInfo | None:
        return self._tree.frontmost_application()

    def restore(self, app: AppInfo | None) -> None:
        if app is None:
            return
        try:
            self._tree.activate(app)
        except Exception as exc:
            logger.warning("Failed to restore focus to '%s': %s", app.name, exc)

    @contextlib.contextmanager
    def preserved(self) -> Iterator[AppInfo | None]:
        """Restore the current frontmost app when the block exits."""
        saved = self.save()
        try:
            yield saved
        finally:
            self.restore(saved)
