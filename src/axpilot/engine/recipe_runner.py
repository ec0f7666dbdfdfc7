"""AXPilot Recipe Runner -- executes a recipe step by step with verification.

Order of a run:

1. required parameters present and free of placeholders (fail fast, no UI touched)
2. preconditions hold (app running / URL), with the observed state in the error
3. frontmost app saved, restored when the run ends however it ends
4. recipe app focused, short settle
5. steps in declared order: substitute -> build typed command -> dispatch ->
   failure policy -> ``wait_after``

Never raises on step failure -- everything is reported in a ``RunReport``.
"""

from __future__ import annotations

import dataclasses
import logging
import time
from typing import Any, Callable, Mapping, get_args

from axpilot.engine.action_executor import ActionExecutor, ActionResult
from axpilot.engine.context import ContextProvider
from axpilot.engine.focus import FocusManager
from axpilot.engine.protocols import (
    ACTION_FAILED,
    INVALID_DEFINITION,
    INVALID_PARAMETER,
    MISSING_PARAMETER,
    PRECONDITION_FAILED,
    TreeAccess,
)
from axpilot.engine.recipes import (
    ClickCommand,
    FailurePolicy,
    FocusCommand,
    HotkeyCommand,
    PressCommand,
    Recipe,
    RecipeStep,
    ScrollCommand,
    StepCommand,
    TypeCommand,
    WaitCommand,
    build_command,
    has_placeholder,
)
from axpilot.engine.waiter import ConditionPoller, WaitResult
from axpilot.models import DEFAULT_BROWSER, RECIPE_FOCUS_DELAY

logger = logging.getLogger("axpilot.engine.recipe_runner")


@dataclasses.dataclass
class StepResult:
    """Outcome of one executed step."""

    step_id: int
    action: str
    success: bool
    duration_ms: int
    error: str | None = None
    error_code: str | None = None
    note: str | None = None
    method: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "step": self.step_id,
            "action": self.action,
            "success": self.success,
            "duration_ms": self.duration_ms,
        }
        if self.method:
            data["method"] = self.method
        if self.error:
            data["error"] = self.error
        if self.note:
            data["note"] = self.note
        return data


@dataclasses.dataclass
class RunReport:
    """Aggregate result of one recipe run."""

    recipe_name: str
    success: bool
    steps_completed: int
    total_steps: int
    step_results: list[StepResult] = dataclasses.field(default_factory=list)
    duration_ms: int = 0
    error: str | None = None
    error_code: str | None = None
    failed_step: int | None = None
    suggestion: str | None = None
    failure_context: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "recipe": self.recipe_name,
            "success": self.success,
            "steps_completed": self.steps_completed,
            "total_steps": self.total_steps,
            "duration_ms": self.duration_ms,
            "step_results": [r.to_dict() for r in self.step_results],
        }
        if self.error:
            data["error"] = self.error
            data["error_code"] = self.error_code
        if self.failed_step is not None:
            data["failed_step"] = self.failed_step
        if self.suggestion:
            data["suggestion"] = self.suggestion
        if self.failure_context is not None:
            data["current_context"] = self.failure_context
        return data


@dataclasses.dataclass
class _Outcome:
    success: bool
    error: str | None = None
    error_code: str | None = None
    method: str | None = None

    @classmethod
    def of(cls, result: ActionResult | WaitResult) -> _Outcome:
        if isinstance(result, WaitResult):
            return cls(result.met, result.error, result.error_code)
        return cls(result.success, result.error, result.error_code, result.method)


class RecipeRunner:
    """Runs recipes against the live UI.

    Usage::

        runner = RecipeRunner(tree, executor, poller, focus, context)
        report = runner.run(recipe, {"to": "ann@example.com"})
    """

    def __init__(
        self,
        tree: TreeAccess,
        executor: ActionExecutor,
        poller: ConditionPoller,
        focus: FocusManager,
        context: ContextProvider,
        default_browser: str = DEFAULT_BROWSER,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._tree = tree
        self._executor = executor
        self._poller = poller
        self._focus = focus
        self._context = context
        self._default_browser = default_browser
        self._sleep = sleep
        self._clock = clock

        self._handlers: dict[type, Callable[[Any], ActionResult | WaitResult]] = {
            ClickCommand: self._click,
            TypeCommand: self._type,
            PressCommand: self._press,
            HotkeyCommand: self._hotkey,
            FocusCommand: self._focus_app,
            ScrollCommand: self._scroll,
            WaitCommand: self._wait,
        }
        missing = set(get_args(StepCommand)) - set(self._handlers)
        if missing:
            raise RuntimeError(f"No handler for step commands: {sorted(c.__name__ for c in missing)}")

    # -- Run -----------------------------------------------------------------

    def run(self, recipe: Recipe, values: Mapping[str, Any] | None = None) -> RunReport:
        """Execute *recipe* with parameter *values*."""
        start = self._clock()
        values = {str(k): str(v) for k, v in (values or {}).items()}
        total = len(recipe.steps)

        def _elapsed() -> int:
            return int((self._clock() - start) * 1000)

        missing = recipe.missing_params(values)
        if missing:
            name, definition = missing[0]
            detail = f" ({definition.description})" if definition.description else ""
            return RunReport(
                recipe_name=recipe.name,
                success=False,
                steps_completed=0,
                total_steps=total,
                duration_ms=_elapsed(),
                error=f"Missing required parameter: '{name}'{detail}",
                error_code=MISSING_PARAMETER,
                suggestion="Provide all required parameters. Use recipe show to see parameter details.",
                failure_context=self._context.capture(recipe.app),
            )

        templated = sorted(k for k, v in values.items() if has_placeholder(v))
        if templated:
            return RunReport(
                recipe_name=recipe.name,
                success=False,
                steps_completed=0,
                total_steps=total,
                duration_ms=_elapsed(),
                error=f"Parameter '{templated[0]}' contains a {{{{...}}}} placeholder",
                error_code=INVALID_PARAMETER,
                suggestion="Parameter values are inserted literally and must not contain {{name}} markers.",
                failure_context=self._context.capture(recipe.app),
            )

        failure = self._check_preconditions(recipe)
        if failure is not None:
            error, suggestion = failure
            return RunReport(
                recipe_name=recipe.name,
                success=False,
                steps_completed=0,
                total_steps=total,
                duration_ms=_elapsed(),
                error=error,
                error_code=PRECONDITION_FAILED,
                suggestion=suggestion,
                failure_context=self._context.capture(recipe.app),
            )

        with self._focus.preserved():
            if recipe.app:
                focused = self._executor.focus(recipe.app)
                if not focused.success:
                    return RunReport(
                        recipe_name=recipe.name,
                        success=False,
                        steps_completed=0,
                        total_steps=total,
                        duration_ms=_elapsed(),
                        error=f"Failed to focus '{recipe.app}' for recipe '{recipe.name}': {focused.error}",
                        error_code=focused.error_code,
                        suggestion=focused.suggestion or "Ensure the app is running.",
                        failure_context=self._context.capture(recipe.app),
                    )
                self._sleep(RECIPE_FOCUS_DELAY)

            results: list[StepResult] = []
            for step in recipe.steps:
                step_start = self._clock()
                resolved = step.resolve(values)
                outcome = self._execute(resolved, recipe.app)
                result = StepResult(
                    step_id=step.id,
                    action=step.action.value,
                    success=outcome.success,
                    duration_ms=int((self._clock() - step_start) * 1000),
                    error=outcome.error,
                    error_code=outcome.error_code,
                    note=step.note,
                    method=outcome.method,
                )
                results.append(result)

                if not outcome.success:
                    if recipe.policy_for(step) is FailurePolicy.SKIP:
                        logger.info("Recipe '%s' step %d failed (skipping): %s", recipe.name, step.id, outcome.error)
                        continue
                    logger.warning("Recipe '%s' step %d failed: %s", recipe.name, step.id, outcome.error)
                    return RunReport(
                        recipe_name=recipe.name,
                        success=False,
                        steps_completed=len(results),
                        total_steps=total,
                        step_results=results,
                        duration_ms=_elapsed(),
                        error=f"Recipe '{recipe.name}' failed at step {step.id} ({step.label}): {outcome.error}",
                        error_code=outcome.error_code or ACTION_FAILED,
                        failed_step=step.id,
                        suggestion="Check current_context and the failed step details.",
                        failure_context=self._context.capture(recipe.app),
                    )

                if resolved.wait_after is not None:
                    spec = resolved.wait_after
                    waited = self._poller.wait_for(
                        spec.condition,
                        spec.effective_value,
                        app=recipe.app,
                        timeout=spec.timeout,
                    )
                    if not waited.met:
                        result.success = False
                        result.error = f"Action succeeded but expected state didn't materialize: {waited.error}"
                        result.error_code = waited.error_code
                        logger.warning("Recipe '%s' step %d wait_after failed: %s", recipe.name, step.id, waited.error)
                        return RunReport(
                            recipe_name=recipe.name,
                            success=False,
                            steps_completed=len(results),
                            total_steps=total,
                            step_results=results,
                            duration_ms=_elapsed(),
                            error=f"Recipe '{recipe.name}' step {step.id} wait_after failed: {waited.error}",
                            error_code=waited.error_code,
                            failed_step=step.id,
                            suggestion="The action succeeded but the expected result didn't appear. "
                            "Use context to diagnose.",
                            failure_context=self._context.capture(recipe.app),
                        )

                logger.info("Recipe '%s' step %d OK: %s", recipe.name, step.id, step.label)

            return RunReport(
                recipe_name=recipe.name,
                success=True,
                steps_completed=len(results),
                total_steps=total,
                step_results=results,
                duration_ms=_elapsed(),
            )

    # -- Preconditions -------------------------------------------------------

    def _check_preconditions(self, recipe: Recipe) -> tuple[str, str] | None:
        """Return (error, suggestion) for the first unmet precondition."""
        pre = recipe.preconditions
        if pre is None:
            return None

        if pre.app_running:
            apps = [a for a in self._tree.running_applications() if a.regular]
            needle = pre.app_running.lower()
            if not any(needle in a.name.lower() for a in apps):
                running = ", ".join(a.name for a in apps) or "(none)"
                return (
                    f"Precondition failed: '{pre.app_running}' is not running",
                    f"Start {pre.app_running} first. Running apps: {running}",
                )

        if pre.url_contains:
            app = pre.app_running or self._default_browser
            try:
                url = self._poller.current_url(app)
            except Exception as exc:
                logger.debug("URL read for precondition failed: %s", exc)
                url = None
            current = url or "(no URL)"
            if pre.url_contains.lower() not in current.lower():
                return (
                    f"Precondition failed: URL should contain '{pre.url_contains}' "
                    f"but current URL is '{current}'",
                    "Navigate to the correct page first (hotkey cmd,l then type the URL).",
                )
        return None

    # -- Dispatch ------------------------------------------------------------

    def _execute(self, step: RecipeStep, app: str | None) -> _Outcome:
        try:
            command = build_command(step, app)
        except ValueError as exc:
            return _Outcome(False, f"Step {step.id}: {exc}", INVALID_DEFINITION)
        handler = self._handlers[type(command)]
        try:
            return _Outcome.of(handler(command))
        except Exception as exc:
            logger.error("Step %d (%s) raised: %s", step.id, step.action.value, exc, exc_info=True)
            return _Outcome(False, f"{type(exc).__name__}: {exc}", ACTION_FAILED)

    def _click(self, cmd: ClickCommand) -> ActionResult:
        return self._executor.click(cmd.locator, cmd.x, cmd.y, cmd.button, cmd.count, cmd.app)

    def _type(self, cmd: TypeCommand) -> ActionResult:
        return self._executor.type_text(cmd.text, into=cmd.into, dom_id=cmd.dom_id, app=cmd.app, clear=cmd.clear)

    def _press(self, cmd: PressCommand) -> ActionResult:
        return self._executor.press_key(cmd.key, cmd.modifiers, cmd.app)

    def _hotkey(self, cmd: HotkeyCommand) -> ActionResult:
        return self._executor.hotkey(cmd.keys, cmd.app)

    def _focus_app(self, cmd: FocusCommand) -> ActionResult:
        return self._executor.focus(cmd.app, cmd.window)

    def _scroll(self, cmd: ScrollCommand) -> ActionResult:
        return self._executor.scroll(cmd.direction, cmd.amount, cmd.app, cmd.x, cmd.y)

    def _wait(self, cmd: WaitCommand) -> WaitResult:
        return self._poller.wait_for(cmd.condition, cmd.value, app=cmd.app, timeout=cmd.timeout, interval=cmd.interval)
