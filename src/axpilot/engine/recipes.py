"""Recipe model -- parameterised, replayable UI workflows.

A recipe is loaded from a plain mapping (YAML or JSON on disk), validated
once at load time, and never mutated afterwards.  Each run substitutes
``{{param}}`` placeholders into a resolved copy of every step and turns the
step into a typed command for its action kind.

Example (YAML)::

    schema_version: 2
    name: gmail-send
    app: Google Chrome
    params:
      to: {type: string, description: Recipient address, required: true}
    preconditions:
      url_contains: mail.google.com
    steps:
      - id: 1
        action: click
        target: {name_contains: Compose}
        wait_after: {condition: elementExists, value: To, timeout: 5}
      - id: 2
        action: type
        params: {into: To, text: "{{to}}"}
"""

from __future__ import annotations

import dataclasses
import enum
import logging
import re
from typing import Any, Callable, Mapping, Union

from axpilot.engine.action_executor import SPECIAL_KEYS
from axpilot.engine.locator import Locator
from axpilot.engine.waiter import WaitCondition
from axpilot.models import DEFAULT_POLL_INTERVAL, DEFAULT_SCROLL_AMOUNT

logger = logging.getLogger("axpilot.engine.recipes")

SCHEMA_VERSION = 2

PLACEHOLDER_RE = re.compile(r"\{\{([^{}]+)\}\}")


class RecipeDefinitionError(ValueError):
    """A recipe is structurally invalid.  Carries the offending step id, if any."""

    def __init__(self, message: str, step_id: int | None = None, recipe: str | None = None) -> None:
        prefix = ""
        if recipe:
            prefix += f"Recipe '{recipe}': "
        if step_id is not None:
            prefix += f"step {step_id}: "
        super().__init__(prefix + message)
        self.step_id = step_id
        self.recipe = recipe


class RecipeAction(str, enum.Enum):
    CLICK = "click"
    TYPE = "type"
    PRESS = "press"
    HOTKEY = "hotkey"
    FOCUS = "focus"
    SCROLL = "scroll"
    WAIT = "wait"


class FailurePolicy(str, enum.Enum):
    STOP = "stop"
    SKIP = "skip"


# Params each action cannot run without
_REQUIRED_PARAMS: dict[RecipeAction, tuple[str, ...]] = {
    RecipeAction.CLICK: (),
    RecipeAction.TYPE: ("text",),
    RecipeAction.PRESS: ("key",),
    RecipeAction.HOTKEY: ("keys",),
    RecipeAction.FOCUS: (),
    RecipeAction.SCROLL: (),
    RecipeAction.WAIT: ("condition",),
}


# ---------------------------------------------------------------------------
# Substitution
# ---------------------------------------------------------------------------

def substitute(text: str, values: Mapping[str, str]) -> str:
    """Replace ``{{name}}`` with ``values[name]`` in a single pass.

    Unknown names are left verbatim so recipes can be templated partially.
    Values must themselves be placeholder-free for the result to be stable
    under repeated substitution; the recipe runner rejects any that are not.
    """
    return PLACEHOLDER_RE.sub(lambda m: values.get(m.group(1), m.group(0)), text)


def has_placeholder(text: str) -> bool:
    return PLACEHOLDER_RE.search(text) is not None


# ---------------------------------------------------------------------------
# Definitions
# ---------------------------------------------------------------------------

@dataclasses.dataclass(frozen=True)
class ParamDef:
    type: str = "string"
    description: str = ""
    required: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "description": self.description, "required": self.required}


@dataclasses.dataclass(frozen=True)
class Preconditions:
    app_running: str | None = None
    url_contains: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        if self.app_running:
            data["app_running"] = self.app_running
        if self.url_contains:
            data["url_contains"] = self.url_contains
        return data


@dataclasses.dataclass(frozen=True)
class WaitSpec:
    """Post-condition evaluated after a step's action succeeds."""

    condition: WaitCondition
    target: Locator | None = None
    value: str | None = None
    timeout: float | None = None

    @property
    def effective_value(self) -> str | None:
        """Explicit value, else the target's name predicate."""
        if self.value:
            return self.value
        return self.target.name_contains if self.target is not None else None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"condition": self.condition.value}
        if self.target is not None:
            data["target"] = self.target.to_dict()
        if self.value is not None:
            data["value"] = self.value
        if self.timeout is not None:
            data["timeout"] = self.timeout
        return data


@dataclasses.dataclass(frozen=True)
class RecipeStep:
    id: int
    action: RecipeAction
    target: Locator | None = None
    params: Mapping[str, str] = dataclasses.field(default_factory=dict)
    wait_after: WaitSpec | None = None
    note: str | None = None
    on_failure: FailurePolicy | None = None

    def resolve(self, values: Mapping[str, str]) -> RecipeStep:
        """Copy with placeholders substituted in params and ``wait_after.value``."""
        params = {key: substitute(value, values) for key, value in self.params.items()}
        wait_after = self.wait_after
        if wait_after is not None and wait_after.value is not None:
            wait_after = dataclasses.replace(wait_after, value=substitute(wait_after.value, values))
        return dataclasses.replace(self, params=params, wait_after=wait_after)

    @property
    def label(self) -> str:
        return self.note or self.action.value

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"id": self.id, "action": self.action.value}
        if self.target is not None:
            data["target"] = self.target.to_dict()
        if self.params:
            data["params"] = dict(self.params)
        if self.wait_after is not None:
            data["wait_after"] = self.wait_after.to_dict()
        if self.note:
            data["note"] = self.note
        if self.on_failure is not None:
            data["on_failure"] = self.on_failure.value
        return data


@dataclasses.dataclass(frozen=True)
class Recipe:
    name: str
    steps: tuple[RecipeStep, ...]
    description: str = ""
    app: str | None = None
    params: Mapping[str, ParamDef] = dataclasses.field(default_factory=dict)
    preconditions: Preconditions | None = None
    on_failure: FailurePolicy = FailurePolicy.STOP
    schema_version: int = SCHEMA_VERSION

    def policy_for(self, step: RecipeStep) -> FailurePolicy:
        return step.on_failure or self.on_failure

    def missing_params(self, values: Mapping[str, str]) -> list[tuple[str, ParamDef]]:
        return [(name, d) for name, d in self.params.items() if d.required and name not in values]

    def summary(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "app": self.app,
            "params": sorted(self.params),
            "steps": len(self.steps),
        }

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "schema_version": self.schema_version,
            "name": self.name,
            "description": self.description,
        }
        if self.app:
            data["app"] = self.app
        if self.params:
            data["params"] = {name: d.to_dict() for name, d in self.params.items()}
        if self.preconditions is not None:
            data["preconditions"] = self.preconditions.to_dict()
        data["steps"] = [s.to_dict() for s in self.steps]
        data["on_failure"] = self.on_failure.value
        return data

    @classmethod
    def from_dict(cls, data: Any) -> Recipe:
        """Parse and validate a recipe mapping.

        Raises ``RecipeDefinitionError`` naming the recipe and step at fault.
        """
        if not isinstance(data, dict):
            raise RecipeDefinitionError(f"Recipe must be a mapping, got {type(data).__name__}")

        name = data.get("name")
        if not name or not isinstance(name, str):
            raise RecipeDefinitionError("Recipe requires a string 'name'")

        version = data.get("schema_version", SCHEMA_VERSION)
        if version != SCHEMA_VERSION:
            raise RecipeDefinitionError(f"Unsupported schema_version {version!r} (expected {SCHEMA_VERSION})",
                                        recipe=name)

        params: dict[str, ParamDef] = {}
        raw_params = data.get("params") or {}
        if not isinstance(raw_params, dict):
            raise RecipeDefinitionError("'params' must be a mapping", recipe=name)
        for param_name, raw in raw_params.items():
            raw = raw or {}
            if not isinstance(raw, dict):
                raise RecipeDefinitionError(f"Parameter '{param_name}' must be a mapping", recipe=name)
            params[str(param_name)] = ParamDef(
                type=str(raw.get("type", "string")),
                description=str(raw.get("description", "")),
                required=bool(raw.get("required", False)),
            )

        preconditions = None
        raw_pre = data.get("preconditions")
        if raw_pre:
            if not isinstance(raw_pre, dict):
                raise RecipeDefinitionError("'preconditions' must be a mapping", recipe=name)
            preconditions = Preconditions(
                app_running=_opt_str(raw_pre.get("app_running")),
                url_contains=_opt_str(raw_pre.get("url_contains")),
            )

        raw_steps = data.get("steps")
        if not isinstance(raw_steps, list) or not raw_steps:
            raise RecipeDefinitionError("Recipe requires a non-empty 'steps' list", recipe=name)

        app = _opt_str(data.get("app"))
        steps: list[RecipeStep] = []
        seen_ids: set[int] = set()
        for index, raw_step in enumerate(raw_steps):
            step = _parse_step(raw_step, index, name, app)
            if step.id in seen_ids:
                raise RecipeDefinitionError("Duplicate step id", step_id=step.id, recipe=name)
            seen_ids.add(step.id)
            steps.append(step)

        return cls(
            name=name,
            steps=tuple(steps),
            description=str(data.get("description") or ""),
            app=app,
            params=params,
            preconditions=preconditions,
            on_failure=_parse_policy(data.get("on_failure"), None, name) or FailurePolicy.STOP,
            schema_version=SCHEMA_VERSION,
        )


def _parse_step(raw: Any, index: int, recipe: str, app: str | None = None) -> RecipeStep:
    if not isinstance(raw, dict):
        raise RecipeDefinitionError(f"Step #{index + 1} must be a mapping", recipe=recipe)
    step_id = raw.get("id")
    if isinstance(step_id, bool) or not isinstance(step_id, int):
        raise RecipeDefinitionError(f"Step #{index + 1} requires an integer 'id'", recipe=recipe)

    try:
        action = RecipeAction(raw.get("action"))
    except ValueError:
        valid = ", ".join(a.value for a in RecipeAction)
        raise RecipeDefinitionError(
            f"Unknown action {raw.get('action')!r} (valid: {valid})", step_id=step_id, recipe=recipe
        ) from None

    target = None
    if raw.get("target") is not None:
        try:
            target = Locator.from_dict(raw["target"])
        except ValueError as exc:
            raise RecipeDefinitionError(f"Invalid target: {exc}", step_id=step_id, recipe=recipe) from exc

    raw_params = raw.get("params") or {}
    if not isinstance(raw_params, dict):
        raise RecipeDefinitionError("'params' must be a mapping", step_id=step_id, recipe=recipe)
    params: dict[str, str] = {}
    for key, value in raw_params.items():
        if isinstance(value, (dict, list)):
            raise RecipeDefinitionError(f"Param '{key}' must be a scalar", step_id=step_id, recipe=recipe)
        if value is None:
            continue
        params[str(key)] = _scalar_str(value)

    wait_after = None
    if raw.get("wait_after") is not None:
        wait_after = _parse_wait_spec(raw["wait_after"], step_id, recipe)

    step = RecipeStep(
        id=step_id,
        action=action,
        target=target,
        params=params,
        wait_after=wait_after,
        note=_opt_str(raw.get("note")),
        on_failure=_parse_policy(raw.get("on_failure"), step_id, recipe),
    )
    _validate_step(step, recipe, app)
    return step


def _parse_wait_spec(raw: Any, step_id: int, recipe: str) -> WaitSpec:
    if not isinstance(raw, dict):
        raise RecipeDefinitionError("'wait_after' must be a mapping", step_id=step_id, recipe=recipe)
    try:
        condition = WaitCondition(raw.get("condition"))
    except ValueError:
        raise RecipeDefinitionError(
            f"Unknown wait_after condition {raw.get('condition')!r}", step_id=step_id, recipe=recipe
        ) from None

    target = None
    if raw.get("target") is not None:
        try:
            target = Locator.from_dict(raw["target"])
        except ValueError as exc:
            raise RecipeDefinitionError(f"Invalid wait_after target: {exc}", step_id=step_id, recipe=recipe) from exc

    timeout = None
    if raw.get("timeout") is not None:
        try:
            timeout = float(raw["timeout"])
        except (TypeError, ValueError):
            raise RecipeDefinitionError(
                f"wait_after timeout must be a number, got {raw['timeout']!r}", step_id=step_id, recipe=recipe
            ) from None
        if timeout < 0:
            raise RecipeDefinitionError("wait_after timeout must not be negative", step_id=step_id, recipe=recipe)

    value = _opt_str(raw.get("value"))
    spec = WaitSpec(condition=condition, target=target, value=value, timeout=timeout)
    if condition.needs_value and not spec.effective_value:
        raise RecipeDefinitionError(
            f"wait_after condition '{condition.value}' needs a value or a target name",
            step_id=step_id,
            recipe=recipe,
        )
    return spec


def _validate_step(step: RecipeStep, recipe: str, app: str | None) -> None:
    """Check the step can become a typed command, as far as is knowable before substitution."""
    for key in _REQUIRED_PARAMS[step.action]:
        if key not in step.params:
            raise RecipeDefinitionError(
                f"'{step.action.value}' action requires '{key}' param", step_id=step.id, recipe=recipe
            )

    if step.action is RecipeAction.TYPE and step.target is not None:
        if not (step.target.name_contains or step.target.dom_id):
            raise RecipeDefinitionError(
                "'type' target needs name_contains or dom_id; role and identifier alone cannot pick a field",
                step_id=step.id,
                recipe=recipe,
            )

    if step.target is not None and step.target.name_contains:
        for key in ("query", "target", "into"):
            if key in step.params and step.params[key] != step.target.name_contains:
                logger.warning(
                    "Recipe '%s' step %d: target name %r takes precedence over params.%s %r",
                    recipe, step.id, step.target.name_contains, key, step.params[key],
                )

    # Fully literal steps can be built now; templated ones are checked per run.
    if not any(has_placeholder(v) for v in step.params.values()):
        try:
            build_command(step, app)
        except ValueError as exc:
            raise RecipeDefinitionError(str(exc), step_id=step.id, recipe=recipe) from exc


def _parse_policy(raw: Any, step_id: int | None, recipe: str) -> FailurePolicy | None:
    if raw is None:
        return None
    try:
        return FailurePolicy(raw)
    except ValueError:
        raise RecipeDefinitionError(
            f"on_failure must be 'stop' or 'skip', got {raw!r}", step_id=step_id, recipe=recipe
        ) from None


def _opt_str(value: Any) -> str | None:
    if value is None or value == "":
        return None
    return str(value)


def _scalar_str(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


# ---------------------------------------------------------------------------
# Typed commands
# ---------------------------------------------------------------------------

@dataclasses.dataclass(frozen=True)
class ClickCommand:
    locator: Locator | None
    x: float | None = None
    y: float | None = None
    button: str = "left"
    count: int = 1
    app: str | None = None


@dataclasses.dataclass(frozen=True)
class TypeCommand:
    text: str
    into: str | None = None
    dom_id: str | None = None
    app: str | None = None
    clear: bool = False


@dataclasses.dataclass(frozen=True)
class PressCommand:
    key: str
    modifiers: tuple[str, ...] = ()
    app: str | None = None


@dataclasses.dataclass(frozen=True)
class HotkeyCommand:
    keys: tuple[str, ...]
    app: str | None = None


@dataclasses.dataclass(frozen=True)
class FocusCommand:
    app: str
    window: str | None = None


@dataclasses.dataclass(frozen=True)
class ScrollCommand:
    direction: str = "down"
    amount: int = DEFAULT_SCROLL_AMOUNT
    app: str | None = None
    x: float | None = None
    y: float | None = None


@dataclasses.dataclass(frozen=True)
class WaitCommand:
    condition: WaitCondition
    value: str | None = None
    app: str | None = None
    timeout: float | None = None  # poller default; 0.5 s for delay
    interval: float = DEFAULT_POLL_INTERVAL


StepCommand = Union[
    ClickCommand, TypeCommand, PressCommand, HotkeyCommand, FocusCommand, ScrollCommand, WaitCommand
]


def _number(params: Mapping[str, str], key: str, kind: type = float) -> Any:
    raw = params.get(key)
    if raw is None or raw == "":
        return None
    try:
        return kind(float(raw)) if kind is int else kind(raw)
    except ValueError:
        raise ValueError(f"'{key}' must be a number, got {raw!r}") from None


def _split(raw: str) -> tuple[str, ...]:
    return tuple(part.strip() for part in raw.split(",") if part.strip())


def _target_value(step: RecipeStep, *keys: str) -> str | None:
    if step.target is not None and step.target.name_contains:
        return step.target.name_contains
    for key in keys:
        if step.params.get(key):
            return step.params[key]
    return None


def _build_click(step: RecipeStep, app: str | None) -> ClickCommand:
    p = step.params
    button = p.get("button", "left")
    if button not in ("left", "right", "middle"):
        raise ValueError(f"Invalid button {button!r}")
    query = _target_value(step, "query", "target")
    criteria = step.target.criteria if step.target is not None else ()
    locator = Locator(criteria=criteria, name_contains=query)
    if locator.dom_id:
        locator = Locator.build(dom_id=locator.dom_id)
    x, y = _number(p, "x"), _number(p, "y")
    if locator.is_empty and (x is None or y is None):
        raise ValueError("'click' needs a target, a query param, or x and y")
    return ClickCommand(
        locator=None if locator.is_empty else locator,
        x=x,
        y=y,
        button=button,
        count=_number(p, "count", int) or 1,
        app=app,
    )


def _build_type(step: RecipeStep, app: str | None) -> TypeCommand:
    p = step.params
    dom_id = step.target.dom_id if step.target is not None else None
    return TypeCommand(
        text=p["text"],
        into=_target_value(step, "into", "target"),
        dom_id=dom_id,
        app=app,
        clear=p.get("clear", "").lower() == "true",
    )


def _build_press(step: RecipeStep, app: str | None) -> PressCommand:
    key = step.params["key"]
    if not key:
        raise ValueError("'key' must not be empty")
    modifiers = _split(step.params.get("modifiers", ""))
    if key.lower() not in SPECIAL_KEYS and len(key) != 1:
        raise ValueError(f"Unknown key {key!r}")
    return PressCommand(key=key, modifiers=modifiers, app=app)


def _build_hotkey(step: RecipeStep, app: str | None) -> HotkeyCommand:
    keys = _split(step.params["keys"])
    if not keys:
        raise ValueError("'keys' must list at least one key")
    return HotkeyCommand(keys=keys, app=app)


def _build_focus(step: RecipeStep, app: str | None) -> FocusCommand:
    target_app = step.params.get("app") or app
    if not target_app:
        raise ValueError("'focus' needs an app param or a recipe app")
    return FocusCommand(app=target_app, window=step.params.get("window") or None)


def _build_scroll(step: RecipeStep, app: str | None) -> ScrollCommand:
    p = step.params
    direction = p.get("direction", "down").lower()
    if direction not in ("up", "down", "left", "right"):
        raise ValueError(f"Invalid scroll direction {direction!r}")
    amount = _number(p, "amount", int)
    if amount is not None and amount < 1:
        raise ValueError("'amount' must be positive")
    return ScrollCommand(
        direction=direction,
        amount=amount or DEFAULT_SCROLL_AMOUNT,
        app=app,
        x=_number(p, "x"),
        y=_number(p, "y"),
    )


def _build_wait(step: RecipeStep, app: str | None) -> WaitCommand:
    p = step.params
    try:
        condition = WaitCondition(p["condition"])
    except ValueError:
        raise ValueError(f"Unknown wait condition {p['condition']!r}") from None
    timeout = _number(p, "timeout")
    if timeout is not None and timeout < 0:
        raise ValueError("'timeout' must not be negative")
    if condition.needs_value and not p.get("value"):
        raise ValueError(f"wait condition '{condition.value}' requires a 'value' param")
    return WaitCommand(condition=condition, value=p.get("value") or None, app=app, timeout=timeout)


_COMMAND_BUILDERS: dict[RecipeAction, Callable[[RecipeStep, str | None], StepCommand]] = {
    RecipeAction.CLICK: _build_click,
    RecipeAction.TYPE: _build_type,
    RecipeAction.PRESS: _build_press,
    RecipeAction.HOTKEY: _build_hotkey,
    RecipeAction.FOCUS: _build_focus,
    RecipeAction.SCROLL: _build_scroll,
    RecipeAction.WAIT: _build_wait,
}

_missing_builders = set(RecipeAction) - set(_COMMAND_BUILDERS)
if _missing_builders:
    raise RuntimeError(f"No command builder for: {sorted(a.value for a in _missing_builders)}")


def build_command(step: RecipeStep, app: str | None) -> StepCommand:
    """Turn a (substituted) step into its typed command.

    *app* is the recipe's app; a step's own ``params.app`` overrides it.
    Raises ``ValueError`` when a param cannot be interpreted.
    """
    step_app = step.params.get("app") or app
    return _COMMAND_BUILDERS[step.action](step, step_app)
