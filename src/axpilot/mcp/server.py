"""AXPilot MCP Server -- Model Context Protocol server for AI agent integration.

Exposes AXPilot's accessibility automation engine as MCP tools so that AI
agents can perceive, act on and verify native and browser UIs.

Usage:
    axpilot-mcp            # stdio transport (default)
    python -m axpilot.mcp  # alternative invocation

Perception:

    axpilot_find            Search the accessibility tree of an app
    axpilot_context         Orientation snapshot of an app (window, URL, controls)
    axpilot_state           Running apps with window titles, positions and sizes
    axpilot_read            Text content of a window or element subtree
    axpilot_inspect         Full metadata for one element
    axpilot_element_at      Element at a screen point

Actions:

    axpilot_click           Click an element or screen coordinates
    axpilot_type            Type text into a field (verified by readback)
    axpilot_press           Press a key, optionally with modifiers
    axpilot_hotkey          Press a key combination
    axpilot_scroll          Scroll an app or a screen point
    axpilot_focus           Bring an app (and optionally a window) to the front
    axpilot_wait            Wait for a URL / title / element condition

Recipes:

    axpilot_recipes         List saved recipes
    axpilot_run             Run a saved recipe with parameters
    axpilot_recipe_show     Show a recipe definition
    axpilot_recipe_save     Validate and save a recipe (JSON or YAML)
    axpilot_recipe_delete   Delete a saved recipe

Every tool returns a JSON string.  Failures carry ``tool_error: true`` and an
``error_code``.  Nothing is ever printed to stdout (it is the transport).
"""

from __future__ import annotations

import json
import logging
from typing import Any, Callable

from axpilot.engine.locator import Locator
from axpilot.engine.protocols import APP_NOT_FOUND, INVALID_DEFINITION, INVALID_PARAMETER
from axpilot.engine.recipes import RecipeDefinitionError

logger = logging.getLogger("axpilot.mcp")

SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
INTERNAL_ERROR = "INTERNAL_ERROR"


def _error(message: str, error_code: str, **extra: Any) -> str:
    return json.dumps({"error": message, "tool_error": True, "error_code": error_code, **extra})


def _result(data: dict[str, Any]) -> str:
    """Serialize a result dict, flagging failures the way MCP clients expect."""
    if data.get("error_code") and not data.get("success", data.get("met", False)):
        data = {**data, "tool_error": True}
    return json.dumps(data, indent=2, default=str)


def _split_csv(raw: str | None) -> list[str]:
    return [part.strip() for part in (raw or "").split(",") if part.strip()]


def _parse_params(raw: str | dict[str, Any] | None) -> dict[str, Any]:
    """Accept recipe parameters as a mapping or a JSON object string."""
    if raw is None or raw == "":
        return {}
    if isinstance(raw, dict):
        return raw
    data = json.loads(raw)
    if not isinstance(data, dict):
        raise ValueError("params must be a JSON object")
    return data


class _LazyService:
    """Builds the automation service on first use.

    Construction touches the accessibility API, which fails without pyobjc
    or AX trust; deferring it lets the server start and report that per call.
    """

    def __init__(self, factory: Callable[[], Any]) -> None:
        self._factory = factory
        self._service: Any = None

    def get(self) -> Any:
        if self._service is None:
            self._service = self._factory()
        return self._service


def _default_factory() -> Any:
    from axpilot.config import AXPilotConfig
    from axpilot.engine.service import build_service

    return build_service(AXPilotConfig.load())


def create_server(service: Any = None) -> Any:
    """Create and configure the AXPilot MCP server.

    Args:
        service: An ``AutomationService`` to use.  When omitted, one is built
            for this machine on the first tool call.

    Returns:
        A FastMCP server instance with all tools registered.
    """
    try:
        from mcp.server.fastmcp import FastMCP
    except ImportError:
        raise ImportError(
            "The 'mcp' package is required for the AXPilot MCP server.\n\n"
            "Install it:\n"
            "  pip install 'axpilot[mcp]'\n"
            "  # or: pip install mcp>=1.0.0"
        )

    holder = _LazyService((lambda: service) if service is not None else _default_factory)

    def _with_service(fn: Callable[[Any], str]) -> str:
        try:
            svc = holder.get()
        except RuntimeError as exc:
            return _error(str(exc), SERVICE_UNAVAILABLE)
        try:
            return fn(svc)
        except Exception as exc:
            logger.exception("Tool call failed")
            return _error(f"{type(exc).__name__}: {exc}", INTERNAL_ERROR)

    mcp = FastMCP(
        "axpilot",
        instructions=(
            "AXPilot drives macOS apps and browsers through the accessibility tree. "
            "Start with axpilot_context to orient, use axpilot_find to locate elements, "
            "act with axpilot_click / axpilot_type / axpilot_press, and verify with "
            "axpilot_wait. Repeated multi-step flows belong in recipes: save them once "
            "with axpilot_recipe_save and replay them with axpilot_run."
        ),
    )

    # ── Perception ───────────────────────────────────────────────────────

    @mcp.tool(
        name="axpilot_find",
        description=(
            "Search an app's accessibility tree. Matches name, title, value, description "
            "and identifier; dom_id is the most reliable locator in web pages. "
            "Returns role, name, position, size and actionable for each match."
        ),
    )
    async def axpilot_find(
        query: str | None = None,
        role: str | None = None,
        dom_id: str | None = None,
        dom_class: str | None = None,
        identifier: str | None = None,
        app: str | None = None,
        depth: int | None = None,
    ) -> str:
        """Find UI elements.

        Args:
            query: Text to match against the element's labels.
            role: Accessibility role filter, e.g. "AXButton".
            dom_id: DOM id of a web element (takes priority over everything else).
            dom_class: DOM class the element must carry.
            identifier: AXIdentifier of a native element.
            app: Application name. Defaults to the frontmost app.
            depth: Semantic depth budget override.
        """
        locator = Locator.build(query=query, role=role, dom_id=dom_id, dom_class=dom_class, identifier=identifier)
        if locator.is_empty:
            return _error("Provide at least one of query, role, dom_id, dom_class or identifier", INVALID_PARAMETER)

        def _run(svc: Any) -> str:
            if app and not svc.app_running(app):
                return _error(
                    f"App '{app}' not found",
                    APP_NOT_FOUND,
                    suggestion=f"Running apps: {', '.join(svc.running_app_names())}",
                )
            elements = svc.find_elements(locator, depth=depth, app=app)
            return _result({"query": locator.describe(), "count": len(elements), "elements": elements})

        return _with_service(_run)

    @mcp.tool(
        name="axpilot_context",
        description=(
            "Orientation snapshot: app, window title, URL, focused element and up to 30 "
            "interactive elements. Call this first, and again whenever something fails."
        ),
    )
    async def axpilot_context(app: str | None = None) -> str:
        """Get current UI context.

        Args:
            app: Application name. Defaults to the frontmost app.
        """
        def _run(svc: Any) -> str:
            data = svc.get_context(app)
            if "error" in data:
                data = {**data, "tool_error": True}
            return json.dumps(data, indent=2, default=str)

        return _with_service(_run)

    @mcp.tool(
        name="axpilot_state",
        description="List running apps and their windows with titles, positions and sizes.",
    )
    async def axpilot_state(app: str | None = None) -> str:
        """List running apps.

        Args:
            app: Restrict the listing to one application.
        """
        return _with_service(lambda svc: _result(svc.get_state(app)))

    @mcp.tool(
        name="axpilot_read",
        description=(
            "Read the text on screen: concatenated text of the focused window (or of the "
            "element matching query), one line per element. Buttons and links are marked."
        ),
    )
    async def axpilot_read(app: str | None = None, query: str | None = None, depth: int | None = None) -> str:
        """Read text content.

        Args:
            app: Application name. Defaults to the frontmost app.
            query: Read only the subtree of the first element matching this text.
            depth: How many content levels to read (default 25).
        """
        if depth is not None and depth < 0:
            return _error(f"depth must not be negative, got {depth}", INVALID_PARAMETER)
        return _with_service(lambda svc: _result(svc.read_text(app, query, depth)))

    @mcp.tool(
        name="axpilot_inspect",
        description=(
            "Full metadata for one element: role, labels, frame, actionable, editable, "
            "enabled, settable attributes, value and DOM id. Use it before acting on "
            "something you are unsure about."
        ),
    )
    async def axpilot_inspect(
        query: str | None = None,
        role: str | None = None,
        dom_id: str | None = None,
        identifier: str | None = None,
        app: str | None = None,
    ) -> str:
        """Inspect one element.

        Args:
            query: Text identifying the element.
            role: Accessibility role filter.
            dom_id: DOM id of a web element.
            identifier: AXIdentifier of a native element.
            app: Application name. Defaults to the frontmost app.
        """
        locator = Locator.build(query=query, role=role, dom_id=dom_id, identifier=identifier)
        if locator.is_empty:
            return _error("Provide at least one of query, role, dom_id or identifier", INVALID_PARAMETER)
        return _with_service(lambda svc: _result(svc.inspect(locator, app)))

    @mcp.tool(
        name="axpilot_element_at",
        description="Which element is at this screen position? Bridges screenshots and the accessibility tree.",
    )
    async def axpilot_element_at(x: float, y: float) -> str:
        """Hit-test a screen point.

        Args:
            x: Global screen x coordinate.
            y: Global screen y coordinate.
        """
        return _with_service(lambda svc: _result(svc.element_at(x, y)))

    # ── Actions ──────────────────────────────────────────────────────────

    @mcp.tool(
        name="axpilot_click",
        description=(
            "Click an element (by query, role, dom_id, dom_class or identifier) or screen "
            "coordinates. Tries the native AXPress action first, then a synthetic click."
        ),
    )
    async def axpilot_click(
        query: str | None = None,
        role: str | None = None,
        dom_id: str | None = None,
        dom_class: str | None = None,
        identifier: str | None = None,
        x: float | None = None,
        y: float | None = None,
        button: str = "left",
        count: int = 1,
        app: str | None = None,
    ) -> str:
        """Click an element or a point.

        Args:
            query: Text identifying the element.
            role: Accessibility role filter.
            dom_id: DOM id of a web element.
            dom_class: DOM class filter.
            identifier: AXIdentifier of a native element.
            x: Screen x coordinate (with y, skips element search).
            y: Screen y coordinate.
            button: "left", "right" or "middle".
            count: Number of clicks (2 for double-click).
            app: Application to search and bring forward.
        """
        locator = Locator.build(query=query, role=role, dom_id=dom_id, dom_class=dom_class, identifier=identifier)
        coordinates = (x, y) if x is not None and y is not None else None
        if locator.is_empty and coordinates is None:
            return _error("Provide an element locator or both x and y", INVALID_PARAMETER)

        def _run(svc: Any) -> str:
            result = svc.perform_action(
                "click",
                locator=None if locator.is_empty else locator,
                coordinates=coordinates,
                params={"button": button, "count": count, "app": app},
            )
            return _result(result.to_dict())

        return _with_service(_run)

    @mcp.tool(
        name="axpilot_type",
        description=(
            "Type text, optionally into a field found by name or dom_id. The field value "
            "is read back to verify the text landed; falls back to synthetic typing."
        ),
    )
    async def axpilot_type(
        text: str,
        into: str | None = None,
        dom_id: str | None = None,
        app: str | None = None,
        clear: bool = False,
    ) -> str:
        """Type text.

        Args:
            text: Text to type.
            into: Label of the target field (placeholder, title or description).
            dom_id: DOM id of the target field.
            app: Application containing the field.
            clear: Clear the field before typing.
        """
        def _run(svc: Any) -> str:
            result = svc.perform_action(
                "type",
                params={"text": text, "into": into, "dom_id": dom_id, "app": app, "clear": clear},
            )
            return _result(result.to_dict())

        return _with_service(_run)

    @mcp.tool(
        name="axpilot_press",
        description="Press a key (return, tab, escape, arrows, f1-f12 or one character), optionally with modifiers.",
    )
    async def axpilot_press(key: str, modifiers: str | None = None, app: str | None = None) -> str:
        """Press a key.

        Args:
            key: Key name or single character.
            modifiers: Comma-separated modifiers, e.g. "cmd,shift".
            app: Application to bring forward first.
        """
        def _run(svc: Any) -> str:
            result = svc.perform_action(
                "press", params={"key": key, "modifiers": _split_csv(modifiers), "app": app}
            )
            return _result(result.to_dict())

        return _with_service(_run)

    @mcp.tool(
        name="axpilot_hotkey",
        description="Press a key combination such as cmd,l or cmd,shift,t. The last key is the key, the rest are modifiers.",
    )
    async def axpilot_hotkey(keys: str, app: str | None = None) -> str:
        """Press a hotkey.

        Args:
            keys: Comma-separated keys, e.g. "cmd,shift,t".
            app: Application to bring forward first.
        """
        def _run(svc: Any) -> str:
            result = svc.perform_action("hotkey", params={"keys": _split_csv(keys), "app": app})
            return _result(result.to_dict())

        return _with_service(_run)

    @mcp.tool(
        name="axpilot_scroll",
        description="Scroll up, down, left or right inside an app's scrollable area or at screen coordinates.",
    )
    async def axpilot_scroll(
        direction: str = "down",
        amount: int = 3,
        app: str | None = None,
        x: float | None = None,
        y: float | None = None,
    ) -> str:
        """Scroll.

        Args:
            direction: "up", "down", "left" or "right".
            amount: Lines to scroll.
            app: Application whose scroll area to target.
            x: Screen x coordinate to scroll at.
            y: Screen y coordinate to scroll at.
        """
        coordinates = (x, y) if x is not None and y is not None else None

        def _run(svc: Any) -> str:
            result = svc.perform_action(
                "scroll", coordinates=coordinates, params={"direction": direction, "amount": amount, "app": app}
            )
            return _result(result.to_dict())

        return _with_service(_run)

    @mcp.tool(
        name="axpilot_focus",
        description="Bring an application to the front, optionally raising a window whose title contains the given text.",
    )
    async def axpilot_focus(app: str, window: str | None = None) -> str:
        """Focus an app.

        Args:
            app: Application name.
            window: Part of the window title to raise.
        """
        def _run(svc: Any) -> str:
            result = svc.perform_action("focus", params={"app": app, "window": window})
            return _result(result.to_dict())

        return _with_service(_run)

    @mcp.tool(
        name="axpilot_wait",
        description=(
            "Wait for a condition: urlContains, titleContains, elementExists, elementGone, "
            "urlChanged, titleChanged or delay. Use after actions to verify they took effect."
        ),
    )
    async def axpilot_wait(
        condition: str,
        value: str | None = None,
        timeout: float = 10.0,
        interval: float = 0.5,
        app: str | None = None,
    ) -> str:
        """Wait for a UI condition.

        Args:
            condition: Condition name.
            value: Text the condition looks for (not needed for urlChanged / titleChanged / delay).
            timeout: Seconds before giving up (the delay length for "delay").
            interval: Seconds between checks.
            app: Application to observe.
        """
        def _run(svc: Any) -> str:
            result = svc.wait_for(condition, value, timeout=timeout, interval=interval, app=app)
            return _result(result.to_dict())

        return _with_service(_run)

    # ── Recipes ──────────────────────────────────────────────────────────

    @mcp.tool(
        name="axpilot_recipes",
        description="List saved recipes with their descriptions, apps and parameters.",
    )
    async def axpilot_recipes() -> str:
        """List recipes."""
        def _run(svc: Any) -> str:
            recipes = svc.list_recipes()
            return json.dumps({"count": len(recipes), "recipes": recipes}, indent=2)

        return _with_service(_run)

    @mcp.tool(
        name="axpilot_run",
        description=(
            "Run a saved recipe. Parameters fill {{placeholders}} in the steps. Returns "
            "per-step results; on failure includes the failed step and the current context."
        ),
    )
    async def axpilot_run(recipe: str, params: str | dict[str, Any] | None = None) -> str:
        """Run a recipe.

        Args:
            recipe: Recipe name.
            params: Parameter values, as an object or a JSON object string.
        """
        try:
            values = _parse_params(params)
        except ValueError as exc:
            return _error(f"Invalid params: {exc}", INVALID_PARAMETER)

        def _run(svc: Any) -> str:
            report = svc.run_recipe(recipe, values)
            return _result(report.to_dict())

        return _with_service(_run)

    @mcp.tool(
        name="axpilot_recipe_show",
        description="Show the full definition of a saved recipe.",
    )
    async def axpilot_recipe_show(name: str) -> str:
        """Show a recipe.

        Args:
            name: Recipe name.
        """
        def _run(svc: Any) -> str:
            try:
                data = svc.show_recipe(name)
            except RecipeDefinitionError as exc:
                return _error(str(exc), INVALID_DEFINITION)
            if data is None:
                return _error(f"Recipe '{name}' not found", INVALID_PARAMETER)
            return json.dumps(data, indent=2)

        return _with_service(_run)

    @mcp.tool(
        name="axpilot_recipe_save",
        description=(
            "Validate and save a recipe given as JSON or YAML text. Replaces any recipe "
            "with the same name. Invalid recipes are rejected with the offending step."
        ),
    )
    async def axpilot_recipe_save(recipe: str) -> str:
        """Save a recipe.

        Args:
            recipe: The recipe document (JSON or YAML).
        """
        def _run(svc: Any) -> str:
            try:
                saved = svc.save_recipe(recipe)
            except RecipeDefinitionError as exc:
                return _error(str(exc), INVALID_DEFINITION, step=exc.step_id)
            return json.dumps({"success": True, "recipe": saved.summary()}, indent=2)

        return _with_service(_run)

    @mcp.tool(
        name="axpilot_recipe_delete",
        description="Delete a saved recipe.",
    )
    async def axpilot_recipe_delete(name: str) -> str:
        """Delete a recipe.

        Args:
            name: Recipe name.
        """
        def _run(svc: Any) -> str:
            if not svc.delete_recipe(name):
                return _error(f"Recipe '{name}' not found", INVALID_PARAMETER)
            return json.dumps({"success": True, "deleted": name})

        return _with_service(_run)

    return mcp


def main() -> None:
    """Entry point for the axpilot-mcp command."""
    server = create_server()
    server.run(transport="stdio")


if __name__ == "__main__":
    main()
