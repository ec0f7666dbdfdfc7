"""AXPilot MCP Server -- Expose AXPilot as MCP tools for AI agents.

This package wraps the AXPilot engine as a Model Context Protocol server,
allowing AI agents to search the accessibility tree, act on native and
browser UIs, wait for state changes and run saved recipes.

Transport: stdio (standard for MCP CLI tools).
"""

from axpilot.mcp.server import create_server, main

__all__ = ["create_server", "main"]
