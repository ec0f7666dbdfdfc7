"""AXPilot -- verified UI automation over the macOS accessibility tree."""

__version__ = "0.3.0"
