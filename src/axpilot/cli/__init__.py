"""AXPilot command-line interface."""
