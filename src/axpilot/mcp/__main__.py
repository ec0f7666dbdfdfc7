from axpilot.mcp.server import main

main()
