"""Allow `python -m wolfram_mcp`."""

from wolfram_mcp.cli import main

main()
