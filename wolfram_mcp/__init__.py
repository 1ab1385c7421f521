"""Wolfram MCP Server - Model Context Protocol access to WolframScript."""

__version__ = "1.0.0"
