"""MCP transport layer - HTTP support for network clients."""

from wolfram_mcp.transport.auth import BearerAuthMiddleware, authorize
from wolfram_mcp.transport.http_server import MCPHttpServer

__all__ = ["BearerAuthMiddleware", "MCPHttpServer", "authorize"]
