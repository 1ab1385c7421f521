"""
Wolfram MCP Server - Model Context Protocol interface to WolframScript.

Supports stdio transport for desktop clients and HTTP for network clients.
Run with: wolfram-mcp serve

Tools:
- execute_mathematica: Evaluate Wolfram Language code
- server_status: Readiness checks and call metrics
"""  # noqa: I001

from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import Any

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import CallToolResult, TextContent, Tool

from wolfram_mcp import __version__
from wolfram_mcp.config import WolframMcpConfig
from wolfram_mcp.dispatch import MAX_REQUEST_TIMEOUT_SECONDS, ToolDispatcher, ToolName
from wolfram_mcp.engine.executor import WolframScriptRunner
from wolfram_mcp.errors import EngineNotFoundError
from wolfram_mcp.health import ServerHealth
from wolfram_mcp.models import ToolResult
from wolfram_mcp.observability import ObservabilityContext
from wolfram_mcp.transport.http_server import MCPHttpServer

logger = logging.getLogger(__name__)

SERVER_NAME = "wolfram-mcp"
INSTRUCTIONS = (
    "Evaluates Wolfram Language code with a local WolframScript engine. "
    "Use execute_mathematica for computations and server_status to check readiness."
)

TOOLS: list[Tool] = [
    Tool(
        name=ToolName.EXECUTE_MATHEMATICA.value,
        description=(
            "Execute Wolfram Language (Mathematica) code and return the result "
            "as plain text, LaTeX (TeXForm) or Mathematica syntax (InputForm)."
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "code": {
                    "type": "string",
                    "minLength": 1,
                    "description": "Wolfram Language code to execute, e.g. 'Integrate[x^2, x]'",
                },
                "format": {
                    "type": "string",
                    "enum": ["text", "latex", "mathematica"],
                    "default": "text",
                    "description": "Output format: text (default), latex (TeXForm), or mathematica (InputForm)",
                },
                "timeoutSeconds": {
                    "type": "integer",
                    "minimum": 1,
                    "maximum": MAX_REQUEST_TIMEOUT_SECONDS,
                    "description": "Execution timeout in seconds (clamped to the server maximum)",
                },
                "path": {
                    "type": "string",
                    "description": "Working directory for the computation (must exist)",
                },
            },
            "required": ["code"],
        },
    ),
    Tool(
        name=ToolName.SERVER_STATUS.value,
        description="Report server readiness checks, uptime and tool call metrics.",
        inputSchema={"type": "object", "properties": {}},
    ),
]


def to_call_tool_result(result: ToolResult) -> CallToolResult:
    """Wrap a dispatch result as MCP content; errors keep isError set."""
    return CallToolResult(
        content=[TextContent(type="text", text=json.dumps(result.payload, indent=2))],
        isError=result.is_error,
    )


class WolframMcpServer:
    """Wolfram MCP Server implementation."""

    def __init__(
        self,
        config: WolframMcpConfig,
        health: ServerHealth,
        runner: WolframScriptRunner | None = None,
    ):
        self.config = config
        self.health = health
        self.runner = runner or WolframScriptRunner(config.engine.path)
        self.server = Server(SERVER_NAME, version=__version__, instructions=INSTRUCTIONS)
        self.tools = TOOLS

        self.obs = ObservabilityContext(config.logging)
        self.dispatcher = ToolDispatcher(
            config, self.runner, health, metrics=self.obs.collector
        )

        self._register_handlers()
        logger.info(f"Wolfram MCP Server initialized ({len(self.tools)} tools)")

    def _register_handlers(self):
        """Register MCP protocol handlers."""

        @self.server.list_tools()
        async def list_tools() -> list[Tool]:
            """Return available tools."""
            logger.debug("list_tools called")
            return self.tools

        # Dispatch validates against its own models and reports unknown tools
        @self.server.call_tool(validate_input=False)
        async def call_tool(name: str, arguments: dict[str, Any]) -> CallToolResult:
            """Handle tool invocation with observability."""
            cid = self.obs.correlation_id()
            start_time = time.monotonic()

            logger.info(f"call_tool: {name}", extra={"correlation_id": cid, "tool": name})

            result = await self.dispatcher.dispatch(name, arguments)

            latency_ms = (time.monotonic() - start_time) * 1000
            logger.info(
                f"call_tool done: {name}",
                extra={
                    "correlation_id": cid,
                    "tool": name,
                    "latency_ms": round(latency_ms, 2),
                    "status": "error" if result.is_error else "ok",
                    "error": result.payload.get("error") if result.is_error else None,
                },
            )

            return to_call_tool_result(result)

    async def run_stdio(self) -> None:
        """Run the server with stdio transport."""
        logger.info("Starting Wolfram MCP server (stdio transport)")
        async with stdio_server() as (read_stream, write_stream):
            self.health.mark_transport_connected()
            await self.server.run(
                read_stream,
                write_stream,
                self.server.create_initialization_options(),
            )

    async def run_http(self) -> None:
        """Run the server with HTTP transport."""
        http_server = MCPHttpServer(self, self.config, self.health)
        await http_server.serve(on_started=self.health.mark_transport_connected)


async def prepare_engine(
    config: WolframMcpConfig, health: ServerHealth, runner: WolframScriptRunner
) -> None:
    """
    Verify the engine and warm up the kernel.

    Raises:
        EngineNotFoundError: wolframscript is missing; startup must abort
    """
    logger.info("Checking WolframScript installation...")
    if not await runner.check_installation():
        error = EngineNotFoundError(config.engine.path)
        health.record_error(error.message)
        raise error
    health.mark_engine_available()

    if await runner.warmup():
        health.mark_engine_warmed_up()
    else:
        health.record_error("Kernel warmup failed")
        logger.warning("Kernel warmup failed - continuing, first request may be slower")

    delay = config.engine.warmup_delay
    if delay > 0:
        logger.info(f"Waiting {delay}s for kernel initialization...")
        await asyncio.sleep(delay)


async def serve(config: WolframMcpConfig, health: ServerHealth | None = None) -> None:
    """
    Start the server: engine check, warmup, dispatch, then transport.

    Health checks flip in that order. Failures are recorded in the health
    state before they propagate; the state is cleared on exit.
    """
    health = health or ServerHealth()
    health.reset()
    logger.info(f"Starting Wolfram MCP server v{__version__}")
    logger.info(f"Config: {config.describe()}")

    runner = WolframScriptRunner(config.engine.path)
    try:
        await prepare_engine(config, health, runner)

        mcp_server = WolframMcpServer(config, health, runner)
        health.mark_dispatch_connected()

        if config.server.transport == "http":
            await mcp_server.run_http()
        else:
            await mcp_server.run_stdio()
    except Exception as e:
        health.record_error(str(e))
        logger.error(f"Server failed: {e}")
        raise
    finally:
        health.shutdown()
        logger.info("Wolfram MCP server stopped")
