"""HTTP server exposing MCP over Streamable HTTP and legacy SSE."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
import contextlib
import logging
from typing import TYPE_CHECKING

from mcp.server.sse import SseServerTransport
from mcp.server.streamable_http_manager import StreamableHTTPSessionManager
from starlette.applications import Starlette
from starlette.responses import JSONResponse, Response
from starlette.routing import Mount, Route
import uvicorn

from wolfram_mcp import __version__
from wolfram_mcp.errors import TransportStartupError, utc_timestamp
from wolfram_mcp.transport.auth import BearerAuthMiddleware, validate_api_key_security

if TYPE_CHECKING:
    from starlette.requests import Request
    from starlette.types import Receive, Scope, Send

    from wolfram_mcp.config import WolframMcpConfig
    from wolfram_mcp.health import ServerHealth
    from wolfram_mcp.server import WolframMcpServer

logger = logging.getLogger(__name__)

SERVER_NAME = "wolfram-mcp"
PUBLIC_ENDPOINTS = ["/health", "/info"]
STARTUP_POLL_SECONDS = 0.05


class _StreamableHttpEndpoint:
    """ASGI adapter so /mcp is served as an exact route (no trailing-slash redirect)."""

    def __init__(self, manager: StreamableHTTPSessionManager):
        self.manager = manager

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        await self.manager.handle_request(scope, receive, send)


class MCPHttpServer:
    """
    HTTP server that exposes the MCP server to network clients.

    Routes:
        /mcp        Streamable HTTP (GET SSE stream, POST JSON-RPC, DELETE session)
        /sse        Legacy SSE stream, paired with POST /messages/
        /health     Readiness snapshot, 200 when ok, 503 otherwise (public)
        /info       Static server description (public)

    Example:
        server = MCPHttpServer(mcp_server, config, health)
        await server.serve(on_started=health.mark_transport_connected)
    """

    def __init__(
        self,
        mcp_server: WolframMcpServer,
        config: WolframMcpConfig,
        health: ServerHealth,
        host: str | None = None,
        port: int | None = None,
    ):
        """
        Initialize HTTP server.

        Args:
            mcp_server: The server instance to expose
            config: Server configuration
            health: Readiness state reported at /health
            host: Bind address (default from config)
            port: Port number (default from config)
        """
        self.mcp_server = mcp_server
        self.config = config
        self.health = health
        self.host = host or config.server.host
        self.port = port or config.server.port

        self.session_manager = StreamableHTTPSessionManager(app=mcp_server.server)
        self.sse_transport = SseServerTransport("/messages/")

        self.app = self._create_app()

        logger.info(f"HTTP server initialized (will bind to {self.host}:{self.port})")

    def _create_app(self) -> Starlette:
        """Create the Starlette ASGI application."""
        routes = [
            Route("/health", endpoint=self._health, methods=["GET"]),
            Route("/info", endpoint=self._info, methods=["GET"]),
            Route(
                "/mcp",
                endpoint=_StreamableHttpEndpoint(self.session_manager),
                methods=["GET", "POST", "DELETE"],
            ),
            Route("/sse", endpoint=self._handle_sse, methods=["GET"]),
            Mount("/messages/", app=self.sse_transport.handle_post_message),
        ]

        app = Starlette(
            routes=routes,
            lifespan=self._lifespan,
            exception_handlers={404: self._not_found},
        )

        app.add_middleware(
            BearerAuthMiddleware,
            api_key=self.config.auth.api_key,
            trust_proxy=self.config.server.trust_proxy,
        )

        return app

    @contextlib.asynccontextmanager
    async def _lifespan(self, app: Starlette):
        """Run the Streamable HTTP session manager for the app's lifetime."""
        logger.info("HTTP server starting up")
        async with self.session_manager.run():
            yield
        logger.info("HTTP server shutting down")

    async def _health(self, request: Request) -> JSONResponse:
        """Health check endpoint (public, no auth)."""
        snapshot = self.health.snapshot()
        return JSONResponse(snapshot.to_dict(), status_code=snapshot.http_status)

    async def _info(self, request: Request) -> JSONResponse:
        """Server description endpoint (public, no auth)."""
        return JSONResponse(
            {
                "name": SERVER_NAME,
                "version": __version__,
                "transport": "streamable-http",
                "endpoints": {
                    "mcp": "/mcp (GET for SSE stream, POST for JSON-RPC, DELETE for session termination)",
                    "sse": "/sse (legacy SSE stream, POST /messages/)",
                    "health": "/health",
                    "info": "/info",
                },
                "authentication": "bearer" if self.config.auth.api_key else "disabled",
                "timestamp": utc_timestamp(),
            }
        )

    async def _not_found(self, request: Request, exc: Exception) -> JSONResponse:
        return JSONResponse(
            {
                "error": "NotFound",
                "message": f"Endpoint not found: {request.url.path}",
                "availableEndpoints": PUBLIC_ENDPOINTS,
                "timestamp": utc_timestamp(),
            },
            status_code=404,
        )

    async def _handle_sse(self, request: Request) -> Response:
        """
        Handle a legacy SSE connection.

        The MCP protocol runs over the stream until the client disconnects.
        """
        logger.info(f"SSE connection from {request.client}")

        async with self.sse_transport.connect_sse(
            request.scope, request.receive, request._send
        ) as streams:
            read_stream, write_stream = streams
            await self.mcp_server.server.run(
                read_stream,
                write_stream,
                self.mcp_server.server.create_initialization_options(),
            )

        logger.info(f"SSE connection closed from {request.client}")
        return Response()

    def _log_security(self) -> None:
        api_key = self.config.auth.api_key
        if api_key:
            warnings = validate_api_key_security(api_key)
            if warnings:
                logger.warning("API Key Security Warnings:")
                for warning in warnings:
                    logger.warning(f"  - {warning}")
        else:
            logger.warning("HTTP transport started WITHOUT authentication!")
            logger.warning("Set MCP_API_KEY environment variable to enable authentication.")

    async def _run_uvicorn(self, server: uvicorn.Server) -> None:
        # uvicorn exits the process when it cannot bind; surface that as an error instead
        try:
            await server.serve()
        except SystemExit as e:
            raise TransportStartupError(
                f"HTTP server failed to start on {self.host}:{self.port}"
            ) from e

    async def serve(self, on_started: Callable[[], None] | None = None) -> None:
        """
        Serve until shutdown.

        Args:
            on_started: Called once uvicorn is accepting connections

        Raises:
            TransportStartupError: The server stopped before it started listening
        """
        self._log_security()

        log_level = self.config.logging.level.lower()
        if log_level == "warn":
            log_level = "warning"
        server = uvicorn.Server(
            uvicorn.Config(self.app, host=self.host, port=self.port, log_level=log_level)
        )

        logger.info(f"Starting HTTP server on {self.host}:{self.port}")
        task = asyncio.create_task(self._run_uvicorn(server))

        while not server.started:
            if task.done():
                await task
                raise TransportStartupError(
                    f"HTTP server exited before listening on {self.host}:{self.port}"
                )
            await asyncio.sleep(STARTUP_POLL_SECONDS)

        logger.info(f"MCP endpoint: http://{self.host}:{self.port}/mcp")
        logger.info(f"Health check: http://{self.host}:{self.port}/health")
        if on_started is not None:
            on_started()

        await task
