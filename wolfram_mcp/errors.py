"""
Error types for the Wolfram MCP server.

Every error carries a ``kind`` that becomes the ``error`` field of the
structured envelope returned to MCP clients.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any


def utc_timestamp() -> str:
    """ISO 8601 UTC timestamp with a trailing Z."""
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class WolframMcpError(Exception):
    """Base error for the server."""

    kind: str = "WolframMcpError"

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = {k: v for k, v in details.items() if v is not None}


class ValidationError(WolframMcpError):
    """Tool arguments failed schema validation."""

    kind = "ValidationError"

    def __init__(self, message: str, issues: list[dict[str, str]] | None = None):
        super().__init__(message, issues=issues)
        self.issues = issues or []


class ExecutionTimeoutError(WolframMcpError):
    """The engine exceeded its allotted time and was killed."""

    kind = "TimeoutError"

    def __init__(self, timeout_seconds: int):
        super().__init__(
            f"Execution exceeded timeout of {timeout_seconds}s",
            timeoutSeconds=timeout_seconds,
        )
        self.timeout_seconds = timeout_seconds


class EngineNotFoundError(WolframMcpError):
    """The engine executable is missing or not executable."""

    kind = "EngineNotFoundError"

    def __init__(self, path: str):
        super().__init__(
            f"WolframScript not found at path: {path}. Please ensure Mathematica is installed.",
            path=path,
        )
        self.path = path


class EngineExecutionError(WolframMcpError):
    """The engine ran but the computation failed."""

    kind = "EngineExecutionError"

    def __init__(self, message: str, raw: str | None = None, exit_code: int | None = None):
        super().__init__(f"Execution failed: {message}", raw=raw, exitCode=exit_code)
        self.raw = raw
        self.exit_code = exit_code


class AuthenticationError(WolframMcpError):
    """Authentication failed on the HTTP transport."""

    kind = "AuthenticationError"

    def __init__(self, message: str = "Authentication failed"):
        super().__init__(message)


class InvalidTokenError(AuthenticationError):
    """Bearer token missing or wrong."""

    kind = "InvalidTokenError"

    def __init__(self) -> None:
        super().__init__("Invalid or missing bearer token")


class MethodNotFoundError(WolframMcpError):
    """Unknown tool name."""

    kind = "MethodNotFound"

    def __init__(self, tool_name: str):
        super().__init__(f"Unknown tool: {tool_name}", tool=tool_name)
        self.tool_name = tool_name


class ConfigurationError(WolframMcpError):
    """Invalid configuration value."""

    kind = "ConfigurationError"

    def __init__(self, message: str):
        super().__init__(f"Configuration error: {message}")


class TransportStartupError(WolframMcpError):
    """The transport could not be started."""

    kind = "TransportStartupError"


def error_envelope(error: BaseException) -> dict[str, Any]:
    """
    Map any exception to the structured error envelope.

    Returns:
        {"error": kind, "message": ..., "timestamp": ..., "details"?: {...}}
    """
    if isinstance(error, WolframMcpError):
        envelope: dict[str, Any] = {
            "error": error.kind,
            "message": error.message,
            "timestamp": utc_timestamp(),
        }
        if error.details:
            envelope["details"] = error.details
        return envelope

    return {
        "error": "InternalError",
        "message": str(error) or type(error).__name__,
        "timestamp": utc_timestamp(),
    }
