"""
Tool dispatch.

Maps a tool name from the closed ToolName enum to its pydantic input model
and handler, clamps timeouts, and turns every failure into the structured
error envelope. Nothing raised below this layer reaches the transport.
"""

from __future__ import annotations

from enum import Enum
import logging
import time
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from wolfram_mcp.config import WolframMcpConfig
from wolfram_mcp.engine.executor import WolframScriptRunner
from wolfram_mcp.engine.formatter import truncate_result
from wolfram_mcp.errors import (
    ExecutionTimeoutError,
    MethodNotFoundError,
    ValidationError,
    WolframMcpError,
    error_envelope,
)
from wolfram_mcp.health import ServerHealth
from wolfram_mcp.models import ExecutionRequest, OutputFormat, ToolResult
from wolfram_mcp.observability import MetricsCollector

logger = logging.getLogger(__name__)

MIN_TIMEOUT_SECONDS = 1
MAX_REQUEST_TIMEOUT_SECONDS = 600


class ToolName(str, Enum):
    EXECUTE_MATHEMATICA = "execute_mathematica"
    SERVER_STATUS = "server_status"


class ExecuteMathematicaInput(BaseModel):
    """Arguments for execute_mathematica."""

    model_config = ConfigDict(extra="ignore")

    code: str = Field(min_length=1, description="Wolfram Language code to execute")
    format: OutputFormat = Field(
        default=OutputFormat.TEXT,
        description="Output format: text (default), latex (TeXForm), or mathematica (InputForm)",
    )
    timeout: int | None = Field(
        default=None,
        ge=MIN_TIMEOUT_SECONDS,
        le=MAX_REQUEST_TIMEOUT_SECONDS,
        validation_alias=AliasChoices("timeoutSeconds", "timeout"),
        description="Execution timeout in seconds (clamped to the server maximum)",
    )
    path: str | None = Field(
        default=None,
        validation_alias=AliasChoices("path", "workingDirectory"),
        description="Working directory for the computation",
    )

    @field_validator("code")
    @classmethod
    def reject_nul(cls, value: str) -> str:
        # argv elements cannot carry NUL
        if "\x00" in value:
            raise ValueError("code must not contain NUL characters")
        return value


class ServerStatusInput(BaseModel):
    """server_status takes no arguments."""

    model_config = ConfigDict(extra="ignore")


TOOL_INPUTS: dict[ToolName, type[BaseModel]] = {
    ToolName.EXECUTE_MATHEMATICA: ExecuteMathematicaInput,
    ToolName.SERVER_STATUS: ServerStatusInput,
}


def resolve_tool(name: str) -> ToolName:
    try:
        return ToolName(name)
    except ValueError:
        raise MethodNotFoundError(name) from None


def validate_arguments(tool: ToolName, arguments: dict[str, Any] | None) -> BaseModel:
    """Validate raw arguments against the tool's input model."""
    model = TOOL_INPUTS[tool]
    try:
        return model.model_validate(arguments or {})
    except PydanticValidationError as e:
        issues = [
            {"path": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
            for err in e.errors()
        ]
        summary = "; ".join(f"{i['path'] or '<root>'}: {i['message']}" for i in issues)
        raise ValidationError(f"Invalid arguments for {tool.value}: {summary}", issues) from None


def effective_timeout(requested: int | None, default_timeout: int, max_timeout: int) -> int:
    """min(requested or default, max). A request above the max is logged."""
    timeout = requested if requested is not None else default_timeout
    if timeout > max_timeout:
        logger.warning(f"Requested timeout {timeout}s exceeds maximum {max_timeout}s, clamping")
        return max_timeout
    return timeout


class ToolDispatcher:
    """Routes tool calls to handlers and maps every outcome to a ToolResult."""

    def __init__(
        self,
        config: WolframMcpConfig,
        runner: WolframScriptRunner,
        health: ServerHealth,
        metrics: MetricsCollector | None = None,
    ):
        self.config = config
        self.runner = runner
        self.health = health
        self.metrics = metrics
        self._handlers = {
            ToolName.EXECUTE_MATHEMATICA: self._handle_execute,
            ToolName.SERVER_STATUS: self._handle_status,
        }

    async def dispatch(self, tool_name: str, arguments: dict[str, Any] | None) -> ToolResult:
        """
        Run one tool call.

        Args:
            tool_name: Name from the MCP request
            arguments: Raw JSON arguments

        Returns:
            ToolResult; is_error is set for every failure, nothing is raised.
        """
        start = time.monotonic()
        timed_out = False
        try:
            tool = resolve_tool(tool_name)
            args = validate_arguments(tool, arguments)
            payload = await self._handlers[tool](args)
            result = ToolResult(payload=payload)
        except Exception as e:
            timed_out = isinstance(e, ExecutionTimeoutError)
            if isinstance(e, (MethodNotFoundError, ValidationError)):
                logger.warning(f"Rejected call to {tool_name}: {e}")
            elif timed_out:
                logger.warning(f"Tool {tool_name} timed out: {e}")
            else:
                logger.error(
                    f"Tool {tool_name} failed: {e}",
                    exc_info=not isinstance(e, WolframMcpError),
                )
            result = ToolResult(payload=error_envelope(e), is_error=True)

        if self.metrics is not None:
            self.metrics.record_call(
                tool=tool_name,
                latency_ms=(time.monotonic() - start) * 1000,
                success=not result.is_error,
                timed_out=timed_out,
            )
        return result

    def build_request(self, args: ExecuteMathematicaInput) -> ExecutionRequest:
        engine = self.config.engine
        return ExecutionRequest(
            code=args.code,
            format=args.format,
            timeout_seconds=effective_timeout(
                args.timeout, engine.default_timeout, engine.max_timeout
            ),
            working_directory=args.path,
        )

    async def _handle_execute(self, args: ExecuteMathematicaInput) -> dict[str, Any]:
        request = self.build_request(args)
        logger.info(
            f"Executing Mathematica code (length={len(request.code)}, "
            f"format={request.format.value}, timeout={request.timeout_seconds}s)"
        )
        result = await self.runner.execute(
            request.code,
            request.timeout_seconds,
            request.format,
            request.working_directory,
        )
        result = truncate_result(result, self.config.engine.max_output_length)
        return result.to_dict()

    async def _handle_status(self, args: ServerStatusInput) -> dict[str, Any]:
        payload = self.health.snapshot().to_dict()
        if self.metrics is not None:
            payload["metrics"] = self.metrics.get_stats()
        return payload
