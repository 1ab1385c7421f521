"""Request and result types shared by the dispatcher, runner and formatter."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class OutputFormat(str, Enum):
    """Presentation format of an execution result."""

    TEXT = "text"
    LATEX = "latex"
    MATHEMATICA = "mathematica"  # InputForm, the engine's native syntax


@dataclass(frozen=True)
class ExecutionRequest:
    """One validated engine invocation."""

    code: str
    format: OutputFormat
    timeout_seconds: int
    working_directory: str | None = None


@dataclass
class ExecutionResult:
    """Formatted engine output."""

    format: OutputFormat
    content: str
    execution_time_ms: int | None = None
    truncated: bool = False

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"format": self.format.value, "content": self.content}
        if self.execution_time_ms is not None:
            d["executionTimeMillis"] = self.execution_time_ms
        if self.truncated:
            d["truncated"] = True
        return d


@dataclass
class ToolResult:
    """Transport-neutral outcome of a tool call."""

    payload: dict[str, Any] = field(default_factory=dict)
    is_error: bool = False
