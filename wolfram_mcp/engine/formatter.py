"""
Output formatter for WolframScript results.

The runner wraps code in TeXForm/InputForm before execution, so every
format is cleaned the same way here; nothing is translated.
"""

from __future__ import annotations

import logging
import re

from wolfram_mcp.models import ExecutionResult, OutputFormat

logger = logging.getLogger(__name__)

DEFAULT_MAX_OUTPUT_LENGTH = 10000

# CSI sequences (colors, cursor moves) and OSC sequences (titles, links)
_ANSI_RE = re.compile(r"\x1b\[[0-?]*[ -/]*[@-~]|\x1b\][^\x07\x1b]*(?:\x07|\x1b\\)|\x1b[@-_]")
# C0 controls except \t and \n, plus DEL
_CONTROL_RE = re.compile(r"[\x00-\x08\x0b-\x1f\x7f]")

ERROR_PATTERNS = [
    re.compile(r"^Syntax::", re.IGNORECASE),
    re.compile(r"^General::", re.IGNORECASE),
    re.compile(r"^Part::", re.IGNORECASE),
    re.compile(r"^Power::", re.IGNORECASE),
    re.compile(r"^Infinity::", re.IGNORECASE),
    re.compile(r"^\$Failed$"),
    re.compile(r"^Error:", re.IGNORECASE),
    re.compile(r"::.*::"),
]


def truncation_notice(original_length: int) -> str:
    return f"\n\n... [Output truncated. Full length: {original_length} characters]"


def clean_output(raw_output: str) -> str:
    """Strip escape sequences and stray control characters, then trim."""
    cleaned = raw_output.replace("\r\n", "\n")
    cleaned = _ANSI_RE.sub("", cleaned)
    cleaned = _CONTROL_RE.sub("", cleaned)
    return cleaned.strip()


def format_output(
    raw_output: str,
    fmt: OutputFormat,
    execution_time_ms: int | None = None,
) -> ExecutionResult:
    """
    Build an ExecutionResult from raw engine stdout.

    Args:
        raw_output: stdout from wolframscript
        fmt: Requested output format
        execution_time_ms: Wall-clock execution time, if measured

    Returns:
        ExecutionResult with cleaned content
    """
    logger.debug(f"Formatting output as: {fmt.value}")
    content = clean_output(raw_output)
    logger.debug(f"Formatted output ({len(content)} characters)")
    return ExecutionResult(format=fmt, content=content, execution_time_ms=execution_time_ms)


def truncate_output(output: str, max_length: int = DEFAULT_MAX_OUTPUT_LENGTH) -> str:
    """Cut output at max_length and append a notice carrying the original length."""
    if len(output) <= max_length:
        return output
    return output[:max_length] + truncation_notice(len(output))


def truncate_result(result: ExecutionResult, max_length: int) -> ExecutionResult:
    """Truncate a result's content at most once. max_length <= 0 disables."""
    if result.truncated or max_length <= 0 or len(result.content) <= max_length:
        return result
    logger.info(f"Truncating output from {len(result.content)} to {max_length} characters")
    result.content = truncate_output(result.content, max_length)
    result.truncated = True
    return result


def is_error_output(output: str) -> bool:
    """Best-effort check for engine error messages. Informational only."""
    stripped = output.strip()
    return any(pattern.search(stripped) for pattern in ERROR_PATTERNS)


def extract_error_message(output: str) -> str:
    """Pull message lines (sym::tag, Error:, $Failed) out of engine output."""
    lines = output.strip().split("\n")
    error_lines = [
        line
        for line in lines
        if "::" in line or line.startswith("Error:") or "$Failed" in line
    ]
    if error_lines:
        return "\n".join(error_lines)
    return output.strip()


def format_for_terminal(result: ExecutionResult) -> str:
    rule = "─" * 60
    lines = [rule, f"Format: {result.format.value}"]
    if result.execution_time_ms is not None:
        lines.append(f"Execution Time: {result.execution_time_ms}ms")
    lines.extend([rule, result.content, rule])
    return "\n".join(lines)
