"""WolframScript execution and output formatting."""

from wolfram_mcp.engine.executor import WolframScriptRunner
from wolfram_mcp.engine.formatter import format_output, truncate_output

__all__ = ["WolframScriptRunner", "format_output", "truncate_output"]
