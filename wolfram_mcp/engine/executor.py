"""
WolframScript command runner.

Security features:
- argv-only invocation (code is one argument, never a shell string)
- Timeout race with forced kill of the engine process group
- Working directory checked before spawn
"""

from __future__ import annotations

import asyncio
import logging
import math
import os
from pathlib import Path
import signal
import sys
import time

from wolfram_mcp.engine.formatter import format_output
from wolfram_mcp.errors import (
    EngineExecutionError,
    EngineNotFoundError,
    ExecutionTimeoutError,
    WolframMcpError,
)
from wolfram_mcp.models import ExecutionResult, OutputFormat

logger = logging.getLogger(__name__)

DEFAULT_ENGINE_PATH = "wolframscript"

# wolframscript warns about its own config file on every run
BENIGN_STDERR_PATTERNS = [
    "Failed to open configuaration file at path:",
    "Failed to open configuration file at path:",
]

FORMAT_WRAPPERS = {
    OutputFormat.TEXT: None,
    OutputFormat.LATEX: "TeXForm",
    OutputFormat.MATHEMATICA: "InputForm",
}

VERSION_CHECK_TIMEOUT = 10
WARMUP_TIMEOUT = 10


def wrap_code(code: str, fmt: OutputFormat) -> str:
    """Wrap code in the format transformation the engine should apply."""
    wrapper = FORMAT_WRAPPERS[fmt]
    if wrapper is None:
        return code
    return f"{wrapper}[{code}]"


def build_command(
    engine_path: str, code: str, timeout_seconds: int, fmt: OutputFormat
) -> list[str]:
    """Build the engine argv. The code is a single element, never interpolated."""
    return [engine_path, "-timeout", str(timeout_seconds), "-code", wrap_code(code, fmt)]


def is_benign_stderr(stderr: str) -> bool:
    return any(pattern in stderr for pattern in BENIGN_STDERR_PATTERNS)


def _kill_process(proc: asyncio.subprocess.Process) -> None:
    """SIGKILL the engine and its kernel children."""
    if proc.returncode is not None:
        return
    try:
        if sys.platform != "win32":
            os.killpg(proc.pid, signal.SIGKILL)
        else:
            proc.kill()
    except ProcessLookupError:
        pass


class WolframScriptRunner:
    """Runs Wolfram Language code through the wolframscript executable."""

    def __init__(self, engine_path: str = DEFAULT_ENGINE_PATH, kill_grace_seconds: float = 5.0):
        self.engine_path = engine_path
        self.kill_grace_seconds = kill_grace_seconds

    async def _spawn(
        self, argv: list[str], cwd: str | None = None
    ) -> asyncio.subprocess.Process:
        try:
            return await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=cwd,
                start_new_session=sys.platform != "win32",
            )
        except (FileNotFoundError, PermissionError) as e:
            logger.error(f"WolframScript not found at: {self.engine_path} ({e})")
            raise EngineNotFoundError(self.engine_path) from e

    async def _reap(self, proc: asyncio.subprocess.Process) -> None:
        _kill_process(proc)
        try:
            await asyncio.wait_for(proc.wait(), timeout=self.kill_grace_seconds)
        except asyncio.TimeoutError:
            logger.error(f"Engine process {proc.pid} did not exit after SIGKILL")

    async def _communicate(
        self, proc: asyncio.subprocess.Process, timeout_seconds: float
    ) -> tuple[bytes, bytes]:
        """Race the process against the timer; kill it if the timer wins."""
        try:
            return await asyncio.wait_for(proc.communicate(), timeout=timeout_seconds)
        except asyncio.TimeoutError:
            await self._reap(proc)
            raise
        except asyncio.CancelledError:
            await self._reap(proc)
            raise

    async def execute(
        self,
        code: str,
        timeout_seconds: int,
        fmt: OutputFormat = OutputFormat.TEXT,
        working_directory: str | None = None,
    ) -> ExecutionResult:
        """
        Execute code with wolframscript.

        Args:
            code: Wolfram Language code
            timeout_seconds: Engine -timeout value and the kill deadline
            fmt: Output format; non-text formats wrap the code
            working_directory: Optional cwd for the engine process

        Returns:
            Formatted ExecutionResult

        Raises:
            ExecutionTimeoutError: The deadline passed; the process was killed
            EngineNotFoundError: The executable could not be spawned
            EngineExecutionError: Non-zero exit or bad working directory
        """
        logger.debug(
            f"Executing code (length={len(code)}, format={fmt.value}, timeout={timeout_seconds}s)"
        )

        cwd = None
        if working_directory:
            cwd_path = Path(working_directory).expanduser()
            if not cwd_path.is_dir():
                raise EngineExecutionError(
                    f"Working directory does not exist or is not a directory: {working_directory}"
                )
            cwd = str(cwd_path)

        argv = build_command(self.engine_path, code, timeout_seconds, fmt)
        start = time.monotonic()
        proc = await self._spawn(argv, cwd=cwd)

        try:
            stdout_b, stderr_b = await self._communicate(proc, timeout_seconds)
        except asyncio.TimeoutError:
            logger.error(f"Execution timed out after {timeout_seconds}s (pid {proc.pid} killed)")
            raise ExecutionTimeoutError(timeout_seconds) from None

        execution_time_ms = max(1, math.ceil((time.monotonic() - start) * 1000))
        stdout = stdout_b.decode("utf-8", errors="replace")
        stderr = stderr_b.decode("utf-8", errors="replace").strip()

        if stderr:
            if is_benign_stderr(stderr):
                logger.debug(f"WolframScript benign warning (ignored): {stderr}")
            else:
                logger.warning(f"WolframScript stderr output: {stderr}")

        if proc.returncode != 0:
            message = stderr or stdout.strip() or f"exit code {proc.returncode}"
            logger.error(
                f"Execution failed (exit_code={proc.returncode}, time={execution_time_ms}ms): {message}"
            )
            raise EngineExecutionError(message, raw=stdout, exit_code=proc.returncode)

        logger.debug(f"Execution completed in {execution_time_ms}ms")
        return format_output(stdout, fmt, execution_time_ms)

    async def execute_simple(self, expression: str, timeout_seconds: int = 30) -> str:
        result = await self.execute(expression, timeout_seconds, OutputFormat.TEXT)
        return result.content

    async def check_installation(self) -> bool:
        """Run `wolframscript -version`. Never raises."""
        logger.debug(f"Checking WolframScript installation at: {self.engine_path}")
        try:
            proc = await self._spawn([self.engine_path, "-version"])
            stdout_b, _ = await self._communicate(proc, VERSION_CHECK_TIMEOUT)
        except (WolframMcpError, asyncio.TimeoutError, OSError) as e:
            logger.error(f"WolframScript not found or not accessible: {e}")
            return False

        if proc.returncode != 0:
            logger.error(f"WolframScript -version exited with code {proc.returncode}")
            return False

        version = stdout_b.decode("utf-8", errors="replace").strip()
        logger.info(f"WolframScript found: {version}")
        return True

    async def warmup(self) -> bool:
        """Evaluate 1+1 so the kernel is initialized before the first request."""
        logger.info("Warming up Wolfram Kernel...")
        start = time.monotonic()
        try:
            result = await self.execute_simple("1+1", WARMUP_TIMEOUT)
        except WolframMcpError as e:
            logger.error(f"Wolfram Kernel warmup failed: {e}")
            return False

        elapsed_ms = int((time.monotonic() - start) * 1000)
        if result.strip() == "2":
            logger.info(f"Wolfram Kernel warmed up successfully in {elapsed_ms}ms")
            return True

        logger.error(f'Wolfram Kernel warmup failed: unexpected result "{result}"')
        return False
