"""Tests for the WolframScript command runner, against a fake engine."""

from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path
import time

import pytest

from wolfram_mcp.engine.executor import (
    BENIGN_STDERR_PATTERNS,
    WolframScriptRunner,
    build_command,
    is_benign_stderr,
    wrap_code,
)
from wolfram_mcp.errors import (
    EngineExecutionError,
    EngineNotFoundError,
    ExecutionTimeoutError,
)
from wolfram_mcp.models import OutputFormat


class TestCommandConstruction:
    def test_text_code_is_not_wrapped(self):
        assert wrap_code("1+1", OutputFormat.TEXT) == "1+1"

    def test_latex_wraps_in_texform(self):
        assert wrap_code("x^2", OutputFormat.LATEX) == "TeXForm[x^2]"

    def test_mathematica_wraps_in_inputform(self):
        assert wrap_code("x^2", OutputFormat.MATHEMATICA) == "InputForm[x^2]"

    def test_code_is_a_single_argv_element(self):
        code = 'Print["a"]; $(rm -rf /) `whoami`'
        argv = build_command("/opt/wolframscript", code, 7, OutputFormat.TEXT)
        assert argv == ["/opt/wolframscript", "-timeout", "7", "-code", code]

    def test_benign_patterns_cover_both_spellings(self):
        assert is_benign_stderr("Failed to open configuaration file at path: /x")
        assert is_benign_stderr("Failed to open configuration file at path: /x")
        assert not is_benign_stderr("Syntax::sntxf: bad")
        assert len(BENIGN_STDERR_PATTERNS) == 2


class TestExecute:
    @pytest.mark.asyncio
    async def test_simple_text_result(self, fake_engine: Path):
        runner = WolframScriptRunner(str(fake_engine))
        result = await runner.execute("1+1", 10, OutputFormat.TEXT)
        assert result.format == OutputFormat.TEXT
        assert result.content == "2"
        assert result.execution_time_ms is not None
        assert result.execution_time_ms > 0

    @pytest.mark.asyncio
    async def test_latex_format_is_prewrapped(self, fake_engine: Path):
        runner = WolframScriptRunner(str(fake_engine))
        result = await runner.execute("1/2", 10, OutputFormat.LATEX)
        assert result.content == "\\frac{1}{2}"
        assert result.format == OutputFormat.LATEX

    @pytest.mark.asyncio
    async def test_mathematica_format_is_prewrapped(self, fake_engine: Path):
        runner = WolframScriptRunner(str(fake_engine))
        result = await runner.execute("1/2", 10, OutputFormat.MATHEMATICA)
        assert result.content == "1/2"

    @pytest.mark.asyncio
    async def test_timeout_flag_and_code_reach_engine(self, fake_engine: Path):
        runner = WolframScriptRunner(str(fake_engine))
        result = await runner.execute("Args", 12, OutputFormat.TEXT)
        assert result.content == "-timeout|12|-code|Args"

    @pytest.mark.asyncio
    async def test_ansi_output_is_cleaned(self, fake_engine: Path):
        runner = WolframScriptRunner(str(fake_engine))
        result = await runner.execute("ColorOut", 10)
        assert result.content == "green"

    @pytest.mark.asyncio
    async def test_benign_stderr_logged_at_debug(self, fake_engine: Path, caplog):
        runner = WolframScriptRunner(str(fake_engine))
        with caplog.at_level(logging.DEBUG, logger="wolfram_mcp.engine.executor"):
            result = await runner.execute("Warn", 10)
        assert result.content == "ok"
        benign = [r for r in caplog.records if "benign warning" in r.getMessage()]
        assert benign and all(r.levelno == logging.DEBUG for r in benign)
        assert not any(r.levelno >= logging.WARNING for r in caplog.records)

    @pytest.mark.asyncio
    async def test_other_stderr_warns_but_succeeds(self, fake_engine: Path, caplog):
        runner = WolframScriptRunner(str(fake_engine))
        with caplog.at_level(logging.DEBUG, logger="wolfram_mcp.engine.executor"):
            result = await runner.execute("Noise", 10)
        assert result.content == "ok"
        assert any(
            r.levelno == logging.WARNING and "General::stop" in r.getMessage()
            for r in caplog.records
        )

    @pytest.mark.asyncio
    async def test_nonzero_exit_is_execution_error(self, fake_engine: Path):
        runner = WolframScriptRunner(str(fake_engine))
        with pytest.raises(EngineExecutionError) as excinfo:
            await runner.execute("Crash", 10)
        assert excinfo.value.exit_code == 1
        assert "Syntax::sntxf" in excinfo.value.message

    @pytest.mark.asyncio
    async def test_silent_nonzero_exit_reports_exit_code(self, fake_engine: Path):
        runner = WolframScriptRunner(str(fake_engine))
        with pytest.raises(EngineExecutionError) as excinfo:
            await runner.execute("SilentCrash", 10)
        assert excinfo.value.message == "Execution failed: exit code 3"
        assert excinfo.value.details["exitCode"] == 3

    @pytest.mark.asyncio
    async def test_missing_binary_is_engine_not_found(self, tmp_path: Path):
        missing = tmp_path / "nope" / "wolframscript"
        runner = WolframScriptRunner(str(missing))
        with pytest.raises(EngineNotFoundError) as excinfo:
            await runner.execute("1+1", 10)
        assert excinfo.value.path == str(missing)

    @pytest.mark.asyncio
    async def test_non_executable_is_engine_not_found(self, tmp_path: Path):
        script = tmp_path / "wolframscript"
        script.write_text("#!/bin/sh\necho 2\n")
        script.chmod(0o644)
        runner = WolframScriptRunner(str(script))
        with pytest.raises(EngineNotFoundError):
            await runner.execute("1+1", 10)

    @pytest.mark.asyncio
    async def test_working_directory_becomes_cwd(self, fake_engine: Path, tmp_path: Path):
        workdir = tmp_path / "work"
        workdir.mkdir()
        runner = WolframScriptRunner(str(fake_engine))
        result = await runner.execute("Cwd", 10, working_directory=str(workdir))
        assert Path(result.content).resolve() == workdir.resolve()

    @pytest.mark.asyncio
    async def test_missing_working_directory_fails_before_spawn(
        self, fake_engine: Path, tmp_path: Path
    ):
        runner = WolframScriptRunner(str(fake_engine))
        with pytest.raises(EngineExecutionError) as excinfo:
            await runner.execute("Cwd", 10, working_directory=str(tmp_path / "missing"))
        assert "Working directory" in excinfo.value.message


class TestTimeout:
    @pytest.mark.slow
    @pytest.mark.asyncio
    async def test_timeout_kills_process(
        self, fake_engine: Path, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ):
        pid_file = tmp_path / "engine.pid"
        monkeypatch.setenv("FAKE_ENGINE_PID_FILE", str(pid_file))
        runner = WolframScriptRunner(str(fake_engine), kill_grace_seconds=2.0)

        start = time.monotonic()
        with pytest.raises(ExecutionTimeoutError) as excinfo:
            await runner.execute("Pause[5]", 1)
        elapsed = time.monotonic() - start

        assert excinfo.value.timeout_seconds == 1
        assert excinfo.value.kind == "TimeoutError"
        assert elapsed < 4

        assert pid_file.exists()
        pid = int(pid_file.read_text())
        with pytest.raises(ProcessLookupError):
            os.kill(pid, 0)

    @pytest.mark.slow
    @pytest.mark.asyncio
    async def test_cancellation_kills_process(
        self, fake_engine: Path, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ):
        pid_file = tmp_path / "engine.pid"
        monkeypatch.setenv("FAKE_ENGINE_PID_FILE", str(pid_file))
        runner = WolframScriptRunner(str(fake_engine), kill_grace_seconds=2.0)

        task = asyncio.create_task(runner.execute("Pause[5]", 30))
        deadline = time.monotonic() + 5
        while not (pid_file.exists() and pid_file.read_text()):
            assert time.monotonic() < deadline, "engine never started"
            await asyncio.sleep(0.05)

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        pid = int(pid_file.read_text())
        with pytest.raises(ProcessLookupError):
            os.kill(pid, 0)


class TestInstallationAndWarmup:
    @pytest.mark.asyncio
    async def test_check_installation_ok(self, fake_engine: Path):
        runner = WolframScriptRunner(str(fake_engine))
        assert await runner.check_installation() is True

    @pytest.mark.asyncio
    async def test_check_installation_missing_never_raises(self, tmp_path: Path):
        runner = WolframScriptRunner(str(tmp_path / "missing"))
        assert await runner.check_installation() is False

    @pytest.mark.asyncio
    async def test_warmup_ok(self, fake_engine: Path):
        runner = WolframScriptRunner(str(fake_engine))
        assert await runner.warmup() is True

    @pytest.mark.asyncio
    async def test_warmup_missing_engine_returns_false(self, tmp_path: Path):
        runner = WolframScriptRunner(str(tmp_path / "missing"))
        assert await runner.warmup() is False

    @pytest.mark.asyncio
    async def test_execute_simple_returns_content(self, fake_engine: Path):
        runner = WolframScriptRunner(str(fake_engine))
        assert await runner.execute_simple("1+1") == "2"
