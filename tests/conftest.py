from pathlib import Path
import stat
import sys
import textwrap

import pytest

# Ensure repo root is importable when the package is not installed.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from wolfram_mcp.config import WolframMcpConfig  # noqa: E402

# Stands in for wolframscript: same argv contract, canned answers.
FAKE_ENGINE_SOURCE = textwrap.dedent(
    """
    import os
    import sys
    import time

    args = sys.argv[1:]
    if args == ["-version"]:
        print("WolframScript 1.10.0 for Linux x86 (64-bit)")
        sys.exit(0)

    if len(args) != 4 or args[0] != "-timeout" or args[2] != "-code":
        sys.stderr.write("usage: wolframscript -timeout N -code CODE\\n")
        sys.exit(64)

    code = args[3]
    if code == "1+1":
        print("2")
    elif code.startswith("TeXForm["):
        print("\\\\frac{1}{2}")
    elif code.startswith("InputForm["):
        print("1/2")
    elif code == "Pause[5]":
        pid_file = os.environ.get("FAKE_ENGINE_PID_FILE")
        if pid_file:
            with open(pid_file, "w") as f:
                f.write(str(os.getpid()))
        time.sleep(5)
        print("Null")
    elif code == "ColorOut":
        print("\\x1b[1;32mgreen\\x1b[0m\\r")
    elif code == "Warn":
        sys.stderr.write("Failed to open configuaration file at path: /root/.config\\n")
        print("ok")
    elif code == "Noise":
        sys.stderr.write("General::stop: Further output will be suppressed\\n")
        print("ok")
    elif code == "Crash":
        sys.stderr.write("Syntax::sntxf: bad input\\n")
        sys.exit(1)
    elif code == "SilentCrash":
        sys.exit(3)
    elif code == "Cwd":
        print(os.getcwd())
    elif code == "Big":
        print("x" * 20000)
    elif code == "Args":
        print("|".join(args))
    else:
        print(code)
    """
)


@pytest.fixture(autouse=True)
def hermetic_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """
    Autouse: each test runs in its own tmp cwd with no server env overrides.
    """
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("XDG_CACHE_HOME", str(tmp_path / ".cache"))
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / ".config"))
    for name in (
        "WOLFRAM_MCP_CONFIG",
        "MCP_TRANSPORT",
        "MCP_HTTP_HOST",
        "MCP_HTTP_PORT",
        "MCP_TRUST_PROXY",
        "MCP_API_KEY",
        "WOLFRAM_SCRIPT_PATH",
        "DEFAULT_TIMEOUT",
        "MAX_TIMEOUT",
        "KERNEL_WARMUP_DELAY",
        "MAX_OUTPUT_LENGTH",
        "LOG_LEVEL",
        "LOG_FORMAT",
    ):
        monkeypatch.delenv(name, raising=False)
    return tmp_path


@pytest.fixture
def fake_engine(tmp_path_factory: pytest.TempPathFactory) -> Path:
    """Executable fake wolframscript running under the test interpreter."""
    bin_dir = tmp_path_factory.mktemp("bin")
    script = bin_dir / "wolframscript"
    script.write_text(f"#!{sys.executable}\n{FAKE_ENGINE_SOURCE}")
    script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return script


@pytest.fixture
def config(fake_engine: Path) -> WolframMcpConfig:
    cfg = WolframMcpConfig()
    cfg.engine.path = str(fake_engine)
    cfg.engine.warmup_delay = 0
    return cfg
