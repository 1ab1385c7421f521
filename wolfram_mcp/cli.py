"""CLI for running and checking the Wolfram MCP server."""

from __future__ import annotations

import asyncio
from pathlib import Path

from rich.console import Console
from rich.markup import escape
from rich.table import Table
import typer

from wolfram_mcp.config import WolframMcpConfig, load_config
from wolfram_mcp.errors import ConfigurationError, WolframMcpError
from wolfram_mcp.models import OutputFormat

app = typer.Typer(
    name="wolfram-mcp",
    help="Wolfram MCP Server CLI",
    add_completion=False,
)
console = Console()
# stdout carries the stdio transport; human output for `serve` goes to stderr
err_console = Console(stderr=True)

ConfigOption = typer.Option(None, "--config", "-c", help="Path to wolfram-mcp.toml")


def _load(config_path: Path | None) -> WolframMcpConfig:
    try:
        return load_config(config_path)
    except ConfigurationError as e:
        err_console.print(f"[red]✗[/] {escape(e.message)}")
        raise typer.Exit(2) from None


@app.command()
def serve(
    config_path: Path | None = ConfigOption,
    transport: str | None = typer.Option(
        None, "--transport", "-t", help="Transport: stdio or http"
    ),
    host: str | None = typer.Option(None, "--host", "-H", help="HTTP bind address"),
    port: int | None = typer.Option(None, "--port", "-p", help="HTTP port"),
    log_level: str | None = typer.Option(None, "--log-level", "-l", help="Override log level"),
) -> None:
    """Start the MCP server."""
    from wolfram_mcp.health import ServerHealth
    from wolfram_mcp.observability import setup_logging
    from wolfram_mcp.server import serve as run_server

    config = _load(config_path)

    # CLI flags beat ENV and TOML
    if transport:
        config.server.transport = transport.lower()
    if host:
        config.server.host = host
    if port:
        config.server.port = port
    if log_level:
        config.logging.level = log_level.lower()
    try:
        config.validate()
    except ConfigurationError as e:
        err_console.print(f"[red]✗[/] {escape(e.message)}")
        raise typer.Exit(2) from None

    setup_logging(config.logging)

    try:
        asyncio.run(run_server(config, ServerHealth()))
    except KeyboardInterrupt:
        err_console.print("[yellow]![/] Interrupted")
    except WolframMcpError as e:
        err_console.print(f"[red]✗[/] {escape(e.message)}")
        raise typer.Exit(1) from None


@app.command()
def check(config_path: Path | None = ConfigOption) -> None:
    """Check the WolframScript installation and warm up the kernel."""
    from wolfram_mcp.engine.executor import WolframScriptRunner

    config = _load(config_path)
    runner = WolframScriptRunner(config.engine.path)

    async def _check() -> tuple[bool, bool]:
        installed = await runner.check_installation()
        warmed = await runner.warmup() if installed else False
        return installed, warmed

    installed, warmed = asyncio.run(_check())

    table = Table(show_header=False)
    table.add_row("Engine path:", config.engine.path)
    table.add_row("Installed:", "[green]yes[/]" if installed else "[red]no[/]")
    table.add_row("Kernel warmup:", "[green]ok[/]" if warmed else "[red]failed[/]")
    table.add_row("Default timeout:", f"{config.engine.default_timeout}s")
    table.add_row("Max timeout:", f"{config.engine.max_timeout}s")
    console.print(table)

    if not (installed and warmed):
        raise typer.Exit(1)
    console.print("[green]✓[/] WolframScript ready")


@app.command(name="exec")
def exec_code(
    code: str = typer.Argument(..., help="Wolfram Language code to evaluate"),
    fmt: OutputFormat = typer.Option(OutputFormat.TEXT, "--format", "-f", help="Output format"),
    timeout: int | None = typer.Option(None, "--timeout", help="Timeout in seconds"),
    cwd: Path | None = typer.Option(None, "--cwd", help="Working directory"),
    config_path: Path | None = ConfigOption,
) -> None:
    """Evaluate one expression and print the formatted result."""
    from wolfram_mcp.dispatch import effective_timeout
    from wolfram_mcp.engine.executor import WolframScriptRunner
    from wolfram_mcp.engine.formatter import format_for_terminal, truncate_result

    config = _load(config_path)
    runner = WolframScriptRunner(config.engine.path)
    seconds = effective_timeout(timeout, config.engine.default_timeout, config.engine.max_timeout)

    try:
        result = asyncio.run(
            runner.execute(code, seconds, fmt, str(cwd) if cwd else None)
        )
    except WolframMcpError as e:
        console.print(f"[red]✗[/] {e.kind}: {escape(e.message)}")
        raise typer.Exit(1) from None

    result = truncate_result(result, config.engine.max_output_length)
    console.print(format_for_terminal(result), markup=False, highlight=False)


@app.command()
def health(
    url: str | None = typer.Option(None, "--url", "-u", help="Health endpoint URL"),
    config_path: Path | None = ConfigOption,
) -> None:
    """Quick health check of a running HTTP server (exit code 0 = healthy)."""
    import httpx

    if url is None:
        config = _load(config_path)
        url = f"http://{config.server.host}:{config.server.port}/health"

    try:
        r = httpx.get(url, timeout=5)
    except httpx.HTTPError as e:
        console.print(f"[red]✗[/] Health check failed: {escape(str(e))}")
        raise typer.Exit(1) from None

    try:
        data = r.json()
    except ValueError:
        data = {}

    if r.status_code == 200:
        console.print(f"[green]✓[/] Server healthy (uptime {data.get('uptime') or 0:.0f}s)")
        return

    console.print(
        f"[red]✗[/] Health check failed (HTTP {r.status_code}, status={data.get('status', 'unknown')})"
    )
    for name in data.get("failedChecks", []):
        console.print(f"  [red]●[/] {name}")
    if data.get("error"):
        console.print(f"  {escape(str(data['error']))}")
    raise typer.Exit(1)


@app.command(name="generate-key")
def generate_key(
    length: int = typer.Option(32, "--length", "-n", min=16, help="Key length"),
) -> None:
    """Print a new random API key for MCP_API_KEY."""
    from wolfram_mcp.transport.auth import generate_api_key

    key = generate_api_key(length)
    console.print(key, markup=False, highlight=False)


def main() -> None:
    """Entry point for wolfram-mcp CLI."""
    app()


if __name__ == "__main__":
    main()
