"""MCP configuration loader - reads from wolfram-mcp.toml with ENV overrides."""  # noqa: I001

from __future__ import annotations

from dataclasses import dataclass, field
import logging
import os
from pathlib import Path
import tomllib
from typing import Any, cast

from wolfram_mcp.errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = "wolfram-mcp.toml"
LOG_LEVELS = ("debug", "info", "warning", "warn", "error", "critical")


@dataclass
class ServerConfig:
    """Server transport settings."""

    transport: str = "stdio"
    host: str = "127.0.0.1"
    port: int = 3000
    trust_proxy: bool = False

    def validate(self) -> None:
        if self.transport not in ("stdio", "http"):
            raise ConfigurationError(f"Invalid transport: {self.transport}")
        if not (1 <= self.port <= 65535):
            raise ConfigurationError(f"Invalid port: {self.port}")


@dataclass
class AuthConfig:
    """Bearer authentication for the HTTP transport. No key means auth is off."""

    api_key: str | None = None

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    def validate(self) -> None:
        if self.api_key is not None and not isinstance(self.api_key, str):
            raise ConfigurationError("api_key must be a string")


@dataclass
class EngineConfig:
    """WolframScript engine settings. Timeouts are in seconds."""

    path: str = "wolframscript"
    default_timeout: int = 30
    max_timeout: int = 300
    warmup_delay: int = 5
    max_output_length: int = 10000  # 0 disables truncation

    def validate(self) -> None:
        if not self.path:
            raise ConfigurationError("engine path must not be empty")
        if self.default_timeout <= 0:
            raise ConfigurationError("default_timeout must be positive")
        if self.max_timeout <= 0:
            raise ConfigurationError("max_timeout must be positive")
        if not (0 <= self.warmup_delay <= 180):
            raise ConfigurationError("warmup_delay must be between 0 and 180 seconds")
        if self.max_output_length < 0:
            raise ConfigurationError("max_output_length must not be negative")
        if self.default_timeout > self.max_timeout:
            logger.warning(
                f"default_timeout ({self.default_timeout}s) exceeds max_timeout "
                f"({self.max_timeout}s); clamping to {self.max_timeout}s"
            )
            self.default_timeout = self.max_timeout


@dataclass
class LoggingConfig:
    """Logging and metrics settings."""

    level: str = "info"
    format: str = "text"  # "json" | "text"
    include_correlation_id: bool = True
    metrics_enabled: bool = True

    def validate(self) -> None:
        if self.level.lower() not in LOG_LEVELS:
            raise ConfigurationError(f"Invalid log level: {self.level}")
        if self.format not in ("json", "text"):
            raise ConfigurationError(f"Invalid log format: {self.format}")


@dataclass
class WolframMcpConfig:
    """Root configuration."""

    server: ServerConfig = field(default_factory=ServerConfig)
    auth: AuthConfig = field(default_factory=AuthConfig)
    engine: EngineConfig = field(default_factory=EngineConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    def validate(self) -> None:
        self.server.validate()
        self.auth.validate()
        self.engine.validate()
        self.logging.validate()

    def describe(self) -> dict[str, Any]:
        """Config summary safe to log or print. The API key is redacted."""
        return {
            "server": {
                "transport": self.server.transport,
                "host": self.server.host,
                "port": self.server.port,
                "trust_proxy": self.server.trust_proxy,
            },
            "auth": {
                "enabled": self.auth.enabled,
                "api_key": "[REDACTED]" if self.auth.api_key else None,
            },
            "engine": {
                "path": self.engine.path,
                "default_timeout": self.engine.default_timeout,
                "max_timeout": self.engine.max_timeout,
                "warmup_delay": self.engine.warmup_delay,
                "max_output_length": self.engine.max_output_length,
            },
            "logging": {
                "level": self.logging.level,
                "format": self.logging.format,
            },
        }


def _env_bool(value: str) -> bool:
    return value.lower() in ("1", "true", "yes")


def _env_int(name: str, current: int) -> int:
    raw = os.getenv(name)
    if not raw:
        return current
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from None


def _apply_env_overrides(cfg: WolframMcpConfig) -> WolframMcpConfig:
    """Apply environment variable overrides. ENV beats TOML."""
    # Server
    if os.getenv("MCP_TRANSPORT"):
        cfg.server.transport = os.getenv("MCP_TRANSPORT", cfg.server.transport).lower()
    if os.getenv("MCP_HTTP_HOST"):
        cfg.server.host = os.getenv("MCP_HTTP_HOST", cfg.server.host)
    cfg.server.port = _env_int("MCP_HTTP_PORT", cfg.server.port)
    if os.getenv("MCP_TRUST_PROXY"):
        cfg.server.trust_proxy = _env_bool(os.getenv("MCP_TRUST_PROXY", ""))

    # Auth
    if os.getenv("MCP_API_KEY"):
        cfg.auth.api_key = os.getenv("MCP_API_KEY")

    # Engine
    if os.getenv("WOLFRAM_SCRIPT_PATH"):
        cfg.engine.path = os.getenv("WOLFRAM_SCRIPT_PATH", cfg.engine.path)
    cfg.engine.default_timeout = _env_int("DEFAULT_TIMEOUT", cfg.engine.default_timeout)
    cfg.engine.max_timeout = _env_int("MAX_TIMEOUT", cfg.engine.max_timeout)
    cfg.engine.warmup_delay = _env_int("KERNEL_WARMUP_DELAY", cfg.engine.warmup_delay)
    cfg.engine.max_output_length = _env_int("MAX_OUTPUT_LENGTH", cfg.engine.max_output_length)

    # Logging
    if os.getenv("LOG_LEVEL"):
        cfg.logging.level = os.getenv("LOG_LEVEL", cfg.logging.level).lower()
    if os.getenv("LOG_FORMAT"):
        cfg.logging.format = os.getenv("LOG_FORMAT", cfg.logging.format).lower()

    return cfg


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    section = data.get(name, {})
    if not isinstance(section, dict):
        raise ConfigurationError(f"[{name}] must be a table")
    return section


def load_config(config_path: str | Path | None = None) -> WolframMcpConfig:
    """
    Load config from wolfram-mcp.toml with ENV overrides.

    Precedence: ENV → TOML → defaults

    Args:
        config_path: Path to the TOML file. If None, searches:
            1. WOLFRAM_MCP_CONFIG env var
            2. ./wolfram-mcp.toml

    Returns:
        WolframMcpConfig dataclass with merged, validated settings.

    Raises:
        ConfigurationError: Unreadable file or out-of-range value.
    """
    if config_path is None:
        if os.getenv("WOLFRAM_MCP_CONFIG"):
            config_path = Path(cast(str, os.getenv("WOLFRAM_MCP_CONFIG")))
        else:
            config_path = Path(DEFAULT_CONFIG_FILE)
    else:
        config_path = Path(config_path)

    cfg = WolframMcpConfig()

    if config_path.exists():
        try:
            with open(config_path, "rb") as f:
                data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ConfigurationError(f"Invalid TOML in {config_path}: {e}") from e

        # Server
        srv = _section(data, "server")
        cfg.server.transport = srv.get("transport", cfg.server.transport)
        cfg.server.host = srv.get("host", cfg.server.host)
        cfg.server.port = srv.get("port", cfg.server.port)
        cfg.server.trust_proxy = srv.get("trust_proxy", cfg.server.trust_proxy)

        # Auth
        auth = _section(data, "auth")
        cfg.auth.api_key = auth.get("api_key", cfg.auth.api_key)

        # Engine
        eng = _section(data, "engine")
        cfg.engine.path = eng.get("path", cfg.engine.path)
        cfg.engine.default_timeout = eng.get("default_timeout", cfg.engine.default_timeout)
        cfg.engine.max_timeout = eng.get("max_timeout", cfg.engine.max_timeout)
        cfg.engine.warmup_delay = eng.get("warmup_delay", cfg.engine.warmup_delay)
        cfg.engine.max_output_length = eng.get(
            "max_output_length", cfg.engine.max_output_length
        )

        # Logging
        log = _section(data, "logging")
        cfg.logging.level = log.get("level", cfg.logging.level)
        cfg.logging.format = log.get("format", cfg.logging.format)
        cfg.logging.include_correlation_id = log.get(
            "include_correlation_id", cfg.logging.include_correlation_id
        )
        cfg.logging.metrics_enabled = log.get("metrics_enabled", cfg.logging.metrics_enabled)

    # Apply ENV overrides (highest precedence)
    cfg = _apply_env_overrides(cfg)

    # Validate final config
    cfg.validate()

    return cfg
