"""Configuration loader with Pydantic validation and environment variable interpolation."""

from __future__ import annotations

import os
import re
from datetime import date
from pathlib import Path
from typing import Any

import yaml
from dotenv import find_dotenv, load_dotenv
from pydantic import BaseModel, Field, field_validator, model_validator

# Load environment variables at module level
load_dotenv(find_dotenv(usecwd=True))

from tickstream.constants import (
    BATCH_DELAY_MS,
    BATCH_SIZE,
    DEFAULT_DATA_DIRECTORY,
    DEFAULT_HOST,
    DEFAULT_PATH,
    DEFAULT_PORT,
    MAX_PENDING_MESSAGES,
    MAX_RECENT_TICKS,
    METRICS_WINDOW_SIZE,
    SNAPSHOT_SIZE,
    LogLevel,
)


def interpolate_env_vars(value: Any) -> Any:
    """
    Interpolate environment variables in string values.

    Supports formats:
    - ${VAR_NAME} - empty string if not set
    - ${VAR_NAME:default} - optional with default value
    """
    if not isinstance(value, str):
        return value

    pattern = r"\$\{([^}:]+)(?::([^}]*))?\}"

    def replacer(match: re.Match[str]) -> str:
        var_name = match.group(1)
        default = match.group(2)

        env_value = os.environ.get(var_name)

        if env_value is not None:
            return env_value
        elif default is not None:
            return default
        else:
            return ""

    return re.sub(pattern, replacer, value)


def process_config_dict(data: dict[str, Any]) -> dict[str, Any]:
    """Recursively process config dict to interpolate env vars."""
    result = {}
    for key, value in data.items():
        if isinstance(value, dict):
            result[key] = process_config_dict(value)
        elif isinstance(value, list):
            result[key] = [
                process_config_dict(item) if isinstance(item, dict) else interpolate_env_vars(item)
                for item in value
            ]
        else:
            result[key] = interpolate_env_vars(value)
    return result


# Same layout as config/config.yaml; used when no file is given
ENV_CONFIG_TEMPLATE: dict[str, Any] = {
    "environment": {"log_level": "${LOG_LEVEL:INFO}"},
    "server": {"host": f"${{HOST:{DEFAULT_HOST}}}", "port": f"${{PORT:{DEFAULT_PORT}}}"},
    "data": {
        "directory": f"${{DATA_DIRECTORY:{DEFAULT_DATA_DIRECTORY}}}",
        "symbols": "${SYMBOLS:}",
    },
    "replay": {
        "speed": "${REPLAY_SPEED:1}",
        "loop": "${REPLAY_LOOP:true}",
        "start_date": "${REPLAY_START:}",
        "end_date": "${REPLAY_END:}",
    },
    "gateway": {"max_recent_ticks": f"${{MAX_RECENT_TICKS:{MAX_RECENT_TICKS}}}"},
}


# ============================================
# Pydantic Configuration Models
# ============================================


class EnvironmentConfig(BaseModel):
    """Runtime settings."""

    log_level: LogLevel = LogLevel.INFO

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_level(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip().upper() or LogLevel.INFO.value
        return v


class ServerConfig(BaseModel):
    """WebSocket listener settings."""

    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    path: str = DEFAULT_PATH

    @field_validator("port")
    @classmethod
    def validate_port(cls, v: int) -> int:
        if not 0 <= v <= 65535:
            raise ValueError(f"Port must be 0-65535, got: {v}")
        return v

    @field_validator("path")
    @classmethod
    def validate_path(cls, v: str) -> str:
        if not v.startswith("/"):
            raise ValueError(f"Path must start with '/', got: {v}")
        return v


class DataConfig(BaseModel):
    """Dataset location and symbol allow-list."""

    directory: str = DEFAULT_DATA_DIRECTORY
    symbols: list[str] = Field(default_factory=list)

    @field_validator("symbols", mode="before")
    @classmethod
    def split_symbols(cls, v: Any) -> Any:
        """Accept a comma-separated string; upper-case and drop blanks."""
        if v is None:
            return []
        if isinstance(v, str):
            v = v.split(",")
        if isinstance(v, list):
            return [str(s).strip().upper() for s in v if str(s).strip()]
        return v


class ReplaySettings(BaseModel):
    """Replay speed, looping and optional date window."""

    speed: float = 1.0
    loop: bool = True
    start_date: date | None = None
    end_date: date | None = None

    @field_validator("speed")
    @classmethod
    def validate_speed(cls, v: float) -> float:
        if v <= 0:
            raise ValueError(f"Replay speed must be positive, got: {v}")
        return v

    @field_validator("start_date", "end_date", mode="before")
    @classmethod
    def empty_date_is_none(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @model_validator(mode="after")
    def validate_date_range(self) -> ReplaySettings:
        if self.start_date and self.end_date and self.start_date > self.end_date:
            raise ValueError(
                f"start_date ({self.start_date}) must not be after end_date ({self.end_date})"
            )
        return self


class GatewaySettings(BaseModel):
    """Buffering and batching limits."""

    max_recent_ticks: int = MAX_RECENT_TICKS
    snapshot_size: int = SNAPSHOT_SIZE
    batch_size: int = BATCH_SIZE
    batch_delay_ms: float = BATCH_DELAY_MS
    metrics_window: int = METRICS_WINDOW_SIZE
    max_pending_messages: int = MAX_PENDING_MESSAGES

    @field_validator(
        "max_recent_ticks",
        "snapshot_size",
        "batch_size",
        "batch_delay_ms",
        "metrics_window",
        "max_pending_messages",
    )
    @classmethod
    def validate_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError(f"Value must be positive, got: {v}")
        return v


class AppConfig(BaseModel):
    """Root application configuration."""

    environment: EnvironmentConfig = Field(default_factory=EnvironmentConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    data: DataConfig = Field(default_factory=DataConfig)
    replay: ReplaySettings = Field(default_factory=ReplaySettings)
    gateway: GatewaySettings = Field(default_factory=GatewaySettings)


# ============================================
# Configuration Loader
# ============================================


class ConfigLoader:
    """Load and validate configuration from YAML files with env var interpolation."""

    def __init__(self, config_path: str | Path) -> None:
        """
        Initialize config loader.

        Args:
            config_path: Path to the YAML configuration file.
        """
        self.config_path = Path(config_path)
        self._config: AppConfig | None = None

    def load(self) -> AppConfig:
        """
        Load and validate configuration.

        Returns:
            Validated AppConfig instance.

        Raises:
            FileNotFoundError: If config file doesn't exist.
            yaml.YAMLError: If YAML is invalid.
            pydantic.ValidationError: If config validation fails.
        """
        if not self.config_path.exists():
            raise FileNotFoundError(f"Config file not found: {self.config_path}")

        with open(self.config_path, encoding="utf-8") as f:
            raw_config = yaml.safe_load(f)

        if raw_config is None:
            raw_config = {}

        processed_config = process_config_dict(raw_config)
        self._config = AppConfig.model_validate(processed_config)

        return self._config

    @property
    def config(self) -> AppConfig:
        """Get loaded config, loading if necessary."""
        if self._config is None:
            return self.load()
        return self._config

    def reload(self) -> AppConfig:
        """Force reload configuration from disk."""
        self._config = None
        return self.load()


def load_config(config_path: str | Path) -> AppConfig:
    """
    Convenience function to load configuration.

    Args:
        config_path: Path to the YAML configuration file.

    Returns:
        Validated AppConfig instance.
    """
    loader = ConfigLoader(config_path)
    return loader.load()


def load_config_from_env() -> AppConfig:
    """Build configuration from environment variables alone (see ENV_CONFIG_TEMPLATE)."""
    return AppConfig.model_validate(process_config_dict(ENV_CONFIG_TEMPLATE))


def load_config_with_overrides(
    config_path: str | Path | None = None,
    *,
    host: str | None = None,
    port: int | None = None,
    data_dir: str | None = None,
    speed: float | None = None,
    loop: bool | None = None,
    symbols: str | list[str] | None = None,
    log_level: str | None = None,
) -> AppConfig:
    """
    Load configuration with CLI overrides.

    Args:
        config_path: YAML file; when None, configuration comes from the environment.
        host, port: Override the listener address.
        data_dir: Override the dataset directory.
        speed, loop: Override replay settings.
        symbols: Override the symbol allow-list (comma-separated or list).
        log_level: Override the log level.

    Returns:
        Validated AppConfig instance with overrides applied.
    """
    config = load_config(config_path) if config_path else load_config_from_env()

    # Re-validate through model_validate so validators run on overrides
    data = config.model_dump()

    if host is not None:
        data["server"]["host"] = host
    if port is not None:
        data["server"]["port"] = port
    if data_dir is not None:
        data["data"]["directory"] = data_dir
    if symbols is not None:
        data["data"]["symbols"] = symbols
    if speed is not None:
        data["replay"]["speed"] = speed
    if loop is not None:
        data["replay"]["loop"] = loop
    if log_level is not None:
        data["environment"]["log_level"] = log_level

    return AppConfig.model_validate(data)
