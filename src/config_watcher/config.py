"""
Config Watcher Settings

Loads CONFIG_WATCHER_ prefixed environment variables using pydantic-settings.
An optional dotenv file with the same variables is picked up from
``CONFIG_WATCHER_SETTINGS`` (default ``config-watcher.env`` in the working
directory). Command-line flags override both.
"""
from __future__ import annotations

import logging
import os
import re
from pathlib import Path
from typing import Any, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .remote_source import DEFAULT_ENDPOINT, DEFAULT_TIMEOUT_S
from .service_reloader import DEFAULT_COMMAND_TIMEOUT_S, DEFAULT_SERVICE

ENV_PREFIX = "CONFIG_WATCHER_"
SETTINGS_FILE_VAR = f"{ENV_PREFIX}SETTINGS"
DEFAULT_SETTINGS_FILE = "config-watcher.env"
DEFAULT_ENV_PATH = "~/sp1-cluster/infra/.env"

_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
_DURATION_PART_RE = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")
_NUMBER_RE = re.compile(r"\d+(?:\.\d*)?|\.\d+")


class ConfigPathError(RuntimeError):
    pass


def parse_duration(raw: Any) -> float:
    """Parse ``30s``, ``1m``, ``1h30m``, ``500ms`` (or a bare number of seconds)."""
    if isinstance(raw, bool):
        raise ValueError(f"invalid duration: {raw!r}")
    if isinstance(raw, (int, float)):
        return float(raw)
    text = str(raw).strip()
    if _NUMBER_RE.fullmatch(text):
        return float(text)
    pos = 0
    total = 0.0
    for match in _DURATION_PART_RE.finditer(text):
        if match.start() != pos:
            break
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        pos = match.end()
    if pos == 0 or pos != len(text):
        raise ValueError(f"invalid duration: {raw!r}")
    return total


def expand_path(raw: str) -> Path:
    """Expand a leading ``~`` to the home directory.

    Raises ``ConfigPathError`` when the home directory cannot be determined.
    """
    try:
        return Path(raw).expanduser()
    except RuntimeError as exc:
        raise ConfigPathError(f"failed to resolve env path {raw!r}: {exc}") from exc


def resolve_settings_file() -> Optional[Path]:
    candidate = Path(os.getenv(SETTINGS_FILE_VAR, DEFAULT_SETTINGS_FILE)).expanduser()
    if candidate.is_file():
        return candidate
    return None


class WatcherSettings(BaseSettings):
    """Runtime configuration for the env file watcher."""

    model_config = SettingsConfigDict(
        env_prefix=ENV_PREFIX,
        extra="ignore",
    )

    endpoint: str = Field(
        default=DEFAULT_ENDPOINT,
        description="HTTP endpoint to poll for parameter values",
    )
    interval_s: float = Field(
        default=30.0,
        gt=0,
        description="Polling interval; accepts durations like 30s, 1m, 1h30m",
    )
    env_path: str = Field(
        default=DEFAULT_ENV_PATH,
        description="Path to the .env file to keep in sync (~ is expanded)",
    )
    dry_run: bool = Field(
        default=False,
        description="Log systemctl commands instead of running them",
    )
    service: str = Field(
        default=DEFAULT_SERVICE,
        min_length=1,
        description="systemd unit restarted after a confirmed update",
    )
    use_sudo: bool = Field(
        default=True,
        description="Prefix systemctl commands with sudo",
    )
    http_timeout_s: float = Field(
        default=DEFAULT_TIMEOUT_S,
        gt=0,
        description="Timeout for one endpoint request",
    )
    command_timeout_s: float = Field(
        default=DEFAULT_COMMAND_TIMEOUT_S,
        gt=0,
        description="Timeout for each systemctl invocation",
    )

    # --- Logging ---
    log_level: str = Field(default="INFO", description="Log level")

    @field_validator("interval_s", "http_timeout_s", "command_timeout_s", mode="before")
    @classmethod
    def _parse_durations(cls, v):
        return parse_duration(v)

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalise_log_level(cls, v):
        level = str(v).strip().upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f"unknown log level: {v!r}")
        return level

    def resolved_env_path(self) -> Path:
        return expand_path(self.env_path)


def load_settings(**overrides: Any) -> WatcherSettings:
    """Build settings from env vars and the settings file; non-None overrides win."""
    init = {key: value for key, value in overrides.items() if value is not None}
    return WatcherSettings(_env_file=resolve_settings_file(), **init)
