"""XDG config loading."""

from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import Literal, cast

from pydantic import BaseModel, ConfigDict, Field, field_validator

if sys.version_info >= (3, 11):
    import tomllib
else:  # pragma: no cover
    import tomli as tomllib

DEFAULT_CONFIG_PATH = Path("~/.config/cwdsync/config.toml").expanduser()
DEFAULT_TITLE = "Terminal"
DEFAULT_SLOT_LABEL = "workspace"
DEFAULT_DEDUPE_WINDOW_MS = 500
DEFAULT_HOME_COMMAND = "cd ~"
SHELL_ENV = "CWDSYNC_SHELL"

LogLevel = Literal["DEBUG", "INFO", "WARN", "ERROR"]
_VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARN", "ERROR"}


class AppConfig(BaseModel):
    model_config = ConfigDict(validate_assignment=True)

    shell: str = ""
    default_title: str = DEFAULT_TITLE
    initial_slot_label: str = DEFAULT_SLOT_LABEL
    dedupe_window_ms: int = Field(default=DEFAULT_DEDUPE_WINDOW_MS, ge=0, le=5000)
    cols: int = Field(default=80, ge=1)
    rows: int = Field(default=24, ge=1)
    home_command: str = DEFAULT_HOME_COMMAND
    log_level: LogLevel = "INFO"

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalize_log_level(cls, value: object) -> object:
        if isinstance(value, str):
            normalized = value.strip().upper()
            return "WARN" if normalized == "WARNING" else normalized
        return value

    @property
    def dedupe_window_seconds(self) -> float:
        return self.dedupe_window_ms / 1000.0


def get_config_path(path: str | Path | None = None) -> Path:
    if path is None:
        return DEFAULT_CONFIG_PATH
    return Path(path).expanduser()


def _positive_int(value: object) -> int | None:
    if isinstance(value, bool) or not isinstance(value, int):
        return None
    return value if value > 0 else None


def _sanitize(raw: dict[str, object]) -> AppConfig:
    cfg = AppConfig()

    shell = raw.get("shell", cfg.shell)
    if isinstance(shell, str):
        cfg.shell = shell.strip()

    default_title = raw.get("default_title", cfg.default_title)
    if isinstance(default_title, str):
        cfg.default_title = default_title

    initial_slot_label = raw.get("initial_slot_label", cfg.initial_slot_label)
    if isinstance(initial_slot_label, str) and initial_slot_label.strip():
        cfg.initial_slot_label = initial_slot_label.strip()

    window = raw.get("dedupe_window_ms", cfg.dedupe_window_ms)
    if isinstance(window, int) and not isinstance(window, bool) and 0 <= window <= 5000:
        cfg.dedupe_window_ms = window

    cols = _positive_int(raw.get("cols"))
    if cols is not None:
        cfg.cols = cols
    rows = _positive_int(raw.get("rows"))
    if rows is not None:
        cfg.rows = rows

    home_command = raw.get("home_command", cfg.home_command)
    if isinstance(home_command, str) and home_command.strip():
        cfg.home_command = home_command.strip()

    log_level = raw.get("log_level", cfg.log_level)
    if isinstance(log_level, str):
        normalized = log_level.strip().upper()
        if normalized == "WARNING":
            normalized = "WARN"
        if normalized in _VALID_LOG_LEVELS:
            cfg.log_level = cast(LogLevel, normalized)

    return cfg


def _apply_env(cfg: AppConfig) -> AppConfig:
    env_shell = os.getenv(SHELL_ENV, "").strip()
    if env_shell:
        cfg.shell = env_shell
    return cfg


def load_config(path: str | Path | None = None) -> AppConfig:
    resolved = get_config_path(path)
    if not resolved.exists():
        return _apply_env(AppConfig())
    try:
        with resolved.open("rb") as handle:
            raw = tomllib.load(handle)
    except (tomllib.TOMLDecodeError, OSError):
        return _apply_env(AppConfig())
    if not isinstance(raw, dict):
        return _apply_env(AppConfig())
    return _apply_env(_sanitize(raw))
