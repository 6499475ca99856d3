"""Daemon settings read from the environment (and an optional ``.env`` file)."""

from __future__ import annotations

import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_POLLING_INTERVAL = 20
DEFAULT_SCAN_TIMEOUT = 8
DEFAULT_MAX_DEVICES = 10
DEFAULT_CONFIG_FILE = Path.home() / ".proximity"
DEFAULT_ACTION_SHELL = "bash"
LOCK_FILENAME = "proximity.lock"


def _env_int(name: str, default: int, minimum: int = 1) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning("Invalid %s=%r, using default %s", name, raw, default)
        return default
    if value < minimum:
        logger.warning("%s=%s is below %s, using default %s", name, value, minimum, default)
        return default
    return value


def _env_path(name: str, default: Path) -> Path:
    raw = os.getenv(name)
    if not raw:
        return default
    return Path(raw).expanduser()


def _default_lock_file() -> Path:
    runtime_dir = os.getenv("XDG_RUNTIME_DIR")
    base = Path(runtime_dir) if runtime_dir else Path(tempfile.gettempdir())
    return base / LOCK_FILENAME


@dataclass
class Settings:
    polling_interval: int = DEFAULT_POLLING_INTERVAL
    scan_timeout: int = DEFAULT_SCAN_TIMEOUT
    max_devices: int = DEFAULT_MAX_DEVICES
    config_file: Path = DEFAULT_CONFIG_FILE
    lock_file: Path | None = None
    action_shell: str = DEFAULT_ACTION_SHELL
    action_timeout: int | None = None
    log_level: int = logging.INFO

    def __post_init__(self) -> None:
        if self.lock_file is None:
            self.lock_file = _default_lock_file()


def _log_level(name: str | None) -> int:
    if not name:
        return logging.INFO
    level = logging.getLevelName(name.strip().upper())
    if isinstance(level, int):
        return level
    logger.warning("Unknown LOG_LEVEL=%r, using INFO", name)
    return logging.INFO


def load_settings() -> Settings:
    """
    Build the daemon settings from environment variables.

    Call ``load_dotenv()`` first to pick up a ``.env`` file.

    Returns:
        A populated Settings instance
    """
    action_timeout = _env_int("ACTION_TIMEOUT_SECONDS", 0, minimum=0)

    return Settings(
        polling_interval=_env_int("POLLING_INTERVAL_SECONDS", DEFAULT_POLLING_INTERVAL),
        scan_timeout=_env_int("SCAN_TIMEOUT_SECONDS", DEFAULT_SCAN_TIMEOUT),
        max_devices=_env_int("MAX_DEVICES", DEFAULT_MAX_DEVICES),
        config_file=_env_path("PROXIMITY_CONFIG_FILE", DEFAULT_CONFIG_FILE),
        lock_file=_env_path("LOCK_FILE", _default_lock_file()),
        action_shell=os.getenv("ACTION_SHELL", DEFAULT_ACTION_SHELL).strip() or DEFAULT_ACTION_SHELL,
        action_timeout=action_timeout or None,
        log_level=_log_level(os.getenv("LOG_LEVEL")),
    )
