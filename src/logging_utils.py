"""Logging setup for the proximity daemon."""

from __future__ import annotations

import logging
import os
from pathlib import Path


_MODULE_DIR = Path(__file__).resolve().parent
_DEFAULT_MAX_LINES = 1000
LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"


def _checkout_root(module_dir: Path = _MODULE_DIR) -> Path | None:
    """Project root when running from a source checkout (``<root>/src/*.py``)."""

    root = module_dir.parent
    if module_dir.name == "src" and (root / "pyproject.toml").is_file():
        return root
    return None


def default_log_dir(module_dir: Path = _MODULE_DIR) -> Path:
    """``logs/`` in a checkout, otherwise ``$XDG_STATE_HOME/proximity``."""

    root = _checkout_root(module_dir)
    if root is not None:
        return root / "logs"
    state_home = os.getenv("XDG_STATE_HOME")
    base = Path(state_home) if state_home else Path.home() / ".local" / "state"
    return base / "proximity"


def resolve_log_dir(log_dir: str | Path | None = None) -> Path:
    """Return the log directory (argument, then ``LOG_DIR``, then the default), creating it."""

    configured = log_dir or os.getenv("LOG_DIR")
    if configured:
        target = Path(configured).expanduser()
        if not target.is_absolute():
            target = (Path.cwd() / target).resolve()
    else:
        target = default_log_dir()
    target.mkdir(parents=True, exist_ok=True)
    return target


def _max_lines(max_lines: int | None) -> int:
    if max_lines is not None and max_lines > 0:
        return max_lines
    try:
        env_value = int(os.getenv("LOG_MAX_LINES", ""))
    except ValueError:
        return _DEFAULT_MAX_LINES
    return env_value if env_value > 0 else _DEFAULT_MAX_LINES


class LineCappedFileHandler(logging.FileHandler):
    """File handler that truncates its file once it holds ``max_lines`` records.

    A daemon polling every few seconds would otherwise grow its log without
    bound on small boards.
    """

    def __init__(
        self,
        filename: str | Path,
        *,
        max_lines: int | None = None,
        log_dir: str | Path | None = None,
        encoding: str | None = "utf-8",
        delay: bool = False,
    ) -> None:
        path = Path(filename)
        if not path.is_absolute():
            path = resolve_log_dir(log_dir) / path.name
        self.max_lines = _max_lines(max_lines)
        self.line_count = 0
        super().__init__(path, mode="a", encoding=encoding, delay=delay)
        self.line_count = self._existing_lines()

    def _existing_lines(self) -> int:
        path = Path(self.baseFilename)
        if not path.exists():
            return 0
        try:
            with path.open("r", encoding=self.encoding or "utf-8", errors="ignore") as fh:
                return sum(1 for _ in fh)
        except OSError:
            return 0

    def _truncate(self) -> None:
        self.acquire()
        try:
            if self.stream is not None:
                self.stream.close()
            self.stream = open(self.baseFilename, "w", encoding=self.encoding)
            self.line_count = 0
        finally:
            self.release()

    def emit(self, record: logging.LogRecord) -> None:
        if self.line_count >= self.max_lines:
            try:
                self._truncate()
            except OSError:
                self.handleError(record)
                return
        super().emit(record)
        self.line_count += 1


def configure_logger(
    logger: logging.Logger,
    *,
    log_filename: str | None,
    level: int = logging.INFO,
    log_dir: str | Path | None = None,
) -> logging.Logger:
    """Attach a capped file handler (when a filename is given) and a stream handler."""

    logger.setLevel(level)
    if logger.handlers:
        return logger

    formatter = logging.Formatter(LOG_FORMAT)

    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(formatter)
    logger.addHandler(stream_handler)

    if log_filename:
        file_handler = LineCappedFileHandler(log_filename, log_dir=log_dir)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    return logger


def configure_root_logger(log_filename: str | None, level: int = logging.INFO) -> None:
    """Route every module logger through the root logger's handlers."""

    configure_logger(logging.getLogger(), log_filename=log_filename, level=level)
