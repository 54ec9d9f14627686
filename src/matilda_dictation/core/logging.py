"""Centralized logging setup for Matilda Dictation.

Every module logs through one process-wide queue so that the asyncio event
loop never blocks on file or console I/O. Records are written to one
rotating file per area (``recognition``, ``adapters``, ``server``), picked by
the ``log_filename`` a module passes to ``setup_logging``.
"""

import atexit
import logging
import os
import sys
import threading
from logging.handlers import QueueHandler, QueueListener, RotatingFileHandler
from pathlib import Path
from queue import SimpleQueue

DEFAULT_AREA = "main"
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_LISTENER_LOCK = threading.Lock()
_LOG_QUEUE: SimpleQueue | None = None
_LOG_LISTENER: QueueListener | None = None


def _is_truthy(value: str | None) -> bool:
    return (value or "").strip().lower() in {"1", "true", "yes"}


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.environ.get(name, str(default)))
    except ValueError:
        return default


def area_for(log_filename: str | None) -> str:
    """Map a module's log_filename ("server.txt") to its area name ("server")."""
    if not log_filename:
        return DEFAULT_AREA
    return Path(log_filename).stem or DEFAULT_AREA


def resolve_logs_dir() -> Path | None:
    env_dir = os.environ.get("MATILDA_LOG_DIR") or os.environ.get("MATILDA_DICTATION_LOG_DIR")
    logs_dir = Path(env_dir) if env_dir else Path.home() / ".matilda" / "logs"

    try:
        logs_dir.mkdir(parents=True, exist_ok=True)
    except OSError:
        return None
    return logs_dir


class _AreaFilter(logging.Filter):
    """Tags records with the area of the logger that produced them."""

    def __init__(self, area: str) -> None:
        super().__init__()
        self.area = area

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "dictation_area"):
            record.dictation_area = self.area
        return True


class AreaFileHandler(logging.Handler):
    """Routes records to ``dictation-<area>.log`` files, opened on first use.

    Runs on the queue listener thread only.
    """

    def __init__(self, logs_dir: Path, max_bytes: int, backup_count: int) -> None:
        super().__init__()
        self.logs_dir = logs_dir
        self.max_bytes = max_bytes
        self.backup_count = backup_count
        self._files: dict[str, logging.Handler | None] = {}

    def path_for(self, area: str) -> Path:
        return self.logs_dir / f"dictation-{area}.log"

    def _handler_for(self, area: str) -> logging.Handler | None:
        if area not in self._files:
            try:
                handler = RotatingFileHandler(
                    self.path_for(area), maxBytes=self.max_bytes, backupCount=self.backup_count
                )
                handler.setFormatter(self.formatter)
            except OSError:
                handler = None
            self._files[area] = handler
        return self._files[area]

    def emit(self, record: logging.LogRecord) -> None:
        handler = self._handler_for(getattr(record, "dictation_area", DEFAULT_AREA))
        if handler is not None:
            handler.emit(record)

    def close(self) -> None:
        for handler in self._files.values():
            if handler is not None:
                handler.close()
        self._files.clear()
        super().close()


def _stop_listener() -> None:
    global _LOG_LISTENER
    if _LOG_LISTENER is not None:
        _LOG_LISTENER.stop()
        for handler in _LOG_LISTENER.handlers:
            handler.close()
        _LOG_LISTENER = None


def _ensure_listener(log_level: int, include_console: bool, include_file: bool) -> QueueListener | None:
    global _LOG_QUEUE, _LOG_LISTENER
    with _LISTENER_LOCK:
        if _LOG_LISTENER is not None and _LOG_QUEUE is not None:
            return _LOG_LISTENER

        handlers: list[logging.Handler] = []
        formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

        logs_dir = resolve_logs_dir() if include_file else None
        if logs_dir is not None:
            file_handler = AreaFileHandler(
                logs_dir,
                max_bytes=_env_int("MATILDA_LOG_MAX_BYTES", 10 * 1024 * 1024),
                backup_count=_env_int("MATILDA_LOG_BACKUP_COUNT", 5),
            )
            file_handler.setLevel(log_level)
            file_handler.setFormatter(formatter)
            handlers.append(file_handler)

        # stdout carries CLI --json output
        if include_console:
            console_handler = logging.StreamHandler(sys.stderr)
            console_handler.setLevel(log_level)
            console_handler.setFormatter(formatter)
            handlers.append(console_handler)

        if not handlers:
            return None

        _LOG_QUEUE = SimpleQueue()
        _LOG_LISTENER = QueueListener(_LOG_QUEUE, *handlers, respect_handler_level=True)
        _LOG_LISTENER.start()
        atexit.register(_stop_listener)
        return _LOG_LISTENER


def setup_logging(
    module_name: str,
    log_level: str = "INFO",
    include_console: bool | None = None,
    include_file: bool = True,
    log_filename: str | None = None,
) -> logging.Logger:
    """Setup standardized logging for dictation modules.

    Args:
        module_name: Name of the module (usually __name__)
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        include_console: Whether to log to stderr. If None, uses
            MATILDA_DICTATION_CONSOLE_LOGS ("1"/"true"/"yes" enables).
        include_file: Whether to log to the rotating file sinks
        log_filename: Area file for this module ("recognition.txt" writes to
            dictation-recognition.log). Defaults to dictation-main.log.

    Returns:
        Configured logger instance

    """
    logger = logging.getLogger(module_name)

    if logger.handlers:
        return logger

    level = getattr(logging, log_level.upper())
    logger.setLevel(level)
    if include_console is None:
        include_console = _is_truthy(os.environ.get("MATILDA_DICTATION_CONSOLE_LOGS"))

    # Prevent propagation to root logger to avoid duplicate console output
    logger.propagate = False

    listener = _ensure_listener(level, include_console, include_file)
    if listener is None or _LOG_QUEUE is None:
        logger.addHandler(logging.NullHandler())
        return logger

    queue_handler = QueueHandler(_LOG_QUEUE)
    queue_handler.setLevel(level)
    queue_handler.addFilter(_AreaFilter(area_for(log_filename)))
    logger.addHandler(queue_handler)

    return logger


def get_logger(module_name: str) -> logging.Logger:
    """Get a logger for a module with default settings."""
    return setup_logging(module_name)


__all__ = ["setup_logging", "get_logger", "area_for", "resolve_logs_dir", "AreaFileHandler"]
