"""Logging utilities for the supervision control plane."""

from __future__ import annotations

import atexit
import importlib
import importlib.util
import logging
import logging.handlers
from pathlib import Path
import queue
import sys
import threading
from typing import Iterable


def _rich_available() -> bool:
    return importlib.util.find_spec("rich") is not None


if _rich_available():
    rich_logging = importlib.import_module("rich.logging")
    rich_console = importlib.import_module("rich.console")
    RichHandler = rich_logging.RichHandler
    Console = rich_console.Console
    console = Console(stderr=True)
else:
    RichHandler = None
    Console = None
    console = None


REDACTED = "<redacted>"


class SecretRedactionFilter(logging.Filter):
    """Replace registered secret values in log records before they are emitted."""

    def __init__(self) -> None:
        super().__init__()
        self._values: set[str] = set()
        self._lock = threading.Lock()

    def register(self, values: Iterable[str]) -> None:
        with self._lock:
            self._values.update(value for value in values if value)

    def unregister(self, values: Iterable[str]) -> None:
        with self._lock:
            for value in values:
                self._values.discard(value)

    def clear(self) -> None:
        with self._lock:
            self._values.clear()

    def scrub(self, text: str) -> str:
        with self._lock:
            values = sorted(self._values, key=len, reverse=True)
        for value in values:
            if value in text:
                text = text.replace(value, REDACTED)
        return text

    def filter(self, record: logging.LogRecord) -> bool:
        with self._lock:
            has_values = bool(self._values)
        if not has_values:
            return True
        message = record.getMessage()
        scrubbed = self.scrub(message)
        if scrubbed != message:
            record.msg = scrubbed
            record.args = None
        return True


redaction_filter = SecretRedactionFilter()


# Handlers this module attached to the control-plane logger. Test runners and
# embedding applications may attach their own next to them.
_installed_handlers: list[logging.Handler] = []


def setup_logging() -> logging.Logger:
    logger = logging.getLogger("warden")
    logger.setLevel(logging.INFO)

    if RichHandler is not None:
        existing = [h for h in logger.handlers if isinstance(h, RichHandler)]
        if existing:
            handler = existing[0]
        else:
            handler = RichHandler(rich_tracebacks=True, console=console, show_path=False)
            formatter = logging.Formatter("%(message)s", datefmt="[%X]")
            handler.setFormatter(formatter)
            handler.addFilter(redaction_filter)
            logger.addHandler(handler)
    else:
        if logger.handlers:
            handler = logger.handlers[0]
        else:
            handler = logging.StreamHandler(sys.stderr)
            formatter = logging.Formatter("%(asctime)s %(levelname)s: %(message)s")
            handler.setFormatter(formatter)
            handler.addFilter(redaction_filter)
            logger.addHandler(handler)
    if handler not in _installed_handlers:
        _installed_handlers.append(handler)

    logger.propagate = False
    return logger


def installed_handlers() -> list[logging.Handler]:
    """Return the handlers this module attached and that are still attached."""

    return [handler for handler in _installed_handlers if handler in logger.handlers]


logger = setup_logging()

_queue_listener: logging.handlers.QueueListener | None = None
_queue_handlers: list[logging.Handler] = []
_file_log_path: Path | None = None
_atexit_registered = False


def set_level(level_name: str) -> None:
    """Set the control-plane logger level from a level name."""

    level = logging.getLevelName(level_name.upper())
    if not isinstance(level, int):
        level = logging.INFO
    logger.setLevel(level)


def _shutdown_file_logging() -> None:
    global _queue_listener

    if _queue_listener is not None:
        _queue_listener.stop()
        _queue_listener = None


def _remove_queue_handlers() -> None:
    for handler in _queue_handlers:
        if handler in logger.handlers:
            logger.removeHandler(handler)
        if handler in _installed_handlers:
            _installed_handlers.remove(handler)
    _queue_handlers.clear()


def enable_file_logging(log_path: Path) -> None:
    """Enable background file logging to the supplied log path."""

    global _queue_listener, _file_log_path, _atexit_registered

    log_path = log_path.expanduser()
    if _file_log_path == log_path and _queue_listener is not None:
        return

    if _queue_listener is not None:
        _queue_listener.stop()
        _queue_listener = None

    _remove_queue_handlers()
    log_path.parent.mkdir(parents=True, exist_ok=True)

    file_handler = logging.FileHandler(log_path, encoding="utf-8")
    file_handler.setLevel(logging.INFO)
    formatter = logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
    file_handler.setFormatter(formatter)

    log_queue: queue.SimpleQueue[logging.LogRecord] = queue.SimpleQueue()
    queue_handler = logging.handlers.QueueHandler(log_queue)
    queue_handler.setLevel(logging.INFO)
    # Records are scrubbed before they are queued; the listener thread never
    # sees a raw secret.
    queue_handler.addFilter(redaction_filter)

    logger.addHandler(queue_handler)
    _queue_handlers.append(queue_handler)
    _installed_handlers.append(queue_handler)

    _queue_listener = logging.handlers.QueueListener(
        log_queue,
        file_handler,
        respect_handler_level=True,
    )
    _queue_listener.start()

    if getattr(_queue_listener, "_thread", None) is not None:
        _queue_listener._thread.daemon = True

    _file_log_path = log_path

    if not _atexit_registered:
        atexit.register(_shutdown_file_logging)
        _atexit_registered = True
