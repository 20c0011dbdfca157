"""Process-wide boot logger with a level filter that can be changed at run time."""

from __future__ import annotations

import threading
from enum import IntEnum

__all__ = [
    "LevelFilter",
    "SetLoggerError",
    "LogWriter",
    "LblLogger",
    "init_global_logger",
    "set_log_level",
    "get_log_level",
    "set_global_writer",
    "get_logger",
]


class LevelFilter(IntEnum):
    """Verbosity threshold; also used as the level of a single record."""

    OFF = 0
    ERROR = 1
    WARN = 2
    INFO = 3
    DEBUG = 4
    TRACE = 5


_LEVEL_LABELS = {
    LevelFilter.ERROR: "ERROR",
    LevelFilter.WARN: "WARN ",
    LevelFilter.INFO: "INFO ",
    LevelFilter.DEBUG: "DEBUG",
    LevelFilter.TRACE: "TRACE",
}

_OWN_TARGET = "lblcore.logger"


class SetLoggerError(RuntimeError):
    """Raised when the global logger is installed a second time."""


class LogWriter:
    """Sink for formatted log lines. The base class discards all output."""

    def write(self, text: str) -> None:
        """Accept one formatted line; the base sink drops it."""

    def flush(self) -> None:
        """Flush buffered output; the base sink has none."""


class LblLogger:
    """Filters records by level and forwards formatted lines to a writer."""

    def __init__(
        self,
        level_filter: LevelFilter = LevelFilter.INFO,
        writer: LogWriter | None = None,
    ) -> None:
        self.level_filter = LevelFilter(level_filter)
        self.writer = writer if writer is not None else LogWriter()
        self._lock = threading.Lock()

    def enabled(self, level: LevelFilter) -> bool:
        """Return True if a record at ``level`` passes the current filter."""
        level = LevelFilter(level)
        return level is not LevelFilter.OFF and level <= self.level_filter

    def log(self, level: LevelFilter, target: str, message: str) -> bool:
        """Write a record if enabled; return whether it was written."""
        level = LevelFilter(level)
        if level is LevelFilter.OFF:
            raise ValueError("OFF is a filter, not a record level")
        if not self.enabled(level):
            return False
        line = f"[LBL {_LEVEL_LABELS[level]}] {target}: {message}\n"
        with self._lock:
            self.writer.write(line)
        return True

    def flush(self) -> None:
        """Flush the attached writer."""
        with self._lock:
            self.writer.flush()


_LOGGER = LblLogger()
_state_lock = threading.Lock()
_installed = False


def init_global_logger(max_level: LevelFilter) -> None:
    """Install the global logger with the given level.

    The level is applied even when installation fails; a second call
    raises :class:`SetLoggerError`.
    """
    global _installed
    with _state_lock:
        _LOGGER.level_filter = LevelFilter(max_level)
        if _installed:
            raise SetLoggerError(
                "attempted to set a logger after the logging system was already initialized"
            )
        _installed = True


def set_log_level(level: LevelFilter) -> None:
    """Change the active level filter and announce the change."""
    level = LevelFilter(level)
    _LOGGER.level_filter = level
    if _installed:
        _LOGGER.log(
            LevelFilter.INFO,
            _OWN_TARGET,
            f"[Logger] Log level set to: {level.name.capitalize()}",
        )


def get_log_level() -> LevelFilter:
    """Return the active level filter."""
    return _LOGGER.level_filter


def set_global_writer(writer: LogWriter | None) -> None:
    """Direct global log output to ``writer`` (None restores the discarding sink)."""
    _LOGGER.writer = writer if writer is not None else LogWriter()


def get_logger() -> LblLogger:
    """Return the process-wide logger."""
    return _LOGGER