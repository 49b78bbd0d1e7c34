"""Levelled console output, with variants that cooperate with progress bars."""

from __future__ import annotations

import math
import sys
from enum import IntEnum
from typing import Any, Callable, TextIO


class LogLevel(IntEnum):
    """Severity of a log line; lower values are more verbose."""

    TRACE = 0
    DEBUG = 1
    INFO = 2
    WARN = 3
    ERROR = 4

    def should_print(self, at_level: "LogLevel") -> bool:
        """Return True if a line at at_level is shown when this is the set level."""
        return self <= at_level

    def prefix(self) -> str:
        """Return the tag printed before a line at this level."""
        if _log_level == LogLevel.INFO:
            if self in (LogLevel.WARN, LogLevel.ERROR):
                return _tag(self)
            return ""
        return _tag(self)


class CommandFailed(Exception):
    """Signals that a command has failed after its error was already printed."""


def _stdout_is_terminal() -> bool:
    try:
        return bool(sys.stdout and sys.stdout.isatty())
    except (AttributeError, ValueError):
        return False


_USE_COLOR = sys.platform != "win32" and _stdout_is_terminal()
_COLOR_NONE = "\033[0m" if _USE_COLOR else ""
_COLORS = {
    LogLevel.TRACE: "\033[0m" if _USE_COLOR else "",
    LogLevel.DEBUG: "\033[0;34m" if _USE_COLOR else "",
    # Info keeps its colour even when output is not a terminal
    LogLevel.INFO: "\033[0;32m",
    LogLevel.WARN: "\033[0;93m" if _USE_COLOR else "",
    LogLevel.ERROR: "\033[0;31m" if _USE_COLOR else "",
}
_LABELS = {
    LogLevel.TRACE: "TRACE",
    LogLevel.DEBUG: "DEBUG",
    LogLevel.INFO: "INFO ",
    LogLevel.WARN: "WARN ",
    LogLevel.ERROR: "ERROR",
}


def _tag(level: LogLevel) -> str:
    return f"{_COLORS[level]}[{_LABELS[level]}] {_COLOR_NONE}"


_log_level = LogLevel.INFO
_progress_style = "plain"
_progress_enabled = True
_stdout: TextIO | None = None
_stderr: TextIO | None = None


def _out() -> TextIO:
    return _stdout if _stdout is not None else sys.stdout


def _err() -> TextIO:
    return _stderr if _stderr is not None else sys.stderr


def _progress_style_name() -> str:
    return _progress_style


def _should_print_progress() -> bool:
    if not _stdout_is_terminal():
        return False
    return _progress_style not in ("none", "false")


def format_bytes(i: int) -> str:
    """Format a byte count with binary units, rounded down to a tenth."""
    if i == 0:
        return "0 B"
    if i < 1024:
        return f"{i} B"
    unit = 1024.0
    size = i / unit
    for suffix in ("KiB", "MiB", "GiB", "TiB"):
        if size < unit:
            # Round down so that e.g. 1 MiB - 1 B does not show as 1024.0 KiB
            nice = math.floor(size * 10) / 10
            return f"{nice:.1f} {suffix}"
        size /= unit
    return f"{size:.1f} PiB"


def set_log_level(level: LogLevel) -> None:
    global _log_level
    _log_level = LogLevel(level)


_LEVEL_NAMES = {
    "trace": LogLevel.TRACE,
    "debug": LogLevel.DEBUG,
    "info": LogLevel.INFO,
    "warn": LogLevel.WARN,
    "error": LogLevel.ERROR,
}


def set_log_level_from_string(level: str) -> None:
    """Set the log level by name; raise ValueError for an unknown name."""
    global _log_level
    try:
        _log_level = _LEVEL_NAMES[level]
    except KeyError:
        raise ValueError(
            f"invalid log level '{level}'. Options are 'trace', 'debug', 'info', 'warn', 'error'"
        ) from None


def set_progress_bars(style: str) -> None:
    """Choose the progress bar style; 'none' or 'false' turn bars off."""
    global _progress_style, _progress_enabled
    _progress_style = style
    _progress_enabled = _should_print_progress()


def progress_enabled() -> bool:
    return _progress_enabled


def set_out(stream: TextIO | None) -> None:
    global _stdout
    _stdout = stream


def set_err(stream: TextIO | None) -> None:
    global _stderr
    _stderr = stream


def _stream_for(level: LogLevel) -> TextIO:
    if level in (LogLevel.ERROR, LogLevel.WARN):
        return _err()
    return _out()


def _write_to(stream: Any, level: LogLevel, message: Any, args: tuple) -> None:
    if not _log_level.should_print(level):
        return
    text = str(message)
    if args:
        text = text % args
    # Avoid printing incomplete lines
    if not text.endswith("\n"):
        text += "\n"
    text = text[:1].upper() + text[1:]
    stream.write(level.prefix() + text)


def log(level: LogLevel, message: Any, *args: Any) -> None:
    """Print a line at level; args, if any, are %-formatted into message."""
    _write_to(_stream_for(level), level, message, args)


def safe_log(level: LogLevel, message: Any, *args: Any) -> None:
    """Like log, but prints only when progress bars are disabled."""
    if not _progress_enabled:
        log(level, message, *args)


def info(message: Any, *args: Any) -> None:
    log(LogLevel.INFO, message, *args)


def error(message: Any, *args: Any) -> None:
    log(LogLevel.ERROR, message, *args)


def debug(message: Any, *args: Any) -> None:
    log(LogLevel.DEBUG, message, *args)


def safe_debug(message: Any, *args: Any) -> None:
    safe_log(LogLevel.DEBUG, message, *args)


def fatal(message: Any, *args: Any) -> None:
    """Print an error line and raise CommandFailed."""
    log(LogLevel.ERROR, message, *args)
    raise CommandFailed("failed to run")


class ProgressLogger:
    """Prints log lines without disturbing progress bars that are drawing.

    Call wait() once the bars are finished.
    """

    def __init__(self, output: Any = None, on_wait: Callable[[], None] | None = None) -> None:
        self._output = output
        self._on_wait = on_wait

    @property
    def output(self) -> Any:
        return self._output if self._output is not None else _out()

    def wait(self) -> None:
        if self._on_wait is not None:
            self._on_wait()

    def info(self, message: Any, *args: Any) -> None:
        if not _log_level.should_print(LogLevel.INFO):
            _write_to(self.output, LogLevel.INFO, message, args)

    def debug(self, message: Any, *args: Any) -> None:
        if _log_level.should_print(LogLevel.DEBUG):
            _write_to(self.output, LogLevel.DEBUG, message, args)

    def log(self, level: LogLevel, message: Any, *args: Any) -> None:
        if _log_level.should_print(level):
            _write_to(self.output, level, message, args)