"""Application logging setup: coloured console or JSON lines on stderr."""

from __future__ import annotations

import json
import logging
import sys
import time
import traceback
from pathlib import Path

_LOGGER_NAME = "mikrohosts"

_LEVEL_NAMES = {
    logging.DEBUG: "debug",
    logging.INFO: "info",
    logging.WARNING: "warn",
    logging.ERROR: "error",
    logging.CRITICAL: "fatal",
}

_LEVEL_COLORS = {
    logging.DEBUG: 35,
    logging.INFO: 34,
    logging.WARNING: 33,
    logging.ERROR: 31,
    logging.CRITICAL: 31,
}

_RESERVED_ATTRIBUTES = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", None, None))
) | {"message", "asctime"}


def _level_name(levelno: int) -> str:
    return _LEVEL_NAMES.get(levelno, logging.getLevelName(levelno).lower())


def _caller(record: logging.LogRecord) -> str:
    path = Path(record.pathname)
    return f"{path.parent.name}/{path.name}:{record.lineno}"


def _fields(record: logging.LogRecord) -> dict[str, object]:
    return {
        key: value
        for key, value in vars(record).items()
        if key not in _RESERVED_ATTRIBUTES
    }


class JSONFormatter(logging.Formatter):
    """Formats records as single-line JSON objects."""

    def __init__(self, with_caller: bool = False) -> None:
        super().__init__()
        self.with_caller = with_caller

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, object] = {
            "level": _level_name(record.levelno),
            "ts": record.created,
        }
        if self.with_caller:
            entry["caller"] = _caller(record)
        entry["msg"] = record.getMessage()
        if record.exc_info:
            entry["error"] = self.formatException(record.exc_info)
        entry.update(_fields(record))
        if record.stack_info:
            entry["stacktrace"] = record.stack_info
        return json.dumps(entry, default=str, ensure_ascii=False)


class _ConsoleFormatter(logging.Formatter):
    def __init__(self, with_caller: bool = False) -> None:
        super().__init__()
        self.with_caller = with_caller

    def format(self, record: logging.LogRecord) -> str:
        color = _LEVEL_COLORS.get(record.levelno, 0)
        parts = [
            time.strftime("%H:%M:%S", time.localtime(record.created)),
            f"\x1b[{color}m{_level_name(record.levelno)}\x1b[0m",
        ]
        if self.with_caller:
            parts.append(_caller(record))
        parts.append(record.getMessage())
        fields = _fields(record)
        if fields:
            parts.append(json.dumps(fields, default=str, ensure_ascii=False))
        line = "\t".join(parts)
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        if record.stack_info:
            line += "\n" + record.stack_info
        return line


class _StacktraceFilter(logging.Filter):
    """Attaches the caller's stack to warnings and more severe records."""

    _skipped_files = frozenset({str(Path(logging.__file__)), str(Path(__file__))})

    def filter(self, record: logging.LogRecord) -> bool:
        if record.levelno >= logging.WARNING and not record.stack_info:
            frames = traceback.extract_stack()
            while frames and str(Path(frames[-1].filename)) in self._skipped_files:
                frames.pop()
            record.stack_info = "".join(traceback.format_list(frames)).rstrip("\n")
        return True


class _StderrHandler(logging.Handler):
    """Writes to whatever ``sys.stderr`` is at the time of emitting."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            stream = sys.stderr
            stream.write(self.format(record) + "\n")
            stream.flush()
        except Exception:  # noqa: BLE001 - logging must not raise
            self.handleError(record)


def new_logger(verbose: bool = False, debug: bool = False, log_json: bool = False) -> logging.Logger:
    """Configure and return the application logger.

    Info level by default; debug level when ``verbose`` or ``debug`` is set.
    ``debug`` also adds the caller and stack traces for warnings and errors.
    """
    logger = logging.getLogger(_LOGGER_NAME)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    for existing in list(logger.filters):
        logger.removeFilter(existing)

    handler = _StderrHandler()
    handler.setFormatter(
        JSONFormatter(with_caller=debug) if log_json else _ConsoleFormatter(with_caller=debug)
    )
    logger.addHandler(handler)
    if debug:
        logger.addFilter(_StacktraceFilter())

    logger.setLevel(logging.DEBUG if verbose or debug else logging.INFO)
    logger.propagate = False
    return logger