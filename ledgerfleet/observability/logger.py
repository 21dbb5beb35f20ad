"""Context-bound logger backed by stdlib logging + rich.

Usage::

    from ledgerfleet.observability.logger import logger

    log = logger.bind(component="reconciler")
    log.info("Created pod {name}", name="ledger-1")

Bound fields are attached to every record as attributes and rendered
by the file formatter as ``[key=value ...]``.
"""

from __future__ import annotations

import logging
import logging.handlers
import os
import sys
from collections.abc import Mapping
from typing import TextIO

from rich.logging import RichHandler

TRACE = 5
logging.addLevelName(TRACE, "TRACE")

ROOT_LOGGER = "ledgerfleet"

_root = logging.getLogger(ROOT_LOGGER)

_CONTEXT_KEYS = ("component", "actor", "cluster", "stage", "pod", "kind")


def _caller_logger(depth: int) -> tuple[logging.Logger, object]:
    frame = sys._getframe(depth)
    module = frame.f_globals.get("__name__", ROOT_LOGGER)
    if not module.startswith(ROOT_LOGGER):
        module = ROOT_LOGGER
    return logging.getLogger(module), frame


def _format_message(msg: str, args: tuple[object, ...], kwargs: Mapping[str, object]) -> str:
    if kwargs:
        return msg.format(**kwargs)
    if args:
        return msg.format(*args)
    return msg


def _format_context(extras: Mapping[str, object]) -> str:
    parts = [f"{k}={extras[k]}" for k in _CONTEXT_KEYS if k in extras]
    return f" [{' '.join(parts)}]" if parts else ""


class BoundLogger:
    __slots__ = ("_extras",)

    def __init__(self, extras: Mapping[str, object] | None = None) -> None:
        self._extras = dict(extras or {})

    def bind(self, **kwargs: object) -> BoundLogger:
        return BoundLogger({**self._extras, **kwargs})

    def _log(self, level: int, message: str, /, *args: object, **kwargs: object) -> None:
        exc_info = bool(kwargs.pop("exc_info", False))
        lib_logger, frame = _caller_logger(3)
        if not lib_logger.isEnabledFor(level):
            return
        record = lib_logger.makeRecord(
            name=lib_logger.name,
            level=level,
            fn=frame.f_code.co_filename,  # type: ignore[attr-defined]
            lno=frame.f_lineno,  # type: ignore[attr-defined]
            msg=_format_message(message, args, kwargs),
            args=(),
            exc_info=sys.exc_info() if exc_info else None,
            func=frame.f_code.co_name,  # type: ignore[attr-defined]
        )
        record.filename = os.path.basename(record.pathname)
        for k, v in self._extras.items():
            setattr(record, k, v)
        record.ctx = _format_context(self._extras)
        lib_logger.handle(record)

    def trace(self, message: str, /, *args: object, **kwargs: object) -> None:
        self._log(TRACE, message, *args, **kwargs)

    def debug(self, message: str, /, *args: object, **kwargs: object) -> None:
        self._log(logging.DEBUG, message, *args, **kwargs)

    def info(self, message: str, /, *args: object, **kwargs: object) -> None:
        self._log(logging.INFO, message, *args, **kwargs)

    def warning(self, message: str, /, *args: object, **kwargs: object) -> None:
        self._log(logging.WARNING, message, *args, **kwargs)

    def error(self, message: str, /, *args: object, **kwargs: object) -> None:
        self._log(logging.ERROR, message, *args, **kwargs)

    def exception(self, message: str, /, *args: object, **kwargs: object) -> None:
        kwargs["exc_info"] = True
        self._log(logging.ERROR, message, *args, **kwargs)


# =============================================================================
# Handler Management
# =============================================================================

FILE_FORMAT = (
    "%(asctime)s.%(msecs)03d | %(levelname)-8s | "
    "%(name)s:%(funcName)s:%(lineno)d%(ctx)s - %(message)s"
)


class _ContextDefault(logging.Filter):
    """Records from foreign loggers have no ``ctx`` attribute."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "ctx"):
            record.ctx = ""
        return True


def _parse_rotation_bytes(rotation: str) -> int:
    match rotation.strip().split():
        case [num, unit] if unit.upper() == "MB":
            return int(num) * 1024 * 1024
        case [num, unit] if unit.upper() == "KB":
            return int(num) * 1024
        case _:
            return 50 * 1024 * 1024


def _make_file_handler(path: str, *, level: int, rotation: str, retention: int) -> logging.Handler:
    handler = logging.handlers.RotatingFileHandler(
        path,
        maxBytes=_parse_rotation_bytes(rotation),
        backupCount=retention,
    )
    handler.setLevel(level)
    handler.addFilter(_ContextDefault())
    handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    return handler


def _make_console_handler(level: int, stream: TextIO | None) -> logging.Handler:
    from rich.console import Console

    handler = RichHandler(
        level=level,
        console=Console(file=stream) if stream is not None else None,
        show_time=True,
        show_level=True,
        show_path=True,
        markup=False,
        rich_tracebacks=True,
    )
    handler.setLevel(level)
    return handler


class Logger:
    """Process entry point: binds context and manages sinks."""

    def __init__(self) -> None:
        self._bound = BoundLogger()
        self._handlers: dict[int, logging.Handler] = {}
        self._counter = 0

    def bind(self, **kwargs: object) -> BoundLogger:
        return self._bound.bind(**kwargs)

    def add(
        self,
        sink: str | TextIO,
        *,
        level: str = "DEBUG",
        rotation: str = "50 MB",
        retention: int = 10,
    ) -> int:
        numeric_level = TRACE if level.upper() == "TRACE" else getattr(logging, level.upper(), logging.DEBUG)
        match sink:
            case str() as path:
                handler = _make_file_handler(path, level=numeric_level, rotation=rotation, retention=retention)
            case stream:
                handler = _make_console_handler(numeric_level, stream)

        _root.addHandler(handler)
        self._counter += 1
        self._handlers[self._counter] = handler
        return self._counter

    def remove(self, handler_id: int | None = None) -> None:
        if handler_id is None:
            for h in self._handlers.values():
                _root.removeHandler(h)
                h.close()
            self._handlers.clear()
            return
        if h := self._handlers.pop(handler_id, None):
            _root.removeHandler(h)
            h.close()

    def enable(self) -> None:
        _root.disabled = False

    def disable(self) -> None:
        _root.disabled = True


logger = Logger()

_root.setLevel(TRACE)
_root.propagate = False
