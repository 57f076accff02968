"""
Lancet Structured Logger
=========================

Provides :class:`LancetLogger`, a logging facade that emits Rich console
output on stderr and, optionally, plain or JSON-lines records to a
rotating log file.

Every record carries the Lancet *component* that produced it (``workspace``,
``explorer``, ``emulator``, ...).  Inside an :meth:`LancetLogger.operation`
scope it also carries the operation name, and the scope reports its own
duration when it ends.  Keyword fields passed to the log methods are
attached to the record; in JSON output, integer fields that name an
address (``address``, ``va``, ``start``, ``target``, ...) are rendered as
hex strings so they can be matched against disassembly listings.

References:
    - Python logging HOWTO. https://docs.python.org/3/howto/logging.html
    - Rich library. https://github.com/Textualize/rich
"""

from __future__ import annotations

import contextlib
import json
import logging
import time
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Iterator, TYPE_CHECKING

from rich.console import Console
from rich.logging import RichHandler

if TYPE_CHECKING:
    from shared.config import LancetConfig


_MAX_LOG_BYTES = 10 * 1024 * 1024
_LOG_BACKUPS = 3

_ADDRESS_FIELDS = frozenset({"address", "va", "start", "target", "base"})

_PLAIN_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"


def _render_field(key: str, value: Any) -> Any:
    if key in _ADDRESS_FIELDS and isinstance(value, int) and not isinstance(value, bool):
        return f"0x{value:x}"
    return value


class _JSONLinesFormatter(logging.Formatter):
    """One JSON object per record.

    Example::

        {"time": "...", "level": "WARNING", "logger": "lancet.explorer",
         "message": "Decode failed at 0x1800: ...", "component": "explorer",
         "operation": "explore_function", "fields": {"address": "0x1800"}}
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "time": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "component": getattr(record, "component", None),
        }
        operation = getattr(record, "operation", None)
        if operation is not None:
            entry["operation"] = operation
        fields = getattr(record, "fields", None)
        if fields:
            entry["fields"] = {k: _render_field(k, v) for k, v in fields.items()}
        if record.exc_info and record.exc_info[1] is not None:
            entry["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


def _console_handler(level: int) -> RichHandler:
    # markup stays off: messages contain operand text like "[ebp - 4]"
    return RichHandler(
        level=level,
        console=Console(stderr=True),
        show_path=False,
        markup=False,
        rich_tracebacks=True,
    )


class LancetLogger:
    """Component logger for Lancet.

    Usage::

        log = LancetLogger("explorer", log_file="lancet.log", json_logs=True)
        with log.operation("explore_function"):
            log.warning("Decode failed at %#x", va, address=va)

    Args:
        component: Component name; the stdlib logger is ``lancet.<component>``.
        log_level: Minimum severity name.
        log_file: Rotating log file.  ``None`` disables file logging.
        json_logs: Write JSON lines instead of plain text to *log_file*.
        console_output: Attach the Rich stderr handler.
    """

    def __init__(
        self,
        component: str,
        *,
        log_level: str = "INFO",
        log_file: str | Path | None = None,
        json_logs: bool = False,
        console_output: bool = True,
    ) -> None:
        self._component = component
        self._operation: str | None = None

        level = getattr(logging, log_level.upper(), logging.INFO)
        self._logger = logging.getLogger(f"lancet.{component}")
        self._logger.setLevel(level)
        self._logger.propagate = False
        # Loggers are process-wide; rebuilding one replaces its handlers
        for handler in list(self._logger.handlers):
            self._logger.removeHandler(handler)
            handler.close()

        if console_output:
            self._logger.addHandler(_console_handler(level))

        if log_file:
            path = Path(log_file)
            path.parent.mkdir(parents=True, exist_ok=True)
            fh = RotatingFileHandler(
                path, maxBytes=_MAX_LOG_BYTES, backupCount=_LOG_BACKUPS, encoding="utf-8"
            )
            fh.setLevel(level)
            fh.setFormatter(
                _JSONLinesFormatter() if json_logs else logging.Formatter(_PLAIN_FORMAT)
            )
            self._logger.addHandler(fh)

    @classmethod
    def from_config(
        cls,
        component: str,
        config: LancetConfig,
        *,
        log_level: str | None = None,
    ) -> LancetLogger:
        """Build a logger from the ``[global]`` configuration section.

        *log_level* overrides ``config.global_settings.log_level``.
        """
        settings = config.global_settings
        return cls(
            component,
            log_level=log_level or settings.log_level,
            log_file=settings.log_file or None,
            json_logs=settings.log_json,
        )

    @property
    def component(self) -> str:
        return self._component

    @property
    def underlying(self) -> logging.Logger:
        """The wrapped stdlib :class:`logging.Logger`."""
        return self._logger

    # ------------------------------------------------------------------ #
    #  Operation scope
    # ------------------------------------------------------------------ #

    @contextlib.contextmanager
    def operation(self, name: str) -> Iterator[LancetLogger]:
        """Tag records with *name* and log the scope's duration at debug level.

        Scopes nest; the previous operation name is restored on exit.
        """
        previous = self._operation
        self._operation = name
        started = time.perf_counter()
        try:
            yield self
        finally:
            self.debug("%s finished in %.3fs", name, time.perf_counter() - started)
            self._operation = previous

    # ------------------------------------------------------------------ #
    #  Log methods
    # ------------------------------------------------------------------ #

    def _log(self, level: int, msg: str, args: tuple[Any, ...], fields: dict[str, Any]) -> None:
        if not self._logger.isEnabledFor(level):
            return
        exc_info = fields.pop("exc_info", None)
        extra = {
            "component": self._component,
            "operation": self._operation,
            "fields": fields,
        }
        self._logger.log(level, msg, *args, exc_info=exc_info, extra=extra, stacklevel=3)

    def debug(self, msg: str, *args: Any, **fields: Any) -> None:
        self._log(logging.DEBUG, msg, args, fields)

    def info(self, msg: str, *args: Any, **fields: Any) -> None:
        self._log(logging.INFO, msg, args, fields)

    def warning(self, msg: str, *args: Any, **fields: Any) -> None:
        self._log(logging.WARNING, msg, args, fields)

    def error(self, msg: str, *args: Any, **fields: Any) -> None:
        self._log(logging.ERROR, msg, args, fields)
