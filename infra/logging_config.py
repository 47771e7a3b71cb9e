"""Logging for the batch runner and the CLI.

Two renderings share one set of fields: a UTC text line for terminals and a
JSON object per line for log shippers. Both carry the run context (run_id,
engine) set by the runner. ``setup_logging`` leaves foreign root handlers
alone unless asked to override them, so a scheduler wrapping the job keeps
its own configuration.
"""

from __future__ import annotations

import json
import logging
import sys
import time
from collections.abc import Mapping
from contextvars import ContextVar
from datetime import UTC, datetime
from types import MappingProxyType
from typing import Any

from infra.config import LoggingSettings, get_settings

_EMPTY: Mapping[str, Any] = MappingProxyType({})

run_ctx: ContextVar[Mapping[str, Any]] = ContextVar("run_ctx", default=_EMPTY)

# Attributes every LogRecord has; anything else arrived through `extra=`
_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {"message", "asctime"}

# Marks handlers installed by setup_logging so a second call replaces them
_OWN_HANDLER_ATTR = "_collwatch_handler"


def set_run_context(**kwargs: Any) -> None:
    """Add fields to every log line emitted from this context."""
    run_ctx.set(MappingProxyType({**run_ctx.get(), **kwargs}))


def clear_run_context() -> None:
    run_ctx.set(_EMPTY)


def get_run_context() -> dict[str, Any]:
    return dict(run_ctx.get())


def record_extras(record: logging.LogRecord) -> dict[str, Any]:
    """Fields passed through ``extra=`` on one record."""
    return {k: v for k, v in vars(record).items() if k not in _RECORD_ATTRS}


class JsonFormatter(logging.Formatter):
    """
    One JSON object per record.

    Precedence for colliding keys: the fixed record fields, then the record's
    extras, then ``extra_fields``, then the run context.
    """

    def __init__(self, *, extra_fields: Mapping[str, Any] | None = None) -> None:
        super().__init__()
        self._static = dict(extra_fields or {})

    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.fromtimestamp(record.created, UTC).isoformat(timespec="milliseconds")
        payload: dict[str, Any] = {
            **get_run_context(),
            **self._static,
            **record_extras(record),
            "timestamp": ts.replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "func": record.funcName,
            "line": record.lineno,
        }
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


class TextFormatter(logging.Formatter):
    """``<utc time>Z | LEVEL | logger | message``, with the run id appended when set."""

    converter = time.gmtime

    def __init__(self) -> None:
        super().__init__("%(asctime)sZ | %(levelname)s | %(name)s | %(message)s")

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        run_id = run_ctx.get().get("run_id")
        return f"{line} [{run_id}]" if run_id else line


class StructuredLogger:
    """
    Event-style logger: an event name plus keyword fields.

        log = StructuredLogger(__name__)
        log.info("pipeline_evaluated", rows=12, engine="duckdb")

    The text message reads ``pipeline_evaluated rows=12 engine=duckdb``; the
    JSON rendering gets ``event``, ``rows`` and ``engine`` as top-level keys.
    """

    def __init__(self, name: str) -> None:
        self._logger = logging.getLogger(name)

    def _emit(self, level: int, event: str, fields: dict[str, Any], exc_info: bool = False) -> None:
        if self._logger.isEnabledFor(level):
            message = " ".join([event, *(f"{k}={v}" for k, v in fields.items())])
            self._logger.log(level, message, extra={"event": event, **fields}, exc_info=exc_info)

    def debug(self, event: str, **fields: Any) -> None:
        self._emit(logging.DEBUG, event, fields)

    def info(self, event: str, **fields: Any) -> None:
        self._emit(logging.INFO, event, fields)

    def warning(self, event: str, **fields: Any) -> None:
        self._emit(logging.WARNING, event, fields)

    def error(self, event: str, **fields: Any) -> None:
        self._emit(logging.ERROR, event, fields)

    def exception(self, event: str, **fields: Any) -> None:
        """Error level, with the traceback of the exception being handled."""
        self._emit(logging.ERROR, event, fields, exc_info=True)


def _build_handler(cfg: LoggingSettings, extra_fields: Mapping[str, Any] | None) -> logging.Handler:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JsonFormatter(extra_fields=extra_fields) if cfg.json_logs else TextFormatter())
    setattr(handler, _OWN_HANDLER_ATTR, True)
    return handler


def setup_logging(
    *,
    level: str | None = None,
    json_logs: bool | None = None,
    override_root_handlers: bool | None = None,
    extra_fields: Mapping[str, Any] | None = None,
) -> None:
    """
    Configure the root logger from ``LoggingSettings`` plus explicit overrides.

    Settings come from COLLWATCH_LOG_LEVEL, COLLWATCH_LOG_JSON and
    COLLWATCH_LOG_OVERRIDE (or their LOGGING__* names). Without override, a
    handler is only added when the root has none of its own; handlers added by
    an earlier call are always replaced.
    """
    overrides = {
        "level": level,
        "json_logs": json_logs,
        "override_root_handlers": override_root_handlers,
    }
    base = get_settings(reload=True).logging.model_dump()
    cfg = LoggingSettings.model_validate({**base, **{k: v for k, v in overrides.items() if v is not None}})

    root = logging.getLogger()
    root.setLevel(getattr(logging, cfg.level, logging.INFO))

    for h in list(root.handlers):
        if cfg.override_root_handlers or getattr(h, _OWN_HANDLER_ATTR, False):
            root.removeHandler(h)
    if not root.handlers:
        root.addHandler(_build_handler(cfg, extra_fields))
