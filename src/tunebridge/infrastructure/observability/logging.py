"""Log setup for the engine: one stdout handler, text or JSON, task ids on every line.

Hey future me - ConversionService puts the request's task_id into a
contextvar before doing anything else. Pool workers are asyncio tasks created
inside that conversion, so they copy the context and their log lines carry the
same id. `grep task-123` then shows metadata fetch, per-track misses and the
done event of one conversion and nothing else.
"""

import contextvars
import logging
import sys
import uuid
from typing import Any

from pythonjsonlogger import jsonlogger

TEXT_FORMAT = "%(asctime)s │ %(levelname)-7s │ %(name)s:%(lineno)d │ %(message)s"
JSON_FORMAT = "%(message)s"

# Third-party loggers that are pinned to WARNING once logging is configured.
QUIET_LOGGERS = ("httpx", "httpcore", "asyncio", "aiosqlite", "sqlalchemy.engine")

correlation_id_var: contextvars.ContextVar[str] = contextvars.ContextVar(
    "correlation_id", default=""
)


def get_correlation_id() -> str:
    return correlation_id_var.get()


def set_correlation_id(correlation_id: str | None = None) -> str:
    """Bind a correlation id to the current context (fresh uuid4 when None)."""
    value = correlation_id or str(uuid.uuid4())
    correlation_id_var.set(value)
    return value


class CorrelationIdFilter(logging.Filter):
    """Stamps record.correlation_id; never drops a record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = correlation_id_var.get()
        return True


class CustomJsonFormatter(jsonlogger.JsonFormatter):  # type: ignore[name-defined,misc]
    """One JSON object per line.

    Keys: message, level, logger, timestamp, source ("module:line") and
    correlation_id when one is bound. Anything passed via `extra=` is merged
    in by python-json-logger.
    """

    def add_fields(
        self,
        log_record: dict[str, Any],
        record: logging.LogRecord,
        message_dict: dict[str, Any],
    ) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record.update(
            level=record.levelname,
            logger=record.name,
            timestamp=self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            source=f"{record.module}:{record.lineno}",
        )
        if cid := getattr(record, "correlation_id", ""):
            log_record["correlation_id"] = cid
        if record.exc_info and "exc_info" not in log_record:
            log_record["exc_info"] = self.formatException(record.exc_info)


class TextFormatter(logging.Formatter):
    """Console lines; the correlation id is appended as ` [cid=...]`."""

    def format(self, record: logging.LogRecord) -> str:
        text = super().format(record)
        cid = getattr(record, "correlation_id", "")
        return f"{text} [cid={cid}]" if cid else text


def _build_handler(level: int, json_format: bool) -> logging.Handler:
    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.addFilter(CorrelationIdFilter())
    if json_format:
        handler.setFormatter(CustomJsonFormatter(JSON_FORMAT))
    else:
        handler.setFormatter(TextFormatter(TEXT_FORMAT, datefmt="%H:%M:%S"))
    return handler


def configure_logging(
    log_level: str = "INFO",
    json_format: bool = False,
    app_name: str = "tunebridge",
) -> None:
    """Install the engine's root handler, replacing whatever was there.

    Safe to call more than once (engine_lifespan does it on every start);
    handlers are swapped, never stacked.
    """
    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.setLevel(level)
    root.addHandler(_build_handler(level, json_format))

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger(__name__).debug(
        f"[LOGGING] {app_name}: level={logging.getLevelName(level)} json={json_format}"
    )
