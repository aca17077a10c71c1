"""
Logging Setup

One stdout logger per tailhub component, named "tailhub.<component>".
JSON lines by default; TAILHUB_LOG_FORMAT=text gives a console-friendly
layout for development.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any

LOGGER_PREFIX = "tailhub"

# Attributes every LogRecord carries; anything else came in through `extra`
_RESERVED_ATTRS = frozenset((
    "name", "msg", "args", "levelname", "levelno", "pathname",
    "filename", "module", "exc_info", "exc_text", "stack_info",
    "lineno", "funcName", "created", "msecs", "relativeCreated",
    "thread", "threadName", "processName", "process", "service",
    "message", "taskName",
))

TEXT_FORMAT = "%(asctime)s %(levelname)-7s [%(service)s] %(message)s"
TEXT_DATEFMT = "%H:%M:%S"


class JsonFormatter(logging.Formatter):
    """One JSON object per record; `extra` fields become top-level keys"""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "service": getattr(record, "service", record.name),
            "message": record.getMessage(),
        }

        entry.update(
            (key, value)
            for key, value in record.__dict__.items()
            if key not in _RESERVED_ATTRS
        )

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


class ServiceLoggerAdapter(logging.LoggerAdapter):
    """Stamps the component name on every record"""

    def process(self, msg: str, kwargs: dict) -> tuple[str, dict]:
        extra = dict(kwargs.get("extra") or {})
        extra.setdefault("service", self.extra["service"])
        kwargs["extra"] = extra
        return msg, kwargs


def _level(log_level: str) -> int:
    return getattr(logging, str(log_level).upper(), logging.INFO)


def _make_handler(level: int, json_format: bool) -> logging.Handler:
    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    if json_format:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter(TEXT_FORMAT, datefmt=TEXT_DATEFMT, defaults={"service": "-"}))
    return handler


def setup_logging(
    service_name: str,
    log_level: str = "INFO",
    json_format: bool = True,
) -> logging.Logger:
    """
    Configure the logger of one component.

    Args:
        service_name: Component name (e.g. "device.fleet", "events.router")
        log_level: Level name; unknown names fall back to INFO
        json_format: JSON lines when True, plain text otherwise

    Returns:
        The "tailhub.<service_name>" logger
    """
    level = _level(log_level)

    logger = logging.getLogger(f"{LOGGER_PREFIX}.{service_name}")
    logger.setLevel(level)
    logger.handlers = [_make_handler(level, json_format)]
    # Records stay out of the root logger's handlers
    logger.propagate = False

    return logger


def get_service_logger(service_name: str) -> ServiceLoggerAdapter:
    """
    Logger adapter for a component, honouring TAILHUB_LOG_LEVEL and
    TAILHUB_LOG_FORMAT (json | text).
    """
    log_level = os.environ.get("TAILHUB_LOG_LEVEL", "INFO")
    json_format = os.environ.get("TAILHUB_LOG_FORMAT", "json").lower() != "text"

    logger = setup_logging(service_name, log_level, json_format)
    return ServiceLoggerAdapter(logger, {"service": service_name})


def set_log_level(log_level: str) -> None:
    """Apply a log level to every tailhub logger created so far"""
    level = _level(log_level)
    os.environ["TAILHUB_LOG_LEVEL"] = logging.getLevelName(level)

    for name, logger in logging.Logger.manager.loggerDict.items():
        if not name.startswith(f"{LOGGER_PREFIX}.") or not isinstance(logger, logging.Logger):
            continue
        logger.setLevel(level)
        for handler in logger.handlers:
            handler.setLevel(level)


def log_device_write(
    logger: logging.LoggerAdapter,
    device_id: str,
    payload: str,
    success: bool = True,
    error: str | None = None,
) -> None:
    """Log a characteristic write; failures at WARNING, successes at DEBUG"""
    fields = {"device": device_id, "payload": payload}
    if success:
        logger.debug(f"Write {device_id} <- {payload}", extra=fields)
        return

    fields["error"] = error
    logger.warning(f"Failed to write {device_id} <- {payload}: {error}", extra=fields)


def log_connection_change(
    logger: logging.LoggerAdapter,
    device_id: str,
    state: str,
    detail: Any = None,
) -> None:
    """Log a connection state transition"""
    message = f"Device {device_id} -> {state}"
    if detail:
        message = f"{message} ({detail})"
    logger.info(message, extra={"device": device_id, "state": state})
