"""JSON logging configuration for the relay service.

Every record is written as one JSON object per line. Records logged through
a :class:`ChatLogger` carry the chat they belong to as a top-level
``chat_id`` field, with any other bound values under ``context``.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Mapping, Optional

QUIET_LOGGERS = ("httpx", "httpcore", "uvicorn.access")


class JSONFormatter(logging.Formatter):
    """Format log records as JSON."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        context = dict(getattr(record, "context", None) or {})
        chat_id = context.pop("chat_id", None)
        if chat_id:
            log_data["chat_id"] = chat_id
        if context:
            log_data["context"] = context

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, ensure_ascii=False, default=str)


def setup_logging(level: str = "INFO") -> None:
    """Send JSON lines to stdout and quiet the chatty HTTP loggers."""
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter())
    root_logger.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(f"relay.{name}")


class ChatLogger(logging.LoggerAdapter):
    """Adapter binding chat-scoped values to every record it emits.

    Values passed as ``context=`` on a single call are merged over the bound
    ones for that call only.
    """

    def __init__(self, logger: logging.Logger, context: Optional[Mapping[str, Any]] = None):
        super().__init__(logger, dict(context or {}))

    def bind(self, **context: Any) -> "ChatLogger":
        return ChatLogger(self.logger, {**self.extra, **context})

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        context = {**self.extra, **(kwargs.pop("context", None) or {})}
        if context:
            kwargs["extra"] = {**kwargs.get("extra", {}), "context": context}
        return msg, kwargs


def chat_logger(name: str, chat_id: str, **context: Any) -> ChatLogger:
    """Logger that tags every record with the chat it belongs to."""
    return ChatLogger(get_logger(name)).bind(chat_id=chat_id, **context)
