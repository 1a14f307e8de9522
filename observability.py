from __future__ import annotations

import json
import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Iterator

LOGGER_ROOT = "trackhub"

# Attributes every LogRecord carries; anything else on a record came from `extra`.
_STANDARD_RECORD_FIELDS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime", "taskName"}

_LOG_CONTEXT: ContextVar[dict[str, Any]] = ContextVar("trackhub_log_context", default={})


def _to_json_safe(value: Any) -> Any:
    if isinstance(value, Enum):
        return _to_json_safe(value.value)
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(k): _to_json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_to_json_safe(item) for item in value]
    return str(value)


class JsonLogFormatter(logging.Formatter):
    """One JSON object per line: event name, level, logger, bound context and event fields."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "event": record.getMessage(),
        }
        payload.update(
            (key, _to_json_safe(value))
            for key, value in vars(record).items()
            if key not in _STANDARD_RECORD_FIELDS and not key.startswith("_")
        )
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def _coerce_level(level: int | str) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(str(level or "").strip().upper() or "INFO")
    return resolved if isinstance(resolved, int) else logging.INFO


def configure_json_logging(*, level: int | str = logging.INFO) -> None:
    root = logging.getLogger()
    root.setLevel(_coerce_level(level))
    if any(getattr(handler, "_trackhub_json_logger", False) for handler in root.handlers):
        return
    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setFormatter(JsonLogFormatter())
    setattr(handler, "_trackhub_json_logger", True)
    root.handlers.clear()
    root.addHandler(handler)


def get_logger(name: str) -> logging.Logger:
    normalized = str(name or "").strip() or LOGGER_ROOT
    if normalized != LOGGER_ROOT and not normalized.startswith(f"{LOGGER_ROOT}."):
        normalized = f"{LOGGER_ROOT}.{normalized}"
    return logging.getLogger(normalized)


@contextmanager
def log_context(**fields: Any) -> Iterator[None]:
    """Attach fields (order number, account id, ...) to every event logged inside the block."""
    bound = {key: _to_json_safe(value) for key, value in fields.items() if value is not None}
    token = _LOG_CONTEXT.set({**_LOG_CONTEXT.get(), **bound})
    try:
        yield
    finally:
        _LOG_CONTEXT.reset(token)


def current_log_context() -> dict[str, Any]:
    return dict(_LOG_CONTEXT.get())


def log_event(logger: logging.Logger, level: int, message: str, **fields: Any) -> None:
    extra: dict[str, Any] = dict(_LOG_CONTEXT.get())
    for key, value in fields.items():
        # Keys that collide with LogRecord attributes would make logging raise.
        safe_key = f"field_{key}" if key in _STANDARD_RECORD_FIELDS else key
        extra[safe_key] = _to_json_safe(value)
    logger.log(level, message, extra=extra)
