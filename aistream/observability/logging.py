"""
aistream - Structured JSON Logging

One JSON object per line on stderr. Fields bound with bind_log_context()
are attached to every record emitted inside the block, so a retry
warning deep in the governor still carries the agent role and model
of the call that triggered it.

Usage:
    from aistream.observability.logging import bind_log_context, get_logger

    logger = get_logger(__name__)

    with bind_log_context(provider="anthropic", agent_role="critic"):
        logger.info("Stream finished", output_tokens=42)

Output:
    {"timestamp": "2024-01-15T10:30:00+00:00", "level": "INFO",
     "logger": "aistream.service", "message": "Stream finished",
     "provider": "anthropic", "agent_role": "critic", "output_tokens": 42}

Environment:
    LOG_LEVEL                   root level (default INFO)
    LOG_FORMAT                  "json" or "text" (default json)
    AISTREAM_CONFIGURE_LOGGING  "0" leaves the root logger alone
"""

import json
import logging
import os
import sys
import time
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, Mapping, Optional, Union

_bound_fields: ContextVar[Mapping[str, Any]] = ContextVar("aistream_log_fields", default={})

# Attributes every LogRecord has; anything else came in through `extra`
_STANDARD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime"}

_PASSTHROUGH_KWARGS = ("exc_info", "stack_info", "stacklevel")

REDACTED = "[REDACTED]"


def current_log_context() -> Dict[str, Any]:
    """Fields bound in the current task."""
    return dict(_bound_fields.get())


@contextmanager
def bind_log_context(**fields) -> Iterator[Dict[str, Any]]:
    """
    Attach fields to all records logged inside the block.

    Nested blocks layer on top of the outer one; the outer fields are
    restored on exit. Fields set to None are dropped.
    """
    merged = {**_bound_fields.get(), **{k: v for k, v in fields.items() if v is not None}}
    token = _bound_fields.set(merged)
    try:
        yield merged
    finally:
        _bound_fields.reset(token)


class JSONFormatter(logging.Formatter):
    """Render records as single-line JSON, masking credential-like fields."""

    SENSITIVE_MARKERS = (
        "password", "secret", "token", "api_key", "apikey",
        "authorization", "auth", "credential", "private_key",
    )

    # Usage counters contain "token" but are plain numbers
    ALLOWED_FIELDS = frozenset({"input_tokens", "output_tokens", "total_tokens", "max_tokens"})

    def __init__(self, include_location: bool = False, redact_sensitive: bool = True):
        super().__init__()
        self.include_location = include_location
        self.redact_sensitive = redact_sensitive

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if self.include_location:
            entry["location"] = f"{record.filename}:{record.lineno}"

        entry.update(_bound_fields.get())
        entry.update(
            (key, value) for key, value in vars(record).items() if key not in _STANDARD_ATTRS
        )

        if self.redact_sensitive:
            for key in entry:
                if self.is_sensitive(key):
                    entry[key] = REDACTED

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str, ensure_ascii=False)

    def is_sensitive(self, name: str) -> bool:
        lowered = name.lower()
        if lowered in self.ALLOWED_FIELDS:
            return False
        return any(marker in lowered for marker in self.SENSITIVE_MARKERS)


class StructuredLogger:
    """
    Thin wrapper over logging.Logger.

    Keyword arguments become record attributes, so
    `logger.warning("Empty content", attempt=2)` sets `record.attempt`.
    Bound context fields are copied in too, without overriding
    anything passed explicitly.
    """

    def __init__(self, logger: logging.Logger):
        self._logger = logger

    @property
    def name(self) -> str:
        return self._logger.name

    def isEnabledFor(self, level: int) -> bool:
        return self._logger.isEnabledFor(level)

    def log(self, level: int, msg: str, *args, **kwargs):
        if not self._logger.isEnabledFor(level):
            return
        passthrough = {k: kwargs.pop(k) for k in _PASSTHROUGH_KWARGS if k in kwargs}
        fields = {**_bound_fields.get(), **(kwargs.pop("extra", None) or {}), **kwargs}
        self._logger.log(level, msg, *args, extra=fields, **passthrough)

    def debug(self, msg: str, *args, **kwargs):
        self.log(logging.DEBUG, msg, *args, **kwargs)

    def info(self, msg: str, *args, **kwargs):
        self.log(logging.INFO, msg, *args, **kwargs)

    def warning(self, msg: str, *args, **kwargs):
        self.log(logging.WARNING, msg, *args, **kwargs)

    def error(self, msg: str, *args, **kwargs):
        self.log(logging.ERROR, msg, *args, **kwargs)

    def exception(self, msg: str, *args, **kwargs):
        kwargs.setdefault("exc_info", True)
        self.log(logging.ERROR, msg, *args, **kwargs)


_configured = False


def setup_logging(
    level: Union[str, int] = "INFO",
    json_output: bool = True,
    include_location: bool = False,
    redact_sensitive: bool = True,
) -> None:
    """
    Install a single stderr handler on the root logger.

    Existing root handlers are replaced. httpx and httpcore are held
    at WARNING since they log every request at INFO.
    """
    global _configured

    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    if json_output:
        handler.setFormatter(JSONFormatter(include_location, redact_sensitive))
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s"))

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level)

    for noisy in ("httpx", "httpcore"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    _configured = True


def get_logger(name: str) -> StructuredLogger:
    """Return a StructuredLogger, configuring the root logger from env on first use."""
    if not _configured and os.getenv("AISTREAM_CONFIGURE_LOGGING", "1") != "0":
        setup_logging(
            level=os.getenv("LOG_LEVEL", "INFO"),
            json_output=os.getenv("LOG_FORMAT", "json").lower() == "json",
        )
    return StructuredLogger(logging.getLogger(name))


class TimedOperation:
    """
    Time a block and log its outcome.

        async with TimedOperation("openai_call", logger, extra=ctx.to_log_extra()):
            response = await http.post_json(...)

    Success is logged at `log_level` as "<operation> completed"; an
    exception is logged at ERROR as "<operation> failed" and propagates.
    """

    def __init__(
        self,
        operation: str,
        logger: Optional[StructuredLogger] = None,
        log_level: int = logging.DEBUG,
        extra: Optional[Dict[str, Any]] = None,
    ):
        self.operation = operation
        self.logger = logger or get_logger("aistream.timing")
        self.log_level = log_level
        self.extra = dict(extra or {})
        self.duration_ms: Optional[float] = None
        self._started = 0.0

    def __enter__(self) -> "TimedOperation":
        self._started = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.duration_ms = (time.perf_counter() - self._started) * 1000
        fields = {**self.extra, "operation": self.operation, "duration_ms": round(self.duration_ms, 2)}
        if exc_type is None:
            self.logger.log(self.log_level, f"{self.operation} completed", **fields)
        else:
            self.logger.log(logging.ERROR, f"{self.operation} failed", error=str(exc_val), **fields)
        return False

    async def __aenter__(self) -> "TimedOperation":
        return self.__enter__()

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        return self.__exit__(exc_type, exc_val, exc_tb)
