# logging_utils.py
# Structured JSON logging for the duty-swap service (Loki-ready)

import json
import logging
import os
import sys
import time
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, Optional

from .config import ENV, SERVICE_NAME

# Correlation for every line logged while a request is being served
_request_id: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
_user_id: ContextVar[Optional[str]] = ContextVar("user_id", default=None)

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
# Unset: stdout only
LOG_FILE = os.getenv("LOG_FILE", "")

# Attributes every LogRecord already has; extras may not shadow them
_RESERVED_LOG_FIELDS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", (), None))
) | {"message", "asctime"}


class LokiJSONFormatter(logging.Formatter):
    """
    One JSON object per line:

        {"ts": "...Z", "level": "INFO", "logger": "dutyswap.submitter",
         "service": "dutyswap", "env": "dev", "message": "swap_batch_finished",
         "request_id": "...", "user_id": "...", "event": "...", ...fields}
    """

    def _context(self) -> Dict[str, str]:
        ctx = {}
        rid = _request_id.get()
        if rid:
            ctx["request_id"] = rid
        uid = _user_id.get()
        if uid:
            ctx["user_id"] = uid
        return ctx

    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.fromtimestamp(record.created, tz=timezone.utc)
        payload: Dict[str, Any] = {
            "ts": ts.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "service": SERVICE_NAME,
            "env": ENV,
            "message": record.getMessage(),
            **self._context(),
        }

        payload.update(
            (k, v)
            for k, v in record.__dict__.items()
            if not k.startswith("_") and k not in _RESERVED_LOG_FIELDS and k not in payload
        )

        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=str)


def configure_logging(level: Optional[str] = None) -> None:
    """Install the JSON formatter on the root logger. Safe to call repeatedly."""
    root = logging.getLogger()
    if getattr(root, "_dutyswap_configured", False):
        return

    root.setLevel(level or LOG_LEVEL)
    formatter = LokiJSONFormatter()

    stdout = logging.StreamHandler(sys.stdout)
    stdout.setFormatter(formatter)
    root.addHandler(stdout)

    if LOG_FILE:
        try:
            log_dir = os.path.dirname(LOG_FILE)
            if log_dir:
                os.makedirs(log_dir, exist_ok=True)
            file_handler = logging.FileHandler(LOG_FILE)
        except OSError as e:
            root.error(f"Failed to set up file logging: {e}")
        else:
            file_handler.setFormatter(formatter)
            root.addHandler(file_handler)

    root._dutyswap_configured = True  # type: ignore[attr-defined]


def new_request_id() -> str:
    rid = uuid.uuid4().hex
    _request_id.set(rid)
    _user_id.set(None)
    return rid


def bind_user(user_id: Optional[str]) -> None:
    """Attach the acting crew member to subsequent log lines of this request."""
    _user_id.set(user_id)


def log_event(
    logger: logging.Logger,
    event: str,
    level: int = logging.INFO,
    **fields: Any,
) -> None:
    """
    Log `event` with structured fields.

    Field names that clash with LogRecord attributes are prefixed with
    ``field_`` (``filename`` -> ``field_filename``).
    """
    extra = {
        (f"field_{k}" if k in _RESERVED_LOG_FIELDS else k): v
        for k, v in fields.items()
    }
    logger.log(level, event, extra={"event": event, **extra})


class DutySwapLogger:
    """Logger wrapper for multi-step operations that report their duration."""

    def __init__(self, name: str):
        self.logger = logging.getLogger(name)

    def event(self, event: str, level: int = logging.INFO, **fields: Any) -> None:
        log_event(self.logger, event, level=level, **fields)

    @contextmanager
    def timed(self, event: str, **fields: Any) -> Iterator[Dict[str, Any]]:
        """
        Log `event` with ``duration_ms`` when the block exits.

        The yielded dict is logged with the event, so the block can add the
        fields it computes. A raised exception is logged at ERROR and re-raised.
        """
        t0 = time.perf_counter()
        try:
            yield fields
        except Exception as e:
            fields.update(duration_ms=int((time.perf_counter() - t0) * 1000), error=str(e))
            self.event(event, level=logging.ERROR, **fields)
            raise
        fields["duration_ms"] = int((time.perf_counter() - t0) * 1000)
        self.event(event, **fields)


def get_logger(name: str) -> DutySwapLogger:
    return DutySwapLogger(name)
