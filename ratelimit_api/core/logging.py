"""Structured logging for the rate limit service.

Records are emitted as one JSON object per line. Fields passed through
``extra=`` become top-level keys after scrubbing:

- secrets (API keys, auth headers, passwords) are replaced with ``[REDACTED]``
- client addresses and raw limiting keys are replaced by a short digest, so a
  noisy client can still be followed across lines without storing its IP
- credentials embedded in connection URLs (``redis://:pw@host``) are masked

The request id bound by the HTTP middleware is attached to every record
logged while that request is handled.
"""

from __future__ import annotations

import hashlib
import json
import logging
import logging.config
import re
import sys
from contextvars import ContextVar, Token
from datetime import datetime, timezone
from logging import LogRecord
from pathlib import Path
from typing import Any, Iterable, Mapping

from ratelimit_api.core.config import LogSettings, settings

REDACTED = "[REDACTED]"

SECRET_KEYS: frozenset[str] = frozenset(
    {
        "api_key",
        "x-api-key",
        "app_api_keys",
        "authorization",
        "token",
        "secret",
        "password",
        "cookie",
        "set-cookie",
    }
)

# Values kept only as digests
IDENTIFIER_KEYS: frozenset[str] = frozenset(
    {
        "client_ip",
        "x-forwarded-for",
        "x-real-ip",
        "limiter_key",
    }
)

_URL_CREDENTIALS = re.compile(r"(?P<prefix>[a-z][a-z0-9+.-]*://[^:/@\s]*):[^@/\s]*@", re.IGNORECASE)

# Attributes every LogRecord has; anything else arrived through ``extra=``
_STANDARD_ATTRS = frozenset(vars(LogRecord("", 0, "", 0, "", None, None))) | {
    "message",
    "asctime",
}

_request_id_var: ContextVar[str | None] = ContextVar("request_id", default=None)


def set_request_id(request_id: str | None) -> Token:
    """Bind ``request_id`` to the current context.

    Returns:
        Token to hand back to ``reset_request_id`` once the request is done.
    """

    return _request_id_var.set(request_id)


def reset_request_id(token: Token) -> None:
    _request_id_var.reset(token)


def get_request_id() -> str | None:
    return _request_id_var.get()


def hash_identifier(value: str) -> str:
    """Return a short, stable digest of an identifier for logs and keys.

    Args:
        value: API key, IP address or full limiting key.

    Returns:
        First 16 hex chars of the SHA-256 digest.
    """

    return hashlib.sha256(value.encode()).hexdigest()[:16]


def scrub_fields(
    fields: Mapping[Any, Any],
    secret_keys: frozenset[str] = SECRET_KEYS,
) -> dict[Any, Any]:
    """Return a copy of ``fields`` that is safe to write to a log line."""

    return {key: _scrub(key, value, secret_keys) for key, value in fields.items()}


def _scrub(key: Any, value: Any, secret_keys: frozenset[str]) -> Any:
    name = str(key).lower()
    if name in secret_keys:
        return REDACTED
    if name in IDENTIFIER_KEYS and value is not None:
        return hash_identifier(str(value))
    if isinstance(value, Mapping):
        return scrub_fields(value, secret_keys)
    if isinstance(value, (list, tuple)):
        return type(value)(_scrub("", item, secret_keys) for item in value)
    if isinstance(value, str):
        return _URL_CREDENTIALS.sub(r"\g<prefix>:***@", value)
    return value


def _extra_fields(record: LogRecord) -> dict[str, Any]:
    return {
        key: value
        for key, value in vars(record).items()
        if key not in _STANDARD_ATTRS and not key.startswith("_")
    }


class RequestIdFilter(logging.Filter):
    """Attach request_id from context when absent on the record."""

    def filter(self, record: LogRecord) -> bool:  # noqa: D401
        if getattr(record, "request_id", None) is None:
            request_id = get_request_id()
            if request_id:
                record.request_id = request_id
        return True


class SensitiveDataFilter(logging.Filter):
    """Scrub extra fields in place so every formatter sees safe values.

    Scrubbing hashes identifiers, so a record is only processed once even if
    several handlers carry this filter.
    """

    def __init__(self, secret_keys: Iterable[str] | None = None) -> None:
        super().__init__()
        self.secret_keys = frozenset(key.lower() for key in (secret_keys or SECRET_KEYS))

    def filter(self, record: LogRecord) -> bool:  # noqa: D401
        if not getattr(record, "_scrubbed", False):
            for key, value in scrub_fields(_extra_fields(record), self.secret_keys).items():
                setattr(record, key, value)
            record._scrubbed = True
        return True


class JsonFormatter(logging.Formatter):
    """Format LogRecord as one JSON object per line."""

    def __init__(
        self,
        *,
        secret_keys: Iterable[str] | None = None,
        ensure_ascii: bool = True,
    ) -> None:
        super().__init__()
        self.secret_keys = frozenset(key.lower() for key in (secret_keys or SECRET_KEYS))
        self.ensure_ascii = ensure_ascii

    def format(self, record: LogRecord) -> str:  # noqa: D401
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
        }

        request_id = getattr(record, "request_id", None) or get_request_id()
        if request_id:
            payload["request_id"] = request_id

        extras = _extra_fields(record)
        if not getattr(record, "_scrubbed", False):
            extras = scrub_fields(extras, self.secret_keys)
        payload.update(extras)

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=str, ensure_ascii=self.ensure_ascii)


def build_logging_config(log_settings: LogSettings) -> dict[str, Any]:
    """Translate ``LogSettings`` into a ``logging.config.dictConfig`` schema."""

    if log_settings.output == "file":
        file_path = Path(log_settings.file_path or "logs/ratelimit.log")
        file_path.parent.mkdir(parents=True, exist_ok=True)
        # maxBytes=0 never rolls over, which is a plain append-only file
        handler: dict[str, Any] = {
            "class": "logging.handlers.RotatingFileHandler",
            "filename": str(file_path),
            "maxBytes": log_settings.max_bytes,
            "backupCount": log_settings.backup_count,
            "encoding": "utf-8",
        }
    else:
        handler = {"class": "logging.StreamHandler", "stream": sys.stdout}

    level = log_settings.level.upper()
    if not isinstance(logging.getLevelName(level), int):
        level = "INFO"

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "filters": {
            "request_id": {"()": RequestIdFilter},
            "scrub": {"()": SensitiveDataFilter},
        },
        "formatters": {
            "json": {"()": JsonFormatter},
            "plain": {"format": "%(asctime)s %(levelname)s %(name)s %(message)s"},
        },
        "handlers": {
            "default": {
                **handler,
                "formatter": log_settings.format,
                "filters": ["request_id", "scrub"],
            },
        },
        "root": {"level": level, "handlers": ["default"]},
    }


def configure_logging(log_settings: LogSettings | None = None) -> None:
    """Install the service's root handler.

    Args:
        log_settings: Optional log settings; defaults to global settings if omitted.
    """

    logging.config.dictConfig(build_logging_config(log_settings or settings.log))

    # uvicorn installs its own handlers; keep its lines from being written twice
    logging.getLogger("uvicorn").propagate = False
    logging.getLogger("uvicorn.access").propagate = False
