"""JSON logging with request correlation and field scrubbing.

Coordination events name callers, locks and tokens on almost every line, so
records are scrubbed by field shape before they are written:
- secret fields (``*_token``, ``*_secret``, ``*signature``, ``authorization``,
  raw payloads) are replaced with ``[REDACTED]``
- identity fields (``identity``, ``subject``, ``jti``, ``resource``, ``*_address``)
  are replaced with a short digest, so one caller can be followed across
  lines without being named
- bearer credentials and signature headers embedded in any other string are
  masked in place

Services log raw values under those field names and leave scrubbing here.
"""

from __future__ import annotations

import hashlib
import json
import logging
import re
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Mapping

from ridecoord.core.config import LogSettings, settings

REDACTED = "[REDACTED]"

_request_id_var: ContextVar[str | None] = ContextVar("request_id", default=None)

_SECRET_FIELD = re.compile(
    r"(^|[_-])(token|secret|signature|password|authorization|bearer|cookie|payload|raw_body)$"
    r"|^redis_url$",
    re.IGNORECASE,
)
_IDENTITY_FIELD = re.compile(
    r"^(identity|subject|principal|jti|resource|email)$|_address$",
    re.IGNORECASE,
)
_EMBEDDED_SECRETS = (
    re.compile(r"(?i)\bbearer\s+\S+"),
    re.compile(r"\beyJ[\w-]+\.[\w-]+\.[\w-]*"),
    re.compile(r"\bv1=[0-9a-fA-F]+"),
)

# LogRecord attributes that are not user supplied
_RECORD_ATTRS = frozenset(
    logging.LogRecord("", 0, "", 0, "", None, None).__dict__
) | {"message", "asctime", "taskName"}


def set_request_id(request_id: str | None) -> None:
    _request_id_var.set(request_id)


def get_request_id() -> str | None:
    return _request_id_var.get()


def clear_request_id() -> None:
    _request_id_var.set(None)


def hash_identity(value: str) -> str:
    """Short stable digest of an identity, lock key or token id.

    Examples:
        >>> len(hash_identity("10.0.0.1"))
        16
    """

    return hashlib.sha256(value.encode()).hexdigest()[:16]


def mask_embedded(text: str) -> str:
    """Mask credentials that appear inside free-form text.

    Examples:
        >>> mask_embedded("header was Bearer abc.def")
        'header was [REDACTED]'
    """

    for pattern in _EMBEDDED_SECRETS:
        text = pattern.sub(REDACTED, text)
    return text


def scrub(key: str, value: Any) -> Any:
    """Return the loggable form of one structured field."""

    if _SECRET_FIELD.search(key):
        return REDACTED
    if _IDENTITY_FIELD.search(key) and value is not None:
        return hash_identity(str(value))
    if isinstance(value, Mapping):
        return {k: scrub(str(k), v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [scrub(key, v) for v in value]
    if isinstance(value, str):
        return mask_embedded(value)
    return value


def _extras(record: logging.LogRecord) -> dict[str, Any]:
    return {
        key: value
        for key, value in record.__dict__.items()
        if key not in _RECORD_ATTRS and not key.startswith("_")
    }


class RequestIdFilter(logging.Filter):
    """Attach the request id from context when absent on the record."""

    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, "request_id", None) is None:
            request_id = get_request_id()
            if request_id:
                record.request_id = request_id
        return True


class SensitiveDataFilter(logging.Filter):
    """Scrub the record in place so every formatter sees safe values.

    A record is scrubbed once even when it passes several handlers.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, "_scrubbed", False):
            return True
        for key, value in _extras(record).items():
            setattr(record, key, scrub(key, value))
        if isinstance(record.msg, str) and not record.args:
            record.msg = mask_embedded(record.msg)
        record._scrubbed = True
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per line: timestamp, level, logger, message, extras."""

    def __init__(self, *, ensure_ascii: bool = True) -> None:
        super().__init__()
        self.ensure_ascii = ensure_ascii

    def format(self, record: logging.LogRecord) -> str:
        extras = _extras(record)
        if not getattr(record, "_scrubbed", False):
            extras = {key: scrub(key, value) for key, value in extras.items()}

        body: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
        }
        request_id = extras.pop("request_id", None) or get_request_id()
        if request_id:
            body["request_id"] = request_id
        body.update(extras)
        if record.exc_info:
            body["exc_type"] = record.exc_info[0].__name__ if record.exc_info[0] else None

        return json.dumps(body, default=str, ensure_ascii=self.ensure_ascii)


def _handler_for(cfg: LogSettings) -> logging.Handler:
    if cfg.output.lower() != "file":
        return logging.StreamHandler(sys.stdout)

    path = Path(cfg.file_path or "logs/ridecoord.log")
    path.parent.mkdir(parents=True, exist_ok=True)
    if cfg.max_bytes:
        return RotatingFileHandler(
            path,
            maxBytes=cfg.max_bytes,
            backupCount=cfg.backup_count,
            encoding="utf-8",
        )
    return logging.FileHandler(path, encoding="utf-8")


def configure_logging(log_settings: LogSettings | None = None) -> None:
    """Install the scrubbing handler on the root logger.

    Args:
        log_settings: Overrides ``settings.log`` when given.
    """

    cfg = log_settings or settings.log

    handler = _handler_for(cfg)
    handler.addFilter(RequestIdFilter())
    handler.addFilter(SensitiveDataFilter())
    if cfg.format.lower() == "plain":
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s"))
    else:
        handler.setFormatter(JsonFormatter())

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, cfg.level.upper(), logging.INFO))

    # uvicorn installs its own handlers
    logging.getLogger("uvicorn").propagate = False
    logging.getLogger("uvicorn.access").propagate = False
