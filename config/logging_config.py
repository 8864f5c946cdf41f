"""
Logging setup for the market data service.

- LOG_LEVEL from env (default INFO); LOG_JSON=1 switches to one JSON object per line.
- Yahoo session cookies and crumbs must never reach a log sink. Modules avoid
  logging them, and CredentialRedactingFilter scrubs anything that slips
  through (e.g. an httpx error message echoing a request URL).
"""
import json
import logging
import os
import re
import sys
from typing import Any

# crumb=<token> in URLs, Cookie/Set-Cookie header dumps
_CREDENTIAL_PATTERNS = (
    (re.compile(r"(crumb=)[^&\s\"']+", re.IGNORECASE), r"\1***"),
    (re.compile(r"((?:set-)?cookie[\"']?\s*[:=]\s*[\"']?)[^\"'\n]+", re.IGNORECASE), r"\1***"),
    (re.compile(r"(apikey=)[^&\s\"']+", re.IGNORECASE), r"\1***"),
)

# LogRecord attributes copied into JSON output when a caller passes them via extra=
_CONTEXT_FIELDS = ("ticker", "tier", "kind", "request_id")


def redact(text: str) -> str:
    for pattern, repl in _CREDENTIAL_PATTERNS:
        text = pattern.sub(repl, text)
    return text


class CredentialRedactingFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        msg = record.getMessage()
        clean = redact(msg)
        if clean != msg:
            record.msg = clean
            record.args = None
        return True


def _json_serial(obj: Any):
    if hasattr(obj, "isoformat"):
        return obj.isoformat()
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


class JsonFormatter(logging.Formatter):
    """Format log records as single-line JSON."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": self.formatTime(record, "%Y-%m-%dT%H:%M:%S") + "Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for name in _CONTEXT_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                payload[name] = value
        if record.exc_info and record.exc_info[0]:
            payload["exception"] = redact(self.formatException(record.exc_info))
        return json.dumps(payload, default=_json_serial)


def configure_logging() -> None:
    """Configure root logger: level from LOG_LEVEL, JSON format when LOG_JSON is set."""
    level_name = (os.getenv("LOG_LEVEL") or "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)

    use_json = os.getenv("LOG_JSON", "").lower() in ("1", "true", "yes")

    root = logging.getLogger()
    root.setLevel(level)
    # Avoid duplicate handlers when reloading
    for h in root.handlers[:]:
        root.removeHandler(h)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.addFilter(CredentialRedactingFilter())
    if use_json:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
        )
    root.addHandler(handler)

    # httpx logs every request URL at INFO, crumb included
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
