"""Structured JSON logging for the bot.

One JSON object per log line when running under a log collector,
plain text otherwise. Every line passes through a redactor that masks
the bot token, because Bot API URLs and some transport errors carry it.

Usage:
    from ivbot.logging_config import configure_logging
    configure_logging(level="INFO", json_format=True, secrets=(cfg.bot_token,))
"""
from __future__ import annotations

import json
import logging
import os
import re
import sys
import time
from typing import Any, Callable, Iterable

# Extra attributes passed through ``logger.info(..., extra={...})``
_EXTRA_FIELDS = ("update_id", "user_id", "chat_id", "action")

REDACTED = "***"

# <bot id>:<secret>, as issued by BotFather and embedded in api.telegram.org/bot<token>/
_BOT_TOKEN_RE = re.compile(r"(?<!\d)\d{5,}:[A-Za-z0-9_-]{30,}")


class SecretRedactor:
    """Masks configured secrets, and anything shaped like a bot token."""

    def __init__(self, secrets: Iterable[str | None] = ()) -> None:
        # Longest first so a secret containing another is masked whole
        self._secrets = sorted({s.strip() for s in secrets if s and s.strip()},
                               key=len, reverse=True)

    def __call__(self, text: str) -> str:
        for secret in self._secrets:
            text = text.replace(secret, REDACTED)
        return _BOT_TOKEN_RE.sub(REDACTED, text)


class JSONFormatter(logging.Formatter):
    """Structured JSON log formatter.

    Output format:
    {"ts": "2026-02-17T18:04:12.934Z", "level": "INFO", "logger": "ivbot.run_bot",
     "msg": "Polling started", "update_id": 1234, ...}
    """

    def __init__(self, redact: Callable[[str], str] | None = None) -> None:
        super().__init__()
        self._redact = redact or SecretRedactor()

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "ts": time.strftime("%Y-%m-%dT%H:%M:%S", time.gmtime(record.created))
                  + f".{int(record.msecs):03d}Z",
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }

        if record.levelno >= logging.WARNING:
            entry["file"] = f"{record.filename}:{record.lineno}"

        if record.exc_info and record.exc_info[1]:
            entry["error"] = str(record.exc_info[1])
            entry["error_type"] = type(record.exc_info[1]).__name__

        for key in _EXTRA_FIELDS:
            val = getattr(record, key, None)
            if val is not None:
                entry[key] = val

        return self._redact(json.dumps(entry, default=str, ensure_ascii=False))


class PlainFormatter(logging.Formatter):
    """Human-readable one-liner (plus traceback) for terminals."""

    def __init__(self, redact: Callable[[str], str] | None = None) -> None:
        super().__init__("%(asctime)s %(levelname)-5s %(name)s: %(message)s",
                         datefmt="%H:%M:%S")
        self._redact = redact or SecretRedactor()

    def format(self, record: logging.LogRecord) -> str:
        return self._redact(super().format(record))


def configure_logging(
    level: str = "INFO",
    json_format: bool | None = None,
    secrets: Iterable[str | None] = (),
) -> None:
    """Configure the root logger.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        json_format: If True, use JSON formatter. If None, auto-detect
                     (JSON when IVBOT_LOG_JSON or CI is set).
        secrets: Values masked wherever they appear in a log line,
                 typically the bot token.
    """
    if json_format is None:
        json_format = bool(os.environ.get("CI") or os.environ.get("IVBOT_LOG_JSON"))

    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    for handler in root.handlers[:]:
        root.removeHandler(handler)

    redact = SecretRedactor(secrets)
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter(redact) if json_format else PlainFormatter(redact))
    root.addHandler(handler)
