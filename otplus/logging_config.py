"""Logging setup for the OTPLUS service.

Configuration comes from the environment:

* ``OTPLUS_LOG_LEVEL``: root level name, ``INFO`` when unset.
* ``OTPLUS_LOG_JSON``: ``false``/``0``/``no`` switches to plain text lines.

Nothing is configured unless one of the two is set, so embedding the app in
another process keeps that process's handlers.
"""
from __future__ import annotations

import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Mapping

LEVEL_ENV = "OTPLUS_LOG_LEVEL"
JSON_ENV = "OTPLUS_LOG_JSON"
PLAIN_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"

# ``extra=`` keys copied into the JSON payload when a record carries them.
CONTEXT_FIELDS = ("error_type", "status_code")

_FALSE_VALUES = {"0", "false", "no", "off"}
_QUIET_LOGGERS = ("uvicorn.access", "httpcore", "httpx")


class JSONFormatter(logging.Formatter):
    """One JSON object per record, with the fetch failure context fields."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}.{record.funcName}:{record.lineno}",
        }
        for field in CONTEXT_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                entry[field] = value
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def _json_enabled(value: str | None) -> bool:
    return value is None or value.strip().lower() not in _FALSE_VALUES


def setup_logging(level: str | None = None, json_output: bool | None = None) -> None:
    """Install a single stdout handler on the root logger.

    Arguments left as ``None`` fall back to the environment variables.
    """

    level = level or os.getenv(LEVEL_ENV, "INFO")
    if json_output is None:
        json_output = _json_enabled(os.getenv(JSON_ENV))

    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter() if json_output else logging.Formatter(PLAIN_FORMAT))
    root.handlers = [handler]

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def configure_from_env(environ: Mapping[str, str] | None = None) -> bool:
    """Run :func:`setup_logging` when the environment asks for it."""

    environ = os.environ if environ is None else environ
    if not (environ.get(LEVEL_ENV) or environ.get(JSON_ENV)):
        return False
    setup_logging(environ.get(LEVEL_ENV) or "INFO", _json_enabled(environ.get(JSON_ENV)))
    return True


__all__ = ["JSONFormatter", "configure_from_env", "setup_logging"]
