"""
Logging setup for the SRD engine.

The CLI configures logging once through `configure_logging`; every other module
just asks for a logger. Sync, init and auth events start with a bracketed tag
(`[SYNC START] spells`, `[INIT] ...`); the JSON formatter lifts that tag into
its own field so log pipelines can filter on it.

Usage:
    from srd_engine.utils.logging import configure_logging, get_logger

    configure_logging(level="INFO", json_logs=False)
    log = get_logger(__name__)
    log.info("[SYNC SUCCESS] spells", extra={"data_type": "spells", "count": 319})
"""

from __future__ import annotations

import json
import logging
import logging.config
import re
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

# Attributes every LogRecord carries; anything else was passed through `extra=`.
_RESERVED_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", (), None)).keys()
) | {"message", "asctime"}

_TAG_RE = re.compile(r"^\[([A-Z][A-Z ]*)\]\s*")

# Chatty dependencies; raised to WARNING unless DEBUG is requested.
_NOISY_LOGGERS = ("httpx", "httpcore", "psycopg.pool")


def split_tag(message: str) -> Tuple[Optional[str], str]:
    """Split `"[SYNC START] spells"` into `("SYNC START", "spells")`."""
    match = _TAG_RE.match(message)
    if match is None:
        return None, message
    return match.group(1).strip(), message[match.end():]


def _json_formatter(record: logging.LogRecord) -> str:
    """Render a log record as a single JSON line."""
    tag, text = split_tag(record.getMessage())
    payload: Dict[str, Any] = {
        "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
        "level": record.levelname,
        "logger": record.name,
        "message": text,
    }
    if tag is not None:
        payload["tag"] = tag
    for key, value in vars(record).items():
        if key not in _RESERVED_ATTRS and not key.startswith("_"):
            payload.setdefault(key, value)
    if record.exc_info:
        payload["exc_info"] = logging.Formatter().formatException(record.exc_info)
    return json.dumps(payload, default=str)


class JsonFormatter(logging.Formatter):
    """JSON-lines formatter; `extra=` fields become top-level keys."""

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        return _json_formatter(record)


def configure_logging(
    level: str = "INFO",
    json_logs: bool = False,
) -> None:
    """
    Configure root logging for a CLI run.

    Parameters
    ----------
    level : str
        Logging level name (e.g., "DEBUG", "INFO", "WARNING").
    json_logs : bool
        Emit JSON lines instead of the console format.
    """
    level = level.upper()
    dependency_level = "DEBUG" if level == "DEBUG" else "WARNING"

    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "console": {
                    "format": "%(asctime)s | %(levelname)-7s | %(name)s | %(message)s",
                    "datefmt": "%Y-%m-%d %H:%M:%S",
                },
                "json": {
                    "()": JsonFormatter,
                },
            },
            "handlers": {
                "stderr": {
                    "class": "logging.StreamHandler",
                    "stream": "ext://sys.stderr",
                    "formatter": "json" if json_logs else "console",
                    "level": level,
                }
            },
            "loggers": {name: {"level": dependency_level} for name in _NOISY_LOGGERS},
            "root": {
                "handlers": ["stderr"],
                "level": level,
            },
        }
    )


def get_logger(name: Optional[str] = None) -> logging.Logger:
    return logging.getLogger(name)


__all__ = ["configure_logging", "get_logger", "JsonFormatter", "split_tag"]
