"""
Structured logging for the monitoring pipeline.

Each record is one JSON object (or a console line when LOG_FORMAT=console)
carrying event_type, level, logger, an ISO timestamp and whatever keyword
context the caller passed. Addresses are logged shortened under wallet_id.

Modules do:

    logger = get_logger(__name__)
    logger.info("aggregation_cycle_end", processed=3, errors=0)

and, for work on a single monitored entity:

    log = bind_entity(logger, address, kind="wallet")
    log.warning("indexer_fetch_failed", source="txlist")

Nothing from backend_chainsage is imported here, so every module can use it.
"""

from __future__ import annotations

import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any, TextIO

import structlog

DEFAULT_LOG_LEVEL = "INFO"
DEFAULT_LOG_FORMAT = "json"
_ADDRESS_PREFIX_LEN = 10


def _iso_timestamp(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    event_dict.setdefault("timestamp", datetime.now(timezone.utc).isoformat())
    return event_dict


def _event_type(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """structlog's positional 'event' becomes event_type."""
    event = event_dict.pop("event", None)
    if event is not None:
        event_dict.setdefault("event_type", event)
    return event_dict


def configure_logging(level: str | None = None, fmt: str | None = None, stream: TextIO | None = None) -> None:
    """
    (Re)configure structlog. level and fmt default to LOG_LEVEL / LOG_FORMAT,
    stream to stdout.
    Runs once at import; main.py calls it again with the loaded settings.
    """
    level_name = (level or os.getenv("LOG_LEVEL") or DEFAULT_LOG_LEVEL).upper()
    fmt = (fmt or os.getenv("LOG_FORMAT") or DEFAULT_LOG_FORMAT).strip().lower()

    renderer: Any
    if fmt == "console":
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())
    else:
        renderer = structlog.processors.JSONRenderer(default=str)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.format_exc_info,
            _iso_timestamp,
            _event_type,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(getattr(logging, level_name, logging.INFO)),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=stream or sys.stdout),
        cache_logger_on_first_use=False,
    )


if not structlog.is_configured():
    configure_logging()


def get_logger(name: str) -> structlog.BoundLogger:
    """Module logger; the module name is carried as `logger`. Follows later reconfiguration."""
    return structlog.get_logger(name).bind(logger=name)


def short_address(address: str | None) -> str:
    """Shorten an address for log output (first 10 chars + ellipsis)."""
    if not address:
        return "?"
    if len(address) <= _ADDRESS_PREFIX_LEN:
        return address
    return address[:_ADDRESS_PREFIX_LEN] + "..."


def bind_entity(logger: structlog.BoundLogger, address: str | None, **context: Any) -> structlog.BoundLogger:
    """Logger with the (shortened) entity address and extra context bound to every call."""
    return logger.bind(wallet_id=short_address(address), **context)
