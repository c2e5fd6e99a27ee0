"""
Structured logging for the reconciliation core.

Every record carries timestamp, level, logger and event_type plus keyword context.
Modules call get_logger(__name__) and log snake_case events with ids as keywords
(anchor_id, claim_id, tx_id). Per-wallet code logs through bind_wallet(); operator
runs that log many items wrap the loop in bind_actor() so each line names who ran it.

Depends only on stdlib logging and structlog; nothing from anchor_recon is imported here.
"""

from __future__ import annotations

import logging
import os
import sys
from contextlib import contextmanager
from typing import Any, Iterator

import structlog

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_LEVEL_VALUE = getattr(logging, LOG_LEVEL, logging.INFO)

# json (default) or console
LOG_FORMAT = os.getenv("LOG_FORMAT", "json").strip().lower()


def _event_type(
    logger: Any,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """Rename structlog's 'event' key to event_type."""
    if "event" in event_dict and "event_type" not in event_dict:
        event_dict["event_type"] = event_dict.pop("event")
    return event_dict


def configure_structlog() -> None:
    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        _event_type,
    ]
    if LOG_FORMAT == "json":
        # Decimal amounts and enums fall back to str()
        processors.append(structlog.processors.JSONRenderer(default=str))
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()))
    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(LOG_LEVEL_VALUE),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stdout),
        cache_logger_on_first_use=True,
    )


if not structlog.is_configured():
    configure_structlog()


def get_logger(name: str) -> structlog.BoundLogger:
    """
    Structured logger tagged with the module name.

        logger = get_logger(__name__)
        logger.info("match_approved", anchor_id=12, claim_id=40, actor="ops@desk")
    """
    return structlog.get_logger(name).bind(logger=name)


def bind_wallet(wallet: str) -> structlog.BoundLogger:
    """Logger with the (lower-cased) wallet address bound as wallet_id."""
    return get_logger("anchor_recon.wallet").bind(wallet_id=(wallet or "").lower())


@contextmanager
def bind_actor(actor: str) -> Iterator[None]:
    """Attach actor to every record logged inside the block, on any logger."""
    with structlog.contextvars.bound_contextvars(actor=actor):
        yield
