"""
Service logging.

All coordinator, router, worker and bus loggers hang off the
``searchsaga`` logger, which owns the single stderr handler.  The level
follows ``settings.log_level`` (``LOG_LEVEL`` in the environment) unless
the caller passes one explicitly.

Usage:
    from app.utils.logging import get_logger
    logger = get_logger("searchsaga.pipeline.router")
    logger.info("[ROUTER] Discarded stale reply | cid=%s", correlation_id)
"""

from __future__ import annotations

import logging
import sys

from app.core.config import settings

SERVICE_LOGGER = "searchsaga"
LOG_FORMAT = "%(asctime)s | %(levelname)-7s | %(name)s | %(message)s"

_handler: logging.Handler | None = None


def setup_logging(level: int | str | None = None) -> logging.Logger:
    """
    Attach the service handler once and (re)apply the level.

    Safe to call again, e.g. after ``settings.log_level`` changed; only the
    level is updated on later calls.
    """
    global _handler
    service = logging.getLogger(SERVICE_LOGGER)
    service.setLevel(_resolve_level(level))

    if _handler is None:
        _handler = logging.StreamHandler(sys.stderr)
        _handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
        service.addHandler(_handler)
        # uvicorn configures the root logger; keep saga lines from printing twice
        service.propagate = False

    return service


def get_logger(name: str) -> logging.Logger:
    """Return a logger under ``searchsaga``, configuring the handler on first use."""
    if _handler is None:
        setup_logging()
    return logging.getLogger(name)


def _resolve_level(level: int | str | None) -> int | str:
    if level is None:
        level = settings.log_level
    if isinstance(level, str):
        return level.strip().upper()
    return level
