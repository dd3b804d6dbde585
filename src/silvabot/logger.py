"""Structured logging singleton.

Configured at import so that plugin loading and session decoding can log
before Settings are parsed. The initial level comes from ``LOGGING__LEVEL``
(the same variable Settings reads) or ``LOG_LEVEL``; ``set_level`` applies
the configured level once settings exist.

The transport libraries log every frame at INFO. They are held at WARNING
unless the bot itself runs at DEBUG.
"""

from __future__ import annotations

import logging
import os
import sys

import structlog

_CHATTY_LOGGERS = ("neonize", "whatsmeow", "aiohttp.access")


def _level_from_env() -> int:
    name = os.environ.get("LOGGING__LEVEL") or os.environ.get("LOG_LEVEL") or "INFO"
    return getattr(logging, name.upper(), logging.INFO)


def _quiet_transport(level: int) -> None:
    floor = logging.DEBUG if level <= logging.DEBUG else logging.WARNING
    for name in _CHATTY_LOGGERS:
        logging.getLogger(name).setLevel(floor)


def _setup_logging() -> structlog.stdlib.BoundLogger:
    level = _level_from_env()

    # stdlib root first: structlog's filter_by_level asks it
    logging.basicConfig(level=level, format="%(message)s", stream=sys.stderr)
    _quiet_transport(level)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    return structlog.get_logger("silvabot")


logger = _setup_logging()


def set_level(level_name: str) -> None:
    """Apply a level name (``"DEBUG"``, ``"INFO"`` ...) to the root logger."""
    level = getattr(logging, level_name.upper(), logging.INFO)
    logging.getLogger().setLevel(level)
    _quiet_transport(level)


def _uncaught_exception_handler(
    exc_type: type[BaseException],
    exc_value: BaseException,
    exc_tb: object,
) -> None:
    if issubclass(exc_type, KeyboardInterrupt):
        sys.__excepthook__(exc_type, exc_value, exc_tb)  # type: ignore[arg-type]
        return
    logger.critical("Uncaught exception", exc_info=(exc_type, exc_value, exc_tb))
    sys.exit(1)


sys.excepthook = _uncaught_exception_handler
