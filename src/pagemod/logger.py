"""Structured logging for pagemod.

The level comes from ``LOG_LEVEL`` at import time, before pydantic Settings
exist, so that config validation failures can still be logged. The CLI
re-applies ``[logging] level`` once settings load (``set_level``).

Work done on behalf of a plugin runs inside ``plugin_context`` so every line
it logs carries ``plugin_id`` without threading it through each call.
"""

from __future__ import annotations

import logging
import os
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import structlog


def _level_number(name: str) -> int:
    return getattr(logging, name.upper(), logging.INFO)


def _configure(level: int) -> structlog.stdlib.BoundLogger:
    # filter_by_level asks the stdlib root logger, so that is where the level lives
    logging.basicConfig(level=level, format="%(message)s", stream=sys.stderr)

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
    return structlog.get_logger("pagemod")


logger = _configure(_level_number(os.environ.get("LOG_LEVEL", "INFO")))


def set_level(level_name: str) -> None:
    logging.getLogger().setLevel(_level_number(level_name))


@contextmanager
def plugin_context(plugin_id: str, **extra: Any) -> Iterator[None]:
    """Bind ``plugin_id`` (and *extra*) to every log line emitted in the block."""
    with structlog.contextvars.bound_contextvars(plugin_id=plugin_id, **extra):
        yield


def _log_uncaught(
    exc_type: type[BaseException],
    exc_value: BaseException,
    exc_tb: object,
) -> None:
    if issubclass(exc_type, KeyboardInterrupt):
        sys.__excepthook__(exc_type, exc_value, exc_tb)  # type: ignore[arg-type]
        return
    logger.critical("Uncaught exception", exc_info=(exc_type, exc_value, exc_tb))
    sys.exit(1)


def install_excepthook() -> None:
    """Route uncaught exceptions through the logger. Called by the CLI entry point."""
    sys.excepthook = _log_uncaught
