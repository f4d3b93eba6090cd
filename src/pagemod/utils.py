"""Shared utility helpers."""

from __future__ import annotations

import asyncio
from collections.abc import Coroutine
from typing import Any

from pagemod.logger import logger


def create_background_task(
    coro: Coroutine[Any, Any, Any],
    *,
    name: str | None = None,
) -> asyncio.Task[Any]:
    """Create an asyncio task that logs exceptions instead of swallowing them.

    A drop-in replacement for ``asyncio.create_task`` for fire-and-forget
    work (bridge replies, debounced re-runs) where nothing awaits the result
    but failures should still reach the logs.
    """
    task = asyncio.create_task(coro, name=name)
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)
    task.add_done_callback(_log_task_exception)
    return task


# Strong references so pending tasks are not garbage-collected mid-flight
_background_tasks: set[asyncio.Task[Any]] = set()


def _log_task_exception(task: asyncio.Task[Any]) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        # Done-callback, not an except block: pass exc_info explicitly
        logger.error(
            "Background task failed",
            task_name=task.get_name(),
            exc_info=exc,
        )
