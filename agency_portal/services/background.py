"""
services/background.py
----------------------
Detached tasks for fire-and-forget side effects (role sync, profile pointer).

dispatch() schedules a coroutine and returns immediately. The caller never
sees the task's result or its errors: failures are logged and dropped.
References are held until completion so tasks are not garbage collected
mid-flight. drain() is awaited on shutdown (and by tests).
"""

import asyncio
from typing import Awaitable

from agency_portal.core.logging import get_logger

logger = get_logger(__name__)

_pending: set[asyncio.Task] = set()


def _on_done(task: asyncio.Task) -> None:
    _pending.discard(task)
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.warning(
            "Background task failed (non-fatal)",
            task=task.get_name(),
            error=str(exc),
            exc_info=exc,
        )


def dispatch(coro: Awaitable, name: str) -> None:
    task = asyncio.ensure_future(coro)
    task.set_name(name)
    _pending.add(task)
    task.add_done_callback(_on_done)


async def drain() -> None:
    """Wait for every in-flight detached task. Never raises."""
    while _pending:
        await asyncio.gather(*list(_pending), return_exceptions=True)


def pending_count() -> int:
    return len(_pending)
