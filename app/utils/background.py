"""
Fire-and-forget tasks that must never block the request that started them.
"""
import asyncio
import logging
from typing import Awaitable, Set

logger = logging.getLogger("app.background")

# 실행 중인 작업 참조 유지 (GC로 취소되지 않도록)
_tasks: Set[asyncio.Task] = set()


def spawn(coro: Awaitable, name: str) -> asyncio.Task:
    """Schedule coro on the running loop; exceptions are logged, never raised."""
    task = asyncio.ensure_future(coro)
    _tasks.add(task)

    def _done(t: asyncio.Task) -> None:
        _tasks.discard(t)
        if t.cancelled():
            return
        exc = t.exception()
        if exc is not None:
            logger.warning(
                "Background task failed",
                extra={"event": "background", "task": name, "error": str(exc)[:200]},
            )

    task.add_done_callback(_done)
    return task


async def drain(timeout: float = 5.0) -> None:
    """Wait for pending background tasks (shutdown and tests)."""
    pending = list(_tasks)
    if pending:
        await asyncio.wait(pending, timeout=timeout)
