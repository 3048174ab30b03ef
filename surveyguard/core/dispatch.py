"""
Fire-and-forget dispatch for registry writes
"""
import asyncio
import logging
from typing import Any, Awaitable, Optional, Set

logger = logging.getLogger(__name__)


class BackgroundDispatcher:
    """Runs coroutines as background tasks bounded by a timeout.

    Callers never wait on the result: a slow or failing write is logged and
    the caller carries on with its locally-known state. Task references are
    held until completion so the event loop does not drop them.
    """

    def __init__(self, timeout: float = 5.0):
        self.timeout = timeout
        self._tasks: Set[asyncio.Task] = set()

    def fire(self, coro: Awaitable[Any], label: str = 'registry call',
             timeout: Optional[float] = None) -> asyncio.Task:
        task = asyncio.ensure_future(self._guard(coro, label, timeout or self.timeout))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _guard(self, coro: Awaitable[Any], label: str, timeout: float) -> Any:
        try:
            return await asyncio.wait_for(coro, timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(f"{label} timed out after {timeout}s, continuing with local state")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"{label} failed: {e}")
        return None

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self):
        """Wait for every in-flight write to finish or time out"""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def cancel_all(self):
        for task in list(self._tasks):
            task.cancel()
