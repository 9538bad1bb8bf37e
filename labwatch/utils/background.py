import asyncio
import logging
from typing import Awaitable, Optional, Set

logger = logging.getLogger(__name__)


class BackgroundDispatcher:
    """
    Detached jobs for side effects that must not fail the caller.

    Errors are logged and never propagate. Tasks are tracked so they are
    not garbage-collected mid-flight and can be drained on shutdown.
    """

    def __init__(self):
        self._tasks: Set[asyncio.Task] = set()

    def submit(self, job: Awaitable, name: str = "background job") -> asyncio.Task:
        task = asyncio.create_task(self._run(job, name), name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(self, job: Awaitable, name: str):
        try:
            await job
        except asyncio.CancelledError:
            logger.warning(f"{name} cancelled")
            raise
        except Exception:
            logger.exception(f"{name} failed")

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self, timeout: Optional[float] = None):
        """Wait for everything submitted so far, including jobs those jobs submit"""
        async def _wait_all():
            while self._tasks:
                await asyncio.gather(*list(self._tasks), return_exceptions=True)

        await asyncio.wait_for(_wait_all(), timeout=timeout)

    async def shutdown(self, timeout: float = 10.0):
        try:
            await self.drain(timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Cancelling {len(self._tasks)} background jobs still running at shutdown")
            for task in list(self._tasks):
                task.cancel()
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
