"""Serializes every browser interaction through a single FIFO worker.

Copilot does not tolerate concurrent scripted input, even on separate tabs, so
only one queued operation ever runs at a time.
"""
import asyncio
import logging
from collections import deque
from typing import Any, Awaitable, Callable, Optional

from config import settings
from errors import QueueFull, QueueShutdown, QueueTimeout

logger = logging.getLogger(__name__)


class _QueueItem:
    __slots__ = ("operation", "future", "timer")

    def __init__(self, operation: Callable[[], Awaitable[Any]], future: asyncio.Future):
        self.operation = operation
        self.future = future
        self.timer: Optional[asyncio.TimerHandle] = None


class RequestQueue:
    def __init__(self, max_size: Optional[int] = None, timeout: Optional[float] = None):
        self.max_size = settings.MAX_QUEUE_SIZE if max_size is None else max_size
        self.timeout = settings.REQUEST_TIMEOUT if timeout is None else timeout
        self._waiting: deque = deque()
        self._worker: Optional[asyncio.Task] = None
        self._processing = False

    @property
    def pending_count(self) -> int:
        return len(self._waiting)

    @property
    def processing(self) -> bool:
        return self._processing

    async def enqueue(self, operation: Callable[[], Awaitable[Any]]) -> Any:
        if len(self._waiting) >= self.max_size:
            raise QueueFull(f"Queue is full (max {self.max_size} requests)")

        loop = asyncio.get_running_loop()
        item = _QueueItem(operation, loop.create_future())
        item.timer = loop.call_later(self.timeout, self._expire, item)
        self._waiting.append(item)
        logger.info(f"Request enqueued. Queue size: {len(self._waiting)}")

        if self._worker is None:
            self._worker = asyncio.create_task(self._drain())

        return await item.future

    def _expire(self, item: _QueueItem):
        # Whoever takes the item off the deque first owns it
        try:
            self._waiting.remove(item)
        except ValueError:
            return
        if not item.future.done():
            item.future.set_exception(QueueTimeout("Request timeout while waiting in queue"))
        logger.warning(f"Request expired in queue. Queue size: {len(self._waiting)}")

    async def _drain(self):
        try:
            while self._waiting:
                item = self._waiting.popleft()
                item.timer.cancel()
                if item.future.done():
                    # Caller went away while waiting
                    continue

                logger.info(f"Processing request. Remaining: {len(self._waiting)}")
                self._processing = True
                try:
                    result = await item.operation()
                except asyncio.CancelledError:
                    item.future.cancel()
                    raise
                except Exception as e:
                    if not item.future.done():
                        item.future.set_exception(e)
                else:
                    if not item.future.done():
                        item.future.set_result(result)
                finally:
                    self._processing = False
        finally:
            self._worker = None

    def clear(self):
        """Fail every waiting request. A request already running is left alone."""
        while self._waiting:
            item = self._waiting.popleft()
            item.timer.cancel()
            if not item.future.done():
                item.future.set_exception(QueueShutdown("Queue cleared - server shutting down"))
        logger.info("Request queue cleared")
