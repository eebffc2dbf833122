"""Background execution of webhook events after the HTTP acknowledgement."""

import asyncio
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from relay.logging_config import get_logger
from relay.schemas.webhook import WebhookEvent

logger = get_logger("dispatch_service")

EventHandler = Callable[[WebhookEvent], Awaitable[Any]]


class _ChatLock:
    def __init__(self):
        self.lock = asyncio.Lock()
        self.users = 0


class PipelineDispatcher:
    """Runs handler tasks with bounded concurrency.

    Events of the same chat run one at a time in submission order; at most
    ``max_concurrency`` handlers run at once and at most ``max_pending``
    tasks may be queued or running.
    """

    def __init__(self, handler: EventHandler, max_concurrency: int = 10, max_pending: int = 100):
        self.handler = handler
        self.max_pending = max(max_pending, 1)
        self._max_concurrency = max(max_concurrency, 1)
        self._semaphore: Optional[asyncio.Semaphore] = None
        self._chat_locks: Dict[str, _ChatLock] = {}
        self._tasks: Set[asyncio.Task] = set()
        self._closed = False

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def submit(self, event: WebhookEvent) -> bool:
        """Schedule the event. Returns False when the event was rejected."""
        if self._closed:
            logger.warning("Dispatcher closed, dropping event")
            return False
        if len(self._tasks) >= self.max_pending:
            logger.warning(
                "Dispatcher saturated, dropping event",
                extra={"context": {"pending": len(self._tasks), "chat_id": event.data.chat.id}},
            )
            return False

        chat_id = event.data.chat.id
        entry = self._chat_locks.setdefault(chat_id, _ChatLock())
        entry.users += 1
        task = asyncio.create_task(self._run(chat_id, entry, event))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return True

    async def _run(self, chat_id: str, entry: _ChatLock, event: WebhookEvent) -> None:
        if self._semaphore is None:
            self._semaphore = asyncio.Semaphore(self._max_concurrency)
        try:
            async with entry.lock:
                async with self._semaphore:
                    await self.handler(event)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.exception(
                "Event handler failed",
                extra={"context": {"chat_id": chat_id, "error": str(exc)}},
            )
        finally:
            entry.users -= 1
            if entry.users == 0 and self._chat_locks.get(chat_id) is entry:
                del self._chat_locks[chat_id]

    async def join(self) -> None:
        """Wait until every submitted task has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self, timeout: Optional[float] = 10.0) -> None:
        """Stop accepting events and wait for in-flight ones, cancelling stragglers."""
        self._closed = True
        if not self._tasks:
            return
        tasks = list(self._tasks)
        _, pending = await asyncio.wait(tasks, timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            logger.warning(f"Cancelled {len(pending)} unfinished event tasks")
            await asyncio.gather(*pending, return_exceptions=True)
