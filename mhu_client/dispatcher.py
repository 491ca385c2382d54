# =============================================================================
# MHU Python Client -- Dispatcher
# =============================================================================
#
# Decouples handler execution from the read loop with a fixed pool of
# worker tasks behind a bounded queue.  When handlers fall behind, the
# queue fills and deliver() waits, which slows the read loop down instead
# of growing memory without limit.
# =============================================================================

from __future__ import annotations

import asyncio
import inspect
from collections import defaultdict
from typing import Any, Awaitable, Callable

from ._logging import logger
from .constants import DISPATCH_QUEUE_SIZE, DISPATCH_WORKERS
from .types import Message

# Type alias for message handlers
MessageHandler = Callable[[Message], Any]
AsyncMessageHandler = Callable[[Message], Awaitable[Any]]
Handler = MessageHandler | AsyncMessageHandler


class Dispatcher:
    """Deliver decoded messages to registered handlers.

    Coroutine handlers are awaited on the event loop; plain functions run
    in a worker thread so a blocking handler cannot stall the loop.  With
    more than one worker, handlers run concurrently with themselves and
    see messages in no particular order.

    Args:
        handler: Default handler receiving every message.
        workers: Number of concurrent deliveries (default 8).
        queue_size: Messages buffered before :meth:`deliver` waits.
    """

    def __init__(
        self,
        handler: Handler | None = None,
        *,
        workers: int = DISPATCH_WORKERS,
        queue_size: int = DISPATCH_QUEUE_SIZE,
    ) -> None:
        if workers < 1:
            raise ValueError("workers must be >= 1")
        self._workers = workers
        self._queue_size = queue_size

        self._handlers: dict[str, list[Handler]] = defaultdict(list)
        self._wildcard_handlers: list[Handler] = []
        if handler is not None:
            self._wildcard_handlers.append(handler)

        self._queue: asyncio.Queue[Message] | None = None
        self._tasks: list[asyncio.Task[None]] = []
        self._delivered = 0
        self._failed = 0

    # -- Properties -----------------------------------------------------------

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    @property
    def pending(self) -> int:
        return self._queue.qsize() if self._queue is not None else 0

    @property
    def delivered(self) -> int:
        return self._delivered

    @property
    def failed(self) -> int:
        return self._failed

    # -- Handler registration -------------------------------------------------

    def on(self, topic: str) -> Callable[[Handler], Handler]:
        """Decorator to register a handler for one topic.

        Example::

            @dispatcher.on("orders")
            async def handle(message: Message):
                print(message.payload)
        """

        def decorator(fn: Handler) -> Handler:
            self._handlers[topic].append(fn)
            return fn

        return decorator

    def on_any(self, fn: Handler) -> Handler:
        """Register a wildcard handler that receives all messages."""
        self._wildcard_handlers.append(fn)
        return fn

    def off(self, topic: str | None, fn: Handler) -> None:
        """Remove a handler. ``topic=None`` removes a wildcard handler."""
        handlers = (
            self._wildcard_handlers if topic is None else self._handlers.get(topic, [])
        )
        if fn in handlers:
            handlers.remove(fn)

    def handlers_for(self, topic: str) -> list[Handler]:
        return self._handlers.get(topic, []) + self._wildcard_handlers

    # -- Lifecycle ------------------------------------------------------------

    async def start(self) -> None:
        """Spawn the worker pool. No-op when already running."""
        if self._tasks:
            return
        self._queue = asyncio.Queue(maxsize=self._queue_size)
        self._tasks = [
            asyncio.create_task(self._worker(), name=f"mhu-dispatch-{i}")
            for i in range(self._workers)
        ]

    async def stop(self, *, drain: bool = True) -> None:
        """Stop the workers.

        Args:
            drain: Deliver everything already queued first. When False,
                queued messages are discarded.
        """
        if not self._tasks:
            return
        queue = self._queue
        if queue is not None:
            if drain:
                await queue.join()
            else:
                dropped = 0
                while not queue.empty():
                    queue.get_nowait()
                    queue.task_done()
                    dropped += 1
                if dropped:
                    logger.debug("Dispatcher stopped, %d queued messages dropped", dropped)

        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._queue = None

    # -- Delivery -------------------------------------------------------------

    async def deliver(self, message: Message) -> None:
        """Queue *message* for the workers, waiting while the queue is full."""
        if self._queue is None:
            await self.start()
        assert self._queue is not None
        await self._queue.put(message)

    async def _worker(self) -> None:
        assert self._queue is not None
        queue = self._queue
        while True:
            message = await queue.get()
            try:
                await self._invoke_handlers(message)
            finally:
                queue.task_done()

    async def _invoke_handlers(self, message: Message) -> None:
        """Call every handler registered for the message's topic."""
        for handler in self.handlers_for(message.topic):
            try:
                if inspect.iscoroutinefunction(handler):
                    await handler(message)
                else:
                    result = await asyncio.to_thread(handler, message)
                    if inspect.isawaitable(result):
                        await result
                self._delivered += 1
            except Exception as exc:
                self._failed += 1
                logger.error(
                    "Handler %s failed for topic '%s': %s",
                    getattr(handler, "__name__", repr(handler)),
                    message.topic,
                    exc,
                )
