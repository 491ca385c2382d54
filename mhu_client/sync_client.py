# =============================================================================
# MHU Python Client -- Synchronous Wrapper
# =============================================================================
#
# Thread-based wrapper around AsyncHubClient for blocking usage.
# =============================================================================

from __future__ import annotations

import asyncio
import threading
from typing import Any, Callable

from ._logging import logger
from .client import AsyncHubClient
from .dispatcher import Handler
from .errors import HubConnectionError, HubTimeoutError
from .types import ConnectionState, Message


class SyncHubClient:
    """Blocking / thread-based hub client.

    Runs an :class:`AsyncHubClient` on a private event loop in a background
    thread. Handlers registered here are plain functions and run on the
    dispatcher's worker threads, so they must be thread-safe.

    Keyword arguments are forwarded to :class:`AsyncHubClient`; the client
    itself is built on the background loop when :meth:`start` is called,
    so configuration errors surface from :meth:`start`.

    Example::

        client = SyncHubClient("hub.local:9000", subscriber_id="3456")

        @client.on("orders")
        def handle(message):
            print(message.payload)

        client.start()
        client.publish("orders", "created.42")
        client.run_forever()
    """

    def __init__(self, address: str, **kwargs: Any) -> None:
        self._address = address
        self._kwargs = kwargs

        self._handlers: dict[str, list[Handler]] = {}
        self._wildcard_handlers: list[Handler] = []

        self._loop: asyncio.AbstractEventLoop | None = None
        self._thread: threading.Thread | None = None
        self._client: AsyncHubClient | None = None
        self._running = False
        self._started_event = threading.Event()
        self._stopped_event = threading.Event()
        self._start_error: Exception | None = None
        self._shutdown: asyncio.Event | None = None

    # -- Lifecycle ------------------------------------------------------------

    def start(self, timeout: float = 15.0) -> None:
        """Start the background thread. Blocks until the client is running.

        Raises:
            HubConfigError: If the client cannot be constructed.
            HubTimeoutError: If the background loop does not come up in time.
        """
        if self._running:
            return

        self._running = True
        self._started_event.clear()
        self._stopped_event.clear()
        self._start_error = None
        self._thread = threading.Thread(
            target=self._run_loop, daemon=True, name="mhu-client"
        )
        self._thread.start()

        if not self._started_event.wait(timeout=timeout):
            self.close()
            raise HubTimeoutError(f"Client did not start within {timeout}s")

        if self._start_error is not None:
            self._running = False
            if self._thread.is_alive():
                self._thread.join(timeout=3.0)
            raise self._start_error

    def close(self) -> None:
        """Stop the client and the background thread."""
        self._running = False
        loop, shutdown = self._loop, self._shutdown
        if loop is not None and shutdown is not None:
            try:
                loop.call_soon_threadsafe(shutdown.set)
            except RuntimeError:
                pass  # loop already closed

        thread = self._thread
        if thread and thread.is_alive():
            thread.join(timeout=10.0)
            if thread.is_alive():
                logger.warning("Background loop still running 10s after close()")
                return
        self._stopped_event.set()

    def disconnect(self) -> None:
        """Alias for close."""
        self.close()

    def run_forever(self) -> None:
        """Start if needed and block until :meth:`close` is called."""
        if not self._running:
            self.start()
        self._stopped_event.wait()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=10.0)

    # -- Publish / Send -------------------------------------------------------

    def publish(self, topic: str, payload: str | bytes, timeout: float = 30.0) -> Message:
        """Publish one message. Blocks until written.

        Raises:
            HubConnectionError: If the client is not started.
            HubPublishError: On framing, connect or write failure.
        """
        loop, client = self._loop, self._client
        if loop is None or client is None:
            raise HubConnectionError("Client is not started")
        future = asyncio.run_coroutine_threadsafe(client.publish(topic, payload), loop)
        return future.result(timeout=timeout)

    def send(self, topic: str, payload: str | bytes) -> bool:
        """Write over the persistent session. Returns False if not possible."""
        loop, client = self._loop, self._client
        if loop is None or client is None:
            return False
        try:
            future = asyncio.run_coroutine_threadsafe(client.send(topic, payload), loop)
            return future.result(timeout=5.0)
        except Exception as exc:
            logger.debug("Send failed: %s", exc)
            return False

    def add_topics(self, topics: list[str]) -> bool:
        if self._client is not None:
            return self._client.add_topics(topics)
        if not topics:
            logger.error("No topics to add")
            return False
        pending = list(self._kwargs.get("topics") or [])
        pending.extend(t for t in topics if t not in pending)
        self._kwargs["topics"] = pending
        return True

    # -- Handler registration -------------------------------------------------

    def on(self, topic: str) -> Callable[[Handler], Handler]:
        """Decorator for per-topic handlers."""

        def decorator(fn: Handler) -> Handler:
            self._handlers.setdefault(topic, []).append(fn)
            if self._client is not None:
                self._client.on(topic)(fn)
            return fn

        return decorator

    def on_any(self, fn: Handler) -> Handler:
        """Register wildcard handler."""
        self._wildcard_handlers.append(fn)
        if self._client is not None:
            self._client.on_any(fn)
        return fn

    def off(self, topic: str | None, fn: Handler) -> None:
        """Remove a specific handler."""
        handlers = (
            self._wildcard_handlers if topic is None else self._handlers.get(topic, [])
        )
        if fn in handlers:
            handlers.remove(fn)
        if self._client is not None:
            self._client.off(topic, fn)

    # -- Properties -----------------------------------------------------------

    @property
    def is_connected(self) -> bool:
        return self._client is not None and self._client.is_connected

    @property
    def state(self) -> ConnectionState:
        if self._client:
            return self._client.state
        return ConnectionState.DISCONNECTED

    @property
    def subscriber_id(self) -> str | None:
        if self._client:
            return self._client.subscriber_id
        return self._kwargs.get("subscriber_id")

    def get_stats(self) -> dict[str, Any]:
        if self._client:
            return self._client.get_stats()
        return {}

    # -- Internal -------------------------------------------------------------

    def _run_loop(self) -> None:
        """Background thread: run the async event loop."""
        self._loop = asyncio.new_event_loop()
        asyncio.set_event_loop(self._loop)
        try:
            self._loop.run_until_complete(self._async_main())
        except Exception as exc:
            logger.error("Background loop error: %s", exc)
        finally:
            self._loop.close()
            self._loop = None
            self._stopped_event.set()

    async def _async_main(self) -> None:
        """Async entry point in the background thread."""
        self._shutdown = asyncio.Event()
        try:
            self._client = AsyncHubClient(self._address, **self._kwargs)
            for topic, handlers in self._handlers.items():
                for fn in handlers:
                    self._client.on(topic)(fn)
            for fn in self._wildcard_handlers:
                self._client.on_any(fn)
            await self._client.start()
        except Exception as exc:
            self._start_error = exc
            self._client = None
            self._started_event.set()
            return

        self._started_event.set()
        try:
            if self._running:
                await self._shutdown.wait()
        finally:
            await self._client.stop()
