# =============================================================================
# MHU Python Client -- Async Client
# =============================================================================
#
# Primary public API.  Wires the codec, transport sessions, supervisor,
# dispatcher and publisher together behind one object.
# =============================================================================

from __future__ import annotations

import asyncio
import functools
import time
from typing import Any, Callable
from uuid import uuid4

from ._logging import enable_debug_logging, logger
from .connection import ConnectionSupervisor
from .constants import (
    CONNECTION_TIMEOUT,
    DISPATCH_QUEUE_SIZE,
    DISPATCH_WORKERS,
    MAX_FRAME_SIZE,
    READ_TIMEOUT,
    RECEIVE_BUFFER_SIZE,
)
from .dispatcher import Dispatcher, Handler
from .errors import HubConnectionError
from .protocol import FrameCodec, FrameParser
from .publisher import Publisher
from .session import Session, SessionFactory
from .tls import check_client_certificate, create_ssl_context, parse_address
from .types import (
    ConnectionState,
    ConnectionStats,
    Framing,
    HubAddress,
    Message,
    ReconnectConfig,
    TLSConfig,
)


class AsyncHubClient:
    """Async hub client: a persistent read session plus one-shot publishes.

    The address is parsed and the TLS material loaded here, so
    misconfiguration fails fast with :class:`~mhu_client.errors.HubConfigError`.
    Nothing touches the network until :meth:`start`.

    Args:
        address: Hub address, ``"host:port"``.
        subscriber_id: This client's identity. Defaults to a random UUID.
        topics: Topics this client is interested in (advisory).
        handler: Receives every decoded message. More can be added with
            :meth:`on` and :meth:`on_any`.
        parser: Custom frame parser replacing the default one.
        tls: Certificate files and verification policy. ``None`` uses
            ``client.pem`` / ``client.key`` without verifying the hub.
        reconnect: Backoff after failed handshakes.
        framing: How inbound reads are cut into frames.
        workers: Concurrent handler deliveries.
        queue_size: Decoded messages buffered ahead of the handlers.
        read_size: Bytes per transport read.
        max_frame_size: Longest inbound frame accepted.
        connect_timeout: Seconds allowed per handshake.
        read_timeout: Seconds a read may block before the session is
            considered dead.
        escaped: Use the escaped frame format (the hub must too).
        debug: Log every failure with context.
        session_factory: Replaces TLS sessions, e.g. with a test transport.

    Example::

        async with AsyncHubClient("hub.local:9000", topics=["orders"]) as client:
            @client.on("orders")
            async def handle(message):
                print(message.payload)

            await client.publish("orders", "created.42")
    """

    def __init__(
        self,
        address: str,
        *,
        subscriber_id: str | None = None,
        topics: list[str] | None = None,
        handler: Handler | None = None,
        parser: FrameParser | None = None,
        tls: TLSConfig | None = None,
        reconnect: ReconnectConfig | None = None,
        framing: Framing = Framing.LINE,
        workers: int = DISPATCH_WORKERS,
        queue_size: int = DISPATCH_QUEUE_SIZE,
        read_size: int = RECEIVE_BUFFER_SIZE,
        max_frame_size: int = MAX_FRAME_SIZE,
        connect_timeout: float | None = CONNECTION_TIMEOUT,
        read_timeout: float | None = READ_TIMEOUT,
        escaped: bool = False,
        debug: bool = False,
        session_factory: SessionFactory | None = None,
    ) -> None:
        if debug:
            enable_debug_logging()
        self._debug = debug
        self._address = parse_address(address)
        self._subscriber_id = subscriber_id or str(uuid4())
        self._topics: list[str] = []
        if topics:
            self.add_topics(topics)

        if session_factory is None:
            tls = tls or TLSConfig()
            ssl_context = create_ssl_context(tls)
            check_client_certificate(tls)
            session_factory = functools.partial(
                Session,
                self._address,
                ssl_context,
                debug=debug,
                connect_timeout=connect_timeout,
                read_timeout=read_timeout,
            )
        self._session_factory = session_factory

        self._stats = ConnectionStats()
        self._codec = FrameCodec(parser, escaped=escaped)
        self._dispatcher = Dispatcher(handler, workers=workers, queue_size=queue_size)
        self._publisher = Publisher(session_factory, self._subscriber_id, self._codec)
        self._supervisor = ConnectionSupervisor(
            session_factory,
            self._on_frame,
            reconnect=reconnect,
            framing=framing,
            read_size=read_size,
            max_frame_size=max_frame_size,
            stats=self._stats,
            on_state_change=self._on_state_change,
        )
        self._run_task: asyncio.Task[None] | None = None
        self._stopped = False
        self._state_listeners: list[Callable[[ConnectionState], Any]] = []

    # -- Context manager ------------------------------------------------------

    async def __aenter__(self) -> AsyncHubClient:
        await self.start()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.stop()

    # -- Lifecycle ------------------------------------------------------------

    async def start(self) -> None:
        """Start the dispatcher and the supervisor loop in the background.

        Raises:
            HubConnectionError: If the client has already been stopped.
        """
        if self._stopped:
            raise HubConnectionError("Client has been stopped")
        if self._run_task is not None:
            return
        await self._dispatcher.start()
        self._run_task = asyncio.create_task(
            self._supervisor.run(), name="mhu-supervisor"
        )

    async def stop(self, *, drain: bool = True) -> None:
        """Close the read session and stop dispatching. The client cannot restart.

        Args:
            drain: Let handlers finish the messages already queued.
        """
        self._stopped = True
        await self._supervisor.stop()
        task, self._run_task = self._run_task, None
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)
        await self._dispatcher.stop(drain=drain)

    async def close(self) -> None:
        """Alias for stop."""
        await self.stop()

    async def run_forever(self) -> None:
        """Start if needed and block until the supervisor loop ends."""
        await self.start()
        assert self._run_task is not None
        try:
            await asyncio.shield(self._run_task)
        finally:
            await self.stop()

    # -- Properties -----------------------------------------------------------

    @property
    def address(self) -> HubAddress:
        return self._address

    @property
    def subscriber_id(self) -> str:
        return self._subscriber_id

    @property
    def topics(self) -> list[str]:
        return list(self._topics)

    @property
    def state(self) -> ConnectionState:
        return self._supervisor.state

    @property
    def is_connected(self) -> bool:
        return self._supervisor.is_connected

    @property
    def stats(self) -> ConnectionStats:
        return self._stats

    @property
    def codec(self) -> FrameCodec:
        return self._codec

    # -- Topics ---------------------------------------------------------------

    def add_topics(self, topics: list[str]) -> bool:
        """Record topics of interest. Returns False when *topics* is empty."""
        if not topics:
            logger.error("No topics to add")
            return False
        for topic in topics:
            if topic not in self._topics:
                self._topics.append(topic)
        return True

    # -- Publish / Send -------------------------------------------------------

    async def publish(self, topic: str, payload: str | bytes) -> Message:
        """Publish over a fresh session that is closed after the write.

        Raises:
            HubPublishError: On framing, connect or write failure.
        """
        message = await self._publisher.publish(topic, payload)
        self._stats.messages_published += 1
        return message

    async def send(self, topic: str, payload: str | bytes) -> bool:
        """Write a message over the persistent read session.

        Returns:
            True if written, False if not connected or the write failed.

        Raises:
            HubProtocolError: If the message cannot be framed.
        """
        frame = self._codec.encode(self._subscriber_id, topic, payload)
        ok = await self._supervisor.send(frame)
        if ok:
            self._stats.messages_sent += 1
        return ok

    # -- Handler registration -------------------------------------------------

    def on(self, topic: str) -> Callable[[Handler], Handler]:
        """Decorator to register a handler for a specific topic."""
        return self._dispatcher.on(topic)

    def on_any(self, fn: Handler) -> Handler:
        """Register a handler that receives all messages."""
        return self._dispatcher.on_any(fn)

    on_message = on_any

    def off(self, topic: str | None, fn: Handler) -> None:
        """Remove a handler (``topic=None`` for wildcard handlers)."""
        self._dispatcher.off(topic, fn)

    def on_state_change(
        self, fn: Callable[[ConnectionState], Any]
    ) -> Callable[[ConnectionState], Any]:
        """Register a listener for connection state changes."""
        self._state_listeners.append(fn)
        return fn

    # -- Stats ----------------------------------------------------------------

    def get_stats(self) -> dict[str, Any]:
        """Return client statistics."""
        connected_since = self._stats.connected_since
        return {
            "state": self.state.value,
            "address": str(self._address),
            "subscriber_id": self._subscriber_id,
            "topics": list(self._topics),
            "messages_received": self._stats.messages_received,
            "messages_sent": self._stats.messages_sent,
            "messages_published": self._stats.messages_published,
            "frames_dropped": self._stats.frames_dropped,
            "bytes_received": self._stats.bytes_received,
            "bytes_sent": self._stats.bytes_sent,
            "reconnect_count": self._stats.reconnect_count,
            "connect_failures": self._stats.connect_failures,
            "uptime": (
                time.monotonic() - connected_since if connected_since else None
            ),
            "dispatcher": {
                "pending": self._dispatcher.pending,
                "delivered": self._dispatcher.delivered,
                "failed": self._dispatcher.failed,
            },
        }

    # -- Internal -------------------------------------------------------------

    async def _on_frame(self, frame: bytes) -> None:
        """Decode one raw frame and hand it to the dispatcher."""
        message, ok = self._codec.decode(frame)
        if not ok or message is None:
            self._stats.frames_dropped += 1
            logger.debug("Dropping unparseable frame: %r", frame[:80])
            return
        self._stats.messages_received += 1
        await self._dispatcher.deliver(message)

    def _on_state_change(self, state: ConnectionState) -> None:
        for listener in self._state_listeners:
            try:
                listener(state)
            except Exception as exc:
                logger.error("State listener failed: %s", exc)
