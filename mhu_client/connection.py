# =============================================================================
# MHU Python Client -- Connection Supervisor
# =============================================================================
#
# Session lifecycle: connect, read until the session dies, reconnect.
# Failed handshakes back off before the next attempt, and so does a
# session that ends before delivering a single frame.  A session that
# carried traffic and then dropped is replaced immediately.  stop() interrupts whatever
# the loop is blocked on (handshake, read, backoff sleep, full dispatch
# queue).
# =============================================================================

from __future__ import annotations

import asyncio
import random
import time
from typing import Any, Awaitable, Callable, TypeVar

from ._logging import logger
from .constants import MAX_FRAME_SIZE, RECEIVE_BUFFER_SIZE
from .errors import HubConnectionError
from .protocol import FrameBuffer
from .session import HubSession, SessionFactory
from .types import ConnectionState, ConnectionStats, Framing, ReconnectConfig, ReconnectMode

T = TypeVar("T")

FrameCallback = Callable[[bytes], Awaitable[Any]]


class _Stopped(Exception):
    """Raised inside the loop when stop() interrupts a blocking call."""


class ConnectionSupervisor:
    """Keeps one read session to the hub alive and feeds its frames onward.

    Args:
        session_factory: Zero-argument callable returning a new, unconnected
            session for every attempt.
        on_frame: Coroutine called with each raw frame, in socket order.
            Exceptions it raises are logged and do not end the session.
        reconnect: Backoff between failed handshakes (default: fixed 10s,
            retry forever).
        framing: How reads are cut into frames.
        read_size: Bytes requested per transport read.
        max_frame_size: Longest frame kept by the line framer.
        stats: Shared counters, updated in place.
        on_state_change: Called with every new :class:`ConnectionState`.
    """

    def __init__(
        self,
        session_factory: SessionFactory,
        on_frame: FrameCallback,
        *,
        reconnect: ReconnectConfig | None = None,
        framing: Framing = Framing.LINE,
        read_size: int = RECEIVE_BUFFER_SIZE,
        max_frame_size: int = MAX_FRAME_SIZE,
        stats: ConnectionStats | None = None,
        on_state_change: Callable[[ConnectionState], Any] | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._on_frame = on_frame
        self._reconnect_cfg = reconnect or ReconnectConfig()
        self._framing = framing
        self._read_size = read_size
        self._max_frame_size = max_frame_size
        self._stats = stats if stats is not None else ConnectionStats()
        self._on_state_change = on_state_change

        self._state = ConnectionState.DISCONNECTED
        self._session: HubSession | None = None
        self._failed_attempts = 0
        self._has_connected = False
        self._running = False
        self._stop_event = asyncio.Event()
        self._finished = asyncio.Event()

    # -- Properties -----------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def session(self) -> HubSession | None:
        return self._session

    @property
    def is_connected(self) -> bool:
        return self._session is not None and self._session.is_connected

    @property
    def stats(self) -> ConnectionStats:
        return self._stats

    # -- Run / Stop -----------------------------------------------------------

    async def run(self) -> None:
        """Connect, read, reconnect until :meth:`stop` is called.

        Also returns once ``reconnect.max_attempts`` consecutive attempts
        have failed. An attempt fails when the handshake fails or when the
        session ends before delivering a frame.
        """
        if self._stop_event.is_set():
            raise HubConnectionError("Supervisor has been stopped")
        if self._running:
            raise HubConnectionError("Supervisor is already running")

        self._running = True
        self._finished.clear()
        try:
            while not self._stop_event.is_set():
                session = await self._connect()
                if session is not None:
                    if await self._serve(session):
                        continue
                    self._failed_attempts += 1
                    logger.debug(
                        "Session ended before any frame arrived (attempt %d)",
                        self._failed_attempts,
                    )

                cfg = self._reconnect_cfg
                if 0 <= cfg.max_attempts <= self._failed_attempts:
                    logger.error(
                        "Max reconnect attempts (%d) reached, giving up",
                        cfg.max_attempts,
                    )
                    break
                await self._backoff()
        except _Stopped:
            pass
        finally:
            self._running = False
            self._set_state(ConnectionState.CLOSED)
            self._finished.set()

    async def stop(self) -> None:
        """Stop the loop and close the active session. Idempotent."""
        self._stop_event.set()
        if self._running:
            await self._finished.wait()
        else:
            self._set_state(ConnectionState.CLOSED)

    # -- Send -----------------------------------------------------------------

    async def send(self, data: bytes) -> bool:
        """Write over the live read session. Returns True on success."""
        session = self._session
        if session is None or not session.is_connected:
            return False
        try:
            await session.write(data)
        except (HubConnectionError, OSError) as exc:
            logger.debug("Send failed: %s", exc)
            return False
        self._stats.bytes_sent += len(data)
        return True

    # -- Internal: connect ----------------------------------------------------

    async def _connect(self) -> HubSession | None:
        self._set_state(ConnectionState.CONNECTING)
        session = self._session_factory()
        try:
            await self._interruptible(session.connect())
        except _Stopped:
            await session.close()
            raise
        except (HubConnectionError, OSError) as exc:
            self._failed_attempts += 1
            self._stats.connect_failures += 1
            logger.debug(
                "Connect attempt %d failed: %s", self._failed_attempts, exc
            )
            await session.close()
            self._set_state(ConnectionState.DISCONNECTED)
            return None

        return session

    async def _backoff(self) -> None:
        delay = self._calculate_delay()
        cfg = self._reconnect_cfg
        logger.debug(
            "Reconnecting in %.1fs (attempt %d/%s)",
            delay,
            self._failed_attempts + 1,
            cfg.max_attempts if cfg.max_attempts >= 0 else "inf",
        )
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            pass

    # -- Internal: read loop --------------------------------------------------

    async def _serve(self, session: HubSession) -> bool:
        """Read from *session* until it ends. True if any frame arrived."""
        self._session = session
        if self._has_connected:
            self._stats.reconnect_count += 1
        self._has_connected = True
        self._stats.connected_since = time.monotonic()
        self._set_state(ConnectionState.CONNECTED)
        try:
            return await self._read_loop(session)
        finally:
            self._session = None
            self._stats.connected_since = None
            await session.close()
            if not self._stop_event.is_set():
                self._set_state(ConnectionState.DISCONNECTED)

    async def _read_loop(self, session: HubSession) -> bool:
        """Read until the session errors or closes."""
        self._set_state(ConnectionState.READING)
        framer = FrameBuffer(self._max_frame_size) if self._framing == Framing.LINE else None
        delivered = False

        while True:
            try:
                data = await self._interruptible(session.read(self._read_size))
            except (HubConnectionError, OSError) as exc:
                logger.debug("Read loop ended: %s", exc)
                return delivered
            if not data:
                logger.debug("Hub closed the session")
                return delivered

            self._stats.bytes_received += len(data)
            if framer is None:
                frames = [data]
            else:
                dropped = framer.dropped
                frames = framer.feed(data)
                self._stats.frames_dropped += framer.dropped - dropped

            if frames and not delivered:
                delivered = True
                self._failed_attempts = 0

            for frame in frames:
                try:
                    await self._interruptible(self._on_frame(frame))
                except _Stopped:
                    raise
                except Exception as exc:
                    logger.error("Frame callback failed: %s", exc)

    async def _interruptible(self, aw: Awaitable[T]) -> T:
        """Await *aw* unless stop() is called first."""
        task = asyncio.ensure_future(aw)
        stopper = asyncio.ensure_future(self._stop_event.wait())
        try:
            done, _ = await asyncio.wait(
                {task, stopper}, return_when=asyncio.FIRST_COMPLETED
            )
        except asyncio.CancelledError:
            task.cancel()
            stopper.cancel()
            raise
        if task in done:
            stopper.cancel()
            return task.result()

        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        raise _Stopped()

    # -- Internal: backoff ----------------------------------------------------

    def _calculate_delay(self) -> float:
        """Compute the delay before the next handshake."""
        cfg = self._reconnect_cfg
        attempt = max(self._failed_attempts - 1, 0)

        if cfg.mode == ReconnectMode.LINEAR:
            delay = cfg.base_delay * (attempt + 1)
        elif cfg.mode == ReconnectMode.EXPONENTIAL:
            delay = cfg.base_delay * (cfg.factor**attempt)
        elif cfg.mode == ReconnectMode.FIBONACCI:
            delay = cfg.base_delay * _fib(min(attempt + 1, 10))
        else:
            delay = cfg.base_delay

        delay = min(delay, cfg.max_delay)

        if cfg.jitter:
            jitter_amount = delay * 0.2 * (random.random() - 0.5)
            delay = max(0.0, delay + jitter_amount)

        return delay

    # -- State management -----------------------------------------------------

    def _set_state(self, new_state: ConnectionState) -> None:
        if new_state == self._state:
            return
        old = self._state
        self._state = new_state
        logger.debug("State: %s -> %s", old.value, new_state.value)
        if self._on_state_change:
            self._on_state_change(new_state)


def _fib(n: int) -> int:
    """Fibonacci number for reconnect delay calculation."""
    a, b = 0, 1
    for _ in range(n):
        a, b = b, a + b
    return a
