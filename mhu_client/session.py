# =============================================================================
# MHU Python Client -- Transport Session
# =============================================================================
#
# One TLS connection to the hub.  A session is either fully connected
# (handshake complete) or fully absent; a failed connect leaves nothing
# behind.
# =============================================================================

from __future__ import annotations

import asyncio
import ssl
from typing import Any, Callable, Protocol

from ._logging import logger
from .constants import CONNECTION_TIMEOUT, READ_TIMEOUT, RECEIVE_BUFFER_SIZE
from .errors import HubConnectionError, HubTimeoutError
from .types import HubAddress


class HubSession(Protocol):
    """The surface the supervisor and publisher need from a session."""

    @property
    def is_connected(self) -> bool: ...

    async def connect(self) -> None: ...

    async def read(self, size: int = RECEIVE_BUFFER_SIZE) -> bytes: ...

    async def write(self, data: bytes) -> None: ...

    async def close(self) -> None: ...


SessionFactory = Callable[[], HubSession]


class Session:
    """A single TLS connection to the hub.

    Args:
        address: Hub address.
        ssl_context: Context from :func:`~mhu_client.tls.create_ssl_context`.
        debug: Log every transport failure with context.
        connect_timeout: Seconds allowed for TCP connect + handshake,
            ``None`` to wait indefinitely.
        read_timeout: Seconds a single read may block, ``None`` to wait
            indefinitely.
    """

    def __init__(
        self,
        address: HubAddress,
        ssl_context: ssl.SSLContext | None,
        *,
        debug: bool = False,
        connect_timeout: float | None = CONNECTION_TIMEOUT,
        read_timeout: float | None = READ_TIMEOUT,
    ) -> None:
        self._address = address
        self._ssl_context = ssl_context
        self._debug = debug
        self._connect_timeout = connect_timeout
        self._read_timeout = read_timeout

        self._reader: asyncio.StreamReader | None = None
        self._writer: asyncio.StreamWriter | None = None

    # -- Properties -----------------------------------------------------------

    @property
    def address(self) -> HubAddress:
        return self._address

    @property
    def debug(self) -> bool:
        return self._debug

    @property
    def is_connected(self) -> bool:
        return self._writer is not None and not self._writer.is_closing()

    # -- Context manager ------------------------------------------------------

    async def __aenter__(self) -> Session:
        await self.connect()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    # -- Lifecycle ------------------------------------------------------------

    async def connect(self) -> None:
        """Open the TCP connection and complete the TLS handshake."""
        if self.is_connected:
            return

        server_hostname = self._address.host if self._ssl_context else None
        try:
            reader, writer = await asyncio.wait_for(
                asyncio.open_connection(
                    self._address.host,
                    self._address.port,
                    ssl=self._ssl_context,
                    server_hostname=server_hostname,
                ),
                timeout=self._connect_timeout,
            )
        except asyncio.TimeoutError:
            raise HubTimeoutError(
                f"Connect to {self._address} timed out after {self._connect_timeout}s"
            )
        except (OSError, ssl.SSLError) as exc:
            raise HubConnectionError(
                f"Failed to connect to {self._address}: {exc}"
            ) from exc

        self._reader, self._writer = reader, writer
        if self._debug:
            logger.debug("Session connected to %s", self._address)

    async def close(self) -> None:
        """Release the socket. Safe to call more than once."""
        writer = self._writer
        self._reader = None
        self._writer = None
        if writer is None:
            return

        writer.close()
        try:
            await writer.wait_closed()
        except (OSError, ssl.SSLError) as exc:
            # Peer already gone; the socket is released either way
            logger.debug("Session close to %s: %s", self._address, exc)
        if self._debug:
            logger.debug("Session to %s closed", self._address)

    # -- I/O ------------------------------------------------------------------

    async def read(self, size: int = RECEIVE_BUFFER_SIZE) -> bytes:
        """Read up to *size* bytes. Returns ``b""`` once the hub closes."""
        reader = self._reader
        if reader is None:
            raise HubConnectionError("Session is not connected")
        try:
            return await asyncio.wait_for(reader.read(size), timeout=self._read_timeout)
        except asyncio.TimeoutError:
            raise HubTimeoutError(
                f"No data from {self._address} for {self._read_timeout}s"
            )
        except (OSError, ssl.SSLError) as exc:
            raise HubConnectionError(f"Read from {self._address} failed: {exc}") from exc

    async def write(self, data: bytes) -> None:
        """Write *data* and wait until it is flushed to the transport."""
        writer = self._writer
        if writer is None or writer.is_closing():
            raise HubConnectionError("Session is not connected")
        try:
            writer.write(data)
            await writer.drain()
        except (OSError, ssl.SSLError) as exc:
            raise HubConnectionError(f"Write to {self._address} failed: {exc}") from exc
