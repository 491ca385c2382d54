"""MHU Python client: a reconnecting TLS client for the message hub.

Async usage::

    from mhu_client import connect

    async with connect("hub.local:9000", subscriber_id="3456") as client:
        @client.on("orders")
        async def handle(message):
            print(message.topic, message.payload)

        await client.publish("orders", "created.42")
        await client.run_forever()

Sync usage::

    from mhu_client import SyncHubClient

    client = SyncHubClient("hub.local:9000")
    client.on_any(print)
    client.start()
    client.publish("orders", "created.42")
    client.close()

Frames are ``<subscriber_id>.<topic>.<payload>\\n`` over mutual TLS; see
:mod:`mhu_client.protocol` for the exact rules.
"""

from ._logging import enable_debug_logging
from ._version import __version__
from .client import AsyncHubClient
from .connection import ConnectionSupervisor
from .dispatcher import Dispatcher
from .errors import (
    HubConfigError,
    HubConnectionError,
    HubError,
    HubProtocolError,
    HubPublishError,
    HubTimeoutError,
)
from .protocol import FrameBuffer, FrameCodec, default_parser, escaped_parser
from .publisher import Publisher
from .session import Session
from .sync_client import SyncHubClient
from .tls import create_ssl_context, describe_certificate, parse_address
from .types import (
    ConnectionState,
    ConnectionStats,
    Framing,
    HubAddress,
    Message,
    ReconnectConfig,
    ReconnectMode,
    TLSConfig,
)


def connect(
    address: str,
    **kwargs,
) -> AsyncHubClient:
    """Create a hub client.

    Use as an async context manager. Keyword arguments are forwarded
    to :class:`AsyncHubClient` -- common ones: ``subscriber_id``,
    ``topics``, ``handler``, ``tls``, ``reconnect``, ``debug``.

    Args:
        address: Hub address, e.g. ``"hub.local:9000"``.
        **kwargs: Passed to :class:`AsyncHubClient`.

    Returns:
        An :class:`AsyncHubClient` instance.

    Raises:
        HubConfigError: If the address or TLS material is invalid.
    """
    return AsyncHubClient(address, **kwargs)


__all__ = [
    "__version__",
    "connect",
    "enable_debug_logging",
    "AsyncHubClient",
    "SyncHubClient",
    "ConnectionSupervisor",
    "Dispatcher",
    "Publisher",
    "Session",
    "FrameCodec",
    "FrameBuffer",
    "default_parser",
    "escaped_parser",
    "create_ssl_context",
    "describe_certificate",
    "parse_address",
    "Message",
    "HubAddress",
    "ConnectionState",
    "ConnectionStats",
    "Framing",
    "ReconnectConfig",
    "ReconnectMode",
    "TLSConfig",
    "HubError",
    "HubConfigError",
    "HubConnectionError",
    "HubTimeoutError",
    "HubProtocolError",
    "HubPublishError",
]
