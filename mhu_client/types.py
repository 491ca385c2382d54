# =============================================================================
# MHU Python Client -- Type Definitions
# =============================================================================

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from .constants import (
    CLIENT_CERT_FILE,
    CLIENT_KEY_FILE,
    RECONNECT_DELAY,
    RECONNECT_FACTOR,
    RECONNECT_MAX_ATTEMPTS,
    RECONNECT_MAX_DELAY,
)


class ConnectionState(str, Enum):
    """Read-session lifecycle state of a :class:`ConnectionSupervisor`.

    Typical flow: DISCONNECTED -> CONNECTING -> CONNECTED -> READING ->
    DISCONNECTED -> CONNECTING ... CLOSED is terminal and only reached
    through an explicit stop (or an exhausted retry budget).
    """

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    READING = "reading"
    CLOSED = "closed"


class ReconnectMode(str, Enum):
    """Backoff strategy between failed handshakes."""

    FIXED = "fixed"
    LINEAR = "linear"
    EXPONENTIAL = "exponential"
    FIBONACCI = "fibonacci"


class Framing(str, Enum):
    """How inbound bytes are cut into frames.

    LINE -- newline-delimited, partial frames are buffered across reads.
    READ -- every transport read is one frame, padding included.
    """

    LINE = "line"
    READ = "read"


@dataclass(frozen=True, slots=True)
class Message:
    """One unit of communication with the hub.

    Attributes:
        subscriber_id: Originating or target client, opaque to the codec.
        topic: Logical channel name.
        payload: Message body, e.g. ``"created.42"``.
    """

    subscriber_id: str
    topic: str
    payload: str


@dataclass(frozen=True, slots=True)
class HubAddress:
    """Resolved ``host:port`` of the hub."""

    host: str
    port: int

    def __str__(self) -> str:
        if ":" in self.host:
            return f"[{self.host}]:{self.port}"
        return f"{self.host}:{self.port}"


@dataclass
class ReconnectConfig:
    """Configuration for reconnecting after a failed handshake.

    Attributes:
        mode: Backoff strategy (default: fixed interval).
        base_delay: Delay in seconds before the first retry.
        max_delay: Upper bound for growing strategies.
        factor: Multiplier per attempt for exponential backoff.
        jitter: Randomize delays by +-10% to spread out many clients.
        max_attempts: Consecutive failed handshakes before giving up,
            ``-1`` for infinite.
    """

    mode: ReconnectMode = ReconnectMode.FIXED
    base_delay: float = RECONNECT_DELAY
    max_delay: float = RECONNECT_MAX_DELAY
    factor: float = RECONNECT_FACTOR
    jitter: bool = False
    max_attempts: int = RECONNECT_MAX_ATTEMPTS


@dataclass
class TLSConfig:
    """Client certificate material and peer verification policy.

    The hub's certificate is not verified unless ``verify`` is set.

    Attributes:
        certfile: PEM certificate presented to the hub.
        keyfile: Private key for *certfile*.
        cafile: CA bundle used to verify the hub when ``verify`` is on.
        verify: Verify the hub's certificate and hostname.
    """

    certfile: str | None = CLIENT_CERT_FILE
    keyfile: str | None = CLIENT_KEY_FILE
    cafile: str | None = None
    verify: bool = False


@dataclass
class ConnectionStats:
    """Counters for a single client."""

    messages_received: int = 0
    messages_sent: int = 0
    messages_published: int = 0
    frames_dropped: int = 0
    bytes_received: int = 0
    bytes_sent: int = 0
    reconnect_count: int = 0
    connect_failures: int = 0
    connected_since: float | None = None
