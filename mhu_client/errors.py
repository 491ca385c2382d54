# =============================================================================
# MHU Python Client -- Error Types
# =============================================================================


class HubError(Exception):
    """Base exception for all hub client errors."""


class HubConfigError(HubError):
    """Unrecoverable misconfiguration (bad address, unreadable certificates)."""


class HubConnectionError(HubError):
    """Connection-related errors (handshake failed, read/write on a dead socket)."""


class HubTimeoutError(HubConnectionError):
    """Connect or read did not complete in time."""


class HubProtocolError(HubError):
    """A message cannot be represented in, or recovered from, a wire frame."""


class HubPublishError(HubError):
    """Publishing a single message failed. Never retried automatically."""

    def __init__(self, topic: str, reason: str) -> None:
        self.topic = topic
        self.reason = reason
        super().__init__(f"Publish to '{topic}' failed: {reason}")
