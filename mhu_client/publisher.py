# =============================================================================
# MHU Python Client -- Publisher
# =============================================================================

from __future__ import annotations

from ._logging import logger
from .errors import HubConnectionError, HubPublishError, HubProtocolError
from .protocol import FrameCodec
from .session import SessionFactory
from .types import Message


class Publisher:
    """Send single messages to the hub, one short-lived session per call.

    The frame is written and flushed before the session is closed, so a
    successful :meth:`publish` means the bytes left this process.  The
    publish session is never the supervisor's read session.

    Args:
        session_factory: Zero-argument callable returning a new session.
        subscriber_id: Identity stamped on every outbound message.
        codec: Frame codec shared with the read path.
    """

    def __init__(
        self,
        session_factory: SessionFactory,
        subscriber_id: str,
        codec: FrameCodec | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._subscriber_id = subscriber_id
        self._codec = codec or FrameCodec()

    @property
    def subscriber_id(self) -> str:
        return self._subscriber_id

    async def publish(self, topic: str, payload: str | bytes) -> Message:
        """Publish *payload* on *topic*.

        Returns:
            The message that was sent.

        Raises:
            HubPublishError: If the message cannot be framed, or the
                connect or write fails. Not retried.
        """
        try:
            if isinstance(payload, bytes):
                payload = payload.decode("utf-8")
            message = Message(self._subscriber_id, topic, payload)
            frame = self._codec.encode_message(message)
        except (HubProtocolError, UnicodeDecodeError) as exc:
            raise HubPublishError(topic, str(exc)) from exc

        session = self._session_factory()
        try:
            await session.connect()
            await session.write(frame)
        except (HubConnectionError, OSError) as exc:
            logger.debug("Publish to '%s' failed: %s", topic, exc)
            raise HubPublishError(topic, str(exc)) from exc
        finally:
            await session.close()

        logger.debug("Published %d bytes to '%s'", len(frame), topic)
        return message
