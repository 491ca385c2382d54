# =============================================================================
# MHU Python Client -- Wire Protocol Codec
# =============================================================================
#
# Frames are single lines of UTF-8 text:
#
#   <subscriber_id>.<topic>.<payload>\n
#
# Legacy frames (the default) are split on "." and must yield exactly four
# parts; the payload is rebuilt from the last two ("action.object_id").
# Payloads with any other number of dots do not survive a round trip.
#
# Escaped frames (opt-in, both peers must agree) percent-escape the field
# delimiter, line breaks and NUL inside every field and split into exactly
# three parts, so arbitrary payloads round-trip.
# =============================================================================

from __future__ import annotations

from typing import Callable
from urllib.parse import unquote

from ._logging import logger
from .constants import (
    ESCAPED_FRAME_PARTS,
    FIELD_DELIMITER,
    FRAME_PADDING,
    FRAME_TERMINATOR,
    LEGACY_FRAME_PARTS,
    MAX_FRAME_SIZE,
)
from .errors import HubProtocolError
from .types import Message

ParseResult = tuple[Message | None, bool]
FrameParser = Callable[[str], ParseResult]

_ESCAPES = (
    ("%", "%25"),  # must run first
    (FIELD_DELIMITER, "%2E"),
    ("\n", "%0A"),
    ("\r", "%0D"),
    ("\x00", "%00"),
)

_TERMINATOR_BYTES = FRAME_TERMINATOR.encode()


def _escape(field: str) -> str:
    for raw, escaped in _ESCAPES:
        field = field.replace(raw, escaped)
    return field


def default_parser(text: str) -> ParseResult:
    """Parse a legacy frame: exactly four dot-separated parts."""
    parts = text.split(FIELD_DELIMITER)
    if len(parts) != LEGACY_FRAME_PARTS:
        return None, False
    subscriber_id, topic = parts[0], parts[1]
    if not subscriber_id or not topic:
        return None, False
    payload = FIELD_DELIMITER.join(parts[2:])
    return Message(subscriber_id, topic, payload), True


def escaped_parser(text: str) -> ParseResult:
    """Parse an escaped frame: exactly three dot-separated, escaped parts."""
    parts = text.split(FIELD_DELIMITER)
    if len(parts) != ESCAPED_FRAME_PARTS:
        return None, False
    subscriber_id, topic, payload = (unquote(p) for p in parts)
    if not subscriber_id or not topic:
        return None, False
    return Message(subscriber_id, topic, payload), True


class FrameCodec:
    """Encode and decode hub frames.

    Stateless apart from its configuration, so one instance can be shared
    by the read loop and any number of publishers.

    Args:
        parser: Custom parse function, called with the frame text (padding
            and terminator already stripped) for every inbound frame. Must
            return ``(message, ok)``. Defaults to the legacy or escaped
            parser depending on *escaped*.
        escaped: Use the escaped frame format for both directions.
    """

    def __init__(
        self,
        parser: FrameParser | None = None,
        *,
        escaped: bool = False,
    ) -> None:
        self._escaped = escaped
        self._custom_parser = parser
        self._parser: FrameParser = parser or (
            escaped_parser if escaped else default_parser
        )

    @property
    def escaped(self) -> bool:
        return self._escaped

    @property
    def parser(self) -> FrameParser:
        return self._parser

    def encode(self, subscriber_id: str, topic: str, payload: str | bytes) -> bytes:
        """Encode one message as a newline-terminated frame.

        Raises:
            HubProtocolError: If the fields cannot be framed unambiguously.
        """
        if isinstance(payload, bytes):
            try:
                payload = payload.decode("utf-8")
            except UnicodeDecodeError as exc:
                raise HubProtocolError("Payload is not valid UTF-8") from exc
        if not subscriber_id:
            raise HubProtocolError("Subscriber ID must not be empty")
        if not topic:
            raise HubProtocolError("Topic must not be empty")

        if self._escaped:
            fields = [_escape(subscriber_id), _escape(topic), _escape(payload)]
        else:
            if FIELD_DELIMITER in subscriber_id:
                raise HubProtocolError(
                    f"Subscriber ID {subscriber_id!r} contains {FIELD_DELIMITER!r}"
                )
            if FIELD_DELIMITER in topic:
                raise HubProtocolError(f"Topic {topic!r} contains {FIELD_DELIMITER!r}")
            for name, value in (
                ("Subscriber ID", subscriber_id),
                ("Topic", topic),
                ("Payload", payload),
            ):
                if "\n" in value or "\r" in value:
                    raise HubProtocolError(f"{name} contains a line break")
                if "\x00" in value:
                    raise HubProtocolError(f"{name} contains a NUL byte")
            fields = [subscriber_id, topic, payload]

        return (FIELD_DELIMITER.join(fields) + FRAME_TERMINATOR).encode("utf-8")

    def encode_message(self, message: Message) -> bytes:
        return self.encode(message.subscriber_id, message.topic, message.payload)

    def decode(self, raw: str | bytes) -> ParseResult:
        """Decode one frame. Never raises: failures return ``(None, False)``."""
        if isinstance(raw, bytes):
            try:
                text = raw.decode("utf-8")
            except UnicodeDecodeError:
                logger.debug("Frame is not valid UTF-8 (%d bytes)", len(raw))
                return None, False
        else:
            text = raw

        text = text.rstrip(FRAME_PADDING)
        try:
            message, ok = self._parser(text)
        except Exception as exc:
            logger.debug("Frame parser %r raised: %s", self._parser, exc)
            return None, False

        if not ok or message is None:
            return None, False
        return message, True


class FrameBuffer:
    """Accumulate transport reads and cut them into newline-terminated frames.

    One read may carry several frames, or only part of one; the partial
    tail is kept until its terminator arrives. A tail that grows past
    *max_frame_size* without a terminator is discarded and counted in
    :attr:`dropped`.
    """

    def __init__(self, max_frame_size: int = MAX_FRAME_SIZE) -> None:
        self._max_frame_size = max_frame_size
        self._buffer = bytearray()
        self._discarding = False
        self.dropped = 0

    @property
    def pending(self) -> int:
        return len(self._buffer)

    def feed(self, data: bytes) -> list[bytes]:
        frames: list[bytes] = []
        self._buffer.extend(data)

        while True:
            idx = self._buffer.find(_TERMINATOR_BYTES)
            if idx < 0:
                break
            frame = bytes(self._buffer[:idx])
            del self._buffer[: idx + 1]
            if self._discarding:
                # Remainder of an oversized frame
                self._discarding = False
                continue
            if len(frame) > self._max_frame_size:
                self._drop(len(frame))
                continue
            # NUL padding after the previous terminator leads this frame
            frame = frame.lstrip(b"\x00").rstrip(b"\x00\r")
            if frame:
                frames.append(frame)

        if len(self._buffer) > self._max_frame_size:
            if not self._discarding:
                self._drop(len(self._buffer))
                self._discarding = True
            self._buffer.clear()

        return frames

    def clear(self) -> None:
        self._buffer.clear()
        self._discarding = False

    def _drop(self, size: int) -> None:
        self.dropped += 1
        logger.warning(
            "Frame exceeds max size (%d > %d bytes), dropping",
            size,
            self._max_frame_size,
        )
