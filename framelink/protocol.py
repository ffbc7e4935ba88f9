# =============================================================================
# FrameLink -- Wire Protocol Codec
# =============================================================================
#
# Frame layout:
#   byte 0      message type (0--255), 0x09 = heartbeat ping
#   bytes 1..4  channel id, unsigned 32-bit big-endian
#   bytes 5..   serialized payload (may be empty)
# =============================================================================

from __future__ import annotations

import struct
from typing import Any

from .constants import HEADER_FORMAT, HEADER_SIZE, HEARTBEAT_TYPE, MAX_CHANNEL, MAX_TYPE
from .errors import FormatError
from .serializers import JsonSerializer, Serializer
from .types import Frame

_HEADER = struct.Struct(HEADER_FORMAT)


class FrameCodec:
    """Encode and decode fixed-header binary frames.

    The codec is pure: it never touches the network and keeps no state
    between calls.

    Args:
        serializer: Payload serializer. Defaults to :class:`JsonSerializer`.
    """

    def __init__(self, serializer: Serializer | None = None) -> None:
        self._serializer = serializer or JsonSerializer()

    @property
    def serializer(self) -> Serializer:
        return self._serializer

    def encode(self, type: int, channel: int, payload: Any = None) -> bytes:
        """Encode a frame: 5-byte header followed by the serialized payload.

        Raises:
            FormatError: If *type* or *channel* is out of range, or the
                payload cannot be serialized.
        """
        header = self._pack_header(type, channel)
        try:
            body = self._serializer.serialize(payload)
        except Exception as exc:
            raise FormatError(f"Cannot serialize payload for type {type}: {exc}") from exc
        return header + body

    def encode_heartbeat(self, channel: int = 0) -> bytes:
        """Encode a heartbeat ping (header only, no payload)."""
        return self._pack_header(HEARTBEAT_TYPE, channel)

    def decode(self, data: bytes) -> Frame:
        """Decode one frame.

        Raises:
            FormatError: If *data* is shorter than the header or the
                payload cannot be deserialized.
        """
        data = bytes(data)
        if len(data) < HEADER_SIZE:
            # Bare single-byte ping
            if data == bytes((HEARTBEAT_TYPE,)):
                return Frame(HEARTBEAT_TYPE, 0)
            raise FormatError(
                f"Frame too short: {len(data)} bytes, header needs {HEADER_SIZE}"
            )

        type, channel = _HEADER.unpack_from(data)
        body = data[HEADER_SIZE:]
        if not body:
            return Frame(type, channel)

        try:
            payload = self._serializer.deserialize(body)
        except Exception as exc:
            raise FormatError(
                f"Cannot deserialize payload for type {type} ({len(body)} bytes): {exc}"
            ) from exc
        return Frame(type, channel, payload)

    @staticmethod
    def _pack_header(type: int, channel: int) -> bytes:
        if not 0 <= type <= MAX_TYPE:
            raise FormatError(f"Frame type out of range: {type}")
        if not 0 <= channel <= MAX_CHANNEL:
            raise FormatError(f"Channel id out of range: {channel}")
        return _HEADER.pack(type, channel)
