# =============================================================================
# FrameLink -- Payload Serializers
# =============================================================================
#
# The frame body is opaque to the codec.  JSON (orjson) is the default;
# MessagePack is available for compact binary payloads.
# =============================================================================

from __future__ import annotations

from typing import Any, Protocol

import msgpack
import orjson


class Serializer(Protocol):
    """Turns payload values into bytes and back."""

    def serialize(self, value: Any) -> bytes: ...

    def deserialize(self, data: bytes) -> Any: ...


class JsonSerializer:
    """UTF-8 JSON payloads via ``orjson``."""

    def serialize(self, value: Any) -> bytes:
        return orjson.dumps(value)

    def deserialize(self, data: bytes) -> Any:
        return orjson.loads(data)


class MsgPackSerializer:
    """MessagePack payloads via ``msgpack``."""

    def serialize(self, value: Any) -> bytes:
        return msgpack.packb(value, use_bin_type=True)

    def deserialize(self, data: bytes) -> Any:
        return msgpack.unpackb(data, raw=False)
