"""Msgpack wire codec shared by inbound decode and outbound commands.

Robots publish and consume msgpack maps. Encoding and structured decoding
live in one place so the command path is guaranteed to produce bytes the
decoder's structured path reads back unchanged.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

import msgspec

# Module-level encoder/decoder (thread-safe, reusable)
_encoder = msgspec.msgpack.Encoder()
_decoder = msgspec.msgpack.Decoder()


def _normalize_keys(value: Any) -> Any:
    """Recursively turn byte-string map keys into ``str``.

    Older firmware packs keys as msgpack ``bin`` rather than ``str``.
    """
    if isinstance(value, dict):
        normalized: dict[str, Any] = {}
        for key, item in value.items():
            if isinstance(key, (bytes, bytearray)):
                key = bytes(key).decode("utf-8", errors="replace")
            normalized[str(key)] = _normalize_keys(item)
        return normalized
    if isinstance(value, list):
        return [_normalize_keys(item) for item in value]
    return value


def encode_payload(payload: Mapping[str, Any]) -> bytes:
    """Encode a mapping to msgpack bytes."""
    return _encoder.encode(dict(payload))


def decode_structured(data: bytes) -> dict[str, Any]:
    """Decode msgpack bytes that must contain exactly one map.

    Raises
    ------
    msgspec.DecodeError
        If the buffer is not valid msgpack, has trailing bytes, or does
        not decode to a map.
    """
    value = _decoder.decode(data)
    if not isinstance(value, dict):
        raise msgspec.DecodeError(f"msgpack payload decoded to {type(value).__name__}, expected map")
    return _normalize_keys(value)
