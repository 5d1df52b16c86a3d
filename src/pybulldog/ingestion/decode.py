"""Payload decoding: msgpack, then JSON, then heuristic scraping.

Firmware versions in the field mix encodings per robot, so a channel is
never dropped just because its payload is not structured. The heuristic
path scans the UTF-8-lossy text of the payload with a small, explicit
grammar::

    field  := LABEL SEP VALUE
    LABEL  := a label from the channel's table (case-insensitive), not
              preceded or followed by [A-Za-z0-9_]
    SEP    := 0..8 characters, none of them [A-Za-z0-9] or "-"
    VALUE  := "-"? DIGITS ("." DIGITS)?      numeric fields
            | "true" | "false" | "0" | "1"   boolean fields

Per output field the first label in the table with a match wins. The
heuristic path always succeeds, possibly with an empty field map, and
flags the result ``partial``.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

import msgspec

from pybulldog._codec import decode_structured
from pybulldog.exceptions import DecodeError
from pybulldog.state.events import Channel

_logger = logging.getLogger(__name__)

DEFAULT_MAX_PAYLOAD_BYTES = 256 * 1024

_SEP = r"[^0-9A-Za-z\-]{0,8}"
_NUMBER = r"(-?\d+(?:\.\d+)?)"
_BOOL = r"(true|false|0|1)(?![0-9A-Za-z])"


class PayloadEncoding(StrEnum):
    MSGPACK = "msgpack"
    JSON = "json"
    HEURISTIC = "heuristic"


@dataclass(frozen=True)
class _LabelRule:
    """Output field plus the labels that may carry it, in priority order."""

    target: str
    labels: tuple[str, ...]
    kind: str = "float"
    patterns: tuple[re.Pattern[str], ...] = ()

    @classmethod
    def build(cls, field_name: str, labels: tuple[str, ...], kind: str = "float") -> _LabelRule:
        value = _BOOL if kind == "bool" else _NUMBER
        compiled = tuple(
            re.compile(
                rf"(?<![A-Za-z0-9_]){re.escape(label)}(?![A-Za-z0-9_]){_SEP}{value}",
                re.IGNORECASE,
            )
            for label in labels
        )
        return cls(target=field_name, labels=labels, kind=kind, patterns=compiled)

    def extract(self, text: str) -> Any:
        for pattern in self.patterns:
            match = pattern.search(text)
            if match is None:
                continue
            token = match.group(1)
            if self.kind == "bool":
                return token.lower() in {"true", "1"}
            if self.kind == "int":
                return int(float(token))
            return float(token)
        return None


_LABEL_TABLES: dict[Channel, tuple[_LabelRule, ...]] = {
    Channel.STATUS: (
        _LabelRule.build("status", ("status",), "int"),
        _LabelRule.build("operation_state", ("operation_state",), "int"),
        _LabelRule.build("drive_state", ("drive_state",), "int"),
        _LabelRule.build("delivery_state", ("delivery_state",), "int"),
        _LabelRule.build("lid_status", ("lid_status",), "int"),
        _LabelRule.build("cruise_state", ("cruise_state",), "int"),
    ),
    Channel.BATTERY: (
        _LabelRule.build(
            "battery_percent",
            ("battery_percent", "battery_percentage", "battery_level", "soc", "battery"),
        ),
        _LabelRule.build("voltage", ("voltage",)),
        _LabelRule.build("current", ("current",)),
        _LabelRule.build("charging", ("charging",), "bool"),
    ),
    Channel.LOCATION: (
        _LabelRule.build("latitude", ("latitude", "lat")),
        _LabelRule.build("longitude", ("longitude", "lon", "lng")),
        _LabelRule.build("accuracy", ("accuracy",)),
    ),
    Channel.SPEED: (
        _LabelRule.build("speed", ("speed",)),
        _LabelRule.build("heading", ("heading",)),
    ),
}


@dataclass(frozen=True)
class DecodedPayload:
    """Decoded field map plus how it was obtained."""

    fields: dict[str, Any]
    encoding: PayloadEncoding
    partial: bool = False
    raw: bytes = field(default=b"", repr=False)


def scrape_fields(text: str, channel: Channel) -> dict[str, Any]:
    """Apply the heuristic grammar for *channel* to *text*."""
    found: dict[str, Any] = {}
    for rule in _LABEL_TABLES.get(channel, ()):
        value = rule.extract(text)
        if value is not None:
            found[rule.target] = value
    return found


def _decode_json(data: bytes) -> dict[str, Any] | None:
    try:
        parsed = json.loads(data.decode("utf-8-sig"))
    except (UnicodeDecodeError, json.JSONDecodeError):
        return None
    return parsed if isinstance(parsed, dict) else None


def decode_payload(
    payload: bytes | bytearray | memoryview,
    channel: Channel,
    *,
    max_bytes: int = DEFAULT_MAX_PAYLOAD_BYTES,
) -> DecodedPayload:
    """Decode a raw payload into a loosely-typed field map.

    Raises
    ------
    DecodeError
        Only when there is nothing to decode: the payload is not bytes,
        is empty, or exceeds *max_bytes*.
    """
    if not isinstance(payload, (bytes, bytearray, memoryview)):
        raise DecodeError(f"payload must be bytes, got {type(payload).__name__}", channel=channel)
    data = bytes(payload)
    if not data:
        raise DecodeError("empty payload", channel=channel)
    if len(data) > max_bytes:
        raise DecodeError(f"payload of {len(data)} bytes exceeds limit of {max_bytes}", channel=channel)

    try:
        fields = decode_structured(data)
    except msgspec.DecodeError:
        pass
    else:
        return DecodedPayload(fields=fields, encoding=PayloadEncoding.MSGPACK, raw=data)

    parsed = _decode_json(data)
    if parsed is not None:
        return DecodedPayload(fields=parsed, encoding=PayloadEncoding.JSON, raw=data)

    text = data.decode("utf-8", errors="replace")
    scraped = scrape_fields(text, channel)
    _logger.debug(
        "Heuristic decode channel=%s bytes=%d found=%s",
        channel,
        len(data),
        sorted(scraped),
    )
    return DecodedPayload(fields=scraped, encoding=PayloadEncoding.HEURISTIC, partial=True, raw=data)
