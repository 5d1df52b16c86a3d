"""Helpers for safe debug logging.

Broker credentials travel inside config summaries and settings objects,
and robot payloads are opaque binary. Everything logged at DEBUG from
those sources goes through :func:`redact_for_log` first.
"""

from __future__ import annotations

import dataclasses
from collections.abc import Mapping, Sequence
from typing import Any

_SECRET_KEYS: frozenset[str] = frozenset(
    {
        "password",
        "passwd",
        "username",
        "token",
        "authorization",
        "secret",
        "client_secret",
    }
)

_MAX_DEPTH = 20


def _is_secret(key: str) -> bool:
    return key.lower() in _SECRET_KEYS


def redact_for_log(value: Any, *, max_string: int = 512, _depth: int = 0) -> Any:
    """Return a copy of *value* with credentials masked and blobs summarized.

    Dataclass instances (``MqttSettings``, ``FleetConfig``) are redacted as
    their field mapping. A secret key whose value is ``None`` stays ``None``
    so "no credentials configured" remains visible.
    """
    if _depth > _MAX_DEPTH:
        return "<max-depth>"
    if value is None or isinstance(value, (bool, int, float)):
        return value
    if isinstance(value, str):
        return value if len(value) <= max_string else f"{value[:max_string]}…<truncated>"
    if isinstance(value, (bytes, bytearray, memoryview)):
        return f"<bytes:{len(value)}b>"

    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        value = {field.name: getattr(value, field.name) for field in dataclasses.fields(value)}

    if isinstance(value, Mapping):
        return {
            str(key): (
                ("<redacted>" if item is not None else None)
                if _is_secret(str(key))
                else redact_for_log(item, max_string=max_string, _depth=_depth + 1)
            )
            for key, item in value.items()
        }

    if isinstance(value, Sequence):
        return [redact_for_log(item, max_string=max_string, _depth=_depth + 1) for item in value]

    return repr(value)
