"""Coercion helpers for loosely-typed robot payload values.

Firmware sends numbers as strings, placeholders such as ``"--"`` and
millisecond or second epoch timestamps. The ``safe_*`` parsers return
``None`` for values they cannot read instead of raising.
"""

from __future__ import annotations

import math
from enum import IntEnum
from typing import Any, TypeVar

TEnum = TypeVar("TEnum", bound=IntEnum)

_TRUE_STRINGS = frozenset({"1", "true", "yes", "y", "on", "online"})
_FALSE_STRINGS = frozenset({"0", "false", "no", "n", "off", "offline"})


def safe_float(value: Any) -> float | None:
    if value is None or value == "" or value == "--":
        return None
    if isinstance(value, bool):
        return float(value)
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(result) or math.isinf(result):
        return None
    return result


def safe_int(value: Any) -> int | None:
    parsed = safe_float(value)
    if parsed is None:
        return None
    return int(parsed)


def safe_bool(value: Any) -> bool | None:
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        if value == 1:
            return True
        if value == 0:
            return False
        return None
    if isinstance(value, str):
        text = value.strip().lower()
        if text in _TRUE_STRINGS:
            return True
        if text in _FALSE_STRINGS:
            return False
    return None


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def to_enum(enum_cls: type[TEnum], value: Any) -> TEnum | None:
    """Map *value* onto *enum_cls*, returning ``None`` for unset or unknown codes.

    Unknown codes resolve to ``UNKNOWN`` via the enum's ``_missing_`` hook
    and are reported as ``None`` so they never overwrite a known value.
    """
    parsed = safe_int(value)
    if parsed is None:
        return None
    try:
        member = enum_cls(parsed)
    except ValueError:
        return None
    if member.value != parsed or member.name == "UNKNOWN":
        return None
    return member


_PLACEHOLDERS: tuple[Any, ...] = (None, "", "--", {}, [])


def prune_patch(data: Any) -> Any:
    """Recursively drop unset values so a patch only carries what was observed.

    ``None``, ``""``, ``"--"`` and containers left empty after pruning are
    removed. ``False`` and ``0`` are real readings and stay.
    """
    if isinstance(data, dict):
        pruned = {key: prune_patch(value) for key, value in data.items()}
        return {key: value for key, value in pruned.items() if not _is_placeholder(value)}
    if isinstance(data, list):
        return [item for item in map(prune_patch, data) if not _is_placeholder(item)]
    return data


def _is_placeholder(value: Any) -> bool:
    # 0 and False are readings, not placeholders.
    if value is None:
        return True
    return isinstance(value, (str, dict, list)) and value in _PLACEHOLDERS


def normalize_timestamp_seconds(value: Any) -> float | None:
    """Epoch seconds from a payload timestamp, or ``None``.

    Robots send either seconds or milliseconds; anything above ``1e11`` is
    taken as milliseconds. Zero, negative and non-numeric values are unset.
    """
    ts = None if isinstance(value, bool) else safe_float(value)
    if ts is None or ts <= 0:
        return None
    return ts / 1000.0 if ts > 1e11 else ts
