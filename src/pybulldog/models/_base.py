"""Base models and enum for robot telemetry.

Inbound telemetry models inherit from :class:`TelemetryModel` which
provides:

* ``populate_by_name`` plus per-field ``AliasChoices`` so the several
  naming conventions used across robot firmware generations map onto
  one snake_case field.
* A ``model_validator(mode="before")`` that strips sentinel values
  (``""``, ``"--"``, NaN) so the field default (``None``) is used.
* A ``raw`` dict that captures the original decoded field map.

Canonical state models inherit from :class:`StateModel`: frozen, with a
camelCase alias generator so ``model_dump(by_alias=True)`` produces the
consumer-facing field names.

Integer-coded enums inherit from :class:`RobotEnum` which adds an
``UNKNOWN`` member at ``-1`` and a ``_missing_`` hook that returns
``UNKNOWN`` for any value without a mapped member.
"""

from __future__ import annotations

import enum
import math
from datetime import UTC, datetime
from typing import Annotated, Any, ClassVar

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from pybulldog.ingestion.normalize import normalize_timestamp_seconds

# Sentinel strings firmware uses for "not available".
_SENTINELS = frozenset({"", "--", "NaN", "nan", "null"})


def parse_epoch_timestamp(value: Any) -> datetime | None:
    """Convert an epoch timestamp (seconds **or** milliseconds) to a UTC datetime.

    Returns ``None`` when the value is ``None``, not numeric, or outside the
    range the platform clock can represent.
    """
    if value is None:
        return value
    if isinstance(value, datetime):
        return value if value.tzinfo is not None else value.replace(tzinfo=UTC)
    ts = normalize_timestamp_seconds(value)
    if ts is None:
        return None
    try:
        return datetime.fromtimestamp(ts, tz=UTC)
    except (OverflowError, OSError, ValueError):
        return None


EpochTimestamp = Annotated[datetime | None, BeforeValidator(parse_epoch_timestamp)]
"""Annotated type that coerces epoch numbers (seconds or ms) to UTC datetimes."""


class RobotEnum(enum.IntEnum):
    """Base for integer-coded robot state enums.

    Every subclass **must** define ``UNKNOWN = -1``.
    Values a robot sends that have no mapped member automatically
    resolve to ``UNKNOWN`` instead of raising ``ValueError``.
    """

    @classmethod
    def _missing_(cls, value: object) -> RobotEnum:
        if hasattr(cls, "UNKNOWN"):
            unknown: RobotEnum = cls.UNKNOWN  # type: ignore[attr-defined]
            return unknown
        return next(iter(cls))


class StateModel(BaseModel):
    """Base for canonical (store-owned) state models."""

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        populate_by_name=True,
        alias_generator=to_camel,
    )


class TelemetryModel(BaseModel):
    """Base for per-channel inbound telemetry models.

    Handles:
    * sentinel values (``""``, ``"--"``, NaN) → dropped so the field
      default is used instead
    * single-level ``data`` envelopes → merged into the top level
    * stashes the original decoded dict in ``raw``
    """

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
    )

    _ENVELOPE_KEYS: ClassVar[tuple[str, ...]] = ("data",)
    """Keys whose dict value is merged into the top level before validation."""

    raw: dict[str, Any] = Field(default_factory=dict)
    """Original decoded field map."""

    @staticmethod
    def _clean_dict(values: dict[str, Any]) -> dict[str, Any]:
        cleaned: dict[str, Any] = {}
        for key, value in values.items():
            if value is None:
                continue
            if isinstance(value, str) and value.strip() in _SENTINELS:
                continue
            if isinstance(value, float) and math.isnan(value):
                continue
            cleaned[key] = value
        return cleaned

    @model_validator(mode="before")
    @classmethod
    def _clean_values(cls, values: Any) -> Any:
        """Unwrap envelopes, strip sentinels, and stash the raw payload."""
        if not isinstance(values, dict):
            return values
        original = dict(values)

        merged = dict(values)
        for key in cls._ENVELOPE_KEYS:
            nested = merged.get(key)
            if isinstance(nested, dict):
                merged.pop(key)
                for inner_key, inner_value in nested.items():
                    merged.setdefault(inner_key, inner_value)

        cleaned = TelemetryModel._clean_dict(merged)
        if "raw" not in values:
            cleaned["raw"] = original
        return cleaned
