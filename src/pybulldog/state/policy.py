"""Deterministic state merge policy.

This module intentionally contains *no* payload parsing. The ingestion
boundary is responsible for producing normalized patches and timestamps;
this module decides which of them the store may apply, and derives
connectivity from the merged result.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime
from typing import Any

from pybulldog.exceptions import StaleUpdateError
from pybulldog.models.robot import Connectivity, RobotState
from pybulldog.state.events import Channel, IngestionSource

ONLINE_FLAG = "online"

# Top-level patch keys each channel may write. Nested records list their
# writable sub-keys; ``None`` means the whole value.
CHANNEL_FIELDS: dict[Channel, dict[str, frozenset[str] | None]] = {
    Channel.STATUS: {
        ONLINE_FLAG: None,
        "operation_mode": None,
        "drive_mode": None,
        "delivery_state": None,
        "lid_status": None,
        "cruise_state": None,
    },
    Channel.BATTERY: {
        "battery": frozenset({"percentage", "voltage_volts", "current_amps", "is_charging"}),
    },
    Channel.LOCATION: {
        "location": frozenset({"latitude", "longitude", "accuracy_meters"}),
    },
    Channel.SPEED: {
        "speed_meters_per_second": None,
        "location": frozenset({"heading_degrees"}),
    },
    Channel.ORDER: {
        "current_order": None,
    },
}

# Connectivity values that are only ever the result of a live condition.
_CONDITIONAL_CONNECTIVITY = frozenset({Connectivity.CHARGING, Connectivity.DELIVERING})


def restrict_to_channel(channel: Channel, patch: Mapping[str, Any]) -> tuple[dict[str, Any], list[str]]:
    """Drop keys *channel* does not own.

    Returns the restricted patch and the dotted names of dropped keys.
    """
    allowed = CHANNEL_FIELDS.get(channel, {})
    kept: dict[str, Any] = {}
    dropped: list[str] = []
    for key, value in patch.items():
        if key not in allowed:
            dropped.append(key)
            continue
        sub_keys = allowed[key]
        if sub_keys is None or not isinstance(value, Mapping):
            kept[key] = value
            continue
        nested = {k: v for k, v in value.items() if k in sub_keys}
        dropped.extend(f"{key}.{k}" for k in value if k not in sub_keys)
        if nested:
            kept[key] = nested
    return kept, dropped


def records_channel_clock(source: IngestionSource) -> bool:
    """Whether events from *source* take part in the per-channel ordering guard.

    Synthetic simulation data must never make later live data look stale.
    """
    return source is not IngestionSource.SIMULATION


def check_not_stale(
    *,
    robot_id: str,
    channel: Channel,
    last_applied: datetime | None,
    incoming: datetime,
) -> None:
    """Raise :class:`StaleUpdateError` when *incoming* predates the channel clock.

    Equal timestamps are accepted (re-delivery of the same sample is a no-op
    merge, not a conflict).
    """
    if last_applied is not None and incoming < last_applied:
        raise StaleUpdateError(
            f"{channel} update for {robot_id} observed at {incoming.isoformat()} "
            f"is older than {last_applied.isoformat()}",
            robot_id=robot_id,
            channel=channel,
        )


def derive_connectivity(merged: RobotState, online_flag: bool | None, prior: Connectivity) -> Connectivity:
    """Derive connectivity from a merged record plus the patch's online flag.

    Precedence, first match wins:

    1. charging → ``charging``
    2. delivery in progress → ``delivering``
    3. explicit online flag ``False`` → ``offline``
    4. explicit online flag ``True`` → ``online``
    5. otherwise the prior value, except that a prior ``charging`` or
       ``delivering`` whose condition no longer holds becomes ``online``.
    """
    if merged.battery.is_charging:
        return Connectivity.CHARGING
    if merged.delivery_state.in_progress:
        return Connectivity.DELIVERING
    if online_flag is False:
        return Connectivity.OFFLINE
    if online_flag is True:
        return Connectivity.ONLINE
    if prior in _CONDITIONAL_CONNECTIVITY:
        return Connectivity.ONLINE
    return prior
