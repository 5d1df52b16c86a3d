"""Deterministic in-memory state store.

This is the only component allowed to merge incoming ingestion updates.
"""

from __future__ import annotations

import copy
import logging
import threading
from collections.abc import Callable, Iterable, Mapping
from datetime import UTC, datetime
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from pybulldog.exceptions import StaleUpdateError
from pybulldog.models.robot import RobotState
from pybulldog.state.events import Channel, IngestionEvent, IngestionSource
from pybulldog.state.policy import (
    ONLINE_FLAG,
    check_not_stale,
    derive_connectivity,
    records_channel_clock,
    restrict_to_channel,
)

if TYPE_CHECKING:
    from pybulldog.config import RobotProfile

_logger = logging.getLogger(__name__)

# Bookkeeping fields excluded when deciding whether a patch changed anything.
_BOOKKEEPING_FIELDS = frozenset({"last_updated", "raw_last_payload_by_channel"})


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _merge_patch(target: dict[str, Any], patch: Mapping[str, Any]) -> None:
    """Apply a normalized patch.

    Nested records (``battery``, ``location``) merge key by key; every other
    key in the patch overwrites.
    """
    for key, value in patch.items():
        current = target.get(key)
        if isinstance(value, Mapping) and isinstance(current, dict):
            _merge_patch(current, value)
        else:
            target[key] = copy.deepcopy(value)


class StateStore:
    """In-memory store for merged robot state.

    This store is designed to be deterministic: given the same sequence of
    `IngestionEvent`s, it will produce the same snapshots.

    Records are frozen :class:`RobotState` models, replaced wholesale on
    every accepted patch. A re-entrant lock serialises merges and snapshot
    reads, so a reader never observes a half-merged record.
    """

    def __init__(
        self,
        *,
        clock: Callable[[], datetime] = _utcnow,
        accept_unknown_robots: bool = True,
    ) -> None:
        self._clock = clock
        self._accept_unknown_robots = accept_unknown_robots
        self._lock = threading.RLock()
        self._robots: dict[str, RobotState] = {}
        self._channel_clock: dict[tuple[str, Channel], datetime] = {}

    @property
    def lock(self) -> threading.RLock:
        """Lock held while merging; hold it to read several records consistently."""
        return self._lock

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(self, profile: RobotProfile) -> RobotState:
        """Create (or re-label) the record for a configured robot."""
        with self._lock:
            current = self._robots.get(profile.id)
            identity = {
                "name": profile.name,
                "code": profile.code,
                "capabilities": profile.capabilities,
            }
            if current is None:
                record = RobotState(id=profile.id, **identity)
            else:
                record = current.model_copy(update=identity)
            self._robots[profile.id] = record
            return record.model_copy(deep=True)

    def ensure(self, robot_id: str) -> RobotState:
        """Return the record for *robot_id*, creating a bare one if needed."""
        with self._lock:
            return self._ensure_locked(robot_id).model_copy(deep=True)

    def _ensure_locked(self, robot_id: str) -> RobotState:
        record = self._robots.get(robot_id)
        if record is None:
            record = RobotState(id=robot_id, name=robot_id, code=robot_id)
            self._robots[robot_id] = record
            _logger.debug("Created state record for robot %s", robot_id)
        return record

    # ------------------------------------------------------------------
    # Merging
    # ------------------------------------------------------------------

    def apply_patch(
        self,
        robot_id: str,
        channel: Channel,
        patch: Mapping[str, Any],
        observed_at: datetime | None = None,
        *,
        source: IngestionSource = IngestionSource.MQTT,
        raw: Mapping[str, Any] | None = None,
    ) -> bool:
        """Merge *patch* into the record for *robot_id*.

        Returns ``True`` when any state field changed. Stale, invalid and
        unknown-robot patches are discarded and reported as ``False``.
        """
        if observed_at is None:
            observed_at = self._clock()
        elif observed_at.tzinfo is None:
            observed_at = observed_at.replace(tzinfo=UTC)

        with self._lock:
            if robot_id not in self._robots and not self._accept_unknown_robots:
                _logger.debug("Ignoring %s update for unconfigured robot %s", channel, robot_id)
                return False
            current = self._ensure_locked(robot_id)

            clock_key = (robot_id, channel)
            tracks_clock = records_channel_clock(source)
            if tracks_clock:
                try:
                    check_not_stale(
                        robot_id=robot_id,
                        channel=channel,
                        last_applied=self._channel_clock.get(clock_key),
                        incoming=observed_at,
                    )
                except StaleUpdateError as exc:
                    _logger.debug("Discarding stale update: %s", exc)
                    return False

            restricted, dropped = restrict_to_channel(channel, patch)
            if dropped:
                _logger.debug("Channel %s does not own %s; dropped for robot %s", channel, dropped, robot_id)
            online_flag = restricted.pop(ONLINE_FLAG, None)
            if not restricted and online_flag is None:
                # Nothing observed: leave the channel clock and last_updated alone.
                _logger.debug("Empty %s patch for robot %s; nothing to apply", channel, robot_id)
                return False

            merged = current.model_dump()
            _merge_patch(merged, restricted)
            try:
                candidate = RobotState.model_validate(merged)
            except ValidationError as exc:
                _logger.warning(
                    "Discarding invalid %s patch for robot %s: %s",
                    channel,
                    robot_id,
                    exc.errors(include_url=False),
                )
                return False

            raw_by_channel = dict(current.raw_last_payload_by_channel)
            if raw is not None:
                raw_by_channel[str(channel)] = copy.deepcopy(dict(raw))
            last_updated = observed_at if current.last_updated is None else max(current.last_updated, observed_at)
            updated = candidate.model_copy(
                update={
                    "connectivity": derive_connectivity(
                        candidate,
                        online_flag if isinstance(online_flag, bool) else None,
                        current.connectivity,
                    ),
                    "last_updated": last_updated,
                    "raw_last_payload_by_channel": raw_by_channel,
                }
            )
            self._robots[robot_id] = updated
            if tracks_clock:
                previous = self._channel_clock.get(clock_key)
                self._channel_clock[clock_key] = observed_at if previous is None else max(previous, observed_at)

            changed = updated.model_dump(exclude=set(_BOOKKEEPING_FIELDS)) != current.model_dump(
                exclude=set(_BOOKKEEPING_FIELDS)
            )
            if changed and updated.connectivity != current.connectivity:
                _logger.debug(
                    "Robot %s connectivity %s -> %s",
                    robot_id,
                    current.connectivity,
                    updated.connectivity,
                )
            return changed

    def apply(self, event: IngestionEvent) -> bool:
        """Apply a normalized ingestion event."""
        return self.apply_patch(
            event.robot_id,
            event.channel,
            event.data,
            event.observed_at,
            source=event.source,
            raw=event.raw,
        )

    def apply_many(self, events: Iterable[IngestionEvent]) -> bool:
        """Apply several events atomically. Returns ``True`` if any changed state."""
        changed = False
        with self._lock:
            for event in events:
                changed = self.apply(event) or changed
        return changed

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_snapshot(self) -> Mapping[str, RobotState]:
        """Read-only mapping of deep copies of every record."""
        with self._lock:
            return MappingProxyType({robot_id: record.model_copy(deep=True) for robot_id, record in self._robots.items()})

    def get_robot(self, robot_id: str) -> RobotState | None:
        with self._lock:
            record = self._robots.get(robot_id)
            return record.model_copy(deep=True) if record is not None else None

    def last_applied(self, robot_id: str, channel: Channel) -> datetime | None:
        """Channel clock for *robot_id*: newest ``observed_at`` accepted on *channel*."""
        with self._lock:
            return self._channel_clock.get((robot_id, channel))
