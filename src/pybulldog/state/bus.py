"""In-process fan-out of robot snapshots and connection status."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Mapping
from typing import Any, Generic, TypeVar

from pybulldog.models.robot import RobotState

_logger = logging.getLogger(__name__)

Snapshot = Mapping[str, RobotState]
SnapshotCallback = Callable[[Snapshot], None]

T = TypeVar("T")


class _Topic(Generic[T]):
    """Subscriber list for one kind of notification."""

    def __init__(self, name: str, current: Callable[[], T]) -> None:
        self._name = name
        self._current = current
        self._lock = threading.Lock()
        self._subscribers: list[Callable[[T], None]] = []

    def subscribe(self, callback: Callable[[T], None]) -> Callable[[], None]:
        with self._lock:
            self._subscribers.append(callback)
        self._deliver(callback, self._current())

        def unsubscribe() -> None:
            with self._lock:
                try:
                    self._subscribers.remove(callback)
                except ValueError:
                    pass

        return unsubscribe

    def publish(self, value: T) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            self._deliver(callback, value)

    def _deliver(self, callback: Callable[[T], None], value: T) -> None:
        try:
            callback(value)
        except Exception:
            _logger.warning("%s subscriber %r raised", self._name, callback, exc_info=True)

    def __len__(self) -> int:
        with self._lock:
            return len(self._subscribers)


class NotificationBus:
    """Deliver snapshots and connection status to in-process subscribers.

    Subscribing calls back immediately with the current value, then on
    every publish. Each subscription returns an idempotent unsubscribe
    handle. A subscriber that raises is logged and skipped; the remaining
    subscribers still run.
    """

    def __init__(
        self,
        *,
        snapshot_provider: Callable[[], Snapshot],
        status_provider: Callable[[], Any],
    ) -> None:
        self._snapshots: _Topic[Snapshot] = _Topic("snapshot", snapshot_provider)
        self._connectivity: _Topic[Any] = _Topic("connectivity", status_provider)

    def subscribe(self, callback: SnapshotCallback) -> Callable[[], None]:
        return self._snapshots.subscribe(callback)

    def subscribe_to_connectivity(self, callback: Callable[[Any], None]) -> Callable[[], None]:
        return self._connectivity.subscribe(callback)

    def publish_snapshot(self, snapshot: Snapshot) -> None:
        self._snapshots.publish(snapshot)

    def publish_connectivity(self, status: Any) -> None:
        self._connectivity.publish(status)

    @property
    def subscriber_count(self) -> int:
        return len(self._snapshots) + len(self._connectivity)
