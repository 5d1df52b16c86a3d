from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from typing import Any

import pytest

from pybulldog._mqtt import MqttMessage, MqttSettings
from pybulldog.exceptions import TransportError


class FakeRuntime:
    """Stand-in for BulldogMqttRuntime with a scripted CONNACK outcome.

    ``outcome`` is one of ``accept``, ``refuse``, ``unreachable`` or ``silent``
    (socket opens but no CONNACK ever arrives).
    """

    def __init__(
        self,
        *,
        outcome: str,
        loop: asyncio.AbstractEventLoop,
        on_message: Callable[[MqttMessage], None],
        on_connect_result: Callable[[bool, str], None],
        on_connection_lost: Callable[[str], None],
        logger: Any = None,
    ) -> None:
        self.outcome = outcome
        self._loop = loop
        self._on_message = on_message
        self._on_connect_result = on_connect_result
        self._on_connection_lost = on_connection_lost
        self.settings: MqttSettings | None = None
        self.subscriptions: list[tuple[str, ...]] = []
        self.published: list[tuple[str, bytes, int]] = []
        self.fail_publish = False
        self.stopped = False
        self._running = False
        self._mid = 0

    @property
    def is_running(self) -> bool:
        return self._running

    def start(self, settings: MqttSettings) -> None:
        self.settings = settings
        if self.outcome == "unreachable":
            raise TransportError("connection refused", host=settings.host)
        self._running = True
        if self.outcome == "accept":
            self.subscriptions.append(settings.topics)
            self._loop.call_soon_threadsafe(self._on_connect_result, True, "Success")
        elif self.outcome == "refuse":
            self._loop.call_soon_threadsafe(self._on_connect_result, False, "Not authorized")

    def stop(self) -> None:
        self.stopped = True
        self._running = False

    def publish(self, topic: str, payload: bytes, *, qos: int = 1) -> int:
        if self.fail_publish:
            raise TransportError("publish queue full", host="fake", reason_code=15)
        self._mid += 1
        self.published.append((topic, payload, qos))
        return self._mid

    def deliver(self, topic: str, payload: bytes) -> None:
        """Simulate an inbound PUBLISH arriving on the network thread."""
        self._loop.call_soon_threadsafe(self._on_message, MqttMessage(topic=topic, payload=payload))

    def drop(self, reason: str = "keepalive timeout") -> None:
        self._running = False
        self._loop.call_soon_threadsafe(self._on_connection_lost, reason)


class FakeBroker:
    """Runtime factory handing out FakeRuntimes with scripted outcomes.

    Outcomes are consumed in order; the last one repeats.
    """

    def __init__(self, *outcomes: str) -> None:
        self.outcomes = list(outcomes or ("accept",))
        self.runtimes: list[FakeRuntime] = []

    def __call__(self, **kwargs: Any) -> FakeRuntime:
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        runtime = FakeRuntime(outcome=outcome, **kwargs)
        self.runtimes.append(runtime)
        return runtime

    @property
    def latest(self) -> FakeRuntime:
        return self.runtimes[-1]

    @property
    def published(self) -> list[tuple[str, bytes, int]]:
        return [item for runtime in self.runtimes for item in runtime.published]


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.005)


@pytest.fixture
def fake_broker() -> Callable[..., FakeBroker]:
    return FakeBroker


@pytest.fixture(name="wait_until")
def wait_until_fixture() -> Callable[..., Any]:
    return wait_until
