#!/usr/bin/env python3
"""Live fleet monitor.

Connects a FleetClient using ``BULLDOG_*`` environment configuration and
prints:
1) every connection status transition,
2) a one-line summary per robot whenever the fleet snapshot changes.

If the broker stays unreachable the client falls back to simulation, so
this also works as a quick offline demo.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import signal
import sys
import time
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

# Allow running from repo root without installing the package.
_repo = Path(__file__).resolve().parent.parent
_src = _repo / "src"
if _src.is_dir():
    sys.path.insert(0, str(_src))

from pybulldog import ConnectionStatus, FleetClient, FleetConfig, RobotState  # noqa: E402


@dataclass
class MonitorStats:
    started_at: float
    snapshots: int = 0
    transitions: int = 0
    last_snapshot_at: float | None = None


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Print live robot fleet state from MQTT (or the simulation fallback).",
    )
    parser.add_argument(
        "--duration",
        type=int,
        default=0,
        help="Maximum runtime in seconds (0 = run until Ctrl+C).",
    )
    parser.add_argument(
        "--host",
        default=None,
        help="Broker host (overrides BULLDOG_BROKER_HOST).",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="Broker port (overrides BULLDOG_BROKER_PORT).",
    )
    parser.add_argument(
        "--no-simulation",
        action="store_true",
        help="Stay disconnected instead of simulating when the broker is down.",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print full robot records as JSON instead of summaries.",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable debug logs.",
    )
    return parser.parse_args()


def _summary(robot: RobotState) -> str:
    battery = robot.battery
    location = robot.location
    order = robot.current_order.order_id if robot.current_order is not None else "-"
    return (
        f"{robot.name:<12} {robot.connectivity:<10} "
        f"battery={battery.percentage:5.1f}%{' (charging)' if battery.is_charging else ''} "
        f"pos=({location.latitude:.6f},{location.longitude:.6f}) "
        f"speed={robot.speed_meters_per_second:.2f}m/s order={order}"
    )


def _print_snapshot(snapshot: Mapping[str, RobotState], stats: MonitorStats, *, as_json: bool) -> None:
    now = time.time()
    stats.snapshots += 1
    stats.last_snapshot_at = now
    ts_text = time.strftime("%Y-%m-%d %H:%M:%S", time.localtime(now))
    print(f"[monitor] snapshot#{stats.snapshots} at {ts_text} robots={len(snapshot)}")
    for robot_id in sorted(snapshot):
        robot = snapshot[robot_id]
        if as_json:
            print(json.dumps(robot.model_dump(mode="json", by_alias=True), ensure_ascii=False, sort_keys=True))
        else:
            print(f"[monitor]   {_summary(robot)}")


def _print_summary(stats: MonitorStats) -> None:
    runtime = time.time() - stats.started_at
    print("[monitor] Summary")
    print(f"[monitor]   runtime_s   : {runtime:.1f}")
    print(f"[monitor]   snapshots   : {stats.snapshots}")
    print(f"[monitor]   transitions : {stats.transitions}")


async def _run(args: argparse.Namespace) -> int:
    overrides: dict[str, object] = {}
    if args.host:
        overrides["broker_host"] = args.host
    if args.port:
        overrides["broker_port"] = args.port
    if args.no_simulation:
        overrides["simulation_enabled"] = False
    config = FleetConfig.from_env(**overrides)

    print(f"[monitor] broker   : {config.broker_host}:{config.broker_port}")
    print(f"[monitor] clientId : {config.client_id}")
    print(f"[monitor] robots   : {', '.join(robot.id for robot in config.robots)}")

    stats = MonitorStats(started_at=time.time())
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(signum, stop.set)

    def on_status(status: ConnectionStatus) -> None:
        stats.transitions += 1
        print(f"[monitor] connection: {status}")

    async with FleetClient(config) as fleet:
        unsubscribe_status = fleet.subscribe_to_connectivity(on_status)
        unsubscribe = fleet.subscribe(lambda snapshot: _print_snapshot(snapshot, stats, as_json=args.json))
        await fleet.connect()
        try:
            if args.duration > 0:
                try:
                    await asyncio.wait_for(stop.wait(), args.duration)
                except TimeoutError:
                    print(f"[monitor] Reached --duration={args.duration}s, stopping.")
            else:
                await stop.wait()
        finally:
            unsubscribe()
            unsubscribe_status()

    _print_summary(stats)
    return 0


def _main() -> int:
    args = _parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )
    try:
        return asyncio.run(_run(args))
    except KeyboardInterrupt:
        return 0


if __name__ == "__main__":
    raise SystemExit(_main())
