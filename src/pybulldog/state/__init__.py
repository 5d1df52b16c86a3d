"""State/store layer.

This package is the single source of truth for how incoming data from
MQTT telemetry, the simulation fallback, and command bookkeeping is merged
into a deterministic per-robot state snapshot, and how snapshots reach
subscribers.
"""
