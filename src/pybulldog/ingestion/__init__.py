"""Ingestion layer.

This package contains adapters that receive raw robot payloads, decode
them, and emit normalized patches/events for the state store.
"""

__all__: list[str] = []
