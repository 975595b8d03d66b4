"""
Resource version history for fhir-core.

This module provides:
- VersionTracker: optimistic-concurrency rules (create / update / delete)
- HistoryStore protocol with in-memory and SQLite backends
- build_history_bundle(): FHIR ``history`` Bundle rendering

Architecture:
    handler --> VersionTracker --(per-key lock)--> HistoryStore
                                                   |-- InMemoryHistoryStore
                                                   `-- SqliteHistoryStore

Invariants:
    - History is append-only; versions per resource are 1, 2, 3, ...
    - Mutations on one resource are serialized; other resources proceed
    - The backend is chosen at wiring time via create_history_store()
"""

from .base import HistoryStore, VersionAction, VersionRecord, create_history_store
from .bundle import build_history_bundle, history_entry
from .memory import InMemoryHistoryStore
from .sqlite import SqliteHistoryStore
from .tracker import VersionTracker

__all__ = [
    # Types
    "VersionAction",
    "VersionRecord",
    # Stores
    "HistoryStore",
    "InMemoryHistoryStore",
    "SqliteHistoryStore",
    "create_history_store",
    # Tracking
    "VersionTracker",
    "build_history_bundle",
    "history_entry",
]
