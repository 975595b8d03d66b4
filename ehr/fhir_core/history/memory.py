"""
In-memory history store for tests and local development.

Invariants:
    - All data is lost on process exit
    - Snapshots are deep-copied on the way in and on the way out, so callers
      can never alter a stored record
    - Same ordering guarantees as the SQLite backend

How to change safely:
    - Keep behaviour identical to SqliteHistoryStore; the integration tests
      run the tracker against both
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from typing import Dict, List, Optional, Tuple

from ..errors import HistoryStoreError
from .base import VersionRecord

logger = logging.getLogger(__name__)

_Key = Tuple[str, str]


class InMemoryHistoryStore:
    """In-memory implementation of HistoryStore.

    Thread safety:
        Appends take an asyncio lock. Safe to use from multiple coroutines
        on one event loop.

    Example:
        >>> store = InMemoryHistoryStore()
        >>> await store.append(record)
        >>> store.get_record_count()
        1
    """

    def __init__(self) -> None:
        self._logs: Dict[_Key, List[VersionRecord]] = defaultdict(list)
        # Every record in append order, for type/system history
        self._all: List[VersionRecord] = []
        self._lock = asyncio.Lock()

    async def initialize(self) -> None:
        """No-op for in-memory."""
        logger.debug("InMemoryHistoryStore initialized")

    async def close(self) -> None:
        """Clear all data."""
        self._logs.clear()
        self._all.clear()
        logger.debug("InMemoryHistoryStore closed")

    async def append(self, record: VersionRecord) -> None:
        async with self._lock:
            log = self._logs[(record.resource_type, record.resource_id)]
            expected = len(log) + 1
            if record.version_id != expected:
                raise HistoryStoreError(
                    f"Cannot append version {record.version_id} to {record.resource_type}/"
                    f"{record.resource_id}: next version is {expected}",
                    details={"version_id": record.version_id, "expected": expected},
                )
            stored = record.copy()
            log.append(stored)
            self._all.append(stored)

    async def latest(self, resource_type: str, resource_id: str) -> Optional[VersionRecord]:
        log = self._logs.get((resource_type, resource_id))
        return log[-1].copy() if log else None

    async def get(
        self, resource_type: str, resource_id: str, version_id: int
    ) -> Optional[VersionRecord]:
        log = self._logs.get((resource_type, resource_id))
        if not log or not 1 <= version_id <= len(log):
            return None
        return log[version_id - 1].copy()

    async def list_versions(
        self, resource_type: str, resource_id: str, limit: int, offset: int
    ) -> List[VersionRecord]:
        log = self._logs.get((resource_type, resource_id), [])
        return [r.copy() for r in log[offset:offset + limit]]

    async def count(self, resource_type: str, resource_id: str) -> int:
        return len(self._logs.get((resource_type, resource_id), []))

    async def list_type(
        self, resource_type: str, since_ms: Optional[int], limit: int, offset: int
    ) -> Tuple[List[VersionRecord], int]:
        return self._page(
            [r for r in self._all if r.resource_type == resource_type], since_ms, limit, offset
        )

    async def list_all(
        self, since_ms: Optional[int], limit: int, offset: int
    ) -> Tuple[List[VersionRecord], int]:
        return self._page(self._all, since_ms, limit, offset)

    @staticmethod
    def _page(
        records: List[VersionRecord], since_ms: Optional[int], limit: int, offset: int
    ) -> Tuple[List[VersionRecord], int]:
        if since_ms is not None:
            records = [r for r in records if r.timestamp_ms >= since_ms]
        # Stable sort over reversed append order: equal timestamps stay newest first
        newest_first = sorted(reversed(records), key=lambda r: r.timestamp_ms, reverse=True)
        return [r.copy() for r in newest_first[offset:offset + limit]], len(newest_first)

    # Testing helpers

    def get_record_count(self) -> int:
        """Total records across all resources (testing helper)."""
        return len(self._all)

    def get_all_records(self) -> List[VersionRecord]:
        """Every record in append order (testing helper)."""
        return [r.copy() for r in self._all]
