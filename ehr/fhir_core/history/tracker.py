"""
Resource version tracker.

The tracker owns the optimistic-concurrency rules for versioned resources:
it decides whether a create, update or delete may proceed, assigns the new
version number and appends the resulting record to a HistoryStore.

Invariants:
    - Mutations on one (resource_type, resource_id) are serialized; the
      check-then-append sequence never interleaves with another mutation on
      the same key
    - The n-th successful mutation of a resource gets version n
    - A VersionConflictError is never retried or resolved here; the caller
      re-reads and decides
    - Reads take no lock

How to change safely:
    - New mutation kinds must go through _key_lock()
    - Keep the store as the only place records are kept

Example:
    >>> tracker = VersionTracker(InMemoryHistoryStore())
    >>> await tracker.record_create("Condition", "c-1", {"status": "draft"})
    1
    >>> await tracker.record_update("Condition", "c-1", 1, {"status": "active"})
    2
"""

from __future__ import annotations

import asyncio
import copy
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from ..errors import (
    InvalidParameterError,
    NotFoundError,
    ResourceDeletedError,
    ResourceExistsError,
    VersionConflictError,
)
from .base import HistoryStore, VersionAction, VersionRecord

logger = logging.getLogger(__name__)


@dataclass
class _KeyLock:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    holders: int = 0


def _now_ms() -> int:
    return int(time.time() * 1000)


class VersionTracker:
    """Optimistic-concurrency version tracking over a HistoryStore.

    Attributes:
        store: Backing history store
        default_page_size: Page size when a history call passes no limit
        max_page_size: Larger limits are clamped to this

    Thread safety:
        Safe for concurrent use from coroutines on one event loop.
    """

    def __init__(
        self,
        store: HistoryStore,
        default_page_size: int = 20,
        max_page_size: int = 500,
        clock: Callable[[], int] = _now_ms,
    ) -> None:
        self.store = store
        self.default_page_size = default_page_size
        self.max_page_size = max_page_size
        self._clock = clock
        self._locks: dict[tuple[str, str], _KeyLock] = {}

    @asynccontextmanager
    async def _key_lock(self, resource_type: str, resource_id: str) -> AsyncIterator[None]:
        """Hold the mutation lock for one resource key.

        The lock entry is dropped once no coroutine holds or waits on it,
        so the table only grows with the number of in-flight keys.
        """
        key = (resource_type, resource_id)
        entry = self._locks.get(key)
        if entry is None:
            entry = self._locks[key] = _KeyLock()
        entry.holders += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.holders -= 1
            if entry.holders == 0:
                del self._locks[key]

    @property
    def active_lock_count(self) -> int:
        """Number of keys with a held or awaited lock."""
        return len(self._locks)

    # --- mutations ---

    async def record_create(
        self, resource_type: str, resource_id: str, snapshot: dict[str, Any]
    ) -> int:
        """Record the creation of a resource.

        A resource whose latest record is a delete may be created again; the
        new record continues the same version sequence.

        Returns:
            The new version id (1 for a brand-new resource)

        Raises:
            ResourceExistsError: If the resource already has live history
            InvalidParameterError: On an empty identity or a non-object snapshot
        """
        _check_identity(resource_type, resource_id)
        _check_snapshot(snapshot)

        async with self._key_lock(resource_type, resource_id):
            latest = await self.store.latest(resource_type, resource_id)
            if latest is not None and not latest.is_deleted:
                raise ResourceExistsError(
                    f"{resource_type}/{resource_id} already exists",
                    details={"current_version": latest.version_id},
                )
            version_id = latest.version_id + 1 if latest else 1
            await self._append(resource_type, resource_id, version_id, VersionAction.CREATE, snapshot)
            return version_id

    async def record_update(
        self,
        resource_type: str,
        resource_id: str,
        expected_version: int,
        snapshot: dict[str, Any],
    ) -> int:
        """Compare-and-swap update.

        Returns:
            expected_version + 1

        Raises:
            NotFoundError: If the resource has no history
            ResourceDeletedError: If the resource is deleted
            VersionConflictError: If expected_version is not the current version
        """
        _check_identity(resource_type, resource_id)
        _check_snapshot(snapshot)

        async with self._key_lock(resource_type, resource_id):
            await self._check_current(resource_type, resource_id, expected_version)
            version_id = expected_version + 1
            await self._append(resource_type, resource_id, version_id, VersionAction.UPDATE, snapshot)
            return version_id

    async def record_delete(
        self, resource_type: str, resource_id: str, expected_version: int
    ) -> int:
        """Compare-and-swap delete; appends a tombstone.

        Returns:
            The tombstone's version id

        Raises:
            NotFoundError: If the resource has no history
            ResourceDeletedError: If the resource is already deleted
            VersionConflictError: If expected_version is not the current version
        """
        _check_identity(resource_type, resource_id)

        async with self._key_lock(resource_type, resource_id):
            await self._check_current(resource_type, resource_id, expected_version)
            version_id = expected_version + 1
            await self._append(resource_type, resource_id, version_id, VersionAction.DELETE, None)
            return version_id

    async def _check_current(
        self, resource_type: str, resource_id: str, expected_version: int
    ) -> VersionRecord:
        latest = await self.store.latest(resource_type, resource_id)
        if latest is None:
            raise NotFoundError(f"{resource_type}/{resource_id} not found")
        if latest.is_deleted:
            raise ResourceDeletedError(
                f"{resource_type}/{resource_id} is deleted",
                details={"version_id": latest.version_id},
            )
        if latest.version_id != expected_version:
            logger.info(
                "Version conflict",
                extra={
                    "resource_type": resource_type,
                    "resource_id": resource_id,
                    "expected_version": expected_version,
                    "current_version": latest.version_id,
                },
            )
            raise VersionConflictError(
                resource_type, resource_id, expected_version, latest.version_id
            )
        return latest

    async def _append(
        self,
        resource_type: str,
        resource_id: str,
        version_id: int,
        action: VersionAction,
        snapshot: Optional[dict[str, Any]],
    ) -> None:
        record = VersionRecord(
            resource_type=resource_type,
            resource_id=resource_id,
            version_id=version_id,
            action=action,
            snapshot=copy.deepcopy(snapshot),
            timestamp_ms=self._clock(),
        )
        await self.store.append(record)
        logger.debug(
            "Recorded version",
            extra={
                "resource_type": resource_type,
                "resource_id": resource_id,
                "version_id": version_id,
                "action": action.value,
            },
        )

    # --- reads ---

    async def get_history(
        self,
        resource_type: str,
        resource_id: str,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> list[VersionRecord]:
        """Version records for one resource, oldest first.

        Raises:
            NotFoundError: If the resource has no history
            InvalidParameterError: On a negative limit or offset
        """
        _check_identity(resource_type, resource_id)
        limit, offset = self._page(limit, offset)
        if await self.store.count(resource_type, resource_id) == 0:
            raise NotFoundError(f"{resource_type}/{resource_id} not found")
        return await self.store.list_versions(resource_type, resource_id, limit, offset)

    async def get_at_version(
        self, resource_type: str, resource_id: str, version_id: int
    ) -> dict[str, Any]:
        """Snapshot recorded at a specific version (vread).

        Raises:
            NotFoundError: If the version does not exist
            ResourceDeletedError: If the version is a delete tombstone
        """
        _check_identity(resource_type, resource_id)
        record = await self.store.get(resource_type, resource_id, version_id)
        if record is None:
            raise NotFoundError(
                f"{resource_type}/{resource_id}/_history/{version_id} not found",
                details={"version_id": version_id},
            )
        if record.snapshot is None:
            raise ResourceDeletedError(
                f"{resource_type}/{resource_id}/_history/{version_id} is a deletion",
                details={"version_id": version_id},
            )
        return record.snapshot

    async def current_version(self, resource_type: str, resource_id: str) -> Optional[int]:
        """Latest version id, tombstones included; None without history."""
        latest = await self.store.latest(resource_type, resource_id)
        return latest.version_id if latest else None

    async def get_current(self, resource_type: str, resource_id: str) -> VersionRecord:
        """Latest live record.

        Raises:
            NotFoundError: If the resource has no history
            ResourceDeletedError: If the resource is deleted
        """
        latest = await self.store.latest(resource_type, resource_id)
        if latest is None:
            raise NotFoundError(f"{resource_type}/{resource_id} not found")
        if latest.is_deleted:
            raise ResourceDeletedError(f"{resource_type}/{resource_id} is deleted")
        return latest

    async def count_history(self, resource_type: str, resource_id: str) -> int:
        return await self.store.count(resource_type, resource_id)

    async def get_type_history(
        self,
        resource_type: str,
        since_ms: Optional[int] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> tuple[list[VersionRecord], int]:
        """History of every resource of one type, newest first, with the total."""
        if not resource_type:
            raise InvalidParameterError("resource_type is required", parameter="resource_type")
        limit, offset = self._page(limit, offset)
        return await self.store.list_type(resource_type, since_ms, limit, offset)

    async def get_system_history(
        self,
        since_ms: Optional[int] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> tuple[list[VersionRecord], int]:
        """History across all resource types, newest first, with the total."""
        limit, offset = self._page(limit, offset)
        return await self.store.list_all(since_ms, limit, offset)

    def _page(self, limit: Optional[int], offset: int) -> tuple[int, int]:
        if limit is None:
            limit = self.default_page_size
        if limit < 0:
            raise InvalidParameterError("limit must not be negative", parameter="limit", value=limit)
        if offset < 0:
            raise InvalidParameterError(
                "offset must not be negative", parameter="offset", value=offset
            )
        return min(limit, self.max_page_size), offset


def _check_identity(resource_type: str, resource_id: str) -> None:
    if not resource_type:
        raise InvalidParameterError("resource_type is required", parameter="resource_type")
    if not resource_id:
        raise InvalidParameterError("resource_id is required", parameter="resource_id")


def _check_snapshot(snapshot: Any) -> None:
    if not isinstance(snapshot, dict):
        raise InvalidParameterError(
            f"snapshot must be a JSON object, got {type(snapshot).__name__}",
            parameter="snapshot",
        )
