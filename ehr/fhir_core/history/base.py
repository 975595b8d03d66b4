"""
Base protocol and types for resource version history storage.

This module defines the HistoryStore protocol that all backends must
implement, along with the VersionRecord type they persist.

Invariants:
    - A history log is append-only; records are never updated or removed
    - Per (resource_type, resource_id), version_id runs 1, 2, 3, ... with no gaps
    - A delete record carries no snapshot
    - All backends order results the same way

How to change safely:
    - Protocol changes require updating all implementations
    - Keep VersionRecord.to_dict()/from_dict() stable; the SQLite backend
      maps its rows through them
"""

from __future__ import annotations

import copy
from abc import abstractmethod
from dataclasses import dataclass, replace
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Protocol, Tuple, runtime_checkable

if TYPE_CHECKING:
    from ..config import HistorySettings


class VersionAction(str, Enum):
    """Kind of mutation a version record captures."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"

    @classmethod
    def from_str(cls, value: str) -> VersionAction:
        """Parse from string."""
        return cls(value.lower())


@dataclass(frozen=True)
class VersionRecord:
    """One entry in a resource's history log.

    Attributes:
        resource_type: FHIR resource type (e.g. ``Condition``)
        resource_id: Logical resource id
        version_id: Version number, starting at 1
        action: Mutation that produced this version
        snapshot: Resource representation after the mutation (None for delete)
        timestamp_ms: When the version was recorded (Unix ms)
    """

    resource_type: str
    resource_id: str
    version_id: int
    action: VersionAction
    snapshot: Optional[Dict[str, Any]]
    timestamp_ms: int

    @property
    def is_deleted(self) -> bool:
        return self.action == VersionAction.DELETE

    def copy(self) -> VersionRecord:
        """Return a record whose snapshot shares nothing with this one."""
        return replace(self, snapshot=copy.deepcopy(self.snapshot))

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "resource_type": self.resource_type,
            "resource_id": self.resource_id,
            "version_id": self.version_id,
            "action": self.action.value,
            "snapshot": self.snapshot,
            "timestamp_ms": self.timestamp_ms,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> VersionRecord:
        """Create from dictionary."""
        return cls(
            resource_type=data["resource_type"],
            resource_id=data["resource_id"],
            version_id=data["version_id"],
            action=VersionAction.from_str(data["action"]),
            snapshot=data.get("snapshot"),
            timestamp_ms=data["timestamp_ms"],
        )

    def __str__(self) -> str:
        return f"{self.resource_type}/{self.resource_id}/_history/{self.version_id}"


@runtime_checkable
class HistoryStore(Protocol):
    """Protocol for history storage backends.

    The store does not decide whether a mutation is allowed; that is the
    VersionTracker's job. It only guarantees that a version can be
    written once and that versions stay contiguous.

    Ordering contract:
        - list_versions() returns oldest first
        - list_type() and list_all() return newest first (by timestamp,
          then by append order)

    Example:
        >>> store = InMemoryHistoryStore()
        >>> await store.append(record)
        >>> latest = await store.latest("Condition", "c-1")
    """

    @abstractmethod
    async def initialize(self) -> None:
        """Prepare the backend (create schema, directories)."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release backend resources."""
        ...

    @abstractmethod
    async def append(self, record: VersionRecord) -> None:
        """Append a record to its resource's log.

        Raises:
            HistoryStoreError: If record.version_id is not exactly one more
                than the latest stored version (or 1 for a new resource)
        """
        ...

    @abstractmethod
    async def latest(self, resource_type: str, resource_id: str) -> Optional[VersionRecord]:
        """Most recent record for a resource, or None if it has no history."""
        ...

    @abstractmethod
    async def get(
        self, resource_type: str, resource_id: str, version_id: int
    ) -> Optional[VersionRecord]:
        """A specific version, or None."""
        ...

    @abstractmethod
    async def list_versions(
        self, resource_type: str, resource_id: str, limit: int, offset: int
    ) -> List[VersionRecord]:
        """Records for one resource, oldest first."""
        ...

    @abstractmethod
    async def count(self, resource_type: str, resource_id: str) -> int:
        """Number of records for one resource."""
        ...

    @abstractmethod
    async def list_type(
        self, resource_type: str, since_ms: Optional[int], limit: int, offset: int
    ) -> Tuple[List[VersionRecord], int]:
        """Records for every resource of a type, newest first, with the total."""
        ...

    @abstractmethod
    async def list_all(
        self, since_ms: Optional[int], limit: int, offset: int
    ) -> Tuple[List[VersionRecord], int]:
        """Records across all types, newest first, with the total."""
        ...


def create_history_store(settings: "HistorySettings") -> HistoryStore:
    """Factory function to create a history store from configuration.

    Args:
        settings: History settings

    Returns:
        Appropriate HistoryStore implementation

    Raises:
        ValueError: If backend is not supported
    """
    from ..config import HistoryBackend
    from .memory import InMemoryHistoryStore
    from .sqlite import SqliteHistoryStore

    if settings.backend == HistoryBackend.MEMORY:
        return InMemoryHistoryStore()
    elif settings.backend == HistoryBackend.SQLITE:
        return SqliteHistoryStore(
            data_dir=settings.data_dir,
            db_filename=settings.db_filename,
            wal_mode=settings.wal_mode,
            busy_timeout_ms=settings.busy_timeout_ms,
        )
    else:
        raise ValueError(f"Unsupported history backend: {settings.backend}")
