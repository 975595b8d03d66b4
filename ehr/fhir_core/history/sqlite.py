"""
Durable SQLite history store.

Table schema:
    resource_history:
        - resource_type TEXT
        - resource_id TEXT
        - version_id INTEGER
        - action TEXT (create | update | delete)
        - snapshot_json TEXT (NULL for delete)
        - timestamp_ms INTEGER (Unix ms)
        - PRIMARY KEY (resource_type, resource_id, version_id)

Invariants:
    - The primary key makes overwriting a version impossible
    - Each append is a single IMMEDIATE transaction that re-checks the
      latest version, so concurrent processes cannot create a gap
    - Rows are never updated or deleted

How to change safely:
    - Schema migrations must be backward compatible
    - Bump SCHEMA_VERSION and add an idempotent migration step
"""

from __future__ import annotations

import json
import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Optional

from ..errors import HistoryStoreError
from .base import VersionRecord

logger = logging.getLogger(__name__)

_COLUMNS = "resource_type, resource_id, version_id, action, snapshot_json, timestamp_ms"


class SqliteHistoryStore:
    """SQLite implementation of HistoryStore.

    Thread safety:
        A connection is created per operation. SQLite handles concurrent
        access via WAL mode.

    Example:
        >>> store = SqliteHistoryStore("/var/lib/fhir-core")
        >>> await store.initialize()
        >>> await store.append(record)
    """

    SCHEMA_VERSION = 1

    def __init__(
        self,
        data_dir: str,
        db_filename: str = "resource_history.db",
        wal_mode: bool = True,
        busy_timeout_ms: int = 5000,
    ) -> None:
        """Initialize the store.

        Args:
            data_dir: Directory for the database file
            db_filename: Database file name inside data_dir
            wal_mode: Enable SQLite WAL mode
            busy_timeout_ms: SQLite busy timeout
        """
        self.data_dir = Path(data_dir)
        self.db_filename = db_filename
        self.wal_mode = wal_mode
        self.busy_timeout_ms = busy_timeout_ms
        self._schema_ready = False

    @property
    def db_path(self) -> Path:
        return self.data_dir / self.db_filename

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        """Open a connection, creating the file and schema if needed."""
        self.data_dir.mkdir(parents=True, exist_ok=True)

        try:
            conn = sqlite3.connect(
                str(self.db_path),
                timeout=self.busy_timeout_ms / 1000.0,
                isolation_level=None,  # Autocommit by default, explicit transactions
            )
        except sqlite3.Error as e:
            raise HistoryStoreError(f"Cannot open history database {self.db_path}: {e}") from e
        conn.row_factory = sqlite3.Row

        try:
            conn.execute(f"PRAGMA busy_timeout = {self.busy_timeout_ms}")
            if self.wal_mode:
                conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA synchronous = NORMAL")
            if not self._schema_ready:
                self._create_schema(conn)
                self._schema_ready = True

            yield conn
        finally:
            conn.close()

    def _create_schema(self, conn: sqlite3.Connection) -> None:
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY,
                applied_at INTEGER NOT NULL
            );

            CREATE TABLE IF NOT EXISTS resource_history (
                resource_type TEXT NOT NULL,
                resource_id TEXT NOT NULL,
                version_id INTEGER NOT NULL CHECK (version_id > 0),
                action TEXT NOT NULL,
                snapshot_json TEXT,
                timestamp_ms INTEGER NOT NULL,
                PRIMARY KEY (resource_type, resource_id, version_id)
            );

            CREATE INDEX IF NOT EXISTS idx_history_type_time
                ON resource_history(resource_type, timestamp_ms DESC);
            CREATE INDEX IF NOT EXISTS idx_history_time
                ON resource_history(timestamp_ms DESC);

            INSERT OR IGNORE INTO schema_version (version, applied_at)
            VALUES (1, strftime('%s', 'now') * 1000);
        """)

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> VersionRecord:
        data = dict(row)
        snapshot_json = data.pop("snapshot_json")
        data["snapshot"] = json.loads(snapshot_json) if snapshot_json is not None else None
        return VersionRecord.from_dict(data)

    async def initialize(self) -> None:
        """Create the database file and schema if they don't exist."""
        with self._get_connection():
            pass
        logger.info("Initialized history database", extra={"db_path": str(self.db_path)})

    async def close(self) -> None:
        """Nothing to release; connections are per operation."""

    async def append(self, record: VersionRecord) -> None:
        values = record.to_dict()
        snapshot = values.pop("snapshot")
        values["snapshot_json"] = json.dumps(snapshot) if snapshot is not None else None

        with self._get_connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                row = conn.execute(
                    "SELECT MAX(version_id) FROM resource_history "
                    "WHERE resource_type = ? AND resource_id = ?",
                    (record.resource_type, record.resource_id),
                ).fetchone()
                expected = (row[0] or 0) + 1
                if record.version_id != expected:
                    raise HistoryStoreError(
                        f"Cannot append version {record.version_id} to {record.resource_type}/"
                        f"{record.resource_id}: next version is {expected}",
                        details={"version_id": record.version_id, "expected": expected},
                    )
                conn.execute(
                    f"INSERT INTO resource_history ({_COLUMNS}) VALUES "
                    "(:resource_type, :resource_id, :version_id, :action, :snapshot_json, :timestamp_ms)",
                    values,
                )
                conn.execute("COMMIT")

            except sqlite3.IntegrityError as e:
                conn.execute("ROLLBACK")
                raise HistoryStoreError(f"History record {record} already exists") from e
            except Exception:
                conn.execute("ROLLBACK")
                raise

        logger.debug(
            "Appended history record",
            extra={
                "resource_type": record.resource_type,
                "resource_id": record.resource_id,
                "version_id": record.version_id,
            },
        )

    async def latest(self, resource_type: str, resource_id: str) -> Optional[VersionRecord]:
        with self._get_connection() as conn:
            row = conn.execute(
                f"SELECT {_COLUMNS} FROM resource_history "
                "WHERE resource_type = ? AND resource_id = ? "
                "ORDER BY version_id DESC LIMIT 1",
                (resource_type, resource_id),
            ).fetchone()
            return self._row_to_record(row) if row else None

    async def get(
        self, resource_type: str, resource_id: str, version_id: int
    ) -> Optional[VersionRecord]:
        with self._get_connection() as conn:
            row = conn.execute(
                f"SELECT {_COLUMNS} FROM resource_history "
                "WHERE resource_type = ? AND resource_id = ? AND version_id = ?",
                (resource_type, resource_id, version_id),
            ).fetchone()
            return self._row_to_record(row) if row else None

    async def list_versions(
        self, resource_type: str, resource_id: str, limit: int, offset: int
    ) -> list[VersionRecord]:
        with self._get_connection() as conn:
            cursor = conn.execute(
                f"SELECT {_COLUMNS} FROM resource_history "
                "WHERE resource_type = ? AND resource_id = ? "
                "ORDER BY version_id ASC LIMIT ? OFFSET ?",
                (resource_type, resource_id, limit, offset),
            )
            return [self._row_to_record(row) for row in cursor.fetchall()]

    async def count(self, resource_type: str, resource_id: str) -> int:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT COUNT(*) FROM resource_history WHERE resource_type = ? AND resource_id = ?",
                (resource_type, resource_id),
            ).fetchone()
            return row[0]

    async def list_type(
        self, resource_type: str, since_ms: Optional[int], limit: int, offset: int
    ) -> tuple[list[VersionRecord], int]:
        return self._page(["resource_type = ?"], [resource_type], since_ms, limit, offset)

    async def list_all(
        self, since_ms: Optional[int], limit: int, offset: int
    ) -> tuple[list[VersionRecord], int]:
        return self._page([], [], since_ms, limit, offset)

    def _page(
        self,
        conditions: list[str],
        args: list[Any],
        since_ms: Optional[int],
        limit: int,
        offset: int,
    ) -> tuple[list[VersionRecord], int]:
        if since_ms is not None:
            conditions = conditions + ["timestamp_ms >= ?"]
            args = args + [since_ms]
        where = f" WHERE {' AND '.join(conditions)}" if conditions else ""

        with self._get_connection() as conn:
            total = conn.execute(
                f"SELECT COUNT(*) FROM resource_history{where}", args
            ).fetchone()[0]
            cursor = conn.execute(
                f"SELECT {_COLUMNS} FROM resource_history{where} "
                "ORDER BY timestamp_ms DESC, rowid DESC LIMIT ? OFFSET ?",
                args + [limit, offset],
            )
            return [self._row_to_record(row) for row in cursor.fetchall()], total
