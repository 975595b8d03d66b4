"""
FHIR ``history`` Bundle rendering.

Pure functions: the serialization boundary between VersionRecord and the
JSON handed to an HTTP layer.
"""

from __future__ import annotations

import copy
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from .base import VersionAction, VersionRecord

# action -> (request.method, response.status)
_ENTRY_REQUEST = {
    VersionAction.CREATE: ("POST", "201 Created"),
    VersionAction.UPDATE: ("PUT", "200 OK"),
    VersionAction.DELETE: ("DELETE", "204 No Content"),
}


def _instant(timestamp_ms: int) -> str:
    moment = datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def history_entry(record: VersionRecord, base_url: str) -> Dict[str, Any]:
    """Render one Bundle.entry for a version record."""
    method, status = _ENTRY_REQUEST[record.action]
    resource_url = f"{record.resource_type}/{record.resource_id}"
    entry: Dict[str, Any] = {
        "fullUrl": f"{base_url.rstrip('/')}/{resource_url}/_history/{record.version_id}",
        "request": {"method": method, "url": resource_url},
        "response": {
            "status": status,
            "etag": f'W/"{record.version_id}"',
            "lastModified": _instant(record.timestamp_ms),
        },
    }
    if record.snapshot is not None:
        resource = copy.deepcopy(record.snapshot)
        resource.setdefault("resourceType", record.resource_type)
        resource.setdefault("id", record.resource_id)
        meta = dict(resource.get("meta") or {})
        meta["versionId"] = str(record.version_id)
        meta["lastUpdated"] = _instant(record.timestamp_ms)
        resource["meta"] = meta
        entry["resource"] = resource
    return entry


def build_history_bundle(
    records: Sequence[VersionRecord],
    total: int,
    base_url: str,
    now_ms: Optional[int] = None,
) -> Dict[str, Any]:
    """Build a Bundle of type ``history``.

    Args:
        records: Page of records, in the order they should appear
        total: Total number of matching records across all pages
        base_url: Server base URL used for ``fullUrl``
        now_ms: Bundle timestamp (Unix ms); defaults to now

    Example:
        >>> records, total = await tracker.get_type_history("Condition")
        >>> bundle = build_history_bundle(records, total, "https://ehr.example/fhir")
    """
    entries: List[Dict[str, Any]] = [history_entry(r, base_url) for r in records]
    return {
        "resourceType": "Bundle",
        "type": "history",
        "total": total,
        "timestamp": _instant(now_ms if now_ms is not None else int(time.time() * 1000)),
        "entry": entries,
    }
