"""
fhir-core engine - wiring of the search compiler, version tracker,
patch engine and code-system registry.

Services embed one ResourceEngine per process. It owns the history store
selected by configuration and exposes the request-level flows that combine
the components (search paging, PATCH with optimistic concurrency, history
bundles).

Invariants:
    - The history backend is chosen once, in start()
    - The code-system registry is frozen before the engine serves
    - A PATCH never records a version unless the patch applied cleanly

How to change safely:
    - Keep the component functions usable on their own; the engine only wires
    - Add new flows as methods that delegate, not re-implement

Example:
    >>> async with ResourceEngine(Settings()) as engine:
    ...     version = await engine.tracker.record_create("Condition", "c-1", doc)
    ...     version, doc = await engine.patch_resource(
    ...         "Condition", "c-1", version, "application/merge-patch+json",
    ...         b'{"clinicalStatus": null}',
    ...     )
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping, Optional

from .config import Settings
from .errors import FhirCoreError, InvalidParameterError, InvalidPatchError, VersionConflictError
from .history import HistoryStore, VersionTracker, build_history_bundle, create_history_store
from .patch import apply_patch
from .search import CompiledQuery, ParamDescriptor, build_search_query, parse_page
from .search.compiler import ParamValue
from .terminology import CodeSystemRegistry, default_registry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SearchPage:
    """A compiled search plus the page it was asked for.

    Attributes:
        query: Compiled count/data statements
        limit: Page size after clamping
        offset: Rows to skip
    """

    query: CompiledQuery
    limit: int
    offset: int

    @property
    def data_args(self) -> list[Any]:
        return self.query.data_args(self.limit, self.offset)


class ResourceEngine:
    """Lifecycle owner for the shared resource components.

    Attributes:
        settings: Engine configuration
        store: History store (available after start())
        tracker: Version tracker (available after start())
        registry: Frozen code-system registry
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        store: Optional[HistoryStore] = None,
        registry: Optional[CodeSystemRegistry] = None,
    ) -> None:
        """Initialize the engine.

        Args:
            settings: Configuration (loaded from env if not provided)
            store: History store to use instead of the configured backend
            registry: Code systems (the built-in set if not provided)
        """
        self.settings = settings or Settings.from_env()
        self.store = store
        self.registry = registry if registry is not None else default_registry()
        self._tracker: Optional[VersionTracker] = None

    @property
    def tracker(self) -> VersionTracker:
        if self._tracker is None:
            raise FhirCoreError("ResourceEngine is not started", code="not-started")
        return self._tracker

    @property
    def started(self) -> bool:
        return self._tracker is not None

    async def start(self) -> None:
        """Open the history store and build the tracker."""
        if self.started:
            logger.warning("ResourceEngine already started")
            return

        self.settings.log_settings()
        if self.store is None:
            self.store = create_history_store(self.settings.history)
        await self.store.initialize()

        self.registry.freeze()
        self._tracker = VersionTracker(
            self.store,
            default_page_size=self.settings.history.default_page_size,
            max_page_size=self.settings.history.max_page_size,
        )
        logger.info(
            "ResourceEngine started",
            extra={
                "history_store": type(self.store).__name__,
                "code_systems": len(self.registry),
            },
        )

    async def stop(self) -> None:
        """Close the history store."""
        if not self.started:
            return
        if self.store is not None:
            await self.store.close()
        self._tracker = None
        logger.info("ResourceEngine stopped")

    async def __aenter__(self) -> ResourceEngine:
        await self.start()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.stop()

    # --- flows ---

    def compile_search(
        self,
        table: str,
        columns: str,
        descriptors: Mapping[str, ParamDescriptor],
        params: Mapping[str, ParamValue],
        order_by: Optional[str] = None,
    ) -> SearchPage:
        """Compile a search request and resolve its page.

        ``_count`` and ``_offset`` are read from ``params``; they are never
        search parameters themselves.
        """
        limit, offset = parse_page(
            params,
            default_page_size=self.settings.search.default_page_size,
            max_page_size=self.settings.search.max_page_size,
        )
        query = build_search_query(table, columns, descriptors, params, order_by=order_by)
        return SearchPage(query=query, limit=limit, offset=offset)

    async def patch_resource(
        self,
        resource_type: str,
        resource_id: str,
        expected_version: Optional[int],
        content_type: Optional[str],
        body: Any,
    ) -> tuple[int, dict[str, Any]]:
        """Apply a PATCH body to the current version and record the result.

        Args:
            resource_type: Resource type
            resource_id: Resource id
            expected_version: Version from If-Match; None patches whatever is
                current (still protected by the tracker's compare-and-swap)
            content_type: Request Content-Type
            body: Request body

        Returns:
            (new_version, patched_snapshot)

        Raises:
            NotFoundError / ResourceDeletedError: No live resource
            VersionConflictError: expected_version is stale
            PatchError: The patch could not be applied
        """
        current = await self.tracker.get_current(resource_type, resource_id)
        if expected_version is not None and expected_version != current.version_id:
            raise VersionConflictError(
                resource_type, resource_id, expected_version, current.version_id
            )
        base_version = current.version_id

        patched = apply_patch(content_type, current.snapshot, body)
        if not isinstance(patched, dict):
            raise InvalidPatchError("Patched resource must be a JSON object")
        # Resource identity is not patchable
        for key in ("resourceType", "id"):
            if key in current.snapshot:
                patched[key] = current.snapshot[key]

        new_version = await self.tracker.record_update(
            resource_type, resource_id, base_version, patched
        )
        return new_version, patched

    async def history_bundle(
        self,
        base_url: str,
        resource_type: Optional[str] = None,
        resource_id: Optional[str] = None,
        since_ms: Optional[int] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> dict[str, Any]:
        """Instance-, type- or system-level ``_history`` as a Bundle.

        ``since_ms`` applies to type and system history only; instance history
        is the full version list of one resource.

        Raises:
            InvalidParameterError: resource_id without resource_type, or
                since_ms combined with resource_id
        """
        if resource_id is not None:
            if resource_type is None:
                raise InvalidParameterError(
                    "resource_id requires resource_type", parameter="resource_id"
                )
            if since_ms is not None:
                raise InvalidParameterError(
                    "_since is not supported for instance history", parameter="_since"
                )
            records = await self.tracker.get_history(resource_type, resource_id, limit, offset)
            total = await self.tracker.count_history(resource_type, resource_id)
        elif resource_type is not None:
            records, total = await self.tracker.get_type_history(
                resource_type, since_ms, limit, offset
            )
        else:
            records, total = await self.tracker.get_system_history(since_ms, limit, offset)
        return build_history_bundle(records, total, base_url)
