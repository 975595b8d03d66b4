"""
fhir-core - shared resource engine for the EHR API.

Every clinical domain (inbox messages, pregnancies, surgical cases, research
studies, lab reports, terminology codes) relies on the same three pieces of
machinery, implemented here once:

- search: compiles a declarative table of permitted query parameters plus a
  request's parameter map into parameterized count/data SQL
- history: per-resource version history with optimistic concurrency,
  backing PATCH, _history and vread
- patch: RFC 6902 JSON Patch and RFC 7396 JSON Merge Patch application

Architecture:
    ┌──────────────┐   params    ┌────────────────┐   SQL + args   ┌────────────┐
    │   Handler    │────────────▶│ SearchCompiler │───────────────▶│ Repository │
    │ (HTTP layer) │             └────────────────┘                └────────────┘
    │              │   snapshot  ┌────────────────┐
    │              │────────────▶│  PatchEngine   │
    │              │             └────────────────┘
    │              │   mutation  ┌────────────────┐   append       ┌──────────────┐
    │              │────────────▶│ VersionTracker │───────────────▶│ HistoryStore │
    └──────────────┘             └────────────────┘                └──────────────┘

Invariants:
    - User values never appear in SQL text, only as $n placeholders
    - Versions per resource start at 1 and increase by exactly 1
    - History records are append-only and never rewritten
    - Patch functions never mutate the document they are given

How to change safely:
    - New search parameter types need a clause builder and tests
    - New history backends must implement the HistoryStore protocol
    - Keep patch semantics aligned with RFC 6902 / RFC 7396
"""

from ._version import __version__
from .config import Settings
from .engine import ResourceEngine, SearchPage
from .errors import (
    FhirCoreError,
    InternalConfigError,
    InvalidParameterError,
    NotFoundError,
    PatchError,
    PatchPathNotFoundError,
    PatchTestFailedError,
    ResourceDeletedError,
    ResourceExistsError,
    UnsupportedOperationError,
    VersionConflictError,
)
from .history import VersionRecord, VersionTracker
from .patch import apply_json_patch, apply_merge_patch, apply_patch
from .search import ParamDescriptor, ParamType, build_search_query

__all__ = [
    "__version__",
    # Wiring
    "Settings",
    "ResourceEngine",
    "SearchPage",
    # Components
    "ParamType",
    "ParamDescriptor",
    "build_search_query",
    "VersionTracker",
    "VersionRecord",
    "apply_json_patch",
    "apply_merge_patch",
    "apply_patch",
    # Errors
    "FhirCoreError",
    "InvalidParameterError",
    "InternalConfigError",
    "VersionConflictError",
    "NotFoundError",
    "ResourceDeletedError",
    "ResourceExistsError",
    "PatchError",
    "PatchPathNotFoundError",
    "PatchTestFailedError",
    "UnsupportedOperationError",
]
