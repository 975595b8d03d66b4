"""
Error types for fhir-core.

Every component raises a subclass of FhirCoreError so callers can tell the
kind of failure apart without parsing messages:

- InvalidParameterError / InternalConfigError: search compilation
- VersionConflictError / NotFoundError / ResourceExistsError: version tracking
- PatchPathNotFoundError / PatchTestFailedError / UnsupportedOperationError:
  patch application

Invariants:
    - All errors inherit from FhirCoreError
    - ``code`` is stable and safe to expose to API clients
    - InternalConfigError signals a programming error, never bad user input
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class FhirCoreError(Exception):
    """Base exception for all fhir-core errors.

    Attributes:
        message: Error message
        code: Error kind for programmatic handling
        details: Additional error context
    """

    code = "fhir-core-error"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.details = details or {}

    def to_outcome(self) -> Dict[str, Any]:
        """Render as a FHIR OperationOutcome resource."""
        issue: Dict[str, Any] = {
            "severity": "error",
            "code": _OUTCOME_ISSUE_CODES.get(self.code, "exception"),
            "diagnostics": self.message,
        }
        return {"resourceType": "OperationOutcome", "issue": [issue]}


class InvalidParameterError(FhirCoreError):
    """A request value could not be used.

    Raised when:
    - A search value cannot be coerced to its parameter type
    - A search modifier is not supported for the parameter
    - A limit/offset is negative or not an integer
    """

    code = "invalid-parameter"

    def __init__(
        self,
        message: str,
        parameter: Optional[str] = None,
        value: Any = None,
    ) -> None:
        super().__init__(message, details={"parameter": parameter, "value": value})
        self.parameter = parameter
        self.value = value


class InternalConfigError(FhirCoreError):
    """A static parameter table is inconsistent (server-side bug)."""

    code = "internal-config"


class VersionConflictError(FhirCoreError):
    """The caller's expected version does not match the stored version.

    Recoverable: re-read the resource and retry with the new version.
    """

    code = "version-conflict"

    def __init__(
        self,
        resource_type: str,
        resource_id: str,
        expected_version: int,
        current_version: Optional[int],
    ) -> None:
        super().__init__(
            f"Version conflict on {resource_type}/{resource_id}: "
            f"expected {expected_version}, current is {current_version}",
            details={
                "resource_type": resource_type,
                "resource_id": resource_id,
                "expected_version": expected_version,
                "current_version": current_version,
            },
        )
        self.resource_type = resource_type
        self.resource_id = resource_id
        self.expected_version = expected_version
        self.current_version = current_version


class NotFoundError(FhirCoreError):
    """Resource, version or code system does not exist."""

    code = "not-found"


class ResourceDeletedError(NotFoundError):
    """The requested resource (or version) is a delete tombstone."""

    code = "gone"


class ResourceExistsError(FhirCoreError):
    """A create was attempted for an identity that already has live history."""

    code = "already-exists"


class HistoryStoreError(FhirCoreError):
    """The history backend rejected or failed an operation."""

    code = "history-store"


class PatchError(FhirCoreError):
    """Base class for patch application failures."""

    code = "patch-error"


class PatchPathNotFoundError(PatchError):
    """A patch path (or its parent container) does not exist."""

    code = "patch-path-not-found"

    def __init__(self, message: str, path: Optional[str] = None) -> None:
        super().__init__(message, details={"path": path})
        self.path = path


class PatchTestFailedError(PatchError):
    """A ``test`` operation did not match; the whole patch is rejected."""

    code = "patch-test-failed"

    def __init__(self, message: str, path: Optional[str] = None) -> None:
        super().__init__(message, details={"path": path})
        self.path = path


class UnsupportedOperationError(PatchError):
    """Unknown JSON Patch operation name."""

    code = "unsupported-operation"

    def __init__(self, op: str) -> None:
        super().__init__(f"Unsupported patch operation: {op!r}", details={"op": op})
        self.op = op


class InvalidPatchError(PatchError):
    """The patch document itself is malformed."""

    code = "invalid-patch"


class UnsupportedMediaTypeError(PatchError):
    """The patch body has a content type the engine does not accept."""

    code = "unsupported-media-type"

    def __init__(self, content_type: Optional[str]) -> None:
        super().__init__(
            f"Unsupported patch content type: {content_type!r}",
            details={"content_type": content_type},
        )
        self.content_type = content_type


# FHIR IssueType codes reported in OperationOutcome
_OUTCOME_ISSUE_CODES = {
    InvalidParameterError.code: "invalid",
    InternalConfigError.code: "exception",
    VersionConflictError.code: "conflict",
    NotFoundError.code: "not-found",
    ResourceDeletedError.code: "deleted",
    ResourceExistsError.code: "duplicate",
    HistoryStoreError.code: "exception",
    PatchPathNotFoundError.code: "processing",
    PatchTestFailedError.code: "processing",
    UnsupportedOperationError.code: "not-supported",
    InvalidPatchError.code: "structure",
    UnsupportedMediaTypeError.code: "not-supported",
}
