"""
JSON Patch (RFC 6902).

Invariants:
    - The caller's document is never mutated; operations run on a deep copy
    - Application is all-or-nothing: the first failing operation aborts the
      whole patch
    - The result shares no structure with the document or the patch
    - Missing parents are an error; intermediate objects are never created

How to change safely:
    - New operations need a branch in _apply_operation() and an entry in
      SUPPORTED_OPERATIONS
"""

from __future__ import annotations

import copy
import logging
from typing import Any, Iterable, List, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..errors import (
    InvalidPatchError,
    PatchTestFailedError,
    UnsupportedOperationError,
)
from .pointer import array_index, parse_pointer, resolve, resolve_parent

logger = logging.getLogger(__name__)

SUPPORTED_OPERATIONS = frozenset({"add", "remove", "replace", "move", "copy", "test"})


class PatchOperation(BaseModel):
    """One JSON Patch operation.

    ``from`` is a Python keyword, so the field is ``from_`` with ``from``
    as its wire alias.

    Example:
        >>> PatchOperation.model_validate({"op": "move", "from": "/a", "path": "/b"})
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    op: str
    path: str
    value: Any = None
    from_: Optional[str] = Field(default=None, alias="from")

    @property
    def has_value(self) -> bool:
        """True if ``value`` was supplied, even as JSON null."""
        return "value" in self.model_fields_set

    def to_dict(self) -> dict:
        return self.model_dump(by_alias=True, exclude_unset=True)


OperationLike = Union[PatchOperation, Mapping[str, Any]]


def coerce_operations(operations: Iterable[OperationLike]) -> List[PatchOperation]:
    """Validate raw operation objects into PatchOperation models.

    Raises:
        InvalidPatchError: If an operation is not an object or lacks op/path
    """
    result = []
    for index, raw in enumerate(operations):
        if isinstance(raw, PatchOperation):
            result.append(raw)
            continue
        if not isinstance(raw, Mapping):
            raise InvalidPatchError(
                f"Patch operation {index} must be an object", details={"index": index}
            )
        try:
            result.append(PatchOperation.model_validate(dict(raw)))
        except ValidationError as e:
            raise InvalidPatchError(
                f"Patch operation {index} is malformed: {e.errors()[0]['msg']}",
                details={"index": index},
            ) from e
    return result


def json_equal(left: Any, right: Any) -> bool:
    """Deep JSON equality.

    Unlike ``==``, booleans never equal numbers (``true != 1``).
    """
    if isinstance(left, bool) or isinstance(right, bool):
        return type(left) is type(right) and left == right
    if isinstance(left, (int, float)) and isinstance(right, (int, float)):
        return left == right
    if isinstance(left, dict) and isinstance(right, dict):
        return left.keys() == right.keys() and all(
            json_equal(left[key], right[key]) for key in left
        )
    if isinstance(left, list) and isinstance(right, list):
        return len(left) == len(right) and all(json_equal(a, b) for a, b in zip(left, right))
    return type(left) is type(right) and left == right


def _add(document: Any, pointer: str, value: Any) -> Any:
    tokens = parse_pointer(pointer)
    if not tokens:
        return value
    parent = resolve_parent(document, tokens, pointer)
    if isinstance(parent, dict):
        parent[tokens[-1]] = value
    else:
        parent.insert(array_index(tokens[-1], len(parent), pointer, for_insert=True), value)
    return document


def _remove(document: Any, pointer: str) -> tuple[Any, Any]:
    """Remove and return the value at ``pointer``."""
    tokens = parse_pointer(pointer)
    if not tokens:
        raise InvalidPatchError("Cannot remove the document root")
    parent = resolve_parent(document, tokens, pointer)
    # resolve() raises for a missing member or bad index
    removed = resolve(parent, tokens[-1:], pointer)
    if isinstance(parent, dict):
        del parent[tokens[-1]]
    else:
        del parent[int(tokens[-1])]
    return document, removed


def _replace(document: Any, pointer: str, value: Any) -> Any:
    tokens = parse_pointer(pointer)
    if not tokens:
        return value
    parent = resolve_parent(document, tokens, pointer)
    resolve(parent, tokens[-1:], pointer)
    if isinstance(parent, dict):
        parent[tokens[-1]] = value
    else:
        parent[int(tokens[-1])] = value
    return document


def _require_value(operation: PatchOperation) -> Any:
    if not operation.has_value:
        raise InvalidPatchError(f"'{operation.op}' operation requires 'value'")
    return copy.deepcopy(operation.value)


def _require_from(operation: PatchOperation) -> str:
    if operation.from_ is None:
        raise InvalidPatchError(f"'{operation.op}' operation requires 'from'")
    return operation.from_


def _apply_operation(document: Any, operation: PatchOperation) -> Any:
    op = operation.op
    if op not in SUPPORTED_OPERATIONS:
        raise UnsupportedOperationError(op)

    if op == "add":
        return _add(document, operation.path, _require_value(operation))
    if op == "remove":
        document, _ = _remove(document, operation.path)
        return document
    if op == "replace":
        return _replace(document, operation.path, _require_value(operation))
    if op == "move":
        source = _require_from(operation)
        document, value = _remove(document, source)
        return _add(document, operation.path, value)
    if op == "copy":
        source = _require_from(operation)
        value = resolve(document, parse_pointer(source), source)
        return _add(document, operation.path, copy.deepcopy(value))

    # test
    expected = _require_value(operation)
    actual = resolve(document, parse_pointer(operation.path), operation.path)
    if not json_equal(actual, expected):
        raise PatchTestFailedError(f"Test failed at {operation.path}", path=operation.path)
    return document


def apply_json_patch(document: Any, operations: Iterable[OperationLike]) -> Any:
    """Apply a JSON Patch document.

    Args:
        document: Current resource representation (not modified)
        operations: PatchOperation models or raw operation objects

    Returns:
        The patched document, structurally distinct from the input

    Raises:
        PatchPathNotFoundError: A path, parent or array index does not exist
        PatchTestFailedError: A ``test`` operation did not match
        UnsupportedOperationError: Unknown ``op``
        InvalidPatchError: A malformed operation

    Example:
        >>> apply_json_patch({"arr": [1, 2, 3]}, [{"op": "add", "path": "/arr/-", "value": 4}])
        {'arr': [1, 2, 3, 4]}
    """
    ops = coerce_operations(operations)
    working = copy.deepcopy(document)
    for index, operation in enumerate(ops):
        try:
            working = _apply_operation(working, operation)
        except Exception:
            logger.debug(
                "JSON patch rejected",
                extra={"index": index, "op": operation.op, "path": operation.path},
            )
            raise
    return working
