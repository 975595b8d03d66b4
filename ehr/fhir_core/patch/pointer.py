"""
JSON Pointer (RFC 6901) resolution for patch operations.

All functions work on an already-private working copy; they mutate the
containers they are given.
"""

from __future__ import annotations

import re
from typing import Any, List, Union

from ..errors import InvalidPatchError, PatchPathNotFoundError

Container = Union[dict, list]

_ARRAY_INDEX = re.compile(r"0|[1-9][0-9]*")


def parse_pointer(pointer: str) -> List[str]:
    """Split a pointer into unescaped reference tokens.

    ``""`` addresses the whole document and yields no tokens.

    Raises:
        InvalidPatchError: If a non-empty pointer does not start with ``/``
    """
    if not isinstance(pointer, str):
        raise InvalidPatchError(f"JSON Pointer must be a string, got {pointer!r}")
    if pointer == "":
        return []
    if not pointer.startswith("/"):
        raise InvalidPatchError(f"JSON Pointer must start with '/': {pointer!r}")
    return [token.replace("~1", "/").replace("~0", "~") for token in pointer[1:].split("/")]


def array_index(token: str, length: int, pointer: str, for_insert: bool = False) -> int:
    """Resolve an array reference token.

    ``-`` (append position) is only valid when inserting. An insert may
    address ``length``; any other access must address an existing element.

    Raises:
        PatchPathNotFoundError: If the token is not a valid index for the array
    """
    if token == "-":
        if for_insert:
            return length
        raise PatchPathNotFoundError(f"'-' does not address an element: {pointer}", path=pointer)
    if not _ARRAY_INDEX.fullmatch(token):
        raise PatchPathNotFoundError(f"Invalid array index '{token}' in {pointer}", path=pointer)
    index = int(token)
    upper = length if for_insert else length - 1
    if index > upper:
        raise PatchPathNotFoundError(
            f"Array index {index} out of range in {pointer}", path=pointer
        )
    return index


def resolve(document: Any, tokens: List[str], pointer: str) -> Any:
    """Value at ``tokens``.

    Raises:
        PatchPathNotFoundError: If any step does not exist
    """
    current = document
    for token in tokens:
        if isinstance(current, dict):
            if token not in current:
                raise PatchPathNotFoundError(f"Path not found: {pointer}", path=pointer)
            current = current[token]
        elif isinstance(current, list):
            current = current[array_index(token, len(current), pointer)]
        else:
            raise PatchPathNotFoundError(f"Path not found: {pointer}", path=pointer)
    return current


def resolve_parent(document: Any, tokens: List[str], pointer: str) -> Container:
    """Container holding the last token of a non-root pointer.

    Raises:
        PatchPathNotFoundError: If the parent does not exist or is a scalar
    """
    parent = resolve(document, tokens[:-1], pointer)
    if not isinstance(parent, (dict, list)):
        raise PatchPathNotFoundError(f"Parent of {pointer} is not a container", path=pointer)
    return parent
