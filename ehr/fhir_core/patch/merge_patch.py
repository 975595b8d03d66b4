"""
JSON Merge Patch (RFC 7396).
"""

from __future__ import annotations

import copy
from typing import Any


def _merge(target: Any, patch: Any) -> Any:
    if not isinstance(patch, dict):
        return copy.deepcopy(patch)
    result = dict(target) if isinstance(target, dict) else {}
    for key, value in patch.items():
        if value is None:
            result.pop(key, None)
        else:
            result[key] = _merge(result.get(key), value)
    return result


def apply_merge_patch(document: Any, patch: Any) -> Any:
    """Merge ``patch`` into ``document``.

    ``null`` members delete keys, objects merge recursively, and anything
    else (arrays included) replaces the target value. A non-object patch
    replaces the whole document.

    Neither argument is modified, and the result shares no structure with
    either.

    Example:
        >>> apply_merge_patch({"a": 1, "b": 2}, {"b": None})
        {'a': 1}
    """
    return _merge(copy.deepcopy(document), patch)
