"""
Result paging parameters (``_count`` / ``_offset``).
"""

from __future__ import annotations

import logging
from typing import Mapping

from ..errors import InvalidParameterError

logger = logging.getLogger(__name__)


def _non_negative_int(params: Mapping[str, object], key: str) -> int | None:
    raw = params.get(key)
    if raw is None or raw == "":
        return None
    if isinstance(raw, (list, tuple)):
        raw = raw[0]
    try:
        value = int(str(raw))
    except ValueError:
        raise InvalidParameterError(f"{key} must be an integer", parameter=key, value=raw) from None
    if value < 0:
        raise InvalidParameterError(f"{key} must not be negative", parameter=key, value=raw)
    return value


def parse_page(
    params: Mapping[str, object],
    default_page_size: int,
    max_page_size: int,
) -> tuple[int, int]:
    """Read the page size and offset from request parameters.

    ``_count`` above ``max_page_size`` is clamped; negative or non-integer
    values are rejected.

    Returns:
        (limit, offset)

    Raises:
        InvalidParameterError: On a negative or non-integer value
    """
    count = _non_negative_int(params, "_count")
    offset = _non_negative_int(params, "_offset") or 0
    if count is None:
        count = default_page_size
    if count > max_page_size:
        logger.debug(
            "Clamping _count to max page size",
            extra={"requested": count, "max_page_size": max_page_size},
        )
        count = max_page_size
    return count, offset
