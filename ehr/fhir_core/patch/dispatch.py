"""
Request-body decoding and content-type dispatch for PATCH.

Supported media types:
    application/json-patch+json   -> apply_json_patch()
    application/merge-patch+json  -> apply_merge_patch()

Parameters on the content type (``; charset=utf-8``) are ignored.
"""

from __future__ import annotations

import json
import logging
from typing import Any, List, Optional, Union

from ..errors import InvalidPatchError, UnsupportedMediaTypeError
from .json_patch import PatchOperation, apply_json_patch, coerce_operations
from .merge_patch import apply_merge_patch

logger = logging.getLogger(__name__)

JSON_PATCH_MEDIA_TYPE = "application/json-patch+json"
MERGE_PATCH_MEDIA_TYPE = "application/merge-patch+json"

SUPPORTED_MEDIA_TYPES = (JSON_PATCH_MEDIA_TYPE, MERGE_PATCH_MEDIA_TYPE)

Body = Union[bytes, str, Any]


def _decode(body: Body) -> Any:
    """bytes/str are JSON text; anything else is taken as already decoded."""
    if isinstance(body, (bytes, bytearray)):
        try:
            body = body.decode("utf-8")
        except UnicodeDecodeError as e:
            raise InvalidPatchError(f"Patch body is not UTF-8: {e}") from e
    if isinstance(body, str):
        try:
            return json.loads(body)
        except json.JSONDecodeError as e:
            raise InvalidPatchError(f"Patch body is not valid JSON: {e}") from e
    return body


def parse_json_patch(body: Body) -> List[PatchOperation]:
    """Decode a JSON Patch body into operations.

    Raises:
        InvalidPatchError: If the body is not a JSON array of operation objects
    """
    decoded = _decode(body)
    if not isinstance(decoded, list):
        raise InvalidPatchError("JSON Patch body must be an array of operations")
    return coerce_operations(decoded)


def parse_merge_patch(body: Body) -> Any:
    """Decode a JSON Merge Patch body (any JSON value).

    Raises:
        InvalidPatchError: If the body is not valid JSON
    """
    return _decode(body)


def media_type(content_type: Optional[str]) -> str:
    """Bare, lower-cased media type without parameters."""
    if not content_type:
        return ""
    return content_type.split(";", 1)[0].strip().lower()


def apply_patch(content_type: Optional[str], document: Any, body: Body) -> Any:
    """Decode ``body`` according to ``content_type`` and apply it.

    Raises:
        UnsupportedMediaTypeError: For any content type other than the two
            patch media types
        InvalidPatchError: If the body cannot be decoded
        PatchError: Any failure from the selected patch function

    Example:
        >>> apply_patch("application/merge-patch+json", {"a": 1}, b'{"b": 2}')
        {'a': 1, 'b': 2}
    """
    kind = media_type(content_type)
    if kind == JSON_PATCH_MEDIA_TYPE:
        return apply_json_patch(document, parse_json_patch(body))
    if kind == MERGE_PATCH_MEDIA_TYPE:
        return apply_merge_patch(document, parse_merge_patch(body))

    logger.info("Rejected patch content type", extra={"content_type": content_type})
    raise UnsupportedMediaTypeError(content_type)
