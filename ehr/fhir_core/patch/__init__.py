"""
Patch engine for fhir-core.

Pure functions that apply a patch to an in-memory resource snapshot:
- apply_json_patch(): RFC 6902 JSON Patch
- apply_merge_patch(): RFC 7396 JSON Merge Patch
- apply_patch(): content-type dispatch over the two

Invariants:
    - Inputs are never mutated and results never alias them
    - JSON Patch is all-or-nothing
"""

from .dispatch import (
    JSON_PATCH_MEDIA_TYPE,
    MERGE_PATCH_MEDIA_TYPE,
    SUPPORTED_MEDIA_TYPES,
    apply_patch,
    media_type,
    parse_json_patch,
    parse_merge_patch,
)
from .json_patch import PatchOperation, apply_json_patch, json_equal
from .merge_patch import apply_merge_patch
from .pointer import parse_pointer

__all__ = [
    "PatchOperation",
    "apply_json_patch",
    "apply_merge_patch",
    "apply_patch",
    "parse_json_patch",
    "parse_merge_patch",
    "parse_pointer",
    "json_equal",
    "media_type",
    "JSON_PATCH_MEDIA_TYPE",
    "MERGE_PATCH_MEDIA_TYPE",
    "SUPPORTED_MEDIA_TYPES",
]
