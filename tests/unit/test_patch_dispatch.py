"""
Unit tests for PATCH body decoding and content-type dispatch.
"""

import pytest

from ehr.fhir_core.errors import InvalidPatchError, UnsupportedMediaTypeError
from ehr.fhir_core.patch import (
    JSON_PATCH_MEDIA_TYPE,
    MERGE_PATCH_MEDIA_TYPE,
    apply_patch,
    media_type,
    parse_json_patch,
    parse_merge_patch,
)


class TestParsing:
    """Tests for body decoding."""

    def test_parse_json_patch_bytes(self):
        ops = parse_json_patch(b'[{"op": "remove", "path": "/a"}]')
        assert len(ops) == 1
        assert ops[0].op == "remove"

    def test_parse_json_patch_decoded(self):
        ops = parse_json_patch([{"op": "copy", "from": "/a", "path": "/b"}])
        assert ops[0].from_ == "/a"

    def test_json_patch_must_be_array(self):
        with pytest.raises(InvalidPatchError):
            parse_json_patch('{"op": "remove", "path": "/a"}')

    def test_invalid_json(self):
        with pytest.raises(InvalidPatchError):
            parse_json_patch(b"[{")
        with pytest.raises(InvalidPatchError):
            parse_merge_patch("{not json")

    def test_invalid_utf8(self):
        with pytest.raises(InvalidPatchError):
            parse_merge_patch(b"\xff\xfe")

    def test_parse_merge_patch(self):
        assert parse_merge_patch('{"a": null}') == {"a": None}
        assert parse_merge_patch({"a": 1}) == {"a": 1}


class TestApplyPatch:
    """Tests for apply_patch()."""

    def test_json_patch(self):
        body = b'[{"op": "replace", "path": "/status", "value": "active"}]'
        assert apply_patch(JSON_PATCH_MEDIA_TYPE, {"status": "draft"}, body) == {"status": "active"}

    def test_merge_patch_with_charset(self):
        """Content-type parameters are ignored."""
        result = apply_patch(
            "application/merge-patch+json; charset=utf-8", {"a": 1, "b": 2}, b'{"b": null}'
        )
        assert result == {"a": 1}

    def test_case_insensitive(self):
        assert apply_patch("Application/Merge-Patch+JSON", {}, b'{"a": 1}') == {"a": 1}

    @pytest.mark.parametrize("content_type", ["application/json", "application/fhir+json", "", None])
    def test_unsupported(self, content_type):
        with pytest.raises(UnsupportedMediaTypeError) as exc_info:
            apply_patch(content_type, {}, b"{}")
        assert exc_info.value.code == "unsupported-media-type"

    def test_media_type(self):
        assert media_type(" application/json-patch+json ;charset=UTF-8") == JSON_PATCH_MEDIA_TYPE
        assert media_type(None) == ""
        assert MERGE_PATCH_MEDIA_TYPE == "application/merge-patch+json"
