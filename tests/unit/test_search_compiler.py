"""
Unit tests for the search-query compiler.

Tests cover:
- Count and data SQL shape
- Placeholder numbering and shared WHERE arguments
- Unknown keys, empty values, reserved parameters
- Modifiers (:not, :exact, :missing, typed references)
- Configuration errors
"""

import pytest

from ehr.fhir_core.errors import InternalConfigError, InvalidParameterError
from ehr.fhir_core.search import (
    CompiledQuery,
    ParamDescriptor,
    ParamType,
    SearchQuery,
    build_search_query,
    descriptor_table,
    param,
)
from ehr.fhir_core.search.tables import (
    INBOX_MESSAGE,
    LAB_REPORT,
    MESSAGE_POOL,
    PREGNANCY,
    RESEARCH_STUDY,
    SURGICAL_CASE,
    TERMINOLOGY_CODE,
)

CONDITION = descriptor_table(
    param("patient", ParamType.REFERENCE, "patient_id"),
    param("clinical-status", ParamType.TOKEN, "clinical_status"),
    param("code", ParamType.TOKEN, "code_value", system_column="code_system"),
    param("onset-date", ParamType.DATE, "onset_datetime"),
    param("note", ParamType.STRING, "note_text"),
    param("_id", ParamType.TOKEN, "fhir_id"),
)


class TestBuildSearchQuery:
    """Tests for build_search_query()."""

    def test_no_params(self):
        """An empty request selects everything."""
        q = build_search_query("condition", "id, fhir_id", CONDITION, {})
        assert q.count_sql == "SELECT COUNT(*) FROM condition WHERE 1=1"
        assert q.data_sql == "SELECT id, fhir_id FROM condition WHERE 1=1 LIMIT $1 OFFSET $2"
        assert q.count_args == ()

    def test_surgical_case_example(self):
        """Keys are applied in sorted order with sequential placeholders."""
        q = build_search_query(
            "surgical_case",
            "id, status",
            SURGICAL_CASE,
            {"status": "scheduled", "patient_id": "Patient/p1"},
            order_by="scheduled_date DESC",
        )
        assert q.count_sql == (
            "SELECT COUNT(*) FROM surgical_case WHERE 1=1 AND patient_id = $1 AND status = $2"
        )
        assert q.data_sql == (
            "SELECT id, status FROM surgical_case WHERE 1=1 AND patient_id = $1 AND status = $2"
            " ORDER BY scheduled_date DESC LIMIT $3 OFFSET $4"
        )
        assert q.count_args == ("p1", "scheduled")
        assert q.data_args(10, 20) == ["p1", "scheduled", 10, 20]

    def test_renamed_column(self):
        """The descriptor's column is used, not the parameter name."""
        q = build_search_query("surgical_case", "id", SURGICAL_CASE, {"surgeon_id": "Practitioner/dr-7"})
        assert "primary_surgeon_id = $1" in q.count_sql
        assert q.count_args == ("dr-7",)

    def test_unknown_keys_have_no_effect(self):
        """Keys outside the descriptor table are ignored."""
        base = build_search_query("condition", "id", CONDITION, {"patient": "p1"})
        noisy = build_search_query(
            "condition",
            "id",
            CONDITION,
            {"patient": "p1", "foo": "bar", "_count": "5", "_sort": "-date", "_offset": "2"},
        )
        assert noisy == base

    def test_empty_value_skipped(self):
        """An empty value contributes no clause."""
        q = build_search_query("condition", "id", CONDITION, {"patient": "", "clinical-status": "active"})
        assert q.count_sql == "SELECT COUNT(*) FROM condition WHERE 1=1 AND clinical_status = $1"

    def test_user_values_never_in_sql(self):
        """Values travel only as arguments."""
        hostile = "x'; DROP TABLE condition; --"
        q = build_search_query(
            "condition", "id", CONDITION, {"note": hostile, "clinical-status": hostile}
        )
        assert "DROP" not in q.count_sql
        assert "DROP" not in q.data_sql
        assert hostile in q.count_args

    def test_count_and_data_share_arguments(self):
        """Data args are the count args plus limit/offset."""
        q = build_search_query(
            "condition",
            "id",
            CONDITION,
            {
                "patient": "p1",
                "code": "http://hl7.org/fhir/sid/icd-10-cm|E11.9",
                "onset-date": "ge2023-01",
                "note": "insulin",
            },
        )
        assert q.data_args_template == q.count_args
        assert q.data_args(5, 0)[:-2] == list(q.count_args)
        where = q.count_sql.split(" FROM condition", 1)[1]
        assert where in q.data_sql
        # 2 (code) + 1 (onset-date) + 1 (note) + 1 (patient)
        assert len(q.count_args) == 5
        assert q.data_sql.endswith("LIMIT $6 OFFSET $7")

    def test_comma_values_or_together(self):
        """Comma-separated alternatives are ORed."""
        q = build_search_query("inbox_message", "id", INBOX_MESSAGE, {"status": "unread,flagged"})
        assert q.count_sql.endswith("AND (status = $1 OR status = $2)")
        assert q.count_args == ("unread", "flagged")

    def test_repeated_key_ands(self):
        """A sequence of values for one key is ANDed."""
        q = build_search_query(
            "condition", "id", CONDITION, {"onset-date": ["ge2023-01-01", "lt2024-01-01"]}
        )
        assert q.count_sql.endswith("AND onset_datetime >= $1 AND onset_datetime < $2")

    def test_deterministic(self):
        """The same map in a different order compiles identically."""
        a = build_search_query("inbox_message", "id", INBOX_MESSAGE, {"status": "unread", "priority": "high"})
        b = build_search_query("inbox_message", "id", INBOX_MESSAGE, {"priority": "high", "status": "unread"})
        assert a == b


class TestModifiers:
    """Tests for parameter modifiers."""

    def test_not_modifier(self):
        """:not negates the whole OR group."""
        q = build_search_query(
            "condition", "id", CONDITION, {"clinical-status:not": "resolved,inactive"}
        )
        assert q.count_sql.endswith("AND NOT (clinical_status = $1 OR clinical_status = $2)")

    def test_not_single_value(self):
        """:not on one value wraps it in parentheses."""
        q = build_search_query("condition", "id", CONDITION, {"clinical-status:not": "resolved"})
        assert q.count_sql.endswith("AND NOT (clinical_status = $1)")

    def test_exact_modifier(self):
        """:exact on strings compares verbatim."""
        q = build_search_query("research_study", "id", RESEARCH_STUDY, {"title:exact": "DIAMOND"})
        assert q.count_sql.endswith("AND title = $1")
        assert q.count_args == ("DIAMOND",)

    def test_contains_modifier(self):
        """:contains behaves like the default string search."""
        q = build_search_query("research_study", "id", RESEARCH_STUDY, {"title:contains": "heart"})
        assert q.count_sql.endswith("AND title ILIKE $1")
        assert q.count_args == ("%heart%",)

    def test_missing_modifier(self):
        """:missing adds an IS NULL check without arguments."""
        q = build_search_query("pregnancy", "id", PREGNANCY, {"onset-date:missing": "true"})
        assert q.count_sql.endswith("AND onset_date IS NULL")
        assert q.count_args == ()
        assert q.data_sql.endswith("LIMIT $1 OFFSET $2")

    def test_typed_reference_accepted(self):
        """subject:Patient style modifiers are accepted on references."""
        q = build_search_query("condition", "id", CONDITION, {"patient:Patient": "p1"})
        assert q.count_sql.endswith("AND patient_id = $1")

    def test_unsupported_modifier(self):
        """A modifier the type does not support is rejected."""
        with pytest.raises(InvalidParameterError) as exc_info:
            build_search_query("condition", "id", CONDITION, {"clinical-status:contains": "act"})
        assert exc_info.value.parameter == "clinical-status:contains"

    def test_invalid_value_names_parameter(self):
        """Coercion errors carry the request key."""
        with pytest.raises(InvalidParameterError) as exc_info:
            build_search_query("condition", "id", CONDITION, {"onset-date": "not-a-date"})
        assert exc_info.value.parameter == "onset-date"
        assert exc_info.value.code == "invalid-parameter"

    @pytest.mark.parametrize("value", ["9999-12-31", "ap0001-01-01", "ap9999-12-31T00:00:00Z"])
    def test_dates_at_calendar_limits_compile(self, value):
        """Dates at the edge of the calendar still compile to a clause."""
        compiled = build_search_query("condition", "id", CONDITION, {"onset-date": value})
        assert "onset_datetime >= $1 AND onset_datetime < $2" in compiled.count_sql
        assert len(compiled.count_args) == 2

    def test_invalid_boolean(self):
        """Booleans must be true/false."""
        with pytest.raises(InvalidParameterError):
            build_search_query("message_pool", "id", MESSAGE_POOL, {"is_active": "yes"})


class TestConfigurationErrors:
    """Tests for descriptor validation."""

    def test_unknown_type(self):
        """An unknown descriptor type is an internal error."""
        table = {"geo": ParamDescriptor("geo", "geo", "location")}
        with pytest.raises(InternalConfigError):
            build_search_query("t", "id", table, {})

    def test_string_type_accepted(self):
        """Types may be given by their string value."""
        table = {"status": ParamDescriptor("status", "token", "status")}
        q = build_search_query("t", "id", table, {"status": "a"})
        assert q.count_sql.endswith("AND status = $1")

    def test_key_name_mismatch(self):
        """Table keys must match descriptor names."""
        table = {"status": param("state", ParamType.TOKEN, "status")}
        with pytest.raises(InternalConfigError):
            build_search_query("t", "id", table, {})

    def test_empty_column(self):
        """A descriptor needs a column."""
        table = {"status": param("status", ParamType.TOKEN, "")}
        with pytest.raises(InternalConfigError):
            build_search_query("t", "id", table, {})

    def test_duplicate_descriptor(self):
        """descriptor_table rejects duplicate names."""
        with pytest.raises(InternalConfigError):
            descriptor_table(
                param("status", ParamType.TOKEN, "status"),
                param("status", ParamType.STRING, "status_text"),
            )

    def test_table_is_read_only(self):
        """Descriptor tables cannot be modified."""
        with pytest.raises(TypeError):
            SURGICAL_CASE["x"] = param("x", ParamType.TOKEN, "x")  # type: ignore[index]

    def test_domain_tables_are_valid(self):
        """Every shipped table compiles an empty request."""
        for table in (
            INBOX_MESSAGE,
            MESSAGE_POOL,
            SURGICAL_CASE,
            PREGNANCY,
            RESEARCH_STUDY,
            LAB_REPORT,
            TERMINOLOGY_CODE,
        ):
            assert build_search_query("t", "id", table, {}).count_args == ()


class TestSearchQuery:
    """Tests for the incremental builder."""

    def test_requires_table_and_columns(self):
        with pytest.raises(InternalConfigError):
            SearchQuery("", "id")

    def test_add_clause_advances_index(self):
        """Raw clauses keep numbering consistent."""
        qb = SearchQuery("lab_report", "id")
        qb.add_clause("tenant_id = $1", ["t1"], 2)
        qb.apply_params({"status": "final"}, LAB_REPORT)
        compiled = qb.compile()
        assert compiled.count_sql.endswith("AND tenant_id = $1 AND status = $2")
        assert compiled.count_args == ("t1", "final")
        assert qb.next_index == 3

    def test_compiled_query_rejects_negative_page(self):
        """data_args refuses negative limit/offset."""
        compiled = CompiledQuery("c", (), "d", ())
        with pytest.raises(InvalidParameterError):
            compiled.data_args(-1, 0)
        with pytest.raises(InvalidParameterError):
            compiled.data_args(10, -5)
