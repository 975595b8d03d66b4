"""
Search parameter tables for the clinical domains.

Each table is static configuration handed to build_search_query() by the
domain's repository; nothing here is consulted implicitly.

How to change safely:
    - Parameter names are part of the public API; add, never rename
    - Columns must exist in the domain's table (see migrations)
"""

from __future__ import annotations

from .types import ParamType, descriptor_table, param

INBOX_MESSAGE = descriptor_table(
    param("recipient_id", ParamType.REFERENCE, "recipient_id"),
    param("patient_id", ParamType.REFERENCE, "patient_id"),
    param("status", ParamType.TOKEN, "status"),
    param("message_type", ParamType.TOKEN, "message_type"),
    param("priority", ParamType.TOKEN, "priority"),
)

MESSAGE_POOL = descriptor_table(
    param("pool_type", ParamType.TOKEN, "pool_type"),
    param("name", ParamType.STRING, "pool_name"),
    param("department_id", ParamType.REFERENCE, "department_id"),
    param("is_active", ParamType.BOOLEAN, "is_active"),
)

SURGICAL_CASE = descriptor_table(
    param("patient_id", ParamType.REFERENCE, "patient_id"),
    param("status", ParamType.TOKEN, "status"),
    param("surgeon_id", ParamType.REFERENCE, "primary_surgeon_id"),
    param("or_room_id", ParamType.REFERENCE, "or_room_id"),
    param("scheduled-date", ParamType.DATE, "scheduled_date"),
)

PREGNANCY = descriptor_table(
    param("patient", ParamType.REFERENCE, "patient_id"),
    param("status", ParamType.TOKEN, "status"),
    param("onset-date", ParamType.DATE, "onset_date"),
    param("estimated-due-date", ParamType.DATE, "estimated_due_date"),
    param("gravida", ParamType.NUMBER, "gravida"),
)

RESEARCH_STUDY = descriptor_table(
    param("status", ParamType.TOKEN, "status"),
    param("title", ParamType.STRING, "title"),
    param("protocol", ParamType.TOKEN, "protocol_number"),
    param("_id", ParamType.TOKEN, "fhir_id"),
)

LAB_REPORT = descriptor_table(
    param("patient", ParamType.REFERENCE, "patient_id"),
    param("status", ParamType.TOKEN, "status"),
    param("category", ParamType.TOKEN, "category_code"),
    param("code", ParamType.TOKEN, "code_value", system_column="code_system"),
    param("date", ParamType.DATE, "effective_datetime"),
    param("_id", ParamType.TOKEN, "fhir_id"),
)

TERMINOLOGY_CODE = descriptor_table(
    param("system", ParamType.TOKEN, "system_uri"),
    param("code", ParamType.TOKEN, "code"),
    param("display", ParamType.STRING, "display"),
    param("active", ParamType.BOOLEAN, "active"),
)
