"""
Search-query compilation for fhir-core.

This module turns declarative parameter tables into parameterized SQL:
- ParamDescriptor tables describe what a domain allows
- build_search_query() compiles a request into a CompiledQuery
- parse_page() reads _count/_offset with clamping to the max page size

Invariants:
    - Unknown request keys are ignored
    - User values never appear in SQL text
    - Count and data SQL share the WHERE clause and its arguments

How to change safely:
    - Add clause builders with tests covering placeholder numbering
    - Keep the ``$n`` dialect; repositories depend on it
"""

from .clauses import SearchModifier, SearchPrefix, parse_param_modifier, parse_search_value
from .compiler import SearchQuery, build_search_query, validate_descriptors
from .paging import parse_page
from .types import CompiledQuery, ParamDescriptor, ParamType, descriptor_table, param

__all__ = [
    # Types
    "ParamType",
    "ParamDescriptor",
    "CompiledQuery",
    "SearchPrefix",
    "SearchModifier",
    # Construction helpers
    "param",
    "descriptor_table",
    # Compilation
    "SearchQuery",
    "build_search_query",
    "validate_descriptors",
    "parse_search_value",
    "parse_param_modifier",
    "parse_page",
]
