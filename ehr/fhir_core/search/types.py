"""
Core type definitions for search compilation.

This module defines the static configuration a domain hands to the compiler:
- ParamType: how a request value is matched against a column
- ParamDescriptor: one permitted search parameter
- CompiledQuery: the SQL produced for one request

Invariants:
    - Descriptor tables are static configuration, never derived from requests
    - Column names come only from descriptors, never from request keys
    - CompiledQuery never carries user values in its SQL text

Example:
    >>> from ehr.fhir_core.search.types import ParamType, descriptor_table, param
    >>> SURGICAL_CASE = descriptor_table(
    ...     param("patient_id", ParamType.REFERENCE, "patient_id"),
    ...     param("status", ParamType.TOKEN, "status"),
    ... )
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping

from ..errors import InternalConfigError, InvalidParameterError


class ParamType(Enum):
    """Supported search parameter types.

    These map to the clause builders in ``clauses``.
    """

    TOKEN = "token"
    REFERENCE = "reference"
    STRING = "string"
    DATE = "date"
    BOOLEAN = "boolean"
    NUMBER = "number"

    @classmethod
    def from_str(cls, value: str) -> ParamType:
        """Convert string representation to ParamType.

        Args:
            value: String name of the parameter type

        Returns:
            Corresponding ParamType enum value

        Raises:
            InternalConfigError: If value is not a valid parameter type
        """
        for kind in cls:
            if kind.value == value:
                return kind
        valid = [k.value for k in cls]
        raise InternalConfigError(f"Invalid search parameter type '{value}'. Valid types: {valid}")


@dataclass(frozen=True)
class ParamDescriptor:
    """Definition of a single permitted search parameter.

    Attributes:
        name: Request parameter name (e.g. "patient", "onset-date")
        type: Matching semantics; a ParamType or its string value
        column: Column the parameter filters on (trusted SQL identifier)
        system_column: Column holding the code system, for ``system|code``
            token searches

    Invariants:
        - name and column are non-empty
        - type resolves to a ParamType (checked at compile time)
    """

    name: str
    type: ParamType | str
    column: str
    system_column: str | None = None

    def resolved_type(self) -> ParamType:
        """Return the ParamType, raising InternalConfigError if unknown."""
        if isinstance(self.type, ParamType):
            return self.type
        if isinstance(self.type, str):
            return ParamType.from_str(self.type)
        raise InternalConfigError(
            f"Search parameter '{self.name}' has non-string type {self.type!r}"
        )


def param(
    name: str,
    type: ParamType | str,
    column: str,
    system_column: str | None = None,
) -> ParamDescriptor:
    """Shorthand constructor used by the descriptor tables."""
    return ParamDescriptor(name=name, type=type, column=column, system_column=system_column)


def descriptor_table(*descriptors: ParamDescriptor) -> Mapping[str, ParamDescriptor]:
    """Build a read-only name -> descriptor table.

    Raises:
        InternalConfigError: If two descriptors share a name
    """
    table: dict[str, ParamDescriptor] = {}
    for descriptor in descriptors:
        if descriptor.name in table:
            raise InternalConfigError(f"Duplicate search parameter '{descriptor.name}'")
        table[descriptor.name] = descriptor
    return MappingProxyType(table)


@dataclass(frozen=True)
class CompiledQuery:
    """Parameterized SQL for one search request.

    The count and data statements share the same WHERE clause and the same
    leading arguments; the data statement adds two trailing placeholders for
    LIMIT and OFFSET which are bound by data_args().

    Attributes:
        count_sql: ``SELECT COUNT(*) ...`` statement
        count_args: Arguments for count_sql, in placeholder order
        data_sql: Paginated ``SELECT <columns> ...`` statement
        data_args_template: Arguments preceding the LIMIT/OFFSET pair
    """

    count_sql: str
    count_args: tuple[Any, ...]
    data_sql: str
    data_args_template: tuple[Any, ...]

    @property
    def where_args(self) -> tuple[Any, ...]:
        """Arguments shared by both statements."""
        return self.count_args

    def data_args(self, limit: int, offset: int) -> list[Any]:
        """Bind the pagination arguments for data_sql.

        Raises:
            InvalidParameterError: If limit or offset is negative
        """
        if limit < 0:
            raise InvalidParameterError("limit must not be negative", parameter="_count", value=limit)
        if offset < 0:
            raise InvalidParameterError("offset must not be negative", parameter="_offset", value=offset)
        return [*self.data_args_template, limit, offset]
