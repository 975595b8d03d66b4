"""
Search-query compiler.

Turns a domain's table of permitted parameters plus a request's parameter map
into a parameterized count statement and a paginated data statement for a
``$1, $2, ...`` placeholder dialect.

Invariants:
    - Request keys that are not in the descriptor table have no effect
    - Request values only ever reach the SQL as placeholder arguments
    - Count and data SQL share the same WHERE clause and argument order;
      the data SQL adds LIMIT/OFFSET placeholders at the end
    - Keys are applied in sorted order, so equal inputs give equal SQL

How to change safely:
    - New parameter types need a clause builder in ``clauses`` and a branch
      in _clause_for()
    - Never interpolate anything from ``params`` into SQL text

Example:
    >>> query = build_search_query(
    ...     "surgical_case", "id, status", SURGICAL_CASE,
    ...     {"status": "scheduled"}, order_by="scheduled_date DESC",
    ... )
    >>> query.count_sql
    'SELECT COUNT(*) FROM surgical_case WHERE 1=1 AND status = $1'
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping, Sequence, Union

from ..errors import InternalConfigError, InvalidParameterError
from .clauses import (
    SearchModifier,
    boolean_search_clause,
    date_search_clause,
    missing_search_clause,
    number_search_clause,
    or_group,
    parse_param_modifier,
    reference_search_clause,
    split_values,
    string_search_clause,
    token_search_clause,
)
from .types import CompiledQuery, ParamDescriptor, ParamType

logger = logging.getLogger(__name__)

ParamValue = Union[str, Sequence[str]]

# Modifiers accepted per parameter type (``missing`` is accepted by all)
_ALLOWED_MODIFIERS: dict[ParamType, frozenset[str]] = {
    ParamType.TOKEN: frozenset({SearchModifier.NOT.value}),
    ParamType.REFERENCE: frozenset(),
    ParamType.STRING: frozenset({SearchModifier.EXACT.value, SearchModifier.CONTAINS.value}),
    ParamType.DATE: frozenset(),
    ParamType.BOOLEAN: frozenset(),
    ParamType.NUMBER: frozenset(),
}


class SearchQuery:
    """Incremental builder for a search statement pair.

    Attributes:
        table: Table to select from (trusted)
        columns: Column list for the data statement (trusted)

    Thread safety:
        Instances are per request and not shared.

    Example:
        >>> qb = SearchQuery("condition", "id, fhir_id, code_value")
        >>> qb.apply_params({"code": "I10"}, CONDITION)
        >>> qb.order_by("created_at DESC")
        >>> compiled = qb.compile()
    """

    def __init__(self, table: str, columns: str) -> None:
        if not table or not columns:
            raise InternalConfigError("Search table and column list are required")
        self.table = table
        self.columns = columns
        self._where: list[str] = []
        self._args: list[Any] = []
        self._idx = 1
        self._order_by: str | None = None

    @property
    def next_index(self) -> int:
        """Next free placeholder number."""
        return self._idx

    @property
    def clause_count(self) -> int:
        return len(self._where)

    def add_clause(self, sql: str, args: Iterable[Any], next_index: int) -> None:
        """Append a raw clause produced by a clause builder."""
        self._where.append(sql)
        self._args.extend(args)
        self._idx = next_index

    def order_by(self, clause: str | None) -> None:
        """Set the ORDER BY clause (caller-trusted, appended verbatim)."""
        self._order_by = clause or None

    def apply_params(
        self,
        params: Mapping[str, ParamValue],
        descriptors: Mapping[str, ParamDescriptor],
    ) -> None:
        """Apply every request parameter that has a descriptor.

        A key may be repeated by passing a sequence of values; each value is
        ANDed. Within one value, comma-separated alternatives are ORed.

        Raises:
            InternalConfigError: If the descriptor table is inconsistent
            InvalidParameterError: If a value or modifier cannot be used
        """
        validate_descriptors(descriptors)

        for key in sorted(params):
            name, modifier = parse_param_modifier(key)
            descriptor = descriptors.get(name)
            if descriptor is None:
                continue

            raw = params[key]
            values = [raw] if isinstance(raw, str) else list(raw)
            for value in values:
                if not value:
                    continue
                try:
                    self._apply_one(descriptor, modifier, value)
                except InvalidParameterError as exc:
                    if exc.parameter is not None:
                        raise
                    raise InvalidParameterError(
                        f"Search parameter '{key}': {exc.message}", parameter=key, value=value
                    ) from exc

    def _apply_one(self, descriptor: ParamDescriptor, modifier: str | None, value: str) -> None:
        ptype = descriptor.resolved_type()

        if modifier == SearchModifier.MISSING.value:
            self._where.append(missing_search_clause(descriptor.column, value))
            return

        if modifier is not None and modifier not in _ALLOWED_MODIFIERS[ptype]:
            # A typed reference (subject:Patient=123) narrows nothing here;
            # the column only holds ids.
            if not (ptype == ParamType.REFERENCE and modifier[:1].isupper()):
                raise InvalidParameterError(
                    f"Modifier ':{modifier}' is not supported for {ptype.value} parameters"
                )

        parts: list[str] = []
        for alternative in split_values(value):
            sql, args, next_index = self._clause_for(descriptor, ptype, modifier, alternative)
            parts.append(sql)
            self._args.extend(args)
            self._idx = next_index
        if not parts:
            return

        clause = or_group(parts)
        if modifier == SearchModifier.NOT.value:
            clause = f"NOT {clause}" if clause.startswith("(") else f"NOT ({clause})"
        self._where.append(clause)

    def _clause_for(
        self,
        descriptor: ParamDescriptor,
        ptype: ParamType,
        modifier: str | None,
        value: str,
    ) -> tuple[str, list[Any], int]:
        column = descriptor.column
        if ptype == ParamType.TOKEN:
            return token_search_clause(descriptor.system_column, column, value, self._idx)
        if ptype == ParamType.REFERENCE:
            return reference_search_clause(column, value, self._idx)
        if ptype == ParamType.STRING:
            return string_search_clause(column, value, modifier, self._idx)
        if ptype == ParamType.DATE:
            return date_search_clause(column, value, self._idx)
        if ptype == ParamType.BOOLEAN:
            return boolean_search_clause(column, value, self._idx)
        if ptype == ParamType.NUMBER:
            return number_search_clause(column, value, self._idx)
        raise InternalConfigError(f"No clause builder for parameter type {ptype}")

    def where_sql(self) -> str:
        return " WHERE 1=1" + "".join(f" AND {clause}" for clause in self._where)

    def count_sql(self) -> str:
        return f"SELECT COUNT(*) FROM {self.table}{self.where_sql()}"

    def data_sql(self) -> str:
        sql = f"SELECT {self.columns} FROM {self.table}{self.where_sql()}"
        if self._order_by:
            sql += f" ORDER BY {self._order_by}"
        return sql + f" LIMIT ${self._idx} OFFSET ${self._idx + 1}"

    def compile(self) -> CompiledQuery:
        """Freeze the current state into a CompiledQuery."""
        args = tuple(self._args)
        return CompiledQuery(
            count_sql=self.count_sql(),
            count_args=args,
            data_sql=self.data_sql(),
            data_args_template=args,
        )


def validate_descriptors(descriptors: Mapping[str, ParamDescriptor]) -> None:
    """Check a descriptor table for configuration errors.

    Raises:
        InternalConfigError: On an unknown type, an empty column, or a key
            that does not match the descriptor's name
    """
    for key, descriptor in descriptors.items():
        if not isinstance(descriptor, ParamDescriptor):
            raise InternalConfigError(f"Search parameter '{key}' is not a ParamDescriptor")
        if key != descriptor.name:
            raise InternalConfigError(
                f"Search parameter table key '{key}' does not match descriptor name "
                f"'{descriptor.name}'"
            )
        if not descriptor.column:
            raise InternalConfigError(f"Search parameter '{key}' has no column")
        descriptor.resolved_type()


def build_search_query(
    table: str,
    columns: str,
    descriptors: Mapping[str, ParamDescriptor],
    params: Mapping[str, ParamValue],
    order_by: str | None = None,
) -> CompiledQuery:
    """Compile a search request into count and data statements.

    Args:
        table: Table name (trusted)
        columns: Column list for the data statement (trusted)
        descriptors: Permitted parameters for this domain
        params: Request query parameters; unknown keys are ignored
        order_by: ORDER BY clause (trusted, appended verbatim)

    Returns:
        CompiledQuery

    Raises:
        InternalConfigError: If a descriptor is misconfigured
        InvalidParameterError: If a request value cannot be coerced
    """
    qb = SearchQuery(table, columns)
    qb.apply_params(params, descriptors)
    qb.order_by(order_by)
    compiled = qb.compile()
    logger.debug(
        "Compiled search query",
        extra={"table": table, "clauses": qb.clause_count, "args": len(compiled.count_args)},
    )
    return compiled
