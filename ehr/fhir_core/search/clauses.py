"""
SQL clause builders for individual search parameters.

Each builder takes the column(s) to match, the raw request value and the next
free placeholder index, and returns ``(sql, args, next_index)``. The SQL only
ever contains ``$n`` placeholders; the request value travels in ``args``.

Invariants:
    - next_index == index + len(args)
    - Columns are trusted identifiers from descriptor tables
    - A value that cannot be coerced raises InvalidParameterError
"""

from __future__ import annotations

import math
import re
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any

from ..errors import InvalidParameterError

ClauseResult = tuple[str, list[Any], int]


class SearchPrefix(str, Enum):
    """FHIR comparison prefixes for ordered types (date, number)."""

    EQ = "eq"
    NE = "ne"
    GT = "gt"
    LT = "lt"
    GE = "ge"
    LE = "le"
    SA = "sa"
    EB = "eb"
    AP = "ap"


class SearchModifier(str, Enum):
    """Parameter name modifiers (``name:modifier``)."""

    EXACT = "exact"
    CONTAINS = "contains"
    NOT = "not"
    MISSING = "missing"


_PREFIXES = {p.value: p for p in SearchPrefix}

_COMPARATORS = {
    SearchPrefix.EQ: "=",
    SearchPrefix.NE: "<>",
    SearchPrefix.GT: ">",
    SearchPrefix.SA: ">",
    SearchPrefix.LT: "<",
    SearchPrefix.EB: "<",
    SearchPrefix.GE: ">=",
    SearchPrefix.LE: "<=",
}


def parse_search_value(value: str) -> tuple[SearchPrefix, str]:
    """Split an optional two-letter prefix from a date/number value.

    Prefixes are case-insensitive. A value that is only a prefix (or shorter)
    has no prefix.

    Example:
        >>> parse_search_value("GT2023-01-01")
        (<SearchPrefix.GT: 'gt'>, '2023-01-01')
    """
    if len(value) > 2:
        prefix = _PREFIXES.get(value[:2].lower())
        if prefix is not None:
            return prefix, value[2:]
    return SearchPrefix.EQ, value


def parse_param_modifier(key: str) -> tuple[str, str | None]:
    """Split ``name:modifier`` at the first colon."""
    name, sep, modifier = key.partition(":")
    return name, (modifier if sep else None)


def split_values(value: str) -> list[str]:
    """Split a comma-separated OR list, dropping empty entries."""
    return [v for v in (part.strip() for part in value.split(",")) if v]


def or_group(parts: list[str]) -> str:
    return parts[0] if len(parts) == 1 else "(" + " OR ".join(parts) + ")"


# --- token / reference ---


def token_search_clause(
    system_column: str | None,
    column: str,
    value: str,
    index: int,
) -> ClauseResult:
    """Exact match on a coded value, with optional ``system|code`` syntax.

    ``system|code`` matches both columns, ``|code`` the code only, and
    ``system|`` the system only. Without a system column the whole value is
    compared against the code column.
    """
    if system_column and "|" in value:
        system, _, code = value.partition("|")
        if system and code:
            return (
                f"({system_column} = ${index} AND {column} = ${index + 1})",
                [system, code],
                index + 2,
            )
        if code:
            return f"{column} = ${index}", [code], index + 1
        if system:
            return f"{system_column} = ${index}", [system], index + 1
    return f"{column} = ${index}", [value], index + 1


def reference_search_clause(column: str, value: str, index: int) -> ClauseResult:
    """Exact match on the id segment of a reference.

    ``Patient/123`` and ``http://host/fhir/Patient/123`` both match ``123``.
    """
    ref_id = value.rstrip("/").rsplit("/", 1)[-1]
    if not ref_id:
        raise InvalidParameterError(f"Invalid reference '{value}'", value=value)
    return f"{column} = ${index}", [ref_id], index + 1


# --- string ---

_LIKE_SPECIAL = re.compile(r"([\\%_])")


def escape_like(value: str) -> str:
    """Escape LIKE wildcards so the value matches literally."""
    return _LIKE_SPECIAL.sub(r"\\\1", value)


def string_search_clause(
    column: str,
    value: str,
    modifier: str | None,
    index: int,
) -> ClauseResult:
    """Case-insensitive substring match; ``:exact`` compares verbatim."""
    if modifier == SearchModifier.EXACT.value:
        return f"{column} = ${index}", [value], index + 1
    return f"{column} ILIKE ${index}", [f"%{escape_like(value)}%"], index + 1


# --- boolean ---


def parse_bool(value: str, parameter: str | None = None) -> bool:
    """Coerce ``true``/``false`` (any case)."""
    lowered = value.strip().lower()
    if lowered == "true":
        return True
    if lowered == "false":
        return False
    raise InvalidParameterError(
        f"Expected true or false, got '{value}'", parameter=parameter, value=value
    )


def boolean_search_clause(column: str, value: str, index: int) -> ClauseResult:
    return f"{column} = ${index}", [parse_bool(value)], index + 1


# --- date ---

_DATE_ONLY = re.compile(r"^\d{4}(-\d{2}(-\d{2})?)?$")

# Period bounds that fall outside datetime's range are clamped to these.
MIN_INSTANT = datetime.min.replace(tzinfo=timezone.utc)
MAX_INSTANT = datetime.max.replace(tzinfo=timezone.utc)


def _shift_days(moment: datetime, days: int) -> datetime:
    try:
        return moment + timedelta(days=days)
    except OverflowError:
        return MAX_INSTANT if days > 0 else MIN_INSTANT


def _next_period(year: int, month: int) -> datetime:
    if year > MAX_INSTANT.year:
        return MAX_INSTANT
    return datetime(year, month, 1, tzinfo=timezone.utc)


def parse_flex_date(value: str) -> tuple[datetime, datetime, bool]:
    """Parse a FHIR date/dateTime into the period it denotes.

    Returns:
        (start, end, precise): ``end`` is exclusive. ``precise`` is True for
        a full dateTime, in which case start == end.

    Raises:
        ValueError: If the value is not a recognised date
    """
    if _DATE_ONLY.match(value):
        parts = [int(p) for p in value.split("-")]
        if len(parts) == 1:
            start = datetime(parts[0], 1, 1, tzinfo=timezone.utc)
            end = _next_period(parts[0] + 1, 1)
        elif len(parts) == 2:
            start = datetime(parts[0], parts[1], 1, tzinfo=timezone.utc)
            if parts[1] == 12:
                end = _next_period(parts[0] + 1, 1)
            else:
                end = _next_period(parts[0], parts[1] + 1)
        else:
            start = datetime(parts[0], parts[1], parts[2], tzinfo=timezone.utc)
            end = _shift_days(start, 1)
        return start, end, False

    if "T" not in value:
        raise ValueError(f"not a FHIR date: {value!r}")
    instant = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=timezone.utc)
    return instant, instant, True


def date_search_clause(column: str, value: str, index: int) -> ClauseResult:
    """Date comparison honoring the precision of the supplied value.

    A date with day precision or coarser matches its whole period; ``ap``
    widens the period by one day on each side. Bounds past the representable
    range are clamped to MIN_INSTANT / MAX_INSTANT.
    """
    prefix, raw = parse_search_value(value)
    try:
        start, end, precise = parse_flex_date(raw)
    except (ValueError, OverflowError):
        raise InvalidParameterError(f"Invalid date '{value}'", value=value) from None

    if prefix == SearchPrefix.AP:
        return (
            f"({column} >= ${index} AND {column} < ${index + 1})",
            [_shift_days(start, -1), _shift_days(end, 1)],
            index + 2,
        )

    if precise:
        return f"{column} {_COMPARATORS[prefix]} ${index}", [start], index + 1

    if prefix == SearchPrefix.EQ:
        return f"({column} >= ${index} AND {column} < ${index + 1})", [start, end], index + 2
    if prefix == SearchPrefix.NE:
        return f"({column} < ${index} OR {column} >= ${index + 1})", [start, end], index + 2
    if prefix in (SearchPrefix.GT, SearchPrefix.SA):
        return f"{column} >= ${index}", [end], index + 1
    if prefix in (SearchPrefix.LT, SearchPrefix.EB):
        return f"{column} < ${index}", [start], index + 1
    if prefix == SearchPrefix.GE:
        return f"{column} >= ${index}", [start], index + 1
    # LE
    return f"{column} < ${index}", [end], index + 1


# --- number ---


def parse_number(value: str, parameter: str | None = None) -> int | float:
    try:
        return int(value)
    except ValueError:
        pass
    try:
        number = float(value)
    except ValueError:
        number = math.nan
    if not math.isfinite(number):
        raise InvalidParameterError(
            f"Invalid number '{value}'", parameter=parameter, value=value
        )
    return number


def number_search_clause(column: str, value: str, index: int) -> ClauseResult:
    """Numeric comparison; ``ap`` matches within 10% of the value."""
    prefix, raw = parse_search_value(value)
    number = parse_number(raw)
    if prefix == SearchPrefix.AP:
        low, high = sorted((number * 0.9, number * 1.1))
        return (
            f"({column} >= ${index} AND {column} <= ${index + 1})",
            [low, high],
            index + 2,
        )
    return f"{column} {_COMPARATORS[prefix]} ${index}", [number], index + 1


# --- missing ---


def missing_search_clause(column: str, value: str) -> str:
    """``:missing=true`` -> IS NULL, ``:missing=false`` -> IS NOT NULL."""
    return f"{column} IS NULL" if parse_bool(value) else f"{column} IS NOT NULL"

