"""Built-in operator builders, one table per column type.

Every builder takes ``(column_id, value)`` and returns a CompiledRule, or
None when the rule is incomplete and should constrain nothing.
"""

import math
from datetime import date
from typing import Any, Optional

import pandas as pd
import polars as pl

from .compiler import CompiledRule, ExprBuilder
from .registry import register_operator

TRUE_VALUES = (True, "true", 1, "1", "Yes", "yes")
FALSE_VALUES = (False, "false", 0, "0", "No", "no")


def is_empty_value(value: Any) -> bool:
    """None, empty string and NaN count as empty."""
    if value is None:
        return True
    if isinstance(value, str):
        return value == ""
    if isinstance(value, float):
        return math.isnan(value)
    return False


def has_text(value: Any) -> bool:
    """Check for a non-empty string after trimming."""
    return value is not None and str(value).strip() != ""


def to_number(value: Any) -> Optional[float]:
    """Coerce a value to float, returning None if it isn't numeric."""
    if value is None or (isinstance(value, str) and value.strip() == ""):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(number):
        return None
    return number


def to_day(value: Any) -> Optional[date]:
    """
    Parse a value into a calendar day.

    Dates are compared at day granularity, so times are dropped.

    Args:
        value: date, datetime, pandas Timestamp or parseable string

    Returns:
        The day, or None if the value doesn't parse
    """
    if is_empty_value(value) or isinstance(value, bool):
        return None
    if not isinstance(value, (str, date, pd.Timestamp, int, float)):
        return None
    try:
        timestamp = pd.to_datetime(value, errors="coerce")
    except (TypeError, ValueError, OverflowError):
        return None
    if timestamp is None or pd.isna(timestamp):
        return None
    return timestamp.date()


def _text(value: Any) -> str:
    """Lowercased string form of a cell; empty cells become ''."""
    if is_empty_value(value):
        return ""
    return str(value).lower()


# =============================================================================
# polars expressions
#
# Expression builders receive the dtype of the filtered column and return
# None where the expression could disagree with the row predicate; those
# rules are then evaluated row by row.
# =============================================================================


def _literals_match_dtype(dtype: pl.DataType, values: list) -> bool:
    """Check that literal values compare natively against a column dtype."""
    if dtype == pl.String:
        return all(isinstance(v, str) for v in values)
    if dtype.is_integer():
        return all(isinstance(v, int) and not isinstance(v, bool) for v in values)
    return False


def _lowercase_text_expr(column_id: str, build, null_result: bool) -> ExprBuilder:
    """Expression on the lowercased text of a String column."""

    def expr_builder(dtype: pl.DataType) -> Optional[pl.Expr]:
        if dtype != pl.String:
            return None
        return build(pl.col(column_id).str.to_lowercase()).fill_null(null_result)

    return expr_builder


def _equality_expr(column_id: str, value: Any, negate: bool) -> ExprBuilder:
    def expr_builder(dtype: pl.DataType) -> Optional[pl.Expr]:
        if not _literals_match_dtype(dtype, [value]):
            return None
        if negate:
            return (pl.col(column_id) != value).fill_null(True)
        return (pl.col(column_id) == value).fill_null(False)

    return expr_builder


def _membership_expr(column_id: str, values: list, negate: bool) -> ExprBuilder:
    def expr_builder(dtype: pl.DataType) -> Optional[pl.Expr]:
        if not _literals_match_dtype(dtype, values):
            return None
        expr = pl.col(column_id).is_in(values)
        if negate:
            return (~expr).fill_null(True)
        return expr.fill_null(False)

    return expr_builder


def _empty_expr(column_id: str, negate: bool) -> ExprBuilder:
    def expr_builder(dtype: pl.DataType) -> Optional[pl.Expr]:
        if dtype == pl.Object:
            return None
        col = pl.col(column_id)
        if dtype == pl.String:
            expr = col.is_null() | (col == "")
        elif dtype.is_float():
            expr = col.is_null() | col.is_nan()
        else:
            expr = col.is_null()
        return ~expr if negate else expr

    return expr_builder


def _numeric_expr(column_id: str, bound: float, compare) -> ExprBuilder:
    def expr_builder(dtype: pl.DataType) -> Optional[pl.Expr]:
        if not (dtype.is_integer() or dtype.is_float()):
            return None
        col = pl.col(column_id)
        expr = compare(col, bound)
        if dtype.is_float():
            # NaN is not a number to the row predicate either
            expr = expr & col.is_not_nan()
        return expr.fill_null(False)

    return expr_builder


def _boolean_expr(column_id: str, expected: bool) -> ExprBuilder:
    def expr_builder(dtype: pl.DataType) -> Optional[pl.Expr]:
        if dtype != pl.Boolean:
            return None
        col = pl.col(column_id)
        return (col if expected else ~col).fill_null(False)

    return expr_builder


# =============================================================================
# text (also the fallback for number, select and unknown column types)
# =============================================================================


@register_operator("text", "contains")
def _contains(column_id: str, value: Any) -> Optional[CompiledRule]:
    if not has_text(value):
        return None
    needle = str(value).lower()
    return CompiledRule(
        column_id, "contains",
        lambda cell: needle in _text(cell),
        {"ilike": f"%{value}%"},
        _lowercase_text_expr(
            column_id, lambda text: text.str.contains(needle, literal=True), False
        ),
    )


@register_operator("text", "notContains")
def _not_contains(column_id: str, value: Any) -> Optional[CompiledRule]:
    if not has_text(value):
        return None
    needle = str(value).lower()
    return CompiledRule(
        column_id, "notContains",
        lambda cell: needle not in _text(cell),
        {"notIlike": f"%{value}%"},
        _lowercase_text_expr(
            column_id, lambda text: ~text.str.contains(needle, literal=True), True
        ),
    )


@register_operator("text", "startsWith")
def _starts_with(column_id: str, value: Any) -> Optional[CompiledRule]:
    if not has_text(value):
        return None
    prefix = str(value).lower()
    return CompiledRule(
        column_id, "startsWith",
        lambda cell: _text(cell).startswith(prefix),
        {"istartsWith": str(value)},
        _lowercase_text_expr(
            column_id, lambda text: text.str.starts_with(prefix), False
        ),
    )


@register_operator("text", "endsWith")
def _ends_with(column_id: str, value: Any) -> Optional[CompiledRule]:
    if not has_text(value):
        return None
    suffix = str(value).lower()
    return CompiledRule(
        column_id, "endsWith",
        lambda cell: _text(cell).endswith(suffix),
        {"iendsWith": str(value)},
        _lowercase_text_expr(
            column_id, lambda text: text.str.ends_with(suffix), False
        ),
    )


@register_operator("text", "equals")
def _text_equals(column_id: str, value: Any) -> Optional[CompiledRule]:
    if is_empty_value(value):
        return None
    return CompiledRule(
        column_id, "equals", lambda cell: cell == value, {"eq": value},
        _equality_expr(column_id, value, negate=False),
    )


@register_operator("text", "notEquals")
def _text_not_equals(column_id: str, value: Any) -> Optional[CompiledRule]:
    if is_empty_value(value):
        return None
    return CompiledRule(
        column_id, "notEquals", lambda cell: cell != value, {"notEq": value},
        _equality_expr(column_id, value, negate=True),
    )


@register_operator("text", "isEmpty")
def _is_empty(column_id: str, value: Any) -> Optional[CompiledRule]:
    return CompiledRule(
        column_id, "isEmpty", is_empty_value, {"isNull": True},
        _empty_expr(column_id, negate=False),
    )


@register_operator("text", "isNotEmpty")
def _is_not_empty(column_id: str, value: Any) -> Optional[CompiledRule]:
    return CompiledRule(
        column_id, "isNotEmpty",
        lambda cell: not is_empty_value(cell),
        {"isNotNull": True},
        _empty_expr(column_id, negate=True),
    )


def _comparison(operator: str, query_op: str, compare):
    """Build a numeric comparison builder for the given operator."""

    def builder(column_id: str, value: Any) -> Optional[CompiledRule]:
        bound = to_number(value)
        if bound is None:
            return None

        def test(cell: Any) -> bool:
            number = to_number(cell)
            return number is not None and compare(number, bound)

        return CompiledRule(
            column_id, operator, test, {query_op: bound},
            _numeric_expr(column_id, bound, compare),
        )

    builder.__name__ = f"_{query_op}"
    return builder


register_operator("text", "greaterThan")(
    _comparison("greaterThan", "gt", lambda a, b: a > b)
)
register_operator("text", "greaterThanOrEqual")(
    _comparison("greaterThanOrEqual", "gtOrEq", lambda a, b: a >= b)
)
register_operator("text", "lessThan")(
    _comparison("lessThan", "lt", lambda a, b: a < b)
)
register_operator("text", "lessThanOrEqual")(
    _comparison("lessThanOrEqual", "ltOrEq", lambda a, b: a <= b)
)


# =============================================================================
# number
# =============================================================================

register_operator("number", "equals")(
    _comparison("equals", "eq", lambda a, b: a == b)
)
register_operator("number", "notEquals")(
    _comparison("notEquals", "notEq", lambda a, b: a != b)
)


# =============================================================================
# date
# =============================================================================


def _date_comparison(operator: str, query_op: str, compare):
    """Build a day-granularity date comparison builder."""

    def builder(column_id: str, value: Any) -> Optional[CompiledRule]:
        bound = to_day(value)
        if bound is None:
            return None

        def test(cell: Any) -> bool:
            day = to_day(cell)
            # Unparseable cells fail every date comparison, notEquals included
            return day is not None and compare(day, bound)

        return CompiledRule(column_id, operator, test, {query_op: value})

    builder.__name__ = f"_date_{query_op}"
    return builder


register_operator("date", "equals")(
    _date_comparison("equals", "eq", lambda a, b: a == b)
)
register_operator("date", "notEquals")(
    _date_comparison("notEquals", "notEq", lambda a, b: a != b)
)
register_operator("date", "after")(
    _date_comparison("after", "gt", lambda a, b: a > b)
)
register_operator("date", "before")(
    _date_comparison("before", "lt", lambda a, b: a < b)
)
register_operator("date", "isEmpty")(_is_empty)
register_operator("date", "isNotEmpty")(_is_not_empty)


# =============================================================================
# boolean
# =============================================================================


@register_operator("boolean", "is")
def _boolean_is(column_id: str, value: Any) -> Optional[CompiledRule]:
    if value is True or value == "true":
        return CompiledRule(
            column_id, "is", lambda cell: cell in TRUE_VALUES, {"isTrue": True},
            _boolean_expr(column_id, True),
        )
    if value is False or value == "false":
        return CompiledRule(
            column_id, "is", lambda cell: cell in FALSE_VALUES, {"isFalse": True},
            _boolean_expr(column_id, False),
        )
    # 'any', empty or unrecognised values
    return None


# =============================================================================
# select
# =============================================================================


def _as_list(value: Any) -> Optional[list]:
    if isinstance(value, (list, tuple, set, frozenset)) and len(value) > 0:
        return list(value)
    return None


@register_operator("select", "in")
def _select_in(column_id: str, value: Any) -> Optional[CompiledRule]:
    values = _as_list(value)
    if values is None:
        return None
    return CompiledRule(
        column_id, "in", lambda cell: cell in values, {"in": values},
        _membership_expr(column_id, values, negate=False),
    )


@register_operator("select", "notIn")
def _select_not_in(column_id: str, value: Any) -> Optional[CompiledRule]:
    values = _as_list(value)
    if values is None:
        return None
    return CompiledRule(
        column_id, "notIn", lambda cell: cell not in values, {"notIn": values},
        _membership_expr(column_id, values, negate=True),
    )


@register_operator("select", "equals")
def _select_equals(column_id: str, value: Any) -> Optional[CompiledRule]:
    return CompiledRule(
        column_id, "equals", lambda cell: cell == value, {"eq": value},
        _equality_expr(column_id, value, negate=False),
    )


@register_operator("select", "notEquals")
def _select_not_equals(column_id: str, value: Any) -> Optional[CompiledRule]:
    return CompiledRule(
        column_id, "notEquals", lambda cell: cell != value, {"notEq": value},
        _equality_expr(column_id, value, negate=True),
    )
