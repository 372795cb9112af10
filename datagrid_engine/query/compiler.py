"""Compile filter rules into row predicates and declarative query fragments."""

import logging
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

import polars as pl

from .registry import get_operator_builder

logger = logging.getLogger(__name__)

LOGIC_AND = "AND"
LOGIC_OR = "OR"

ExprBuilder = Callable[[pl.DataType], Optional[pl.Expr]]


def get_cell(row: Any, column_id: str) -> Any:
    """
    Read a column value from a row.

    Rows are normally dicts; objects are read via attribute lookup.

    Args:
        row: Row dict or object
        column_id: Column identifier

    Returns:
        The cell value, or None if the row has no such field
    """
    if isinstance(row, Mapping):
        return row.get(column_id)
    return getattr(row, column_id, None)


class CompiledRule:
    """
    A single compiled filter rule.

    Calling the rule with a row evaluates its predicate. ``to_query()`` emits
    the same constraint as a declarative condition for a server that
    evaluates filters itself. Rules built with an expression builder can also
    be evaluated as a polars expression via ``to_expr()``.

    Attributes:
        column_id: Column the rule constrains
        operator: Operator name of the source rule
        condition: Server condition, e.g. ``{"ilike": "%jo%"}``
    """

    __slots__ = ("column_id", "operator", "condition", "_test", "_expr_builder")

    def __init__(
        self,
        column_id: str,
        operator: str,
        test: Callable[[Any], bool],
        condition: Dict[str, Any],
        expr_builder: Optional[ExprBuilder] = None,
    ):
        self.column_id = column_id
        self.operator = operator
        self.condition = condition
        self._test = test
        self._expr_builder = expr_builder

    def test_value(self, value: Any) -> bool:
        """Evaluate the predicate against a bare cell value."""
        try:
            return bool(self._test(value))
        except (TypeError, ValueError):
            # Cells of an unexpected type never match
            return False

    def __call__(self, row: Any) -> bool:
        return self.test_value(get_cell(row, self.column_id))

    def to_query(self) -> Dict[str, Any]:
        """Return ``{column_id: condition}``."""
        return {self.column_id: dict(self.condition)}

    def to_expr(self, schema: Mapping[str, pl.DataType]) -> Optional[pl.Expr]:
        """
        Build a polars expression equivalent to the predicate.

        Args:
            schema: Column name to dtype mapping of the frame being filtered

        Returns:
            Boolean expression, or None when the rule has no expression
            form for the column dtype
        """
        if self.column_id not in schema:
            # Missing columns read as None in every row
            return pl.lit(self.test_value(None))
        if self._expr_builder is None:
            return None
        return self._expr_builder(schema[self.column_id])

    def __repr__(self) -> str:
        return (
            f"CompiledRule(column_id='{self.column_id}', "
            f"operator='{self.operator}', condition={self.condition})"
        )


class CompiledGroup:
    """
    A group of compiled rules combined with AND or OR.

    An empty group is satisfied by every row.
    """

    def __init__(self, rules: List[CompiledRule], logic: str = LOGIC_AND):
        self.rules = list(rules)
        self.logic = normalize_logic(logic)

    @property
    def is_empty(self) -> bool:
        return not self.rules

    def matches(self, row: Any) -> bool:
        """Check whether a row satisfies the group."""
        if not self.rules:
            return True
        if self.logic == LOGIC_OR:
            return any(rule(row) for rule in self.rules)
        return all(rule(row) for rule in self.rules)

    __call__ = matches

    def filter_rows(self, rows: Iterable[Any]) -> List[Any]:
        """Return the rows satisfying the group, in their original order."""
        if not self.rules:
            return list(rows)
        return [row for row in rows if self.matches(row)]

    def to_expr(self, schema: Mapping[str, pl.DataType]) -> Optional[pl.Expr]:
        """
        Build a polars expression for the whole group.

        Returns None if any rule lacks an expression form; callers then fall
        back to the row predicates.
        """
        if not self.rules:
            return pl.lit(True)
        exprs = []
        for rule in self.rules:
            expr = rule.to_expr(schema)
            if expr is None:
                return None
            exprs.append(expr)
        if self.logic == LOGIC_OR:
            return pl.any_horizontal(exprs)
        return pl.all_horizontal(exprs)

    def to_query(self) -> Optional[Dict[str, Any]]:
        """
        Serialize the group as a declarative query fragment.

        Returns:
            ``{"and": [...]}`` or ``{"or": [...]}``, or None for an empty group
        """
        if not self.rules:
            return None
        key = "or" if self.logic == LOGIC_OR else "and"
        return {key: [rule.to_query() for rule in self.rules]}

    def __len__(self) -> int:
        return len(self.rules)

    def __repr__(self) -> str:
        return f"CompiledGroup(logic='{self.logic}', rules={self.rules})"


def normalize_logic(logic: Optional[str]) -> str:
    """Map any logic value to AND or OR (anything but OR means AND)."""
    if isinstance(logic, str) and logic.upper() == LOGIC_OR:
        return LOGIC_OR
    return LOGIC_AND


def active_filters(filters: Optional[Iterable[Dict[str, Any]]]) -> List[Dict[str, Any]]:
    """Keep only rules that name both a column and an operator."""
    return [
        rule for rule in (filters or [])
        if rule and rule.get("column_id") and rule.get("operator")
    ]


def compile_rule(
    rule: Dict[str, Any],
    column_types: Optional[Dict[str, str]] = None,
) -> Optional[CompiledRule]:
    """
    Compile a filter rule into a predicate.

    Malformed or incomplete rules compile to None, meaning "no constraint".
    This function never raises.

    Args:
        rule: Filter rule dict with column_id, operator, value and
            optionally column_type
        column_types: Optional mapping of column ids to column types, used
            when the rule carries no column_type

    Returns:
        CompiledRule, or None if the rule constrains nothing
    """
    if not rule:
        return None
    column_id = rule.get("column_id")
    operator = rule.get("operator")
    if not column_id or not operator:
        return None

    column_type = rule.get("column_type")
    if not column_type and column_types:
        column_type = column_types.get(column_id)
    column_type = column_type or "text"

    builder = get_operator_builder(column_type, operator)
    if builder is None:
        logger.debug(
            "No operator '%s' for column type '%s'; rule %s ignored",
            operator, column_type, rule.get("id"),
        )
        return None

    return builder(column_id, rule.get("value"))


def combine(
    rules: Iterable[Dict[str, Any]],
    logic: str = LOGIC_AND,
    column_types: Optional[Dict[str, str]] = None,
) -> CompiledGroup:
    """
    Compile and combine rules into a group.

    Rules that compile to None are dropped before grouping.

    Args:
        rules: Filter rule dicts
        logic: "AND" or "OR"
        column_types: Optional column id to column type mapping

    Returns:
        CompiledGroup
    """
    compiled = []
    for rule in rules or []:
        result = compile_rule(rule, column_types)
        if result is not None:
            compiled.append(result)
    return CompiledGroup(compiled, logic)


def compile_filter_state(
    column_filter: Optional[Dict[str, Any]],
    column_types: Optional[Dict[str, str]] = None,
) -> CompiledGroup:
    """
    Compile the applied part of a column filter state.

    Pending filters are ignored; only ``filters`` and ``logic`` drive queries.

    Args:
        column_filter: Column filter state dict
        column_types: Optional column id to column type mapping

    Returns:
        CompiledGroup for the applied filters
    """
    column_filter = column_filter or {}
    return combine(
        active_filters(column_filter.get("filters")),
        column_filter.get("logic", LOGIC_AND),
        column_types,
    )


def build_filter_query(
    column_filter: Optional[Dict[str, Any]],
    column_types: Optional[Dict[str, str]] = None,
) -> Optional[Dict[str, Any]]:
    """Serialize the applied filters of a column filter state, or None."""
    return compile_filter_state(column_filter, column_types).to_query()
