"""Tests for filter rule compilation and the operator table."""

import math

import polars as pl
import pytest

from datagrid_engine.core.errors import OperatorRegistrationError
from datagrid_engine.query import (
    active_filters,
    build_filter_query,
    combine,
    compile_filter_state,
    compile_rule,
    list_operators,
    register_operator,
)


def rule(column_id, operator, value=None, column_type="text"):
    return {
        "id": f"f_{column_id}_{operator}",
        "column_id": column_id,
        "operator": operator,
        "value": value,
        "column_type": column_type,
    }


class TestScenarios:
    """End-to-end filtering scenarios."""

    def test_text_contains_filter(self):
        """contains 'Jo' keeps John and drops Amy."""
        rows = [{"name": "John"}, {"name": "Amy"}]
        group = combine([rule("name", "contains", "Jo")])

        assert group.filter_rows(rows) == [{"name": "John"}]

    def test_numeric_range_via_and(self):
        rows = [{"age": 15}, {"age": 25}, {"age": 35}]
        group = combine(
            [rule("age", "greaterThan", 20), rule("age", "lessThan", 30)],
            logic="AND",
        )

        assert group.filter_rows(rows) == [{"age": 25}]

    def test_or_logic_keeps_either(self):
        rows = [{"age": 15}, {"age": 25}, {"age": 35}]
        group = combine(
            [rule("age", "lessThan", 20), rule("age", "greaterThan", 30)],
            logic="OR",
        )

        assert group.filter_rows(rows) == [{"age": 15}, {"age": 35}]


class TestFailOpen:
    """Incomplete rules constrain nothing."""

    @pytest.mark.parametrize(
        "incomplete",
        [
            rule("name", "contains", ""),
            rule("name", "contains", "   "),
            rule("name", "startsWith", None),
            rule("name", "equals", ""),
            rule("age", "greaterThan", None, "number"),
            rule("age", "lessThan", "abc", "number"),
            rule("team", "in", [], "select"),
            rule("active", "is", "any", "boolean"),
            rule("joined", "after", "", "date"),
            rule("name", "noSuchOperator", "x"),
            {"column_id": "", "operator": "contains", "value": "x"},
            {"column_id": "name", "operator": None, "value": "x"},
        ],
    )
    def test_incomplete_rule_compiles_to_none(self, incomplete):
        assert compile_rule(incomplete) is None

    def test_group_of_incomplete_rules_matches_everything(self, people_rows):
        rules = [
            rule("name", "contains", ""),
            rule("team", "in", [], "select"),
            rule("active", "is", "any", "boolean"),
        ]

        for logic in ("AND", "OR"):
            group = combine(rules, logic)
            assert group.is_empty
            assert group.filter_rows(people_rows) == people_rows

    def test_unrecognised_logic_means_and(self):
        group = combine([rule("age", "greaterThan", 20)], logic="xor")
        assert group.logic == "AND"


class TestOperators:
    """Per column type operator behaviour."""

    def test_text_operators_are_case_insensitive(self):
        row = {"name": "Joanna"}
        assert compile_rule(rule("name", "contains", "ANN"))(row)
        assert compile_rule(rule("name", "startsWith", "jo"))(row)
        assert compile_rule(rule("name", "endsWith", "NNA"))(row)
        assert not compile_rule(rule("name", "notContains", "ann"))(row)

    def test_is_empty_matches_none_empty_and_nan(self):
        is_empty = compile_rule(rule("name", "isEmpty"))
        assert is_empty({"name": None})
        assert is_empty({"name": ""})
        assert is_empty({"name": math.nan})
        assert is_empty({})
        assert not is_empty({"name": "x"})
        assert compile_rule(rule("name", "isNotEmpty"))({"name": "x"})

    def test_numeric_comparison_fails_closed_on_non_numeric_cells(self):
        greater = compile_rule(rule("age", "greaterThan", "20", "number"))
        assert greater({"age": "25"})
        assert not greater({"age": "n/a"})
        assert not greater({"age": None})

    def test_number_equals_compares_numerically(self):
        equals = compile_rule(rule("age", "equals", "25", "number"))
        assert equals({"age": 25})
        assert equals({"age": 25.0})
        assert not equals({"age": 26})

    def test_number_column_falls_back_to_text_operators(self):
        contains = compile_rule(rule("age", "contains", "2", "number"))
        assert contains({"age": 25})
        assert not contains({"age": 15})

    def test_unknown_column_type_behaves_like_text(self):
        contains = compile_rule(rule("name", "contains", "jo", "weird"))
        assert contains({"name": "John"})

    def test_date_comparisons_use_day_granularity(self):
        equals = compile_rule(rule("joined", "equals", "2023-01-15", "date"))
        assert equals({"joined": "2023-01-15T18:30:00"})
        assert not equals({"joined": "2023-01-16"})

        after = compile_rule(rule("joined", "after", "2023-01-01", "date"))
        assert after({"joined": "2023-03-02"})
        assert not after({"joined": "2023-01-01T23:59:00"})

        before = compile_rule(rule("joined", "before", "2023-01-01", "date"))
        assert before({"joined": "2022-12-31"})

    def test_unparseable_dates_never_match(self):
        not_equals = compile_rule(rule("joined", "notEquals", "2023-01-15", "date"))
        assert not not_equals({"joined": "not a date"})
        assert not not_equals({"joined": None})
        assert not_equals({"joined": "2023-01-16"})

    def test_date_empty_checks_ignore_value(self):
        assert compile_rule(rule("joined", "isEmpty", "ignored", "date"))({"joined": None})

    def test_boolean_is(self):
        is_true = compile_rule(rule("active", "is", "true", "boolean"))
        for cell in (True, "true", 1, "1", "Yes", "yes"):
            assert is_true({"active": cell})
        assert not is_true({"active": False})

        is_false = compile_rule(rule("active", "is", False, "boolean"))
        for cell in (False, "false", 0, "0", "No", "no"):
            assert is_false({"active": cell})
        assert not is_false({"active": True})

    def test_select_in_and_not_in(self):
        is_in = compile_rule(rule("team", "in", ["red", "blue"], "select"))
        assert is_in({"team": "red"})
        assert not is_in({"team": "green"})

        not_in = compile_rule(rule("team", "notIn", ["red"], "select"))
        assert not_in({"team": "green"})
        assert not not_in({"team": "red"})

    def test_column_types_mapping_used_when_rule_has_no_type(self):
        compiled = compile_rule(
            {"column_id": "team", "operator": "in", "value": ["red"]},
            column_types={"team": "select"},
        )
        assert compiled({"team": "red"})

    def test_list_operators_includes_fallbacks(self):
        number_ops = list_operators("number")
        assert "equals" in number_ops
        assert "contains" in number_ops
        assert "in" not in list_operators("date")


class TestDeclarativeQuery:
    """Serialized form for server-side evaluation."""

    def test_rule_to_query(self):
        assert compile_rule(rule("name", "contains", "Jo")).to_query() == {
            "name": {"ilike": "%Jo%"}
        }
        assert compile_rule(rule("active", "is", True, "boolean")).to_query() == {
            "active": {"isTrue": True}
        }
        assert compile_rule(rule("team", "in", ["red"], "select")).to_query() == {
            "team": {"in": ["red"]}
        }

    def test_group_to_query(self):
        group = combine(
            [rule("age", "greaterThan", 20), rule("age", "lessThanOrEqual", 30)],
            logic="OR",
        )
        assert group.to_query() == {
            "or": [{"age": {"gt": 20.0}}, {"age": {"ltOrEq": 30.0}}]
        }

    def test_empty_group_serializes_to_none(self):
        assert combine([]).to_query() is None

    def test_only_applied_filters_are_compiled(self):
        column_filter = {
            "filters": [rule("name", "contains", "Jo")],
            "logic": "AND",
            "pending_filters": [rule("age", "greaterThan", 20)],
            "pending_logic": "OR",
        }

        group = compile_filter_state(column_filter)

        assert len(group) == 1
        assert build_filter_query(column_filter) == {"and": [{"name": {"ilike": "%Jo%"}}]}

    def test_active_filters_requires_column_and_operator(self):
        filters = [
            rule("name", "contains", "Jo"),
            {"id": "x", "column_id": "", "operator": "contains"},
            {"id": "y", "column_id": "name", "operator": ""},
        ]
        assert [f["id"] for f in active_filters(filters)] == ["f_name_contains"]


class TestOperatorRegistry:
    """Registration-time validation of the operator table."""

    def test_duplicate_registration_raises(self):
        with pytest.raises(OperatorRegistrationError, match="already registered"):
            register_operator("text", "contains")(lambda column_id, value: None)

    def test_unknown_column_type_raises(self):
        with pytest.raises(OperatorRegistrationError, match="Unknown column type"):
            register_operator("colour", "near")

    def test_registration_error_is_value_error(self):
        with pytest.raises(ValueError):
            register_operator("text")

    def test_custom_operator_is_used(self):
        from datagrid_engine.query.compiler import CompiledRule

        @register_operator("select", "startsWithAny")
        def _starts_with_any(column_id, value):
            if not value:
                return None
            prefixes = tuple(value)
            return CompiledRule(
                column_id, "startsWithAny",
                lambda cell: str(cell).startswith(prefixes),
                {"startsWithAny": list(prefixes)},
            )

        compiled = compile_rule(rule("team", "startsWithAny", ["re", "gr"], "select"))
        assert compiled({"team": "red"})
        assert not compiled({"team": "blue"})


class TestPolarsExpressions:
    """Rules evaluated as polars expressions."""

    @pytest.fixture
    def people_frame(self, people_rows):
        scores = [1.5, math.nan, None, 3.0, 2.0]
        return pl.DataFrame(
            [dict(row, score=score) for row, score in zip(people_rows, scores)]
        )

    @pytest.mark.parametrize(
        "filter_rule",
        [
            rule("name", "contains", "JO"),
            rule("name", "notContains", "jo"),
            rule("name", "startsWith", "a"),
            rule("name", "endsWith", "NA"),
            rule("name", "equals", "Amy"),
            rule("name", "notEquals", "Amy"),
            rule("name", "isEmpty"),
            rule("name", "isNotEmpty"),
            rule("age", "greaterThan", "20", "number"),
            rule("age", "lessThanOrEqual", 25, "number"),
            rule("age", "equals", "25", "number"),
            rule("age", "notEquals", 25, "number"),
            rule("age", "isNotEmpty", None, "number"),
            rule("score", "greaterThan", 1, "number"),
            rule("score", "notEquals", 3, "number"),
            rule("score", "isEmpty", None, "number"),
            rule("active", "is", True, "boolean"),
            rule("active", "is", "false", "boolean"),
            rule("team", "in", ["red", "green"], "select"),
            rule("team", "notIn", ["red"], "select"),
            rule("team", "equals", "blue", "select"),
        ],
        ids=lambda r: f"{r['column_id']}-{r['operator']}",
    )
    def test_expression_agrees_with_row_predicate(self, people_frame, filter_rule):
        compiled = compile_rule(filter_rule)

        expr = compiled.to_expr(people_frame.schema)

        assert expr is not None
        expected = [row["id"] for row in people_frame.iter_rows(named=True) if compiled(row)]
        assert people_frame.filter(expr)["id"].to_list() == expected

    def test_rules_without_expression_form(self, people_frame):
        schema = people_frame.schema

        assert compile_rule(rule("joined", "after", "2023-01-01", "date")).to_expr(schema) is None
        assert compile_rule(rule("name", "greaterThan", "5")).to_expr(schema) is None
        assert compile_rule(rule("team", "in", [1, 2], "select")).to_expr(schema) is None
        assert compile_rule(rule("active", "is", True, "boolean")).to_expr({"active": pl.String}) is None

    def test_missing_column_reads_as_none(self, people_frame):
        is_empty = compile_rule(rule("missing", "isEmpty"))
        contains = compile_rule(rule("missing", "contains", "x"))

        assert people_frame.filter(is_empty.to_expr(people_frame.schema)).height == 5
        assert people_frame.filter(contains.to_expr(people_frame.schema)).height == 0

    def test_group_expression_combines_rules(self, people_frame):
        rules = [rule("team", "in", ["red"], "select"), rule("age", "lessThan", 30, "number")]

        both = combine(rules, "AND").to_expr(people_frame.schema)
        either = combine(rules, "OR").to_expr(people_frame.schema)

        assert people_frame.filter(both)["id"].to_list() == ["1"]
        assert people_frame.filter(either)["id"].to_list() == ["1", "2", "3"]

    def test_group_without_full_expression_form_is_none(self, people_frame):
        group = combine([
            rule("team", "in", ["red"], "select"),
            rule("joined", "after", "2023-01-01", "date"),
        ])

        assert group.to_expr(people_frame.schema) is None
