"""Filter rule compilation and client-side query evaluation."""

from .compiler import (
    CompiledGroup,
    CompiledRule,
    active_filters,
    build_filter_query,
    combine,
    compile_filter_state,
    compile_rule,
)
from . import operators  # noqa: F401  (populates the operator table)
from .local import LocalDataSource, apply_query, query_total
from .registry import list_operators, register_operator

__all__ = [
    "CompiledRule",
    "CompiledGroup",
    "compile_rule",
    "combine",
    "compile_filter_state",
    "build_filter_query",
    "active_filters",
    "register_operator",
    "list_operators",
    "LocalDataSource",
    "apply_query",
    "query_total",
]
