"""Filter expressions for message queries.

Callers pass filters as a list of clauses, each clause a mapping of attribute
name to required value. The list is read as a disjunction of conjunctions: a
message matches when every pair of at least one clause matches. An empty list
disables filtering.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from messagestore.indexes import normalize_value

Filter = Mapping[str, Any]


class FilterExpression:
    """Base class for filter expressions."""

    def __and__(self, other: FilterExpression) -> LogicalExpression:
        return LogicalExpression(op="AND", children=[self, other])

    def __or__(self, other: FilterExpression) -> LogicalExpression:
        return LogicalExpression(op="OR", children=[self, other])


@dataclass
class ComparisonExpression(FilterExpression):
    """Equality between a stored attribute and a normalized value."""

    attribute: str
    value: str

    def __hash__(self) -> int:
        return hash((self.attribute, self.value))


@dataclass
class LogicalExpression(FilterExpression):
    """A logical combination of filter expressions."""

    op: str  # "AND", "OR"
    children: list[FilterExpression] = field(default_factory=list)


def normalize_filters(filters: Sequence[Filter] | None) -> list[dict[str, str]]:
    """Return the clauses with values in stored string form and keys sorted."""
    out: list[dict[str, str]] = []
    for clause in filters or []:
        out.append({name: normalize_value(clause[name]) for name in sorted(clause)})
    return out


def build_filter_expression(filters: Sequence[Filter] | None) -> FilterExpression | None:
    """Build an OR-of-ANDs expression tree from filter clauses.

    Returns None when there is nothing to filter on.
    """
    clauses = normalize_filters(filters)
    if not clauses:
        return None
    return LogicalExpression(
        op="OR",
        children=[
            LogicalExpression(
                op="AND",
                children=[ComparisonExpression(name, value) for name, value in clause.items()],
            )
            for clause in clauses
        ],
    )


def matches_filter(expr: FilterExpression | None, attributes: Mapping[str, Any]) -> bool:
    """Evaluate ``expr`` against an item's attributes.

    Multi-valued attributes match when any of their values is equal. An absent
    attribute never matches.
    """
    if expr is None:
        return True

    if isinstance(expr, ComparisonExpression):
        if expr.attribute not in attributes:
            return False
        stored = attributes[expr.attribute]
        if isinstance(stored, (list, tuple)):
            return expr.value in stored
        return stored == expr.value

    if isinstance(expr, LogicalExpression):
        if expr.op == "AND":
            return all(matches_filter(c, attributes) for c in expr.children)
        if expr.op == "OR":
            return any(matches_filter(c, attributes) for c in expr.children)
        raise ValueError(f"Unknown logical operator: {expr.op}")

    raise ValueError(f"Unknown filter expression type: {type(expr)}")
