from __future__ import annotations

from typing import Any, Callable, Mapping

from ..errors import QueryValidationError
from .escaping import SEQUENCE_TYPES, escape, is_primitive

Escape = Callable[[Any], str]

COMPARISON_TOKENS: dict[str, str] = {
    "gt": ">",
    "gte": ">=",
    "lt": "<",
    "lte": "<=",
    "eq": "=",
    "ne": "!=",
    "like": "LIKE",
}
LIST_TOKENS: dict[str, str] = {
    "in": "IN",
    "nin": "NOT IN",
    "not_in": "NOT IN",
}
RAW_OPERATOR = "raw"

OPERATORS = frozenset(COMPARISON_TOKENS) | frozenset(LIST_TOKENS) | {RAW_OPERATOR}


def is_operator_object(value: Any) -> bool:
    """A mapping used as a filter value is an operator object."""
    return isinstance(value, Mapping)


def validate_operator_object(column: str, operators: Mapping[str, Any]) -> None:
    if not operators:
        raise QueryValidationError(f"Operator object for {column!r} is empty")
    unknown = [key for key in operators if key not in OPERATORS]
    if unknown:
        raise QueryValidationError(
            f"Unknown operator(s) {', '.join(repr(k) for k in unknown)} for {column!r}; "
            f"expected one of {', '.join(sorted(OPERATORS))}"
        )


def render_predicate(column: str, operator: str, value: Any, escape: Escape = escape) -> str:
    """Render ``column <operator> value`` for a single operator key."""
    if operator == RAW_OPERATOR:
        return f"{column} {value}"

    if operator in LIST_TOKENS:
        items = _as_list(value)
        if not items:
            # MySQL rejects "IN ()"
            return "1 = 0" if operator == "in" else "1 = 1"
        return f"{column} {LIST_TOKENS[operator]} ({escape(items)})"

    if operator not in COMPARISON_TOKENS:
        raise QueryValidationError(f"Unknown operator {operator!r} for {column!r}")

    if value is None:
        if operator == "eq":
            return f"{column} IS NULL"
        if operator == "ne":
            return f"{column} IS NOT NULL"
    return f"{column} {COMPARISON_TOKENS[operator]} {escape(value)}"


def render_operator_object(
    column: str,
    operators: Mapping[str, Any],
    escape: Escape = escape,
) -> str:
    """Render every operator of ``operators`` against ``column``, AND-joined."""
    validate_operator_object(column, operators)
    return " AND ".join(
        render_predicate(column, operator, value, escape)
        for operator, value in operators.items()
    )


def _as_list(value: Any) -> list[Any]:
    if isinstance(value, SEQUENCE_TYPES):
        return [item for item in value if is_primitive(item)]
    return [value]
