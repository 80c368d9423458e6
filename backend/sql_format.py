"""SQL text helpers: identifier quoting, literal formatting, predicate rendering."""

from __future__ import annotations

import math
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Iterable

from errors import InvalidInsightError
from models import (
    COMPARISON_OPERATORS,
    LIST_OPERATORS,
    NULL_OPERATORS,
    Aggregation,
    AggregationFunction,
    JoinType,
    Predicate,
    SortOrder,
    iso_timestamp,
)

TABLE_PREFIX = "df_"


def make_table_name(dataset_id: str) -> str:
    return TABLE_PREFIX + str(dataset_id).replace("-", "_")


def quote_ident(ident: str) -> str:
    return '"' + ident.replace('"', '""') + '"'


def quote_literal(text: str) -> str:
    return "'" + text.replace("'", "''") + "'"


def format_value(value: Any) -> str:
    """Render a Python value as an inline SQL literal."""
    if value is None:
        return "NULL"
    # bool is an int subclass, check it first
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, float) and not math.isfinite(value):
        raise InvalidInsightError(f"Cannot use non-finite number {value!r} in a filter")
    if isinstance(value, Decimal) and not value.is_finite():
        raise InvalidInsightError(f"Cannot use non-finite number {value!r} in a filter")
    if isinstance(value, (int, float, Decimal)):
        return str(value)
    if isinstance(value, datetime):
        return quote_literal(iso_timestamp(value))
    if isinstance(value, date):
        return quote_literal(value.isoformat())
    return quote_literal(str(value))


def format_predicate(pred: Predicate, column_sql: str | None = None) -> str:
    column = column_sql if column_sql is not None else quote_ident(pred.column_name)
    op = pred.operator

    if op in NULL_OPERATORS:
        return f"{column} {op.value}"
    if op in LIST_OPERATORS:
        items = ", ".join(format_value(v) for v in pred.values or [])
        return f"{column} {op.value} ({items})"
    if op in COMPARISON_OPERATORS:
        return f"{column} {op.value} {format_value(pred.value)}"

    raise ValueError(f"Unsupported operator '{op}'")


def format_where(predicates: Iterable[Predicate]) -> str:
    return " AND ".join(format_predicate(p) for p in predicates)


def format_order_by(orders: Iterable[SortOrder]) -> str:
    return ", ".join(
        f"{quote_ident(o.column_name)} {o.direction.value.upper()}" for o in orders
    )


def format_aggregate(function: AggregationFunction, column_sql: str | None) -> str:
    if function is AggregationFunction.COUNT_DISTINCT:
        return f"COUNT(DISTINCT {column_sql})"
    if column_sql is None:
        return f"{function.value.upper()}(*)"
    return f"{function.value.upper()}({column_sql})"


def format_aggregation(agg: Aggregation) -> str:
    expr = format_aggregate(agg.function, quote_ident(agg.column_name))
    if agg.alias:
        return f"{expr} AS {quote_ident(agg.alias)}"
    return expr


JOIN_KEYWORDS: dict[JoinType, str] = {
    JoinType.INNER: "INNER JOIN",
    JoinType.LEFT: "LEFT JOIN",
    JoinType.RIGHT: "RIGHT JOIN",
    JoinType.OUTER: "FULL OUTER JOIN",
}


def join_keyword(join_type: JoinType) -> str:
    return JOIN_KEYWORDS[join_type]
