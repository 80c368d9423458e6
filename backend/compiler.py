"""Compile an Insight into a single SQL statement.

Non-joined insights select straight from the base table. Joined insights build
an inner ``SELECT`` over ``base`` and ``j`` aliases in which every column name
that occurs in more than one table is renamed ``"<table>.<column>"`` (the base
side of a join key keeps its bare name), then filter, group, sort and limit
over that derived table using the disambiguated names.
"""

from __future__ import annotations

import re
from collections import Counter

from errors import InvalidInsightError, JoinKeyNotFoundError, MissingDatasetError
from insight import Insight, Metric, TableField, TableInfo
from models import AggregationFunction
from sql_format import (
    format_aggregate,
    format_order_by,
    format_where,
    join_keyword,
    make_table_name,
    quote_ident,
)

INTERNAL_PREFIX = "_"
BASE_ALIAS = "base"
JOINED_RESULT_ALIAS = "joined"

_UUID_SUFFIX = re.compile(
    r"[_\-\s]?[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}.*$",
    re.IGNORECASE,
)


def table_display_name(name: str) -> str:
    """Strip the UUID suffix that auto-generated table names carry."""
    stripped = _UUID_SUFFIX.sub("", name)
    return stripped or name


def join_alias(index: int) -> str:
    return "j" if index == 0 else f"j{index + 1}"


def visible_fields(table: TableInfo) -> list[TableField]:
    return [f for f in table.fields if not f.column_name.startswith(INTERNAL_PREFIX)]


def compile_insight(insight: Insight) -> str:
    base = insight.base_table
    if not base.dataset_id:
        raise MissingDatasetError(base.name)
    if insight.joins:
        return _compile_joined(insight)
    return _compile_simple(insight)


def _is_aggregated(insight: Insight) -> bool:
    return bool(insight.metrics or insight.group_by)


def _metric_sql(metric: Metric, column_sql: str | None) -> str:
    if metric.aggregation is AggregationFunction.COUNT:
        expr = format_aggregate(metric.aggregation, None)
    elif column_sql is None:
        raise InvalidInsightError(
            f"Metric {metric.name} ({metric.aggregation.value}) requires a column"
        )
    else:
        expr = format_aggregate(metric.aggregation, column_sql)
    return f"{expr} AS {quote_ident(metric.name)}"


def _assemble(
    select_sql: str,
    from_sql: str,
    insight: Insight,
    group_cols: list[str],
) -> str:
    sql = f"SELECT {select_sql} FROM {from_sql}"
    if insight.filters:
        sql += f" WHERE {format_where(insight.filters)}"
    if group_cols:
        sql += " GROUP BY " + ", ".join(quote_ident(c) for c in group_cols)
    if insight.order_by:
        sql += f" ORDER BY {format_order_by(insight.order_by)}"
    # limit 0 means "no limit"
    if insight.limit is not None and insight.limit > 0:
        sql += f" LIMIT {insight.limit}"
    return sql


def _compile_simple(insight: Insight) -> str:
    base = insight.base_table
    table_sql = quote_ident(make_table_name(base.dataset_id))

    if _is_aggregated(insight):
        parts = [quote_ident(c) for c in insight.group_by]
        for metric in insight.metrics:
            column = quote_ident(metric.column_name) if metric.column_name else None
            parts.append(_metric_sql(metric, column))
        return _assemble(", ".join(parts), table_sql, insight, insight.group_by)

    fields = visible_fields(base)
    if insight.selected_fields:
        wanted = set(insight.selected_fields)
        fields = [f for f in fields if f.id in wanted]
    select_sql = ", ".join(quote_ident(f.column_name) for f in fields) or "*"
    return _assemble(select_sql, table_sql, insight, [])


class _JoinLayout:
    """Aliases and output column names for the tables taking part in a join."""

    def __init__(self, insight: Insight) -> None:
        base = insight.base_table
        self.tables: list[tuple[TableInfo, str]] = [(base, BASE_ALIAS)]
        self.join_clauses: list[str] = []
        self.base_join_keys: set[str] = set()

        for index, join in enumerate(insight.joins):
            table = join.table
            if not table.dataset_id:
                raise MissingDatasetError(table.name, joined=True)

            base_field = base.field_by_id(join.join_on.base_field)
            joined_field = table.field_by_id(join.join_on.joined_field)
            if base_field is None or joined_field is None:
                raise JoinKeyNotFoundError(
                    base.name,
                    join.join_on.base_field,
                    table.name,
                    join.join_on.joined_field,
                )

            alias = join_alias(index)
            self.tables.append((table, alias))
            self.base_join_keys.add(base_field.column_name)
            self.join_clauses.append(
                f"{join_keyword(join.join_type)} "
                f"{quote_ident(make_table_name(table.dataset_id))} AS {alias} "
                f"ON {BASE_ALIAS}.{quote_ident(base_field.column_name)} = "
                f"{alias}.{quote_ident(joined_field.column_name)}"
            )

        self.counts: Counter[str] = Counter()
        for table, _ in self.tables:
            self.counts.update({f.column_name for f in visible_fields(table)})

    def output_name(self, table: TableInfo, column: str) -> str:
        is_base_key = table is self.tables[0][0] and column in self.base_join_keys
        if self.counts[column] > 1 and not is_base_key:
            return f"{table_display_name(table.name)}.{column}"
        return column

    def table_by_id(self, table_id: str) -> TableInfo:
        for table, _ in self.tables:
            if table.id == table_id:
                return table
        return self.tables[0][0]

    def inner_sql(self) -> str:
        items: list[str] = []
        for table, alias in self.tables:
            for f in visible_fields(table):
                ref = f"{alias}.{quote_ident(f.column_name)}"
                output = self.output_name(table, f.column_name)
                if output != f.column_name:
                    ref += f" AS {quote_ident(output)}"
                items.append(ref)

        base, _ = self.tables[0]
        base_sql = quote_ident(make_table_name(base.dataset_id))
        from_sql = " ".join([f"{base_sql} AS {BASE_ALIAS}", *self.join_clauses])
        return f"SELECT {', '.join(items) or '*'} FROM {from_sql}"


def _compile_joined(insight: Insight) -> str:
    layout = _JoinLayout(insight)
    from_sql = f"({layout.inner_sql()}) AS {JOINED_RESULT_ALIAS}"

    if not _is_aggregated(insight):
        return _assemble("*", from_sql, insight, [])

    parts = [quote_ident(c) for c in insight.group_by]
    for metric in insight.metrics:
        column = None
        if metric.column_name:
            source = layout.table_by_id(metric.source_table)
            column = quote_ident(layout.output_name(source, metric.column_name))
        parts.append(_metric_sql(metric, column))
    return _assemble(", ".join(parts), from_sql, insight, insight.group_by)
