"""Deferred, immutable query pipeline over a dataset handle.

Chained calls only record operations. SQL is built from the recorded list on
every terminal call (``sql``, ``rows``, ``run``, ``preview``, ``count``), so a
builder can be branched and reused freely.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Union

from config import settings
from dataset import DatasetHandle
from engine import Engine
from executor import batch_query
from materializer import TableMaterializer
from models import (
    Aggregation,
    JoinType,
    Predicate,
    SortOrder,
    coerce_list,
)
from sql_format import (
    format_aggregation,
    format_order_by,
    format_where,
    join_keyword,
    quote_ident,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FilterOp:
    predicates: tuple[Predicate, ...]


@dataclass(frozen=True)
class SortOp:
    orders: tuple[SortOrder, ...]


@dataclass(frozen=True)
class GroupOp:
    columns: tuple[str, ...]
    aggregations: tuple[Aggregation, ...] | None = None


@dataclass(frozen=True)
class JoinOp:
    right: DatasetHandle
    left_column: str
    right_column: str
    join_type: JoinType = JoinType.INNER


@dataclass(frozen=True)
class LimitOp:
    count: int


@dataclass(frozen=True)
class OffsetOp:
    count: int


@dataclass(frozen=True)
class SelectOp:
    columns: tuple[str, ...]


Operation = Union[FilterOp, SortOp, GroupOp, JoinOp, LimitOp, OffsetOp, SelectOp]

# Dropped when counting rows: they only page, order or shape the output.
_COUNT_IGNORED = (LimitOp, OffsetOp, SortOp, SelectOp)


@dataclass
class QueryPlan:
    filters: list[Predicate] = field(default_factory=list)
    sorts: list[SortOrder] = field(default_factory=list)
    joins: list[JoinOp] = field(default_factory=list)
    group_columns: list[str] | None = None
    aggregations: list[Aggregation] | None = None
    select_columns: list[str] | None = None
    limit: int | None = None
    offset: int | None = None


def build_plan(operations: tuple[Operation, ...] | list[Operation]) -> QueryPlan:
    """Fold operations in call order.

    Filters accumulate; sort, group, select, limit and offset replace whatever
    an earlier call set; joins append.
    """
    plan = QueryPlan()
    for op in operations:
        if isinstance(op, FilterOp):
            plan.filters.extend(op.predicates)
        elif isinstance(op, SortOp):
            plan.sorts = list(op.orders)
        elif isinstance(op, GroupOp):
            plan.group_columns = list(op.columns)
            plan.aggregations = (
                list(op.aggregations) if op.aggregations is not None else None
            )
        elif isinstance(op, JoinOp):
            plan.joins.append(op)
        elif isinstance(op, LimitOp):
            plan.limit = op.count
        elif isinstance(op, OffsetOp):
            plan.offset = op.count
        elif isinstance(op, SelectOp):
            plan.select_columns = list(op.columns)
        else:
            raise TypeError(f"Unknown query operation: {op!r}")
    return plan


def build_select_clause(plan: QueryPlan) -> str:
    if plan.select_columns:
        return ", ".join(quote_ident(c) for c in plan.select_columns)
    if plan.group_columns:
        aggregations = [format_aggregation(a) for a in plan.aggregations or []]
        groups = [quote_ident(c) for c in plan.group_columns]
        return ", ".join([*aggregations, *groups])
    return "*"


class QueryBuilder:
    def __init__(
        self,
        dataset: DatasetHandle,
        engine: Engine,
        materializer: TableMaterializer,
        operations: tuple[Operation, ...] = (),
        table_name: str | None = None,
    ) -> None:
        self.dataset = dataset
        self.engine = engine
        self.materializer = materializer
        self._operations = tuple(operations)
        self._table_name = table_name

    @property
    def operations(self) -> tuple[Operation, ...]:
        return self._operations

    def _clone_with(self, op: Operation) -> QueryBuilder:
        return QueryBuilder(
            self.dataset,
            self.engine,
            self.materializer,
            (*self._operations, op),
            self._table_name,
        )

    async def ensure_loaded(self) -> str:
        """Materialize the base dataset and return its table name."""
        if self._table_name:
            return self._table_name
        self._table_name = await self.materializer.ensure_loaded(self.dataset)
        return self._table_name

    async def _build_from_clause(self, base_table: str, joins: list[JoinOp]) -> str:
        base_sql = quote_ident(base_table)
        clause = base_sql
        for join in joins:
            right_table = await self.materializer.ensure_loaded(join.right)
            right_sql = quote_ident(right_table)
            clause = (
                f"{clause} {join_keyword(join.join_type)} {right_sql} "
                f"ON {base_sql}.{quote_ident(join.left_column)} = "
                f"{right_sql}.{quote_ident(join.right_column)}"
            )
        return clause

    async def _build_sql(self, operations: tuple[Operation, ...]) -> str:
        base_table = await self.ensure_loaded()
        plan = build_plan(operations)

        sql = f"SELECT {build_select_clause(plan)} FROM "
        sql += await self._build_from_clause(base_table, plan.joins)
        if plan.filters:
            sql += f" WHERE {format_where(plan.filters)}"
        if plan.group_columns:
            sql += " GROUP BY " + ", ".join(quote_ident(c) for c in plan.group_columns)
        if plan.sorts:
            sql += f" ORDER BY {format_order_by(plan.sorts)}"
        if plan.limit is not None:
            sql += f" LIMIT {plan.limit}"
        if plan.offset is not None:
            sql += f" OFFSET {plan.offset}"
        return sql

    # ── Chainable operations ──

    def filter(self, predicates: list[Predicate | dict[str, Any]]) -> QueryBuilder:
        return self._clone_with(FilterOp(tuple(coerce_list(Predicate, predicates))))

    def sort(self, orders: list[SortOrder | dict[str, Any]]) -> QueryBuilder:
        return self._clone_with(SortOp(tuple(coerce_list(SortOrder, orders))))

    def order_by(self, orders: list[SortOrder | dict[str, Any]]) -> QueryBuilder:
        return self.sort(orders)

    def group_by(
        self,
        columns: list[str],
        aggregations: list[Aggregation | dict[str, Any]] | None = None,
    ) -> QueryBuilder:
        aggs = (
            tuple(coerce_list(Aggregation, aggregations))
            if aggregations is not None
            else None
        )
        return self._clone_with(GroupOp(tuple(columns), aggs))

    def join(
        self,
        other: DatasetHandle,
        *,
        left_column: str,
        right_column: str,
        join_type: JoinType | str | None = None,
    ) -> QueryBuilder:
        kind = JoinType(join_type) if join_type is not None else JoinType.INNER
        return self._clone_with(JoinOp(other, left_column, right_column, kind))

    def limit(self, count: int) -> QueryBuilder:
        return self._clone_with(LimitOp(count))

    def offset(self, count: int) -> QueryBuilder:
        return self._clone_with(OffsetOp(count))

    def select(self, columns: list[str]) -> QueryBuilder:
        return self._clone_with(SelectOp(tuple(columns)))

    # ── Terminal operations ──

    async def sql(self) -> str:
        return await self._build_sql(self._operations)

    async def to_sql(self) -> str:
        return await self.sql()

    async def rows(self) -> list[dict[str, Any]]:
        sql = await self.sql()
        logger.debug("Executing query: %s", sql)
        result = await self.engine.query(sql)
        return result.to_list()

    async def run(self) -> DatasetHandle:
        """Execute and store the result as a new dataset.

        The new handle carries no field ids; its schema is not resolved here.
        """
        sql = await self.sql()
        logger.debug("Materializing query result: %s", sql)
        data = await self.engine.export_arrow(sql)
        return await DatasetHandle.create(data, [], self.materializer.storage)

    async def preview(self, limit: int | None = None) -> list[dict[str, Any]]:
        count = limit if limit is not None else settings.preview_rows
        return await self.limit(count).rows()

    async def count(self) -> int:
        operations = tuple(
            op for op in self._operations if not isinstance(op, _COUNT_IGNORED)
        )
        sql = await self._build_sql(operations)
        logger.debug("Counting rows of: %s", sql)
        result = await self.engine.query(f"SELECT COUNT(*) AS count FROM ({sql})")
        rows = result.to_list()
        return int(rows[0]["count"]) if rows else 0

    batch_query = staticmethod(batch_query)
