"""Insight: an immutable, declarative query over a base table and its joins."""

from __future__ import annotations

import uuid
from typing import Any

from pydantic import Field, field_validator

from errors import InvalidInsightError
from models import (
    AggregationFunction,
    CamelModel,
    JoinType,
    Predicate,
    SortOrder,
)


class TableField(CamelModel):
    id: str
    name: str
    column_name: str
    type: str = "string"
    is_identifier: bool | None = None
    is_reference: bool | None = None


class TableInfo(CamelModel):
    """Schema view of a data table. ``dataset_id`` is unset until data is loaded."""

    id: str
    name: str
    dataset_id: str | None = None
    fields: list[TableField] = Field(default_factory=list)

    def field_by_id(self, field_id: str) -> TableField | None:
        for f in self.fields:
            if f.id == field_id:
                return f
        return None


class Metric(CamelModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    name: str
    source_table: str
    aggregation: AggregationFunction
    # Unset for count()
    column_name: str | None = None

    @field_validator("aggregation", mode="before")
    @classmethod
    def _normalize_aggregation(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().lower()
        return value


class JoinOn(CamelModel):
    base_field: str
    joined_field: str


class JoinSpec(CamelModel):
    table: TableInfo
    selected_fields: list[str] = Field(default_factory=list)
    join_on: JoinOn
    join_type: JoinType = JoinType.INNER


_LIST_FIELDS = ("selected_fields", "metrics", "filters", "group_by", "order_by", "joins")


class Insight(CamelModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    name: str
    base_table: TableInfo
    selected_fields: list[str] = Field(default_factory=list)
    metrics: list[Metric] = Field(default_factory=list)
    filters: list[Predicate] = Field(default_factory=list)
    group_by: list[str] = Field(default_factory=list)
    order_by: list[SortOrder] = Field(default_factory=list)
    limit: int | None = None
    joins: list[JoinSpec] = Field(default_factory=list)

    def __init__(self, **data: Any) -> None:
        name = data.get("name")
        if not isinstance(name, str) or not name.strip():
            raise InvalidInsightError("Insight must have a name")
        if data.get("base_table", data.get("baseTable")) is None:
            raise InvalidInsightError("Insight must have a baseTable")
        super().__init__(**data)

    @field_validator(*_LIST_FIELDS, mode="before")
    @classmethod
    def _default_empty(cls, value: Any) -> Any:
        return [] if value is None else value

    # ── Functional updates ──

    def with_(self, **changes: Any) -> Insight:
        """Return a new Insight; fields not named in ``changes`` carry over."""
        data = {name: getattr(self, name) for name in type(self).model_fields}
        data.update(changes)
        return type(self)(**data)

    def with_name(self, name: str) -> Insight:
        return self.with_(name=name)

    def with_selected_fields(self, field_ids: list[str]) -> Insight:
        return self.with_(selected_fields=list(field_ids))

    def with_metrics(self, metrics: list[Metric | dict[str, Any]]) -> Insight:
        return self.with_(metrics=list(metrics))

    def with_filters(self, filters: list[Predicate | dict[str, Any]]) -> Insight:
        return self.with_(filters=list(filters))

    def with_group_by(self, columns: list[str]) -> Insight:
        return self.with_(group_by=list(columns))

    def with_order_by(self, orders: list[SortOrder | dict[str, Any]]) -> Insight:
        return self.with_(order_by=list(orders))

    def with_limit(self, limit: int | None) -> Insight:
        return self.with_(limit=limit)

    def with_joins(self, joins: list[JoinSpec | dict[str, Any]]) -> Insight:
        return self.with_(joins=list(joins))

    # ── Serialization ──

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> Insight:
        return cls(**data)

    # ── Introspection ──

    def has_analytics(self) -> bool:
        return bool(self.metrics or self.group_by or self.filters)

    def is_ready(self) -> bool:
        return bool(self.selected_fields) or self.has_analytics()

    def description(self) -> str:
        parts: list[str] = []
        if self.selected_fields:
            parts.append(f"show {len(self.selected_fields)} fields")
        if self.group_by:
            parts.append(f"grouped by {', '.join(self.group_by)}")
        if self.metrics:
            parts.append(f"with metrics: {', '.join(m.name for m in self.metrics)}")
        if self.filters:
            parts.append(f"filtered by {len(self.filters)} conditions")
        if self.limit:
            parts.append(f"limited to {self.limit} rows")
        return "; ".join(parts) if parts else "show all data"

    def to_sql(self) -> str:
        from compiler import compile_insight

        return compile_insight(self)
