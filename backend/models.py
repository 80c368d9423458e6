"""Value types shared by the insight compiler and the query builder."""

from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, field_serializer, field_validator
from pydantic.alias_generators import to_camel


def iso_timestamp(value: datetime) -> str:
    """ISO text with milliseconds; aware values are shifted to UTC and end in ``Z``."""
    if value.tzinfo is None:
        return value.isoformat(timespec="milliseconds")
    utc = value.astimezone(timezone.utc).replace(tzinfo=None)
    return utc.isoformat(timespec="milliseconds") + "Z"


def _json_scalar(value: Any) -> Any:
    # Strings chosen so a reloaded predicate renders the same SQL literal.
    if isinstance(value, datetime):
        return iso_timestamp(value)
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    return value


class CamelModel(BaseModel):
    """Frozen model serialized with camelCase keys, accepting either spelling."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )

    def to_json(self) -> dict[str, Any]:
        """Python-native camelCase dict; dates and decimals stay as Python objects."""
        return self.model_dump(by_alias=True, exclude_none=True)

    def to_json_text(self) -> str:
        """JSON document; ``from_json(json.loads(text))`` compiles to the same SQL."""
        return self.model_dump_json(by_alias=True, exclude_none=True)


class FilterOperator(str, Enum):
    EQ = "="
    NE = "!="
    GT = ">"
    GE = ">="
    LT = "<"
    LE = "<="
    IN = "IN"
    NOT_IN = "NOT IN"
    IS_NULL = "IS NULL"
    IS_NOT_NULL = "IS NOT NULL"


COMPARISON_OPERATORS = frozenset(
    {
        FilterOperator.EQ,
        FilterOperator.NE,
        FilterOperator.GT,
        FilterOperator.GE,
        FilterOperator.LT,
        FilterOperator.LE,
    }
)
LIST_OPERATORS = frozenset({FilterOperator.IN, FilterOperator.NOT_IN})
NULL_OPERATORS = frozenset({FilterOperator.IS_NULL, FilterOperator.IS_NOT_NULL})


class Predicate(CamelModel):
    column_name: str
    operator: FilterOperator
    value: Any = None
    values: list[Any] | None = None

    @field_validator("operator", mode="before")
    @classmethod
    def _normalize_operator(cls, op: Any) -> Any:
        if isinstance(op, str):
            return " ".join(op.split()).upper()
        return op

    @field_serializer("value", "values", when_used="json")
    def _serialize_values(self, value: Any) -> Any:
        if isinstance(value, list):
            return [_json_scalar(v) for v in value]
        return _json_scalar(value)


class SortDirection(str, Enum):
    ASC = "asc"
    DESC = "desc"


class SortOrder(CamelModel):
    column_name: str
    direction: SortDirection = SortDirection.ASC

    @field_validator("direction", mode="before")
    @classmethod
    def _normalize_direction(cls, direction: Any) -> Any:
        if isinstance(direction, str):
            return direction.strip().lower()
        return direction


class AggregationFunction(str, Enum):
    SUM = "sum"
    AVG = "avg"
    COUNT = "count"
    MIN = "min"
    MAX = "max"
    COUNT_DISTINCT = "count_distinct"


class Aggregation(CamelModel):
    column_name: str
    function: AggregationFunction
    alias: str | None = None

    @field_validator("function", mode="before")
    @classmethod
    def _normalize_function(cls, fn: Any) -> Any:
        if isinstance(fn, str):
            return fn.strip().lower()
        return fn


class JoinType(str, Enum):
    INNER = "inner"
    LEFT = "left"
    RIGHT = "right"
    OUTER = "outer"


def coerce_list(model: type[BaseModel], items: list[Any]) -> list[Any]:
    """Accept model instances or plain mappings, in either key spelling."""
    return [
        item if isinstance(item, model) else model.model_validate(item)
        for item in items
    ]
