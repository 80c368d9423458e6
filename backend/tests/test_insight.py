from __future__ import annotations

import pytest

from errors import InvalidInsightError
from fakes import make_field, make_table
from insight import Insight, Metric, TableInfo
from models import FilterOperator, JoinType, SortDirection


def _table() -> TableInfo:
    return make_table("users", [make_field("Name"), make_field("Age", type="number")])


def test_defaults_are_empty() -> None:
    insight = Insight(name="Users", base_table=_table())
    assert insight.selected_fields == []
    assert insight.metrics == []
    assert insight.filters == []
    assert insight.group_by == []
    assert insight.order_by == []
    assert insight.joins == []
    assert insight.limit is None
    assert insight.id


def test_none_lists_are_treated_as_empty() -> None:
    insight = Insight(name="Users", base_table=_table(), filters=None, joins=None)
    assert insight.filters == []
    assert insight.joins == []


@pytest.mark.parametrize("name", [None, "", "   "])
def test_name_is_required(name: str | None) -> None:
    with pytest.raises(InvalidInsightError, match="Insight must have a name"):
        Insight(name=name, base_table=_table())


def test_base_table_is_required() -> None:
    with pytest.raises(InvalidInsightError, match="Insight must have a baseTable"):
        Insight(name="Orphan")


def test_accepts_camel_case_payload() -> None:
    table = _table()
    insight = Insight(
        name="Camel",
        baseTable=table.to_json(),
        groupBy=["name"],
        orderBy=[{"columnName": "name", "direction": "DESC"}],
        filters=[{"columnName": "age", "operator": "is not null"}],
    )
    assert insight.base_table.id == table.id
    assert insight.order_by[0].direction is SortDirection.DESC
    assert insight.filters[0].operator is FilterOperator.IS_NOT_NULL


def test_with_methods_return_new_instances() -> None:
    original = Insight(name="Base", base_table=_table())
    renamed = original.with_name("Renamed")
    limited = renamed.with_limit(25)

    assert original.name == "Base"
    assert renamed.name == "Renamed"
    assert renamed.limit is None
    assert limited.limit == 25
    assert limited.id == original.id
    assert limited.base_table == original.base_table


def test_with_methods_replace_collections() -> None:
    table = _table()
    insight = (
        Insight(name="Chain", base_table=table)
        .with_selected_fields([table.fields[0].id])
        .with_group_by(["name"])
        .with_metrics([{"name": "Rows", "sourceTable": table.id, "aggregation": "COUNT"}])
        .with_filters([{"columnName": "age", "operator": ">", "value": 30}])
        .with_order_by([{"columnName": "name"}])
    )
    assert insight.selected_fields == [table.fields[0].id]
    assert insight.group_by == ["name"]
    assert insight.metrics[0].aggregation.value == "count"
    assert insight.filters[0].value == 30
    assert insight.order_by[0].direction is SortDirection.ASC

    cleared = insight.with_filters([])
    assert cleared.filters == []
    assert insight.filters


def test_with_rejects_invalid_name() -> None:
    insight = Insight(name="Base", base_table=_table())
    with pytest.raises(InvalidInsightError):
        insight.with_name("")


def test_with_joins_parses_join_type() -> None:
    users = _table()
    orders = make_table("orders", [make_field("UserId", "user_id")])
    insight = Insight(name="Join", base_table=users).with_joins(
        [
            {
                "table": orders.to_json(),
                "joinOn": {"baseField": users.fields[0].id, "joinedField": orders.fields[0].id},
                "joinType": "left",
            }
        ]
    )
    assert insight.joins[0].join_type is JoinType.LEFT


def test_json_round_trip_preserves_everything() -> None:
    table = _table()
    insight = Insight(
        name="Round",
        base_table=table,
        selected_fields=[table.fields[0].id],
        metrics=[Metric(name="Avg", source_table=table.id, aggregation="avg", column_name="age")],
        limit=5,
    )
    payload = insight.to_json()
    assert payload["baseTable"]["datasetId"] == table.dataset_id
    assert "joins" in payload
    assert Insight.from_json(payload) == insight


def test_has_analytics_and_is_ready() -> None:
    table = _table()
    empty = Insight(name="Empty", base_table=table)
    assert not empty.has_analytics()
    assert not empty.is_ready()

    selected = empty.with_selected_fields([table.fields[0].id])
    assert not selected.has_analytics()
    assert selected.is_ready()

    filtered = empty.with_filters([{"columnName": "age", "operator": "IS NULL"}])
    assert filtered.has_analytics()
    assert filtered.is_ready()


def test_description() -> None:
    table = _table()
    assert Insight(name="Empty", base_table=table).description() == "show all data"

    insight = Insight(
        name="Described",
        base_table=table,
        selected_fields=[f.id for f in table.fields],
        group_by=["name"],
        metrics=[Metric(name="Rows", source_table=table.id, aggregation="count")],
        filters=[{"columnName": "age", "operator": ">", "value": 1}],
        limit=10,
    )
    assert insight.description() == (
        "show 2 fields; grouped by name; with metrics: Rows; "
        "filtered by 1 conditions; limited to 10 rows"
    )
