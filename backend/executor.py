"""Run compiled SQL against the engine: batched statements and insights."""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Any, Mapping

from dataset import DatasetHandle
from engine import Engine
from errors import MissingDatasetError
from insight import Insight, TableField, TableInfo
from materializer import TableMaterializer
from sql_format import quote_ident

logger = logging.getLogger(__name__)

BATCH_INDEX_COLUMN = "batchIndex"


async def batch_query(engine: Engine, queries: list[str]) -> list[list[dict[str, Any]]]:
    """Execute several SELECTs in one round trip.

    Each statement is tagged with its position, the tagged statements are
    combined with ``UNION ALL`` and the rows are split back out per statement.
    The statements must produce union-compatible column lists.
    """
    if not queries:
        return []
    if len(queries) == 1:
        result = await engine.query(queries[0])
        return [result.to_list()]

    index_sql = quote_ident(BATCH_INDEX_COLUMN)
    combined = " UNION ALL ".join(
        f"SELECT {i} AS {index_sql}, * FROM ({q})" for i, q in enumerate(queries)
    )
    logger.debug("Executing %d statements as one batch", len(queries))
    result = await engine.query(combined)

    partitioned: list[list[dict[str, Any]]] = [[] for _ in queries]
    for row in result.to_list():
        idx = int(row.pop(BATCH_INDEX_COLUMN))
        partitioned[idx].append(row)
    return partitioned


def _dataset_for(
    table: TableInfo, datasets: Mapping[str, DatasetHandle], joined: bool
) -> DatasetHandle:
    handle = datasets.get(table.dataset_id) if table.dataset_id else None
    if handle is None:
        raise MissingDatasetError(table.name, joined=joined)
    return handle


async def execute_insight(
    insight: Insight,
    engine: Engine,
    materializer: TableMaterializer,
    datasets: Mapping[str, DatasetHandle],
) -> list[dict[str, Any]]:
    """Materialize every table an insight reads, then run its SQL."""
    sql = insight.to_sql()

    handles = [_dataset_for(insight.base_table, datasets, joined=False)]
    handles += [_dataset_for(j.table, datasets, joined=True) for j in insight.joins]
    await asyncio.gather(*(materializer.ensure_loaded(h) for h in handles))

    logger.debug("Executing insight %s: %s", insight.id, sql)
    result = await engine.query(sql)
    return result.to_list()


async def table_info_for(
    dataset: DatasetHandle,
    name: str,
    engine: Engine,
    materializer: TableMaterializer,
) -> TableInfo:
    """Describe a dataset's materialized table as a TableInfo."""
    table_name = await materializer.ensure_loaded(dataset)
    columns = await engine.describe(table_name)
    fields = [
        TableField(
            id=str(uuid.uuid4()),
            name=col["name"],
            column_name=col["name"],
            type=col["type"],
        )
        for col in columns
    ]
    return TableInfo(id=str(uuid.uuid4()), name=name, dataset_id=dataset.id, fields=fields)
