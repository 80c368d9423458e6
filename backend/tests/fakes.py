from __future__ import annotations

import asyncio
import uuid
from typing import Any

from dataset import DatasetHandle, StorageKind, StorageLocation
from engine import Engine, RowSet
from insight import TableField, TableInfo
from storage import arrow_key


class FakeEngine(Engine):
    """Records every statement; answers catalog probes from ``existing``."""

    def __init__(self, rows: list[dict[str, Any]] | None = None) -> None:
        self.rows = rows or []
        self.queries: list[str] = []
        self.imports: list[str] = []
        self.existing: set[str] = set()
        self.import_delay = 0.0
        self.import_error: Exception | None = None
        self.probe_error: Exception | None = None
        self.export_payload = b"exported-arrow"

    async def query(self, sql: str) -> RowSet:
        self.queries.append(sql)
        await asyncio.sleep(0)
        if "information_schema.tables" in sql:
            if self.probe_error is not None:
                raise self.probe_error
            name = sql.split("'")[1]
            return RowSet(["1"], [{"1": 1}] if name in self.existing else [])
        if sql.startswith("DROP TABLE"):
            return RowSet([], [])
        columns = list(self.rows[0]) if self.rows else []
        return RowSet(columns, [dict(r) for r in self.rows])

    async def bulk_import(
        self, data: bytes, table_name: str, create: bool = True
    ) -> None:
        self.imports.append(table_name)
        await asyncio.sleep(self.import_delay)
        if self.import_error is not None:
            raise self.import_error
        self.existing.add(table_name)

    async def export_arrow(self, sql: str) -> bytes:
        self.queries.append(sql)
        return self.export_payload

    async def describe(self, table_name: str) -> list[dict[str, str]]:
        return []

    def close(self) -> None:
        pass

    def data_queries(self) -> list[str]:
        return [
            q
            for q in self.queries
            if "information_schema" not in q and not q.startswith("DROP TABLE")
        ]


def make_dataset(dataset_id: str | None = None) -> DatasetHandle:
    dataset_id = dataset_id or str(uuid.uuid4())
    return DatasetHandle(
        id=dataset_id,
        storage=StorageLocation(kind=StorageKind.LOCAL, locator=arrow_key(dataset_id)),
    )


def make_field(name: str, column_name: str | None = None, type: str = "string") -> TableField:
    return TableField(
        id=str(uuid.uuid4()),
        name=name,
        column_name=column_name or name.lower().replace(" ", "_"),
        type=type,
    )


def make_table(
    name: str,
    fields: list[TableField],
    dataset_id: str | None = "generate",
) -> TableInfo:
    if dataset_id == "generate":
        dataset_id = str(uuid.uuid4())
    return TableInfo(id=str(uuid.uuid4()), name=name, dataset_id=dataset_id, fields=fields)
