"""DuckDB engine: bulk Arrow import, SQL execution, Arrow export, schema."""

from __future__ import annotations

import asyncio
import logging
import math
import threading
import time
import uuid
from abc import ABC, abstractmethod
from datetime import date, datetime
from typing import Any

import duckdb
import pandas as pd
import pyarrow as pa

from config import settings
from sql_format import quote_ident

logger = logging.getLogger(__name__)


def _normalize_value(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, float) and (math.isnan(value) or math.isinf(value)):
        return None
    if isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)


class RowSet:
    """Materialized query result: column names plus row dicts."""

    def __init__(self, columns: list[str], rows: list[dict[str, Any]]) -> None:
        self.columns = columns
        self.rows = rows

    def to_list(self) -> list[dict[str, Any]]:
        return [dict(row) for row in self.rows]

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame(self.rows, columns=self.columns)

    def __len__(self) -> int:
        return len(self.rows)


class Engine(ABC):
    @abstractmethod
    async def query(self, sql: str) -> RowSet:
        """Execute SQL and return all result rows."""

    @abstractmethod
    async def bulk_import(
        self, data: bytes, table_name: str, create: bool = True
    ) -> None:
        """Import an Arrow IPC stream into a table."""

    @abstractmethod
    async def export_arrow(self, sql: str) -> bytes:
        """Execute SQL and return the result as an Arrow IPC stream."""

    @abstractmethod
    async def describe(self, table_name: str) -> list[dict[str, str]]:
        """Column names and simplified types of a table."""

    @abstractmethod
    def close(self) -> None:
        pass


DUCKDB_TYPE_MAP: dict[str, str] = {
    "VARCHAR": "string",
    "BOOLEAN": "boolean",
    "BIGINT": "number",
    "INTEGER": "number",
    "SMALLINT": "number",
    "TINYINT": "number",
    "HUGEINT": "number",
    "UBIGINT": "number",
    "UINTEGER": "number",
    "USMALLINT": "number",
    "UTINYINT": "number",
    "DOUBLE": "number",
    "FLOAT": "number",
    "DECIMAL": "number",
    "DATE": "date",
    "TIMESTAMP": "date",
    "TIMESTAMP WITH TIME ZONE": "date",
    "TIMESTAMP_NS": "date",
    "TIMESTAMP_MS": "date",
    "TIMESTAMP_S": "date",
    "TIME": "string",
    "INTERVAL": "string",
    "BLOB": "string",
}


def map_duckdb_type(duckdb_type: str) -> str:
    """Map a DuckDB type string to our simplified type system."""
    upper = duckdb_type.upper()
    base = upper.split("(")[0].strip()
    return DUCKDB_TYPE_MAP.get(base, "string")


def arrow_to_ipc(table: pa.Table) -> bytes:
    sink = pa.BufferOutputStream()
    with pa.ipc.new_stream(sink, table.schema) as writer:
        writer.write_table(table)
    return sink.getvalue().to_pybytes()


def ipc_to_arrow(data: bytes) -> pa.Table:
    with pa.ipc.open_stream(pa.py_buffer(data)) as reader:
        return reader.read_all()


class DuckDBEngine(Engine):
    def __init__(self, path: str | None = None) -> None:
        self.conn = duckdb.connect(path if path is not None else settings.duckdb_path)
        self._query_lock = threading.Lock()

    def _query_sync(self, sql: str) -> RowSet:
        with self._query_lock:
            result = self.conn.execute(sql)
            if result.description is None:
                return RowSet([], [])
            cols = [desc[0] for desc in result.description]
            raw_rows = result.fetchall()

        rows: list[dict[str, Any]] = []
        for raw in raw_rows:
            rows.append({col: _normalize_value(raw[i]) for i, col in enumerate(cols)})
        return RowSet(cols, rows)

    def _bulk_import_sync(self, data: bytes, table_name: str, create: bool) -> None:
        table = ipc_to_arrow(data)
        view_name = f"__import_{uuid.uuid4().hex[:12]}"
        table_sql = quote_ident(table_name)
        with self._query_lock:
            self.conn.register(view_name, table)
            try:
                if create:
                    self.conn.execute(
                        f"CREATE TABLE {table_sql} AS SELECT * FROM {quote_ident(view_name)}"
                    )
                else:
                    self.conn.execute(
                        f"INSERT INTO {table_sql} SELECT * FROM {quote_ident(view_name)}"
                    )
            finally:
                self.conn.unregister(view_name)

    def _export_arrow_sync(self, sql: str) -> bytes:
        with self._query_lock:
            table = self.conn.execute(sql).fetch_arrow_table()
        return arrow_to_ipc(table)

    def _describe_sync(self, table_name: str) -> list[dict[str, str]]:
        with self._query_lock:
            rows = self.conn.execute(
                f"PRAGMA table_info({quote_ident(table_name)})"
            ).fetchall()
        return [
            {"name": name, "type": map_duckdb_type(duck_type)}
            for _, name, duck_type, *_ in rows
        ]

    async def query(self, sql: str) -> RowSet:
        start = time.time()
        result = await asyncio.to_thread(self._query_sync, sql)
        logger.debug(
            "Query returned %d rows in %.4fs", len(result), time.time() - start
        )
        return result

    async def bulk_import(
        self, data: bytes, table_name: str, create: bool = True
    ) -> None:
        await asyncio.to_thread(self._bulk_import_sync, data, table_name, create)

    async def export_arrow(self, sql: str) -> bytes:
        return await asyncio.to_thread(self._export_arrow_sync, sql)

    async def describe(self, table_name: str) -> list[dict[str, str]]:
        return await asyncio.to_thread(self._describe_sync, table_name)

    def close(self) -> None:
        self.conn.close()
