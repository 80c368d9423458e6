"""Loads dataset bytes into the engine's table catalog, once per table name."""

from __future__ import annotations

import asyncio
import logging
from functools import partial

import duckdb

from dataset import DatasetHandle, StorageKind
from engine import Engine
from errors import TableLoadError, UnsupportedStorageError
from sql_format import format_value, make_table_name, quote_ident
from storage import ByteStorage, LocalByteStorage

logger = logging.getLogger(__name__)


class TableRegistry:
    """Shared load state for one engine connection.

    ``inflight`` maps a table name to the task of the load currently running
    for it; ``loaded`` holds table names confirmed present this session.
    """

    def __init__(self) -> None:
        self.inflight: dict[str, asyncio.Task[None]] = {}
        self.loaded: set[str] = set()

    def invalidate(self, dataset_id: str) -> None:
        self.loaded.discard(make_table_name(dataset_id))

    def invalidate_all(self) -> None:
        self.loaded.clear()


def table_exists_sql(table_name: str) -> str:
    return (
        "SELECT 1 FROM information_schema.tables "
        f"WHERE table_name = {format_value(table_name)} LIMIT 1"
    )


class TableMaterializer:
    def __init__(
        self,
        engine: Engine,
        storage: ByteStorage | None = None,
        registry: TableRegistry | None = None,
    ) -> None:
        self.engine = engine
        self.storage = storage if storage is not None else LocalByteStorage()
        self.registry = registry if registry is not None else TableRegistry()

    def is_loaded(self, dataset_id: str) -> bool:
        return make_table_name(dataset_id) in self.registry.loaded

    def invalidate(self, dataset_id: str) -> None:
        """Forget that a dataset's table is loaded; the next load re-probes."""
        self.registry.invalidate(dataset_id)

    def invalidate_all(self) -> None:
        self.registry.invalidate_all()

    async def ensure_loaded(self, dataset: DatasetHandle) -> str:
        """Return the dataset's table name, importing its bytes if needed.

        Concurrent callers for the same table share a single load task and
        observe the same outcome. Cancelling one caller only stops its own
        wait; the load keeps running for the others.
        """
        table_name = make_table_name(dataset.id)
        if table_name in self.registry.loaded:
            return table_name

        task = self.registry.inflight.get(table_name)
        if task is None:
            # Register before any I/O so overlapping callers find this load.
            task = asyncio.ensure_future(self._load(dataset, table_name))
            self.registry.inflight[table_name] = task
            task.add_done_callback(partial(self._finish_load, table_name))
        await asyncio.shield(task)
        return table_name

    def _finish_load(self, table_name: str, task: asyncio.Task[None]) -> None:
        if self.registry.inflight.get(table_name) is task:
            del self.registry.inflight[table_name]
        if not task.cancelled():
            # Mark retrieved; waiters still receive the exception.
            task.exception()

    async def _table_exists(self, table_name: str) -> bool:
        try:
            result = await self.engine.query(table_exists_sql(table_name))
        except (duckdb.Error, OSError, RuntimeError) as exc:
            logger.warning(
                "Failed to check table existence for %s: %s", table_name, exc
            )
            return False
        exists = len(result.to_list()) > 0
        logger.debug("Table %s exists check: %s", table_name, exists)
        return exists

    async def _load(self, dataset: DatasetHandle, table_name: str) -> None:
        if await self._table_exists(table_name):
            logger.debug("Skipping load for existing table %s", table_name)
            self.registry.loaded.add(table_name)
            return

        location = dataset.storage
        if location.kind is not StorageKind.LOCAL:
            raise UnsupportedStorageError(location.kind.value)

        logger.debug("Creating table %s (dropping first if exists)", table_name)
        try:
            await self.engine.query(f"DROP TABLE IF EXISTS {quote_ident(table_name)}")
            data = await self.storage.fetch_bytes(location.locator)
            if data is None:
                raise TableLoadError(
                    table_name, f"data not found in storage: {location.locator}"
                )
            await self.engine.bulk_import(data, table_name, create=True)
        except TableLoadError:
            raise
        except (duckdb.Error, OSError, ValueError, RuntimeError) as exc:
            raise TableLoadError(table_name, str(exc)) from exc

        self.registry.loaded.add(table_name)
        logger.info("Loaded dataset %s into table %s", dataset.id, table_name)
