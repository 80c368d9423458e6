"""Dataset handles: immutable references to where a dataset's bytes live."""

from __future__ import annotations

import time
import uuid
from enum import Enum
from typing import TYPE_CHECKING, Any

from pydantic import Field

from errors import UnsupportedStorageError
from models import CamelModel
from storage import ByteStorage, arrow_key

if TYPE_CHECKING:
    from engine import Engine
    from materializer import TableMaterializer
    from query_builder import QueryBuilder


class StorageKind(str, Enum):
    LOCAL = "local"
    S3 = "s3"
    R2 = "r2"


STORAGE_LABELS: dict[StorageKind, str] = {
    StorageKind.LOCAL: "Local Storage",
    StorageKind.S3: "AWS S3",
    StorageKind.R2: "Cloudflare R2",
}


class StorageLocation(CamelModel):
    kind: StorageKind = Field(alias="type")
    locator: str = Field(alias="key")


class DatasetHandle(CamelModel):
    """A lightweight reference to a stored dataset. Holds no row data."""

    id: str
    storage: StorageLocation
    field_ids: list[str] = Field(default_factory=list)
    primary_key: str | list[str] | None = None
    created_at: int = Field(default_factory=lambda: int(time.time() * 1000))

    @property
    def storage_label(self) -> str:
        return STORAGE_LABELS.get(self.storage.kind, "Unknown")

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> DatasetHandle:
        return cls.model_validate(data)

    @classmethod
    async def create(
        cls,
        data: bytes,
        field_ids: list[str],
        storage: ByteStorage,
        *,
        kind: StorageKind = StorageKind.LOCAL,
        primary_key: str | list[str] | None = None,
    ) -> DatasetHandle:
        """Persist an Arrow IPC payload and return a handle pointing at it."""
        dataset_id = str(uuid.uuid4())
        kind = StorageKind(kind)
        if kind is not StorageKind.LOCAL:
            raise UnsupportedStorageError(kind.value)

        key = arrow_key(dataset_id)
        await storage.save(key, data)
        return cls(
            id=dataset_id,
            storage=StorageLocation(kind=kind, locator=key),
            field_ids=list(field_ids),
            primary_key=primary_key,
        )

    def load(self, engine: Engine, materializer: TableMaterializer) -> QueryBuilder:
        """Entry point for query operations over this dataset."""
        from query_builder import QueryBuilder

        return QueryBuilder(self, engine, materializer)
