from __future__ import annotations

import asyncio
from pathlib import Path

import pytest
from pydantic import ValidationError

from dataset import DatasetHandle, StorageKind, StorageLocation
from errors import UnsupportedStorageError
from fakes import FakeEngine
from materializer import TableMaterializer
from query_builder import QueryBuilder
from storage import LocalByteStorage, arrow_key, dataset_id_from_key


def test_arrow_keys() -> None:
    assert arrow_key("abc") == "dashframe:arrow:abc"
    assert dataset_id_from_key("dashframe:arrow:abc") == "abc"
    assert dataset_id_from_key("other:abc") is None


def test_local_storage_round_trip(storage: LocalByteStorage) -> None:
    async def scenario() -> None:
        assert await storage.fetch_bytes("missing") is None
        assert await storage.keys() == []

        await storage.save(arrow_key("one"), b"12345")
        await storage.save(arrow_key("two"), b"678")
        await storage.save("unrelated", b"x")

        assert await storage.exists(arrow_key("one"))
        assert await storage.fetch_bytes(arrow_key("two")) == b"678"
        assert sorted(await storage.list_ids()) == ["one", "two"]
        assert await storage.usage() == {"count": 2, "totalBytes": 8}

        await storage.delete(arrow_key("one"))
        assert not await storage.exists(arrow_key("one"))
        assert await storage.list_ids() == ["two"]

    asyncio.run(scenario())


def test_create_persists_bytes(storage: LocalByteStorage, tmp_path: Path) -> None:
    handle = asyncio.run(
        DatasetHandle.create(b"payload", ["f1", "f2"], storage, primary_key="id")
    )
    assert handle.storage.kind is StorageKind.LOCAL
    assert handle.storage.locator == arrow_key(handle.id)
    assert handle.field_ids == ["f1", "f2"]
    assert handle.primary_key == "id"
    assert handle.created_at > 0
    assert asyncio.run(storage.fetch_bytes(handle.storage.locator)) == b"payload"
    assert any((tmp_path / "arrow").glob("*.bin"))


@pytest.mark.parametrize("kind", ["s3", "r2"])
def test_create_rejects_remote_storage(storage: LocalByteStorage, kind: str) -> None:
    with pytest.raises(UnsupportedStorageError):
        asyncio.run(DatasetHandle.create(b"payload", [], storage, kind=kind))
    assert asyncio.run(storage.keys()) == []


def test_json_uses_wire_keys() -> None:
    handle = DatasetHandle(
        id="abc",
        storage=StorageLocation(kind=StorageKind.R2, locator="bucket/abc"),
        field_ids=["f1"],
        created_at=1700000000000,
    )
    payload = handle.to_json()
    assert payload == {
        "id": "abc",
        "storage": {"type": "r2", "key": "bucket/abc"},
        "fieldIds": ["f1"],
        "createdAt": 1700000000000,
    }
    assert DatasetHandle.from_json(payload) == handle


@pytest.mark.parametrize(
    "kind, label",
    [
        (StorageKind.LOCAL, "Local Storage"),
        (StorageKind.S3, "AWS S3"),
        (StorageKind.R2, "Cloudflare R2"),
    ],
)
def test_storage_label(kind: StorageKind, label: str) -> None:
    handle = DatasetHandle(id="x", storage=StorageLocation(kind=kind, locator="k"))
    assert handle.storage_label == label


def test_handle_is_immutable() -> None:
    handle = DatasetHandle(id="x", storage=StorageLocation(kind="local", locator="k"))
    with pytest.raises(ValidationError):
        handle.id = "y"  # type: ignore[misc]


def test_load_returns_fresh_builder(
    fake_engine: FakeEngine, materializer: TableMaterializer
) -> None:
    handle = DatasetHandle(id="x", storage=StorageLocation(kind="local", locator="k"))
    builder = handle.load(fake_engine, materializer)
    assert isinstance(builder, QueryBuilder)
    assert builder.operations == ()
    assert builder.dataset is handle
