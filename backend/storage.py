"""Byte storage for dataset payloads (Arrow IPC streams)."""

from __future__ import annotations

import asyncio
import hashlib
import logging
from abc import ABC, abstractmethod
from pathlib import Path

from config import settings

logger = logging.getLogger(__name__)

ARROW_KEY_PREFIX = "dashframe:arrow:"


def arrow_key(dataset_id: str) -> str:
    return f"{ARROW_KEY_PREFIX}{dataset_id}"


def dataset_id_from_key(key: str) -> str | None:
    if key.startswith(ARROW_KEY_PREFIX):
        return key[len(ARROW_KEY_PREFIX) :]
    return None


class ByteStorage(ABC):
    @abstractmethod
    async def save(self, key: str, data: bytes) -> None:
        """Persist bytes under a key, replacing any previous payload."""

    @abstractmethod
    async def fetch_bytes(self, key: str) -> bytes | None:
        """Return the payload for a key, or None when nothing is stored."""

    @abstractmethod
    async def delete(self, key: str) -> None:
        pass

    @abstractmethod
    async def exists(self, key: str) -> bool:
        pass

    @abstractmethod
    async def keys(self) -> list[str]:
        pass

    async def list_ids(self) -> list[str]:
        ids = [dataset_id_from_key(k) for k in await self.keys()]
        return [i for i in ids if i is not None]

    async def usage(self) -> dict[str, int]:
        total = 0
        ids = await self.list_ids()
        for dataset_id in ids:
            data = await self.fetch_bytes(arrow_key(dataset_id))
            if data:
                total += len(data)
        return {"count": len(ids), "totalBytes": total}


class LocalByteStorage(ByteStorage):
    """Key-value byte store backed by a directory of files.

    Keys are arbitrary strings; each maps to ``<root>/<sha1(key)>.bin`` with the
    original key kept alongside in ``.key`` so keys can be listed again.
    """

    def __init__(self, root: str | Path | None = None) -> None:
        self.root = Path(root) if root is not None else Path(settings.storage_dir)

    def _path(self, key: str) -> Path:
        digest = hashlib.sha1(key.encode("utf-8")).hexdigest()
        return self.root / f"{digest}.bin"

    def _save_sync(self, key: str, data: bytes) -> None:
        self.root.mkdir(parents=True, exist_ok=True)
        path = self._path(key)
        path.write_bytes(data)
        path.with_suffix(".key").write_text(key, encoding="utf-8")

    def _fetch_sync(self, key: str) -> bytes | None:
        path = self._path(key)
        if not path.exists():
            return None
        return path.read_bytes()

    def _delete_sync(self, key: str) -> None:
        path = self._path(key)
        path.unlink(missing_ok=True)
        path.with_suffix(".key").unlink(missing_ok=True)

    def _keys_sync(self) -> list[str]:
        if not self.root.exists():
            return []
        return sorted(
            p.read_text(encoding="utf-8") for p in self.root.glob("*.key")
        )

    async def save(self, key: str, data: bytes) -> None:
        await asyncio.to_thread(self._save_sync, key, bytes(data))
        logger.debug("Stored %d bytes under %s", len(data), key)

    async def fetch_bytes(self, key: str) -> bytes | None:
        return await asyncio.to_thread(self._fetch_sync, key)

    async def delete(self, key: str) -> None:
        await asyncio.to_thread(self._delete_sync, key)

    async def exists(self, key: str) -> bool:
        return await asyncio.to_thread(self._path(key).exists)

    async def keys(self) -> list[str]:
        return await asyncio.to_thread(self._keys_sync)
