from __future__ import annotations

import sys
from pathlib import Path

import pytest

BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from fakes import FakeEngine  # noqa: E402
from materializer import TableMaterializer  # noqa: E402
from storage import LocalByteStorage  # noqa: E402


@pytest.fixture
def storage(tmp_path: Path) -> LocalByteStorage:
    return LocalByteStorage(tmp_path / "arrow")


@pytest.fixture
def fake_engine() -> FakeEngine:
    return FakeEngine()


@pytest.fixture
def materializer(fake_engine: FakeEngine, storage: LocalByteStorage) -> TableMaterializer:
    return TableMaterializer(fake_engine, storage)
