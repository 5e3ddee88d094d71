"""Shared test fixtures for sncache."""

from __future__ import annotations

from pathlib import Path

import pytest

from sncache.models import Record, WireRecord
from sncache.remote import MemoryRemote, TokenSession
from sncache.store import RecordStore


class BrokenSession:
    """A session whose credentials never validate."""

    def is_valid(self) -> bool:
        return False


def _wire(record_id: str, content: str = "enc", **kwargs) -> WireRecord:
    fields = {
        "content_type": "Note",
        "enc_item_key": "key-" + record_id,
        "created_at": "2026-01-01T00:00:00.000000Z",
        "updated_at": "2026-01-01T00:00:00.000000Z",
    }
    fields.update(kwargs)
    return WireRecord(id=record_id, content=content, **fields)


@pytest.fixture
def make_wire():
    """Factory for remote-side records."""
    return _wire


@pytest.fixture
def make_record():
    """Factory for local records."""

    def _make(record_id: str, content: str = "enc", pending_write: bool = False, **kwargs) -> Record:
        return Record(
            **_wire(record_id, content, **kwargs).model_dump(),
            pending_write=pending_write,
        )

    return _make


@pytest.fixture
def store_path(tmp_path: Path) -> Path:
    """Location of a replica that does not exist yet."""
    return tmp_path / "replica" / "cache.db"


@pytest.fixture
def session() -> TokenSession:
    return TokenSession(server="https://sync.example.test", token="secret-token")


@pytest.fixture
def invalid_session() -> BrokenSession:
    return BrokenSession()


@pytest.fixture
def remote() -> MemoryRemote:
    return MemoryRemote()


@pytest.fixture
def store(store_path: Path):
    """An open, empty replica, closed after the test."""
    handle = RecordStore.open(store_path)
    yield handle
    handle.close()
