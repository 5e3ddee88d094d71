"""
Tests for the SQLite record store — pending index, token singleton,
upsert semantics and exclusive open.
"""

from __future__ import annotations

import sqlite3
from datetime import datetime, timezone
from pathlib import Path

import pytest

from sncache.errors import InvariantViolation, StoreError, StoreLocked
from sncache.models import ContinuationToken
from sncache.store import RecordStore


class TestOpen:
    """Opening, creating and locking replicas."""

    def test_open_creates_file_and_parents(self, store_path: Path):
        assert not RecordStore.exists(store_path)
        with RecordStore.open(store_path):
            pass
        assert RecordStore.exists(store_path)

    def test_second_handle_is_refused(self, store: RecordStore, store_path: Path):
        """Only one handle may hold a location at a time."""
        with pytest.raises(StoreLocked):
            RecordStore.open(store_path)

    def test_reopen_after_close(self, store_path: Path, make_record):
        with RecordStore.open(store_path) as first:
            first.upsert(make_record("A"))
        with RecordStore.open(store_path) as second:
            assert second.get("A") is not None

    def test_closed_handle_raises_store_error(self, store_path: Path):
        handle = RecordStore.open(store_path)
        handle.close()
        handle.close()
        assert handle.closed
        with pytest.raises(StoreError):
            handle.get_pending()

    def test_unopenable_location_is_store_error(self, tmp_path: Path):
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("x")
        with pytest.raises(StoreError):
            RecordStore.open(blocker / "cache.db")


class TestPending:
    """The pending_write index."""

    def test_empty_store_has_no_pending(self, store: RecordStore):
        assert store.get_pending() == []

    def test_get_pending_only_returns_dirty(self, store: RecordStore, make_record):
        store.upsert(make_record("clean"))
        store.upsert(make_record("dirty", pending_write=True))

        pending = store.get_pending()
        assert [r.id for r in pending] == ["dirty"]
        assert pending[0].pending_since is not None

    def test_clear_pending_resets_since(self, store: RecordStore, make_record):
        store.upsert(make_record("A", pending_write=True))

        assert store.clear_pending("A") is True
        record = store.get("A")
        assert record.pending_write is False
        assert record.pending_since is None

    def test_clear_pending_absent_id_is_noop(self, store: RecordStore):
        assert store.clear_pending("missing") is False

    def test_clear_pending_respects_newer_edit(self, store: RecordStore, make_record):
        """A stale pending_since must not clear a later edit."""
        first = store.mark_pending(make_record("A", content="v1"))
        store.mark_pending(make_record("A", content="v2"))

        assert store.clear_pending("A", first.pending_since) is False
        assert store.get("A").pending_write is True

    def test_mark_pending_is_strictly_increasing_on_frozen_clock(
        self, store: RecordStore, make_record, monkeypatch
    ):
        class FrozenClock(datetime):
            @classmethod
            def now(cls, tz=None):
                return datetime(2026, 1, 1, tzinfo=timezone.utc)

        monkeypatch.setattr("sncache.store.datetime", FrozenClock)
        first = store.mark_pending(make_record("A", content="v1"))
        second = store.mark_pending(make_record("A", content="v2"))

        assert second.pending_since > first.pending_since
        assert store.clear_pending("A", first.pending_since) is False
        assert store.get("A").pending_write is True

    def test_clear_pending_with_matching_since(self, store: RecordStore, make_record):
        saved = store.mark_pending(make_record("A"))
        assert store.clear_pending("A", saved.pending_since) is True
        assert store.get_pending() == []

    def test_pending_since_round_trips(self, store: RecordStore, make_record):
        when = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
        record = make_record("A", pending_write=True).model_copy(update={"pending_since": when})
        store.upsert(record)
        assert store.get("A").pending_since == when


class TestUpsert:
    """Insert-or-replace by id."""

    def test_upsert_is_idempotent(self, store: RecordStore, make_record):
        record = make_record("A")
        store.upsert(record)
        store.upsert(record)

        assert store.all_records() == [record]

    def test_upsert_replaces_content(self, store: RecordStore, make_record):
        store.upsert(make_record("A", content="old"))
        store.upsert(make_record("A", content="new"))
        assert store.get("A").content == "new"

    def test_upsert_overwrites_pending_by_default(self, store: RecordStore, make_record):
        store.upsert(make_record("A", pending_write=True))
        store.upsert(make_record("A"))
        assert store.get("A").pending_write is False

    def test_keep_pending_preserves_dirty_flag(self, store: RecordStore, make_record):
        saved = store.mark_pending(make_record("A", content="local"))
        store.upsert(make_record("A", content="remote"), keep_pending=True)

        record = store.get("A")
        assert record.content == "remote"
        assert record.pending_write is True
        assert record.pending_since == saved.pending_since

    def test_keep_pending_inserts_new_rows_clean(self, store: RecordStore, make_record):
        store.upsert(make_record("A"), keep_pending=True)
        assert store.get("A").pending_write is False


class TestToken:
    """The continuation token singleton."""

    def test_fresh_store_has_no_token(self, store: RecordStore):
        assert store.get_token() is None

    def test_set_token_replaces(self, store: RecordStore):
        store.set_token(ContinuationToken(value="t1"))
        store.set_token(ContinuationToken(value="t2"))
        assert store.get_token() == ContinuationToken(value="t2")
        assert store.stats().has_token is True

    def test_two_tokens_is_invariant_violation(self, store_path: Path):
        with RecordStore.open(store_path):
            pass
        conn = sqlite3.connect(str(store_path))
        conn.execute("INSERT INTO sync_token (value) VALUES ('a'), ('b')")
        conn.commit()
        conn.close()

        with RecordStore.open(store_path) as handle:
            with pytest.raises(InvariantViolation):
                handle.get_token()


class TestHelpers:
    """Application-side helpers."""

    def test_delete_tombstones_and_marks_pending(self, store: RecordStore, make_record):
        store.upsert(make_record("A"))

        assert store.delete("A") is True
        record = store.get("A")
        assert record.deleted is True
        assert record.pending_write is True
        assert len(store.all_records()) == 1
        assert store.all_records(include_deleted=False) == []

    def test_delete_unknown_id(self, store: RecordStore):
        assert store.delete("nope") is False

    def test_stats(self, store: RecordStore, make_record):
        store.upsert(make_record("A"))
        store.upsert(make_record("B", pending_write=True))
        store.upsert(make_record("C", deleted=True))

        stats = store.stats()
        assert stats.records == 3
        assert stats.pending == 1
        assert stats.deleted == 1
        assert stats.has_token is False

    def test_writes_survive_reopen(self, store_path: Path, make_record):
        with RecordStore.open(store_path) as handle:
            handle.mark_pending(make_record("A"))
            handle.set_token(ContinuationToken(value="42"))

        with RecordStore.open(store_path) as handle:
            assert [r.id for r in handle.get_pending()] == ["A"]
            assert handle.get_token().value == "42"
