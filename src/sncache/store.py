"""
Record Store — the on-disk replica.

One SQLite file per replica:

    records     every item, keyed by id, indexed on pending_write
    sync_token  the continuation token (at most one row)

The file is opened with ``locking_mode=EXCLUSIVE`` and the write lock is
taken immediately, so a second handle on the same location is refused
(or waits up to ``lock_timeout`` seconds) for as long as the first one
is open. Every write commits with ``synchronous=FULL`` before the call
returns.

Usage:
    with RecordStore.open(path) as store:
        store.mark_pending(Record(id="A", content="..."))
        pending = store.get_pending()
"""

from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Iterator, Optional, Union

from .errors import InvariantViolation, StoreError, StoreLocked
from .models import ContinuationToken, Record, StoreStats

logger = logging.getLogger("sncache.store")

SCHEMA = """
CREATE TABLE IF NOT EXISTS records (
    id            TEXT PRIMARY KEY,
    content       TEXT NOT NULL DEFAULT '',
    content_type  TEXT NOT NULL DEFAULT '',
    enc_item_key  TEXT NOT NULL DEFAULT '',
    deleted       INTEGER NOT NULL DEFAULT 0,
    created_at    TEXT NOT NULL DEFAULT '',
    updated_at    TEXT NOT NULL DEFAULT '',
    pending_write INTEGER NOT NULL DEFAULT 0,
    pending_since TEXT
);
CREATE INDEX IF NOT EXISTS idx_records_pending ON records(pending_write);
CREATE TABLE IF NOT EXISTS sync_token (
    value TEXT PRIMARY KEY
);
"""

_CONTENT_COLUMNS = (
    "content",
    "content_type",
    "enc_item_key",
    "deleted",
    "created_at",
    "updated_at",
)
_ALL_COLUMNS = ("id",) + _CONTENT_COLUMNS + ("pending_write", "pending_since")


def _is_busy(exc: sqlite3.Error) -> bool:
    return getattr(exc, "sqlite_errorcode", None) in (
        sqlite3.SQLITE_BUSY,
        sqlite3.SQLITE_LOCKED,
    )


def _format_since(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _row_to_record(row: sqlite3.Row) -> Record:
    since = row["pending_since"]
    return Record(
        id=row["id"],
        content=row["content"],
        content_type=row["content_type"],
        enc_item_key=row["enc_item_key"],
        deleted=bool(row["deleted"]),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        pending_write=bool(row["pending_write"]),
        pending_since=datetime.fromisoformat(since) if since else None,
    )


def _record_params(record: Record) -> tuple:
    return (
        record.id,
        record.content,
        record.content_type,
        record.enc_item_key,
        int(record.deleted),
        record.created_at,
        record.updated_at,
        int(record.pending_write),
        _format_since(record.pending_since if record.pending_write else None),
    )


class RecordStore:
    """Exclusive handle on one replica file.

    Open once with :meth:`open` and pass the handle to every
    reconciliation cycle. Not safe to share across threads.
    """

    def __init__(self, path: Path, conn: sqlite3.Connection) -> None:
        self.path = path
        self._conn: Optional[sqlite3.Connection] = conn

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @classmethod
    def open(
        cls, path: Union[str, Path], lock_timeout: float = 0.0
    ) -> "RecordStore":
        """Open (creating if needed) the replica at ``path``.

        Args:
            path: Location of the SQLite file.
            lock_timeout: Seconds to wait for another handle to release
                the file. Zero refuses immediately.

        Returns:
            An open, exclusively locked RecordStore.

        Raises:
            StoreLocked: Another handle holds the location.
            StoreError: The file could not be created or read.
        """
        path = Path(path).expanduser()
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StoreError(f"cannot create store directory {path.parent}: {exc}") from exc

        conn = None
        try:
            conn = sqlite3.connect(
                str(path), timeout=lock_timeout, isolation_level=None
            )
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA locking_mode=EXCLUSIVE")
            conn.execute("PRAGMA synchronous=FULL")
            conn.execute("BEGIN EXCLUSIVE")
            for statement in SCHEMA.split(";"):
                if statement.strip():
                    conn.execute(statement)
            conn.execute("COMMIT")
        except sqlite3.Error as exc:
            if conn is not None:
                conn.close()
            if _is_busy(exc):
                raise StoreLocked(f"store already open elsewhere: {path}") from exc
            raise StoreError(f"cannot open store {path}: {exc}") from exc

        logger.debug("Opened record store %s", path)
        return cls(path, conn)

    @staticmethod
    def exists(path: Union[str, Path]) -> bool:
        """Whether a replica has been created at ``path``."""
        return Path(path).expanduser().is_file()

    @property
    def closed(self) -> bool:
        return self._conn is None

    def close(self) -> None:
        """Release the file lock. Safe to call twice."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None
            logger.debug("Closed record store %s", self.path)

    def __enter__(self) -> "RecordStore":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def _connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise StoreError(f"store is closed: {self.path}")
        return self._conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        conn = self._connection()
        try:
            conn.execute("BEGIN IMMEDIATE")
            yield conn
            conn.execute("COMMIT")
        except sqlite3.Error as exc:
            self._rollback(conn)
            raise StoreError(f"store write failed: {exc}") from exc
        except BaseException:
            self._rollback(conn)
            raise

    @staticmethod
    def _rollback(conn: sqlite3.Connection) -> None:
        if conn.in_transaction:
            conn.execute("ROLLBACK")

    def _query(self, sql: str, params: tuple = ()) -> list[sqlite3.Row]:
        conn = self._connection()
        try:
            return conn.execute(sql, params).fetchall()
        except sqlite3.Error as exc:
            raise StoreError(f"store read failed: {exc}") from exc

    # ------------------------------------------------------------------
    # Reconciliation contract
    # ------------------------------------------------------------------

    def get_pending(self) -> list[Record]:
        """All records with local edits not yet acknowledged."""
        rows = self._query(
            "SELECT * FROM records WHERE pending_write = 1 "
            "ORDER BY pending_since, id"
        )
        return [_row_to_record(r) for r in rows]

    def get_token(self) -> Optional[ContinuationToken]:
        """The stored continuation token, or None on a fresh store.

        Raises:
            InvariantViolation: More than one token is stored.
        """
        rows = self._query("SELECT value FROM sync_token")
        if len(rows) > 1:
            raise InvariantViolation(
                f"expected at most one sync token, found {len(rows)}"
            )
        if not rows:
            return None
        return ContinuationToken(value=rows[0]["value"])

    def upsert(self, record: Record, keep_pending: bool = False) -> None:
        """Insert or replace a record by id.

        Args:
            record: The record to store.
            keep_pending: When the id already exists, overwrite only the
                content fields and leave its pending flag alone.
        """
        update_cols = _CONTENT_COLUMNS
        if not keep_pending:
            update_cols = update_cols + ("pending_write", "pending_since")
        assignments = ", ".join(f"{c} = excluded.{c}" for c in update_cols)
        placeholders = ", ".join("?" * len(_ALL_COLUMNS))

        with self._transaction() as conn:
            conn.execute(
                f"INSERT INTO records ({', '.join(_ALL_COLUMNS)}) "
                f"VALUES ({placeholders}) "
                f"ON CONFLICT(id) DO UPDATE SET {assignments}",
                _record_params(record),
            )

    def clear_pending(
        self, record_id: str, pending_since: Optional[datetime] = None
    ) -> bool:
        """Mark a record clean. Absent ids are a no-op.

        Args:
            record_id: Record to clear.
            pending_since: If given, clear only while the stored
                ``pending_since`` still equals it, so an edit saved
                after the push batch was built stays pending.

        Returns:
            True if a row changed.
        """
        sql = (
            "UPDATE records SET pending_write = 0, pending_since = NULL "
            "WHERE id = ?"
        )
        params: tuple = (record_id,)
        if pending_since is not None:
            sql += " AND pending_since = ?"
            params += (_format_since(pending_since),)

        with self._transaction() as conn:
            cursor = conn.execute(sql, params)
            return cursor.rowcount > 0

    def set_token(self, token: ContinuationToken) -> None:
        """Replace the singleton continuation token."""
        with self._transaction() as conn:
            conn.execute("DELETE FROM sync_token")
            conn.execute("INSERT INTO sync_token (value) VALUES (?)", (token.value,))

    # ------------------------------------------------------------------
    # Application helpers
    # ------------------------------------------------------------------

    def get(self, record_id: str) -> Optional[Record]:
        rows = self._query("SELECT * FROM records WHERE id = ?", (record_id,))
        return _row_to_record(rows[0]) if rows else None

    def all_records(self, include_deleted: bool = True) -> list[Record]:
        sql = "SELECT * FROM records"
        if not include_deleted:
            sql += " WHERE deleted = 0"
        return [_row_to_record(r) for r in self._query(sql + " ORDER BY id")]

    def mark_pending(self, record: Record) -> Record:
        """Save a local edit and flag it for the next push.

        Returns:
            The record as stored, with a ``pending_since`` strictly later
            than any earlier edit of the same id, even on a coarse clock.
        """
        since = datetime.now(timezone.utc)
        current = self.get(record.id)
        if current is not None and current.pending_since is not None:
            since = max(since, current.pending_since + timedelta(microseconds=1))
        dirty = record.model_copy(
            update={"pending_write": True, "pending_since": since}
        )
        self.upsert(dirty)
        return dirty

    def delete(self, record_id: str) -> bool:
        """Tombstone a record and flag it for push. Rows are never removed.

        Returns:
            False if the id is unknown.
        """
        record = self.get(record_id)
        if record is None:
            return False
        self.mark_pending(record.model_copy(update={"deleted": True}))
        return True

    def stats(self) -> StoreStats:
        row = self._query(
            "SELECT COUNT(*) AS total, SUM(pending_write) AS pending, "
            "SUM(deleted) AS deleted FROM records"
        )[0]
        tokens = self._query("SELECT COUNT(*) AS n FROM sync_token")[0]["n"]
        return StoreStats(
            records=row["total"],
            pending=row["pending"] or 0,
            deleted=row["deleted"] or 0,
            has_token=tokens > 0,
        )
