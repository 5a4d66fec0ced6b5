"""
Data access for the marketplace's key-value storage slots.

Each slot is one row of the ``KeyValue`` table holding a JSON text value and
a version counter.  Unconditional writes bump the version; conditional
writes (``compare_and_put``) only succeed if the stored version still
matches the one the caller read, which is what the repository uses as its
optimistic concurrency token.
"""

from __future__ import annotations

import logging
import os
import sqlite3
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS KeyValue (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    version INTEGER NOT NULL CHECK (version >= 1),
    updated_at TEXT NOT NULL
);
"""


# ------------------------------------------------------------------------------
# Connection helpers
# ------------------------------------------------------------------------------
def _ensure_parent_dir(path: str) -> None:
    parent = os.path.dirname(os.path.abspath(path))
    if parent and not os.path.exists(parent):
        os.makedirs(parent, exist_ok=True)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _new_connection(db_path: str) -> sqlite3.Connection:
    """Create a new SQLite connection with concurrency safeguards.

    Sets a busy timeout and enables Write-Ahead Logging so a reader in
    another thread or process does not fail with ``database is locked``
    while a commit is in flight.  The ``KeyValue`` table is created on
    first use.

    Raises:
        sqlite3.OperationalError: If the database cannot be opened.
    """
    _ensure_parent_dir(db_path)
    try:
        conn = sqlite3.connect(db_path, check_same_thread=False, timeout=10.0)
        conn.row_factory = sqlite3.Row
        try:
            conn.execute("PRAGMA busy_timeout = 10000;")  # 10 seconds
        except sqlite3.OperationalError:
            pass
        try:
            conn.execute("PRAGMA journal_mode = WAL;")
        except sqlite3.OperationalError:
            # e.g. unsupported filesystem
            pass
        with conn:
            conn.execute(_SCHEMA)
        return conn
    except sqlite3.OperationalError as e:
        logger.error(f"DB open failed ({db_path}): {e}")
        raise


# ------------------------------------------------------------------------------
# Key-value DAO
# ------------------------------------------------------------------------------
@dataclass
class Slot:
    key: str
    value: str
    version: int
    updated_at: str


class KeyValueDAO:
    """Data Access Object for the KeyValue table.

    Connections are opened lazily, one per thread, and reused for the life
    of the DAO.
    """

    def __init__(self, db_path: str) -> None:
        self.db_path = db_path
        self._local = threading.local()
        self._all_conns: List[sqlite3.Connection] = []
        self._conns_lock = threading.Lock()

    def _conn(self) -> sqlite3.Connection:
        conn = getattr(self._local, "conn", None)
        if conn is None:
            conn = _new_connection(self.db_path)
            self._local.conn = conn
            with self._conns_lock:
                self._all_conns.append(conn)
        return conn

    def get(self, key: str) -> Optional[Slot]:
        row = self._conn().execute(
            "SELECT key, value, version, updated_at FROM KeyValue WHERE key = ?;",
            (key,),
        ).fetchone()
        return Slot(*row) if row else None

    def put(self, key: str, value: str) -> int:
        """Write ``value`` regardless of the stored version; return the new version."""
        conn = self._conn()
        with conn:
            conn.execute(
                "INSERT INTO KeyValue (key, value, version, updated_at) VALUES (?, ?, 1, ?) "
                "ON CONFLICT(key) DO UPDATE SET value = excluded.value, "
                "version = KeyValue.version + 1, updated_at = excluded.updated_at;",
                (key, value, _now()),
            )
            row = conn.execute("SELECT version FROM KeyValue WHERE key = ?;", (key,)).fetchone()
        return int(row[0])

    def compare_and_put(self, key: str, value: str, expected_version: int) -> bool:
        """
        Write ``value`` only if the slot is still at ``expected_version``.

        An ``expected_version`` of 0 means "the slot must not exist yet".
        Returns True if the row was written, False if another writer got
        there first.  The check and the write are one SQL statement, so
        they cannot interleave with another connection's commit.
        """
        if expected_version < 0:
            raise ValueError("expected_version must be non-negative")
        conn = self._conn()
        with conn:
            if expected_version == 0:
                cur = conn.execute(
                    "INSERT OR IGNORE INTO KeyValue (key, value, version, updated_at) VALUES (?, ?, 1, ?);",
                    (key, value, _now()),
                )
            else:
                cur = conn.execute(
                    "UPDATE KeyValue SET value = ?, version = version + 1, updated_at = ? "
                    "WHERE key = ? AND version = ?;",
                    (value, _now(), key, expected_version),
                )
        return cur.rowcount > 0

    def delete(self, key: str) -> bool:
        conn = self._conn()
        with conn:
            cur = conn.execute("DELETE FROM KeyValue WHERE key = ?;", (key,))
        return cur.rowcount > 0

    def keys(self) -> List[str]:
        rows = self._conn().execute("SELECT key FROM KeyValue ORDER BY key;").fetchall()
        return [r[0] for r in rows]

    def close(self) -> None:
        """Close every connection this DAO opened, in any thread."""
        with self._conns_lock:
            conns, self._all_conns = self._all_conns, []
        for conn in conns:
            try:
                conn.close()
            except sqlite3.Error:
                pass
        self._local = threading.local()
