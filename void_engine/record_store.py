"""
void_engine/record_store.py — SQLite record store
===================================================
Persistent state and audit trail for the analysis engine. No math, no UI.

Two generic tables keep the engine free of per-feature schemas:

Schema: records table (keyed, mutable state)
  collection  TEXT NOT NULL     -- "ewma_store", "pattern_memory"
  key         TEXT NOT NULL     -- signal name / signature hash
  data        TEXT NOT NULL     -- JSON object
  updated_at  TEXT NOT NULL     -- ISO 8601 UTC
  PRIMARY KEY (collection, key)

Schema: events table (append-only audit log)
  id          INTEGER PRIMARY KEY AUTOINCREMENT
  collection  TEXT NOT NULL     -- "samples", "match_cases", "smart_moves", ...
  data        TEXT NOT NULL     -- JSON object
  ts          TEXT NOT NULL     -- ISO 8601 UTC

Atomicity:
  update() is the only read-modify-write path. It holds a process-wide lock and
  runs inside BEGIN IMMEDIATE, so two analyses touching the same signal key can
  never interleave and drop a write (the SQLite write lock covers other
  processes sharing the file).

Every sqlite3.Error (and OSError from the data directory) is re-raised as
PersistenceFailure.

DO NOT add analysis logic or Streamlit imports to this file.
"""

import json
import logging
import math
import os
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Callable, Iterator, Optional

logger = logging.getLogger(__name__)

_SCHEMA_SQL = """
PRAGMA journal_mode = WAL;
PRAGMA synchronous = NORMAL;

CREATE TABLE IF NOT EXISTS records (
    collection  TEXT NOT NULL,
    key         TEXT NOT NULL,
    data        TEXT NOT NULL,
    updated_at  TEXT NOT NULL,
    PRIMARY KEY (collection, key)
);

CREATE TABLE IF NOT EXISTS events (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    collection  TEXT NOT NULL,
    data        TEXT NOT NULL,
    ts          TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_events_collection
    ON events(collection, id);
"""

# Process-wide: one lock per DB file so separate RecordStore handles on the
# same file still serialise their read-modify-write cycles.
_LOCKS: dict[str, threading.RLock] = {}
_LOCKS_GUARD = threading.Lock()


class PersistenceFailure(RuntimeError):
    """A storage operation failed. Computed results are still valid."""


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _json_default(obj):
    if isinstance(obj, (set, frozenset, tuple)):
        return list(obj)
    return str(obj)


def _sanitize(obj):
    """Replace NaN/inf with None so the JSON is standard."""
    if isinstance(obj, float):
        return obj if math.isfinite(obj) else None
    if isinstance(obj, dict):
        return {str(k): _sanitize(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_sanitize(v) for v in obj]
    return obj


def dumps(obj) -> str:
    """Serialise a record to strict JSON (NaN becomes null)."""
    return json.dumps(_sanitize(obj), default=_json_default, ensure_ascii=False)


def _lock_for(path: str) -> threading.RLock:
    with _LOCKS_GUARD:
        lock = _LOCKS.get(path)
        if lock is None:
            lock = threading.RLock()
            _LOCKS[path] = lock
        return lock


class RecordStore:
    """
    SQLite-backed key/value + append-only store.

    One connection per operation, like the rest of the sandbox storage code:
    cheap with WAL and safe to share across Streamlit reruns and the
    scheduler thread.

    >>> import tempfile, os
    >>> store = RecordStore(os.path.join(tempfile.mkdtemp(), "t.db"))
    >>> store.init()
    >>> store.put("ewma_store", "net_flow", {"value": 0.1})
    >>> store.get("ewma_store", "net_flow")["value"]
    0.1
    """

    def __init__(self, db_path: str):
        self.db_path = db_path
        self._lock = _lock_for(os.path.abspath(db_path))
        self._schema_ready = False

    # -----------------------------------------------------------------------
    # Connection management
    # -----------------------------------------------------------------------

    def _connect(self) -> sqlite3.Connection:
        db_dir = os.path.dirname(os.path.abspath(self.db_path))
        os.makedirs(db_dir, exist_ok=True)
        conn = sqlite3.connect(self.db_path, check_same_thread=False, isolation_level=None)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode = WAL")
        conn.execute("PRAGMA synchronous = NORMAL")
        if not self._schema_ready:
            conn.executescript(_SCHEMA_SQL)
            self._schema_ready = True
        return conn

    @contextmanager
    def _session(self, write: bool = False) -> Iterator[sqlite3.Connection]:
        """
        Yield a connection; writes run inside BEGIN IMMEDIATE and commit on
        success. Any sqlite3.Error surfaces as PersistenceFailure.
        """
        conn = None
        try:
            conn = self._connect()
            if write:
                conn.execute("BEGIN IMMEDIATE")
            yield conn
            if write:
                conn.execute("COMMIT")
        except (sqlite3.Error, OSError) as exc:
            if conn is not None and write and conn.in_transaction:
                conn.execute("ROLLBACK")
            logger.error("Record store error (%s): %s", self.db_path, exc)
            raise PersistenceFailure(str(exc)) from exc
        except Exception:
            if conn is not None and write and conn.in_transaction:
                conn.execute("ROLLBACK")
            raise
        finally:
            if conn is not None:
                conn.close()

    def init(self) -> None:
        """Create the schema. Safe to call repeatedly."""
        try:
            conn = self._connect()
        except (sqlite3.Error, OSError) as exc:
            logger.error("Schema init failed: %s", exc)
            raise PersistenceFailure(str(exc)) from exc
        try:
            conn.executescript(_SCHEMA_SQL)
            self._schema_ready = True
            logger.info("Record store initialized: %s", self.db_path)
        except (sqlite3.Error, OSError) as exc:
            logger.error("Schema init failed: %s", exc)
            raise PersistenceFailure(str(exc)) from exc
        finally:
            conn.close()

    # -----------------------------------------------------------------------
    # Keyed records
    # -----------------------------------------------------------------------

    def get(self, collection: str, key: str) -> Optional[dict]:
        """Return the record stored under (collection, key), or None."""
        with self._session() as conn:
            row = conn.execute(
                "SELECT data FROM records WHERE collection = ? AND key = ?",
                (collection, key),
            ).fetchone()
        return json.loads(row["data"]) if row else None

    def put(self, collection: str, key: str, record: dict) -> None:
        """Insert or replace a keyed record."""
        with self._lock, self._session(write=True) as conn:
            self._write(conn, collection, key, record)

    @staticmethod
    def _write(conn: sqlite3.Connection, collection: str, key: str, record: dict) -> None:
        conn.execute(
            """
            INSERT INTO records (collection, key, data, updated_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(collection, key) DO UPDATE SET
                data = excluded.data,
                updated_at = excluded.updated_at
            """,
            (collection, key, dumps(record), _now_iso()),
        )

    def update(
        self,
        collection: str,
        key: str,
        fn: Callable[[Optional[dict]], dict],
        events: Optional[Callable[[dict], list[tuple[str, dict]]]] = None,
    ) -> dict:
        """
        Atomic read-modify-write of one keyed record.

        Args:
            collection: Record collection.
            key:        Record key.
            fn:         Receives the current record (None if absent) and
                        returns the record to store.
            events:     Optional callback receiving the new record and
                        returning (collection, record) pairs to append in the
                        same transaction.

        Returns:
            The record as written.
        """
        with self._lock, self._session(write=True) as conn:
            row = conn.execute(
                "SELECT data FROM records WHERE collection = ? AND key = ?",
                (collection, key),
            ).fetchone()
            current = json.loads(row["data"]) if row else None
            new = fn(current)
            self._write(conn, collection, key, new)
            if events is not None:
                for ev_collection, ev_record in events(new):
                    self._append(conn, ev_collection, ev_record)
        return new

    def list_keys(self, collection: str) -> list[dict]:
        """All records of a collection, each with its `key` and `updated_at`."""
        with self._session() as conn:
            rows = conn.execute(
                "SELECT key, data, updated_at FROM records WHERE collection = ? ORDER BY key",
                (collection,),
            ).fetchall()
        out = []
        for row in rows:
            rec = json.loads(row["data"])
            rec["key"] = row["key"]
            rec["updated_at"] = row["updated_at"]
            out.append(rec)
        return out

    # -----------------------------------------------------------------------
    # Append-only events
    # -----------------------------------------------------------------------

    @staticmethod
    def _append(conn: sqlite3.Connection, collection: str, record: dict) -> int:
        cursor = conn.execute(
            "INSERT INTO events (collection, data, ts) VALUES (?, ?, ?)",
            (collection, dumps(record), _now_iso()),
        )
        return int(cursor.lastrowid)

    def append(self, collection: str, record: dict) -> int:
        """Append an audit event. Returns its id."""
        with self._lock, self._session(write=True) as conn:
            return self._append(conn, collection, record)

    def query(
        self,
        collection: str,
        filters: Optional[dict] = None,
        limit: int = 100,
        order: str = "desc",
    ) -> list[dict]:
        """
        Read audit events, newest first by default.

        Args:
            collection: Event collection.
            filters:    Equality filters on top-level JSON fields.
            limit:      Max rows.
            order:      "desc" or "asc" by insertion id.

        Returns:
            List of event dicts, each with `id` and `ts` added.
        """
        direction = "ASC" if str(order).lower() == "asc" else "DESC"
        sql = "SELECT id, data, ts FROM events WHERE collection = ?"
        params: list = [collection]
        for field_name, value in (filters or {}).items():
            sql += " AND json_extract(data, ?) = ?"
            params.extend([f"$.{field_name}", value])
        sql += f" ORDER BY id {direction} LIMIT ?"
        params.append(int(limit))

        with self._session() as conn:
            rows = conn.execute(sql, params).fetchall()
        out = []
        for row in rows:
            rec = json.loads(row["data"])
            rec["id"] = row["id"]
            rec["ts"] = row["ts"]
            out.append(rec)
        return out

    def update_event(self, collection: str, event_id: int, fields: dict) -> bool:
        """Merge fields into one event. Returns False if it does not exist."""
        with self._lock, self._session(write=True) as conn:
            row = conn.execute(
                "SELECT data FROM events WHERE collection = ? AND id = ?",
                (collection, int(event_id)),
            ).fetchone()
            if row is None:
                return False
            data = json.loads(row["data"])
            data.update(fields)
            conn.execute(
                "UPDATE events SET data = ? WHERE id = ?",
                (dumps(data), int(event_id)),
            )
        return True

    def count(self, collection: str) -> int:
        """Number of events in a collection."""
        with self._session() as conn:
            row = conn.execute(
                "SELECT COUNT(*) AS n FROM events WHERE collection = ?",
                (collection,),
            ).fetchone()
        return int(row["n"]) if row else 0

    def status(self) -> str:
        """
        One-line status string for logging and UI display.

        E.g. "void_engine: 7 signals, 3 patterns, 412 events"
        """
        with self._session() as conn:
            sig = conn.execute(
                "SELECT COUNT(*) AS n FROM records WHERE collection = 'ewma_store'"
            ).fetchone()["n"]
            pat = conn.execute(
                "SELECT COUNT(*) AS n FROM records WHERE collection = 'pattern_memory'"
            ).fetchone()["n"]
            ev = conn.execute("SELECT COUNT(*) AS n FROM events").fetchone()["n"]
        return f"void_engine: {sig} signals, {pat} patterns, {ev} events"


class AuditTrail:
    """
    Best-effort audit writer for one analysis request.

    Audit writes must never cost the caller its computed result: failures are
    logged, collected in `errors`, and the analysis carries on.
    """

    def __init__(self, store: Optional[RecordStore]):
        self.store = store
        self.errors: list[str] = []

    def record(self, collection: str, record: dict) -> Optional[int]:
        """Append one audit event. Returns its id, or None if not persisted."""
        if self.store is None:
            return None
        try:
            return self.store.append(collection, record)
        except PersistenceFailure as exc:
            logger.warning("Audit %s not persisted: %s", collection, exc)
            self.errors.append(f"{collection}: {exc}")
            return None
