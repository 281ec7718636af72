# =============================================================================
# ministry_core/offline/local_mirror.py
# Local SQLite mirror of the backend collections
# =============================================================================
"""
LocalMirror - on-device keyed record store used for offline-tolerant reads.

Features:
- One table per mirrored collection, versioned schema migrations
- Upsert (bulk_put), exact snapshot replace (clear + bulk_put in one transaction)
- Reactive standing queries (LiveQuery) refreshed after every write
- DataFrame integration (pandas) for aggregation screens

The mirror has no tombstones and no merge logic: a row is either absent or
the latest value this device observed. Referential integrity is not
enforced; a log pointing at a deleted member is kept as-is.
"""

from __future__ import annotations
import dataclasses
import json
import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date, datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

import numpy as np
import pandas as pd

from ministry_core.data.filters import Filter, RowPredicate
from ministry_core.data.models import (
    CollectionSpec,
    Profile,
    Record,
    RecordId,
    get_collection,
)
from ministry_core.errors import MirrorWriteError
from ministry_core.logging import get_logger
from ministry_core.offline.live_query import LiveQuery

logger = get_logger(__name__)


def _table_ddl(name: str) -> List[str]:
    return [
        f"""
        CREATE TABLE IF NOT EXISTS {name} (
            record_key TEXT PRIMARY KEY,
            unit_id TEXT,
            synced INTEGER NOT NULL DEFAULT 0,
            payload TEXT NOT NULL
        )
        """,
        f"CREATE INDEX IF NOT EXISTS idx_{name}_unit ON {name}(unit_id)",
    ]


_V1_TABLES = ("members", "attendance_logs", "inventory", "finances", "requests", "performance", "souls")
_V2_TABLES = ("units", "subunits")

# version -> statements; applied in order by initialize()
MIGRATIONS: Dict[int, List[str]] = {
    1: [stmt for name in _V1_TABLES for stmt in _table_ddl(name)] + [
        """
        CREATE TABLE IF NOT EXISTS mirror_sequences (
            collection TEXT PRIMARY KEY,
            last_id INTEGER NOT NULL
        )
        """,
        """
        CREATE TABLE IF NOT EXISTS app_settings (
            key TEXT PRIMARY KEY,
            value TEXT,
            updated_at TEXT DEFAULT CURRENT_TIMESTAMP
        )
        """,
    ],
    2: [stmt for name in _V2_TABLES for stmt in _table_ddl(name)],
    3: [
        f"ALTER TABLE {name} ADD COLUMN updated_at TEXT"
        for name in _V1_TABLES + _V2_TABLES
    ],
}

SCHEMA_VERSION = max(MIGRATIONS)


def _json_default(value: Any) -> Any:
    """Make numpy / datetime values JSON serializable."""
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, np.integer):
        return int(value)
    if isinstance(value, np.floating):
        return float(value)
    if isinstance(value, np.bool_):
        return bool(value)
    if isinstance(value, np.ndarray):
        return value.tolist()
    raise TypeError(f"{type(value).__name__} is not JSON serializable")


def _sort_key(key: str):
    return (0, int(key), "") if key.isdigit() else (1, 0, key)


@dataclass
class MirrorWriteReport:
    """Outcome of one bulk write."""
    collection: str
    written: int = 0
    removed: int = 0
    stale_keys: List[str] = field(default_factory=list)


class LocalMirror:
    """
    Process-wide local store with an explicit lifecycle.

    Usage:
        mirror = LocalMirror(config.mirror_path)
        mirror.initialize()          # session start
        mirror.bulk_put("members", members)
        live = mirror.query("members", Filter.eq("unit_id", "u1"))
        mirror.close()               # logout
    """

    def __init__(self, db_path: Union[str, Path]):
        self.db_path = Path(db_path)
        self._local = threading.local()
        self._initialized = False
        self._closed = False
        self._live_queries: Dict[str, List[LiveQuery]] = {}

    # =========================================================================
    # CONNECTION & SCHEMA
    # =========================================================================

    def _get_connection(self) -> sqlite3.Connection:
        """Get thread-local database connection."""
        if self._closed:
            raise MirrorWriteError("Local mirror is closed")
        if getattr(self._local, "connection", None) is None:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._local.connection = sqlite3.connect(str(self.db_path), check_same_thread=False)
            self._local.connection.row_factory = sqlite3.Row
        return self._local.connection

    @contextmanager
    def transaction(self):
        """Context manager for database transactions."""
        conn = self._get_connection()
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise MirrorWriteError(f"Local mirror write failed: {e}") from e
        except Exception:
            conn.rollback()
            raise

    @property
    def schema_version(self) -> int:
        return self._get_connection().execute("PRAGMA user_version").fetchone()[0]

    def initialize(self) -> None:
        """Open the store and apply pending schema migrations."""
        if self._initialized:
            return

        current = self.schema_version
        if current > SCHEMA_VERSION:
            raise MirrorWriteError(
                f"Mirror schema v{current} is newer than supported v{SCHEMA_VERSION}",
                details={"path": str(self.db_path)},
            )

        for version in range(current + 1, SCHEMA_VERSION + 1):
            with self.transaction() as conn:
                for statement in MIGRATIONS[version]:
                    conn.execute(statement)
                conn.execute(f"PRAGMA user_version = {version}")
            logger.debug(f"Mirror schema migrated to v{version}")

        self._initialized = True
        logger.info(f"Local mirror ready at {self.db_path} (schema v{SCHEMA_VERSION})")

    @property
    def is_open(self) -> bool:
        return self._initialized and not self._closed

    def close(self) -> None:
        """Tear down: close live queries and the connection."""
        if self._closed:
            return
        for queries in list(self._live_queries.values()):
            for live_query in list(queries):
                live_query.close()
        self._live_queries.clear()
        connection = getattr(self._local, "connection", None)
        if connection is not None:
            connection.close()
            self._local.connection = None
        self._closed = True
        logger.info(f"Local mirror closed: {self.db_path}")

    # =========================================================================
    # HELPERS
    # =========================================================================

    @staticmethod
    def _spec(collection: str) -> CollectionSpec:
        spec = get_collection(collection)
        if not spec.mirrored:
            raise MirrorWriteError(f"{collection} is not mirrored locally", collection=collection)
        return spec

    @staticmethod
    def _as_record(spec: CollectionSpec, item: Union[Record, Dict[str, Any]]) -> Record:
        if isinstance(item, Record):
            return dataclasses.replace(item, extra=dict(item.extra))
        return spec.record_type.from_row(item)

    def _next_id(self, conn: sqlite3.Connection, collection: str) -> int:
        row = conn.execute(
            "SELECT last_id FROM mirror_sequences WHERE collection = ?", [collection]
        ).fetchone()
        next_id = (row["last_id"] if row else 0) + 1
        self._bump_sequence(conn, collection, next_id)
        return next_id

    @staticmethod
    def _bump_sequence(conn: sqlite3.Connection, collection: str, record_id: int) -> None:
        conn.execute(
            """
            INSERT INTO mirror_sequences (collection, last_id) VALUES (?, ?)
            ON CONFLICT(collection) DO UPDATE SET last_id = MAX(last_id, excluded.last_id)
            """,
            [collection, record_id],
        )

    def _write(
        self,
        conn: sqlite3.Connection,
        spec: CollectionSpec,
        items: Iterable[Union[Record, Dict[str, Any]]],
        report: MirrorWriteReport,
        previous: Optional[Dict[str, str]] = None,
    ) -> None:
        previous = previous or {}
        for item in items:
            record = self._as_record(spec, item)

            if record.id is None:
                if not spec.auto_increment:
                    raise MirrorWriteError(
                        f"{spec.name} record has no id",
                        collection=spec.name,
                    )
                record.id = self._next_id(conn, spec.name)
            elif spec.auto_increment and isinstance(record.id, int):
                self._bump_sequence(conn, spec.name, record.id)

            key = record.key
            if record.updated_at:
                row = conn.execute(
                    f"SELECT updated_at FROM {spec.name} WHERE record_key = ?", [key]
                ).fetchone()
                stored_at = row["updated_at"] if row else previous.get(key)
                if stored_at and stored_at > record.updated_at:
                    # Last write still wins; the conflict is only reported
                    report.stale_keys.append(key)
                    logger.warning(
                        f"Stale write on {spec.name}/{key}: "
                        f"{record.updated_at} older than {stored_at}"
                    )

            conn.execute(
                f"""
                INSERT OR REPLACE INTO {spec.name}
                    (record_key, unit_id, synced, updated_at, payload)
                VALUES (?, ?, ?, ?, ?)
                """,
                [
                    key,
                    record.unit_id,
                    1 if record.synced else 0,
                    record.updated_at,
                    json.dumps(record.to_local(), default=_json_default),
                ],
            )
            report.written += 1

    def _matching_keys(
        self,
        conn: sqlite3.Connection,
        spec: CollectionSpec,
        where: Union[Filter, RowPredicate, None],
    ) -> List[str]:
        rows = conn.execute(f"SELECT record_key, payload FROM {spec.name}").fetchall()
        if where is None:
            return [row["record_key"] for row in rows]
        return [
            row["record_key"]
            for row in rows
            if self._row_matches(json.loads(row["payload"]), where)
        ]

    @staticmethod
    def _row_matches(row: Dict[str, Any], where: Union[Filter, RowPredicate, None]) -> bool:
        if where is None:
            return True
        if isinstance(where, Filter):
            return where.matches(row)
        return bool(where(row))

    @staticmethod
    def _updated_at_by_key(conn: sqlite3.Connection, spec: CollectionSpec) -> Dict[str, str]:
        rows = conn.execute(
            f"SELECT record_key, updated_at FROM {spec.name} WHERE updated_at IS NOT NULL"
        ).fetchall()
        return {row["record_key"]: row["updated_at"] for row in rows}

    def _delete_keys(self, conn: sqlite3.Connection, spec: CollectionSpec, keys: List[str]) -> int:
        removed = 0
        for key in keys:
            removed += conn.execute(
                f"DELETE FROM {spec.name} WHERE record_key = ?", [key]
            ).rowcount
        return removed

    # =========================================================================
    # WRITES
    # =========================================================================

    def bulk_put(
        self,
        collection: str,
        records: Iterable[Union[Record, Dict[str, Any]]],
    ) -> MirrorWriteReport:
        """
        Upsert by primary key. Rows absent from the batch are kept; duplicate
        keys within the batch resolve to the last one.
        """
        spec = self._spec(collection)
        report = MirrorWriteReport(collection)
        with self.transaction() as conn:
            self._write(conn, spec, records, report)
        self._notify(collection)
        return report

    def put(self, collection: str, record: Union[Record, Dict[str, Any]]) -> Record:
        """Upsert one record and return it as stored (id assigned if needed)."""
        spec = self._spec(collection)
        stored = self._as_record(spec, record)
        report = MirrorWriteReport(collection)
        with self.transaction() as conn:
            if stored.id is None and spec.auto_increment:
                stored.id = self._next_id(conn, collection)
            self._write(conn, spec, [stored], report)
        self._notify(collection)
        return stored

    def clear(self, collection: str, where: Union[Filter, RowPredicate, None] = None) -> int:
        """Remove every row (or every row matching ``where``)."""
        spec = self._spec(collection)
        with self.transaction() as conn:
            if where is None:
                removed = conn.execute(f"DELETE FROM {spec.name}").rowcount
            else:
                removed = self._delete_keys(conn, spec, self._matching_keys(conn, spec, where))
        self._notify(collection)
        return removed

    def replace(
        self,
        collection: str,
        records: Iterable[Union[Record, Dict[str, Any]]],
        where: Union[Filter, RowPredicate, None] = None,
    ) -> MirrorWriteReport:
        """
        Make the collection (or the ``where`` slice of it) exactly match a
        remote snapshot: clear + bulk_put inside one transaction.
        """
        spec = self._spec(collection)
        report = MirrorWriteReport(collection)
        with self.transaction() as conn:
            previous = self._updated_at_by_key(conn, spec)
            if where is None:
                report.removed = conn.execute(f"DELETE FROM {spec.name}").rowcount
            else:
                report.removed = self._delete_keys(conn, spec, self._matching_keys(conn, spec, where))
            self._write(conn, spec, records, report, previous)
        self._notify(collection)
        return report

    def delete(self, collection: str, record_id: RecordId) -> bool:
        """Delete one row."""
        return self.bulk_delete(collection, [record_id]) > 0

    def bulk_delete(self, collection: str, record_ids: Iterable[RecordId]) -> int:
        """Delete rows by id; unknown ids are ignored."""
        spec = self._spec(collection)
        keys = [str(record_id) for record_id in record_ids if record_id is not None]
        with self.transaction() as conn:
            removed = self._delete_keys(conn, spec, keys)
        self._notify(collection)
        return removed

    # =========================================================================
    # READS
    # =========================================================================

    def get(self, collection: str, record_id: RecordId) -> Optional[Record]:
        """Get a record by id, or None when absent."""
        spec = self._spec(collection)
        row = self._get_connection().execute(
            f"SELECT payload FROM {spec.name} WHERE record_key = ?", [str(record_id)]
        ).fetchone()
        if row is None:
            return None
        return spec.record_type.from_row(json.loads(row["payload"]))

    def select(
        self,
        collection: str,
        where: Union[Filter, RowPredicate, None] = None,
        *,
        scope: Optional[Profile] = None,
    ) -> List[Record]:
        """Synchronous snapshot of the matching rows, ordered by id."""
        spec = self._spec(collection)
        sql = f"SELECT record_key, payload FROM {spec.name}"
        params: List[Any] = []

        if scope is not None and spec.unit_scoped and not scope.is_executive:
            if scope.unit_id is None:
                return []
            sql += " WHERE unit_id = ?"
            params.append(scope.unit_id)

        rows = self._get_connection().execute(sql, params).fetchall()
        rows = sorted(rows, key=lambda r: _sort_key(r["record_key"]))

        records = []
        for row in rows:
            payload = json.loads(row["payload"])
            if self._row_matches(payload, where):
                records.append(spec.record_type.from_row(payload))
        return records

    def count(self, collection: str) -> int:
        spec = self._spec(collection)
        row = self._get_connection().execute(f"SELECT COUNT(*) AS count FROM {spec.name}").fetchone()
        return row["count"]

    def query(
        self,
        collection: str,
        where: Union[Filter, RowPredicate, None] = None,
        *,
        scope: Optional[Profile] = None,
    ) -> LiveQuery:
        """Standing query re-evaluated after every write to ``collection``."""
        self._spec(collection)
        live_query = LiveQuery(self, collection, where, scope)
        self._live_queries.setdefault(collection, []).append(live_query)
        return live_query

    def _detach(self, live_query: LiveQuery) -> None:
        queries = self._live_queries.get(live_query.collection, [])
        if live_query in queries:
            queries.remove(live_query)

    def _notify(self, collection: str) -> None:
        for live_query in list(self._live_queries.get(collection, [])):
            try:
                live_query.refresh()
            except Exception as e:
                logger.error(f"Error refreshing live query on {collection}: {e}")

    # =========================================================================
    # PANDAS INTEGRATION
    # =========================================================================

    def to_dataframe(
        self,
        collection: str,
        where: Union[Filter, RowPredicate, None] = None,
        *,
        scope: Optional[Profile] = None,
    ) -> pd.DataFrame:
        """Load a collection into a DataFrame (one column per field)."""
        records = self.select(collection, where, scope=scope)
        return pd.DataFrame([record.to_local() for record in records])

    def bulk_put_dataframe(self, collection: str, df: pd.DataFrame) -> MirrorWriteReport:
        """Upsert DataFrame rows; NaN becomes None, numpy scalars become Python values."""
        clean = df.astype(object).replace({np.nan: None})
        rows = []
        for row in clean.to_dict(orient="records"):
            rows.append({k: _json_default(v) if isinstance(v, (np.generic, datetime, date)) else v
                         for k, v in row.items()})
        return self.bulk_put(collection, rows)

    # =========================================================================
    # SETTINGS
    # =========================================================================

    def get_setting(self, key: str, default: Any = None) -> Any:
        row = self._get_connection().execute(
            "SELECT value FROM app_settings WHERE key = ?", [key]
        ).fetchone()
        if row is None:
            return default
        try:
            return json.loads(row["value"])
        except json.JSONDecodeError:
            return row["value"]

    def set_setting(self, key: str, value: Any) -> None:
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO app_settings (key, value, updated_at)
                VALUES (?, ?, ?)
                """,
                [key, json.dumps(value, default=_json_default), datetime.now().isoformat()],
            )
