"""
PostgreSQL entry store.

Entries of every type and origin live in one `srd_entries` table keyed by
(data_type, origin, id); `seq` preserves insertion order. The official replace
runs DELETE + INSERT in a single transaction, serialized per type by an
advisory lock, so concurrent readers and other processes only ever see a
complete collection.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, Optional

from psycopg.rows import dict_row
from psycopg.types.json import Jsonb
from psycopg_pool import ConnectionPool

from srd_engine.config import Settings
from srd_engine.domain.errors import EntryNotFoundError, InvalidArgumentError
from srd_engine.domain.models import DataType, Entry, EntryPartitions, Origin, SyncStatus
from srd_engine.infrastructure.db_factory import get_sync_connection, get_sync_pool
from srd_engine.storage.abstract import AbstractEntryStore, TypeLike
from srd_engine.utils.logging import get_logger

log = get_logger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS srd_entries (
    seq          BIGSERIAL,
    data_type    TEXT        NOT NULL,
    origin       TEXT        NOT NULL,
    id           TEXT        NOT NULL,
    name         TEXT        NOT NULL,
    payload      JSONB       NOT NULL,
    search_text  TEXT        NOT NULL,
    updated_at   TIMESTAMPTZ NOT NULL,
    PRIMARY KEY (data_type, origin, id)
);
CREATE INDEX IF NOT EXISTS srd_entries_order_idx ON srd_entries (data_type, origin, seq);
CREATE TABLE IF NOT EXISTS srd_sync_status (
    data_type        TEXT PRIMARY KEY,
    last_synced_at   TIMESTAMPTZ,
    entry_count      INTEGER NOT NULL DEFAULT 0,
    last_error       TEXT,
    last_attempt_at  TIMESTAMPTZ,
    skipped_records  INTEGER NOT NULL DEFAULT 0
);
"""

_INSERT_SQL = (
    "INSERT INTO srd_entries (data_type, origin, id, name, payload, search_text, updated_at) "
    "VALUES (%s, %s, %s, %s, %s, %s, %s)"
)

_SELECT_COLUMNS = "id, data_type, name, origin, payload, updated_at"


def _row(entry: Entry) -> tuple:
    return (
        entry.data_type.value,
        entry.origin.value,
        entry.id,
        entry.name,
        Jsonb(entry.payload),
        entry.search_text(),
        entry.updated_at,
    )


def _like_pattern(query: str) -> str:
    escaped = query.lower().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def _entry(record: Dict[str, Any]) -> Entry:
    return Entry.model_validate(record)


class PostgresEntryStore(AbstractEntryStore):
    """
    Durable store on PostgreSQL via a psycopg connection pool.
    """

    name: str = "postgres"

    def __init__(
        self,
        dsn_override: Optional[str] = None,
        pool_min_size: int = 1,
        pool_max_size: int = 5,
        create_schema: bool = True,
        settings: Optional[Settings] = None,
    ) -> None:
        self._dsn_override = dsn_override
        self._settings = settings
        # Schema first: an unreachable database fails here, before a pool is opened.
        if create_schema:
            self.ensure_schema()
        if dsn_override:
            self._pool = ConnectionPool(
                conninfo=dsn_override, min_size=pool_min_size, max_size=pool_max_size, open=True
            )
            self._owns_pool = True
        else:
            # The shared pool is sized by DB_POOL_MIN_SIZE / DB_POOL_MAX_SIZE.
            self._pool = get_sync_pool(settings)
            self._owns_pool = False

    def ensure_schema(self) -> None:
        conn = get_sync_connection(self._dsn_override, self._settings)
        try:
            with conn.transaction():
                conn.execute(SCHEMA_SQL)
        finally:
            conn.close()

    # -- official collection -------------------------------------------------

    def upsert_official(self, data_type: TypeLike, entries: Iterable[Entry]) -> int:
        resolved = self._resolve(data_type)
        rows = [_row(e) for e in self._validate_official(resolved, entries)]
        with self._pool.connection() as conn:
            with conn.transaction():
                conn.execute(
                    "SELECT pg_advisory_xact_lock(hashtext(%s))", (f"srd_entries:{resolved.value}",)
                )
                conn.execute(
                    "DELETE FROM srd_entries WHERE data_type = %s AND origin = %s",
                    (resolved.value, Origin.OFFICIAL.value),
                )
                with conn.cursor() as cur:
                    cur.executemany(_INSERT_SQL, rows)
        log.debug("Official collection replaced", extra={"data_type": resolved.value, "rows": len(rows)})
        return len(rows)

    # -- reads ---------------------------------------------------------------

    def search_entries(self, data_type: TypeLike, query: str = "") -> EntryPartitions:
        resolved = self._resolve(data_type)
        sql = f"SELECT {_SELECT_COLUMNS} FROM srd_entries WHERE data_type = %s"
        params: list = [resolved.value]
        if query:
            sql += " AND search_text LIKE %s ESCAPE '\\'"
            params.append(_like_pattern(query))
        sql += " ORDER BY seq"
        with self._pool.connection() as conn:
            # One statement: both partitions come from the same snapshot.
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute(sql, params)
                records = cur.fetchall()
        partitions = EntryPartitions(official=[], custom=[])
        for record in records:
            partitions[record["origin"]].append(_entry(record))
        return partitions

    def get_counts(self, origin: Optional[Origin] = None) -> Dict[DataType, int]:
        sql = "SELECT data_type, count(*) FROM srd_entries"
        params: list = []
        if origin is not None:
            sql += " WHERE origin = %s"
            params.append(origin.value)
        sql += " GROUP BY data_type"
        counts = {data_type: 0 for data_type in DataType}
        with self._pool.connection() as conn:
            for type_value, count in conn.execute(sql, params).fetchall():
                counts[DataType(type_value)] = int(count)
        return counts

    def get_entry(
        self, data_type: TypeLike, entry_id: str, origin: Optional[Origin] = None
    ) -> Optional[Entry]:
        resolved = self._resolve(data_type)
        sql = f"SELECT {_SELECT_COLUMNS} FROM srd_entries WHERE data_type = %s AND id = %s"
        params: list = [resolved.value, entry_id]
        if origin is not None:
            sql += " AND origin = %s"
            params.append(origin.value)
        sql += " ORDER BY origin LIMIT 1"
        with self._pool.connection() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                record = cur.execute(sql, params).fetchone()
        return _entry(record) if record else None

    # -- custom collection ---------------------------------------------------

    def add_custom(self, entry: Entry) -> Entry:
        self._validate_custom(entry)
        with self._pool.connection() as conn:
            inserted = conn.execute(
                _INSERT_SQL + " ON CONFLICT DO NOTHING RETURNING id", _row(entry)
            ).fetchone()
        if inserted is None:
            raise InvalidArgumentError(f"Custom entry {entry.id!r} already exists")
        return entry

    def update_custom(self, entry: Entry) -> Entry:
        self._validate_custom(entry)
        with self._pool.connection() as conn:
            cur = conn.execute(
                "UPDATE srd_entries SET name = %s, payload = %s, search_text = %s, updated_at = %s "
                "WHERE data_type = %s AND origin = %s AND id = %s",
                (
                    entry.name,
                    Jsonb(entry.payload),
                    entry.search_text(),
                    entry.updated_at,
                    entry.data_type.value,
                    Origin.CUSTOM.value,
                    entry.id,
                ),
            )
            if cur.rowcount == 0:
                raise EntryNotFoundError(
                    f"No custom {entry.data_type.value} entry with id {entry.id!r}"
                )
        return entry

    def remove_custom(self, data_type: TypeLike, entry_id: str) -> None:
        resolved = self._resolve(data_type)
        with self._pool.connection() as conn:
            cur = conn.execute(
                "DELETE FROM srd_entries WHERE data_type = %s AND origin = %s AND id = %s",
                (resolved.value, Origin.CUSTOM.value, entry_id),
            )
            if cur.rowcount == 0:
                raise EntryNotFoundError(
                    f"No custom {resolved.value} entry with id {entry_id!r}"
                )

    # -- status --------------------------------------------------------------

    def load_statuses(self) -> Dict[DataType, SyncStatus]:
        with self._pool.connection() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                records = cur.execute("SELECT * FROM srd_sync_status").fetchall()
        statuses: Dict[DataType, SyncStatus] = {}
        for record in records:
            status = SyncStatus.model_validate(record)
            statuses[status.data_type] = status
        return statuses

    def save_status(self, status: SyncStatus) -> None:
        with self._pool.connection() as conn:
            conn.execute(
                "INSERT INTO srd_sync_status "
                "(data_type, last_synced_at, entry_count, last_error, last_attempt_at, skipped_records) "
                "VALUES (%s, %s, %s, %s, %s, %s) "
                "ON CONFLICT (data_type) DO UPDATE SET "
                "last_synced_at = EXCLUDED.last_synced_at, entry_count = EXCLUDED.entry_count, "
                "last_error = EXCLUDED.last_error, last_attempt_at = EXCLUDED.last_attempt_at, "
                "skipped_records = EXCLUDED.skipped_records",
                (
                    status.data_type.value,
                    status.last_synced_at,
                    status.entry_count,
                    status.last_error,
                    status.last_attempt_at,
                    status.skipped_records,
                ),
            )

    def close(self) -> None:
        if self._owns_pool:
            self._pool.close()


__all__ = ["PostgresEntryStore", "SCHEMA_SQL"]
