"""
Integration tests for the PostgreSQL entry store.

These tests run against a real PostgreSQL instance and verify that:
1. Official replaces are atomic and never touch custom entries
2. Search is a case-insensitive substring match that keeps insertion order
3. Sync status rows round-trip
4. A full sync through the manager lands in the database

Run with: RUN_INTEGRATION_TESTS=1 pytest tests/integration/
"""

from __future__ import annotations

import os
from datetime import datetime, timezone
from typing import Iterator

import psycopg
import pytest

from srd_engine.domain import (
    DataType,
    Entry,
    EntryNotFoundError,
    InvalidArgumentError,
    Origin,
    SyncStatus,
)
from srd_engine.storage.postgres import PostgresEntryStore
from srd_engine.sync import SyncManager

pytestmark = pytest.mark.skipif(
    os.getenv("RUN_INTEGRATION_TESTS", "0") != "1",
    reason="Integration tests require RUN_INTEGRATION_TESTS=1 and reachable Postgres",
)


@pytest.fixture
def pg_store(test_dsn: str) -> Iterator[PostgresEntryStore]:
    try:
        store = PostgresEntryStore(dsn_override=test_dsn, pool_max_size=2)
    except psycopg.OperationalError as exc:
        pytest.skip(f"Database not available for integration tests: {exc}")
    with psycopg.connect(test_dsn) as conn:
        conn.execute("TRUNCATE srd_entries, srd_sync_status RESTART IDENTITY")
    try:
        yield store
    finally:
        store.close()


def _official(slug: str, name: str, **payload) -> Entry:
    return Entry(
        id=f"open5e_{slug}", data_type=DataType.MONSTERS, name=name, origin=Origin.OFFICIAL, payload=payload
    )


def test_upsert_official_replaces_only_official(pg_store: PostgresEntryStore) -> None:
    mine = pg_store.add_custom(Entry.new_custom(DataType.MONSTERS, "Owlbear Cub", {}))
    pg_store.upsert_official(DataType.MONSTERS, [_official("old", "Old Monster")])

    written = pg_store.upsert_official(
        DataType.MONSTERS,
        [_official("ancient-red-dragon", "Ancient Red Dragon"), _official("goblin", "Goblin")],
    )

    found = pg_store.search_entries(DataType.MONSTERS)
    assert written == 2
    assert [e.name for e in found["official"]] == ["Ancient Red Dragon", "Goblin"]
    assert found["custom"] == [mine]
    assert pg_store.get_counts()[DataType.MONSTERS] == 3
    assert pg_store.get_counts(Origin.OFFICIAL)[DataType.MONSTERS] == 2


@pytest.mark.parametrize("query, hits", [("red", 1), ("RED", 1), ("dragon", 1), ("blue", 0), ("100%", 0)])
def test_search_is_case_insensitive_substring(pg_store: PostgresEntryStore, query: str, hits: int) -> None:
    pg_store.upsert_official(DataType.MONSTERS, [_official("ancient-red-dragon", "Ancient Red Dragon")])

    assert len(pg_store.search_entries(DataType.MONSTERS, query)["official"]) == hits


def test_rejected_upsert_leaves_previous_collection(pg_store: PostgresEntryStore) -> None:
    pg_store.upsert_official(DataType.MONSTERS, [_official("goblin", "Goblin")])

    with pytest.raises(InvalidArgumentError):
        pg_store.upsert_official(DataType.MONSTERS, [_official("a", "A"), _official("a", "A")])

    assert [e.name for e in pg_store.search_entries(DataType.MONSTERS)["official"]] == ["Goblin"]


def test_custom_crud_and_errors(pg_store: PostgresEntryStore) -> None:
    entry = pg_store.add_custom(Entry.new_custom(DataType.SPELLS, "Homebrew Bolt", {"level": 1}))

    with pytest.raises(InvalidArgumentError):
        pg_store.add_custom(entry)

    pg_store.update_custom(entry.model_copy(update={"name": "Homebrew Blast"}))
    assert pg_store.get_entry(DataType.SPELLS, entry.id).name == "Homebrew Blast"

    pg_store.remove_custom(DataType.SPELLS, entry.id)
    with pytest.raises(EntryNotFoundError):
        pg_store.remove_custom(DataType.SPELLS, entry.id)


def test_status_round_trip(pg_store: PostgresEntryStore) -> None:
    status = SyncStatus(
        data_type=DataType.SPELLS,
        last_synced_at=datetime(2024, 6, 1, tzinfo=timezone.utc),
        entry_count=319,
        last_error=None,
    )

    pg_store.save_status(status)
    pg_store.save_status(status.model_copy(update={"entry_count": 320}))

    assert pg_store.load_statuses()[DataType.SPELLS].entry_count == 320


@pytest.mark.asyncio
async def test_full_sweep_into_postgres(pg_store: PostgresEntryStore, provider, test_settings) -> None:
    async with SyncManager(pg_store, provider=provider, settings=test_settings) as manager:
        first = await manager.initialize_srd_database()
        second = await manager.initialize_srd_database()

    assert first["success"] is True
    assert second["results"] == []
    assert pg_store.get_counts(Origin.OFFICIAL)[DataType.ITEMS] == 2
