from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List

import httpx
import pytest

from srd_engine.domain import DataType, Entry, InvalidArgumentError, Origin, SyncStatus
from srd_engine.domain.errors import UpstreamFetchError
from srd_engine.infrastructure.open5e import Open5eClient
from srd_engine.storage.json_file import JsonFileEntryStore
from srd_engine.sync import SyncManager

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)
ALL_PATHS = ["monsters", "races", "classes", "spells", "weapons", "armor", "backgrounds"]


class FrozenClock:
    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> None:
        self.now += timedelta(**delta)


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def manager(memory_store, provider, test_settings, clock) -> SyncManager:
    return SyncManager(memory_store, provider=provider, settings=test_settings, clock=clock)


def _names(store, data_type: DataType, origin: str = "official") -> List[str]:
    return [e.name for e in store.search_entries(data_type)[origin]]


@pytest.mark.asyncio
async def test_sync_data_type_replaces_official_collection_and_records_status(
    manager, memory_store, provider
) -> None:
    result = await manager.sync_data_type("spells")

    assert result["outcome"] == "success"
    assert result["success"] is True
    assert result["count"] == 3
    assert _names(memory_store, DataType.SPELLS) == ["Fireball", "Detect Magic", "Fire Bolt"]
    status = memory_store.load_statuses()[DataType.SPELLS]
    assert status.last_synced_at == NOW
    assert status.entry_count == 3
    assert status.last_error is None
    assert provider.calls == ["spells"]


@pytest.mark.asyncio
async def test_items_are_fed_by_weapons_and_armor(manager, memory_store, provider) -> None:
    result = await manager.sync_data_type(DataType.ITEMS)

    assert result["count"] == 2
    assert provider.calls == ["weapons", "armor"]
    assert _names(memory_store, DataType.ITEMS) == ["Longsword", "Chain Mail"]


@pytest.mark.asyncio
async def test_failed_sync_keeps_previous_collection_and_last_good_status(
    manager, memory_store, provider, clock
) -> None:
    await manager.sync_data_type("monsters")
    before = memory_store.search_entries(DataType.MONSTERS)
    clock.advance(hours=30)
    provider.failures["monsters"] = UpstreamFetchError("GET monsters/ returned HTTP 500")

    result = await manager.sync_data_type("monsters")

    assert result["outcome"] == "failed"
    assert result["success"] is False
    assert "HTTP 500" in result["error"]
    assert memory_store.search_entries(DataType.MONSTERS) == before
    status = memory_store.load_statuses()[DataType.MONSTERS]
    assert status.last_synced_at == NOW
    assert status.entry_count == 3
    assert status.last_error == "GET monsters/ returned HTTP 500"
    assert status.last_attempt_at == NOW + timedelta(hours=30)


@pytest.mark.asyncio
async def test_success_after_failure_clears_last_error(manager, memory_store, provider) -> None:
    provider.failures["races"] = UpstreamFetchError("boom")
    await manager.sync_data_type("races")
    del provider.failures["races"]

    await manager.sync_data_type("races")

    assert memory_store.load_statuses()[DataType.RACES].last_error is None


@pytest.mark.asyncio
async def test_zero_valid_records_is_a_failure_and_does_not_wipe_data(
    manager, memory_store, provider
) -> None:
    await manager.sync_data_type("classes")
    provider.records["classes"] = [{"name": "No slug"}, "garbage"]

    result = await manager.sync_data_type("classes")

    assert result["outcome"] == "failed"
    assert "no valid classes records (2 skipped)" in result["error"]
    assert _names(memory_store, DataType.CLASSES) == ["Wizard"]


@pytest.mark.asyncio
async def test_malformed_records_are_skipped_and_tallied(manager, memory_store, provider) -> None:
    provider.records["spells"].append({"slug": "broken"})

    result = await manager.sync_data_type("spells")

    assert result["outcome"] == "success"
    assert result["count"] == 3
    assert result["skipped_records"] == 1
    assert memory_store.load_statuses()[DataType.SPELLS].skipped_records == 1


@pytest.mark.asyncio
async def test_overflowing_numbers_do_not_fail_the_type(manager, memory_store, provider) -> None:
    provider.records["monsters"].append(
        {"slug": "glitch", "name": "Glitch", "armor_class": float("inf"), "hit_points": float("inf")}
    )

    result = await manager.sync_data_type("monsters")

    assert result["outcome"] == "success"
    assert result["count"] == 4
    assert "Ancient Red Dragon" in _names(memory_store, DataType.MONSTERS)


@pytest.mark.asyncio
async def test_unexpected_provider_errors_are_contained(manager, provider) -> None:
    provider.failures["backgrounds"] = RuntimeError("socket exploded")

    result = await manager.sync_data_type("backgrounds")

    assert result["outcome"] == "failed"
    assert result["error"] == "socket exploded"


@pytest.mark.asyncio
async def test_unknown_type_is_rejected_before_any_fetch(manager, provider) -> None:
    with pytest.raises(InvalidArgumentError):
        await manager.sync_data_type("feats")
    with pytest.raises(InvalidArgumentError):
        await manager.sync_srd_data(types=["spells", "feats"])

    assert provider.calls == []


@pytest.mark.asyncio
async def test_fetch_timeout_fails_the_type_without_hanging_the_sweep(
    memory_store, provider, test_settings, clock
) -> None:
    settings = test_settings.model_copy(update={"sync_type_timeout_seconds": 0.05})
    manager = SyncManager(memory_store, provider=provider, settings=settings, clock=clock)
    provider.gate = asyncio.Event()  # never set: every fetch hangs

    sweep = await manager.sync_srd_data(types=["races", "classes"])

    assert sweep["success"] is False
    assert [r["outcome"] for r in sweep["results"]] == ["failed", "failed"]
    assert sweep["results"][0]["error"] == "sync timed out after 0.05s"
    assert memory_store.load_statuses()[DataType.RACES].last_error == "sync timed out after 0.05s"


@pytest.mark.asyncio
async def test_sweep_runs_types_in_fixed_order_and_isolates_failures(
    manager, memory_store, provider
) -> None:
    provider.failures["classes"] = UpstreamFetchError("classes down")

    sweep = await manager.sync_srd_data(force=True)

    assert [r["type"] for r in sweep["results"]] == [t.value for t in DataType]
    outcomes = {r["type"]: r["outcome"] for r in sweep["results"]}
    assert outcomes.pop("classes") == "failed"
    assert set(outcomes.values()) == {"success"}
    assert sweep["success"] is False
    assert sweep["message"] == "Synced 5, skipped 0, failed 1 of 6 data type(s)"
    assert sweep["counts"]["spells"] == 3
    assert sweep["counts"]["classes"] == 0
    assert provider.calls == ALL_PATHS


@pytest.mark.asyncio
async def test_fresh_types_are_skipped_unless_forced(
    memory_store, provider, test_settings, clock
) -> None:
    fresh = SyncStatus(
        data_type=DataType.SPELLS,
        last_synced_at=NOW - timedelta(hours=1),
        entry_count=42,
        last_attempt_at=NOW - timedelta(hours=1),
    )
    memory_store.save_status(fresh)
    manager = SyncManager(memory_store, provider=provider, settings=test_settings, clock=clock)

    sweep = await manager.sync_srd_data(force=False)

    spells = next(r for r in sweep["results"] if r["type"] == "spells")
    assert spells["outcome"] == "skipped"
    assert spells["success"] is True
    assert spells["count"] == 42
    assert provider.fetch_count("spells") == 0
    assert memory_store.load_statuses()[DataType.SPELLS] == fresh
    assert sweep["success"] is True

    await manager.sync_srd_data(force=True, types=["spells"])

    assert provider.fetch_count("spells") == 1
    assert memory_store.load_statuses()[DataType.SPELLS].last_synced_at == NOW


@pytest.mark.asyncio
async def test_stale_types_are_refetched(memory_store, provider, test_settings, clock) -> None:
    memory_store.save_status(
        SyncStatus(data_type=DataType.RACES, last_synced_at=NOW - timedelta(hours=25), entry_count=1)
    )
    manager = SyncManager(memory_store, provider=provider, settings=test_settings, clock=clock)

    sweep = await manager.sync_srd_data(force=False, types=["races"])

    assert sweep["results"][0]["outcome"] == "success"
    assert provider.fetch_count("races") == 1


@pytest.mark.asyncio
async def test_concurrent_syncs_of_the_same_type_share_one_fetch(manager, provider) -> None:
    provider.gate = asyncio.Event()

    first = asyncio.create_task(manager.sync_data_type("spells"))
    second = asyncio.create_task(manager.sync_data_type("spell"))
    await asyncio.sleep(0.01)
    assert manager.in_progress() == [DataType.SPELLS]
    provider.gate.set()
    results = await asyncio.gather(first, second)

    assert provider.fetch_count("spells") == 1
    assert results[0] == results[1]
    assert manager.in_progress() == []


@pytest.mark.asyncio
async def test_sweep_joins_an_in_flight_single_type_sync(manager, provider) -> None:
    provider.gate = asyncio.Event()
    single = asyncio.create_task(manager.sync_data_type("monsters"))
    await asyncio.sleep(0)

    sweep_task = asyncio.create_task(manager.sync_srd_data(force=True))
    await asyncio.sleep(0)
    provider.gate.set()
    single_result, sweep = await asyncio.gather(single, sweep_task)

    assert provider.fetch_count("monsters") == 1
    assert sweep["results"][0] == single_result


@pytest.mark.asyncio
async def test_distinct_types_sync_concurrently(manager, provider) -> None:
    provider.gate = asyncio.Event()

    tasks = [asyncio.create_task(manager.sync_data_type(t)) for t in ("races", "classes")]
    await asyncio.sleep(0.01)

    # Both fetches started before either was allowed to finish.
    assert sorted(provider.calls) == ["classes", "races"]
    provider.gate.set()
    results = await asyncio.gather(*tasks)
    assert all(r["success"] for r in results)


@pytest.mark.asyncio
async def test_cancelled_caller_does_not_abort_shared_sync(manager, provider, memory_store) -> None:
    provider.gate = asyncio.Event()
    first = asyncio.create_task(manager.sync_data_type("backgrounds"))
    await asyncio.sleep(0)
    second = asyncio.create_task(manager.sync_data_type("backgrounds"))
    await asyncio.sleep(0)

    first.cancel()
    provider.gate.set()
    result = await second

    assert first.cancelled()
    assert result["success"] is True
    assert _names(memory_store, DataType.BACKGROUNDS) == ["Acolyte"]


@pytest.mark.asyncio
async def test_initialize_is_idempotent(manager, memory_store, provider) -> None:
    first = await manager.initialize_srd_database()
    statuses_after_first = memory_store.load_statuses()
    counts_after_first = memory_store.get_counts()
    calls_after_first = list(provider.calls)

    second = await manager.initialize_srd_database()

    assert first["success"] is True
    assert len(first["results"]) == len(DataType)
    assert second["results"] == []
    assert second["message"] == "SRD database already initialized"
    assert provider.calls == calls_after_first
    assert memory_store.load_statuses() == statuses_after_first
    assert memory_store.get_counts() == counts_after_first


@pytest.mark.asyncio
async def test_initialize_syncs_only_unpopulated_types(manager, memory_store, provider) -> None:
    await manager.sync_data_type("monsters")
    provider.calls.clear()

    sweep = await manager.initialize_srd_database()

    assert "monsters" not in provider.calls
    assert [r["type"] for r in sweep["results"]] == [
        "races",
        "classes",
        "spells",
        "items",
        "backgrounds",
    ]


@pytest.mark.asyncio
async def test_custom_entries_alone_do_not_count_as_initialized(
    manager, memory_store, provider
) -> None:
    memory_store.add_custom(Entry.new_custom(DataType.SPELLS, "Homebrew Bolt", {"level": 1}))

    sweep = await manager.initialize_srd_database()

    assert "spells" in [r["type"] for r in sweep["results"]]
    assert _names(memory_store, DataType.SPELLS, "custom") == ["Homebrew Bolt"]


@pytest.mark.asyncio
async def test_get_sync_status_reports_counts_freshness_and_errors(
    manager, memory_store, provider, clock
) -> None:
    status = manager.get_sync_status()
    assert status["needs_sync"] is True
    assert status["last_synced_at"] is None
    assert status["types"]["spells"]["last_synced_at"] is None

    provider.failures["classes"] = UpstreamFetchError("classes down")
    await manager.sync_srd_data(force=True)
    memory_store.add_custom(Entry.new_custom(DataType.SPELLS, "Homebrew Bolt", {}))
    clock.advance(hours=2)

    status = manager.get_sync_status()

    assert status["official_counts"]["spells"] == 3
    assert status["custom_counts"]["spells"] == 1
    assert status["counts"]["spells"] == 4
    assert status["types"]["spells"]["age_hours"] == 2.0
    assert status["types"]["spells"]["fresh"] is True
    assert status["types"]["classes"]["last_error"] == "classes down"
    assert status["types"]["classes"]["fresh"] is False
    assert status["needs_sync"] is True
    assert status["last_synced_at"] == NOW.isoformat()
    assert status["in_progress"] == []
    assert provider.calls.count("spells") == 1


@pytest.mark.asyncio
async def test_status_survives_restart_with_json_store(tmp_path: Path, provider, test_settings, clock) -> None:
    async with SyncManager(
        JsonFileEntryStore(tmp_path), provider=provider, settings=test_settings, clock=clock
    ) as first:
        await first.sync_srd_data(force=True, types=["spells"])

    restarted = SyncManager(
        JsonFileEntryStore(tmp_path), provider=provider, settings=test_settings, clock=clock
    )
    sweep = await restarted.sync_srd_data(force=False, types=["spells"])

    assert sweep["results"][0]["outcome"] == "skipped"
    assert provider.fetch_count("spells") == 1
    assert restarted.get_sync_status()["types"]["spells"]["entry_count"] == 3


def _spells_transport(records: List[Dict[str, Any]], state: Dict[str, bool]) -> httpx.MockTransport:
    base = "https://open5e.test/v1/spells/"

    def handler(request: httpx.Request) -> httpx.Response:
        page = int(request.url.params.get("page", "1"))
        if page == 2 and state["fail_page_two"]:
            return httpx.Response(500, json={"detail": "upstream exploded"})
        chunk = records[(page - 1) * 2 : page * 2]
        has_next = page * 2 < len(records)
        return httpx.Response(
            200,
            json={
                "count": len(records),
                "next": f"{base}?limit=2&page={page + 1}" if has_next else None,
                "results": chunk,
            },
        )

    return httpx.MockTransport(handler)


@pytest.mark.asyncio
async def test_failure_on_page_two_leaves_stored_collection_byte_for_byte_unchanged(
    tmp_path: Path, sample_records, test_settings, clock
) -> None:
    state = {"fail_page_two": False}
    client = Open5eClient(
        base_url="https://open5e.test/v1",
        page_size=2,
        page_delay_seconds=0,
        retry_attempts=2,
        retry_backoff_seconds=0,
        transport=_spells_transport(sample_records["spells"], state),
    )
    store = JsonFileEntryStore(tmp_path)
    async with SyncManager(store, provider=client, settings=test_settings, clock=clock) as manager:
        await manager.sync_data_type("spells")
        official_file = tmp_path / "official" / "spells.json"
        before_bytes = official_file.read_bytes()
        before = store.search_entries(DataType.SPELLS)

        # Upstream renames an entry, then breaks on the second page.
        sample_records["spells"][0]["name"] = "Fireball (revised)"
        state["fail_page_two"] = True
        clock.advance(hours=1)
        result = await manager.sync_data_type("spells")

        assert result["outcome"] == "failed"
        assert official_file.read_bytes() == before_bytes
        assert store.search_entries(DataType.SPELLS) == before
    await client.aclose()


@pytest.mark.asyncio
async def test_aclose_closes_only_an_owned_provider(memory_store, provider, test_settings) -> None:
    shared = SyncManager(memory_store, provider=provider, settings=test_settings)
    await shared.aclose()
    assert provider.closed is False

    owning = SyncManager(memory_store, settings=test_settings)
    await owning.aclose()
    assert owning._provider._client.is_closed  # type: ignore[attr-defined]


@pytest.mark.asyncio
async def test_custom_entries_survive_every_sync(manager, memory_store) -> None:
    mine = memory_store.add_custom(Entry.new_custom(DataType.MONSTERS, "Tarrasque Jr.", {}))

    await manager.sync_srd_data(force=True)
    await manager.sync_srd_data(force=True)

    assert memory_store.search_entries(DataType.MONSTERS)["custom"] == [mine]
    assert memory_store.get_counts(Origin.OFFICIAL)[DataType.MONSTERS] == 3


@pytest.mark.asyncio
async def test_status_write_failures_do_not_abort_the_sweep(
    manager, memory_store, provider, monkeypatch
) -> None:
    def disk_full(status):
        raise OSError("disk full")

    monkeypatch.setattr(memory_store, "save_status", disk_full)
    provider.failures["classes"] = UpstreamFetchError("classes down")

    sweep = await manager.sync_srd_data(force=True)

    assert [r["type"] for r in sweep["results"]] == [t.value for t in DataType]
    outcomes = {r["type"]: r["outcome"] for r in sweep["results"]}
    assert outcomes.pop("classes") == "failed"
    assert set(outcomes.values()) == {"success"}
    spells = next(r for r in sweep["results"] if r["type"] == "spells")
    assert spells["message"] == "spells synced; status not saved: disk full"
    assert sweep["counts"]["spells"] == 3
    assert manager.get_sync_status()["types"]["spells"]["entry_count"] == 3
