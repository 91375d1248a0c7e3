"""
Sync manager for the SRD engine.

Keeps the official collections current against the content provider and
exposes sync status.

Usage:
    from srd_engine.storage import create_store
    from srd_engine.sync import SyncManager

    async with SyncManager(create_store()) as manager:
        sweep = await manager.sync_srd_data(force=False)
        print(sweep["message"])

Each type sync fetches every page of every endpoint feeding the type before
anything is written; a failure anywhere (transport, status, timeout, zero
valid records) leaves the previous official collection untouched and is
recorded in the type's status instead of being raised. Only one sync per type
runs at a time: a second request for a type already in flight awaits the
running sync and returns its result.
"""

from __future__ import annotations

import asyncio
import time
from datetime import datetime, timedelta
from functools import partial
from typing import Callable, Dict, Iterable, List, Optional

from srd_engine.config import Settings, get_settings
from srd_engine.domain.errors import UpstreamFetchError
from srd_engine.domain.models import (
    DataType,
    GlobalStatus,
    Origin,
    SweepResult,
    SyncOutcome,
    SyncResult,
    utcnow,
)
from srd_engine.infrastructure.open5e import ContentProvider, Open5eClient
from srd_engine.storage.abstract import EntryStore, TypeLike
from srd_engine.sync.normalizers import ENDPOINTS, NormalizationReport, normalize_records
from srd_engine.sync.status import StatusTable
from srd_engine.utils.logging import get_logger

log = get_logger(__name__)

Clock = Callable[[], datetime]


def _describe(exc: BaseException, timeout_seconds: float) -> str:
    if isinstance(exc, asyncio.TimeoutError):
        return f"sync timed out after {timeout_seconds:g}s"
    text = str(exc)
    return text if text else type(exc).__name__


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


class SyncManager:
    """
    Orchestrates provider fetches, normalization and official replaces.

    Parameters
    ----------
    store : EntryStore
        Storage backend holding entries and status records.
    provider : ContentProvider | None
        Record source. Defaults to an Open5eClient owned (and closed) by the
        manager.
    settings : Settings | None
        Defaults to the cached application settings.
    clock : callable | None
        Returns the current UTC time; injectable for tests.
    """

    def __init__(
        self,
        store: EntryStore,
        provider: Optional[ContentProvider] = None,
        settings: Optional[Settings] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._store = store
        self._owns_provider = provider is None
        self._provider: ContentProvider = provider or Open5eClient.from_settings(self._settings)
        self._clock: Clock = clock or utcnow
        self._status = StatusTable(store)
        # Arena of in-flight syncs, one slot per type.
        self._inflight: Dict[DataType, "asyncio.Task[SyncResult]"] = {}

    async def __aenter__(self) -> "SyncManager":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Wait for in-flight syncs, then release the provider if owned."""
        pending = list(self._inflight.values())
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        if self._owns_provider:
            await self._provider.aclose()

    @property
    def freshness_window(self) -> timedelta:
        return timedelta(hours=self._settings.sync_freshness_hours)

    def in_progress(self) -> List[DataType]:
        return [data_type for data_type in DataType if data_type in self._inflight]

    # -- single type ---------------------------------------------------------

    async def sync_data_type(self, data_type: TypeLike) -> SyncResult:
        """
        Fetch, normalize and replace the official collection of one type.

        Always fetches (no freshness check). Never raises for fetch or
        normalization failures; those come back as a `failed` result.

        Raises
        ------
        InvalidArgumentError
            If `data_type` is not one of the fixed data types.
        """
        resolved = DataType.parse(data_type)
        task = self._inflight.get(resolved)
        if task is None:
            task = asyncio.get_running_loop().create_task(
                self._run_sync(resolved), name=f"srd-sync-{resolved.value}"
            )
            self._inflight[resolved] = task
            task.add_done_callback(partial(self._forget, resolved))
        else:
            log.info(
                f"[SYNC JOIN] {resolved.value} already in flight, awaiting it",
                extra={"data_type": resolved.value},
            )
        # Shielded so a cancelled caller does not abort a sync other callers share.
        return await asyncio.shield(task)

    def _forget(self, data_type: DataType, task: "asyncio.Task[SyncResult]") -> None:
        if self._inflight.get(data_type) is task:
            del self._inflight[data_type]

    async def _collect(self, data_type: DataType) -> NormalizationReport:
        batches = []
        for endpoint in ENDPOINTS[data_type]:
            records = await self._provider.fetch_records(endpoint.path)
            batches.append((endpoint, records))
        return normalize_records(data_type, batches, now=self._clock())

    async def _run_sync(self, data_type: DataType) -> SyncResult:
        timeout = self._settings.sync_type_timeout_seconds
        attempted_at = self._clock()
        start = time.perf_counter()
        log.info(f"[SYNC START] {data_type.value}", extra={"data_type": data_type.value})

        try:
            report = await asyncio.wait_for(self._collect(data_type), timeout=timeout)
            if report.skipped:
                log.warning(
                    f"[SYNC] {data_type.value}: skipped {report.skipped} malformed record(s)",
                    extra={
                        "data_type": data_type.value,
                        "skipped": report.skipped,
                        "first_reason": report.reasons[0],
                    },
                )
            if not report.entries:
                raise UpstreamFetchError(
                    f"provider returned no valid {data_type.value} records "
                    f"({report.skipped} skipped); keeping the existing collection"
                )
            count = await asyncio.to_thread(self._store.upsert_official, data_type, report.entries)
        except Exception as exc:  # noqa: BLE001 - failures become status updates, never abort a sweep
            message = _describe(exc, timeout)
            log.error(
                f"[SYNC FAILED] {data_type.value}: {message}",
                extra={"data_type": data_type.value, "error_type": type(exc).__name__},
            )
            self._save_status(
                data_type, partial(self._status.record_failure, data_type, message, attempted_at=attempted_at)
            )
            return SyncResult(
                type=data_type.value,
                outcome=SyncOutcome.FAILED.value,
                success=False,
                timestamp=self._clock().isoformat(),
                message=f"Failed to sync {data_type.value}",
                count=0,
                skipped_records=0,
                duration_seconds=round(time.perf_counter() - start, 3),
                error=message,
            )

        synced_at = self._clock()
        status_error = self._save_status(
            data_type, partial(self._status.record_success, data_type, count, report.skipped, synced_at=synced_at)
        )
        duration = round(time.perf_counter() - start, 3)
        log.info(
            f"[SYNC SUCCESS] {data_type.value}",
            extra={"data_type": data_type.value, "entries": count, "duration": duration},
        )
        return SyncResult(
            type=data_type.value,
            outcome=SyncOutcome.SUCCESS.value,
            success=True,
            timestamp=synced_at.isoformat(),
            message=(
                f"{data_type.value} synced successfully"
                if status_error is None
                else f"{data_type.value} synced; status not saved: {status_error}"
            ),
            count=count,
            skipped_records=report.skipped,
            duration_seconds=duration,
            error=None,
        )

    def _save_status(self, data_type: DataType, write: Callable[[], object]) -> Optional[str]:
        """Run a status write-through; a failing write is logged, never raised."""
        try:
            write()
        except Exception as exc:  # noqa: BLE001 - a status write must not abort a sweep
            message = str(exc) or type(exc).__name__
            log.error(
                f"[STATUS FAILED] {data_type.value}: {message}",
                extra={"data_type": data_type.value, "error_type": type(exc).__name__},
                exc_info=True,
            )
            return message
        return None

    # -- sweeps --------------------------------------------------------------

    def _skipped(self, data_type: DataType) -> SyncResult:
        status = self._status.get(data_type)
        return SyncResult(
            type=data_type.value,
            outcome=SyncOutcome.SKIPPED.value,
            success=True,
            timestamp=self._clock().isoformat(),
            message=f"{data_type.value} is up-to-date, no sync needed",
            count=status.entry_count,
            skipped_records=0,
            duration_seconds=0.0,
            error=None,
        )

    def _summarize(self, results: List[SyncResult]) -> SweepResult:
        tally = {outcome.value: 0 for outcome in SyncOutcome}
        for result in results:
            tally[result["outcome"]] += 1
        counts = self._store.get_counts(Origin.OFFICIAL)
        return SweepResult(
            success=tally[SyncOutcome.FAILED.value] == 0,
            timestamp=self._clock().isoformat(),
            message=(
                f"Synced {tally['success']}, skipped {tally['skipped']}, "
                f"failed {tally['failed']} of {len(results)} data type(s)"
            ),
            results=results,
            counts={data_type.value: counts[data_type] for data_type in DataType},
        )

    async def sync_srd_data(
        self, force: bool = False, types: Optional[Iterable[TypeLike]] = None
    ) -> SweepResult:
        """
        Sync every type (or the given subset) in the fixed type order.

        With `force=False`, types synced inside the freshness window are
        reported as skipped without contacting the provider. Per-type failures
        are reported and the sweep moves on.
        """
        wanted = {DataType.parse(t) for t in types} if types is not None else set(DataType)
        ordered = [data_type for data_type in DataType if data_type in wanted]
        self._status.refresh()
        now = self._clock()
        log.info(
            "[SWEEP START]",
            extra={"types": [t.value for t in ordered], "force": force},
        )

        results: List[SyncResult] = []
        for data_type in ordered:
            if not force and self._status.is_fresh(data_type, now, self.freshness_window):
                log.info(f"[SYNC SKIPPED] {data_type.value} is fresh", extra={"data_type": data_type.value})
                results.append(self._skipped(data_type))
                continue
            results.append(await self.sync_data_type(data_type))

        sweep = self._summarize(results)
        log.info(f"[SWEEP COMPLETE] {sweep['message']}", extra={"success": sweep["success"]})
        return sweep

    async def initialize_srd_database(self) -> SweepResult:
        """
        Bootstrap: force-sync only the types without official entries.

        Returns immediately, without network activity, when every type is
        already populated. Safe to call repeatedly and from several processes.
        """
        counts = self._store.get_counts(Origin.OFFICIAL)
        missing = [data_type for data_type in DataType if counts[data_type] == 0]
        if not missing:
            return SweepResult(
                success=True,
                timestamp=self._clock().isoformat(),
                message="SRD database already initialized",
                results=[],
                counts={data_type.value: counts[data_type] for data_type in DataType},
            )
        log.info("[INIT] populating missing types", extra={"types": [t.value for t in missing]})
        return await self.sync_srd_data(force=True, types=missing)

    # -- status --------------------------------------------------------------

    def get_sync_status(self) -> GlobalStatus:
        """Snapshot of every type's status and entry counts. No network activity."""
        self._status.refresh()
        now = self._clock()
        official = self._store.get_counts(Origin.OFFICIAL)
        custom = self._store.get_counts(Origin.CUSTOM)

        types: Dict[str, Dict[str, object]] = {}
        needs_sync = False
        for data_type, status in self._status.snapshot().items():
            fresh = self._status.is_fresh(data_type, now, self.freshness_window)
            needs_sync = needs_sync or not fresh
            record = status.model_dump(mode="json")
            record["age_hours"] = (
                round((now - status.last_synced_at).total_seconds() / 3600, 1)
                if status.last_synced_at
                else None
            )
            record["fresh"] = fresh
            types[data_type.value] = record

        return GlobalStatus(
            types=types,
            counts={t.value: official[t] + custom[t] for t in DataType},
            official_counts={t.value: official[t] for t in DataType},
            custom_counts={t.value: custom[t] for t in DataType},
            last_synced_at=_iso(self._status.last_synced_at()),
            needs_sync=needs_sync,
            in_progress=[t.value for t in self.in_progress()],
        )


__all__ = ["SyncManager"]
