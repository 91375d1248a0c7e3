"""
Per-type sync status table.

Owned by a SyncManager instance: loaded from the store when the manager is
built and written through to the store on every update. Records are created
on the first sync attempt of a type and only ever updated afterwards.
"""

from __future__ import annotations

import threading
from datetime import datetime, timedelta
from typing import Dict, Optional

from srd_engine.domain.models import DataType, SyncStatus
from srd_engine.storage.abstract import EntryStore


class StatusTable:
    def __init__(self, store: EntryStore) -> None:
        self._store = store
        self._lock = threading.Lock()
        self._records: Dict[DataType, SyncStatus] = dict(store.load_statuses())

    def get(self, data_type: DataType) -> SyncStatus:
        return self._records.get(data_type) or SyncStatus.empty(data_type)

    def snapshot(self) -> Dict[DataType, SyncStatus]:
        """Every type, including never-attempted ones as empty records."""
        return {data_type: self.get(data_type) for data_type in DataType}

    def refresh(self) -> None:
        """Pick up records written by other processes sharing the store."""
        with self._lock:
            self._records.update(self._store.load_statuses())

    def is_fresh(self, data_type: DataType, now: datetime, window: timedelta) -> bool:
        last = self.get(data_type).last_synced_at
        return last is not None and now - last < window

    def _put(self, status: SyncStatus) -> SyncStatus:
        # The in-process record is updated even if the store write then fails.
        with self._lock:
            self._records[status.data_type] = status
            self._store.save_status(status)
        return status

    def record_success(
        self, data_type: DataType, entry_count: int, skipped_records: int, synced_at: datetime
    ) -> SyncStatus:
        return self._put(
            self.get(data_type).model_copy(
                update={
                    "last_synced_at": synced_at,
                    "entry_count": entry_count,
                    "last_error": None,
                    "last_attempt_at": synced_at,
                    "skipped_records": skipped_records,
                }
            )
        )

    def record_failure(
        self, data_type: DataType, message: str, attempted_at: datetime
    ) -> SyncStatus:
        # last_synced_at and entry_count keep the values of the last good run.
        return self._put(
            self.get(data_type).model_copy(
                update={"last_error": message, "last_attempt_at": attempted_at}
            )
        )

    def last_synced_at(self) -> Optional[datetime]:
        stamps = [s.last_synced_at for s in self._records.values() if s.last_synced_at]
        return max(stamps) if stamps else None


__all__ = ["StatusTable"]
