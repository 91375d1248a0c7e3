"""
In-process entry store.

Each (data type, origin) collection is an immutable tuple snapshot. Writers
build a complete new tuple and swap the reference under the type's lock, so a
reader holding a snapshot always sees one complete collection, never an
interleaving. Readers never take the lock.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

from srd_engine.domain.errors import EntryNotFoundError, InvalidArgumentError
from srd_engine.domain.models import DataType, Entry, EntryPartitions, Origin, SyncStatus
from srd_engine.storage.abstract import AbstractEntryStore, TypeLike


@dataclass(frozen=True)
class IndexedEntry:
    """An entry paired with its precomputed lowercase search text."""

    entry: Entry
    haystack: str

    @classmethod
    def of(cls, entry: Entry) -> "IndexedEntry":
        return cls(entry=entry, haystack=entry.search_text())


Partition = Tuple[IndexedEntry, ...]


def _matching(partition: Partition, needle: str) -> List[Entry]:
    if not needle:
        return [item.entry for item in partition]
    return [item.entry for item in partition if needle in item.haystack]


class InMemoryEntryStore(AbstractEntryStore):
    """
    Volatile store; also the base of the JSON file store.

    Subclasses hook persistence through `_snapshot`, `_publish` and
    `_publish_status`.
    """

    name: str = "memory"

    def __init__(self) -> None:
        self._partitions: Dict[Tuple[DataType, Origin], Partition] = {
            (data_type, origin): () for data_type in DataType for origin in Origin
        }
        # One writer lock per type; syncs of distinct types never contend.
        self._locks: Dict[DataType, threading.RLock] = {
            data_type: threading.RLock() for data_type in DataType
        }
        self._statuses: Dict[DataType, SyncStatus] = {}
        self._status_lock = threading.Lock()

    # -- persistence hooks ---------------------------------------------------

    def _snapshot(self, data_type: DataType, origin: Origin) -> Partition:
        return self._partitions[(data_type, origin)]

    def _publish(self, data_type: DataType, origin: Origin, partition: Partition) -> None:
        self._partitions[(data_type, origin)] = partition

    def _publish_status(self, status: SyncStatus) -> None:
        self._statuses[status.data_type] = status

    # -- official collection -------------------------------------------------

    def upsert_official(self, data_type: TypeLike, entries: Iterable[Entry]) -> int:
        resolved = self._resolve(data_type)
        partition = tuple(IndexedEntry.of(e) for e in self._validate_official(resolved, entries))
        with self._locks[resolved]:
            self._publish(resolved, Origin.OFFICIAL, partition)
        return len(partition)

    # -- reads ---------------------------------------------------------------

    def search_entries(self, data_type: TypeLike, query: str = "") -> EntryPartitions:
        resolved = self._resolve(data_type)
        needle = (query or "").lower()
        return EntryPartitions(
            official=_matching(self._snapshot(resolved, Origin.OFFICIAL), needle),
            custom=_matching(self._snapshot(resolved, Origin.CUSTOM), needle),
        )

    def get_counts(self, origin: Optional[Origin] = None) -> Dict[DataType, int]:
        origins = (origin,) if origin is not None else tuple(Origin)
        return {
            data_type: sum(len(self._snapshot(data_type, o)) for o in origins)
            for data_type in DataType
        }

    def get_entry(
        self, data_type: TypeLike, entry_id: str, origin: Optional[Origin] = None
    ) -> Optional[Entry]:
        resolved = self._resolve(data_type)
        origins = (origin,) if origin is not None else tuple(Origin)
        for o in origins:
            for item in self._snapshot(resolved, o):
                if item.entry.id == entry_id:
                    return item.entry
        return None

    # -- custom collection ---------------------------------------------------

    def add_custom(self, entry: Entry) -> Entry:
        self._validate_custom(entry)
        data_type = entry.data_type
        with self._locks[data_type]:
            current = self._snapshot(data_type, Origin.CUSTOM)
            if any(item.entry.id == entry.id for item in current):
                raise InvalidArgumentError(f"Custom entry {entry.id!r} already exists")
            self._publish(data_type, Origin.CUSTOM, current + (IndexedEntry.of(entry),))
        return entry

    def update_custom(self, entry: Entry) -> Entry:
        self._validate_custom(entry)
        data_type = entry.data_type
        with self._locks[data_type]:
            current = self._snapshot(data_type, Origin.CUSTOM)
            index = self._position(current, entry.id, data_type)
            updated = current[:index] + (IndexedEntry.of(entry),) + current[index + 1 :]
            self._publish(data_type, Origin.CUSTOM, updated)
        return entry

    def remove_custom(self, data_type: TypeLike, entry_id: str) -> None:
        resolved = self._resolve(data_type)
        with self._locks[resolved]:
            current = self._snapshot(resolved, Origin.CUSTOM)
            index = self._position(current, entry_id, resolved)
            self._publish(resolved, Origin.CUSTOM, current[:index] + current[index + 1 :])

    @staticmethod
    def _position(partition: Partition, entry_id: str, data_type: DataType) -> int:
        for index, item in enumerate(partition):
            if item.entry.id == entry_id:
                return index
        raise EntryNotFoundError(f"No custom {data_type.value} entry with id {entry_id!r}")

    # -- status --------------------------------------------------------------

    def load_statuses(self) -> Dict[DataType, SyncStatus]:
        return dict(self._statuses)

    def save_status(self, status: SyncStatus) -> None:
        with self._status_lock:
            self._publish_status(status)


__all__ = ["InMemoryEntryStore", "IndexedEntry"]
