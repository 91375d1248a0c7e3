"""
Abstract storage interfaces for the SRD engine.

Every backend keeps, per data type, two disjoint collections (official and
custom) plus one sync status record. Concrete stores implement the EntryStore
protocol; AbstractEntryStore supplies the argument checks shared by all of
them.
"""

from __future__ import annotations

import abc
from typing import Dict, Iterable, List, Optional, Protocol, Union, runtime_checkable

from srd_engine.domain.errors import InvalidArgumentError
from srd_engine.domain.models import DataType, Entry, EntryPartitions, Origin, SyncStatus

TypeLike = Union[DataType, str]


@runtime_checkable
class EntryStore(Protocol):
    """
    Common interface all storage backends implement.

    Attributes
    ----------
    name : str
        A short machine-friendly identifier of the backend.
    """

    name: str

    def upsert_official(self, data_type: TypeLike, entries: Iterable[Entry]) -> int:
        """
        Atomically replace the whole official collection of `data_type`.

        Readers observe either the previous or the new complete collection.
        The custom partition is never touched.

        Returns
        -------
        int
            Number of entries written.
        """
        ...

    def search_entries(self, data_type: TypeLike, query: str = "") -> EntryPartitions:
        """
        Case-insensitive substring match on name or flattened payload text.

        An empty query returns every entry. Insertion order is preserved
        within each collection.
        """
        ...

    def get_counts(self, origin: Optional[Origin] = None) -> Dict[DataType, int]:
        """Entry count per type, official plus custom unless `origin` is given."""
        ...

    def get_entry(
        self, data_type: TypeLike, entry_id: str, origin: Optional[Origin] = None
    ) -> Optional[Entry]:
        ...

    def add_custom(self, entry: Entry) -> Entry:
        ...

    def update_custom(self, entry: Entry) -> Entry:
        ...

    def remove_custom(self, data_type: TypeLike, entry_id: str) -> None:
        ...

    def load_statuses(self) -> Dict[DataType, SyncStatus]:
        ...

    def save_status(self, status: SyncStatus) -> None:
        ...

    def close(self) -> None:
        ...


class AbstractEntryStore(abc.ABC):
    """
    ABC helper for class-based backends.

    Subclasses set `name` and implement the storage primitives; the public
    checks (type resolution, origin and id validation) live here.
    """

    name: str

    @staticmethod
    def _resolve(data_type: TypeLike) -> DataType:
        return DataType.parse(data_type)

    @staticmethod
    def _validate_official(data_type: DataType, entries: Iterable[Entry]) -> List[Entry]:
        checked: List[Entry] = []
        seen: set = set()
        for entry in entries:
            if entry.data_type is not data_type:
                raise InvalidArgumentError(
                    f"Entry {entry.id!r} is a {entry.data_type.value} entry, "
                    f"not {data_type.value}"
                )
            if entry.origin is not Origin.OFFICIAL:
                raise InvalidArgumentError(f"Entry {entry.id!r} is not an official entry")
            if entry.id in seen:
                raise InvalidArgumentError(f"Duplicate official entry id {entry.id!r}")
            seen.add(entry.id)
            checked.append(entry)
        return checked

    @staticmethod
    def _validate_custom(entry: Entry) -> None:
        if entry.origin is not Origin.CUSTOM:
            raise InvalidArgumentError(f"Entry {entry.id!r} is not a custom entry")

    @abc.abstractmethod
    def upsert_official(self, data_type: TypeLike, entries: Iterable[Entry]) -> int:
        raise NotImplementedError

    @abc.abstractmethod
    def search_entries(self, data_type: TypeLike, query: str = "") -> EntryPartitions:
        raise NotImplementedError

    @abc.abstractmethod
    def get_counts(self, origin: Optional[Origin] = None) -> Dict[DataType, int]:
        raise NotImplementedError

    @abc.abstractmethod
    def get_entry(
        self, data_type: TypeLike, entry_id: str, origin: Optional[Origin] = None
    ) -> Optional[Entry]:
        raise NotImplementedError

    @abc.abstractmethod
    def add_custom(self, entry: Entry) -> Entry:
        raise NotImplementedError

    @abc.abstractmethod
    def update_custom(self, entry: Entry) -> Entry:
        raise NotImplementedError

    @abc.abstractmethod
    def remove_custom(self, data_type: TypeLike, entry_id: str) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    def load_statuses(self) -> Dict[DataType, SyncStatus]:
        raise NotImplementedError

    @abc.abstractmethod
    def save_status(self, status: SyncStatus) -> None:
        raise NotImplementedError

    def close(self) -> None:  # pragma: no cover - nothing to release by default
        """Release backend resources."""
        return None


__all__ = [
    "EntryStore",
    "AbstractEntryStore",
    "TypeLike",
]
