"""
Domain models for the SRD engine.

Defines the fixed set of reference data types, the entry record shared by the
official and custom collections, per-type sync status, and the result
contracts returned by the storage layer, sync manager and service facade.
"""
from __future__ import annotations

import enum
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, TypedDict, Union

from pydantic import BaseModel, Field, field_validator

from srd_engine.domain.errors import InvalidArgumentError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DataType(str, enum.Enum):
    """
    Reference data categories. Declaration order is the sweep order.
    """

    MONSTERS = "monsters"
    RACES = "races"
    CLASSES = "classes"
    SPELLS = "spells"
    ITEMS = "items"
    BACKGROUNDS = "backgrounds"

    @classmethod
    def parse(cls, value: Union["DataType", str, None]) -> "DataType":
        """
        Resolve a caller-supplied tag, accepting singular aliases ("spell").

        Raises
        ------
        InvalidArgumentError
            If the value is not one of the fixed data types.
        """
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            key = value.strip().lower()
            member = _TYPE_ALIASES.get(key)
            if member is not None:
                return member
        valid = ", ".join(t.value for t in cls)
        raise InvalidArgumentError(f"Invalid type {value!r}. Must be one of: {valid}")


_TYPE_ALIASES: Dict[str, DataType] = {t.value: t for t in DataType}
_TYPE_ALIASES.update(
    {
        "monster": DataType.MONSTERS,
        "race": DataType.RACES,
        "class": DataType.CLASSES,
        "spell": DataType.SPELLS,
        "item": DataType.ITEMS,
        "background": DataType.BACKGROUNDS,
    }
)


class Origin(str, enum.Enum):
    """Provenance of an entry."""

    OFFICIAL = "official"
    CUSTOM = "custom"


def _flatten(value: Any, out: List[str]) -> None:
    if isinstance(value, str):
        out.append(value)
    elif isinstance(value, bool) or value is None:
        return
    elif isinstance(value, (int, float)):
        out.append(str(value))
    elif isinstance(value, dict):
        for item in value.values():
            _flatten(item, out)
    elif isinstance(value, (list, tuple)):
        for item in value:
            _flatten(item, out)


class Entry(BaseModel):
    """
    A single reference-data record.

    `payload` is opaque to the engine; it is only flattened into text for
    search matching.
    """

    id: str = Field(..., min_length=1, description="Unique within (data_type, origin).")
    data_type: DataType = Field(..., description="Reference data category.")
    name: str = Field(..., min_length=1, description="Display name, not unique.")
    origin: Origin = Field(..., description="Provenance, immutable after creation.")
    payload: Dict[str, Any] = Field(default_factory=dict, description="Type-specific fields.")
    updated_at: datetime = Field(default_factory=utcnow, description="Timestamp of last write.")

    model_config = {
        "frozen": True,
        "populate_by_name": True,
    }

    @field_validator("updated_at")
    @classmethod
    def _ensure_aware(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    def search_text(self) -> str:
        """Lowercased name plus every string/number leaf of the payload."""
        parts: List[str] = [self.name]
        _flatten(self.payload, parts)
        return "\n".join(parts).lower()

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")

    @classmethod
    def new_custom(
        cls,
        data_type: DataType,
        name: str,
        payload: Dict[str, Any],
        entry_id: Optional[str] = None,
    ) -> "Entry":
        return cls(
            id=entry_id or f"custom_{uuid.uuid4().hex}",
            data_type=data_type,
            name=name,
            origin=Origin.CUSTOM,
            payload=payload,
        )


class SyncStatus(BaseModel):
    """
    Sync bookkeeping for one data type.

    `last_synced_at` and `entry_count` only move on a successful sync;
    `last_error` is cleared by success and set by failure.
    """

    data_type: DataType
    last_synced_at: Optional[datetime] = None
    entry_count: int = Field(0, ge=0)
    last_error: Optional[str] = None
    last_attempt_at: Optional[datetime] = None
    skipped_records: int = Field(0, ge=0)

    model_config = {"frozen": True}

    @classmethod
    def empty(cls, data_type: DataType) -> "SyncStatus":
        return cls(data_type=data_type)


class SyncOutcome(str, enum.Enum):
    SUCCESS = "success"
    SKIPPED = "skipped"
    FAILED = "failed"


class EntryPartitions(TypedDict):
    """Entries of one type, split by origin."""

    official: List[Entry]
    custom: List[Entry]


class SyncResult(TypedDict, total=False):
    """Outcome of one type sync (or of a freshness skip)."""

    type: str
    outcome: str
    success: bool
    timestamp: str
    message: str
    count: int
    skipped_records: int
    duration_seconds: float
    error: Optional[str]


class SweepResult(TypedDict, total=False):
    """Aggregate of a multi-type sync. `success` is False if any type failed."""

    success: bool
    timestamp: str
    message: str
    results: List[SyncResult]
    counts: Dict[str, int]


class GlobalStatus(TypedDict):
    types: Dict[str, Dict[str, Any]]
    counts: Dict[str, int]
    official_counts: Dict[str, int]
    custom_counts: Dict[str, int]
    last_synced_at: Optional[str]
    needs_sync: bool
    in_progress: List[str]


class SearchPage(TypedDict):
    type: str
    query: str
    source: str
    total: int
    returned: int
    page: int
    total_pages: int
    limit: int
    results: List[Dict[str, Any]]


__all__ = [
    "DataType",
    "Origin",
    "Entry",
    "SyncStatus",
    "SyncOutcome",
    "EntryPartitions",
    "SyncResult",
    "SweepResult",
    "GlobalStatus",
    "SearchPage",
    "utcnow",
]
