"""
Service facade for the SRD engine.

The thin request-handling layer (web routes, CLI) talks to this module only.
It validates caller input, gates mutating operations behind an authentication
check, and delegates to the storage layer and the sync manager.

Usage:
    from srd_engine.service import build_service, token_authenticator

    service = build_service(authenticator=token_authenticator("s3cret"))
    page = service.search("monsters", "dragon", source="official", limit=20)
    sweep = await service.trigger_sync("s3cret", force=True)
    await service.aclose()
"""

from __future__ import annotations

import enum
import hmac
import math
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Union

from pydantic import ValidationError

from srd_engine.config import Settings, get_settings
from srd_engine.domain.errors import EntryNotFoundError, InvalidArgumentError, UnauthorizedError
from srd_engine.domain.models import (
    DataType,
    Entry,
    GlobalStatus,
    Origin,
    SearchPage,
    SweepResult,
    SyncResult,
    utcnow,
)
from srd_engine.domain.payloads import PAYLOAD_MODELS
from srd_engine.infrastructure.open5e import ContentProvider
from srd_engine.storage import create_store
from srd_engine.storage.abstract import EntryStore, TypeLike
from srd_engine.sync.manager import SyncManager
from srd_engine.utils.logging import get_logger

log = get_logger(__name__)

MAX_NAME_LENGTH = 200

Authenticator = Callable[[Any], bool]


def token_authenticator(expected_token: Optional[str]) -> Authenticator:
    """
    Accept callers presenting `expected_token`. With no token configured,
    every caller is rejected.
    """

    def _check(caller: Any) -> bool:
        if not expected_token or not isinstance(caller, str):
            return False
        return hmac.compare_digest(caller.encode("utf-8"), expected_token.encode("utf-8"))

    return _check


def trust_local_operator(caller: Any) -> bool:
    """Authenticator for a local operator shell: whoever runs it is trusted."""
    return True


class Source(str, enum.Enum):
    ALL = "all"
    OFFICIAL = "official"
    CUSTOM = "custom"

    @classmethod
    def parse(cls, value: Union["Source", str, None]) -> "Source":
        if isinstance(value, cls):
            return value
        if value is None:
            return cls.ALL
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            valid = ", ".join(s.value for s in cls)
            raise InvalidArgumentError(f"Invalid source {value!r}. Must be one of: {valid}") from None


def _same(left: Optional[str], right: Optional[str]) -> bool:
    return left is not None and right is not None and left.strip().lower() == right.strip().lower()


@dataclass(frozen=True)
class SearchFilters:
    """
    Structured filters applied after the text match.

    Monster filters only apply to monster searches and spell filters only to
    spell searches; the rest are ignored for other types.
    """

    cr_min: Optional[float] = None
    cr_max: Optional[float] = None
    size: Optional[str] = None
    monster_type: Optional[str] = None
    spell_level: Optional[int] = None
    school: Optional[str] = None
    spell_class: Optional[str] = None
    ritual_only: bool = False
    concentration_only: bool = False

    def validate(self) -> None:
        for label, value in (("cr_min", self.cr_min), ("cr_max", self.cr_max)):
            if value is not None and value < 0:
                raise InvalidArgumentError(f"{label} must be >= 0, got {value}")
        if self.cr_min is not None and self.cr_max is not None and self.cr_min > self.cr_max:
            raise InvalidArgumentError(f"cr_min ({self.cr_min}) exceeds cr_max ({self.cr_max})")
        if self.spell_level is not None and not 0 <= self.spell_level <= 9:
            raise InvalidArgumentError(f"spell_level must be between 0 and 9, got {self.spell_level}")

    def _monster(self, payload: Dict[str, Any]) -> bool:
        rating = payload.get("challenge_rating", 0.0)
        if self.cr_min is not None and rating < self.cr_min:
            return False
        if self.cr_max is not None and rating > self.cr_max:
            return False
        if self.size and not _same(payload.get("size"), self.size):
            return False
        if self.monster_type and not _same(payload.get("creature_type"), self.monster_type):
            return False
        return True

    def _spell(self, payload: Dict[str, Any]) -> bool:
        if self.spell_level is not None and payload.get("level", 0) != self.spell_level:
            return False
        if self.school and not _same(payload.get("school"), self.school):
            return False
        if self.spell_class and not any(
            _same(name, self.spell_class) for name in payload.get("classes") or ()
        ):
            return False
        if self.ritual_only and not payload.get("ritual", False):
            return False
        if self.concentration_only and not payload.get("concentration", False):
            return False
        return True

    def matches(self, entry: Entry) -> bool:
        if entry.data_type is DataType.MONSTERS:
            return self._monster(entry.payload)
        if entry.data_type is DataType.SPELLS:
            return self._spell(entry.payload)
        return True


class SRDService:
    """
    Entry point for callers outside the engine.

    Search and status are open; sync triggers and custom-entry writes require
    `authenticator(caller)` to hold. Argument and authorization errors are
    raised before any storage or network access.
    """

    def __init__(
        self,
        store: EntryStore,
        manager: SyncManager,
        authenticator: Authenticator,
        settings: Optional[Settings] = None,
    ) -> None:
        self._store = store
        self._manager = manager
        self._authenticator = authenticator
        self._settings = settings or get_settings()

    @property
    def store(self) -> EntryStore:
        return self._store

    @property
    def manager(self) -> SyncManager:
        return self._manager

    async def aclose(self) -> None:
        await self._manager.aclose()
        self._store.close()

    # -- validation ----------------------------------------------------------

    def _require_auth(self, caller: Any, action: str) -> None:
        if not self._authenticator(caller):
            log.warning(f"[AUTH] rejected unauthenticated {action}", extra={"action": action})
            raise UnauthorizedError(f"Authentication required to {action}")

    def _check_query(self, query: Optional[str]) -> str:
        if query is None:
            return ""
        if not isinstance(query, str):
            raise InvalidArgumentError(f"query must be a string, got {type(query).__name__}")
        query = query.strip()
        if len(query) > self._settings.search_max_query_length:
            raise InvalidArgumentError(
                f"query is too long ({len(query)} > {self._settings.search_max_query_length} characters)"
            )
        return query

    def _check_limit(self, limit: Optional[int]) -> int:
        if limit is None:
            return self._settings.search_default_limit
        if isinstance(limit, bool) or not isinstance(limit, int):
            raise InvalidArgumentError(f"limit must be an integer, got {limit!r}")
        if limit <= 0:
            raise InvalidArgumentError(f"limit must be positive, got {limit}")
        return min(limit, self._settings.search_max_limit)

    @staticmethod
    def _check_name(name: Any) -> str:
        if not isinstance(name, str) or not name.strip():
            raise InvalidArgumentError("name must be a non-empty string")
        name = name.strip()
        if len(name) > MAX_NAME_LENGTH:
            raise InvalidArgumentError(f"name is too long ({len(name)} > {MAX_NAME_LENGTH} characters)")
        return name

    @staticmethod
    def _check_payload(data_type: DataType, payload: Any) -> Dict[str, Any]:
        if payload is None:
            payload = {}
        if not isinstance(payload, dict):
            raise InvalidArgumentError(f"payload must be an object, got {type(payload).__name__}")
        try:
            model = PAYLOAD_MODELS[data_type].model_validate(payload)
        except ValidationError as exc:
            first = exc.errors()[0]
            where = ".".join(str(part) for part in first.get("loc", ())) or "payload"
            raise InvalidArgumentError(
                f"Invalid {data_type.value} payload at {where}: {first.get('msg')}"
            ) from exc
        return model.model_dump(exclude_none=True)

    # -- reads ---------------------------------------------------------------

    def status(self) -> GlobalStatus:
        return self._manager.get_sync_status()

    def check_initialized(self) -> Dict[str, Any]:
        """`initialized` is true once any type holds at least one entry."""
        status = self._manager.get_sync_status()
        return {
            "initialized": any(count > 0 for count in status["counts"].values()),
            "status": status,
        }

    def search(
        self,
        data_type: TypeLike,
        query: Optional[str] = "",
        source: Union[Source, str, None] = Source.ALL,
        limit: Optional[int] = None,
        page: int = 1,
        filters: Optional[SearchFilters] = None,
    ) -> SearchPage:
        """
        Text search within one type, official entries first, then custom.

        `total` is the true match count; `limit` above the configured maximum
        is clamped, not rejected.

        Raises
        ------
        InvalidArgumentError
            Unknown type or source, over-long query, non-positive limit or
            page, inconsistent filters.
        """
        resolved = DataType.parse(data_type)
        needle = self._check_query(query)
        wanted = Source.parse(source)
        effective_limit = self._check_limit(limit)
        if isinstance(page, bool) or not isinstance(page, int) or page < 1:
            raise InvalidArgumentError(f"page must be a positive integer, got {page!r}")
        if filters is not None:
            filters.validate()

        partitions = self._store.search_entries(resolved, needle)
        matched: List[Entry] = []
        if wanted in (Source.ALL, Source.OFFICIAL):
            matched.extend(partitions["official"])
        if wanted in (Source.ALL, Source.CUSTOM):
            matched.extend(partitions["custom"])
        if filters is not None:
            matched = [entry for entry in matched if filters.matches(entry)]

        total = len(matched)
        offset = (page - 1) * effective_limit
        window = matched[offset : offset + effective_limit]
        return SearchPage(
            type=resolved.value,
            query=needle,
            source=wanted.value,
            total=total,
            returned=len(window),
            page=page,
            total_pages=math.ceil(total / effective_limit),
            limit=effective_limit,
            results=[entry.to_dict() for entry in window],
        )

    # -- sync ----------------------------------------------------------------

    async def initialize(self) -> SweepResult:
        return await self._manager.initialize_srd_database()

    async def trigger_sync(
        self, caller: Any, data_type: Optional[TypeLike] = None, force: bool = False
    ) -> Union[SyncResult, SweepResult]:
        """
        Sync one type (always fetched, `force` has no effect) or sweep all.

        Raises
        ------
        UnauthorizedError
            If the caller is not authenticated.
        InvalidArgumentError
            If `data_type` is not one of the fixed data types.
        """
        self._require_auth(caller, "trigger a sync")
        if data_type is None:
            return await self._manager.sync_srd_data(force=force)
        return await self._manager.sync_data_type(DataType.parse(data_type))

    # -- custom entries ------------------------------------------------------

    def add_custom_entry(
        self,
        caller: Any,
        data_type: TypeLike,
        name: str,
        payload: Optional[Dict[str, Any]] = None,
    ) -> Entry:
        self._require_auth(caller, "add a custom entry")
        resolved = DataType.parse(data_type)
        entry = Entry.new_custom(
            resolved, self._check_name(name), self._check_payload(resolved, payload)
        )
        self._store.add_custom(entry)
        log.info(
            f"[CUSTOM ADD] {resolved.value}/{entry.id}",
            extra={"data_type": resolved.value, "entry_id": entry.id},
        )
        return entry

    def update_custom_entry(
        self,
        caller: Any,
        data_type: TypeLike,
        entry_id: str,
        name: Optional[str] = None,
        payload: Optional[Dict[str, Any]] = None,
    ) -> Entry:
        """
        Replace the name and/or payload of a custom entry. Official entries
        cannot be edited.

        Raises
        ------
        EntryNotFoundError
            If no custom entry of that type has `entry_id`.
        """
        self._require_auth(caller, "update a custom entry")
        resolved = DataType.parse(data_type)
        changes: Dict[str, Any] = {"updated_at": utcnow()}
        if name is not None:
            changes["name"] = self._check_name(name)
        if payload is not None:
            changes["payload"] = self._check_payload(resolved, payload)

        current = self._store.get_entry(resolved, entry_id, Origin.CUSTOM)
        if current is None:
            raise EntryNotFoundError(f"No custom {resolved.value} entry with id {entry_id!r}")
        updated = self._store.update_custom(current.model_copy(update=changes))
        log.info(
            f"[CUSTOM UPDATE] {resolved.value}/{entry_id}",
            extra={"data_type": resolved.value, "entry_id": entry_id},
        )
        return updated

    def remove_custom_entry(self, caller: Any, data_type: TypeLike, entry_id: str) -> None:
        self._require_auth(caller, "remove a custom entry")
        resolved = DataType.parse(data_type)
        self._store.remove_custom(resolved, entry_id)
        log.info(
            f"[CUSTOM REMOVE] {resolved.value}/{entry_id}",
            extra={"data_type": resolved.value, "entry_id": entry_id},
        )


def build_service(
    settings: Optional[Settings] = None,
    store: Optional[EntryStore] = None,
    provider: Optional[ContentProvider] = None,
    authenticator: Optional[Authenticator] = None,
) -> SRDService:
    """
    Wire a service from settings: configured storage backend, Open5e provider
    and a token authenticator on SRD_ADMIN_TOKEN unless overridden.
    """
    settings = settings or get_settings()
    store = store or create_store(settings=settings)
    manager = SyncManager(store, provider=provider, settings=settings)
    return SRDService(
        store,
        manager,
        authenticator or token_authenticator(settings.admin_token),
        settings=settings,
    )


__all__ = [
    "Authenticator",
    "SRDService",
    "SearchFilters",
    "Source",
    "build_service",
    "token_authenticator",
    "trust_local_operator",
]
