"""
Storage package for the SRD engine.

Re-exports the store interfaces and concrete backends, and provides the
backend registry used by the CLI and service bootstrap.
"""

from __future__ import annotations

from typing import Callable, Dict, List, Optional

from srd_engine.config import Settings, get_settings
from srd_engine.domain.errors import InvalidArgumentError
from srd_engine.storage.abstract import AbstractEntryStore, EntryStore
from srd_engine.storage.json_file import JsonFileEntryStore
from srd_engine.storage.memory import InMemoryEntryStore


def _postgres_store(settings: Settings) -> EntryStore:
    # Imported lazily so the file backends work without a reachable database.
    from srd_engine.storage.postgres import PostgresEntryStore

    return PostgresEntryStore(settings=settings)


def _store_factories(settings: Settings) -> Dict[str, Callable[[], EntryStore]]:
    """Registry of available storage backends."""
    return {
        "memory": lambda: InMemoryEntryStore(),
        "json": lambda: JsonFileEntryStore(settings.data_dir),
        "postgres": lambda: _postgres_store(settings),
    }


def available_backends() -> List[str]:
    """List available storage backend names."""
    return sorted(_store_factories(get_settings()).keys())


def create_store(name: Optional[str] = None, settings: Optional[Settings] = None) -> EntryStore:
    """
    Build the configured (or named) storage backend.

    Raises
    ------
    InvalidArgumentError
        If the backend name is unknown.
    """
    settings = settings or get_settings()
    factories = _store_factories(settings)
    backend = name or settings.storage_backend
    if backend not in factories:
        raise InvalidArgumentError(
            f"Unknown storage backend '{backend}'. Available: {', '.join(sorted(factories))}"
        )
    return factories[backend]()


__all__ = [
    "AbstractEntryStore",
    "EntryStore",
    "InMemoryEntryStore",
    "JsonFileEntryStore",
    "available_backends",
    "create_store",
]
