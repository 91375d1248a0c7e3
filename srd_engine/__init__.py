"""
SRD Engine - reference data sync and storage for tabletop game masters.

This package keeps a local copy of the System Reference Document (monsters,
races, classes, spells, items, backgrounds) synchronized from the Open5e API,
stores it next to locally authored custom entries, and serves type-filtered
text search over both:

- Storage backends (in-memory, JSON files, PostgreSQL) with atomic per-type
  replacement of the official collection
- A sync manager with per-type in-flight deduplication, freshness windows and
  failure isolation between types
- A service facade validating caller input and gating writes behind an
  authentication check
- A typer CLI rendering results with rich
"""

from __future__ import annotations

__version__ = "0.1.0"
__license__ = "MIT"

# Public API exports
from srd_engine.config import Settings, get_settings
from srd_engine.domain.errors import (
    EntryNotFoundError,
    InvalidArgumentError,
    SRDError,
    UnauthorizedError,
    UpstreamFetchError,
)
from srd_engine.domain.models import DataType, Entry, Origin, SyncStatus
from srd_engine.service import (
    SearchFilters,
    SRDService,
    build_service,
    token_authenticator,
    trust_local_operator,
)
from srd_engine.storage import EntryStore, available_backends, create_store
from srd_engine.sync import SyncManager
from srd_engine.utils.logging import configure_logging, get_logger

__all__ = [
    # Version info
    "__version__",
    "__license__",
    # Configuration
    "Settings",
    "get_settings",
    # Domain
    "DataType",
    "Entry",
    "Origin",
    "SyncStatus",
    # Errors
    "SRDError",
    "InvalidArgumentError",
    "UnauthorizedError",
    "EntryNotFoundError",
    "UpstreamFetchError",
    # Storage
    "EntryStore",
    "available_backends",
    "create_store",
    # Sync and service
    "SyncManager",
    "SRDService",
    "SearchFilters",
    "build_service",
    "token_authenticator",
    "trust_local_operator",
    # Logging
    "configure_logging",
    "get_logger",
]
