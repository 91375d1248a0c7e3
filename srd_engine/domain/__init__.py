"""
Domain package for the SRD engine.

Exports the data types, entry and status models, result contracts and the
error taxonomy shared by storage, sync and service layers.
"""

from srd_engine.domain.errors import (
    EntryNotFoundError,
    InvalidArgumentError,
    NormalizationError,
    SRDError,
    TransientProviderError,
    UnauthorizedError,
    UpstreamFetchError,
)
from srd_engine.domain.models import (
    DataType,
    Entry,
    EntryPartitions,
    GlobalStatus,
    Origin,
    SearchPage,
    SweepResult,
    SyncOutcome,
    SyncResult,
    SyncStatus,
)
from srd_engine.domain.payloads import PAYLOAD_MODELS

__all__ = [
    # Models
    "DataType",
    "Entry",
    "EntryPartitions",
    "GlobalStatus",
    "Origin",
    "SearchPage",
    "SweepResult",
    "SyncOutcome",
    "SyncResult",
    "SyncStatus",
    "PAYLOAD_MODELS",
    # Errors
    "SRDError",
    "InvalidArgumentError",
    "UnauthorizedError",
    "EntryNotFoundError",
    "UpstreamFetchError",
    "TransientProviderError",
    "NormalizationError",
]
