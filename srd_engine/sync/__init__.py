"""
Sync package for the SRD engine.

- normalizers: provider record -> Entry mapping and the endpoint table per type
- status: per-type sync status table, written through to the store
- manager: SyncManager (single-type syncs, sweeps, bootstrap, status)
"""

from srd_engine.sync.manager import SyncManager
from srd_engine.sync.normalizers import (
    ENDPOINTS,
    NormalizationReport,
    ProviderEndpoint,
    normalize_records,
)
from srd_engine.sync.status import StatusTable

__all__ = [
    "ENDPOINTS",
    "NormalizationReport",
    "ProviderEndpoint",
    "SyncManager",
    "StatusTable",
    "normalize_records",
]
