"""
Infrastructure package for the SRD engine.

Centralizes I/O concerns: the Open5e provider client and PostgreSQL
connectivity (pooling, retried connections). Keep this layer focused on I/O
and resource management, decoupled from sync and storage logic.
"""

from srd_engine.infrastructure.db_factory import (
    POOL_NAME,
    PoolManager,
    build_dsn,
    get_sync_connection,
    get_sync_pool,
)
from srd_engine.infrastructure.open5e import ContentProvider, Open5eClient, ProviderPage

__all__ = [
    "ContentProvider",
    "Open5eClient",
    "ProviderPage",
    "POOL_NAME",
    "PoolManager",
    "build_dsn",
    "get_sync_connection",
    "get_sync_pool",
]
