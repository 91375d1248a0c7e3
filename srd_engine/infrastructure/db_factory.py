"""
PostgreSQL connectivity for the postgres storage backend.

One process-wide connection pool (owned by `PoolManager`, closed at exit) plus
retried one-off connections for schema setup. The module is imported with the
`srd_engine.infrastructure` package, but no connection or pool is opened until
the postgres backend is built.
"""

from __future__ import annotations

import atexit
import logging
import threading
from typing import Optional

import psycopg
from psycopg import Connection
from psycopg.conninfo import make_conninfo
from psycopg_pool import ConnectionPool
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from srd_engine.config import Settings, get_settings
from srd_engine.utils.logging import get_logger

log = get_logger(__name__)

POOL_NAME = "srd-engine"


def build_dsn(settings: Optional[Settings] = None) -> str:
    """Compose a libpq connection string from the DB_* settings."""
    settings = settings or get_settings()
    # make_conninfo quotes values, so passwords with spaces or quotes survive.
    return make_conninfo(
        host=settings.db_host,
        port=settings.db_port,
        user=settings.db_user,
        password=settings.db_password,
        dbname=settings.db_name,
        application_name=POOL_NAME,
    )


class PoolManager:
    """
    Process-wide owner of the shared connection pool.

    The first `get_pool` call opens the pool with the sizes it was given;
    later calls return that same pool. Closed automatically at interpreter exit.
    """

    _instance: Optional["PoolManager"] = None
    _lock = threading.Lock()

    def __new__(cls) -> "PoolManager":
        with cls._lock:
            if cls._instance is None:
                cls._instance = super().__new__(cls)
                cls._instance._pool = None
                atexit.register(cls._instance.close)
            return cls._instance

    def get_pool(self, settings: Optional[Settings] = None) -> ConnectionPool:
        with self._lock:
            if self._pool is None:
                settings = settings or get_settings()
                self._pool = ConnectionPool(
                    conninfo=build_dsn(settings),
                    min_size=settings.db_pool_min_size,
                    max_size=settings.db_pool_max_size,
                    name=POOL_NAME,
                    open=True,
                )
                log.debug(
                    "Connection pool opened",
                    extra={
                        "db_host": settings.db_host,
                        "min_size": settings.db_pool_min_size,
                        "max_size": settings.db_pool_max_size,
                    },
                )
            return self._pool

    def close(self) -> None:
        with self._lock:
            if self._pool is not None:
                try:
                    self._pool.close()
                except psycopg.Error as exc:
                    log.warning("Error while closing pool", extra={"error": str(exc)})
                finally:
                    self._pool = None


@retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception_type((psycopg.OperationalError, psycopg.InterfaceError)),
    before_sleep=before_sleep_log(log, logging.WARNING),
    reraise=True,
)
def get_sync_connection(dsn: Optional[str] = None, settings: Optional[Settings] = None) -> Connection:
    """
    Open a dedicated connection, retrying transient failures.

    Used for schema creation before the pool exists; prefer the pool otherwise.

    Raises
    ------
    psycopg.OperationalError
        If the database is still unreachable after the last attempt.
    """
    return psycopg.connect(dsn or build_dsn(settings))


def get_sync_pool(settings: Optional[Settings] = None) -> ConnectionPool:
    return PoolManager().get_pool(settings)


__all__ = [
    "POOL_NAME",
    "PoolManager",
    "build_dsn",
    "get_sync_connection",
    "get_sync_pool",
]
