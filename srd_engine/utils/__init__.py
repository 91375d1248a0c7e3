"""
Utilities package for the SRD engine.

Exports shared helpers for logging and other cross-cutting concerns.
Keep this package lightweight and free of domain-specific logic.
"""

from srd_engine.utils.logging import configure_logging, get_logger

__all__ = [
    "configure_logging",
    "get_logger",
]
