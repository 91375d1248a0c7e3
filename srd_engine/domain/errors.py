"""
Error taxonomy for the SRD engine.

Invalid-argument and unauthorized errors are raised to the immediate caller.
Upstream-fetch and normalization errors are raised inside a type sync and are
converted into status updates by the sync manager.
"""

from __future__ import annotations


class SRDError(Exception):
    """Base class for all SRD engine errors."""


class InvalidArgumentError(SRDError, ValueError):
    """Unknown data type, out-of-bounds query or limit, or malformed caller input."""


class UnauthorizedError(SRDError, PermissionError):
    """A gated operation was requested without an authenticated caller."""


class EntryNotFoundError(SRDError, KeyError):
    """A custom entry id does not exist for the given data type."""

    def __str__(self) -> str:
        # KeyError.__str__ would repr() the message
        return str(self.args[0]) if self.args else ""


class UpstreamFetchError(SRDError):
    """The content provider was unreachable, answered non-2xx, or sent a malformed body."""


class TransientProviderError(UpstreamFetchError):
    """A provider answer worth retrying (429 or 5xx)."""

    def __init__(self, message: str, status_code: int) -> None:
        super().__init__(message)
        self.status_code = status_code


class NormalizationError(SRDError):
    """A single provider record could not be mapped to an entry."""


__all__ = [
    "SRDError",
    "InvalidArgumentError",
    "UnauthorizedError",
    "EntryNotFoundError",
    "UpstreamFetchError",
    "TransientProviderError",
    "NormalizationError",
]
