"""Error types shared across the monitoring engine."""

from __future__ import annotations


# Substrings seen in browser/network errors when the store itself is unreachable.
CONNECTIVITY_FAILURE_PATTERNS = (
    "err_name_not_resolved",
    "getaddrinfo",
    "econnrefused",
    "timeout",
    "timed out",
    "enotfound",
    "err_connection_refused",
    "err_connection_timed_out",
)


def is_connectivity_failure(message: str | None) -> bool:
    """Return True when an error message looks like DNS/refused/timeout trouble."""
    text = (message or "").lower()
    if not text:
        return False
    return any(pattern in text for pattern in CONNECTIVITY_FAILURE_PATTERNS)


class StorewatchError(Exception):
    """Base class for monitoring engine errors."""


class CaptureError(StorewatchError):
    """The render service could not produce a screenshot."""

    def __init__(self, message: str, *, connectivity: bool | None = None):
        super().__init__(message)
        self.connectivity = is_connectivity_failure(message) if connectivity is None else connectivity


class StoreListingError(StorewatchError):
    """The set of active stores could not be read."""


class ArtifactStoreError(StorewatchError):
    """An artifact could not be written."""
