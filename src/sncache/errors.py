"""
Error taxonomy for the cache and its reconciliation cycle.

Every failure surfaces as one of these kinds so a caller can decide
between retrying the whole cycle and giving up. Empty query results
(no pending records, no stored token) are never errors.
"""

from __future__ import annotations

from typing import Optional


class SyncError(Exception):
    """Base class for every sncache failure."""


class ConfigurationError(SyncError):
    """Raised when the API is misused or the config file is unusable."""


class SessionInvalid(SyncError):
    """Raised when the session fails validation before any work is done."""


class RemoteError(SyncError):
    """Raised when the remote exchange fails, times out or is cancelled."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class StoreError(SyncError):
    """Raised on local persistence failure."""


class InvariantViolation(StoreError):
    """Raised when stored state breaks an invariant (e.g. two sync tokens)."""


class StoreLocked(StoreError):
    """Raised when a store location is already held by another handle."""
