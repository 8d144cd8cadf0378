"""Exception taxonomy for the SimpliSafe client."""

from __future__ import annotations

from typing import Any


class SimpliSafeError(Exception):
    """Base class for SimpliSafe client errors."""


class BackendRateLimitError(SimpliSafeError):
    """Upstream throttled us or could not be reached; retry later."""


class InvalidTargetStateError(SimpliSafeError, ValueError):
    """A requested alarm or lock state is not supported."""


class UpstreamFormatError(SimpliSafeError):
    """A response did not have the expected shape."""


class NoSubscriptionError(SimpliSafeError):
    """No single monitoring plan could be selected for the account."""


class BackendRequestError(SimpliSafeError):
    """Upstream rejected a request; ``body`` holds its parsed response."""

    def __init__(self, status: int, body: Any = None) -> None:
        """Store the HTTP status and response body."""

        super().__init__(f"SimpliSafe API error {status}: {body!r}")
        self.status = status
        self.body = body


class TransientWriteError(BackendRequestError):
    """A state change collided with one in progress (409) or timed out (504)."""


__all__ = [
    "BackendRateLimitError",
    "BackendRequestError",
    "InvalidTargetStateError",
    "NoSubscriptionError",
    "SimpliSafeError",
    "TransientWriteError",
    "UpstreamFormatError",
]
