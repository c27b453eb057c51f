"""
Pin Store Error Types — Structured exception hierarchy.

Lets callers distinguish retryable failures (relay down, timeout)
from non-retryable ones (unknown pin, permission denied) so the retry loop
only retries what makes sense.
"""

from typing import Optional


class PinStoreError(Exception):
    """Base class for all pin store errors."""
    pass


class PinStoreConnectionError(PinStoreError):
    """Relay is unreachable or returned a server error (5xx). Retryable."""
    pass


class PinStoreTimeoutError(PinStoreError):
    """Request timed out waiting for the relay. Retryable."""
    pass


class PinStoreRateLimitError(PinStoreError):
    """Relay returned 429 Too Many Requests. Retryable after backoff.

    ``retry_after`` is the pause the relay asked for, in seconds, or None.
    """

    def __init__(self, message: str = "", retry_after: Optional[float] = None):
        super().__init__(message)
        self.retry_after = retry_after


class PinStoreUnavailableError(PinStoreError):
    """The pin store integration is not present or not ready. Callers degrade to a no-op."""
    pass


class PinNotFoundError(PinStoreError):
    """The requested pin does not exist (404). NOT retryable."""
    pass


class PinStoreAuthError(PinStoreError):
    """API key rejected or client ID invalid (401). NOT retryable without config change."""
    pass


class PinPermissionError(PinStoreError):
    """Caller's ownership does not permit the action (403). Surfaced to the user, never retried."""
    pass
