"""fast42 client exceptions."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import httpx


class Fast42Error(Exception):
    """Base exception for fast42 errors."""

    pass


class AuthenticationError(Fast42Error):
    """Raised when the client-credentials grant is rejected."""

    def __init__(
        self,
        message: str,
        status: int | None = None,
        credential_index: int | None = None,
    ) -> None:
        super().__init__(message)
        self.status = status
        self.credential_index = credential_index


class QuotaDiscoveryError(Fast42Error):
    """Raised when the rate limit probe fails or returns unusable headers."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class NotInitializedError(Fast42Error):
    """Raised when traffic is attempted before init() completed."""

    def __init__(self, message: str = "Fast42 is not initialized. Call init() first") -> None:
        super().__init__(message)


class ConfigurationError(Fast42Error):
    """Raised for invalid construction arguments or unknown applications."""

    pass


class JobTimeoutError(Fast42Error, TimeoutError):
    """Raised when a job expires while still waiting in a limiter queue.

    The job is never executed once this is raised.
    """

    def __init__(self, message: str, limiter_id: str | None = None) -> None:
        super().__init__(message)
        self.limiter_id = limiter_id


class LimiterClosedError(Fast42Error):
    """Raised for jobs still queued when their limiter is closed."""

    pass


class RateLimitedError(Fast42Error):
    """Raised when the API itself answers 429.

    Not retried. The full response is attached so the caller can tell which
    request (e.g. which page number) to re-issue.
    """

    def __init__(self, message: str, response: httpx.Response) -> None:
        super().__init__(message)
        self.response = response


class TransportError(Fast42Error):
    """Raised on network-level failures (connect, read, protocol errors)."""

    pass
