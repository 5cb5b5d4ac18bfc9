"""
Retry policy for LLM provider calls.

Kept separate from the client so backoff can be tested without a network:

    policy = RetryPolicy(max_attempts=3)
    policy.next_delay(0, FailureKind.RATE_LIMITED)  # 2.0
    policy.next_delay(1, FailureKind.RATE_LIMITED)  # 4.0
    policy.next_delay(0, FailureKind.UNAUTHORIZED)  # None -> stop

Delays (attempt is zero-based):
- rate limited (429):            2^attempt * 2s
- overloaded (503):              2^attempt * 1s
- other 5xx / timeout / network: 2^attempt * 1s
- unauthorized / bad request:    never retried
"""
from enum import Enum
from typing import Optional


class FailureKind(str, Enum):
    RATE_LIMITED = "rate_limited"
    OVERLOADED = "overloaded"
    UNAUTHORIZED = "unauthorized"
    BAD_REQUEST = "bad_request"
    TIMEOUT = "timeout"
    NETWORK = "network"
    SERVER = "server"
    UNKNOWN = "unknown"


# Failures the user can simply retry later
TRANSIENT_FAILURES = {
    FailureKind.RATE_LIMITED,
    FailureKind.OVERLOADED,
    FailureKind.TIMEOUT,
    FailureKind.NETWORK,
    FailureKind.SERVER,
}


class LLMProviderError(Exception):
    """Provider call failed after the retry policy gave up."""

    def __init__(self, kind: FailureKind, message: str = "", status_code: Optional[int] = None):
        super().__init__(message or kind.value)
        self.kind = kind
        self.status_code = status_code

    @property
    def is_transient(self) -> bool:
        return self.kind in TRANSIENT_FAILURES


def classify_status(status_code: Optional[int]) -> FailureKind:
    """Map an HTTP status from the provider to a failure kind."""
    if status_code is None:
        return FailureKind.NETWORK
    if status_code == 429:
        return FailureKind.RATE_LIMITED
    if status_code == 503:
        return FailureKind.OVERLOADED
    if status_code in (401, 403):
        return FailureKind.UNAUTHORIZED
    if status_code in (400, 404, 422):
        return FailureKind.BAD_REQUEST
    if status_code == 408:
        return FailureKind.TIMEOUT
    if status_code >= 500:
        return FailureKind.SERVER
    return FailureKind.UNKNOWN


class RetryPolicy:
    """(attempt, failure) -> delay in seconds, or None to stop."""

    BASE_DELAYS = {
        FailureKind.RATE_LIMITED: 2.0,
        FailureKind.OVERLOADED: 1.0,
        FailureKind.SERVER: 1.0,
        FailureKind.TIMEOUT: 1.0,
        FailureKind.NETWORK: 1.0,
    }

    def __init__(self, max_attempts: int = 3):
        self.max_attempts = max_attempts

    def next_delay(self, attempt: int, kind: FailureKind) -> Optional[float]:
        """
        Args:
            attempt: zero-based index of the attempt that just failed
            kind: classified failure

        Returns:
            Seconds to wait before the next attempt, or None when the caller must stop.
        """
        base = self.BASE_DELAYS.get(kind)
        if base is None:
            return None
        if attempt + 1 >= self.max_attempts:
            return None
        return (2 ** attempt) * base
