"""
Retry and eviction policies for the mutation queue.

Deciding *whether* a failure is worth retrying and *when* an item has been
retried enough are separate questions, answered by separate objects.
"""
from dataclasses import dataclass
import enum
import random

from fieldtracker.client.exceptions import AuthenticationError, RejectedError, TransportError

MAX_BACKOFF_SECONDS = 30.0


class FailureKind(str, enum.Enum):
    TRANSIENT = "transient"
    PERMANENT = "permanent"


@dataclass(frozen=True)
class ItemFailure:
    """A per-item verdict reported by the server in a push response."""
    message: str
    retryable: bool


class RetryClassifier:
    """Map an error to TRANSIENT or PERMANENT."""

    def classify(self, error) -> FailureKind:
        if isinstance(error, ItemFailure):
            return FailureKind.TRANSIENT if error.retryable else FailureKind.PERMANENT
        if isinstance(error, (RejectedError, AuthenticationError)):
            return FailureKind.PERMANENT
        if isinstance(error, (TransportError, OSError, TimeoutError)):
            return FailureKind.TRANSIENT
        # Unknown failures get the benefit of the doubt, bounded by eviction
        return FailureKind.TRANSIENT


class EvictionPolicy:
    """
    Decide when a failing item leaves the queue.

    Permanent failures go at once. Transient ones go after ``max_attempts``
    failures, so a broken item cannot block the queue forever.
    """

    def __init__(self, max_attempts: int = 3):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts

    def should_evict(self, retry_count: int, kind: FailureKind) -> bool:
        if kind == FailureKind.PERMANENT:
            return True
        return retry_count >= self.max_attempts


def calculate_backoff_delay(retry_count: int, base: float = 1.0) -> float:
    """Exponential backoff with up to 10% jitter, capped at 30 seconds."""
    delay = base * (2 ** max(retry_count, 0))
    jitter = random.uniform(0, delay * 0.1)
    return min(delay + jitter, MAX_BACKOFF_SECONDS)
