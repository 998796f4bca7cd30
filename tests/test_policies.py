import pytest

from fieldtracker.client.exceptions import AuthenticationError, RejectedError, TransportError
from fieldtracker.client.policies import (
    MAX_BACKOFF_SECONDS,
    EvictionPolicy,
    FailureKind,
    ItemFailure,
    RetryClassifier,
    calculate_backoff_delay,
)


def test_classifier():
    classifier = RetryClassifier()
    assert classifier.classify(TransportError("down")) == FailureKind.TRANSIENT
    assert classifier.classify(TimeoutError()) == FailureKind.TRANSIENT
    assert classifier.classify(RejectedError("bad", 400)) == FailureKind.PERMANENT
    assert classifier.classify(AuthenticationError("no", 401)) == FailureKind.PERMANENT
    assert classifier.classify(ItemFailure("parent missing", retryable=True)) == FailureKind.TRANSIENT
    assert classifier.classify(ItemFailure("invalid", retryable=False)) == FailureKind.PERMANENT
    assert classifier.classify(RuntimeError("?")) == FailureKind.TRANSIENT


def test_eviction_policy():
    policy = EvictionPolicy(max_attempts=3)
    assert not policy.should_evict(1, FailureKind.TRANSIENT)
    assert not policy.should_evict(2, FailureKind.TRANSIENT)
    assert policy.should_evict(3, FailureKind.TRANSIENT)
    assert policy.should_evict(1, FailureKind.PERMANENT)


def test_eviction_policy_requires_an_attempt():
    with pytest.raises(ValueError):
        EvictionPolicy(max_attempts=0)


@pytest.mark.parametrize("retry_count,low,high", [
    (0, 1.0, 1.1),
    (1, 2.0, 2.2),
    (3, 8.0, 8.8),
])
def test_backoff_grows_exponentially_with_jitter(retry_count, low, high):
    for _ in range(20):
        assert low <= calculate_backoff_delay(retry_count) <= high


def test_backoff_is_capped():
    assert calculate_backoff_delay(10) == MAX_BACKOFF_SECONDS
    assert calculate_backoff_delay(4, base=0.5) <= 8.8
