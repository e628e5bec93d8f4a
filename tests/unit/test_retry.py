"""RetryPolicy tests."""

from __future__ import annotations

import pytest

from bonfire_provisioning.provisioning.retry import RetryPolicy


def test_defaults():
    policy = RetryPolicy()
    assert policy.max_attempts == 4
    assert policy.base_delay == 1.0
    assert policy.max_delay == 8.0


def test_exponential_delays_without_jitter():
    policy = RetryPolicy(jitter=False)
    assert [policy.delay_for(n) for n in range(5)] == [1.0, 2.0, 4.0, 8.0, 8.0]


def test_jitter_stays_within_cap():
    policy = RetryPolicy()
    for attempt in range(6):
        delay = policy.delay_for(attempt)
        assert 0 <= delay <= min(2 ** attempt, 8.0)


def test_max_attempts_counts_first_call():
    policy = RetryPolicy(max_attempts=3)
    assert policy.should_retry(1) is True
    assert policy.should_retry(2) is True
    assert policy.should_retry(3) is False


@pytest.mark.parametrize(
    'kwargs',
    [{'max_attempts': 0}, {'base_delay': -1}, {'max_delay': -0.5}],
)
def test_invalid_policy_rejected(kwargs):
    with pytest.raises(ValueError):
        RetryPolicy(**kwargs)
