"""
Tests for BackoffPolicy, including property-based checks of the delay math.
"""

from datetime import UTC, datetime, timedelta

import pytest
from hypothesis import given
from hypothesis import strategies as st

from pyagenda.models import BackoffPolicy

NOW = datetime(2026, 1, 1, tzinfo=UTC)


# ==============================================================================
# TEST 1: Delay calculation
# ==============================================================================


def test_standard_policy_values():
    policy = BackoffPolicy.STANDARD
    assert policy.max_retries == 3
    assert policy.base_delay_ms == 1000
    assert policy.max_delay_ms == 300000


def test_delays_double_until_capped():
    policy = BackoffPolicy(max_retries=6, base_delay_ms=1000, max_delay_ms=10000)
    assert [policy.delay_for_retry(k) for k in range(1, 7)] == [
        1000,
        2000,
        4000,
        8000,
        10000,
        10000,
    ]


def test_delay_is_none_once_exhausted():
    policy = BackoffPolicy(max_retries=3, base_delay_ms=1000, max_delay_ms=10000)
    assert policy.delay_for_retry(3) == 4000
    assert policy.delay_for_retry(4) is None
    assert policy.is_exhausted(4)
    assert not policy.is_exhausted(3)


def test_retry_count_is_one_indexed():
    with pytest.raises(ValueError):
        BackoffPolicy.STANDARD.delay_for_retry(0)


def test_backoff_until_adds_delay():
    policy = BackoffPolicy(max_retries=3, base_delay_ms=1000, max_delay_ms=10000)
    assert policy.backoff_until(2, NOW) == NOW + timedelta(milliseconds=2000)
    assert policy.backoff_until(4, NOW) is None


def test_none_policy_never_retries():
    assert BackoffPolicy.NONE.delay_for_retry(1) is None


def test_large_retry_counts_stay_capped():
    """Very high retry counts hit the cap instead of overflowing."""
    policy = BackoffPolicy(max_retries=5000, base_delay_ms=1000, max_delay_ms=10000)
    assert policy.delay_for_retry(1100) == 10000
    assert policy.delay_for_retry(5000) == 10000
    assert policy.backoff_until(1100, NOW) == NOW + timedelta(seconds=10)


@pytest.mark.parametrize(
    "kwargs",
    [
        {"max_retries": -1, "base_delay_ms": 1, "max_delay_ms": 1},
        {"max_retries": 1, "base_delay_ms": -1, "max_delay_ms": 1},
        {"max_retries": 1, "base_delay_ms": 1, "max_delay_ms": 1, "multiplier": 0.5},
    ],
)
def test_invalid_policy_rejected(kwargs):
    with pytest.raises(ValueError):
        BackoffPolicy(**kwargs)


# ==============================================================================
# TEST 2: Properties
# ==============================================================================


@pytest.mark.property
@given(
    max_retries=st.integers(min_value=1, max_value=12),
    base=st.integers(min_value=0, max_value=60_000),
    cap=st.integers(min_value=0, max_value=600_000),
    data=st.data(),
)
def test_delay_matches_capped_exponential(max_retries, base, cap, data):
    """Delay for retry k equals min(base * 2^(k-1), cap)."""
    policy = BackoffPolicy(max_retries=max_retries, base_delay_ms=base, max_delay_ms=cap)
    k = data.draw(st.integers(min_value=1, max_value=max_retries))
    assert policy.delay_for_retry(k) == min(base * 2 ** (k - 1), cap)


@pytest.mark.property
@given(
    max_retries=st.integers(min_value=1, max_value=12),
    base=st.integers(min_value=0, max_value=60_000),
    cap=st.integers(min_value=0, max_value=600_000),
)
def test_delays_are_monotonic(max_retries, base, cap):
    """Delays never shrink as failures accumulate and never exceed the cap."""
    policy = BackoffPolicy(max_retries=max_retries, base_delay_ms=base, max_delay_ms=cap)
    delays = [policy.delay_for_retry(k) for k in range(1, max_retries + 1)]
    assert delays == sorted(delays)
    assert all(d <= cap for d in delays)


@pytest.mark.property
@given(
    max_retries=st.integers(min_value=0, max_value=12),
    extra=st.integers(min_value=1, max_value=50),
)
def test_exhausted_beyond_budget(max_retries, extra):
    """Any retry past max_retries gets no delay."""
    policy = BackoffPolicy(max_retries=max_retries, base_delay_ms=1000, max_delay_ms=10000)
    assert policy.delay_for_retry(max_retries + extra) is None
