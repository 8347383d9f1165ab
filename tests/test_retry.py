"""Tests for the retry selector."""

from __future__ import annotations

from datetime import timedelta

from conveyor.pipeline.retry import RetryWindow, retry_window, should_retry
from conveyor.pipeline.settings import RetryPolicy
from tests.conftest import NOW


def test_retry_cadence() -> None:
    policy = RetryPolicy(every_time=5)

    due = [n for n in range(21) if should_retry(n, policy)]

    assert due == [0, 5, 10, 15, 20]


def test_every_run_when_every_time_is_one() -> None:
    policy = RetryPolicy(every_time=1)

    assert all(should_retry(n, policy) for n in range(1, 10))


def test_no_policy_never_retries() -> None:
    assert not any(should_retry(n, None) for n in range(21))


def test_retry_window() -> None:
    policy = RetryPolicy(every_time=3, max_attempts=2)

    window = retry_window(policy, timedelta(minutes=10), NOW)

    assert window == RetryWindow(since=NOW - timedelta(minutes=30), max_attempts=2)
