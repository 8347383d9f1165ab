"""Retry selection — when to sweep failed items back in, and how far back."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from datetime import datetime, timedelta

    from conveyor.pipeline.settings import RetryPolicy


@dataclass(frozen=True)
class RetryWindow:
    """Bounds for fetching retryable items.

    Attributes:
        since: Only items last touched before this instant are eligible.
        max_attempts: Only items with fewer recorded attempts are eligible.
    """

    since: datetime
    max_attempts: int


def should_retry(run_count: int, policy: RetryPolicy | None) -> bool:
    """Return True when this run should also fetch previously failed items."""
    return policy is not None and run_count % policy.every_time == 0


def retry_window(policy: RetryPolicy, work_time: timedelta, now: datetime) -> RetryWindow:
    """Compute the look-back window for a retry sweep.

    The horizon is ``work_time * every_time`` so that items still in flight
    within a normal cycle are not picked up again.
    """
    return RetryWindow(
        since=now - work_time * policy.every_time,
        max_attempts=policy.max_attempts,
    )
