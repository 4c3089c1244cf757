"""
Retry policy for failed pipeline steps.

A pure function of (attempt count, failure kind). Attempts are counted per
job across its whole lifetime and include the failure being decided on.
"""

from dataclasses import dataclass
from datetime import timedelta
from enum import Enum

from citescan.core.models import FailureKind


class RetryAction(str, Enum):
    RETRY_IMMEDIATELY = "retry_immediately"
    RETRY_AFTER = "retry_after"
    GIVE_UP = "give_up"


@dataclass(frozen=True)
class RetryDecision:
    action: RetryAction
    delay: timedelta | None = None

    @classmethod
    def retry_immediately(cls) -> "RetryDecision":
        return cls(RetryAction.RETRY_IMMEDIATELY)

    @classmethod
    def retry_after(cls, delay: timedelta) -> "RetryDecision":
        return cls(RetryAction.RETRY_AFTER, delay)

    @classmethod
    def give_up(cls) -> "RetryDecision":
        return cls(RetryAction.GIVE_UP)

    @property
    def is_give_up(self) -> bool:
        return self.action is RetryAction.GIVE_UP


# Attempts 1-2 retry on the next tick; 3, 4, 5 back off; 6 and beyond give up.
IMMEDIATE_RETRY_ATTEMPTS = 2
BACKOFF_SCHEDULE = {
    3: timedelta(minutes=5),
    4: timedelta(minutes=15),
    5: timedelta(minutes=30),
}
MAX_ATTEMPTS = 6


def decide(attempt_count: int, failure_kind: FailureKind) -> RetryDecision:
    """Decide what to do after the attempt_count-th failure of a job."""
    if failure_kind is FailureKind.PERMANENT:
        return RetryDecision.give_up()
    if attempt_count >= MAX_ATTEMPTS:
        return RetryDecision.give_up()
    if attempt_count <= IMMEDIATE_RETRY_ATTEMPTS:
        return RetryDecision.retry_immediately()
    return RetryDecision.retry_after(BACKOFF_SCHEDULE[attempt_count])
