"""Retry decisions and the 503 back-off schedule."""

from enum import Enum

# Seconds to wait before retry N of a 503 response; the last entry repeats.
BACKOFF_SCHEDULE = (0.2, 0.5, 1.0, 2.0, 5.0, 8.0)

RATE_LIMITED_STATUS = 503


def backoff_delay(attempt: int) -> float:
    """Delay in seconds before retrying a 503 for the given attempt count."""
    if attempt < 1:
        return 0.0
    return BACKOFF_SCHEDULE[min(attempt, len(BACKOFF_SCHEDULE)) - 1]


class Verdict(Enum):
    OK = "ok"
    RETRY = "retry"                # ordinary failure, bounded, no delay
    RETRY_BACKOFF = "backoff"      # rate limited, unbounded, delayed
    FAIL = "fail"                  # permanent


class RetryPolicy:
    """Classifies responses and bounds ordinary retries."""

    def __init__(self, max_retries: int):
        if max_retries < 0:
            raise ValueError("max_retries must be non-negative")
        self.max_retries = max_retries

    def classify_status(self, status: int) -> Verdict:
        if status == RATE_LIMITED_STATUS:
            return Verdict.RETRY_BACKOFF
        if status >= 500:
            return Verdict.RETRY
        if status >= 400:
            return Verdict.FAIL
        return Verdict.OK
