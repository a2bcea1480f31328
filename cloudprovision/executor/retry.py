from __future__ import annotations

from dataclasses import dataclass

from .schema import ErrorCategory, RetryPolicy, RetryScheme

RETRYABLE = frozenset({ErrorCategory.CAPABILITY_PROPAGATING})


@dataclass(frozen=True)
class RetryDecision:
    retry: bool
    delay_seconds: int = 0
    # try a direct API activation before waiting out the backoff
    activate_capabilities: bool = False


def backoff_delay(category: ErrorCategory, attempt_number: int, policy: RetryPolicy) -> int:
    if policy.scheme == RetryScheme.PER_CATEGORY:
        schedule = policy.category_delays.get(category)
        if schedule:
            return int(schedule[min(attempt_number, len(schedule)) - 1])
    return attempt_number * policy.base_delay_seconds


def should_retry(category: ErrorCategory, attempt_number: int, policy: RetryPolicy) -> RetryDecision:
    """
    Decide whether the attempt that just failed with `category` gets a successor.

    Only CAPABILITY_PROPAGATING is retried; the async categories are accepted
    submissions and every other category is fatal. Never schedules an attempt
    past policy.max_attempts.
    """
    if attempt_number < 1:
        raise ValueError(f"attempt_number must be >= 1, got {attempt_number}")
    if category not in RETRYABLE or attempt_number >= policy.max_attempts:
        return RetryDecision(retry=False)
    return RetryDecision(
        retry=True,
        delay_seconds=backoff_delay(category, attempt_number, policy),
        activate_capabilities=attempt_number == 1,
    )
