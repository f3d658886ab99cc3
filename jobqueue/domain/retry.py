import random
from datetime import datetime, timedelta
from typing import Optional

from jobqueue.settings import settings


def retry_delay(
    retry_count: int,
    base_delay_seconds: Optional[int] = None,
    max_delay_seconds: Optional[int] = None,
    jitter: Optional[bool] = None,
) -> timedelta:
    """
    Exponential backoff for the retry following `retry_count` earlier retries.

    Formula:
        delay = min(base * (2 ^ retry_count), max_delay)
        if jitter:
            delay = delay + random_uniform(0, 0.1 * delay)

    Args:
        retry_count: Retries already consumed. 0 means "first failure",
                     which waits `base` seconds.

    Returns:
        timedelta: How long the job should wait before it is eligible again.
    """
    base = settings.RETRY_BASE_DELAY_SECONDS if base_delay_seconds is None else base_delay_seconds
    cap = settings.RETRY_MAX_DELAY_SECONDS if max_delay_seconds is None else max_delay_seconds
    use_jitter = settings.RETRY_JITTER if jitter is None else jitter

    # 2^20 * base is far past any sane cap; keeps pow bounded.
    safe_count = min(max(retry_count, 0), 20)

    delay = base * (2 ** safe_count)
    if delay > cap:
        delay = cap

    if use_jitter:
        # Up to 10% jitter to avoid thundering herd
        delay += random.uniform(0, delay * 0.1)

    return timedelta(seconds=delay)


def calculate_next_run(retry_count: int, now: datetime, **kwargs) -> datetime:
    """Earliest pickup time for a job that just failed after `retry_count` retries."""
    return now + retry_delay(retry_count, **kwargs)
