import random
from datetime import datetime, timedelta


def compute_backoff_seconds(attempt: int, base: int = 10, cap: int = 900) -> int:
    # exponential backoff with jitter
    exp = min(cap, base * (2 ** max(0, attempt - 1)))
    jitter = random.randint(0, min(30, exp // 3))
    return exp + jitter


def next_retry_at(now: datetime, attempt: int, retry_after: str | None = None) -> datetime:
    """Backoff for `attempt`, stretched to the server's Retry-After (seconds) when larger."""
    seconds = compute_backoff_seconds(attempt)
    if retry_after:
        try:
            seconds = max(seconds, int(float(retry_after)))
        except ValueError:
            # HTTP-date form, keep our own backoff
            pass
    return now + timedelta(seconds=seconds)
