import random
from datetime import datetime, timedelta, timezone

BACKOFF_BASE_SECONDS = 10
BACKOFF_CAP_SECONDS = 900


def compute_backoff_seconds(attempt: int, base: int = BACKOFF_BASE_SECONDS, cap: int = BACKOFF_CAP_SECONDS) -> int:
    """attempt 1 -> ~10s, 2 -> ~20s, 3 -> ~40s ... capped, plus up to 30s jitter."""
    exp = min(cap, base * (2 ** max(0, attempt - 1)))
    jitter = random.randint(0, min(30, exp // 3))
    return exp + jitter


def next_retry_at(attempt: int, now: datetime | None = None) -> tuple[datetime, int]:
    seconds = compute_backoff_seconds(attempt)
    return (now or datetime.now(timezone.utc)) + timedelta(seconds=seconds), seconds
