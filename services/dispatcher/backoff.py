DEFAULT_BASE_MS = 1000
DEFAULT_MAX_MS = 30000


def backoff_delay_ms(attempts_made: int, base_ms: int = DEFAULT_BASE_MS, max_ms: int = DEFAULT_MAX_MS) -> int:
    """Exponential retry delay: base * 2^attempts_made, capped at max_ms."""
    if attempts_made < 0:
        raise ValueError("attempts_made must be non-negative")
    return min(base_ms * (2 ** attempts_made), max_ms)


def should_retry(attempts_made: int, max_attempts: int) -> bool:
    """attempts_made counts finished attempts before the one that just failed."""
    return attempts_made < max_attempts - 1
