import random
from dataclasses import dataclass, field

# 4xx responses that mean "this request will never succeed as sent"
NON_RETRYABLE_STATUSES = frozenset({400, 401, 403, 404, 409, 422})


@dataclass(frozen=True)
class RetryConfig:
    max_retries: int = 3
    base_delay_ms: int = 1000
    max_delay_ms: int = 10_000
    jitter: bool = False
    non_retryable_statuses: frozenset[int] = field(default=NON_RETRYABLE_STATUSES)


DEFAULT_RETRY_CONFIG = RetryConfig()


def compute_backoff_ms(attempt: int, base: int = 1000, cap: int = 10_000, jitter: bool = False) -> int:
    # exponential backoff, attempt is 0-based
    exp = min(cap, base * (2 ** max(0, attempt)))
    if jitter:
        # full jitter
        return random.randint(0, exp)
    return exp
