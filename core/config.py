import os
from typing import Optional


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name) or default)


def _env_float(name: str, default: float) -> float:
    return float(os.getenv(name) or default)


class QueueSettings:
    """
    Queue and worker settings, read from the environment at construction time.
    Explicit keyword arguments take precedence over environment variables.
    """

    # Validation bounds for enqueue
    MIN_PRIORITY = 0
    MAX_PRIORITY = 10
    MAX_DELAY_SECONDS = 30 * 24 * 3600
    MAX_ATTEMPTS_LIMIT = 100
    MAX_NAME_LENGTH = 100

    def __init__(
        self,
        default_priority: Optional[int] = None,
        default_max_attempts: Optional[int] = None,
        backoff_base: Optional[float] = None,
        backoff_cap: Optional[float] = None,
        sleep: Optional[float] = None,
        timeout: Optional[float] = None,
        reclaim_after: Optional[int] = None,
    ):
        self.default_priority = (
            default_priority if default_priority is not None
            else _env_int("QUEUE_DEFAULT_PRIORITY", 5)
        )
        self.default_max_attempts = (
            default_max_attempts if default_max_attempts is not None
            else _env_int("QUEUE_DEFAULT_MAX_ATTEMPTS", 3)
        )
        self.backoff_base = (
            backoff_base if backoff_base is not None
            else _env_float("QUEUE_BACKOFF_BASE", 60)
        )
        self.backoff_cap = (
            backoff_cap if backoff_cap is not None
            else _env_float("QUEUE_BACKOFF_CAP", 3600)
        )
        self.sleep = sleep if sleep is not None else _env_float("QUEUE_SLEEP", 3)
        self.timeout = timeout if timeout is not None else _env_float("QUEUE_TIMEOUT", 60)

        if reclaim_after is None and os.getenv("QUEUE_RECLAIM_AFTER"):
            reclaim_after = _env_int("QUEUE_RECLAIM_AFTER", 0) or None
        self.reclaim_after = reclaim_after

    def __repr__(self):
        return (
            f"<QueueSettings(priority={self.default_priority}, "
            f"max_attempts={self.default_max_attempts}, "
            f"backoff={self.backoff_base}s..{self.backoff_cap}s)>"
        )
