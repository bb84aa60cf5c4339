"""
Delay policies for the queue.

Retry backoff decides when a failed job becomes eligible again. Idle
strategies decide how long a worker sleeps after finding the queue empty.
The two are configured independently.
"""

from abc import ABC, abstractmethod


class ExponentialBackoff:
    """
    Retry delay of ``min(2**attempts * base, cap)`` seconds.

    Args:
        base: Base unit in seconds
        cap: Upper bound on any single delay in seconds
    """

    def __init__(self, base: float = 60, cap: float = 3600):
        if base <= 0 or cap <= 0:
            raise ValueError("Backoff base and cap must be positive")
        self.base = base
        self.cap = cap

    def delay(self, attempts: int) -> float:
        """Seconds to wait before the job may run again after ``attempts`` failures."""
        # Exponent is bounded so large attempt counts cannot overflow
        exponent = min(max(attempts, 0), 62)
        return min((2 ** exponent) * self.base, self.cap)

    def __repr__(self):
        return f"<ExponentialBackoff(base={self.base}, cap={self.cap})>"


class IdleStrategy(ABC):
    """How long a worker sleeps when a dequeue finds no job."""

    @abstractmethod
    def next_delay(self) -> float:
        """Seconds to sleep after another empty poll."""
        pass

    def reset(self) -> None:
        """Called after a job was processed."""
        pass


class ConstantIdle(IdleStrategy):
    """Poll at a fixed interval."""

    def __init__(self, interval: float = 3):
        self.interval = interval

    def next_delay(self) -> float:
        return self.interval


class ExponentialIdle(IdleStrategy):
    """
    Back off polling while the queue stays empty.

    Args:
        initial: First sleep in seconds
        maximum: Longest sleep in seconds
        factor: Growth per consecutive empty poll
    """

    def __init__(self, initial: float = 1, maximum: float = 30, factor: float = 2):
        if initial <= 0 or maximum < initial or factor < 1:
            raise ValueError("Invalid idle backoff parameters")
        self.initial = initial
        self.maximum = maximum
        self.factor = factor
        self._current = initial

    def next_delay(self) -> float:
        delay = self._current
        self._current = min(self._current * self.factor, self.maximum)
        return delay

    def reset(self) -> None:
        self._current = self.initial
