"""
Retry policy for outbound dispatch
"""
import logging
import random
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from ..exceptions import DispatchRetriableError
from ..models.workflow import RetrySettings


logger = logging.getLogger(__name__)


class RetryStrategy(Enum):
    """Backoff strategy"""
    FIXED_DELAY = "fixed"
    LINEAR_BACKOFF = "linear"
    EXPONENTIAL_BACKOFF = "exponential"


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry of transient dispatch failures"""
    max_attempts: int = 5
    initial_delay: float = 1.0  # seconds
    backoff_factor: float = 2.0
    max_delay: float = 60.0     # seconds
    strategy: RetryStrategy = RetryStrategy.EXPONENTIAL_BACKOFF
    jitter: bool = False

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

    @classmethod
    def from_settings(cls, settings: Optional[RetrySettings], default: "RetryPolicy" = None) -> "RetryPolicy":
        """Workflow-level override, falling back to the engine default"""
        if settings is None:
            return default or cls()
        return cls(
            max_attempts=settings.max_attempts,
            initial_delay=settings.initial_delay,
            backoff_factor=settings.backoff_factor,
            max_delay=settings.max_delay,
            strategy=RetryStrategy(settings.strategy),
            jitter=default.jitter if default else False,
        )

    def should_retry(self, error: Exception, attempt: int) -> bool:
        """Whether another attempt follows the failed attempt number `attempt` (1-based)"""
        return isinstance(error, DispatchRetriableError) and attempt < self.max_attempts

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait after the failed attempt number `attempt` (1-based)"""
        if self.strategy == RetryStrategy.FIXED_DELAY:
            delay = self.initial_delay
        elif self.strategy == RetryStrategy.LINEAR_BACKOFF:
            delay = self.initial_delay * attempt
        else:
            delay = self.initial_delay * (self.backoff_factor ** (attempt - 1))

        delay = min(delay, self.max_delay)

        if self.jitter:
            delay += random.uniform(0, delay * 0.1)

        return delay
