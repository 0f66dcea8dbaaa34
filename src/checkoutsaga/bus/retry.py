"""
Redelivery policy for failed handler deliveries.

The bus retries a failing delivery inside the handler's own slot, waiting an
exponentially growing, jittered delay between attempts, and dead-letters the
delivery once ``max_retries`` redeliveries have also failed.
"""

import logging
import random
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryConfig:
    """
    Configuration for redelivery behavior.

    Attributes:
        max_retries: Redeliveries after the first attempt (0 = dead-letter on first failure)
        initial_delay: Delay in seconds before the first redelivery
        max_delay: Maximum delay in seconds between redeliveries
        exponential_base: Base for exponential backoff calculation
        jitter: Fraction of delay to add as random jitter (0-1)

    Example:
        >>> config = RetryConfig(max_retries=3, initial_delay=0.5, max_delay=10.0)
    """

    max_retries: int = 5
    initial_delay: float = 1.0
    max_delay: float = 60.0
    exponential_base: float = 2.0
    jitter: float = 0.1

    def __post_init__(self) -> None:
        """Validate configuration values."""
        if self.max_retries < 0:
            raise ValueError(
                f"max_retries must be >= 0, got {self.max_retries}. Use 0 for no retries."
            )

        if self.initial_delay <= 0:
            raise ValueError(f"initial_delay must be positive, got {self.initial_delay}.")

        if self.max_delay <= 0:
            raise ValueError(f"max_delay must be positive, got {self.max_delay}.")

        if self.max_delay < self.initial_delay:
            raise ValueError(
                f"max_delay ({self.max_delay}) must be >= initial_delay ({self.initial_delay})."
            )

        if self.exponential_base <= 1.0:
            raise ValueError(f"exponential_base must be > 1.0, got {self.exponential_base}.")

        if not 0.0 <= self.jitter <= 1.0:
            raise ValueError(f"jitter must be between 0.0 and 1.0, got {self.jitter}.")

    @property
    def max_attempts(self) -> int:
        """Total deliveries of one event to one slot, including the first."""
        return self.max_retries + 1


def calculate_backoff(attempt: int, config: RetryConfig) -> float:
    """
    Calculate backoff delay with exponential growth and jitter.

    Args:
        attempt: Number of the redelivery about to happen (0-based)
        config: Retry configuration

    Returns:
        Delay in seconds

    Example:
        >>> config = RetryConfig(initial_delay=1.0, max_delay=60.0)
        >>> delay = calculate_backoff(0, config)  # ~1s
        >>> delay = calculate_backoff(3, config)  # ~8s
    """
    delay = config.initial_delay * (config.exponential_base**attempt)
    delay = min(delay, config.max_delay)

    jitter_range = delay * config.jitter
    delay += random.uniform(-jitter_range, jitter_range)  # nosec B311 - not crypto

    return max(0.0, delay)


__all__ = [
    "RetryConfig",
    "calculate_backoff",
]
