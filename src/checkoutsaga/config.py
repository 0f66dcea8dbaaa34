"""
Configuration for the checkout saga runtime.

This module provides:
- SagaConfig: Deadlines, redelivery policy and concurrency settings
"""

from __future__ import annotations

from dataclasses import dataclass, field

from checkoutsaga.bus.retry import RetryConfig


@dataclass(frozen=True)
class SagaConfig:
    """
    Configuration for a CheckoutSaga.

    Attributes:
        retry: Redelivery policy for failing handlers
        gateway_timeout: Seconds to wait for the payment gateway before the
            attempt counts as failed with reason "timeout"
        handler_timeout: Seconds a single handler attempt may run before it
            counts as failed and is retried
        shutdown_timeout: Seconds shutdown waits for pending deliveries
        conflict_retries: Re-runs of a load-modify-save after a version conflict
        enable_tracing: Whether components emit OpenTelemetry spans

    Example:
        >>> config = SagaConfig(gateway_timeout=5.0, retry=RetryConfig(max_retries=3))
    """

    retry: RetryConfig = field(default_factory=RetryConfig)
    gateway_timeout: float = 10.0
    handler_timeout: float = 30.0
    shutdown_timeout: float = 30.0
    conflict_retries: int = 5
    enable_tracing: bool = True

    def __post_init__(self) -> None:
        """Validate configuration values."""
        if self.gateway_timeout <= 0:
            raise ValueError(
                f"gateway_timeout must be positive, got {self.gateway_timeout}. "
                "Use a value like 10.0 (default) seconds."
            )

        if self.handler_timeout <= 0:
            raise ValueError(
                f"handler_timeout must be positive, got {self.handler_timeout}. "
                "Use a value like 30.0 (default) seconds."
            )

        # A handler must outlive the gateway call it makes
        if self.handler_timeout <= self.gateway_timeout:
            raise ValueError(
                f"handler_timeout ({self.handler_timeout}) must be greater than "
                f"gateway_timeout ({self.gateway_timeout})."
            )

        if self.shutdown_timeout <= 0:
            raise ValueError(
                f"shutdown_timeout must be positive, got {self.shutdown_timeout}. "
                "Use a value like 30.0 (default) seconds."
            )

        if self.conflict_retries < 0:
            raise ValueError(f"conflict_retries must be >= 0, got {self.conflict_retries}.")


__all__ = ["SagaConfig"]
