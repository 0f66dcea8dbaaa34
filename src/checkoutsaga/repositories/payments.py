"""
Ledger of payment attempts.

The payment handler records one PaymentAttempt per charge it makes, keyed by
the event that triggered it. A redelivered trigger finds its attempt here and
resumes from the recorded outcome instead of charging again.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Protocol, runtime_checkable
from uuid import UUID, uuid4

from checkoutsaga.observability import Tracer, create_tracer
from checkoutsaga.observability.attributes import (
    ATTR_AMOUNT_CENTS,
    ATTR_DB_SYSTEM,
    ATTR_EVENT_ID,
    ATTR_GATEWAY_ID,
    ATTR_ORDER_ID,
)

logger = logging.getLogger(__name__)


class PaymentOutcome(str, Enum):
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"


@dataclass(frozen=True)
class PaymentAttempt:
    """
    One charge attempt against the payment gateway.

    Attributes:
        order_id: Order being paid
        gateway_id: Gateway that processed the attempt
        amount_cents: Amount charged
        outcome: Succeeded or Failed
        trigger_event_id: Event that caused the attempt (OrderPlaced or PaymentRetryRequested)
        attempt_number: 1 for the first charge, n for the n-th retry
        failure_reason: Gateway reason for a failed attempt
        charge_id: Gateway reference for a successful attempt
        attempt_id: Unique identifier of this record
        attempted_at: When the gateway answered
    """

    order_id: UUID
    gateway_id: str
    amount_cents: int
    outcome: PaymentOutcome
    trigger_event_id: UUID
    attempt_number: int = 1
    failure_reason: str | None = None
    charge_id: str | None = None
    attempt_id: UUID = field(default_factory=uuid4)
    attempted_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def succeeded(self) -> bool:
        return self.outcome is PaymentOutcome.SUCCEEDED


@runtime_checkable
class PaymentAttemptLedger(Protocol):
    """Append-only record of payment attempts."""

    async def record(self, attempt: PaymentAttempt) -> PaymentAttempt:
        """
        Record an attempt.

        Returns:
            The stored attempt; if one was already recorded for the same
            trigger event, that earlier attempt is returned unchanged
        """
        ...

    async def get_by_trigger(self, trigger_event_id: UUID) -> PaymentAttempt | None: ...

    async def attempts_for(self, order_id: UUID) -> list[PaymentAttempt]: ...

    async def has_succeeded(self, order_id: UUID) -> bool: ...

    async def next_attempt_number(self, order_id: UUID) -> int: ...


class InMemoryPaymentAttemptLedger:
    """
    In-memory payment attempt ledger.

    Example:
        >>> ledger = InMemoryPaymentAttemptLedger()
        >>> await ledger.record(attempt)
        >>> await ledger.has_succeeded(attempt.order_id)
        True
    """

    def __init__(
        self,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled
        self._attempts: list[PaymentAttempt] = []
        self._by_trigger: dict[UUID, PaymentAttempt] = {}
        self._lock = asyncio.Lock()

    async def record(self, attempt: PaymentAttempt) -> PaymentAttempt:
        with self._tracer.span(
            "checkoutsaga.payments.record",
            {
                ATTR_ORDER_ID: str(attempt.order_id),
                ATTR_EVENT_ID: str(attempt.trigger_event_id),
                ATTR_GATEWAY_ID: attempt.gateway_id,
                ATTR_AMOUNT_CENTS: attempt.amount_cents,
                ATTR_DB_SYSTEM: "memory",
            },
        ):
            async with self._lock:
                existing = self._by_trigger.get(attempt.trigger_event_id)
                if existing is not None:
                    logger.debug(
                        "Attempt for trigger %s already recorded",
                        attempt.trigger_event_id,
                        extra={"event_id": str(attempt.trigger_event_id)},
                    )
                    return existing
                self._attempts.append(attempt)
                self._by_trigger[attempt.trigger_event_id] = attempt
                return attempt

    async def get_by_trigger(self, trigger_event_id: UUID) -> PaymentAttempt | None:
        async with self._lock:
            return self._by_trigger.get(trigger_event_id)

    async def attempts_for(self, order_id: UUID) -> list[PaymentAttempt]:
        """All attempts for an order, oldest first."""
        async with self._lock:
            return [a for a in self._attempts if a.order_id == order_id]

    async def has_succeeded(self, order_id: UUID) -> bool:
        async with self._lock:
            return any(a.order_id == order_id and a.succeeded for a in self._attempts)

    async def next_attempt_number(self, order_id: UUID) -> int:
        async with self._lock:
            return 1 + sum(1 for a in self._attempts if a.order_id == order_id)

    async def get_all(self) -> list[PaymentAttempt]:
        async with self._lock:
            return list(self._attempts)


__all__ = [
    "InMemoryPaymentAttemptLedger",
    "PaymentAttempt",
    "PaymentAttemptLedger",
    "PaymentOutcome",
]
