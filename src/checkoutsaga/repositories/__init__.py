"""
Repositories for the saga's supporting records.

- **Dead letters**: deliveries that exhausted their retries
- **Payments**: append-only ledger of payment attempts
- **Stock**: product stock levels and per-order reservations
- **Idempotency**: claimed keys for once-only side effects

Each repository provides a Protocol defining the contract and an in-memory
implementation.
"""

from checkoutsaga.repositories.dead_letter import (
    STATUS_FAILED,
    STATUS_RESOLVED,
    STATUS_RETRYING,
    DeadLetterEntry,
    DeadLetterSink,
    DeadLetterStats,
    InMemoryDeadLetterSink,
)
from checkoutsaga.repositories.idempotency import IdempotencyStore, InMemoryIdempotencyStore
from checkoutsaga.repositories.payments import (
    InMemoryPaymentAttemptLedger,
    PaymentAttempt,
    PaymentAttemptLedger,
    PaymentOutcome,
)
from checkoutsaga.repositories.stock import InMemoryStockLedger, StockLedger, StockReservation

__all__ = [
    # Dead letters
    "DeadLetterEntry",
    "DeadLetterSink",
    "DeadLetterStats",
    "InMemoryDeadLetterSink",
    "STATUS_FAILED",
    "STATUS_RETRYING",
    "STATUS_RESOLVED",
    # Payments
    "InMemoryPaymentAttemptLedger",
    "PaymentAttempt",
    "PaymentAttemptLedger",
    "PaymentOutcome",
    # Stock
    "InMemoryStockLedger",
    "StockLedger",
    "StockReservation",
    # Idempotency
    "IdempotencyStore",
    "InMemoryIdempotencyStore",
]
