"""
Test utilities for checkout-saga.

Components:
    FakePaymentGateway: Scriptable, idempotent payment gateway
    RecordingShipmentService: Shipment service that records requests
    RecordingNotificationService: Notification service that records messages
    SagaTestHarness: Fully wired in-memory saga with the fakes above
    EventAssertions: Readable assertions over published events

Example:
    >>> from checkoutsaga.testing import SagaTestHarness
    >>>
    >>> harness = SagaTestHarness(stock={"A": 10})
    >>> harness.gateway.fail("card_declined")

Note:
    This module is intended for test code only. It should not be imported in
    production code paths.
"""

from checkoutsaga.testing.assertions import EventAssertions
from checkoutsaga.testing.fakes import (
    Capture,
    ChargeCall,
    FakePaymentGateway,
    RecordingNotificationService,
    RecordingShipmentService,
)
from checkoutsaga.testing.harness import (
    DEFAULT_TOKEN,
    DEFAULT_USER,
    SagaTestHarness,
    fast_config,
)

__all__ = [
    # Fakes
    "Capture",
    "ChargeCall",
    "FakePaymentGateway",
    "RecordingNotificationService",
    "RecordingShipmentService",
    # Harness
    "DEFAULT_TOKEN",
    "DEFAULT_USER",
    "SagaTestHarness",
    "fast_config",
    # Assertions
    "EventAssertions",
]
