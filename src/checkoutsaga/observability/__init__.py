"""
Observability utilities for checkoutsaga.

Provides the composition-based tracer used by every component and the
standard span attribute names.

Example:
    >>> from checkoutsaga.observability import create_tracer
    >>>
    >>> class MyHandler:
    ...     def __init__(self, enable_tracing: bool = True):
    ...         self._tracer = create_tracer(__name__, enable_tracing)
"""

from checkoutsaga.observability.attributes import (
    ATTR_AMOUNT_CENTS,
    ATTR_ATTEMPT,
    ATTR_DB_SYSTEM,
    ATTR_DEAD_LETTER_ID,
    ATTR_ERROR_TYPE,
    ATTR_EVENT_COUNT,
    ATTR_EVENT_ID,
    ATTR_EVENT_TYPE,
    ATTR_EXPECTED_VERSION,
    ATTR_GATEWAY_ID,
    ATTR_HANDLER_COUNT,
    ATTR_HANDLER_NAME,
    ATTR_HANDLER_SUCCESS,
    ATTR_ORDER_ID,
    ATTR_ORDER_STATUS,
    ATTR_PRODUCT_ID,
    ATTR_VERSION,
)
from checkoutsaga.observability.tracer import (
    MockTracer,
    NullTracer,
    OpenTelemetryTracer,
    RecordedSpan,
    SpanLike,
    Tracer,
    create_tracer,
)

__all__ = [
    # Tracers
    "Tracer",
    "NullTracer",
    "OpenTelemetryTracer",
    "MockTracer",
    "RecordedSpan",
    "SpanLike",
    "create_tracer",
    # Attributes
    "ATTR_AMOUNT_CENTS",
    "ATTR_ATTEMPT",
    "ATTR_DB_SYSTEM",
    "ATTR_DEAD_LETTER_ID",
    "ATTR_ERROR_TYPE",
    "ATTR_EVENT_COUNT",
    "ATTR_EVENT_ID",
    "ATTR_EVENT_TYPE",
    "ATTR_EXPECTED_VERSION",
    "ATTR_GATEWAY_ID",
    "ATTR_HANDLER_COUNT",
    "ATTR_HANDLER_NAME",
    "ATTR_HANDLER_SUCCESS",
    "ATTR_ORDER_ID",
    "ATTR_ORDER_STATUS",
    "ATTR_PRODUCT_ID",
    "ATTR_VERSION",
]
