"""
Tracers for the saga's components.

Every component takes an optional ``tracer`` and otherwise builds one with
``create_tracer(__name__, enable_tracing)``. Spans are opened as context
managers; the yielded object may be None (tracing disabled), so attributes
known only after the work are set behind a truthiness check:

    >>> with self._tracer.span("checkoutsaga.payment.charge", attrs) as span:
    ...     result = await gateway.charge(token, amount, key)
    ...     if span:
    ...         span.set_attribute(ATTR_HANDLER_SUCCESS, True)

Span names follow ``checkoutsaga.<component>.<operation>``.
"""

from __future__ import annotations

import contextlib
from collections.abc import Generator
from contextlib import AbstractContextManager
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from opentelemetry import trace


@runtime_checkable
class SpanLike(Protocol):
    """The part of an OpenTelemetry span the saga uses."""

    def set_attribute(self, key: str, value: Any) -> None: ...


@runtime_checkable
class Tracer(Protocol):
    """
    Creates spans around saga operations.

    Implementations:
    - NullTracer: tracing disabled, yields None
    - OpenTelemetryTracer: spans from the globally configured TracerProvider
    - MockTracer: records spans in memory for assertions
    """

    def span(
        self,
        name: str,
        attributes: dict[str, Any] | None = None,
    ) -> AbstractContextManager[SpanLike | None]:
        """
        Open a span.

        Args:
            name: Span name, e.g. "checkoutsaga.event_bus.handle"
            attributes: Attributes known when the span starts
        """
        ...

    @property
    def enabled(self) -> bool:
        """True if spans are actually created."""
        ...


class NullTracer:
    """Tracer used when tracing is disabled."""

    @contextlib.contextmanager
    def span(
        self,
        name: str,
        attributes: dict[str, Any] | None = None,
    ) -> Generator[None, None, None]:
        yield None

    @property
    def enabled(self) -> bool:
        return False


class OpenTelemetryTracer:
    """
    Tracer backed by the OpenTelemetry API.

    Spans go to whatever TracerProvider the application installed; without
    one the API hands out non-recording spans. ``None`` attribute values are
    dropped because OpenTelemetry rejects them.

    Args:
        tracer_name: Instrumentation scope name, typically the module's __name__
    """

    def __init__(self, tracer_name: str) -> None:
        self._tracer = trace.get_tracer(tracer_name)

    def span(
        self,
        name: str,
        attributes: dict[str, Any] | None = None,
    ) -> AbstractContextManager[SpanLike | None]:
        clean = {k: v for k, v in (attributes or {}).items() if v is not None}
        return self._tracer.start_as_current_span(name, attributes=clean)

    @property
    def enabled(self) -> bool:
        return True


@dataclass
class RecordedSpan:
    """A span captured by MockTracer."""

    name: str
    attributes: dict[str, Any] = field(default_factory=dict)

    def set_attribute(self, key: str, value: Any) -> None:
        self.attributes[key] = value


class MockTracer:
    """
    Tracer for tests that keeps every span it opens.

    Attributes set on the yielded span after it started are recorded too.

    Example:
        >>> tracer = MockTracer()
        >>> bus = InMemoryEventBus(tracer=tracer)
        >>> ...
        >>> assert "checkoutsaga.event_bus.dispatch" in tracer.span_names
        >>> tracer.spans_named("checkoutsaga.event_bus.handle")[0].attributes
    """

    def __init__(self) -> None:
        self.spans: list[RecordedSpan] = []

    @contextlib.contextmanager
    def span(
        self,
        name: str,
        attributes: dict[str, Any] | None = None,
    ) -> Generator[RecordedSpan, None, None]:
        recorded = RecordedSpan(name, dict(attributes or {}))
        self.spans.append(recorded)
        yield recorded

    @property
    def enabled(self) -> bool:
        return True

    @property
    def span_names(self) -> list[str]:
        return [s.name for s in self.spans]

    def spans_named(self, name: str) -> list[RecordedSpan]:
        return [s for s in self.spans if s.name == name]

    def clear(self) -> None:
        self.spans.clear()


def create_tracer(name: str, enable_tracing: bool = True) -> Tracer:
    """
    Build the tracer a component uses when none was injected.

    Returns:
        OpenTelemetryTracer if enable_tracing, NullTracer otherwise
    """
    if enable_tracing:
        return OpenTelemetryTracer(name)
    return NullTracer()


__all__ = [
    "MockTracer",
    "NullTracer",
    "OpenTelemetryTracer",
    "RecordedSpan",
    "SpanLike",
    "Tracer",
    "create_tracer",
]
