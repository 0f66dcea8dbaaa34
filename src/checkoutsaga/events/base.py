"""
Base class for domain events.

Events are immutable records of something that happened to an order. They
travel over the event bus and are appended to the event log, so they carry
only value data: identifiers, snapshots and scalars, never live aggregates.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any, Self
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, model_validator

logger = logging.getLogger(__name__)


class DomainEvent(BaseModel):
    """
    Base class for all saga events with automatic event_type derivation.

    Events are frozen and reject unknown fields, so the payload shape of each
    event kind is fixed by its class. A breaking payload change bumps
    ``event_version`` on the class instead of adding loose fields.

    The event_type field is set to the class name when not provided, which
    keeps serialized events self-describing for the event registry.

    Attributes:
        event_id: Unique identifier for this event instance
        event_type: Type name of the event (auto-derived from class name)
        event_version: Schema version for this event type
        occurred_at: When the event occurred (UTC timestamp)
        order_id: ID of the order this event originates from
        correlation_id: ID linking all events of one checkout
        causation_id: ID of the event that caused this event
        metadata: String key/value pairs for trace context

    Example:
        >>> class OrderPlaced(DomainEvent):
        ...     snapshot: OrderSnapshot
        ...     payment_token: str
        ...
        >>> event = OrderPlaced(order_id=order.order_id, snapshot=..., payment_token="tok_1234")
        >>> assert event.event_type == "OrderPlaced"
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier",
    )
    event_type: str = Field(
        default="",
        description="Type of event (auto-derived from class name if not set)",
    )
    event_version: int = Field(
        default=1,
        ge=1,
        description="Event schema version",
    )
    occurred_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        description="When event occurred (UTC)",
    )

    order_id: UUID = Field(
        ...,
        description="ID of the order this event originates from",
    )

    # Correlation and causation for event chains
    correlation_id: UUID = Field(
        default_factory=uuid4,
        description="ID linking related events of one checkout",
    )
    causation_id: UUID | None = Field(
        default=None,
        description="ID of the event that caused this event",
    )

    metadata: dict[str, str] = Field(
        default_factory=dict,
        description="Trace context and other string metadata",
    )

    @model_validator(mode="before")
    @classmethod
    def _ensure_event_type(cls, data: Any) -> Any:
        """Populate event_type with the class name when missing or empty."""
        if isinstance(data, dict):
            provided = data.get("event_type")
            if not provided:
                data = dict(data)
                data["event_type"] = cls.__name__
            elif provided != cls.__name__:
                logger.warning(
                    "Event class %s constructed with event_type=%r",
                    cls.__name__,
                    provided,
                    extra={"event_type": provided, "event_class": cls.__name__},
                )
        return data

    def __str__(self) -> str:
        return f"{self.event_type}(event_id={self.event_id}, order_id={self.order_id})"

    def with_causation(self, causing_event: DomainEvent) -> Self:
        """
        Create a copy of this event caused by another event.

        The copy takes the causing event's id as causation_id and inherits its
        correlation_id, so the whole checkout can be traced as one chain.

        Example:
            >>> succeeded = PaymentSucceeded(...).with_causation(order_placed)
            >>> assert succeeded.causation_id == order_placed.event_id
        """
        return self.model_copy(
            update={
                "causation_id": causing_event.event_id,
                "correlation_id": causing_event.correlation_id,
            }
        )

    def with_metadata(self, **kwargs: str) -> Self:
        """Create a copy of this event with additional metadata."""
        return self.model_copy(update={"metadata": {**self.metadata, **kwargs}})

    def to_dict(self) -> dict[str, Any]:
        """
        Convert event to a JSON-compatible dictionary.

        UUIDs and datetimes are rendered as strings.
        """
        return self.model_dump(mode="json")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Self:
        """
        Create event from dictionary.

        Raises:
            ValidationError: If data doesn't match the event schema
        """
        return cls.model_validate(data)

    def is_caused_by(self, event: DomainEvent) -> bool:
        """Check if this event was caused by another event."""
        return self.causation_id == event.event_id

    def is_correlated_with(self, event: DomainEvent) -> bool:
        """Check if both events belong to the same checkout."""
        return self.correlation_id == event.correlation_id
