"""
Base class for versioned aggregates.

Aggregates are the consistency boundaries of the saga. Each one keeps its
state in an immutable pydantic model that is replaced, never mutated, by the
aggregate's own command methods, and carries the version it was loaded at so
the repository can compare-and-set on save.
"""

import logging
from abc import ABC
from typing import Any, Generic, Self, TypeVar, cast, get_args, get_origin
from uuid import UUID

from pydantic import BaseModel

logger = logging.getLogger(__name__)

TState = TypeVar("TState", bound=BaseModel)


class AggregateRoot(Generic[TState], ABC):
    """
    Base class for aggregate roots with optimistic concurrency.

    The aggregate uses a generic type parameter `TState` for the shape of
    its state, which must be a pydantic BaseModel so it can be validated and
    serialized to the store.

    Versioning:
        ``version`` is the persisted version the aggregate was loaded at
        (0 for an aggregate never saved). Command methods only replace the
        state and flag the aggregate as changed; the repository bumps the
        version after a successful compare-and-set commit.

    Example:
        >>> class CounterState(BaseModel):
        ...     value: int = 0
        ...
        >>> class Counter(AggregateRoot[CounterState]):
        ...     aggregate_type = "Counter"
        ...
        ...     def increment(self) -> None:
        ...         self._set_state(self.state.model_copy(update={"value": self.state.value + 1}))

    Attributes:
        aggregate_id: Unique identifier for this aggregate instance
        aggregate_type: String identifier for this aggregate type
        version: Persisted version (number of commits)
    """

    # Class-level aggregate type (subclasses should override)
    aggregate_type: str = "Unknown"

    def __init__(self, aggregate_id: UUID) -> None:
        self._aggregate_id = aggregate_id
        self._version = 0
        self._state: TState | None = None
        self._has_changes = False

    @property
    def aggregate_id(self) -> UUID:
        """Get the unique identifier for this aggregate."""
        return self._aggregate_id

    @property
    def version(self) -> int:
        """Get the persisted version this aggregate was loaded at."""
        return self._version

    @property
    def state(self) -> TState:
        """
        Get the current state of the aggregate.

        Raises:
            RuntimeError: If the aggregate was never initialised
        """
        if self._state is None:
            raise RuntimeError(f"{type(self).__name__} {self._aggregate_id} has no state")
        return self._state

    @property
    def has_changes(self) -> bool:
        """Check if the state changed since the last load or commit."""
        return self._has_changes

    def _set_state(self, state: TState) -> None:
        """Replace the state and mark the aggregate as changed."""
        self._state = state
        self._has_changes = True

    def mark_committed(self, version: int) -> None:
        """
        Record a successful commit at the given version.

        Called by the repository after the store accepted the new state.
        """
        self._version = version
        self._has_changes = False

    def to_record(self) -> dict[str, Any]:
        """
        Serialize the current state for the store.

        Uses model_dump(mode="json") so nested models, UUIDs, enums and
        datetimes become JSON-compatible values.
        """
        return self.state.model_dump(mode="json")

    @classmethod
    def from_record(cls, aggregate_id: UUID, state: dict[str, Any], version: int) -> Self:
        """
        Rebuild an aggregate from a stored state dictionary.

        Raises:
            ValidationError: If state doesn't match the TState schema
        """
        aggregate = cls(aggregate_id)
        aggregate._state = aggregate._get_state_type().model_validate(state)
        aggregate._version = version
        return aggregate

    def _get_state_type(self) -> type[TState]:
        """
        Get the state type (TState) from the Generic parameter.

        Raises:
            RuntimeError: If the state type cannot be determined.
        """
        # Walk up the MRO to find the AggregateRoot parameterization
        for base in type(self).__mro__:
            if not hasattr(base, "__orig_bases__"):
                continue

            for orig_base in base.__orig_bases__:
                origin = get_origin(orig_base)
                if origin is None:
                    continue

                try:
                    if issubclass(origin, AggregateRoot):
                        args = get_args(orig_base)
                        if args:
                            return cast(type[TState], args[0])
                except TypeError:
                    # issubclass can fail for some typing constructs
                    continue

        raise RuntimeError(
            f"Cannot determine state type for {type(self).__name__}. "
            "Ensure the class properly inherits from AggregateRoot[StateType]."
        )

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"id={self._aggregate_id}, "
            f"version={self._version}, "
            f"changed={self._has_changes})"
        )

    def __eq__(self, other: object) -> bool:
        """Check equality based on aggregate ID."""
        if not isinstance(other, AggregateRoot):
            return NotImplemented
        return self._aggregate_id == other._aggregate_id

    def __hash__(self) -> int:
        return hash(self._aggregate_id)


__all__ = [
    "AggregateRoot",
    "TState",
]
