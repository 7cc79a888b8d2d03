"""
The immutable record every aggregate stream is made of.

Ledger movements, order transitions and payment results are all
``DomainEvent`` subclasses. ``event_type`` is the class name, which is
also the key the event registry uses to rebuild stored events.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any, Self
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, model_validator


def _utcnow() -> datetime:
    return datetime.now(UTC)


class DomainEvent(BaseModel):
    """
    Envelope fields shared by all events; subclasses add the payload.

        class StockReceived(DomainEvent):
            aggregate_type: str = "InventoryLedger"
            quantity: int

        StockReceived(aggregate_id=ledger_id, quantity=5).event_type  # "StockReceived"

    ``aggregate_version`` is the stream version after this event.
    ``correlation_id`` ties together events caused by one request, and
    ``causation_id`` names the event that directly led to this one.
    ``event_version`` is the schema version of the payload, and ``metadata``
    holds request context that is not part of the payload.
    """

    model_config = ConfigDict(frozen=True)

    event_id: UUID = Field(default_factory=uuid4)
    event_type: str = ""
    event_version: int = Field(default=1, ge=1)
    occurred_at: datetime = Field(default_factory=_utcnow)

    aggregate_id: UUID
    aggregate_type: str
    aggregate_version: int = Field(default=1, ge=1)

    actor_id: str | None = None
    correlation_id: UUID = Field(default_factory=uuid4)
    causation_id: UUID | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _default_event_type(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("event_type"):
            return {**data, "event_type": cls.__name__}
        return data

    def with_causation(self, cause: DomainEvent) -> Self:
        """Copy of this event recorded as a consequence of ``cause``."""
        return self.model_copy(
            update={"causation_id": cause.event_id, "correlation_id": cause.correlation_id}
        )

    def with_metadata(self, **values: Any) -> Self:
        return self.model_copy(update={"metadata": {**self.metadata, **values}})

    def to_dict(self) -> dict[str, Any]:
        """JSON-ready form; UUIDs, datetimes and Decimals become strings."""
        return self.model_dump(mode="json")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Self:
        """
        Rebuild an event from ``to_dict`` output.

        Raises:
            ValidationError: The data does not fit this event class
        """
        return cls.model_validate(data)

    def __str__(self) -> str:
        return (
            f"{self.event_type}(event_id={self.event_id}, "
            f"aggregate_id={self.aggregate_id}, version={self.aggregate_version})"
        )
