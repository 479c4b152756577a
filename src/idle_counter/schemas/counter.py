"""Pydantic schemas for counter state, change events and trigger responses."""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Literal

from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from idle_counter.services.counter_store import CounterSnapshot


class ResetOutcome(str, Enum):
    """Result of a reset attempt."""

    RESET = "reset"  # committed a zero
    AT_REST = "at_rest"  # already zero, nothing written
    ABORTED = "aborted"  # activity after the idleness decision


class CounterRead(BaseModel):
    """Current counter state returned to clients."""

    id: str
    value: int = Field(..., ge=0)
    last_updated: datetime
    version: int

    @classmethod
    def from_snapshot(cls, snapshot: CounterSnapshot) -> CounterRead:
        return cls(
            id=snapshot.id,
            value=snapshot.value,
            last_updated=snapshot.last_updated,
            version=snapshot.version,
        )


class CounterEvent(BaseModel):
    """A committed change, published to every subscriber."""

    counter_id: str
    value: int = Field(..., ge=0)
    last_updated: datetime
    version: int
    caused_by: Literal["mutation", "reset"]

    @classmethod
    def from_snapshot(
        cls, snapshot: CounterSnapshot, caused_by: Literal["mutation", "reset"]
    ) -> CounterEvent:
        return cls(
            counter_id=snapshot.id,
            value=snapshot.value,
            last_updated=snapshot.last_updated,
            version=snapshot.version,
            caused_by=caused_by,
        )

    def json_payload(self) -> dict[str, object]:
        """Return JSON-serializable payload."""
        return self.model_dump(mode="json")


class ResetResponse(BaseModel):
    """Response body for the reset and idle-check triggers."""

    outcome: ResetOutcome | None = Field(
        default=None,
        description="Reset outcome, or null when the idle check found nothing to do.",
    )
    counter: CounterRead
