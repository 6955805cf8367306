"""Participant and room models kept by the relay."""

from __future__ import annotations

from datetime import UTC, datetime

from pydantic import BaseModel, Field

from callkit.models.enums import ParticipantStatus


class Participant(BaseModel):
    """A participant connected to the relay."""

    id: str
    room_id: str | None = None
    status: ParticipantStatus = ParticipantStatus.CONNECTING
    connected_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class Room(BaseModel):
    """A matchmaking room holding at most ``capacity`` participants."""

    id: str
    capacity: int = Field(default=2, ge=1)
    members: set[str] = Field(default_factory=set)
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @property
    def is_full(self) -> bool:
        return len(self.members) >= self.capacity

    @property
    def is_empty(self) -> bool:
        return not self.members
