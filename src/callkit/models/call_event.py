"""Call session event model."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, Field

from callkit.models.enums import CallState


class CallEvent(BaseModel):
    """An observable transition or notice emitted by a call session."""

    type: str
    state: CallState
    participant_id: str | None = None
    room_id: str | None = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    data: dict[str, Any] = Field(default_factory=dict)
