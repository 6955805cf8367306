"""Pydantic models shared by clients and the relay."""

from callkit.models.call_event import CallEvent
from callkit.models.enums import (
    AddressingMode,
    CallState,
    ConnectivityState,
    EnvelopeType,
    JoinOutcome,
    MediaKind,
    NegotiationState,
    ParticipantStatus,
    SdpType,
)
from callkit.models.envelope import Envelope, IceCandidate, MediaIntent, SessionDescription
from callkit.models.participant import Participant, Room

__all__ = [
    "AddressingMode",
    "CallEvent",
    "CallState",
    "ConnectivityState",
    "Envelope",
    "EnvelopeType",
    "IceCandidate",
    "JoinOutcome",
    "MediaIntent",
    "MediaKind",
    "NegotiationState",
    "Participant",
    "ParticipantStatus",
    "Room",
    "SdpType",
    "SessionDescription",
]
