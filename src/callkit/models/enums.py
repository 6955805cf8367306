"""All string enums for callkit."""

from __future__ import annotations

from enum import StrEnum, unique


@unique
class EnvelopeType(StrEnum):
    ID = "id"
    JOIN = "join"
    JOINED = "joined"
    PEER_JOINED = "peer-joined"
    FULL = "full"
    LEAVE = "leave"
    OFFER = "offer"
    ANSWER = "answer"
    CANDIDATE = "candidate"
    MEDIA_UPDATE = "media-update"
    BYE = "bye"


@unique
class SdpType(StrEnum):
    OFFER = "offer"
    ANSWER = "answer"
    ROLLBACK = "rollback"


@unique
class NegotiationState(StrEnum):
    STABLE = "stable"
    HAVE_LOCAL_OFFER = "have-local-offer"
    HAVE_REMOTE_OFFER = "have-remote-offer"
    CLOSED = "closed"


@unique
class CallState(StrEnum):
    """Externally observable state of a call session."""

    DISCONNECTED = "disconnected"
    IDLE = "idle"
    WAITING = "waiting"
    CALLING = "calling"
    RINGING = "ringing"
    CONNECTED = "connected"
    ENDED = "ended"


@unique
class ParticipantStatus(StrEnum):
    CONNECTING = "connecting"
    IDLE = "idle"
    IN_ROOM = "in_room"
    NEGOTIATING = "negotiating"
    IN_CALL = "in_call"
    ENDED = "ended"


@unique
class MediaKind(StrEnum):
    AUDIO = "audio"
    VIDEO = "video"


@unique
class ConnectivityState(StrEnum):
    """Connection state reported by the peer-connection primitive."""

    NEW = "new"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    FAILED = "failed"
    CLOSED = "closed"


@unique
class AddressingMode(StrEnum):
    ROOM = "room"
    IDENTITY = "identity"


@unique
class JoinOutcome(StrEnum):
    ACCEPTED = "accepted"
    FULL = "full"
