"""Relay-side membership and routing tables."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

from callkit.core.errors import CallKitError
from callkit.models.enums import AddressingMode, JoinOutcome, ParticipantStatus
from callkit.models.envelope import Envelope
from callkit.models.participant import Participant, Room

logger = logging.getLogger("callkit.relay.directory")


class Directory(ABC):
    """Abstract base for relay membership.

    A directory is the single source of truth for who is connected and where
    envelopes from a participant go. A deployment picks one addressing mode;
    the two lookup tables are never mixed in one directory.
    """

    addressing: AddressingMode

    def __init__(self) -> None:
        self._participants: dict[str, Participant] = {}

    def register(self, participant_id: str) -> Participant:
        """Track a newly connected participant."""
        participant = Participant(id=participant_id)
        self._participants[participant_id] = participant
        return participant

    def unregister(self, participant_id: str) -> None:
        """Forget a participant whose channel closed."""
        self.leave(participant_id)
        self._participants.pop(participant_id, None)

    def get_participant(self, participant_id: str) -> Participant | None:
        return self._participants.get(participant_id)

    def set_status(self, participant_id: str, status: ParticipantStatus) -> None:
        participant = self._participants.get(participant_id)
        if participant is not None:
            participant.status = status

    @property
    def participant_count(self) -> int:
        return len(self._participants)

    def join(self, participant_id: str, room_id: str) -> JoinOutcome:
        raise CallKitError(f"{self.addressing} addressing does not support rooms")

    def members(self, room_id: str) -> set[str]:
        return set()

    def leave(self, participant_id: str) -> str | None:
        """Remove the participant from its room, if any.

        Returns:
            The room that was left, or None.
        """
        return None

    @abstractmethod
    def route(self, sender_id: str, envelope: Envelope) -> list[str]:
        """Return the participant ids that should receive *envelope*."""
        ...


class RoomDirectory(Directory):
    """Room-addressed routing with a fixed room capacity (default 2).

    Rooms are created by the first join and deleted when the last occupant
    leaves. A join to a full room is rejected without touching membership.
    """

    addressing = AddressingMode.ROOM

    def __init__(self, capacity: int = 2) -> None:
        super().__init__()
        self._capacity = capacity
        self._rooms: dict[str, Room] = {}

    @property
    def capacity(self) -> int:
        return self._capacity

    def get_room(self, room_id: str) -> Room | None:
        return self._rooms.get(room_id)

    def members(self, room_id: str) -> set[str]:
        room = self._rooms.get(room_id)
        return set(room.members) if room is not None else set()

    @property
    def room_count(self) -> int:
        return len(self._rooms)

    def join(self, participant_id: str, room_id: str) -> JoinOutcome:
        participant = self._participants.get(participant_id)
        if participant is None:
            participant = self.register(participant_id)

        if participant.room_id == room_id:
            return JoinOutcome.ACCEPTED

        room = self._rooms.get(room_id)
        if room is not None and room.is_full:
            logger.info(
                "Join rejected, room full",
                extra={"room_id": room_id, "participant_id": participant_id},
            )
            return JoinOutcome.FULL

        self.leave(participant_id)
        if room is None:
            room = Room(id=room_id, capacity=self._capacity)
            self._rooms[room_id] = room
        room.members.add(participant_id)
        participant.room_id = room_id
        participant.status = ParticipantStatus.IN_ROOM
        return JoinOutcome.ACCEPTED

    def leave(self, participant_id: str) -> str | None:
        participant = self._participants.get(participant_id)
        if participant is None or participant.room_id is None:
            return None

        room_id = participant.room_id
        participant.room_id = None
        if participant.status != ParticipantStatus.ENDED:
            participant.status = ParticipantStatus.IDLE
        room = self._rooms.get(room_id)
        if room is not None:
            room.members.discard(participant_id)
            if room.is_empty:
                del self._rooms[room_id]
                logger.debug("Room %s removed", room_id)
        return room_id

    def route(self, sender_id: str, envelope: Envelope) -> list[str]:
        participant = self._participants.get(sender_id)
        if participant is None or participant.room_id is None:
            logger.warning(
                "Dropping %s from %s: sender is not in a room", envelope.type, sender_id
            )
            return []
        if envelope.room is not None and envelope.room != participant.room_id:
            logger.warning(
                "Dropping %s from %s: addressed to room %s but sender is in %s",
                envelope.type,
                sender_id,
                envelope.room,
                participant.room_id,
            )
            return []
        return sorted(self.members(participant.room_id) - {sender_id})


class IdentityDirectory(Directory):
    """Identity-addressed routing: envelopes go to ``envelope.target``."""

    addressing = AddressingMode.IDENTITY

    def route(self, sender_id: str, envelope: Envelope) -> list[str]:
        target = envelope.target
        if target is None or target not in self._participants:
            logger.warning(
                "Dropping %s from %s: unknown target %s", envelope.type, sender_id, target
            )
            return []
        if target == sender_id:
            logger.warning("Dropping %s from %s: addressed to itself", envelope.type, sender_id)
            return []
        return [target]
