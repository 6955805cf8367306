"""Transport-agnostic relay: identity assignment, joins and envelope routing."""

from __future__ import annotations

import logging
from collections.abc import Callable, Coroutine
from typing import Any
from uuid import uuid4

from callkit.config import RelayConfig
from callkit.core.errors import CallKitError
from callkit.models.enums import AddressingMode, EnvelopeType, JoinOutcome, ParticipantStatus
from callkit.models.envelope import Envelope
from callkit.relay.directory import Directory, IdentityDirectory, RoomDirectory

logger = logging.getLogger("callkit.relay")

# Delivers an envelope to one connected participant
SendFn = Callable[[Envelope], Coroutine[Any, Any, None]]
# Called when the relay drops a connection on its own
DropFn = Callable[[], Coroutine[Any, Any, None]]

# Participant status after a routed envelope of this type
_STATUS_AFTER = {
    EnvelopeType.OFFER: ParticipantStatus.NEGOTIATING,
    EnvelopeType.ANSWER: ParticipantStatus.IN_CALL,
    EnvelopeType.BYE: ParticipantStatus.ENDED,
}


class Relay:
    """Routes control envelopes between connected participants.

    The relay never looks inside offers, answers or candidates: it assigns
    identities, answers joins, and forwards everything else verbatim to the
    recipients chosen by its :class:`Directory`.

    Transports register one send function per connection (see
    :class:`~callkit.relay.server.RelayServer` and
    :class:`~callkit.relay.channel.InMemoryRelayChannel`).
    """

    def __init__(
        self,
        directory: Directory | None = None,
        *,
        config: RelayConfig | None = None,
    ) -> None:
        self._config = config or RelayConfig()
        if directory is None:
            directory = (
                IdentityDirectory()
                if self._config.addressing == AddressingMode.IDENTITY
                else RoomDirectory(capacity=self._config.room_capacity)
            )
        self._directory = directory
        self._connections: dict[str, SendFn] = {}
        self._drop_fns: dict[str, DropFn] = {}
        self._error_counts: dict[str, int] = {}

    @property
    def directory(self) -> Directory:
        return self._directory

    @property
    def addressing(self) -> AddressingMode:
        return self._directory.addressing

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    async def connect(self, send_fn: SendFn, *, drop_fn: DropFn | None = None) -> str:
        """Register a connection and announce its assigned identity.

        Returns:
            The participant id assigned to the connection.
        """
        participant_id = uuid4().hex
        self._connections[participant_id] = send_fn
        if drop_fn is not None:
            self._drop_fns[participant_id] = drop_fn
        self._directory.register(participant_id)
        logger.info("Participant %s connected", participant_id)
        await self._deliver(
            participant_id,
            Envelope(type=EnvelopeType.ID, id=participant_id, data=participant_id),
        )
        participant = self._directory.get_participant(participant_id)
        if participant is not None and participant.status == ParticipantStatus.CONNECTING:
            participant.status = ParticipantStatus.IDLE
        return participant_id

    async def disconnect(self, participant_id: str) -> None:
        """Forget a connection and its room membership."""
        if self._connections.pop(participant_id, None) is None:
            return
        self._drop_fns.pop(participant_id, None)
        self._error_counts.pop(participant_id, None)
        self._directory.unregister(participant_id)
        logger.info("Participant %s disconnected", participant_id)

    async def receive(self, participant_id: str, envelope: Envelope) -> None:
        """Handle one envelope sent by *participant_id*."""
        if participant_id not in self._connections:
            logger.warning("Envelope from unknown participant %s dropped", participant_id)
            return

        if envelope.type == EnvelopeType.JOIN:
            await self._handle_join(participant_id, envelope)
        elif envelope.type == EnvelopeType.LEAVE:
            self._directory.leave(participant_id)
        else:
            recipients = self._directory.route(participant_id, envelope)
            status = _STATUS_AFTER.get(envelope.type)
            if status is not None and recipients:
                for pid in (participant_id, *recipients):
                    self._directory.set_status(pid, status)
            for recipient in recipients:
                await self._deliver(recipient, envelope)

    async def _handle_join(self, participant_id: str, envelope: Envelope) -> None:
        room_id = envelope.room
        if not room_id:
            logger.warning("Join without room from %s dropped", participant_id)
            return
        try:
            outcome = self._directory.join(participant_id, room_id)
        except CallKitError as exc:
            logger.warning("Join from %s dropped: %s", participant_id, exc)
            return

        if outcome == JoinOutcome.FULL:
            await self._deliver(participant_id, Envelope(type=EnvelopeType.FULL, room=room_id))
            return

        others = sorted(self._directory.members(room_id) - {participant_id})
        await self._deliver(
            participant_id, Envelope(type=EnvelopeType.JOINED, room=room_id, data=others)
        )
        for other in others:
            await self._deliver(
                other,
                Envelope(type=EnvelopeType.PEER_JOINED, room=room_id, source=participant_id),
            )

    async def _deliver(self, participant_id: str, envelope: Envelope) -> None:
        send_fn = self._connections.get(participant_id)
        if send_fn is None:
            return
        try:
            await send_fn(envelope)
            self._error_counts.pop(participant_id, None)
        except Exception:
            await self._handle_send_error(participant_id)

    async def _handle_send_error(self, participant_id: str) -> None:
        """Increment error count and drop the connection after the threshold."""
        limit = self._config.max_consecutive_errors
        consecutive = self._error_counts.get(participant_id, 0) + 1
        self._error_counts[participant_id] = consecutive
        if consecutive < limit:
            logger.warning(
                "Send failed for participant %s (attempt %d/%d)",
                participant_id,
                consecutive,
                limit,
            )
            return

        logger.warning(
            "Participant %s removed after %d consecutive failures", participant_id, consecutive
        )
        drop_fn = self._drop_fns.get(participant_id)
        await self.disconnect(participant_id)
        if drop_fn is not None:
            try:
                await drop_fn()
            except Exception:
                logger.exception("Error dropping connection for %s", participant_id)
