"""Offer/answer negotiation state machine."""

from __future__ import annotations

import logging
from collections.abc import Callable, Coroutine
from typing import Any

from callkit.core.errors import NoTargetBoundError, StaleDescriptionError
from callkit.models.enums import EnvelopeType, NegotiationState
from callkit.models.envelope import IceCandidate, SessionDescription
from callkit.peer.base import PeerConnection

logger = logging.getLogger("callkit.negotiation")

# Sends a signaling payload to the bound peer: (type, payload) -> None
SignalSender = Callable[[EnvelopeType, Any], Coroutine[Any, Any, None]]
TargetResolver = Callable[[], str | None]


class NegotiationStateMachine:
    """Drives one :class:`PeerConnection` through offer/answer exchange.

    States are ``stable``, ``have-local-offer``, ``have-remote-offer`` and the
    terminal ``closed``. Methods must be called from a single serialized
    event loop (see :class:`~callkit.core.serial.SerialEventQueue`): the glare
    rollback and the candidate buffer are only correct if no two handlers for
    the same participant interleave.

    Primitive failures are logged and never advance state. After every awaited
    primitive operation the machine checks whether it was torn down meanwhile
    and discards the result if so.

    Args:
        peer: The primitive, exclusively owned by this machine.
        send: Coroutine used to transmit offers and answers.
        target: Returns the bound room or peer id, ``None`` if unbound.
    """

    def __init__(
        self,
        peer: PeerConnection,
        send: SignalSender,
        *,
        target: TargetResolver,
    ) -> None:
        self._peer = peer
        self._send = send
        self._target = target
        self._state = NegotiationState.STABLE
        self._remote_description: SessionDescription | None = None
        self._pending_candidates: list[IceCandidate] = []
        self._ignoring_offer = False

    @property
    def state(self) -> NegotiationState:
        return self._state

    @property
    def closed(self) -> bool:
        return self._state == NegotiationState.CLOSED

    @property
    def has_remote_description(self) -> bool:
        return self._remote_description is not None

    @property
    def pending_candidates(self) -> tuple[IceCandidate, ...]:
        return tuple(self._pending_candidates)

    @property
    def peer(self) -> PeerConnection:
        return self._peer

    async def start_call(self) -> None:
        """Create, apply and send a local offer.

        Raises:
            NoTargetBoundError: If no room or peer is bound yet.
        """
        if self.closed:
            logger.warning("start_call ignored, negotiation is closed")
            return
        if self._target() is None:
            raise NoTargetBoundError("Bind a room or peer before starting a call")
        if self._state != NegotiationState.STABLE:
            logger.warning("start_call ignored in state %s", self._state)
            return

        try:
            offer = await self._peer.create_offer()
            if self.closed:
                return
            await self._peer.set_local_description(offer)
        except Exception:
            logger.exception("Failed to create local offer")
            return
        if self.closed:
            return

        self._state = NegotiationState.HAVE_LOCAL_OFFER
        await self._send(EnvelopeType.OFFER, self._outgoing(offer))

    async def receive_offer(self, description: SessionDescription, *, polite: bool = True) -> None:
        """Apply a remote offer and answer it.

        On glare (an offer arrives while our own is pending) the polite side
        rolls back its offer and accepts the remote one; the impolite side
        ignores the remote offer and keeps waiting for its answer.
        """
        if self.closed:
            logger.debug("Offer discarded, negotiation is closed")
            return

        collision = self._state == NegotiationState.HAVE_LOCAL_OFFER
        self._ignoring_offer = collision and not polite
        if self._ignoring_offer:
            logger.info("Glare: keeping local offer, ignoring remote offer")
            return

        if collision:
            logger.info("Glare: rolling back local offer")
            try:
                await self._peer.rollback()
            except Exception:
                logger.exception("Rollback of local offer failed")
                return
            if self.closed:
                return
            self._state = NegotiationState.STABLE

        try:
            await self._peer.set_remote_description(description)
        except Exception:
            logger.exception("Failed to apply remote offer")
            return
        if self.closed:
            return
        self._remote_description = description
        self._state = NegotiationState.HAVE_REMOTE_OFFER
        await self._flush_candidates()

        try:
            answer = await self._peer.create_answer()
            if self.closed:
                return
            await self._peer.set_local_description(answer)
        except Exception:
            logger.exception("Failed to answer remote offer")
            return
        if self.closed:
            return

        self._state = NegotiationState.STABLE
        await self._send(EnvelopeType.ANSWER, self._outgoing(answer))

    async def receive_answer(self, description: SessionDescription) -> None:
        """Apply the answer to our pending offer."""
        if self.closed:
            logger.debug("Answer discarded, negotiation is closed")
            return
        if self._state != NegotiationState.HAVE_LOCAL_OFFER:
            logger.warning("Stale answer dropped in state %s", self._state)
            return

        try:
            await self._peer.set_remote_description(description)
        except Exception:
            logger.exception("Failed to apply remote answer")
            return
        if self.closed:
            return

        self._remote_description = description
        self._state = NegotiationState.STABLE
        self._ignoring_offer = False
        await self._flush_candidates()

    async def receive_candidate(self, candidate: IceCandidate) -> None:
        """Apply a remote candidate now, or buffer it until a remote description is set."""
        if self.closed:
            return
        if self._remote_description is None:
            self._pending_candidates.append(candidate)
            return
        await self._apply_candidate(candidate)

    async def teardown(self) -> None:
        """Close the primitive. Idempotent."""
        if self.closed:
            return
        self._state = NegotiationState.CLOSED
        self._pending_candidates.clear()
        try:
            await self._peer.close()
        except Exception:
            logger.exception("Error closing peer connection")

    async def _flush_candidates(self) -> None:
        while self._pending_candidates and not self.closed:
            candidate = self._pending_candidates.pop(0)
            await self._apply_candidate(candidate)

    async def _apply_candidate(self, candidate: IceCandidate) -> None:
        try:
            await self._peer.add_remote_candidate(candidate)
        except StaleDescriptionError as exc:
            logger.debug("Stale candidate dropped: %s", exc)
        except Exception:
            if self._ignoring_offer:
                logger.debug("Candidate for ignored offer dropped")
            else:
                logger.warning("Failed to apply remote candidate", exc_info=True)

    def _outgoing(self, created: SessionDescription) -> dict[str, Any]:
        description = self._peer.current_local_description or created
        return description.model_dump(mode="json")
