"""CallSession - lifecycle controller for one participant's call."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Coroutine
from typing import Any

from pydantic import ValidationError

from callkit.config import CallConfig
from callkit.core.errors import (
    CallKitError,
    PeerConnectivityLostError,
    RelayDisconnectedError,
    RoomFullError,
)
from callkit.core.media import MediaControlChannel, TrackToggle
from callkit.core.negotiation import NegotiationStateMachine
from callkit.core.serial import SerialEventQueue
from callkit.models.call_event import CallEvent
from callkit.models.enums import (
    AddressingMode,
    CallState,
    ConnectivityState,
    EnvelopeType,
    JoinOutcome,
    MediaKind,
    NegotiationState,
)
from callkit.models.envelope import Envelope, IceCandidate
from callkit.peer.base import PeerConnection
from callkit.relay.channel import RelayChannel

logger = logging.getLogger("callkit.session")

CallEventHandler = Callable[[CallEvent], Coroutine[Any, Any, None]]

_PRE_CALL_STATES = frozenset({CallState.IDLE, CallState.WAITING})
_LOST_CONNECTIVITY = frozenset(
    {ConnectivityState.DISCONNECTED, ConnectivityState.FAILED, ConnectivityState.CLOSED}
)


class CallSession:
    """Join, negotiate, connect and tear down one two-party call.

    A session owns its relay channel, its peer connection (through the
    :class:`NegotiationStateMachine`), a :class:`MediaControlChannel` and a
    single :class:`SerialEventQueue`. Relay envelopes, peer-connection
    callbacks and user intents are all posted to that queue, so transitions
    never interleave.

    Observable states: ``disconnected -> idle -> waiting -> calling/ringing ->
    connected -> ended``. ``ended`` is terminal; build a new session to call
    again.

    Register handlers with :meth:`on` for ``state_changed``, ``error``,
    ``remote_track``, ``remote_media`` and ``peer_joined`` events.

    Example:
        relay = Relay()
        session = CallSession(InMemoryRelayChannel(relay), MockPeerConnection())

        @session.on("state_changed")
        async def show(event: CallEvent) -> None:
            print(event.state)

        await session.connect()
        await session.join("r1")
        await session.start_call()
        ...
        await session.end_call()
    """

    def __init__(
        self,
        channel: RelayChannel,
        peer: PeerConnection,
        *,
        config: CallConfig | None = None,
        media_toggle: TrackToggle | None = None,
    ) -> None:
        self._config = config or CallConfig()
        self._channel = channel
        self._peer = peer
        self._queue = SerialEventQueue(name="session")
        self._state = CallState.DISCONNECTED
        self._participant_id: str | None = None
        # The one authoritative "current room / dial target" value
        self._binding: str | None = None
        self._remote_id: str | None = None
        self._remote_track_seen = False
        self._join_waiter: tuple[str, asyncio.Future[JoinOutcome]] | None = None
        self._state_waiters: list[tuple[frozenset[CallState], asyncio.Future[CallState]]] = []
        self._event_handlers: list[tuple[str, CallEventHandler]] = []

        self._negotiation = NegotiationStateMachine(
            peer, self._send_signal, target=lambda: self._binding
        )
        self._media = MediaControlChannel(
            self._send_signal, coalesce=self._config.coalesce_media, toggle=media_toggle
        )

        peer.on_remote_track(
            lambda track, stream: self._queue.post(self._on_remote_track, track, stream)
        )
        peer.on_local_candidate(
            lambda candidate: self._queue.post(self._on_local_candidate, candidate)
        )
        peer.on_connectivity_change(
            lambda state: self._queue.post(self._on_connectivity, state)
        )

    # -- Properties --

    @property
    def state(self) -> CallState:
        return self._state

    @property
    def participant_id(self) -> str | None:
        return self._participant_id

    @property
    def room(self) -> str | None:
        """Bound room in room-addressed mode."""
        return self._binding if self._config.addressing == AddressingMode.ROOM else None

    @property
    def target(self) -> str | None:
        """Bound peer identity in identity-addressed mode."""
        return self._binding if self._config.addressing == AddressingMode.IDENTITY else None

    @property
    def remote_participant_id(self) -> str | None:
        return self._remote_id

    @property
    def negotiation(self) -> NegotiationStateMachine:
        return self._negotiation

    @property
    def negotiation_state(self) -> NegotiationState:
        return self._negotiation.state

    @property
    def media(self) -> MediaControlChannel:
        return self._media

    @property
    def config(self) -> CallConfig:
        return self._config

    def remote_media_enabled(self, kind: MediaKind) -> bool:
        return self._media.remote_enabled(kind)

    def local_media_enabled(self, kind: MediaKind) -> bool:
        return self._media.local_enabled(kind)

    # -- Events --

    def on(self, event_type: str) -> Callable[..., Any]:
        """Decorator to register a call event handler filtered by type."""

        def decorator(fn: CallEventHandler) -> CallEventHandler:
            self._event_handlers.append((event_type, fn))
            return fn

        return decorator

    async def wait_for_state(self, *states: CallState, timeout: float | None = None) -> CallState:
        """Wait until the session enters one of *states*."""
        if self._state in states:
            return self._state
        future: asyncio.Future[CallState] = asyncio.get_running_loop().create_future()
        entry = (frozenset(states), future)
        self._state_waiters.append(entry)
        try:
            return await asyncio.wait_for(future, timeout)
        finally:
            if entry in self._state_waiters:
                self._state_waiters.remove(entry)

    async def drain(self) -> None:
        """Wait until every queued event has been handled."""
        await self._queue.join()

    # -- User intents --

    async def connect(self) -> str:
        """Open the relay channel.

        Returns:
            The participant id assigned by the relay.
        """
        if self._state != CallState.DISCONNECTED:
            raise CallKitError(f"Cannot connect a session in state {self._state}")
        self._queue.start()
        try:
            participant_id = await self._channel.open(self._on_envelope, self._on_channel_lost)
        except Exception:
            await self._queue.stop()
            raise
        await self._queue.submit(self._handle_connected, participant_id)
        return participant_id

    async def join(self, room_id: str) -> JoinOutcome:
        """Join a room on a room-addressed relay.

        Raises:
            RoomFullError: If the room already holds two participants.
        """
        if self._config.addressing != AddressingMode.ROOM:
            raise CallKitError("join() requires room addressing")
        if self._state == CallState.WAITING and self._binding == room_id:
            return JoinOutcome.ACCEPTED
        if self._state != CallState.IDLE:
            raise CallKitError(f"Cannot join a room in state {self._state}")
        if self._join_waiter is not None:
            raise CallKitError("A join is already in progress")

        future: asyncio.Future[JoinOutcome] = asyncio.get_running_loop().create_future()
        self._join_waiter = (room_id, future)
        try:
            await self._channel.send(
                Envelope(type=EnvelopeType.JOIN, room=room_id, source=self._participant_id)
            )
            outcome = await asyncio.wait_for(future, self._config.join_timeout)
        finally:
            self._join_waiter = None

        if outcome == JoinOutcome.FULL:
            raise RoomFullError(room_id)
        return outcome

    def bind_target(self, participant_id: str) -> None:
        """Set the peer to dial on an identity-addressed relay."""
        if self._config.addressing != AddressingMode.IDENTITY:
            raise CallKitError("bind_target() requires identity addressing")
        if self._state not in _PRE_CALL_STATES:
            raise CallKitError(f"Cannot change target in state {self._state}")
        self._binding = participant_id
        self._remote_id = participant_id

    async def start_call(self) -> None:
        """Send an offer to the bound room or peer.

        Raises:
            NoTargetBoundError: If no room or peer is bound.
        """
        if self._state == CallState.ENDED or self._queue.closed:
            raise CallKitError("Session has ended")
        await self._queue.submit(self._start_call)

    def add_local_track(self, track: Any, stream: Any = None) -> None:
        """Hand a local media track to the peer connection."""
        self._peer.add_local_track(track, stream)

    def set_media_enabled(self, kind: MediaKind, enabled: bool) -> None:
        """Toggle local audio/video and tell the peer.

        Toggles made before the next flush run coalesce when
        ``CallConfig.coalesce_media`` is set.
        """
        if self._state == CallState.ENDED:
            logger.debug("Media toggle ignored, session ended")
            return
        if self._media.set_local(kind, enabled):
            self._queue.post(self._media.flush)

    async def end_call(self) -> None:
        """Hang up: send ``bye``, leave the room and release everything. Idempotent.

        Does not wait for a peer-connection operation in flight. The primitive
        is closed first, the handler awaiting it is cancelled, and its late
        result is discarded.
        """
        if self._queue.closed:
            return
        await self._negotiation.teardown()
        await self._end_call()
        await self._queue.stop()

    # -- Queue handlers --

    async def _handle_connected(self, participant_id: str) -> None:
        self._participant_id = participant_id
        if self._state == CallState.DISCONNECTED:
            await self._set_state(CallState.IDLE)

    async def _start_call(self) -> None:
        await self._negotiation.start_call()
        if (
            self._negotiation.state == NegotiationState.HAVE_LOCAL_OFFER
            and self._state in _PRE_CALL_STATES
        ):
            await self._set_state(CallState.CALLING)

    async def _end_call(self) -> None:
        if self._state == CallState.ENDED:
            return
        if self._channel.is_open and self._binding is not None:
            await self._send_signal(EnvelopeType.BYE, None)
            if self._config.addressing == AddressingMode.ROOM:
                await self._send_signal(EnvelopeType.LEAVE, None)
        await self._finish("local_hangup")

    async def _dispatch(self, envelope: Envelope) -> None:
        if self._state == CallState.ENDED:
            logger.debug("Envelope %s ignored, session ended", envelope.type)
            return
        if (
            self._config.addressing == AddressingMode.IDENTITY
            and self._binding is not None
            and envelope.source is not None
            and envelope.source != self._binding
            and envelope.type != EnvelopeType.ID
        ):
            logger.warning("Envelope %s from unbound peer %s dropped", envelope.type, envelope.source)
            return

        try:
            match envelope.type:
                case EnvelopeType.ID:
                    announced = envelope.id or envelope.data
                    if self._participant_id is None and isinstance(announced, str):
                        self._participant_id = announced
                case EnvelopeType.JOINED:
                    await self._handle_joined(envelope)
                case EnvelopeType.FULL:
                    await self._handle_full(envelope)
                case EnvelopeType.PEER_JOINED:
                    self._remote_id = envelope.source
                    await self._emit("peer_joined", data={"participant_id": envelope.source})
                case EnvelopeType.OFFER:
                    await self._handle_offer(envelope)
                case EnvelopeType.ANSWER:
                    self._learn_remote(envelope)
                    await self._negotiation.receive_answer(envelope.description())
                    await self._check_connected()
                case EnvelopeType.CANDIDATE:
                    await self._negotiation.receive_candidate(envelope.candidate())
                case EnvelopeType.MEDIA_UPDATE:
                    intent = envelope.media_intent()
                    if self._media.receive(intent):
                        await self._emit(
                            "remote_media",
                            data={"kind": intent.kind.value, "enabled": intent.enabled},
                        )
                case EnvelopeType.BYE:
                    logger.info("Peer %s hung up", envelope.source)
                    await self._finish("remote_hangup")
                case _:
                    logger.debug("Unhandled envelope type %s", envelope.type)
        except ValidationError:
            logger.warning("Malformed %s payload from %s dropped", envelope.type, envelope.source)

    async def _handle_joined(self, envelope: Envelope) -> None:
        waiter = self._join_waiter
        if waiter is None or waiter[0] != envelope.room:
            logger.debug("Unexpected joined for room %s", envelope.room)
            return
        self._binding = envelope.room
        others = envelope.data if isinstance(envelope.data, list) else []
        if others:
            self._remote_id = others[0]
        await self._set_state(CallState.WAITING)
        if not waiter[1].done():
            waiter[1].set_result(JoinOutcome.ACCEPTED)

    async def _handle_full(self, envelope: Envelope) -> None:
        waiter = self._join_waiter
        if self._binding == envelope.room:
            self._binding = None
        await self._emit("error", data={"error": "room_full", "room_id": envelope.room})
        if waiter is not None and waiter[0] == envelope.room and not waiter[1].done():
            waiter[1].set_result(JoinOutcome.FULL)

    async def _handle_offer(self, envelope: Envelope) -> None:
        if self._config.addressing == AddressingMode.IDENTITY and self._binding is None:
            self._binding = envelope.source
        if self._binding is None:
            logger.warning("Offer from %s dropped, no room bound", envelope.source)
            return
        self._learn_remote(envelope)
        description = envelope.description()

        polite = self._is_polite(envelope.source)
        # The impolite side keeps its own offer on glare and stays in calling
        keeps_offer = self._negotiation.state == NegotiationState.HAVE_LOCAL_OFFER and not polite
        if not keeps_offer and self._state in (*_PRE_CALL_STATES, CallState.CALLING):
            await self._set_state(CallState.RINGING)
        await self._negotiation.receive_offer(description, polite=polite)
        await self._check_connected()

    async def _on_remote_track(self, track: Any, stream: Any) -> None:
        if self._state == CallState.ENDED:
            return
        self._remote_track_seen = True
        await self._emit(
            "remote_track",
            data={"kind": getattr(track, "kind", None), "track": track, "stream": stream},
        )
        await self._check_connected()

    async def _on_local_candidate(self, candidate: IceCandidate) -> None:
        if self._state == CallState.ENDED:
            return
        await self._send_signal(EnvelopeType.CANDIDATE, candidate.model_dump(mode="json"))

    async def _on_connectivity(self, connectivity: ConnectivityState) -> None:
        if self._state == CallState.ENDED or connectivity not in _LOST_CONNECTIVITY:
            return
        if self._state == CallState.CONNECTED:
            error = PeerConnectivityLostError(f"Peer connection {connectivity.value}")
            await self._emit(
                "error",
                data={"error": "peer_connectivity_lost", "message": str(error)},
            )
        await self._finish(f"connectivity_{connectivity.value}")

    async def _on_relay_lost(self) -> None:
        if self._state == CallState.ENDED:
            return
        error = RelayDisconnectedError("Relay channel closed unexpectedly")
        await self._emit("error", data={"error": "relay_disconnected", "message": str(error)})
        await self._finish("relay_disconnected")

    # -- Callbacks from the relay channel --

    def _on_envelope(self, envelope: Envelope) -> None:
        self._queue.post(self._dispatch, envelope)

    def _on_channel_lost(self) -> None:
        self._queue.post(self._on_relay_lost)

    # -- Internal helpers --

    async def _check_connected(self) -> None:
        if (
            self._state in (CallState.CALLING, CallState.RINGING)
            and self._remote_track_seen
            and self._negotiation.state == NegotiationState.STABLE
        ):
            await self._set_state(CallState.CONNECTED)
            await self._media.announce()

    async def _finish(self, reason: str) -> None:
        if self._state == CallState.ENDED:
            return
        room_id = self.room
        await self._negotiation.teardown()
        self._binding = None
        if self._join_waiter is not None and not self._join_waiter[1].done():
            self._join_waiter[1].set_exception(RelayDisconnectedError("Session ended"))
        await self._set_state(CallState.ENDED, reason=reason, room_id=room_id)
        try:
            await self._channel.close()
        except Exception:
            logger.exception("Error closing relay channel")

    async def _send_signal(self, envelope_type: EnvelopeType, payload: Any) -> None:
        """Address *payload* using the current binding and send it to the relay."""
        if self._binding is None:
            logger.debug("Dropping %s, nothing bound", envelope_type)
            return
        if not self._channel.is_open:
            logger.debug("Dropping %s, relay channel closed", envelope_type)
            return
        by_room = self._config.addressing == AddressingMode.ROOM
        envelope = Envelope(
            type=envelope_type,
            room=self._binding if by_room else None,
            target=None if by_room else self._binding,
            source=self._participant_id,
            data=payload,
        )
        try:
            await self._channel.send(envelope)
        except RelayDisconnectedError:
            logger.warning("Could not send %s, relay channel closed", envelope_type)

    def _learn_remote(self, envelope: Envelope) -> None:
        if envelope.source is not None:
            self._remote_id = envelope.source

    def _is_polite(self, remote_id: str | None) -> bool:
        """The lexicographically smaller participant id yields on glare."""
        if self._config.polite is not None:
            return self._config.polite
        if self._participant_id is None or remote_id is None:
            return True
        return self._participant_id < remote_id

    async def _set_state(
        self, state: CallState, *, reason: str | None = None, room_id: str | None = None
    ) -> None:
        if state == self._state:
            return
        previous, self._state = self._state, state
        logger.info(
            "Session %s: %s -> %s",
            self._participant_id,
            previous.value,
            state.value,
            extra={"participant_id": self._participant_id, "reason": reason},
        )
        for states, future in list(self._state_waiters):
            if state in states and not future.done():
                future.set_result(state)
        data: dict[str, Any] = {"previous": previous.value}
        if reason is not None:
            data["reason"] = reason
        await self._emit("state_changed", data=data, room_id=room_id)

    async def _emit(
        self,
        event_type: str,
        *,
        data: dict[str, Any] | None = None,
        room_id: str | None = None,
    ) -> None:
        """Emit a call event to handlers registered for *event_type*."""
        event = CallEvent(
            type=event_type,
            state=self._state,
            participant_id=self._participant_id,
            room_id=room_id or self.room,
            data=data or {},
        )
        for filter_type, handler in self._event_handlers:
            if filter_type == event.type:
                try:
                    await handler(event)
                except Exception:
                    logger.exception(
                        "Call event handler failed",
                        extra={"event_type": event.type, "participant_id": self._participant_id},
                    )
