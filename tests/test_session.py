"""End-to-end tests for CallSession over the in-memory relay."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any

import pytest

from callkit.config import CallConfig, RelayConfig
from callkit.core.errors import CallKitError, NoTargetBoundError, RoomFullError
from callkit.core.session import CallSession
from callkit.models.call_event import CallEvent
from callkit.models.enums import (
    AddressingMode,
    CallState,
    ConnectivityState,
    JoinOutcome,
    MediaKind,
    NegotiationState,
    SdpType,
)
from callkit.peer.mock import MockPeerConnection
from callkit.relay.channel import InMemoryRelayChannel
from callkit.relay.hub import Relay

MakeSession = Callable[..., CallSession]


def _record(session: CallSession, event_type: str) -> list[CallEvent]:
    events: list[CallEvent] = []

    @session.on(event_type)
    async def _collect(event: CallEvent) -> None:
        events.append(event)

    return events


async def _in_room(make_session: MakeSession, room: str = "r1", **kwargs: Any) -> CallSession:
    session = make_session(**kwargs)
    await session.connect()
    assert await session.join(room) == JoinOutcome.ACCEPTED
    return session


async def _connected_pair(make_session: MakeSession) -> tuple[CallSession, CallSession]:
    a = await _in_room(make_session)
    b = await _in_room(make_session)
    await a.start_call()
    await a.wait_for_state(CallState.CONNECTED, timeout=1.0)
    await b.wait_for_state(CallState.CONNECTED, timeout=1.0)
    return a, b


def _peer(session: CallSession) -> MockPeerConnection:
    peer = session.negotiation.peer
    assert isinstance(peer, MockPeerConnection)
    return peer


class TestConnectAndJoin:
    async def test_connect_assigns_identity(self, make_session: MakeSession) -> None:
        session = make_session()
        assert session.state == CallState.DISCONNECTED
        pid = await session.connect()
        assert session.participant_id == pid
        assert session.state == CallState.IDLE

    async def test_connect_twice_rejected(self, make_session: MakeSession) -> None:
        session = make_session()
        await session.connect()
        with pytest.raises(CallKitError):
            await session.connect()

    async def test_join_enters_waiting(self, make_session: MakeSession) -> None:
        session = await _in_room(make_session)
        assert session.state == CallState.WAITING
        assert session.room == "r1"
        assert session.target is None

    async def test_rejoin_same_room(self, make_session: MakeSession) -> None:
        session = await _in_room(make_session)
        assert await session.join("r1") == JoinOutcome.ACCEPTED

    async def test_second_joiner_learns_peer(self, make_session: MakeSession) -> None:
        a = await _in_room(make_session)
        joined = _record(a, "peer_joined")
        b = await _in_room(make_session)
        await a.drain()
        assert b.remote_participant_id == a.participant_id
        assert a.remote_participant_id == b.participant_id
        assert joined[0].data == {"participant_id": b.participant_id}

    async def test_third_join_is_full(self, make_session: MakeSession, relay: Relay) -> None:
        a = await _in_room(make_session)
        b = await _in_room(make_session)
        c = make_session()
        await c.connect()
        errors = _record(c, "error")

        with pytest.raises(RoomFullError) as exc_info:
            await c.join("r1")

        assert exc_info.value.room_id == "r1"
        assert c.state == CallState.IDLE
        assert c.room is None
        assert errors[0].data["error"] == "room_full"
        assert relay.directory.members("r1") == {a.participant_id, b.participant_id}

    async def test_join_requires_room_addressing(self, make_session: MakeSession) -> None:
        session = make_session(config=CallConfig(addressing=AddressingMode.IDENTITY))
        await session.connect()
        with pytest.raises(CallKitError):
            await session.join("r1")

    async def test_join_before_connect_rejected(self, make_session: MakeSession) -> None:
        with pytest.raises(CallKitError):
            await make_session().join("r1")


class TestCallFlow:
    async def test_start_call_without_room(self, make_session: MakeSession) -> None:
        session = make_session()
        await session.connect()
        with pytest.raises(NoTargetBoundError):
            await session.start_call()
        assert session.state == CallState.IDLE
        assert session.negotiation_state == NegotiationState.STABLE

    async def test_room_scenario(self, make_session: MakeSession, settle: Any) -> None:
        a = await _in_room(make_session)
        b = await _in_room(make_session)
        a_states = _record(a, "state_changed")
        b_states = _record(b, "state_changed")

        await a.start_call()
        assert a.state in (CallState.CALLING, CallState.CONNECTED)
        await a.wait_for_state(CallState.CONNECTED, timeout=1.0)
        await b.wait_for_state(CallState.CONNECTED, timeout=1.0)
        await settle(a, b)

        assert [e.state for e in a_states] == [CallState.CALLING, CallState.CONNECTED]
        assert [e.state for e in b_states] == [CallState.RINGING, CallState.CONNECTED]
        assert a.negotiation_state == b.negotiation_state == NegotiationState.STABLE

        # Every candidate either side gathered reached the other side
        assert len(_peer(b).applied_candidates) == 2
        assert len(_peer(a).applied_candidates) == 2

    async def test_remote_tracks_reported(self, make_session: MakeSession) -> None:
        a = await _in_room(make_session)
        b = await _in_room(make_session)
        tracks = _record(b, "remote_track")
        await a.start_call()
        await b.wait_for_state(CallState.CONNECTED, timeout=1.0)
        assert {e.data["kind"] for e in tracks} == {"audio", "video"}

    async def test_no_remote_media_stays_ringing(
        self, make_session: MakeSession, settle: Any
    ) -> None:
        a = await _in_room(make_session, kinds=())
        b = await _in_room(make_session)
        await a.start_call()
        await settle(a, b)
        # a receives b's media, b never receives any from a
        assert a.state == CallState.CONNECTED
        assert b.state == CallState.RINGING
        assert b.negotiation_state == NegotiationState.STABLE

    async def test_glare_both_connect(self, make_session: MakeSession, settle: Any) -> None:
        a = await _in_room(make_session)
        b = await _in_room(make_session)

        await asyncio.gather(a.start_call(), b.start_call())
        await a.wait_for_state(CallState.CONNECTED, timeout=1.0)
        await b.wait_for_state(CallState.CONNECTED, timeout=1.0)
        await settle(a, b)

        assert a.negotiation_state == b.negotiation_state == NegotiationState.STABLE
        rollbacks = {
            s.participant_id: [
                c for c in _peer(s).calls if c.args.get("type") == SdpType.ROLLBACK
            ]
            for s in (a, b)
        }
        polite_id = min(a.participant_id, b.participant_id)
        impolite_id = max(a.participant_id, b.participant_id)
        assert len(rollbacks[polite_id]) == 1
        assert rollbacks[impolite_id] == []

        # Exactly one offer survived: the impolite side's
        polite = a if a.participant_id == polite_id else b
        impolite = b if polite is a else a
        assert _peer(polite).remote_description.sdp == _peer(impolite).local_description.sdp

    async def test_forced_politeness(self, make_session: MakeSession) -> None:
        a = await _in_room(make_session, config=CallConfig(polite=True))
        b = await _in_room(make_session, config=CallConfig(polite=False))
        await asyncio.gather(b.start_call(), a.start_call())
        await a.wait_for_state(CallState.CONNECTED, timeout=1.0)
        await b.wait_for_state(CallState.CONNECTED, timeout=1.0)
        assert any(c.args.get("type") == SdpType.ROLLBACK for c in _peer(a).calls)
        assert not any(c.args.get("type") == SdpType.ROLLBACK for c in _peer(b).calls)


class TestHangup:
    async def test_end_call_notifies_peer(self, make_session: MakeSession, relay: Relay) -> None:
        a, b = await _connected_pair(make_session)
        b_states = _record(b, "state_changed")

        await a.end_call()
        assert a.state == CallState.ENDED
        assert a.negotiation_state == NegotiationState.CLOSED
        await b.wait_for_state(CallState.ENDED, timeout=1.0)
        await b.drain()
        assert b_states[-1].data["reason"] == "remote_hangup"
        # Both sides released their seats, so the room is gone
        assert relay.directory.get_room("r1") is None  # type: ignore[attr-defined]
        assert relay.connection_count == 0

    async def test_end_call_idempotent(self, make_session: MakeSession) -> None:
        a, _b = await _connected_pair(make_session)
        states = _record(a, "state_changed")
        await a.end_call()
        await a.end_call()
        assert [e.state for e in states] == [CallState.ENDED]
        assert [c.method for c in _peer(a).calls].count("close") == 1

    async def test_end_call_while_peer_operation_pending(
        self, make_session: MakeSession, advance: Callable[..., Any]
    ) -> None:
        a = await _in_room(make_session)
        b = await _in_room(make_session)
        _peer(b).pause()
        await a.start_call()
        await advance(20)
        # b is stuck applying the offer
        assert b.state == CallState.RINGING

        await asyncio.wait_for(b.end_call(), timeout=1.0)
        assert b.state == CallState.ENDED
        assert b.negotiation_state == NegotiationState.CLOSED

        _peer(b).resume()
        await advance()
        assert b.state == CallState.ENDED
        assert "create_answer" not in [c.method for c in _peer(b).calls]
        await a.wait_for_state(CallState.ENDED, timeout=1.0)

    async def test_end_call_before_connect(self, make_session: MakeSession) -> None:
        session = make_session()
        await session.end_call()
        await session.end_call()

    async def test_ended_session_rejects_new_call(self, make_session: MakeSession) -> None:
        a, _b = await _connected_pair(make_session)
        await a.end_call()
        with pytest.raises(CallKitError):
            await a.start_call()

    async def test_room_seat_freed_after_hangup(self, make_session: MakeSession) -> None:
        a, b = await _connected_pair(make_session)
        await a.end_call()
        await b.wait_for_state(CallState.ENDED, timeout=1.0)
        await b.end_call()

        c = await _in_room(make_session)
        assert c.state == CallState.WAITING


class TestFailures:
    async def test_peer_connectivity_lost(self, make_session: MakeSession) -> None:
        a, b = await _connected_pair(make_session)
        errors = _record(a, "error")
        await _peer(a).simulate_connectivity(ConnectivityState.FAILED)
        await a.wait_for_state(CallState.ENDED, timeout=1.0)

        assert errors[0].data["error"] == "peer_connectivity_lost"
        # Treated as a remote hangup: no bye is sent
        await b.drain()
        assert b.state == CallState.CONNECTED

    async def test_relay_disconnect_ends_call(self, make_session: MakeSession) -> None:
        a, _b = await _connected_pair(make_session)
        errors = _record(a, "error")
        channel = a._channel
        assert isinstance(channel, InMemoryRelayChannel)

        await channel.simulate_disconnect()
        await a.wait_for_state(CallState.ENDED, timeout=1.0)
        assert errors[0].data["error"] == "relay_disconnected"
        assert a.negotiation_state == NegotiationState.CLOSED

    async def test_handler_failure_does_not_break_session(
        self, make_session: MakeSession
    ) -> None:
        a = await _in_room(make_session)
        b = await _in_room(make_session)

        @b.on("state_changed")
        async def broken(event: CallEvent) -> None:
            raise RuntimeError("ui bug")

        await a.start_call()
        await b.wait_for_state(CallState.CONNECTED, timeout=1.0)


class TestMedia:
    async def test_toggle_reaches_peer(self, make_session: MakeSession, settle: Any) -> None:
        a, b = await _connected_pair(make_session)
        updates = _record(b, "remote_media")

        a.set_media_enabled(MediaKind.VIDEO, False)
        await settle(a, b)
        assert b.remote_media_enabled(MediaKind.VIDEO) is False
        assert updates[-1].data == {"kind": "video", "enabled": False}
        assert a.local_media_enabled(MediaKind.VIDEO) is False

    async def test_coalesced_toggle_not_observed(
        self, make_session: MakeSession, settle: Any
    ) -> None:
        a, b = await _connected_pair(make_session)
        updates = _record(b, "remote_media")

        a.set_media_enabled(MediaKind.AUDIO, False)
        a.set_media_enabled(MediaKind.AUDIO, True)
        await settle(a, b)
        assert updates == []
        assert b.remote_media_enabled(MediaKind.AUDIO) is True

    async def test_intent_before_connect_announced(
        self, make_session: MakeSession, settle: Any
    ) -> None:
        a = await _in_room(make_session)
        a.set_media_enabled(MediaKind.VIDEO, False)
        b = await _in_room(make_session)
        await a.start_call()
        await b.wait_for_state(CallState.CONNECTED, timeout=1.0)
        await settle(a, b)
        assert b.remote_media_enabled(MediaKind.VIDEO) is False

    async def test_media_toggle_callback(self, relay: Relay) -> None:
        toggled: list[tuple[MediaKind, bool]] = []
        session = CallSession(
            InMemoryRelayChannel(relay),
            MockPeerConnection(),
            media_toggle=lambda kind, enabled: toggled.append((kind, enabled)),
        )
        await session.connect()
        session.set_media_enabled(MediaKind.AUDIO, False)
        assert toggled == [(MediaKind.AUDIO, False)]
        await session.end_call()


class TestIdentityAddressing:
    async def test_dial_by_identity(self, make_session: MakeSession) -> None:
        hub = Relay(config=RelayConfig(addressing=AddressingMode.IDENTITY))
        config = CallConfig(addressing=AddressingMode.IDENTITY)
        a = make_session(config=config, hub=hub)
        b = make_session(config=config, hub=hub)
        await a.connect()
        await b.connect()

        a.bind_target(b.participant_id)
        await a.start_call()
        await a.wait_for_state(CallState.CONNECTED, timeout=1.0)
        await b.wait_for_state(CallState.CONNECTED, timeout=1.0)

        assert a.target == b.participant_id
        # The callee binds the caller from the offer's source
        assert b.target == a.participant_id
        assert a.room is None

        await a.end_call()
        await b.wait_for_state(CallState.ENDED, timeout=1.0)

    async def test_bind_target_requires_identity_mode(self, make_session: MakeSession) -> None:
        session = make_session()
        await session.connect()
        with pytest.raises(CallKitError):
            session.bind_target("someone")
