"""Tests for envelope, participant and config models."""

from __future__ import annotations

import json

import pytest
from pydantic import ValidationError

from callkit.config import DEFAULT_ICE_SERVERS, CallConfig, RelayConfig
from callkit.models.call_event import CallEvent
from callkit.models.enums import AddressingMode, CallState, EnvelopeType, MediaKind, SdpType
from callkit.models.envelope import Envelope, IceCandidate, MediaIntent, SessionDescription
from callkit.models.participant import Room


class TestEnvelope:
    def test_to_json_omits_unset_fields(self) -> None:
        env = Envelope(type=EnvelopeType.JOIN, room="r1")
        assert json.loads(env.to_json()) == {"type": "join", "room": "r1"}

    def test_from_json_wire_format(self) -> None:
        raw = '{"type": "media-update", "room": "r1", "data": {"kind": "video", "enabled": false}}'
        env = Envelope.from_json(raw)
        assert env.type == EnvelopeType.MEDIA_UPDATE
        assert env.media_intent() == MediaIntent(kind=MediaKind.VIDEO, enabled=False)

    def test_unknown_type_rejected(self) -> None:
        with pytest.raises(ValidationError):
            Envelope.from_json('{"type": "hello"}')

    def test_description_payload(self) -> None:
        env = Envelope(type=EnvelopeType.OFFER, data={"type": "offer", "sdp": "v=0\r\n"})
        desc = env.description()
        assert desc.type == SdpType.OFFER
        assert desc.sdp == "v=0\r\n"

    def test_candidate_payload(self) -> None:
        env = Envelope(
            type=EnvelopeType.CANDIDATE,
            data={"candidate": "candidate:0 1 udp 1 10.0.0.1 5000 typ host", "sdp_mline_index": 0},
        )
        cand = env.candidate()
        assert cand.sdp_mline_index == 0
        assert cand.sdp_mid is None

    def test_malformed_payload_raises(self) -> None:
        env = Envelope(type=EnvelopeType.CANDIDATE, data={"sdp_mid": "0"})
        with pytest.raises(ValidationError):
            env.candidate()


class TestSessionDescription:
    def test_ice_ufrag_parsed(self) -> None:
        desc = SessionDescription(type=SdpType.OFFER, sdp="v=0\r\na=ice-ufrag:abcd\r\n")
        assert desc.ice_ufrag == "abcd"

    def test_ice_ufrag_missing(self) -> None:
        assert SessionDescription(type=SdpType.ANSWER).ice_ufrag is None

    def test_negative_mline_index_rejected(self) -> None:
        with pytest.raises(ValidationError):
            IceCandidate(candidate="c", sdp_mline_index=-1)


class TestRoom:
    def test_capacity(self) -> None:
        room = Room(id="r1")
        assert room.is_empty
        room.members.update({"a", "b"})
        assert room.is_full


class TestConfig:
    def test_call_defaults(self) -> None:
        config = CallConfig()
        assert config.addressing == AddressingMode.ROOM
        assert config.coalesce_media is True
        assert config.polite is None
        assert config.ice_servers == DEFAULT_ICE_SERVERS

    def test_ice_servers_not_shared(self) -> None:
        a = CallConfig()
        a.ice_servers.append("turn:example.org")
        assert CallConfig().ice_servers == DEFAULT_ICE_SERVERS

    def test_relay_validation(self) -> None:
        with pytest.raises(ValidationError):
            RelayConfig(port=70000)
        with pytest.raises(ValidationError):
            RelayConfig(max_consecutive_errors=0)


class TestCallEvent:
    def test_defaults(self) -> None:
        event = CallEvent(type="state_changed", state=CallState.IDLE)
        assert event.data == {}
        assert event.timestamp.tzinfo is not None
