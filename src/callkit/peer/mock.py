"""Mock peer connection for testing."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any
from uuid import uuid4

from callkit.core.errors import StaleDescriptionError
from callkit.models.enums import ConnectivityState, NegotiationState, SdpType
from callkit.models.envelope import IceCandidate, SessionDescription
from callkit.peer.base import PeerConnection


@dataclass
class MockTrack:
    """A stand-in media track."""

    kind: str
    id: str = field(default_factory=lambda: uuid4().hex[:8])
    enabled: bool = True


@dataclass
class MockPeerCall:
    """Record of a call made to MockPeerConnection."""

    method: str
    args: dict[str, Any] = field(default_factory=dict)


class MockPeerConnection(PeerConnection):
    """In-memory peer connection that follows the offer/answer state rules.

    Descriptions carry an ``a=ice-ufrag`` line and one ``m=`` line per local
    track kind. Each ``set_local_description`` emits ``candidate_count``
    candidates tagged with the current ufrag. A rollback rotates the ufrag, so
    candidates gathered for a discarded offer are rejected as stale by the
    remote side.

    Setting a remote description that carries media fires the remote track
    callbacks once per kind, and reaching ``stable`` with both descriptions
    set reports ``connected``.

    Example:
        peer = MockPeerConnection()
        peer.add_local_track(MockTrack("audio"))

        offer = await peer.create_offer()
        await peer.set_local_description(offer)
        assert peer.signaling_state == NegotiationState.HAVE_LOCAL_OFFER

        # Hold the next primitive operation until resume()
        peer.pause()
    """

    def __init__(self, *, candidate_count: int = 2, fail_on: set[str] | None = None) -> None:
        super().__init__()
        self.signaling_state = NegotiationState.STABLE
        self.connectivity = ConnectivityState.NEW
        self.local_description: SessionDescription | None = None
        self.remote_description: SessionDescription | None = None
        self.local_tracks: list[tuple[Any, Any]] = []
        self.applied_candidates: list[IceCandidate] = []
        self.calls: list[MockPeerCall] = []
        self._candidate_count = candidate_count
        self._fail_on = fail_on or set()
        self._ufrag = uuid4().hex[:8]
        self._version = 0
        self._fired_kinds: set[str] = set()
        self._gate: asyncio.Event | None = None

    @property
    def name(self) -> str:
        return "MockPeerConnection"

    @property
    def ice_ufrag(self) -> str:
        return self._ufrag

    @property
    def current_local_description(self) -> SessionDescription | None:
        return self.local_description

    def add_local_track(self, track: Any, stream: Any = None) -> None:
        self.local_tracks.append((track, stream))
        self.calls.append(MockPeerCall(method="add_local_track", args={"track": track}))

    async def create_offer(self) -> SessionDescription:
        await self._enter("create_offer")
        return SessionDescription(type=SdpType.OFFER, sdp=self._render_sdp())

    async def create_answer(self) -> SessionDescription:
        await self._enter("create_answer")
        if self.signaling_state != NegotiationState.HAVE_REMOTE_OFFER:
            raise StaleDescriptionError(
                f"create_answer in state {self.signaling_state}, no remote offer"
            )
        return SessionDescription(type=SdpType.ANSWER, sdp=self._render_sdp())

    async def set_local_description(self, description: SessionDescription) -> None:
        await self._enter("set_local_description", type=description.type)
        state = self.signaling_state
        if description.type == SdpType.ROLLBACK:
            if state != NegotiationState.HAVE_LOCAL_OFFER:
                raise StaleDescriptionError(f"Nothing to roll back in state {state}")
            self.local_description = None
            self.signaling_state = NegotiationState.STABLE
            self._ufrag = uuid4().hex[:8]
            return

        if description.type == SdpType.OFFER and state == NegotiationState.STABLE:
            self.signaling_state = NegotiationState.HAVE_LOCAL_OFFER
        elif description.type == SdpType.ANSWER and state == NegotiationState.HAVE_REMOTE_OFFER:
            self.signaling_state = NegotiationState.STABLE
        else:
            raise StaleDescriptionError(f"Cannot apply local {description.type} in state {state}")
        self.local_description = description

        for index in range(self._candidate_count):
            await self._fire_local_candidate(
                IceCandidate(
                    candidate=f"candidate:{index} 1 udp {2130706431 - index} "
                    f"10.0.0.{index + 1} {50000 + index} typ host",
                    sdp_mid="0",
                    sdp_mline_index=0,
                    username_fragment=self._ufrag,
                )
            )
        await self._maybe_connected()

    async def set_remote_description(self, description: SessionDescription) -> None:
        await self._enter("set_remote_description", type=description.type)
        state = self.signaling_state
        if description.type == SdpType.OFFER and state == NegotiationState.STABLE:
            self.signaling_state = NegotiationState.HAVE_REMOTE_OFFER
        elif description.type == SdpType.ANSWER and state == NegotiationState.HAVE_LOCAL_OFFER:
            self.signaling_state = NegotiationState.STABLE
        else:
            raise StaleDescriptionError(
                f"Cannot apply remote {description.type} in state {state}"
            )
        self.remote_description = description

        for kind in _media_kinds(description.sdp):
            if kind in self._fired_kinds:
                continue
            self._fired_kinds.add(kind)
            await self._fire_remote_track(MockTrack(kind), None)
        await self._maybe_connected()

    async def add_remote_candidate(self, candidate: IceCandidate) -> None:
        await self._enter("add_remote_candidate", candidate=candidate.candidate)
        if self.remote_description is None:
            raise StaleDescriptionError("Candidate received without remote description")
        expected = self.remote_description.ice_ufrag
        if candidate.username_fragment and expected and candidate.username_fragment != expected:
            raise StaleDescriptionError(
                f"Candidate ufrag {candidate.username_fragment} does not match {expected}"
            )
        self.applied_candidates.append(candidate)

    async def close(self) -> None:
        self.calls.append(MockPeerCall(method="close"))
        self.signaling_state = NegotiationState.CLOSED
        self.connectivity = ConnectivityState.CLOSED

    # -------------------------------------------------------------------------
    # Test helpers
    # -------------------------------------------------------------------------

    def pause(self) -> None:
        """Hold every following primitive operation until :meth:`resume`."""
        self._gate = asyncio.Event()

    def resume(self) -> None:
        if self._gate is not None:
            self._gate.set()
            self._gate = None

    async def simulate_connectivity(self, state: ConnectivityState) -> None:
        """Report a connection state change as the transport would."""
        self.connectivity = state
        await self._fire_connectivity(state)

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    async def _enter(self, method: str, **args: Any) -> None:
        self.calls.append(MockPeerCall(method=method, args=args))
        if self.signaling_state == NegotiationState.CLOSED:
            raise StaleDescriptionError(f"{method} on a closed peer connection")
        if method in self._fail_on:
            raise StaleDescriptionError(f"{method} rejected")
        if self._gate is not None:
            await self._gate.wait()

    def _render_sdp(self) -> str:
        self._version += 1
        lines = [
            "v=0",
            f"o=- {id(self)} {self._version} IN IP4 127.0.0.1",
            "s=-",
            "t=0 0",
            f"a=ice-ufrag:{self._ufrag}",
        ]
        for track, _stream in self.local_tracks:
            lines.append(f"m={getattr(track, 'kind', 'audio')} 9 UDP/TLS/RTP/SAVPF 0")
        return "\r\n".join(lines) + "\r\n"

    async def _maybe_connected(self) -> None:
        if (
            self.signaling_state == NegotiationState.STABLE
            and self.local_description is not None
            and self.remote_description is not None
            and self.connectivity != ConnectivityState.CONNECTED
        ):
            self.connectivity = ConnectivityState.CONNECTED
            await self._fire_connectivity(ConnectivityState.CONNECTED)


def _media_kinds(sdp: str) -> list[str]:
    kinds: list[str] = []
    for line in sdp.splitlines():
        if line.startswith("m="):
            kind = line[2:].split(" ", 1)[0]
            if kind not in kinds:
                kinds.append(kind)
    return kinds
