"""aiortc-backed peer connection.

Requires the ``aiortc`` optional dependency::

    pip install callkit[aiortc]

Usage::

    from callkit.peer.aiortc import AiortcPeerConnection

    peer = AiortcPeerConnection(ice_servers=config.ice_servers)
    peer.add_local_track(MediaPlayer("/dev/video0").video)
    session = CallSession(channel, peer, config=config)
"""

from __future__ import annotations

import logging
from typing import Any

from aiortc import (
    RTCConfiguration,
    RTCIceServer,
    RTCPeerConnection,
    RTCSessionDescription,
)
from aiortc.sdp import candidate_from_sdp

from callkit.core.errors import StaleDescriptionError
from callkit.models.enums import ConnectivityState, SdpType
from callkit.models.envelope import IceCandidate, SessionDescription
from callkit.peer.base import PeerConnection

logger = logging.getLogger("callkit.peer.aiortc")


class AiortcPeerConnection(PeerConnection):
    """PeerConnection over :class:`aiortc.RTCPeerConnection`.

    aiortc gathers candidates while setting the local description and embeds
    them in the SDP, so ``on_local_candidate`` callbacks never fire.

    aiortc has no ``rollback`` description type. A rollback closes the
    underlying connection and builds a fresh one with the same local tracks;
    events from the discarded connection are ignored.
    """

    def __init__(self, ice_servers: list[str] | None = None) -> None:
        super().__init__()
        self._ice_servers = list(ice_servers or [])
        self._tracks: list[tuple[Any, Any]] = []
        self._pc = self._create_pc()

    @property
    def name(self) -> str:
        return "aiortc"

    @property
    def signaling_state(self) -> str:
        return self._pc.signalingState

    @property
    def current_local_description(self) -> SessionDescription | None:
        description = self._pc.localDescription
        return _from_rtc(description) if description is not None else None

    def add_local_track(self, track: Any, stream: Any = None) -> None:
        self._tracks.append((track, stream))
        self._pc.addTrack(track)

    async def create_offer(self) -> SessionDescription:
        return _from_rtc(await self._pc.createOffer())

    async def create_answer(self) -> SessionDescription:
        return _from_rtc(await self._pc.createAnswer())

    async def set_local_description(self, description: SessionDescription) -> None:
        if description.type == SdpType.ROLLBACK:
            await self.rollback()
            return
        await self._pc.setLocalDescription(_to_rtc(description))

    async def set_remote_description(self, description: SessionDescription) -> None:
        await self._pc.setRemoteDescription(_to_rtc(description))

    async def add_remote_candidate(self, candidate: IceCandidate) -> None:
        if self._pc.remoteDescription is None:
            raise StaleDescriptionError("Candidate received without remote description")
        ice = candidate_from_sdp(candidate.candidate.removeprefix("candidate:"))
        ice.sdpMid = candidate.sdp_mid
        ice.sdpMLineIndex = candidate.sdp_mline_index
        await self._pc.addIceCandidate(ice)

    async def rollback(self) -> None:
        if self._pc.signalingState != "have-local-offer":
            raise StaleDescriptionError(
                f"Nothing to roll back in state {self._pc.signalingState}"
            )
        old = self._pc
        self._pc = self._create_pc()
        for track, _stream in self._tracks:
            self._pc.addTrack(track)
        await old.close()
        logger.debug("Rolled back local offer by rebuilding the peer connection")

    async def close(self) -> None:
        await self._pc.close()

    def _create_pc(self) -> RTCPeerConnection:
        configuration = RTCConfiguration(
            iceServers=[RTCIceServer(urls=url) for url in self._ice_servers]
        )
        pc = RTCPeerConnection(configuration=configuration)

        @pc.on("track")
        async def _on_track(track: Any) -> None:
            if pc is self._pc:
                await self._fire_remote_track(track, None)

        @pc.on("connectionstatechange")
        async def _on_state() -> None:
            if pc is not self._pc:
                return
            try:
                state = ConnectivityState(pc.connectionState)
            except ValueError:
                logger.debug("Unknown connection state %s", pc.connectionState)
                return
            await self._fire_connectivity(state)

        return pc


def _to_rtc(description: SessionDescription) -> RTCSessionDescription:
    return RTCSessionDescription(sdp=description.sdp, type=description.type.value)


def _from_rtc(description: RTCSessionDescription) -> SessionDescription:
    return SessionDescription(type=SdpType(description.type), sdp=description.sdp)
