"""PeerConnection abstract base class."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any

from callkit.models.enums import ConnectivityState, SdpType
from callkit.models.envelope import IceCandidate, SessionDescription

logger = logging.getLogger("callkit.peer")

# Callback types for the primitive's event feed
RemoteTrackCallback = Callable[[Any, Any], Any]
LocalCandidateCallback = Callable[[IceCandidate], Any]
ConnectivityCallback = Callable[[ConnectivityState], Any]


class PeerConnection(ABC):
    """Abstract peer-connection primitive.

    A PeerConnection discovers network paths and carries media once
    negotiated. callkit never implements media transport itself; it drives
    an implementation of this contract through offer/answer/candidate
    exchange.

    Example usage:
        peer = AiortcPeerConnection(ice_servers=["stun:stun.l.google.com:19302"])
        peer.add_local_track(track, stream)
        peer.on_local_candidate(send_candidate)

        offer = await peer.create_offer()
        await peer.set_local_description(offer)
        ...
        await peer.set_remote_description(answer)
    """

    def __init__(self) -> None:
        self._remote_track_callbacks: list[RemoteTrackCallback] = []
        self._local_candidate_callbacks: list[LocalCandidateCallback] = []
        self._connectivity_callbacks: list[ConnectivityCallback] = []

    @property
    @abstractmethod
    def name(self) -> str:
        """Implementation name (e.g. 'mock', 'aiortc')."""
        ...

    @abstractmethod
    def add_local_track(self, track: Any, stream: Any = None) -> None:
        """Attach a local media track to be sent to the peer."""
        ...

    @abstractmethod
    async def create_offer(self) -> SessionDescription:
        ...

    @abstractmethod
    async def create_answer(self) -> SessionDescription:
        ...

    @abstractmethod
    async def set_local_description(self, description: SessionDescription) -> None:
        ...

    @abstractmethod
    async def set_remote_description(self, description: SessionDescription) -> None:
        ...

    @abstractmethod
    async def add_remote_candidate(self, candidate: IceCandidate) -> None:
        """Apply a candidate received from the peer.

        Raises:
            StaleDescriptionError: If the candidate does not belong to the
                current remote description.
        """
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release all transport resources."""
        ...

    @property
    def current_local_description(self) -> SessionDescription | None:
        """The applied local description.

        Implementations that embed gathered candidates in the SDP return the
        enriched description here; it is what gets sent to the peer.
        """
        return None

    async def rollback(self) -> None:
        """Discard the pending local offer and return to ``stable``."""
        await self.set_local_description(SessionDescription(type=SdpType.ROLLBACK))

    # -------------------------------------------------------------------------
    # Event feed
    # -------------------------------------------------------------------------

    def on_remote_track(self, callback: RemoteTrackCallback) -> None:
        """Register a callback fired with ``(track, stream)`` for each remote track."""
        self._remote_track_callbacks.append(callback)

    def on_local_candidate(self, callback: LocalCandidateCallback) -> None:
        """Register a callback fired for each locally discovered candidate."""
        self._local_candidate_callbacks.append(callback)

    def on_connectivity_change(self, callback: ConnectivityCallback) -> None:
        """Register a callback fired when the connection state changes."""
        self._connectivity_callbacks.append(callback)

    async def _fire_remote_track(self, track: Any, stream: Any) -> None:
        for cb in self._remote_track_callbacks:
            await _invoke(cb, track, stream)

    async def _fire_local_candidate(self, candidate: IceCandidate) -> None:
        for cb in self._local_candidate_callbacks:
            await _invoke(cb, candidate)

    async def _fire_connectivity(self, state: ConnectivityState) -> None:
        for cb in self._connectivity_callbacks:
            await _invoke(cb, state)


async def _invoke(cb: Callable[..., Any], *args: Any) -> None:
    try:
        result = cb(*args)
        if hasattr(result, "__await__"):
            await result
    except Exception:
        logger.exception("Error in peer connection callback %r", cb)
