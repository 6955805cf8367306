"""Peer-connection primitives."""

from callkit.peer.base import (
    ConnectivityCallback,
    LocalCandidateCallback,
    PeerConnection,
    RemoteTrackCallback,
)
from callkit.peer.mock import MockPeerCall, MockPeerConnection, MockTrack

__all__ = [
    "ConnectivityCallback",
    "LocalCandidateCallback",
    "MockPeerCall",
    "MockPeerConnection",
    "MockTrack",
    "PeerConnection",
    "RemoteTrackCallback",
]
