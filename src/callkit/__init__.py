"""callkit - Pure async Python signaling for two-party peer-to-peer calls."""

from callkit._version import __version__
from callkit.config import DEFAULT_ICE_SERVERS, DEFAULT_RELAY_URL, CallConfig, RelayConfig
from callkit.core.errors import (
    CallKitError,
    NoTargetBoundError,
    PeerConnectivityLostError,
    RelayDisconnectedError,
    RoomFullError,
    StaleDescriptionError,
)
from callkit.core.media import MediaControlChannel
from callkit.core.negotiation import NegotiationStateMachine
from callkit.core.serial import SerialEventQueue
from callkit.core.session import CallSession
from callkit.models.call_event import CallEvent
from callkit.models.enums import (
    AddressingMode,
    CallState,
    ConnectivityState,
    EnvelopeType,
    JoinOutcome,
    MediaKind,
    NegotiationState,
    ParticipantStatus,
    SdpType,
)
from callkit.models.envelope import Envelope, IceCandidate, MediaIntent, SessionDescription
from callkit.models.participant import Participant, Room
from callkit.peer.base import PeerConnection
from callkit.peer.mock import MockPeerConnection, MockTrack
from callkit.relay.channel import InMemoryRelayChannel, RelayChannel, WebSocketRelayChannel
from callkit.relay.directory import Directory, IdentityDirectory, RoomDirectory
from callkit.relay.hub import Relay
from callkit.relay.server import RelayServer

__all__ = [
    "DEFAULT_ICE_SERVERS",
    "DEFAULT_RELAY_URL",
    "AddressingMode",
    "CallConfig",
    "CallEvent",
    "CallKitError",
    "CallSession",
    "CallState",
    "ConnectivityState",
    "Directory",
    "Envelope",
    "EnvelopeType",
    "IceCandidate",
    "IdentityDirectory",
    "InMemoryRelayChannel",
    "JoinOutcome",
    "MediaControlChannel",
    "MediaIntent",
    "MediaKind",
    "MockPeerConnection",
    "MockTrack",
    "NegotiationState",
    "NegotiationStateMachine",
    "NoTargetBoundError",
    "Participant",
    "ParticipantStatus",
    "PeerConnection",
    "PeerConnectivityLostError",
    "Relay",
    "RelayChannel",
    "RelayConfig",
    "RelayDisconnectedError",
    "RelayServer",
    "Room",
    "RoomDirectory",
    "RoomFullError",
    "SdpType",
    "SerialEventQueue",
    "SessionDescription",
    "StaleDescriptionError",
    "WebSocketRelayChannel",
    "__version__",
]
