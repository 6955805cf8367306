"""Client-side call machinery."""

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

__all__ = [
    "CallKitError",
    "CallSession",
    "MediaControlChannel",
    "NegotiationStateMachine",
    "NoTargetBoundError",
    "PeerConnectivityLostError",
    "RelayDisconnectedError",
    "RoomFullError",
    "SerialEventQueue",
    "StaleDescriptionError",
]
