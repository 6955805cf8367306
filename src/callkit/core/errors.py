"""Exception hierarchy for callkit."""

from __future__ import annotations

__all__ = [
    "CallKitError",
    "NoTargetBoundError",
    "PeerConnectivityLostError",
    "RelayDisconnectedError",
    "RoomFullError",
    "StaleDescriptionError",
]


class CallKitError(Exception):
    """Base exception for all callkit errors."""


class NoTargetBoundError(CallKitError):
    """A call was started before a room or peer identity was bound."""


class RoomFullError(CallKitError):
    """The relay rejected a join because the room already has two occupants."""

    def __init__(self, room_id: str) -> None:
        super().__init__(f"Room {room_id!r} is full")
        self.room_id = room_id


class StaleDescriptionError(CallKitError):
    """A description or candidate no longer matches the negotiation state."""


class RelayDisconnectedError(CallKitError):
    """The relay channel is closed."""


class PeerConnectivityLostError(CallKitError):
    """The peer connection dropped after the call was connected."""
