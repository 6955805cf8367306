"""Relay: room directory, routing hub, server and client channels."""

from callkit.relay.channel import (
    CloseCallback,
    EnvelopeCallback,
    InMemoryRelayChannel,
    RelayChannel,
    WebSocketRelayChannel,
)
from callkit.relay.directory import Directory, IdentityDirectory, RoomDirectory
from callkit.relay.hub import Relay, SendFn
from callkit.relay.server import RelayServer

__all__ = [
    "CloseCallback",
    "Directory",
    "EnvelopeCallback",
    "IdentityDirectory",
    "InMemoryRelayChannel",
    "Relay",
    "RelayChannel",
    "RelayServer",
    "RoomDirectory",
    "SendFn",
    "WebSocketRelayChannel",
]
