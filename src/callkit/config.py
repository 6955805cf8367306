"""Configuration models for call sessions and the relay."""

from __future__ import annotations

from pydantic import BaseModel, Field

from callkit.models.enums import AddressingMode

DEFAULT_RELAY_URL = "ws://localhost:8080/socket"
DEFAULT_ICE_SERVERS = ["stun:stun.l.google.com:19302"]


class CallConfig(BaseModel):
    """Client-side settings for a :class:`~callkit.core.session.CallSession`.

    Attributes:
        addressing: How envelopes are addressed. Must match the relay.
        coalesce_media: Send only the latest media intent per kind when
            several toggles happen before the next flush.
        polite: Force the glare role. ``None`` derives it from the two
            participant ids (the lexicographically smaller id is polite).
        join_timeout: Seconds to wait for the relay to answer a join.
            ``None`` waits forever.
        ice_servers: STUN/TURN URLs for primitives that need them.
    """

    addressing: AddressingMode = AddressingMode.ROOM
    coalesce_media: bool = True
    polite: bool | None = None
    join_timeout: float | None = Field(default=10.0, gt=0.0)
    ice_servers: list[str] = Field(default_factory=lambda: list(DEFAULT_ICE_SERVERS))


class RelayConfig(BaseModel):
    """Settings for :class:`~callkit.relay.server.RelayServer`."""

    host: str = "0.0.0.0"
    port: int = Field(default=8080, ge=0, le=65535)
    path: str = "/socket"
    addressing: AddressingMode = AddressingMode.ROOM
    room_capacity: int = Field(default=2, ge=1)
    max_consecutive_errors: int = Field(default=3, ge=1)
    ping_interval: float | None = Field(default=20.0, gt=0.0)
    ping_timeout: float | None = Field(default=20.0, gt=0.0)
    max_size: int = Field(default=2**16, gt=0)
