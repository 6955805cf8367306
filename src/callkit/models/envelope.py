"""Control envelope and negotiation payload models."""

from __future__ import annotations

import re
from typing import Any

from pydantic import BaseModel, Field

from callkit.models.enums import EnvelopeType, MediaKind, SdpType

_UFRAG_RE = re.compile(r"^a=ice-ufrag:(\S+)", re.MULTILINE)


class SessionDescription(BaseModel):
    """An opaque negotiation payload produced by a peer-connection primitive."""

    type: SdpType
    sdp: str = ""

    @property
    def ice_ufrag(self) -> str | None:
        """ICE username fragment advertised by this description, if any."""
        match = _UFRAG_RE.search(self.sdp)
        return match.group(1) if match else None


class IceCandidate(BaseModel):
    """A network path descriptor discovered by a peer-connection primitive."""

    candidate: str
    sdp_mid: str | None = None
    sdp_mline_index: int | None = Field(default=None, ge=0)
    username_fragment: str | None = None


class MediaIntent(BaseModel):
    """Whether the sender wants a media kind shown as active."""

    kind: MediaKind
    enabled: bool


class Envelope(BaseModel):
    """A control message carried over the relay.

    Room-addressed deployments fill ``room``; identity-addressed deployments
    fill ``target``. ``source`` is stamped by the sending client. ``id`` is
    only set on the relay's identity greeting, alongside ``data``.
    """

    type: EnvelopeType
    id: str | None = None
    room: str | None = None
    source: str | None = None
    target: str | None = None
    data: Any = None

    def to_json(self) -> str:
        return self.model_dump_json(exclude_none=True)

    @classmethod
    def from_json(cls, raw: str | bytes) -> Envelope:
        return cls.model_validate_json(raw)

    def description(self) -> SessionDescription:
        """Parse ``data`` as a session description."""
        return SessionDescription.model_validate(self.data)

    def candidate(self) -> IceCandidate:
        """Parse ``data`` as an ICE candidate."""
        return IceCandidate.model_validate(self.data)

    def media_intent(self) -> MediaIntent:
        """Parse ``data`` as a media intent."""
        return MediaIntent.model_validate(self.data)
