"""Mute/camera-off intent propagation between the two peers."""

from __future__ import annotations

import logging
from collections.abc import Callable, Coroutine
from typing import Any

from callkit.models.enums import EnvelopeType, MediaKind
from callkit.models.envelope import MediaIntent

logger = logging.getLogger("callkit.media")

MediaSender = Callable[[EnvelopeType, Any], Coroutine[Any, Any, None]]
# Applies a local intent to the opaque media layer: (kind, enabled) -> None
TrackToggle = Callable[[MediaKind, bool], Any]


class MediaControlChannel:
    """Best-effort ``media-update`` sub-protocol carried over the relay.

    Local intents are authoritative and only change track activity and the
    peer's rendering; they never touch the peer-connection primitive. Remote
    intents are last-write-wins per kind. No acknowledgement is sent.

    With ``coalesce`` enabled, toggles made before the next :meth:`flush`
    collapse to the latest intent per kind. Otherwise every toggle is sent,
    in order.
    """

    def __init__(
        self,
        send: MediaSender,
        *,
        coalesce: bool = True,
        toggle: TrackToggle | None = None,
    ) -> None:
        self._send = send
        self._coalesce = coalesce
        self._toggle = toggle
        self._local: dict[MediaKind, bool] = {kind: True for kind in MediaKind}
        self._remote: dict[MediaKind, bool] = {kind: True for kind in MediaKind}
        self._pending: dict[MediaKind, bool] = {}
        self._queued: list[MediaIntent] = []

    @property
    def coalesce(self) -> bool:
        return self._coalesce

    @property
    def has_pending(self) -> bool:
        return bool(self._pending or self._queued)

    def local_enabled(self, kind: MediaKind) -> bool:
        return self._local[kind]

    def remote_enabled(self, kind: MediaKind) -> bool:
        return self._remote[kind]

    def set_local(self, kind: MediaKind, enabled: bool) -> bool:
        """Record a local toggle and queue it for the peer.

        Returns:
            True if a flush must be scheduled, i.e. nothing was pending before.
        """
        needs_flush = not self.has_pending
        self._local[kind] = enabled
        if self._toggle is not None:
            try:
                self._toggle(kind, enabled)
            except Exception:
                logger.exception("Track toggle failed for %s", kind)
        if self._coalesce:
            self._pending[kind] = enabled
        else:
            self._queued.append(MediaIntent(kind=kind, enabled=enabled))
        return needs_flush

    async def flush(self) -> None:
        """Send queued intents to the peer."""
        if self._coalesce:
            intents = [MediaIntent(kind=k, enabled=v) for k, v in self._pending.items()]
            self._pending.clear()
        else:
            intents, self._queued = self._queued, []
        for intent in intents:
            await self._send(EnvelopeType.MEDIA_UPDATE, intent.model_dump(mode="json"))

    async def announce(self) -> None:
        """Send every current local intent once, regardless of what is pending."""
        self._pending.clear()
        self._queued.clear()
        for kind, enabled in self._local.items():
            intent = MediaIntent(kind=kind, enabled=enabled)
            await self._send(EnvelopeType.MEDIA_UPDATE, intent.model_dump(mode="json"))

    def receive(self, intent: MediaIntent) -> bool:
        """Record the peer's intent.

        Returns:
            True if the remote state for that kind changed.
        """
        changed = self._remote[intent.kind] != intent.enabled
        self._remote[intent.kind] = intent.enabled
        return changed
