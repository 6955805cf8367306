"""Client-side duplex channels to the relay."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any

import websockets
from pydantic import ValidationError
from websockets import ClientConnection

from callkit.core.errors import CallKitError, RelayDisconnectedError
from callkit.models.enums import EnvelopeType
from callkit.models.envelope import Envelope
from callkit.relay.hub import Relay

logger = logging.getLogger("callkit.relay.channel")

EnvelopeCallback = Callable[[Envelope], Any]
# Fired when the channel closes without close() having been called
CloseCallback = Callable[[], Any]


class RelayChannel(ABC):
    """Abstract duplex channel between one participant and the relay.

    Envelopes from a single sender arrive in order; nothing else is
    guaranteed. Callbacks may be plain functions or coroutines.

    Lifecycle:
        1. ``participant_id = await channel.open(on_envelope, on_close)``
        2. ``await channel.send(envelope)`` any number of times
        3. ``await channel.close()``
    """

    def __init__(self) -> None:
        self._participant_id: str | None = None
        self._on_envelope: EnvelopeCallback | None = None
        self._on_close: CloseCallback | None = None
        self._open = False

    @property
    def participant_id(self) -> str | None:
        """Identity assigned by the relay, once open."""
        return self._participant_id

    @property
    def is_open(self) -> bool:
        return self._open

    @abstractmethod
    async def open(self, on_envelope: EnvelopeCallback, on_close: CloseCallback) -> str:
        """Connect to the relay.

        Returns:
            The participant id assigned by the relay.
        """
        ...

    @abstractmethod
    async def send(self, envelope: Envelope) -> None:
        """Send an envelope to the relay.

        Raises:
            RelayDisconnectedError: If the channel is closed.
        """
        ...

    @abstractmethod
    async def close(self) -> None:
        """Close the channel. Idempotent; does not fire the close callback."""
        ...

    async def _emit(self, envelope: Envelope) -> None:
        if self._on_envelope is not None:
            await _invoke(self._on_envelope, envelope)

    async def _lost(self) -> None:
        """Mark the channel closed and notify the owner of the unexpected loss."""
        if not self._open:
            return
        self._open = False
        logger.warning("Relay channel for %s closed unexpectedly", self._participant_id)
        if self._on_close is not None:
            await _invoke(self._on_close)


class InMemoryRelayChannel(RelayChannel):
    """Channel wired directly to an in-process :class:`Relay`.

    Suitable for tests and single-process demos.
    """

    def __init__(self, relay: Relay) -> None:
        super().__init__()
        self._relay = relay

    async def open(self, on_envelope: EnvelopeCallback, on_close: CloseCallback) -> str:
        self._on_envelope = on_envelope
        self._on_close = on_close
        self._open = True
        self._participant_id = await self._relay.connect(self._deliver, drop_fn=self._lost)
        return self._participant_id

    async def send(self, envelope: Envelope) -> None:
        if not self._open or self._participant_id is None:
            raise RelayDisconnectedError("Relay channel is closed")
        await self._relay.receive(self._participant_id, envelope)

    async def close(self) -> None:
        if not self._open:
            return
        self._open = False
        if self._participant_id is not None:
            await self._relay.disconnect(self._participant_id)

    async def simulate_disconnect(self) -> None:
        """Drop the connection as a network failure would."""
        if self._participant_id is not None:
            await self._relay.disconnect(self._participant_id)
        await self._lost()

    async def _deliver(self, envelope: Envelope) -> None:
        if not self._open:
            raise RelayDisconnectedError("Relay channel is closed")
        await self._emit(envelope)


class WebSocketRelayChannel(RelayChannel):
    """WebSocket client channel to a :class:`~callkit.relay.server.RelayServer`.

    The relay announces the assigned identity with an ``id`` envelope as the
    first frame; ``open()`` waits for it, then a background task reads the
    rest of the stream.

    Example:
        channel = WebSocketRelayChannel("ws://localhost:8080/socket")
        session = CallSession(channel, peer)
        await session.connect()
    """

    def __init__(
        self,
        url: str,
        *,
        headers: dict[str, str] | None = None,
        open_timeout: float = 10.0,
        ping_interval: float | None = 20.0,
        ping_timeout: float | None = 20.0,
        close_timeout: float = 10.0,
        max_size: int = 2**16,
    ) -> None:
        super().__init__()
        self._url = url
        self._headers = headers or {}
        self._open_timeout = open_timeout
        self._ping_interval = ping_interval
        self._ping_timeout = ping_timeout
        self._close_timeout = close_timeout
        self._max_size = max_size
        self._ws: ClientConnection | None = None
        self._receive_task: asyncio.Task[None] | None = None
        self._closing = False

    @property
    def url(self) -> str:
        return self._url

    async def open(self, on_envelope: EnvelopeCallback, on_close: CloseCallback) -> str:
        self._on_envelope = on_envelope
        self._on_close = on_close

        connect_kwargs: dict[str, Any] = {
            "uri": self._url,
            "open_timeout": self._open_timeout,
            "ping_interval": self._ping_interval,
            "ping_timeout": self._ping_timeout,
            "close_timeout": self._close_timeout,
            "max_size": self._max_size,
        }
        if self._headers:
            connect_kwargs["additional_headers"] = self._headers

        try:
            self._ws = await websockets.connect(**connect_kwargs)
            raw = await asyncio.wait_for(self._ws.recv(), timeout=self._open_timeout)
            greeting = Envelope.from_json(raw)
        except (OSError, TimeoutError, websockets.WebSocketException, ValidationError) as exc:
            await self._abort()
            raise RelayDisconnectedError(f"Could not open relay channel to {self._url}") from exc

        participant_id = greeting.id or greeting.data
        if greeting.type != EnvelopeType.ID or not isinstance(participant_id, str):
            await self._abort()
            raise CallKitError(f"Expected an id envelope from the relay, got {greeting.type}")

        self._participant_id = participant_id
        self._open = True
        logger.info("Connected to relay %s as %s", self._url, self._participant_id)
        self._receive_task = asyncio.create_task(
            self._receive_loop(self._ws), name=f"relay_recv:{self._participant_id}"
        )
        return self._participant_id

    async def send(self, envelope: Envelope) -> None:
        if self._ws is None or not self._open:
            raise RelayDisconnectedError("Relay channel is closed")
        try:
            await self._ws.send(envelope.to_json())
        except websockets.ConnectionClosed as exc:
            raise RelayDisconnectedError("Relay channel is closed") from exc

    async def close(self) -> None:
        if self._closing:
            return
        self._closing = True
        self._open = False

        task, self._receive_task = self._receive_task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        await self._abort()
        logger.info("Relay channel to %s closed", self._url)

    async def _abort(self) -> None:
        ws, self._ws = self._ws, None
        if ws is not None:
            with contextlib.suppress(Exception):
                await ws.close()

    async def _receive_loop(self, ws: ClientConnection) -> None:
        """Background loop reading envelopes from the relay."""
        try:
            async for raw in ws:
                try:
                    envelope = Envelope.from_json(raw)
                except ValidationError:
                    logger.warning("Invalid envelope from relay dropped")
                    continue
                await self._emit(envelope)
        except asyncio.CancelledError:
            raise
        except websockets.ConnectionClosed:
            logger.debug("Relay connection closed for %s", self._participant_id)
        except Exception:
            logger.exception("Error in relay receive loop for %s", self._participant_id)
        if not self._closing:
            await self._lost()


async def _invoke(cb: Callable[..., Any], *args: Any) -> None:
    try:
        result = cb(*args)
        if hasattr(result, "__await__"):
            await result
    except Exception:
        logger.exception("Error in relay channel callback %r", cb)
