"""WebSocket relay server."""

from __future__ import annotations

import asyncio
import contextlib
import logging

from pydantic import ValidationError
from websockets import ConnectionClosed
from websockets.asyncio.server import Server, ServerConnection, serve

from callkit.config import RelayConfig
from callkit.models.envelope import Envelope
from callkit.relay.hub import Relay

logger = logging.getLogger("callkit.relay.server")


class RelayServer:
    """Serves a :class:`Relay` over WebSockets.

    Each connection is assigned an identity, then every text frame is parsed
    as an :class:`Envelope` and handed to the relay. Frames that are not valid
    envelopes are logged and ignored. Closing a connection removes the
    participant from its room.

    Example:
        server = RelayServer(RelayConfig(port=8080))
        await server.start()
        ...
        await server.stop()
    """

    def __init__(self, config: RelayConfig | None = None, *, relay: Relay | None = None) -> None:
        self._config = config or RelayConfig()
        self._relay = relay or Relay(config=self._config)
        self._server: Server | None = None

    @property
    def relay(self) -> Relay:
        return self._relay

    @property
    def port(self) -> int:
        """Bound port; useful when configured with port 0."""
        if self._server is None:
            return self._config.port
        for sock in self._server.sockets:
            return sock.getsockname()[1]
        return self._config.port

    @property
    def url(self) -> str:
        host = self._config.host
        if host in ("0.0.0.0", ""):
            host = "127.0.0.1"
        return f"ws://{host}:{self.port}{self._config.path}"

    async def start(self) -> None:
        if self._server is not None:
            return
        self._server = await serve(
            self._handle,
            self._config.host,
            self._config.port,
            ping_interval=self._config.ping_interval,
            ping_timeout=self._config.ping_timeout,
            max_size=self._config.max_size,
        )
        logger.info(
            "Relay listening on %s (%s addressing)", self.url, self._relay.addressing.value
        )

    async def stop(self) -> None:
        server, self._server = self._server, None
        if server is None:
            return
        server.close()
        await server.wait_closed()
        logger.info("Relay stopped")

    async def serve_forever(self) -> None:
        await self.start()
        with contextlib.suppress(asyncio.CancelledError):
            await asyncio.Future()
        await self.stop()

    async def _handle(self, ws: ServerConnection) -> None:
        path = ws.request.path if ws.request is not None else self._config.path
        if self._config.path and path.split("?", 1)[0] != self._config.path:
            logger.warning("Rejected connection on unexpected path %s", path)
            await ws.close(code=1008, reason="unknown path")
            return

        async def send(envelope: Envelope) -> None:
            await ws.send(envelope.to_json())

        async def drop() -> None:
            await ws.close(code=1011, reason="too many send failures")

        participant_id = await self._relay.connect(send, drop_fn=drop)
        try:
            async for raw in ws:
                try:
                    envelope = Envelope.from_json(raw)
                except ValidationError:
                    logger.warning("Invalid envelope from %s ignored", participant_id)
                    continue
                await self._relay.receive(participant_id, envelope)
        except ConnectionClosed:
            logger.debug("Connection for %s closed abnormally", participant_id)
        finally:
            await self._relay.disconnect(participant_id)
