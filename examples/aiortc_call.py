"""Dial a peer through the relay with a real aiortc peer connection.

Requires the ``aiortc`` extra and a running relay (see
``examples/relay_server.py``). Start the callee first with ``--room``, then
the caller with the same room and ``--call``. Media comes from an aiortc
MediaPlayer source.

Run with:
    uv run --extra aiortc python examples/aiortc_call.py --room demo
    uv run --extra aiortc python examples/aiortc_call.py --room demo --call
"""

from __future__ import annotations

import argparse
import asyncio
import logging

from aiortc.contrib.media import MediaPlayer

from callkit import (
    DEFAULT_RELAY_URL,
    CallConfig,
    CallEvent,
    CallSession,
    CallState,
    WebSocketRelayChannel,
)
from callkit.peer.aiortc import AiortcPeerConnection

logging.basicConfig(level=logging.INFO, format="%(name)s | %(message)s")


async def main() -> None:
    parser = argparse.ArgumentParser()
    parser.add_argument("--relay", default=DEFAULT_RELAY_URL)
    parser.add_argument("--room", required=True)
    parser.add_argument("--call", action="store_true", help="start the call")
    parser.add_argument("--media", default="", help="file or device for MediaPlayer")
    args = parser.parse_args()

    config = CallConfig()
    peer = AiortcPeerConnection(ice_servers=config.ice_servers)
    if args.media:
        player = MediaPlayer(args.media)
        if player.audio is not None:
            peer.add_local_track(player.audio)
        if player.video is not None:
            peer.add_local_track(player.video)

    session = CallSession(WebSocketRelayChannel(args.relay), peer, config=config)

    @session.on("remote_track")
    async def on_track(event: CallEvent) -> None:
        print(f"Receiving remote {event.data['kind']}")

    await session.connect()
    await session.join(args.room)
    if args.call:
        await session.start_call()

    try:
        await session.wait_for_state(CallState.ENDED)
    finally:
        await session.end_call()


if __name__ == "__main__":
    asyncio.run(main())
