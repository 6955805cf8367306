"""A glare call over a real WebSocket relay.

Starts a relay on a free port, connects two sessions through
:class:`WebSocketRelayChannel`, and has both call at the same moment.
The polite side rolls back its offer and both still end up connected.

Run with:
    uv run python examples/websocket_call.py
"""

from __future__ import annotations

import asyncio
import logging

from callkit import (
    CallSession,
    CallState,
    MockPeerConnection,
    MockTrack,
    RelayConfig,
    RelayServer,
    WebSocketRelayChannel,
)

logging.basicConfig(level=logging.INFO, format="%(name)s | %(message)s")


def make_session(url: str) -> CallSession:
    peer = MockPeerConnection()
    peer.add_local_track(MockTrack("audio"))
    return CallSession(WebSocketRelayChannel(url), peer)


async def main() -> None:
    server = RelayServer(RelayConfig(host="127.0.0.1", port=0))
    await server.start()

    first = make_session(server.url)
    second = make_session(server.url)
    try:
        for session in (first, second):
            await session.connect()
            await session.join("glare")

        # Both sides dial at once
        await asyncio.gather(first.start_call(), second.start_call())
        for session in (first, second):
            await session.wait_for_state(CallState.CONNECTED, timeout=5.0)
            print(f"{session.participant_id}: {session.state}")
    finally:
        await first.end_call()
        await second.end_call()
        await server.stop()


if __name__ == "__main__":
    asyncio.run(main())
