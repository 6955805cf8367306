"""Two participants meet in a room and connect, all in one process.

Uses the in-memory relay and mock peer connections, so nothing touches
the network. Shows:
- Joining a two-seat room, and a third participant being turned away
- Starting a call and following state changes
- Toggling media and seeing the peer's view update
- Hanging up

Run with:
    uv run python examples/quickstart.py
"""

from __future__ import annotations

import asyncio
import logging

from callkit import (
    CallEvent,
    CallSession,
    CallState,
    InMemoryRelayChannel,
    MediaKind,
    MockPeerConnection,
    MockTrack,
    Relay,
    RoomFullError,
)

logging.basicConfig(level=logging.INFO, format="%(name)s | %(message)s")


def make_session(relay: Relay, name: str) -> CallSession:
    peer = MockPeerConnection()
    peer.add_local_track(MockTrack("audio"))
    peer.add_local_track(MockTrack("video"))
    session = CallSession(InMemoryRelayChannel(relay), peer)

    @session.on("state_changed")
    async def show_state(event: CallEvent) -> None:
        print(f"[{name}] {event.data['previous']} -> {event.state}")

    @session.on("remote_media")
    async def show_media(event: CallEvent) -> None:
        print(f"[{name}] peer {event.data['kind']} enabled={event.data['enabled']}")

    return session


async def main() -> None:
    relay = Relay()
    alice = make_session(relay, "alice")
    bob = make_session(relay, "bob")
    carol = make_session(relay, "carol")

    for session in (alice, bob, carol):
        await session.connect()

    await alice.join("demo")
    await bob.join("demo")
    try:
        await carol.join("demo")
    except RoomFullError as exc:
        print(f"[carol] {exc}")

    await alice.start_call()
    await bob.wait_for_state(CallState.CONNECTED, timeout=2.0)

    # --- Media toggles ---------------------------------------------------
    alice.set_media_enabled(MediaKind.VIDEO, False)
    await alice.drain()
    await bob.drain()
    print(f"[bob] sees alice video: {bob.remote_media_enabled(MediaKind.VIDEO)}")

    await alice.end_call()
    await bob.wait_for_state(CallState.ENDED, timeout=2.0)
    for session in (bob, carol):
        await session.end_call()


if __name__ == "__main__":
    asyncio.run(main())
