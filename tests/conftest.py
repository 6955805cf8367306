"""Shared test fixtures and helpers."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable, Coroutine
from typing import Any

import pytest

from callkit.config import CallConfig
from callkit.core.session import CallSession
from callkit.models.enums import EnvelopeType
from callkit.models.envelope import Envelope
from callkit.peer.mock import MockPeerConnection, MockTrack
from callkit.relay.channel import InMemoryRelayChannel
from callkit.relay.hub import Relay


@pytest.fixture
def advance() -> Callable[[int], Coroutine[Any, Any, None]]:
    """Yield control to let pending tasks run without real delay.

    Replaces ``await asyncio.sleep(0.05)`` patterns with zero-delay
    event loop yields::

        await advance()       # 5 yields (default)
        await advance(10)     # 10 yields for heavier workloads
    """

    async def _advance(n: int = 5) -> None:
        for _ in range(n):
            await asyncio.sleep(0)

    return _advance


@pytest.fixture
def settle() -> Callable[..., Coroutine[Any, Any, None]]:
    """Drain the event queues of several sessions until they go quiet."""

    async def _settle(*sessions: CallSession, rounds: int = 20) -> None:
        for _ in range(rounds):
            for session in sessions:
                await session.drain()
            await asyncio.sleep(0)

    return _settle


@pytest.fixture
def relay() -> Relay:
    return Relay()


@pytest.fixture
async def make_session(relay: Relay) -> AsyncIterator[Callable[..., CallSession]]:
    """Build sessions wired to the shared in-memory relay; all are ended afterwards."""
    sessions: list[CallSession] = []

    def _make(
        *,
        config: CallConfig | None = None,
        peer: MockPeerConnection | None = None,
        kinds: tuple[str, ...] = ("audio", "video"),
        hub: Relay | None = None,
    ) -> CallSession:
        peer = peer or MockPeerConnection()
        for kind in kinds:
            peer.add_local_track(MockTrack(kind))
        session = CallSession(InMemoryRelayChannel(hub or relay), peer, config=config)
        sessions.append(session)
        return session

    yield _make

    for session in sessions:
        await session.end_call()


class SignalRecorder:
    """Collects ``(type, payload)`` pairs sent by a negotiation or media channel."""

    def __init__(self) -> None:
        self.sent: list[tuple[EnvelopeType, Any]] = []

    async def __call__(self, envelope_type: EnvelopeType, payload: Any) -> None:
        self.sent.append((envelope_type, payload))

    def of_type(self, envelope_type: EnvelopeType) -> list[Any]:
        return [payload for t, payload in self.sent if t == envelope_type]


@pytest.fixture
def recorder() -> SignalRecorder:
    return SignalRecorder()


class EnvelopeSink:
    """A relay send function that records every delivered envelope."""

    def __init__(self, *, fail: bool = False) -> None:
        self.received: list[Envelope] = []
        self.fail = fail

    async def __call__(self, envelope: Envelope) -> None:
        if self.fail:
            raise ConnectionError("send failed")
        self.received.append(envelope)

    def of_type(self, envelope_type: EnvelopeType) -> list[Envelope]:
        return [env for env in self.received if env.type == envelope_type]
