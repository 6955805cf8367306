"""Standalone WebSocket relay.

Clients connect to ``ws://<host>:8080/socket``, receive an ``id`` envelope
and then join rooms of two. Pass ``--identity`` to route by participant id
instead of by room.

Run with:
    uv run python examples/relay_server.py
    uv run python examples/relay_server.py --port 9000 --identity
"""

from __future__ import annotations

import argparse
import asyncio
import logging

from callkit import AddressingMode, RelayConfig, RelayServer

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s | %(message)s")


async def main() -> None:
    parser = argparse.ArgumentParser(description="callkit relay server")
    parser.add_argument("--host", default="0.0.0.0")
    parser.add_argument("--port", type=int, default=8080)
    parser.add_argument("--identity", action="store_true", help="identity-addressed routing")
    args = parser.parse_args()

    config = RelayConfig(
        host=args.host,
        port=args.port,
        addressing=AddressingMode.IDENTITY if args.identity else AddressingMode.ROOM,
    )
    await RelayServer(config).serve_forever()


if __name__ == "__main__":
    asyncio.run(main())
