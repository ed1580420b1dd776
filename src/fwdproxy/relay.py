"""
relay
=====

Unidirectional byte relay used to splice two TCP connections together
for CONNECT tunnels.  A tunnel runs two relays, one per direction.  Each
relay closes both of its connections when it stops, which is also how
the opposite direction learns that the tunnel is over: its pending read
returns end‑of‑stream once the shared connection is closed.
"""
from __future__ import annotations

import asyncio

RELAY_CHUNK_SIZE = 64 * 1024


class Connection:
    """One end of a tunnel: a reader/writer pair over a single socket.

    `close` may be called any number of times from either relay
    direction; the transport underneath is closed exactly once.
    """

    def __init__(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        self.reader = reader
        self.writer = writer
        self.closed = False

    async def read(self, n: int = RELAY_CHUNK_SIZE) -> bytes:
        return await self.reader.read(n)

    async def write(self, data: bytes) -> None:
        self.writer.write(data)
        await self.writer.drain()

    async def drain(self) -> None:
        await self.writer.drain()

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self.writer.close()
        try:
            await self.writer.wait_closed()
        except OSError:
            # Peer reset; the transport is closed all the same
            pass


async def relay(destination: Connection, source: Connection) -> None:
    """Copy bytes from ``source`` to ``destination`` until EOF or error.

    Both connections are closed when the copy stops.  I/O errors end this
    direction quietly; the endpoints notice through their own EOF or
    reset handling.
    """
    try:
        while True:
            chunk = await source.read(RELAY_CHUNK_SIZE)
            if not chunk:
                break
            await destination.write(chunk)
    except OSError:
        pass
    finally:
        await asyncio.gather(destination.close(), source.close())
