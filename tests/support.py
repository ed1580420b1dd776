"""Shared helpers for the test suite: stream fakes and loopback servers."""
from __future__ import annotations

import asyncio
import base64
from typing import Awaitable, Callable, List, Optional, Tuple

from fwdproxy.config import ProxyConfig
from fwdproxy.forwarder import HTTPForwarder
from fwdproxy.server import ProxyServer


class FakeReader:
    """Returns queued chunks, then EOF (or raises ``error``)."""

    def __init__(self, chunks=(), error: Optional[BaseException] = None) -> None:
        self.chunks = list(chunks)
        self.error = error

    async def read(self, n: int = -1) -> bytes:
        await asyncio.sleep(0)
        if self.chunks:
            return self.chunks.pop(0)
        if self.error is not None:
            raise self.error
        return b""


class FakeWriter:
    """Collects written bytes and counts how often it is closed."""

    def __init__(self, drain_error: Optional[BaseException] = None) -> None:
        self.data = bytearray()
        self.close_count = 0
        self.drain_error = drain_error

    def write(self, data: bytes) -> None:
        self.data += data

    async def drain(self) -> None:
        if self.drain_error is not None:
            raise self.drain_error

    def is_closing(self) -> bool:
        return self.close_count > 0

    def close(self) -> None:
        self.close_count += 1

    async def wait_closed(self) -> None:
        return None

    def get_extra_info(self, name, default=None):
        if name == "peername":
            return ("127.0.0.1", 40000)
        return default


def basic(username: str, password: str) -> str:
    token = base64.b64encode(f"{username}:{password}".encode("utf-8")).decode("ascii")
    return f"Basic {token}"


async def start_tcp_server(
    handler: Callable[[asyncio.StreamReader, asyncio.StreamWriter], Awaitable[None]]
) -> Tuple[asyncio.AbstractServer, int]:
    server = await asyncio.start_server(handler, "127.0.0.1", 0)
    port = server.sockets[0].getsockname()[1]
    return server, port


async def start_proxy(
    config: Optional[ProxyConfig] = None,
    forwarder: Optional[HTTPForwarder] = None,
) -> Tuple[ProxyServer, asyncio.AbstractServer, int]:
    proxy = ProxyServer(config or ProxyConfig(timeout=2.0), forwarder=forwarder)
    server, port = await start_tcp_server(proxy.handle_client)
    return proxy, server, port


async def stop(proxy: ProxyServer, *servers: asyncio.AbstractServer) -> None:
    for server in servers:
        server.close()
        await server.wait_closed()
    await proxy.forwarder.aclose()


async def unused_port() -> int:
    server, port = await start_tcp_server(_noop)
    server.close()
    await server.wait_closed()
    return port


async def _noop(reader, writer) -> None:
    writer.close()


def parse_response(data: bytes) -> Tuple[int, List[Tuple[str, str]], bytes]:
    head, _, body = data.partition(b"\r\n\r\n")
    lines = head.decode("latin-1").split("\r\n")
    status = int(lines[0].split()[1])
    headers = []
    for line in lines[1:]:
        name, _, value = line.partition(":")
        headers.append((name, value.strip()))
    return status, headers, body


def values(headers: List[Tuple[str, str]], name: str) -> List[str]:
    return [v for k, v in headers if k.lower() == name.lower()]


async def proxy_exchange(port: int, raw_request: bytes) -> bytes:
    """Send ``raw_request`` to the proxy and read until it closes."""
    reader, writer = await asyncio.open_connection("127.0.0.1", port)
    writer.write(raw_request)
    await writer.drain()
    data = await asyncio.wait_for(reader.read(-1), 5)
    writer.close()
    return data
