"""
protocol
========

Minimal HTTP/1.1 plumbing for the proxy's own request/response
exchange with its clients.

`read_http_request` parses the request head from an asyncio stream.
The body is not read eagerly; `HTTPRequest.iter_body` streams it on
demand so the forwarder can pass it upstream chunk by chunk.

`ResponseWriter` is the response side.  The status line and headers are
buffered until the first body write (or an explicit `flush`), so an
error response can still replace a head that has not hit the socket yet.
`hijack` hands the raw connection over to the caller, which is what
CONNECT tunnelling needs.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from http import HTTPStatus
from typing import AsyncIterator, Iterable, List, Optional, Tuple
from urllib.parse import urlsplit

from .errors import HijackError
from .relay import Connection

Header = Tuple[str, str]

MAX_HEAD_SIZE = 64 * 1024
BODY_CHUNK_SIZE = 64 * 1024


class BadRequest(ValueError):
    """The client sent something that is not a valid HTTP request."""


def format_addr(addr) -> str:
    """Render a socket address as ``host:port``."""
    if not addr:
        return "unknown"
    if isinstance(addr, str):
        return addr
    host, port = addr[0], addr[1]
    if ":" in host:
        return f"[{host}]:{port}"
    return f"{host}:{port}"


@dataclass
class HTTPRequest:
    """Represents a parsed HTTP/1.1 request head."""

    method: str
    target: str
    version: str
    headers: List[Header]
    client: str = "unknown"
    reader: Optional[asyncio.StreamReader] = field(default=None, repr=False)

    def header(self, name: str) -> Optional[str]:
        """Return the first value of header ``name`` or ``None``."""
        name = name.lower()
        for key, value in self.headers:
            if key.lower() == name:
                return value
        return None

    def header_values(self, name: str) -> List[str]:
        name = name.lower()
        return [value for key, value in self.headers if key.lower() == name]

    @property
    def host(self) -> str:
        """Destination authority of the request.

        For CONNECT this is the request target itself, for an
        absolute‑form target its network location, and otherwise the
        ``Host`` header.
        """
        if self.method == "CONNECT":
            return self.target
        if "://" in self.target:
            netloc = urlsplit(self.target).netloc
            if netloc:
                return netloc
        return self.header("host") or ""

    def has_body(self) -> bool:
        if self.header("transfer-encoding"):
            return True
        length = self.header("content-length")
        return bool(length) and length.strip() != "0"

    async def iter_body(self) -> AsyncIterator[bytes]:
        """Yield the request body, undoing chunked framing if present."""
        if self.reader is None:
            return
        encoding = (self.header("transfer-encoding") or "").lower()
        if "chunked" in encoding:
            async for chunk in _iter_chunked(self.reader):
                yield chunk
            return
        length = self.header("content-length")
        if not length:
            return
        remaining = int(length)
        while remaining > 0:
            chunk = await self.reader.read(min(remaining, BODY_CHUNK_SIZE))
            if not chunk:
                raise asyncio.IncompleteReadError(b"", remaining)
            remaining -= len(chunk)
            yield chunk


async def _iter_chunked(reader: asyncio.StreamReader) -> AsyncIterator[bytes]:
    while True:
        try:
            size_line = await reader.readuntil(b"\r\n")
        except asyncio.LimitOverrunError:
            raise BadRequest("chunk size line too long")
        size_text = size_line.split(b";", 1)[0].strip()
        try:
            size = int(size_text, 16)
        except ValueError:
            raise BadRequest(f"invalid chunk size {size_text!r}")
        if size == 0:
            # Skip trailers up to the terminating blank line
            while (await reader.readuntil(b"\r\n")) != b"\r\n":
                pass
            return
        remaining = size
        while remaining > 0:
            data = await reader.read(min(remaining, BODY_CHUNK_SIZE))
            if not data:
                raise asyncio.IncompleteReadError(b"", remaining)
            remaining -= len(data)
            yield data
        await reader.readexactly(2)


def parse_request_head(data: bytes) -> Tuple[str, str, str, List[Header]]:
    """Parse a request head (everything up to and including the blank line)."""
    text = data.decode("latin-1")
    lines = text.split("\r\n")

    parts = lines[0].split()
    if len(parts) != 3:
        raise BadRequest(f"malformed request line {lines[0]!r}")
    method, target, version = parts
    if not version.startswith("HTTP/1."):
        raise BadRequest(f"unsupported protocol version {version!r}")

    headers: List[Header] = []
    for line in lines[1:]:
        if not line:
            continue
        if ":" not in line:
            raise BadRequest(f"malformed header line {line!r}")
        name, value = line.split(":", 1)
        if not name or name != name.strip():
            raise BadRequest(f"malformed header name {name!r}")
        headers.append((name, value.strip()))

    length = [v for k, v in headers if k.lower() == "content-length"]
    if length and (len(set(length)) > 1 or not length[0].isdigit()):
        raise BadRequest("invalid Content-Length")
    return method, target, version, headers


async def read_http_request(
    reader: asyncio.StreamReader, client: str
) -> Optional[HTTPRequest]:
    """Read and parse one request head.

    Returns ``None`` when the client went away before sending a complete
    head; raises `BadRequest` when the head cannot be parsed.
    """
    try:
        header_data = await reader.readuntil(b"\r\n\r\n")
    except asyncio.IncompleteReadError:
        return None
    except asyncio.LimitOverrunError:
        raise BadRequest("request head too large")

    method, target, version, headers = parse_request_head(header_data)
    return HTTPRequest(
        method=method,
        target=target,
        version=version,
        headers=headers,
        client=client,
        reader=reader,
    )


class ResponseWriter:
    """Writes one HTTP response to the client connection."""

    def __init__(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        self._reader = reader
        self._writer = writer
        self._buffer = bytearray()
        self.status: Optional[int] = None
        self.flushed = False
        self.hijacked = False

    @property
    def head_written(self) -> bool:
        return self.status is not None

    def write_head(
        self,
        status: int,
        headers: Iterable[Tuple[object, object]] = (),
        reason: Optional[str] = None,
    ) -> None:
        """Queue the status line and headers.

        Header names and values may be ``str`` or ``bytes``.  A head that
        has not been flushed yet is replaced; once flushed it cannot be.
        """
        if self.flushed or self.hijacked:
            return
        if reason is None:
            try:
                reason = HTTPStatus(status).phrase
            except ValueError:
                reason = ""
        head = bytearray(f"HTTP/1.1 {int(status)} {reason}\r\n".encode("latin-1"))
        for name, value in headers:
            head += _to_bytes(name) + b": " + _to_bytes(value) + b"\r\n"
        head += b"\r\n"
        self._buffer = head
        self.status = int(status)

    async def write(self, data: bytes) -> None:
        if self.hijacked:
            raise HijackError("connection has been hijacked")
        if not self.head_written:
            self.write_head(200)
        self._buffer += data
        await self.flush()

    async def flush(self) -> None:
        if self._buffer:
            self._writer.write(bytes(self._buffer))
            self._buffer.clear()
            self.flushed = True
        await self._writer.drain()

    async def error(
        self,
        status: int,
        message: str,
        headers: Iterable[Tuple[str, str]] = (),
    ) -> None:
        """Reply with a short plain text error message."""
        body = (message + "\n").encode("utf-8")
        self.write_head(
            status,
            list(headers)
            + [
                ("Content-Type", "text/plain; charset=utf-8"),
                ("X-Content-Type-Options", "nosniff"),
                ("Content-Length", str(len(body))),
                ("Connection", "close"),
            ],
        )
        await self.write(body)

    def hijack(self) -> Connection:
        """Take over the raw client connection.

        Any queued response head is handed to the transport first.  After
        this call the writer must not be used and the caller owns (and
        must close) the returned connection.
        """
        if self.hijacked:
            raise HijackError("connection already hijacked")
        if self._writer.is_closing():
            raise HijackError("client connection is closing")
        self.hijacked = True
        if self._buffer:
            self._writer.write(bytes(self._buffer))
            self._buffer.clear()
            self.flushed = True
        return Connection(self._reader, self._writer)

    async def close(self) -> None:
        """Flush what is left and close the client connection."""
        if self.hijacked:
            return
        try:
            await self.flush()
        except OSError:
            pass
        self._writer.close()
        try:
            await self._writer.wait_closed()
        except OSError:
            pass


def _to_bytes(value: object) -> bytes:
    if isinstance(value, bytes):
        return value
    return str(value).encode("latin-1")
