"""
tunnel
======

CONNECT handling.  The proxy dials the requested ``host:port``, tells
the client the tunnel is ready with a ``200`` response, takes over the
raw client connection and then splices the two sockets together with a
pair of `relay` tasks.
"""
from __future__ import annotations

import asyncio
from http import HTTPStatus
from typing import Tuple
from urllib.parse import urlsplit

from .errors import HijackError
from .log import get_logger
from .protocol import HTTPRequest, ResponseWriter
from .relay import Connection, relay

log = get_logger(__name__)


def parse_authority(authority: str) -> Tuple[str, int]:
    """Split a CONNECT target into host and port.

    Unlike a ``Host`` header the port is mandatory.  ``urlsplit`` takes
    care of bracketed IPv6 literals such as ``[2001:db8::1]:443``.
    """
    result = urlsplit(f"//{authority}")
    try:
        port = result.port
    except ValueError:
        raise ValueError(f"address {authority}: invalid port")
    if not result.hostname or port is None:
        raise ValueError(f"address {authority}: missing port in address")
    return result.hostname, port


async def dial(authority: str, timeout: float) -> Connection:
    """Open a TCP connection to ``authority`` within ``timeout`` seconds."""
    host, port = parse_authority(authority)
    try:
        reader, writer = await asyncio.wait_for(
            asyncio.open_connection(host, port), timeout
        )
    except asyncio.TimeoutError:
        raise TimeoutError(f"dial tcp {authority}: i/o timeout")
    return Connection(reader, writer)


async def establish_tunnel(
    request: HTTPRequest, response: ResponseWriter, timeout: float
) -> None:
    """Serve a CONNECT request until both tunnel directions are done."""
    try:
        upstream = await dial(request.host, timeout)
    except (OSError, ValueError) as exc:
        message = str(exc) or exc.__class__.__name__
        log.error("Failed to dial host, %s", message)
        await response.error(HTTPStatus.SERVICE_UNAVAILABLE, message)
        return

    response.write_head(HTTPStatus.OK)

    try:
        client = response.hijack()
    except HijackError as exc:
        log.error("Attempted to hijack connection that does not support it: %s", exc)
        await upstream.close()
        await response.error(HTTPStatus.INTERNAL_SERVER_ERROR, "Hijacking not supported")
        return

    try:
        await client.drain()
    except OSError as exc:
        # The relays below will see the broken connection and close both ends
        log.error("Failed to confirm tunnel to %s, %s", request.client, exc)

    await asyncio.gather(relay(upstream, client), relay(client, upstream))
