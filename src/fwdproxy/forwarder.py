"""
forwarder
=========

Plain HTTP forwarding.  A proxied request is re‑issued to its origin
with ``httpx`` and the response is streamed back to the client as it
arrives.  Only hop‑by‑hop headers are touched; everything else, repeated
headers included, passes through unchanged.
"""
from __future__ import annotations

import asyncio
from http import HTTPStatus
from typing import List, Optional, Set, Tuple

import httpx

from .config import ProxyConfig
from .log import get_logger
from .protocol import BadRequest, Header, HTTPRequest, ResponseWriter

log = get_logger(__name__)

# Headers that describe a single connection and must not be forwarded
HOP_BY_HOP = frozenset(
    {
        "connection",
        "keep-alive",
        "proxy-connection",
        "proxy-authorization",
        "proxy-authenticate",
        "te",
        "trailer",
        "transfer-encoding",
        "upgrade",
    }
)

# Idle upstream connections kept for reuse; open ones are not capped
KEEPALIVE_CONNECTIONS = 20


def _connection_tokens(values: List[str]) -> Set[str]:
    tokens = set()
    for value in values:
        for token in value.split(","):
            token = token.strip().lower()
            if token:
                tokens.add(token)
    return tokens


def outbound_headers(request: HTTPRequest) -> List[Header]:
    """Request headers to send upstream, hop‑by‑hop ones removed."""
    drop = HOP_BY_HOP | _connection_tokens(request.header_values("connection"))
    if request.header("transfer-encoding"):
        # The body goes out re-framed, so a declared length no longer holds
        drop = drop | {"content-length"}
    return [(k, v) for k, v in request.headers if k.lower() not in drop]


def response_headers(headers: httpx.Headers) -> List[Tuple[bytes, bytes]]:
    """Response headers to return to the client, raw case preserved."""
    drop = HOP_BY_HOP | _connection_tokens(headers.get_list("connection"))
    return [
        (name, value)
        for name, value in headers.raw
        if name.decode("latin-1").lower() not in drop
    ]


def target_url(request: HTTPRequest) -> str:
    """Absolute URL of the proxied request."""
    if "://" in request.target:
        return request.target
    host = request.header("host")
    if not host:
        raise BadRequest("missing Host header")
    return f"http://{host}{request.target}"


class HTTPForwarder:
    """Forwards non‑CONNECT requests through one shared HTTP client."""

    def __init__(
        self, config: ProxyConfig, client: Optional[httpx.AsyncClient] = None
    ) -> None:
        self.config = config
        self.client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(None, connect=config.timeout),
            limits=httpx.Limits(
                max_connections=None, max_keepalive_connections=KEEPALIVE_CONNECTIONS
            ),
            follow_redirects=False,
            trust_env=False,
        )

    async def aclose(self) -> None:
        await self.client.aclose()

    async def forward(self, request: HTTPRequest, response: ResponseWriter) -> None:
        try:
            url = target_url(request)
        except BadRequest as exc:
            await response.error(HTTPStatus.BAD_REQUEST, str(exc))
            return

        content = request.iter_body() if request.has_body() else None
        try:
            outbound = self.client.build_request(
                request.method,
                url,
                headers=outbound_headers(request),
                content=content,
            )
            upstream = await self.client.send(outbound, stream=True)
        except BadRequest as exc:
            await response.error(HTTPStatus.BAD_REQUEST, str(exc))
            return
        except (httpx.HTTPError, httpx.InvalidURL, OSError, EOFError) as exc:
            message = str(exc) or exc.__class__.__name__
            log.error("Failed to proxy request, %s", message)
            await response.error(HTTPStatus.SERVICE_UNAVAILABLE, message)
            return

        try:
            await self._stream_response(upstream, response)
        except (httpx.HTTPError, OSError, asyncio.IncompleteReadError) as exc:
            # Status and headers are already out; the body is cut short
            log.error("Failed to stream response from %s, %s", url, exc)
        finally:
            await upstream.aclose()

    async def _stream_response(
        self, upstream: httpx.Response, response: ResponseWriter
    ) -> None:
        headers = response_headers(upstream.headers)
        headers.append((b"Connection", b"close"))
        response.write_head(
            upstream.status_code, headers, reason=upstream.reason_phrase
        )
        await response.flush()
        async for chunk in upstream.aiter_raw():
            await response.write(chunk)
