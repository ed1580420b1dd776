"""
server
======

Asynchronous forward HTTP proxy.  The server listens on a specified
host and port, reads one HTTP/1.1 request per client connection and
either forwards it to its origin or, for ``CONNECT``, opens a raw TCP
tunnel to the requested ``host:port``.  When credentials are
configured, clients must present them with ``Proxy-Authorization:
Basic ...`` first.

Each connection carries a single request; the proxy answers with
``Connection: close``.  TLS interception, caching and protocol upgrades
are not supported.

Usage:

```bash
python -m fwdproxy.server --listen 127.0.0.1:8080 --username alice --password secret
```

After launching the server point your HTTP clients at
``http://localhost:8080`` as their HTTP and HTTPS proxy.
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from http import HTTPStatus
from typing import List, Optional, Tuple

from .auth import PROXY_AUTH_CHALLENGE, is_authorized
from .config import ProxyConfig, load_config
from .errors import ConfigError
from .forwarder import HTTPForwarder
from .log import AUTH, get_logger, setup_logging
from .protocol import (
    MAX_HEAD_SIZE,
    BadRequest,
    HTTPRequest,
    ResponseWriter,
    format_addr,
    read_http_request,
)
from .tunnel import establish_tunnel

log = get_logger(__name__)


class ProxyServer:
    def __init__(
        self,
        config: ProxyConfig,
        listen_host: str = "127.0.0.1",
        listen_port: int = 8080,
        forwarder: Optional[HTTPForwarder] = None,
    ) -> None:
        self.config = config
        self.listen_host = listen_host
        self.listen_port = listen_port
        self.forwarder = forwarder or HTTPForwarder(config)

    async def handle_client(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        client = format_addr(writer.get_extra_info("peername"))
        response = ResponseWriter(reader, writer)

        try:
            try:
                request = await read_http_request(reader, client)
            except BadRequest as exc:
                log.info("Bad request from '%s': %s", client, exc)
                await response.error(HTTPStatus.BAD_REQUEST, "Bad Request")
                return

            if request is None:
                # Client went away before sending a full request
                return

            await self.dispatch(request, response)
        except OSError as exc:
            log.info("Connection with '%s' failed, %s", client, exc)
        finally:
            await response.close()

    async def dispatch(self, request: HTTPRequest, response: ResponseWriter) -> None:
        """Authenticate ``request`` and route it by method."""
        self.log_request(request)

        if not is_authorized(request, self.config):
            if self.config.log_auth:
                log.log(AUTH, "Unauthorized request from %s", request.client)
            await response.error(
                HTTPStatus.PROXY_AUTHENTICATION_REQUIRED,
                "Unauthorized",
                headers=[(PROXY_AUTH_CHALLENGE, "Basic")],
            )
            return

        if request.method == "CONNECT":
            await establish_tunnel(request, response, self.config.timeout)
        else:
            await self.forwarder.forward(request, response)

    def log_request(self, request: HTTPRequest) -> None:
        log.info(
            "Serving '%s' request from '%s' to '%s'",
            request.method,
            request.client,
            request.host,
        )
        if not self.config.log_headers:
            return
        seen = {}
        for name, value in request.headers:
            index = seen.get(name.lower(), 0)
            seen[name.lower()] = index + 1
            log.info("'%s': [%d] %s", name, index, value)

    async def run(self) -> None:
        server = await asyncio.start_server(
            self.handle_client, self.listen_host, self.listen_port, limit=MAX_HEAD_SIZE
        )
        addrs = ", ".join(format_addr(sock.getsockname()) for sock in server.sockets)

        log.info("Proxy listening on %s", addrs)

        async with server:
            try:
                await server.serve_forever()
            except asyncio.CancelledError:
                pass
            finally:
                await self.forwarder.aclose()


def parse_listen(arg: str) -> Tuple[str, int]:
    if ":" not in arg:
        raise argparse.ArgumentTypeError("Expected HOST:PORT")

    host, port_str = arg.rsplit(":", 1)
    host = host.strip("[]")

    try:
        port = int(port_str)
    except ValueError:
        raise argparse.ArgumentTypeError("Invalid port")

    return host, port


def positive_float(arg: str) -> float:
    try:
        value = float(arg)
    except ValueError:
        raise argparse.ArgumentTypeError("Expected a number of seconds")
    if value <= 0:
        raise argparse.ArgumentTypeError("Timeout must be positive")
    return value


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Forward HTTP proxy with CONNECT tunnelling")
    parser.add_argument(
        "--listen",
        type=parse_listen,
        default=("127.0.0.1", 8080),
        help="Address and port to listen on (HOST:PORT)",
    )
    parser.add_argument(
        "--config",
        type=str,
        help="Optional YAML file with proxy settings",
    )
    parser.add_argument(
        "--timeout",
        type=positive_float,
        help="Upstream dial timeout in seconds (default: 30)",
    )
    parser.add_argument("--username", type=str, help="Username required from clients")
    parser.add_argument("--password", type=str, help="Password required from clients")
    parser.add_argument(
        "--log-auth",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Log rejected authentication attempts (default: on)",
    )
    parser.add_argument(
        "--log-headers",
        action="store_true",
        default=None,
        help="Log every request header",
    )
    return parser


def main(argv: Optional[List[str]] = None) -> None:
    args = build_parser().parse_args(argv)
    setup_logging()

    try:
        config = load_config(
            args.config,
            overrides={
                "timeout": args.timeout,
                "username": args.username,
                "password": args.password,
                "log_auth": args.log_auth,
                "log_headers": args.log_headers,
            },
        )
    except ConfigError as exc:
        log.error("Invalid configuration, %s", exc)
        sys.exit(2)

    host, port = args.listen
    proxy = ProxyServer(config, host, port)

    try:
        asyncio.run(proxy.run())
    except KeyboardInterrupt:
        log.info("Shutting down proxy")


if __name__ == "__main__":
    main()
