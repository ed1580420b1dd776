"""Top‑level package for the forward HTTP proxy.

Exposes common classes so that they can be imported directly from
`fwdproxy`, e.g. `from fwdproxy import ProxyServer, ProxyConfig`.
"""

from .auth import is_authorized, parse_basic_auth
from .config import ProxyConfig, load_config
from .forwarder import HTTPForwarder
from .relay import Connection, relay
from .server import ProxyServer
from .tunnel import establish_tunnel

__all__ = [
    "ProxyServer",
    "ProxyConfig",
    "load_config",
    "HTTPForwarder",
    "Connection",
    "relay",
    "establish_tunnel",
    "is_authorized",
    "parse_basic_auth",
]

__version__ = "0.1.0"
