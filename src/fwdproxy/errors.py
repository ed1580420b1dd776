"""
errors
======

Exceptions raised by the proxy.  Operational failures (dial errors,
broken pipes) are handled inside the request handlers and turned into
HTTP responses; the classes below are for conditions the caller has to
deal with.
"""
from __future__ import annotations


class ProxyError(Exception):
    """Base class for all proxy specific errors."""


class ConfigError(ProxyError):
    """Raised at startup when the configuration is invalid."""


class HijackError(ProxyError):
    """Raised when the raw client connection cannot be taken over."""
