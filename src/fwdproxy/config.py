"""
config
======

Runtime configuration of the proxy.  A `ProxyConfig` is built once at
startup and handed to the `ProxyServer` constructor; it is frozen so it
can be shared between concurrent requests without locking.

Values are merged from several sources, lowest precedence first:

1. built‑in defaults;
2. an optional YAML file (keys ``timeout``, ``username``, ``password``,
   ``log_auth`` and ``log_headers``);
3. the ``FWDPROXY_USERNAME`` / ``FWDPROXY_PASSWORD`` environment
   variables;
4. explicit overrides, usually command line flags.
"""
from __future__ import annotations

import os
from dataclasses import dataclass, fields
from typing import Any, Dict, Mapping, Optional

import yaml

from .errors import ConfigError

DEFAULT_TIMEOUT = 30.0

ENV_USERNAME = "FWDPROXY_USERNAME"
ENV_PASSWORD = "FWDPROXY_PASSWORD"


@dataclass(frozen=True)
class ProxyConfig:
    """Immutable proxy settings."""

    timeout: float = DEFAULT_TIMEOUT
    username: Optional[str] = None
    password: Optional[str] = None
    log_auth: bool = True
    log_headers: bool = False

    def __post_init__(self) -> None:
        if isinstance(self.timeout, bool) or not isinstance(self.timeout, (int, float)):
            raise ConfigError(f"timeout must be a number, got {self.timeout!r}")
        if self.timeout <= 0:
            raise ConfigError("timeout must be positive")
        if (self.username is None) != (self.password is None):
            raise ConfigError("username and password must be given together")
        for name in ("username", "password"):
            value = getattr(self, name)
            if value is not None and not isinstance(value, str):
                raise ConfigError(f"{name} must be a string")
        for name in ("log_auth", "log_headers"):
            if not isinstance(getattr(self, name), bool):
                raise ConfigError(f"{name} must be true or false")

    @property
    def auth_enabled(self) -> bool:
        return self.username is not None and self.password is not None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "ProxyConfig":
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigError(f"Unknown configuration keys: {', '.join(unknown)}")
        return cls(**dict(data))


def read_config_file(filename: str) -> Dict[str, Any]:
    """Read a YAML configuration file into a plain dictionary."""
    try:
        with open(filename, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except OSError as exc:
        raise ConfigError(f"Cannot read config file {filename}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML in {filename}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"{filename}: top level must be a mapping")
    return data


def load_config(
    filename: Optional[str] = None,
    overrides: Optional[Mapping[str, Any]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> ProxyConfig:
    """Build a `ProxyConfig` from a file, the environment and overrides.

    ``None`` values in ``overrides`` are ignored so that unset command
    line flags do not mask values from the file or environment.
    """
    data: Dict[str, Any] = {}
    if filename:
        data.update(read_config_file(filename))

    env = os.environ if environ is None else environ
    if env.get(ENV_USERNAME):
        data["username"] = env[ENV_USERNAME]
    if env.get(ENV_PASSWORD):
        data["password"] = env[ENV_PASSWORD]

    for key, value in (overrides or {}).items():
        if value is not None:
            data[key] = value

    if "timeout" in data and isinstance(data["timeout"], int) and not isinstance(data["timeout"], bool):
        data["timeout"] = float(data["timeout"])
    return ProxyConfig.from_mapping(data)
