"""Configuration loader for github-relay.

Loads an optional relay.yaml (listen address and upstream socket timeouts)
with support for environment variable overrides. The upstream credential is
only ever read from the environment, never from the YAML file, and the
allowlist is fixed in ``constants``.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

from github_relay.constants import (
    ALLOWED_HOSTS,
    DEFAULT_CHUNK_SIZE,
    DEFAULT_CONNECT_TIMEOUT,
    DEFAULT_LISTEN_HOST,
    DEFAULT_LISTEN_PORT,
    DEFAULT_READ_TIMEOUT,
    DEFAULT_USER_AGENT,
    MAX_REDIRECTS,
)
from github_relay.errors import ConfigError

# Credential environment variables, in lookup order.
CREDENTIAL_ENV_VARS = ("GITHUB_TOKEN", "GH_TOKEN")


@dataclass(frozen=True)
class RelayConfig:
    """Immutable runtime configuration for one relay process."""

    allowed_hosts: frozenset = ALLOWED_HOSTS
    credential: Optional[str] = field(default=None, repr=False)
    user_agent: str = DEFAULT_USER_AGENT
    max_redirects: int = MAX_REDIRECTS
    connect_timeout: float = DEFAULT_CONNECT_TIMEOUT
    read_timeout: float = DEFAULT_READ_TIMEOUT
    chunk_size: int = DEFAULT_CHUNK_SIZE
    listen_host: str = DEFAULT_LISTEN_HOST
    listen_port: int = DEFAULT_LISTEN_PORT
    # Number of reverse proxies in front of the relay whose X-Forwarded-*
    # headers are trusted. 0 trusts none.
    trusted_proxies: int = 0

    def __post_init__(self):
        """Validate relay configuration."""
        if not self.allowed_hosts:
            raise ConfigError("Allowlist must have at least one host")
        if self.max_redirects <= 0:
            raise ConfigError(f"max_redirects must be positive, got {self.max_redirects}")
        if self.connect_timeout <= 0:
            raise ConfigError(
                f"connect_timeout must be positive, got {self.connect_timeout}"
            )
        if self.read_timeout <= 0:
            raise ConfigError(f"read_timeout must be positive, got {self.read_timeout}")
        if self.chunk_size <= 0:
            raise ConfigError(f"chunk_size must be positive, got {self.chunk_size}")
        if not 0 < self.listen_port < 65536:
            raise ConfigError(f"listen_port must be in 1-65535, got {self.listen_port}")
        if self.trusted_proxies < 0:
            raise ConfigError(
                f"trusted_proxies must not be negative, got {self.trusted_proxies}"
            )

    @property
    def has_credential(self) -> bool:
        return bool(self.credential)


def get_config_path(environ: Optional[Mapping[str, str]] = None) -> Optional[str]:
    """Get the relay.yaml path from RELAY_CONFIG, if set."""
    environ = os.environ if environ is None else environ
    return environ.get("RELAY_CONFIG") or None


def _load_yaml_file(file_path: str) -> Dict[str, Any]:
    """Load and parse a YAML file.

    Args:
        file_path: Path to the YAML file.

    Returns:
        Parsed YAML content as a dictionary. An empty file yields ``{}``.

    Raises:
        ConfigError: If file not found or YAML parsing fails.
    """
    path = Path(file_path)

    if not path.exists():
        raise ConfigError(
            f"Configuration file not found: {file_path}\n"
            f"Hint: unset RELAY_CONFIG to run with built-in defaults"
        )

    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Failed to parse YAML file {file_path}: {e}") from e
    except OSError as e:
        raise ConfigError(f"Failed to read configuration file {file_path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(
            f"Invalid configuration file {file_path}: expected YAML dictionary, "
            f"got {type(data).__name__}"
        )
    return data


def _section(data: Dict[str, Any], name: str) -> Dict[str, Any]:
    value = data.get(name) or {}
    if not isinstance(value, dict):
        raise ConfigError(f"{name} must be a dictionary")
    return value


def _coerce(value: Any, kind: type, name: str) -> Any:
    try:
        return kind(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid value for {name}: {value!r}") from e


def read_credential(environ: Optional[Mapping[str, str]] = None) -> Optional[str]:
    """Return the upstream credential from the environment, or None.

    GITHUB_TOKEN wins over GH_TOKEN. Blank values count as unset.
    """
    environ = os.environ if environ is None else environ
    for var in CREDENTIAL_ENV_VARS:
        value = (environ.get(var) or "").strip()
        if value:
            return value
    return None


def load_config(
    path: Optional[str] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> RelayConfig:
    """Load and validate the relay configuration.

    Precedence, lowest to highest: built-in defaults, relay.yaml, environment.

    Args:
        path: Optional path to relay.yaml. If not provided, uses the
              RELAY_CONFIG environment variable; without either, only
              defaults and environment apply.
        environ: Environment mapping (defaults to ``os.environ``).

    Returns:
        Validated RelayConfig instance.

    Raises:
        ConfigError: If the file or any value is invalid.

    Environment Variables:
        RELAY_HOST, RELAY_PORT: listen address
        RELAY_TRUSTED_PROXIES: X-Forwarded-* hops to trust
        RELAY_CONNECT_TIMEOUT, RELAY_READ_TIMEOUT: upstream socket timeouts
        GITHUB_TOKEN (or GH_TOKEN): upstream credential
    """
    environ = os.environ if environ is None else environ
    if path is None:
        path = get_config_path(environ)

    data: Dict[str, Any] = _load_yaml_file(path) if path else {}
    server = _section(data, "server")
    upstream = _section(data, "upstream")

    values: Dict[str, Any] = {}
    if "host" in server:
        values["listen_host"] = str(server["host"])
    if "port" in server:
        values["listen_port"] = _coerce(server["port"], int, "server.port")
    if "trusted_proxies" in server:
        values["trusted_proxies"] = _coerce(
            server["trusted_proxies"], int, "server.trusted_proxies"
        )
    if "connect_timeout" in upstream:
        values["connect_timeout"] = _coerce(
            upstream["connect_timeout"], float, "upstream.connect_timeout"
        )
    if "read_timeout" in upstream:
        values["read_timeout"] = _coerce(
            upstream["read_timeout"], float, "upstream.read_timeout"
        )
    if "chunk_size" in upstream:
        values["chunk_size"] = _coerce(upstream["chunk_size"], int, "upstream.chunk_size")

    # Environment overrides
    if environ.get("RELAY_HOST"):
        values["listen_host"] = environ["RELAY_HOST"]
    if environ.get("RELAY_PORT"):
        values["listen_port"] = _coerce(environ["RELAY_PORT"], int, "RELAY_PORT")
    if environ.get("RELAY_TRUSTED_PROXIES"):
        values["trusted_proxies"] = _coerce(
            environ["RELAY_TRUSTED_PROXIES"], int, "RELAY_TRUSTED_PROXIES"
        )
    if environ.get("RELAY_CONNECT_TIMEOUT"):
        values["connect_timeout"] = _coerce(
            environ["RELAY_CONNECT_TIMEOUT"], float, "RELAY_CONNECT_TIMEOUT"
        )
    if environ.get("RELAY_READ_TIMEOUT"):
        values["read_timeout"] = _coerce(
            environ["RELAY_READ_TIMEOUT"], float, "RELAY_READ_TIMEOUT"
        )

    return RelayConfig(credential=read_credential(environ), **values)
