"""Host allowlist guard.

Decides, before any network activity, whether an incoming relay path names
a host the relay is allowed to reach.
"""

from __future__ import annotations

from typing import AbstractSet, Optional
from urllib.parse import SplitResult

from github_relay.constants import ALLOWED_HOSTS
from github_relay.errors import MalformedInput, PolicyViolation

DEFAULT_PORTS = {"http": 80, "https": 443}


def is_allowed_host(host: str, allowed_hosts: AbstractSet[str] = ALLOWED_HOSTS) -> bool:
    """Check a host (optionally with ``:port``) against the allowlist.

    Membership is exact: subdomains of an allowed host are not allowed.
    """
    if not host:
        return False
    return host in allowed_hosts


def split_target(
    path: str,
    allowed_hosts: AbstractSet[str] = ALLOWED_HOSTS,
) -> tuple[str, str]:
    """Split a relay path into ``(host, target_path)``.

    ``/github.com/owner/repo.git/info/refs`` becomes
    ``("github.com", "/owner/repo.git/info/refs")``. The target path keeps
    its leading slash and its original percent-encoding.

    Args:
        path: Raw request path (without query string).
        allowed_hosts: Hosts that may be targeted.

    Returns:
        Tuple of target host and target path.

    Raises:
        MalformedInput: If there is no path segment after the host.
        PolicyViolation: If the host is not on the allowlist.
    """
    stripped = path.lstrip("/")
    slash_index = stripped.find("/")
    if slash_index == -1:
        raise MalformedInput("Invalid URL format, expected /<host>/<path>")

    host = stripped[:slash_index]
    target_path = stripped[slash_index:]

    if not is_allowed_host(host, allowed_hosts):
        raise PolicyViolation(f"Host not allowed for proxying: {host}")

    return host, target_path


def url_host(parts: SplitResult) -> Optional[str]:
    """Return the ``host[:port]`` of a split URL, without userinfo.

    The hostname is lowercased. The port is kept only when explicit and
    not the scheme's default, so ``https://github.com:443/x`` yields
    ``github.com``.
    """
    hostname = parts.hostname
    if not hostname:
        return None
    if ":" in hostname:
        hostname = f"[{hostname}]"
    try:
        port = parts.port
    except ValueError:
        return None
    if port is not None and port != DEFAULT_PORTS.get(parts.scheme.lower()):
        return f"{hostname}:{port}"
    return hostname
