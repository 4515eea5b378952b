"""Request translation: relay request -> upstream request.

Builds the outbound URL, filters and rewrites headers, and wraps the
inbound body in a stream that can be replayed for redirect hops and the
authenticated retry.
"""

from __future__ import annotations

import tempfile
from dataclasses import dataclass, field
from typing import IO, AbstractSet, Iterable, Iterator, Mapping, Optional
from urllib.parse import quote, urlsplit

from requests.structures import CaseInsensitiveDict

from github_relay.allowlist import is_allowed_host, url_host
from github_relay.constants import (
    ALLOWED_HOSTS,
    BODY_METHODS,
    BODY_SPOOL_MAX_MEMORY,
    DEFAULT_CHUNK_SIZE,
    DEFAULT_USER_AGENT,
    EDGE_HEADER_PREFIX,
    EDGE_HEADERS,
    HOP_BY_HOP_HEADERS,
    UPSTREAM_SCHEME,
)
from github_relay.errors import MalformedInput, PolicyViolation

# Characters left unescaped when a decoded PATH_INFO has to be re-quoted.
_PATH_SAFE = "/:@!$&'()*+,;=-._~%"


class ReplayableBody:
    """Request body stream that can be sent more than once.

    The first iteration streams straight from the inbound source while
    copying every chunk into a spooled temp file (memory first, disk past
    ``max_memory``). Any later iteration drains whatever the first pass did
    not read and replays the whole body from the spool.
    """

    def __init__(
        self,
        source: IO[bytes],
        length: Optional[int] = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        max_memory: int = BODY_SPOOL_MAX_MEMORY,
    ):
        self._source = source
        self._length = length
        self._chunk_size = chunk_size
        self._spool = tempfile.SpooledTemporaryFile(max_size=max_memory)
        self._started = False
        self._exhausted = False

    @property
    def length(self) -> Optional[int]:
        """Declared Content-Length, or None for a chunked upload."""
        return self._length

    def __len__(self) -> int:
        # requests reads this for Content-Length and sends any 0 as chunked;
        # known-empty bodies never get here (see build_proxy_request)
        return self._length if self._length is not None else 0

    def __bool__(self) -> bool:
        # requests.Session.request does ``data or {}``; an empty-length
        # chunked body must not be mistaken for no body.
        return True

    def __iter__(self) -> Iterator[bytes]:
        if not self._started:
            self._started = True
            return self._tee()
        return self._replay()

    def _read_source(self) -> Iterator[bytes]:
        while not self._exhausted:
            chunk = self._source.read(self._chunk_size)
            if not chunk:
                self._exhausted = True
                return
            yield chunk

    def _tee(self) -> Iterator[bytes]:
        for chunk in self._read_source():
            self._spool.write(chunk)
            yield chunk

    def _drain(self) -> None:
        self._spool.seek(0, 2)
        for chunk in self._read_source():
            self._spool.write(chunk)

    def _replay(self) -> Iterator[bytes]:
        self._drain()
        self._spool.seek(0)
        while True:
            chunk = self._spool.read(self._chunk_size)
            if not chunk:
                return
            yield chunk

    def close(self) -> None:
        self._spool.close()


@dataclass
class ProxyRequest:
    """One outbound request, built per client call and never persisted."""

    method: str
    host: str
    target: str
    headers: CaseInsensitiveDict
    body: Optional[ReplayableBody] = None
    credential: Optional[str] = field(default=None, repr=False)

    @property
    def url(self) -> str:
        return build_target_url(self.host, self.target)


def build_target_url(host: str, target: str) -> str:
    """``https://{host}{path}{query}``; target is path plus optional ``?query``."""
    return f"{UPSTREAM_SCHEME}://{host}{target}"


def build_target(path: str, query_string: str) -> str:
    """Join a raw path and a raw query string, omitting an empty query."""
    if query_string:
        return f"{path}?{query_string}"
    return path


def should_forward_header(name: str) -> bool:
    """Check whether an inbound header may reach the upstream origin.

    Edge infrastructure headers leak internal topology or break host
    matching; hop-by-hop and framing headers are recomputed by the
    outbound transport.
    """
    lowered = name.lower()
    if lowered.startswith(EDGE_HEADER_PREFIX):
        return False
    if lowered in EDGE_HEADERS or lowered in HOP_BY_HOP_HEADERS:
        return False
    return lowered != "content-length"


def build_forward_headers(
    inbound: Iterable[tuple[str, str]],
    host: str,
    user_agent: str = DEFAULT_USER_AGENT,
) -> CaseInsensitiveDict:
    """Build the outbound header set for ``host`` from inbound headers.

    Args:
        inbound: Inbound ``(name, value)`` pairs.
        host: Resolved upstream host, forced into ``Host``.
        user_agent: Injected when the client sent no User-Agent.

    Returns:
        Case-insensitive header mapping with unique keys.
    """
    headers = CaseInsensitiveDict()
    for name, value in inbound:
        if should_forward_header(name):
            headers[name] = value
    headers["Host"] = host
    if "User-Agent" not in headers:
        headers["User-Agent"] = user_agent
    return headers


def raw_request_path(environ: Mapping[str, str]) -> str:
    """Return the request path exactly as the client sent it.

    Prefers the raw request-target some WSGI servers expose (RAW_URI from
    gunicorn, REQUEST_URI from werkzeug/uWSGI) so percent-escapes survive
    untouched. Falls back to re-quoting PATH_INFO.
    """
    raw_uri = environ.get("RAW_URI") or environ.get("REQUEST_URI")
    if raw_uri:
        path = raw_uri.split("?", 1)[0]
        if "://" in path:
            # absolute-form request target
            path = urlsplit(path).path
        script_name = environ.get("SCRIPT_NAME", "")
        if script_name and path.startswith(script_name):
            path = path[len(script_name):]
        return path or "/"

    path_info = environ.get("PATH_INFO", "")
    # WSGI hands PATH_INFO over as latin-1 decoded bytes
    return quote(path_info.encode("latin-1"), safe=_PATH_SAFE) or "/"


def build_proxy_request(
    method: str,
    host: str,
    target: str,
    inbound_headers: Iterable[tuple[str, str]],
    stream: Optional[IO[bytes]] = None,
    content_length: Optional[int] = None,
    user_agent: str = DEFAULT_USER_AGENT,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> ProxyRequest:
    """Translate an inbound relay request into a ``ProxyRequest``.

    Only POST, PUT and PATCH carry a body upstream; for every other method
    the inbound stream is ignored. A declared ``Content-Length: 0`` yields no
    body at all, which requests sends as ``Content-Length: 0`` rather than
    as an empty chunked upload.
    """
    method = method.upper()
    body = None
    if method in BODY_METHODS and stream is not None and content_length != 0:
        body = ReplayableBody(stream, length=content_length, chunk_size=chunk_size)
    return ProxyRequest(
        method=method,
        host=host,
        target=target,
        headers=build_forward_headers(inbound_headers, host, user_agent),
        body=body,
    )


def to_proxy_url(
    url: str,
    origin: str,
    allowed_hosts: AbstractSet[str] = ALLOWED_HOSTS,
) -> str:
    """Convert a GitHub URL into the equivalent URL through the relay.

    ``https://github.com/user/repo.git`` with origin
    ``https://relay.example`` becomes
    ``https://relay.example/github.com/user/repo.git``.

    Raises:
        MalformedInput: If ``url`` is not an absolute http(s) URL.
        PolicyViolation: If its host is not on the allowlist.
    """
    parts = urlsplit(url.strip())
    host = url_host(parts)
    if parts.scheme not in ("http", "https") or not host:
        raise MalformedInput(f"Invalid URL: {url}")
    if not is_allowed_host(host, allowed_hosts):
        raise PolicyViolation(f"Host not allowed for proxying: {host}")
    return f"{origin.rstrip('/')}/{host}{build_target(parts.path or '/', parts.query)}"
