"""Response normalization for the client side of the relay."""

from __future__ import annotations

from typing import Iterator

from werkzeug.datastructures import Headers

from github_relay.constants import HOP_BY_HOP_HEADERS
from github_relay.transport import UpstreamResponse

CORS_RESPONSE_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Expose-Headers": "*",
}

# A WWW-Authenticate challenge would pop the browser's native login dialog.
STRIPPED_RESPONSE_HEADERS = frozenset({"www-authenticate"})


def normalize_headers(upstream: Headers) -> Headers:
    """Client-facing copy of the terminal upstream headers.

    Keeps every end-to-end header (repeated ones included), adds permissive
    CORS, and drops ``WWW-Authenticate`` plus hop-by-hop headers the WSGI
    server sets for itself.
    """
    headers = Headers()
    for name, value in upstream.items():
        lowered = name.lower()
        if lowered in HOP_BY_HOP_HEADERS or lowered in STRIPPED_RESPONSE_HEADERS:
            continue
        headers.add(name, value)
    for name, value in CORS_RESPONSE_HEADERS.items():
        headers.set(name, value)
    return headers


def stream_body(response: UpstreamResponse) -> Iterator[bytes]:
    """Yield the upstream body chunk by chunk, then release the connection.

    When the client goes away the WSGI server closes this generator, which
    closes the upstream response and abandons the in-flight fetch.
    """
    try:
        yield from response.iter_content()
    finally:
        response.close()
