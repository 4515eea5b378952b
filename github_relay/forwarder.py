"""Redirect-following forwarder.

Sends a ``ProxyRequest`` upstream and follows redirects itself, as a
bounded loop over four states:

    SEND                 issue the current hop
    FOLLOW-ALLOWED       3xx to an allowlisted host: retarget, SEND again
    REWRITE-TERMINAL     3xx to any other host: hand the hop back to the
                         client with Location pointing through the relay
    PASSTHROUGH-TERMINAL non-redirect, or 3xx without Location

Following allowlisted redirects in-process keeps headers (Authorization in
particular) attached across GitHub's sub-host hops, which transport-level
redirect handling would strip.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import AbstractSet, Optional
from urllib.parse import urljoin, urlsplit

from werkzeug.datastructures import Headers

from github_relay.allowlist import is_allowed_host, url_host
from github_relay.constants import ALLOWED_HOSTS, MAX_REDIRECTS, REDIRECT_STATUSES
from github_relay.errors import TooManyRedirects
from github_relay.transport import Transport, UpstreamResponse
from github_relay.translator import ProxyRequest, build_target

logger = logging.getLogger(__name__)


@dataclass
class RedirectChain:
    """URLs visited while forwarding one request, bounded in length."""

    limit: int = MAX_REDIRECTS
    urls: list[str] = field(default_factory=list)

    def visit(self, url: str) -> None:
        if len(self.urls) >= self.limit:
            raise TooManyRedirects(
                f"Proxy request failed: too many redirects (more than {self.limit} hops)"
            )
        self.urls.append(url)

    def __len__(self) -> int:
        return len(self.urls)


def rewrite_location(proxy_origin: str, location_url: str) -> Optional[str]:
    """Map an absolute URL onto ``{proxy_origin}/{host}{path}{query}``.

    Returns None when the URL has no host to route by.
    """
    parts = urlsplit(location_url)
    host = url_host(parts)
    if host is None:
        return None
    target = build_target(parts.path or "/", parts.query)
    return f"{proxy_origin.rstrip('/')}/{host}{target}"


def _rewritten_response(
    response: UpstreamResponse,
    location: str,
) -> UpstreamResponse:
    headers = Headers(response.headers)
    headers.set("Location", location)
    # the upstream body is dropped, so its framing no longer applies
    headers.remove("Content-Length")
    return UpstreamResponse(status_code=response.status_code, headers=headers)


def forward_with_redirects(
    request: ProxyRequest,
    transport: Transport,
    proxy_origin: str,
    allowed_hosts: AbstractSet[str] = ALLOWED_HOSTS,
    max_redirects: int = MAX_REDIRECTS,
) -> UpstreamResponse:
    """Forward ``request`` and follow redirects inside the allowlist.

    ``request.headers`` is updated in place: its ``Host`` tracks the hop
    currently being sent. Method, body and every other header, including
    any Authorization already attached, carry over to each hop unchanged.

    Args:
        request: Translated outbound request.
        transport: Sends one hop without following redirects.
        proxy_origin: Scheme and authority the client used to reach the
            relay, for rewriting off-allowlist redirects.
        allowed_hosts: Hosts the relay follows redirects to by itself.
        max_redirects: Maximum number of hops.

    Returns:
        The terminal response. Its body has not been read.

    Raises:
        TooManyRedirects: If no terminal response arrives within the bound.
        UpstreamFailure: If the transport fails.
    """
    chain = RedirectChain(limit=max_redirects)
    current_url = request.url

    while True:
        chain.visit(current_url)
        logger.debug(
            f"Upstream hop {len(chain)}: {request.method} {current_url}",
            extra={"hop": len(chain)},
        )
        response = transport.send(
            request.method,
            current_url,
            dict(request.headers),
            request.body,
        )

        if response.status_code not in REDIRECT_STATUSES:
            return response

        location = response.headers.get("Location")
        if not location:
            return response

        resolved = urljoin(current_url, location)
        resolved_host = url_host(urlsplit(resolved))

        if resolved_host and is_allowed_host(resolved_host, allowed_hosts):
            logger.debug(
                f"Following redirect {response.status_code} to {resolved_host}",
                extra={"hop": len(chain), "redirect_host": resolved_host},
            )
            response.close()
            request.headers["Host"] = resolved_host
            current_url = resolved
            continue

        rewritten = rewrite_location(proxy_origin, resolved)
        if rewritten is None:
            return response

        logger.info(
            f"Redirect to non-allowlisted host {resolved_host}; handing back to client",
            extra={"redirect_host": resolved_host, "status_code": response.status_code},
        )
        response.close()
        return _rewritten_response(response, rewritten)
