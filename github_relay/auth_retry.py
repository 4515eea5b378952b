"""Anonymous-first forwarding with one authenticated retry.

Every request first goes upstream without the relay's credential, so
public resources never see it. Only when that attempt ends (after
redirects) in 401, and a credential is configured, is the whole forward
sequence replayed once with HTTP Basic credentials.
"""

from __future__ import annotations

import base64
import logging
from dataclasses import replace
from typing import AbstractSet, Optional

from requests.structures import CaseInsensitiveDict

from github_relay.constants import ALLOWED_HOSTS, BASIC_AUTH_USERNAME, MAX_REDIRECTS
from github_relay.forwarder import forward_with_redirects
from github_relay.transport import Transport, UpstreamResponse
from github_relay.translator import ProxyRequest

logger = logging.getLogger(__name__)


def basic_auth_header(credential: str) -> str:
    """``Basic base64("x-access-token:" + credential)``."""
    raw = f"{BASIC_AUTH_USERNAME}:{credential}".encode("utf-8")
    return f"Basic {base64.b64encode(raw).decode('ascii')}"


def attach_credential(request: ProxyRequest, credential: str) -> ProxyRequest:
    """Copy of ``request`` aimed back at its original host, with credentials."""
    headers = CaseInsensitiveDict(request.headers)
    headers["Host"] = request.host
    headers["Authorization"] = basic_auth_header(credential)
    return replace(request, headers=headers, credential=credential)


def forward_with_auth_retry(
    request: ProxyRequest,
    transport: Transport,
    proxy_origin: str,
    credential: Optional[str] = None,
    allowed_hosts: AbstractSet[str] = ALLOWED_HOSTS,
    max_redirects: int = MAX_REDIRECTS,
) -> UpstreamResponse:
    """Forward anonymously; on a terminal 401, retry once with ``credential``.

    The retry's result is returned as-is, whatever its status. Without a
    credential a 401 goes straight back to the client.
    """
    # The forwarder retargets Host in place while following redirects, so
    # the anonymous attempt gets its own header set.
    anonymous = replace(request, headers=CaseInsensitiveDict(request.headers))
    response = forward_with_redirects(
        anonymous,
        transport,
        proxy_origin,
        allowed_hosts=allowed_hosts,
        max_redirects=max_redirects,
    )

    if response.status_code != 401 or not credential:
        return response

    logger.info(
        "Anonymous attempt returned 401; retrying with configured credential",
        extra={"event": "auth_retry"},
    )
    response.close()

    return forward_with_redirects(
        attach_credential(request, credential),
        transport,
        proxy_origin,
        allowed_hosts=allowed_hosts,
        max_redirects=max_redirects,
    )
