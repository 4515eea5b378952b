"""Outbound HTTP transport.

The forwarder only talks to a ``Transport``: send one request, get one
``UpstreamResponse`` back, never follow redirects. ``RequestsTransport`` is
the production implementation on top of ``requests``; tests substitute a
scripted fake.
"""

from __future__ import annotations

import http.cookiejar
import logging
from abc import ABC, abstractmethod
from typing import Callable, Iterable, Iterator, Optional

import requests
from werkzeug.datastructures import Headers

from github_relay.constants import (
    DEFAULT_CHUNK_SIZE,
    DEFAULT_CONNECT_TIMEOUT,
    DEFAULT_READ_TIMEOUT,
)
from github_relay.errors import UpstreamFailure

logger = logging.getLogger(__name__)


class UpstreamResponse:
    """Status, headers and a lazily-read body stream.

    ``headers`` keeps repeated fields (``Set-Cookie``) as separate entries.
    The body is consumed at most once; ``close()`` releases the underlying
    connection and is safe to call repeatedly.
    """

    def __init__(
        self,
        status_code: int,
        headers: Optional[Headers] = None,
        body: Iterable[bytes] = (),
        closer: Optional[Callable[[], None]] = None,
    ):
        self.status_code = status_code
        self.headers = headers if headers is not None else Headers()
        self._body = body
        self._closer = closer
        self.closed = False

    def iter_content(self) -> Iterator[bytes]:
        for chunk in self._body:
            if chunk:
                yield chunk

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        if self._closer is not None:
            self._closer()


class Transport(ABC):
    """Sends a single upstream request without following redirects."""

    @abstractmethod
    def send(
        self,
        method: str,
        url: str,
        headers: dict[str, str],
        body: Optional[Iterable[bytes]] = None,
    ) -> UpstreamResponse:
        """Send one hop and return its response with the body unread.

        Raises:
            UpstreamFailure: If no response could be obtained.
        """


def _no_cookies_session() -> requests.Session:
    session = requests.Session()
    # Cookies, .netrc credentials and default headers would otherwise leak
    # from one client request into another.
    session.cookies.set_policy(http.cookiejar.DefaultCookiePolicy(allowed_domains=[]))
    session.trust_env = False
    session.headers.clear()
    return session


class RequestsTransport(Transport):
    """``requests``-backed transport with streaming in both directions.

    The response body is read from the raw socket with content decoding
    disabled, so compressed payloads reach the client byte-for-byte along
    with their original ``Content-Encoding`` and ``Content-Length``.
    """

    def __init__(
        self,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
        read_timeout: float = DEFAULT_READ_TIMEOUT,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        session: Optional[requests.Session] = None,
    ):
        self.timeout = (connect_timeout, read_timeout)
        self.chunk_size = chunk_size
        self.session = session if session is not None else _no_cookies_session()

    def send(
        self,
        method: str,
        url: str,
        headers: dict[str, str],
        body: Optional[Iterable[bytes]] = None,
    ) -> UpstreamResponse:
        try:
            response = self.session.request(
                method=method,
                url=url,
                headers=headers,
                data=body,
                allow_redirects=False,
                stream=True,
                timeout=self.timeout,
            )
        except requests.exceptions.Timeout as e:
            logger.warning(f"Upstream timeout: {method} {url}: {e}")
            raise UpstreamFailure(f"Proxy request failed: upstream timed out ({e})") from e
        except requests.exceptions.RequestException as e:
            logger.warning(f"Upstream request error: {method} {url}: {e}")
            raise UpstreamFailure(f"Proxy request failed: {e}") from e

        return UpstreamResponse(
            status_code=response.status_code,
            headers=Headers(list(response.raw.headers.iteritems())),
            body=self._stream(response),
            closer=response.close,
        )

    def _stream(self, response: requests.Response) -> Iterator[bytes]:
        try:
            yield from response.raw.stream(self.chunk_size, decode_content=False)
        except Exception as e:
            # Status and headers are already on the wire; all that is left
            # is to cut the body short.
            logger.error(f"Error streaming upstream response: {e}")
        finally:
            response.close()
