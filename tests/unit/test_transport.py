"""Unit tests for the requests-backed transport (github_relay.transport).

The requests session is replaced with a MagicMock; no sockets are opened.
"""

from unittest.mock import MagicMock

import pytest
import requests

from github_relay.errors import UpstreamFailure
from github_relay.transport import (
    RequestsTransport,
    Transport,
    UpstreamResponse,
    _no_cookies_session,
)


def _fake_requests_response(status=200, headers=None, chunks=(b"data",)):
    response = MagicMock(spec=requests.Response)
    response.status_code = status
    response.raw = MagicMock()
    response.raw.headers.iteritems.return_value = list(headers or [])
    response.raw.stream.return_value = iter(chunks)
    return response


@pytest.fixture
def session():
    return MagicMock(spec=requests.Session)


class TestRequestsTransport:
    def test_request_options(self, session):
        session.request.return_value = _fake_requests_response()
        transport = RequestsTransport(connect_timeout=3, read_timeout=60, session=session)

        transport.send("POST", "https://github.com/x", {"Host": "github.com"}, [b"body"])

        session.request.assert_called_once_with(
            method="POST",
            url="https://github.com/x",
            headers={"Host": "github.com"},
            data=[b"body"],
            allow_redirects=False,
            stream=True,
            timeout=(3, 60),
        )

    def test_response_wrapped(self, session):
        session.request.return_value = _fake_requests_response(
            status=302,
            headers=[("Location", "https://codeload.github.com/x"), ("Set-Cookie", "a=1"), ("Set-Cookie", "b=2")],
        )
        transport = RequestsTransport(session=session)

        response = transport.send("GET", "https://github.com/x", {})

        assert isinstance(response, UpstreamResponse)
        assert response.status_code == 302
        assert response.headers["Location"] == "https://codeload.github.com/x"
        assert response.headers.getlist("Set-Cookie") == ["a=1", "b=2"]

    def test_body_streamed_raw(self, session):
        raw_response = _fake_requests_response(chunks=[b"\x1f\x8b", b"gz"])
        session.request.return_value = raw_response
        transport = RequestsTransport(chunk_size=4096, session=session)

        response = transport.send("GET", "https://github.com/x", {})

        assert list(response.iter_content()) == [b"\x1f\x8b", b"gz"]
        raw_response.raw.stream.assert_called_once_with(4096, decode_content=False)
        raw_response.close.assert_called()

    def test_close_releases_connection(self, session):
        raw_response = _fake_requests_response()
        session.request.return_value = raw_response

        response = RequestsTransport(session=session).send("GET", "https://github.com/x", {})
        response.close()
        response.close()

        raw_response.close.assert_called_once()
        assert response.closed

    def test_timeout_becomes_upstream_failure(self, session):
        session.request.side_effect = requests.exceptions.ConnectTimeout("slow")

        with pytest.raises(UpstreamFailure, match="timed out"):
            RequestsTransport(session=session).send("GET", "https://github.com/x", {})

    def test_connection_error_becomes_upstream_failure(self, session):
        session.request.side_effect = requests.exceptions.ConnectionError("refused")

        with pytest.raises(UpstreamFailure, match="Proxy request failed: refused") as exc_info:
            RequestsTransport(session=session).send("GET", "https://github.com/x", {})

        assert isinstance(exc_info.value.__cause__, requests.exceptions.ConnectionError)

    def test_mid_body_failure_ends_stream(self, session):
        def broken_stream(*args, **kwargs):
            yield b"first"
            raise requests.exceptions.ChunkedEncodingError("connection broken")

        raw_response = _fake_requests_response()
        raw_response.raw.stream.side_effect = broken_stream
        session.request.return_value = raw_response

        response = RequestsTransport(session=session).send("GET", "https://github.com/x", {})

        assert list(response.iter_content()) == [b"first"]
        raw_response.close.assert_called()


class TestNoCookiesSession:
    def test_isolated_from_environment(self):
        session = _no_cookies_session()
        assert session.trust_env is False
        assert len(session.headers) == 0

    def test_cookies_rejected(self):
        session = _no_cookies_session()
        assert session.cookies.get_policy().allowed_domains() == ()


class TestTransportContract:
    def test_base_is_abstract(self):
        with pytest.raises(TypeError):
            Transport()

    def test_subclass_without_send_rejected(self):
        class Incomplete(Transport):
            pass

        with pytest.raises(TypeError):
            Incomplete()


class TestUpstreamResponse:
    def test_empty_chunks_skipped(self):
        response = UpstreamResponse(200, body=[b"", b"a", b""])
        assert list(response.iter_content()) == [b"a"]

    def test_defaults(self):
        response = UpstreamResponse(204)
        assert list(response.iter_content()) == []
        assert len(response.headers) == 0
        response.close()
        assert response.closed
