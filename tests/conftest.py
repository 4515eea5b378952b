"""
Top-level pytest conftest.py -- shared fixtures for relay tests.

Provides:
    transport    - empty scripted FakeTransport
    make_client  - factory building a Flask test client around a relay app
    proxy_request - factory for translated ProxyRequest objects
"""

import io

import pytest

from github_relay.config import RelayConfig
from github_relay.gateway import create_app
from github_relay.translator import build_proxy_request
from tests.mocks import FakeTransport

CREDENTIAL = "abc123"
# base64("x-access-token:abc123")
EXPECTED_BASIC = "Basic eC1hY2Nlc3MtdG9rZW46YWJjMTIz"


@pytest.fixture
def transport():
    """Scripted transport with no responses queued."""
    return FakeTransport()


@pytest.fixture
def make_client():
    """Return a factory ``(responses, credential=None) -> (client, transport)``.

    Usage::

        client, transport = make_client([make_response(200, b"ok")])
        resp = client.get("/github.com/user/repo.git/info/refs")
    """

    def _make(responses=None, credential=None, responder=None, **config_overrides):
        fake = FakeTransport(responses, responder=responder)
        config = RelayConfig(credential=credential, **config_overrides)
        app = create_app(config, transport=fake)
        app.config["TESTING"] = True
        return app.test_client(), fake

    return _make


@pytest.fixture
def proxy_request():
    """Return a factory building a ProxyRequest against github.com."""

    def _make(method="GET", target="/owner/repo.git/info/refs", headers=None, body=None, host="github.com"):
        stream = io.BytesIO(body) if body is not None else None
        return build_proxy_request(
            method,
            host,
            target,
            list((headers or {}).items()),
            stream=stream,
            content_length=len(body) if body is not None else None,
        )

    return _make
