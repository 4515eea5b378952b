"""
Flask application for the GitHub relay.

Routes every ``/<host>/<path>`` request through the relay pipeline:
allowlist guard, request translation, redirect-following forward with the
anonymous-first auth retry, and response normalization. Bodies stream in
both directions.

Usage:
    git clone https://<relay>/github.com/user/repo.git
"""

import json
import logging
from typing import Optional

from flask import Flask, Response, current_app, request
from werkzeug.middleware.proxy_fix import ProxyFix
from werkzeug.routing import Rule

from github_relay.allowlist import split_target
from github_relay.auth_retry import forward_with_auth_retry
from github_relay.config import RelayConfig, load_config
from github_relay.diagnostics import (
    check_clone,
    health_document,
    json_response,
    landing_document,
    preflight_response,
)
from github_relay.errors import RelayError, UpstreamFailure
from github_relay.logging_config import bind_request, install_request_logging
from github_relay.normalizer import normalize_headers, stream_body
from github_relay.transport import RequestsTransport, Transport
from github_relay.translator import build_proxy_request, build_target, raw_request_path

logger = logging.getLogger(__name__)

CONFIG_KEY = "RELAY_CONFIG"
TRANSPORT_EXTENSION = "github_relay.transport"


def error_response(status: int, message: str) -> Response:
    """JSON error body shared by every relay failure."""
    return Response(
        json.dumps({"error": message}, ensure_ascii=False),
        status=status,
        mimetype="application/json",
    )


def get_relay_config() -> RelayConfig:
    return current_app.config[CONFIG_KEY]


def get_transport() -> Transport:
    return current_app.extensions[TRANSPORT_EXTENSION]


def proxy_origin() -> str:
    """Scheme and authority the client used to reach the relay.

    Behind a TLS terminator or load balancer this is only the public origin
    when ``trusted_proxies`` is set, so the forwarded headers are applied.
    """
    return request.host_url.rstrip("/")


def relay_request() -> Response:
    """Run the current Flask request through the relay pipeline."""
    config = get_relay_config()

    host, target_path = split_target(raw_request_path(request.environ), config.allowed_hosts)
    bind_request(target_host=host)
    target = build_target(target_path, request.environ.get("QUERY_STRING", ""))

    proxy_request = build_proxy_request(
        request.method,
        host,
        target,
        request.headers.items(),
        stream=request.stream,
        content_length=request.content_length,
        user_agent=config.user_agent,
        chunk_size=config.chunk_size,
    )

    try:
        upstream = forward_with_auth_retry(
            proxy_request,
            get_transport(),
            proxy_origin(),
            credential=config.credential,
            allowed_hosts=config.allowed_hosts,
            max_redirects=config.max_redirects,
        )
    finally:
        if proxy_request.body is not None:
            proxy_request.body.close()

    logger.info(
        f"{request.method} {host}{target} -> {upstream.status_code}",
        extra={
            "event": "proxy_access",
            "upstream_status": upstream.status_code,
        },
    )

    had_content_type = "Content-Type" in upstream.headers
    response = Response(
        stream_body(upstream),
        status=upstream.status_code,
        headers=normalize_headers(upstream.headers),
        direct_passthrough=True,
    )
    if not had_content_type:
        # werkzeug fills in text/html otherwise
        del response.headers["Content-Type"]
    # HEAD, 204 and 304 responses never iterate the body
    response.call_on_close(upstream.close)
    return response


def create_app(
    config: Optional[RelayConfig] = None,
    transport: Optional[Transport] = None,
) -> Flask:
    """Create and configure the Flask application.

    Args:
        config: Relay configuration. Loaded from file/environment if omitted.
        transport: Outbound transport. A ``RequestsTransport`` built from
                   ``config`` if omitted.

    Returns:
        Configured Flask application.
    """
    if config is None:
        config = load_config()
    if transport is None:
        transport = RequestsTransport(
            connect_timeout=config.connect_timeout,
            read_timeout=config.read_timeout,
            chunk_size=config.chunk_size,
        )

    # No static route: /static/... is an ordinary relay path.
    app = Flask(__name__, static_folder=None)
    app.config[CONFIG_KEY] = config
    app.extensions[TRANSPORT_EXTENSION] = transport

    # Relay paths are opaque; "//" must not be collapsed or redirected.
    app.url_map.merge_slashes = False
    app.url_map.strict_slashes = False

    install_request_logging(app)

    @app.before_request
    def cors_preflight():
        """Answer every OPTIONS request locally."""
        if request.method == "OPTIONS":
            return preflight_response()
        return None

    @app.route("/", methods=["GET", "HEAD"])
    def index():
        """Usage summary."""
        return json_response(landing_document(proxy_origin(), config.allowed_hosts))

    @app.route("/_health", methods=["GET"])
    def health():
        """Credential diagnostics."""
        return json_response(health_document(get_transport(), config.credential))

    @app.route("/_test/<path:repo_path>", methods=["GET"])
    def clone_check(repo_path: str):
        """Show what GitHub answers to a clone discovery request."""
        return json_response(
            check_clone(
                get_transport(),
                repo_path,
                credential=config.credential,
                user_agent=config.user_agent,
            )
        )

    def proxy(relay_path: str):
        """Relay endpoint: ``/<host>/<path>[?query]``, any method."""
        return relay_request()

    # A werkzeug Rule without a method list matches every method, WebDAV and
    # custom verbs included; Flask's route() would default to GET.
    app.url_map.add(Rule("/<path:relay_path>", endpoint="proxy"))
    app.view_functions["proxy"] = proxy

    @app.errorhandler(RelayError)
    def relay_error(error: RelayError):
        if isinstance(error, UpstreamFailure):
            logger.error(f"Upstream failure: {error}", extra={"event": "proxy_error"})
        else:
            logger.warning(
                f"Rejected request: {error}",
                extra={"event": "proxy_deny", "status_code": error.status_code},
            )
        return error_response(error.status_code, str(error))

    @app.errorhandler(404)
    def not_found(error):
        return error_response(404, "Not found")

    @app.errorhandler(405)
    def method_not_allowed(error):
        return error_response(405, "Method not allowed")

    @app.errorhandler(500)
    def internal_error(error):
        logger.error(f"Internal server error: {error}")
        return error_response(500, "Internal server error")

    if config.trusted_proxies:
        n = config.trusted_proxies
        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=n, x_proto=n, x_host=n, x_port=n)

    return app
