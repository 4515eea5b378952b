"""Informational and diagnostic endpoints around the relay core.

None of these take part in proxying: the landing document, the health
check, the clone check and the CORS preflight answer.
"""

from __future__ import annotations

import json
import logging
from typing import AbstractSet, Any, Optional

from flask import Response

from github_relay import __version__
from github_relay.auth_retry import basic_auth_header
from github_relay.constants import DEFAULT_USER_AGENT
from github_relay.errors import UpstreamFailure
from github_relay.transport import Transport, UpstreamResponse

logger = logging.getLogger(__name__)

SERVICE_NAME = "github-relay"
GITHUB_API_USER_URL = "https://api.github.com/user"
PROBE_PREVIEW_CHARS = 300

PREFLIGHT_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, PUT, DELETE, OPTIONS",
    "Access-Control-Allow-Headers": "*",
    "Access-Control-Max-Age": "86400",
}


def preflight_response() -> Response:
    """Answer a CORS preflight without touching any upstream."""
    return Response(status=200, headers=PREFLIGHT_HEADERS)


def json_response(data: dict[str, Any], status: int = 200) -> Response:
    return Response(
        json.dumps(data, indent=2, ensure_ascii=False),
        status=status,
        mimetype="application/json",
    )


def landing_document(origin: str, allowed_hosts: AbstractSet[str]) -> dict[str, Any]:
    """Usage summary shown at the relay root."""
    origin = origin.rstrip("/")
    return {
        "service": SERVICE_NAME,
        "version": __version__,
        "usage": "Replace https:// with " + origin + "/",
        "examples": {
            "clone": f"git clone {origin}/github.com/user/repo.git",
            "release": f"wget {origin}/github.com/user/repo/releases/download/v1.0/file.zip",
            "raw": f"wget {origin}/raw.githubusercontent.com/user/repo/main/README.md",
            "archive": f"wget {origin}/codeload.github.com/user/repo/zip/refs/heads/main",
        },
        "allowed_hosts": sorted(allowed_hosts),
    }


def _read_preview(response: UpstreamResponse, limit_bytes: int) -> bytes:
    data = b""
    try:
        for chunk in response.iter_content():
            data += chunk
            if len(data) >= limit_bytes:
                break
    finally:
        response.close()
    return data[:limit_bytes]


def check_github_api(transport: Transport, credential: Optional[str]) -> str:
    """Verify the configured credential against the GitHub API.

    Returns a one-line status; the credential itself never appears in it.
    """
    if not credential:
        return "untested"

    try:
        response = transport.send(
            "GET",
            GITHUB_API_USER_URL,
            {
                "Authorization": f"Bearer {credential}",
                "User-Agent": SERVICE_NAME,
                "Accept": "application/vnd.github+json",
            },
        )
    except UpstreamFailure as e:
        return f"error: {e}"

    status = response.status_code
    body = _read_preview(response, 64 * 1024)
    if status != 200:
        return f"failed (HTTP {status})"
    try:
        login = json.loads(body.decode("utf-8")).get("login")
    except (ValueError, AttributeError) as e:
        return f"error: unreadable API response ({e})"
    return f"valid (user: {login})"


def health_document(transport: Transport, credential: Optional[str]) -> dict[str, Any]:
    return {
        "token_configured": bool(credential),
        "github_api_check": check_github_api(transport, credential),
    }


def check_clone(
    transport: Transport,
    repo_path: str,
    credential: Optional[str] = None,
    user_agent: str = DEFAULT_USER_AGENT,
) -> dict[str, Any]:
    """Send the first request ``git clone`` would make and report the answer.

    Redirects are not followed, so the report shows exactly what GitHub
    returned for the discovery request.

    Raises:
        UpstreamFailure: If the request cannot be sent.
    """
    url = f"https://github.com/{repo_path}.git/info/refs?service=git-upload-pack"
    headers = {"Host": "github.com", "User-Agent": user_agent}
    if credential:
        headers["Authorization"] = basic_auth_header(credential)

    logger.info(f"Clone check for {repo_path}", extra={"event": "clone_check"})
    response = transport.send("GET", url, headers)
    response_headers = {
        name: value
        for name, value in response.headers.items()
        if name.lower() != "set-cookie"
    }
    preview = _read_preview(response, PROBE_PREVIEW_CHARS * 4)
    return {
        "test_url": url,
        "has_auth": bool(credential),
        "response_status": response.status_code,
        "response_headers": response_headers,
        "body_preview": preview.decode("utf-8", errors="replace")[:PROBE_PREVIEW_CHARS],
    }
