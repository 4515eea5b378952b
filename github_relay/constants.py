"""Fixed values shared by the relay pipeline.

The allowlist here is the single source of truth for which upstream hosts
can be reached through the relay, both for incoming requests and for
redirects the relay follows on its own.
"""

from __future__ import annotations

# ============================================================================
# Upstream Hosts
# ============================================================================

# - github.com: git smart HTTP, release downloads, archive redirects
# - raw.githubusercontent.com / gist.githubusercontent.com: raw file content
# - objects.githubusercontent.com: release assets and LFS objects
# - codeload.github.com: source archives (zip / tar.gz)
ALLOWED_HOSTS: frozenset[str] = frozenset({
    "github.com",
    "raw.githubusercontent.com",
    "gist.github.com",
    "gist.githubusercontent.com",
    "objects.githubusercontent.com",
    "codeload.github.com",
    "github.githubassets.com",
})

UPSTREAM_SCHEME = "https"

# ============================================================================
# Redirects
# ============================================================================

REDIRECT_STATUSES: frozenset[int] = frozenset({301, 302, 303, 307, 308})
MAX_REDIRECTS = 10

# ============================================================================
# Headers
# ============================================================================

# GitHub only answers with smart-protocol responses (instead of HTML) when
# the user agent looks like a git client.
DEFAULT_USER_AGENT = "git/2.39.0"

# Prefix of the edge network's internal routing headers (cf-connecting-ip,
# cf-ray, cf-ipcountry, ...).
EDGE_HEADER_PREFIX = "cf-"

# Inbound headers that describe the relay's own edge, never the upstream.
EDGE_HEADERS: frozenset[str] = frozenset({
    "host",
    "x-forwarded-for",
})

# Connection-level headers owned by whichever hop is speaking. The WSGI
# server and the outbound transport each compute their own.
HOP_BY_HOP_HEADERS: frozenset[str] = frozenset({
    "connection",
    "keep-alive",
    "proxy-connection",
    "te",
    "trailer",
    "transfer-encoding",
    "upgrade",
})

BODY_METHODS: frozenset[str] = frozenset({"POST", "PUT", "PATCH"})

# Username GitHub expects when a token is sent through HTTP Basic auth.
BASIC_AUTH_USERNAME = "x-access-token"

# ============================================================================
# Transport Defaults
# ============================================================================

DEFAULT_CONNECT_TIMEOUT = 30.0
DEFAULT_READ_TIMEOUT = 600.0
DEFAULT_CHUNK_SIZE = 8192

# Request bodies larger than this spill from memory to a temp file while
# being kept for replay.
BODY_SPOOL_MAX_MEMORY = 1024 * 1024

DEFAULT_LISTEN_HOST = "0.0.0.0"
DEFAULT_LISTEN_PORT = 8080
