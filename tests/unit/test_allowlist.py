"""Unit tests for the host allowlist guard (github_relay.allowlist)."""

from urllib.parse import urlsplit

import pytest

from github_relay.allowlist import is_allowed_host, split_target, url_host
from github_relay.constants import ALLOWED_HOSTS
from github_relay.errors import MalformedInput, PolicyViolation


class TestIsAllowedHost:
    """Exact membership against the fixed allowlist."""

    @pytest.mark.parametrize("host", sorted(ALLOWED_HOSTS))
    def test_every_listed_host_allowed(self, host):
        assert is_allowed_host(host)

    @pytest.mark.parametrize("host", [
        "api.github.com",
        "evil.com",
        "github.com.evil.com",
        "sub.raw.githubusercontent.com",
        "",
    ])
    def test_unlisted_hosts_rejected(self, host):
        assert not is_allowed_host(host)

    def test_custom_allowlist(self):
        assert is_allowed_host("example.com", frozenset({"example.com"}))
        assert not is_allowed_host("github.com", frozenset({"example.com"}))


class TestSplitTarget:
    """Path splitting into host and target path."""

    def test_clone_path(self):
        host, path = split_target("/github.com/torvalds/linux/info/refs")
        assert host == "github.com"
        assert path == "/torvalds/linux/info/refs"

    def test_leading_slashes_stripped(self):
        assert split_target("///github.com/a/b") == ("github.com", "/a/b")

    def test_trailing_slash_only_is_valid(self):
        assert split_target("/github.com/") == ("github.com", "/")

    def test_percent_encoding_preserved(self):
        _, path = split_target("/raw.githubusercontent.com/o/r/main/a%20b%2Fc.txt")
        assert path == "/o/r/main/a%20b%2Fc.txt"

    def test_single_segment_is_malformed(self):
        with pytest.raises(MalformedInput):
            split_target("/github.com")

    def test_empty_path_is_malformed(self):
        with pytest.raises(MalformedInput):
            split_target("/")

    def test_single_unlisted_segment_is_malformed_not_forbidden(self):
        """The missing path is reported before the host is checked."""
        with pytest.raises(MalformedInput):
            split_target("/evil.com")

    def test_unlisted_host_is_policy_violation(self):
        with pytest.raises(PolicyViolation, match="evil.com"):
            split_target("/evil.com/payload")

    def test_error_statuses(self):
        assert MalformedInput.status_code == 400
        assert PolicyViolation.status_code == 403


class TestUrlHost:
    """host[:port] extraction from absolute URLs."""

    def test_plain_host(self):
        assert url_host(urlsplit("https://objects.githubusercontent.com/x")) == (
            "objects.githubusercontent.com"
        )

    def test_host_is_lowercased(self):
        assert url_host(urlsplit("https://GitHub.com/x")) == "github.com"

    def test_explicit_port_kept(self):
        assert url_host(urlsplit("https://example.com:8443/x")) == "example.com:8443"

    @pytest.mark.parametrize("url", [
        "https://github.com:443/x",
        "http://github.com:80/x",
        "HTTPS://GitHub.com:443/x",
    ])
    def test_default_port_dropped(self, url):
        assert url_host(urlsplit(url)) == "github.com"

    def test_default_port_of_other_scheme_kept(self):
        assert url_host(urlsplit("http://github.com:443/x")) == "github.com:443"

    def test_userinfo_dropped(self):
        assert url_host(urlsplit("https://user:pw@example.com/x")) == "example.com"

    def test_ipv6_literal_bracketed(self):
        assert url_host(urlsplit("http://[::1]:8080/x")) == "[::1]:8080"

    def test_no_host(self):
        assert url_host(urlsplit("/relative/path")) is None
