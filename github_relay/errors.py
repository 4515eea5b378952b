"""Exception hierarchy for github-relay.

Every error that can end a proxied request carries the HTTP status the
gateway answers with, so the Flask error handler needs no lookup table.

This module is a base-layer module: it must NOT import from any
other ``github_relay`` submodule.
"""

from __future__ import annotations


class RelayError(Exception):
    """Base exception for all github-relay errors."""

    status_code = 500


class MalformedInput(RelayError):
    """The client path is missing the host or the path after it."""

    status_code = 400


class PolicyViolation(RelayError):
    """The requested target host is not on the allowlist."""

    status_code = 403


class UpstreamFailure(RelayError):
    """Transport-level failure talking to the upstream origin."""

    status_code = 502


class TooManyRedirects(UpstreamFailure):
    """The redirect chain did not terminate within the hop bound."""


class ConfigError(RelayError):
    """Invalid or unreadable configuration."""
