"""Unit tests for the Click-based CLI entrypoint.

Covers command registration, URL conversion, host listing and the serve
command's startup path using Click's CliRunner. The server itself is
never started.
"""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import click.testing
import pytest

from github_relay.cli import cli, main
from github_relay.constants import ALLOWED_HOSTS


@pytest.fixture()
def runner() -> click.testing.CliRunner:
    """Click CliRunner for invoking CLI commands."""
    return click.testing.CliRunner()


# ---------------------------------------------------------------------------
# Group-level tests
# ---------------------------------------------------------------------------


class TestCLIGroup:
    def test_help_flag(self, runner: click.testing.CliRunner) -> None:
        result = runner.invoke(cli, ["--help"])
        assert result.exit_code == 0
        assert "Usage" in result.output

    def test_commands_registered(self) -> None:
        assert {"serve", "convert", "hosts"}.issubset(cli.commands.keys())

    def test_version(self, runner: click.testing.CliRunner) -> None:
        result = runner.invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert "github-relay" in result.output


# ---------------------------------------------------------------------------
# convert / hosts
# ---------------------------------------------------------------------------


class TestConvert:
    def test_clone_url(self, runner: click.testing.CliRunner) -> None:
        result = runner.invoke(
            cli,
            ["convert", "https://github.com/user/repo.git", "--origin", "https://relay.example"],
        )
        assert result.exit_code == 0
        assert result.output.strip() == "https://relay.example/github.com/user/repo.git"

    def test_default_origin(self, runner: click.testing.CliRunner) -> None:
        result = runner.invoke(cli, ["convert", "https://raw.githubusercontent.com/u/r/main/f"])
        assert result.output.strip() == "http://localhost:8080/raw.githubusercontent.com/u/r/main/f"

    def test_unlisted_host(self, runner: click.testing.CliRunner) -> None:
        result = runner.invoke(cli, ["convert", "https://gitlab.com/u/r.git"])
        assert result.exit_code == 1
        assert "Host not allowed for proxying: gitlab.com" in result.output

    def test_not_a_url(self, runner: click.testing.CliRunner) -> None:
        result = runner.invoke(cli, ["convert", "repo.git"])
        assert result.exit_code == 1
        assert "Invalid URL" in result.output


class TestHosts:
    def test_lists_allowlist(self, runner: click.testing.CliRunner) -> None:
        result = runner.invoke(cli, ["hosts"])
        assert result.exit_code == 0
        assert result.output.split() == sorted(ALLOWED_HOSTS)


# ---------------------------------------------------------------------------
# serve
# ---------------------------------------------------------------------------


class TestServe:
    def test_runs_app_with_config(self, runner: click.testing.CliRunner, tmp_path) -> None:
        config_file = tmp_path / "relay.yaml"
        config_file.write_text("server:\n  host: 127.0.0.1\n  port: 9001\n")
        app = MagicMock()

        with patch("github_relay.gateway.create_app", return_value=app) as create_app, \
                patch("github_relay.logging_config.setup_logging"):
            result = runner.invoke(cli, ["serve", "--config", str(config_file)])

        assert result.exit_code == 0, result.output
        create_app.assert_called_once()
        app.run.assert_called_once_with(host="127.0.0.1", port=9001, debug=False, threaded=True)

    def test_flags_override_config(self, runner: click.testing.CliRunner) -> None:
        app = MagicMock()

        with patch("github_relay.gateway.create_app", return_value=app), \
                patch("github_relay.logging_config.setup_logging") as setup_logging:
            result = runner.invoke(
                cli,
                ["serve", "--host", "::1", "--port", "9999", "--debug", "--log-format", "text"],
                env={"RELAY_CONFIG": ""},
            )

        assert result.exit_code == 0, result.output
        app.run.assert_called_once_with(host="::1", port=9999, debug=False, threaded=True)
        setup_logging.assert_called_once_with(level="DEBUG", format_type="text")

    def test_bad_config_is_error(self, runner: click.testing.CliRunner, tmp_path) -> None:
        with patch("github_relay.logging_config.setup_logging"):
            result = runner.invoke(cli, ["serve", "--config", str(tmp_path / "missing.yaml")])

        assert result.exit_code == 1
        assert "Configuration file not found" in result.output


# ---------------------------------------------------------------------------
# main() exit codes
# ---------------------------------------------------------------------------


class TestMain:
    def test_usage_error_exits_1(self) -> None:
        with patch("sys.argv", ["github-relay", "convert"]), pytest.raises(SystemExit) as exc_info:
            main()
        assert exc_info.value.code == 1

    def test_click_exception_exit_code(self) -> None:
        with patch("sys.argv", ["github-relay", "convert", "https://example.com/x"]), \
                pytest.raises(SystemExit) as exc_info:
            main()
        assert exc_info.value.code == 1

    def test_success_returns_normally(self, capsys) -> None:
        with patch("sys.argv", ["github-relay", "hosts"]):
            main()
        assert "github.com" in capsys.readouterr().out
