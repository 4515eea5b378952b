"""Click-based CLI entrypoint for github-relay.

Commands:
    serve    run the relay with the built-in threaded server
    convert  turn a GitHub URL into its relay equivalent
    hosts    list the hosts the relay will reach
"""

from __future__ import annotations

import logging
import sys
from typing import Optional

import click

from github_relay import __version__
from github_relay.config import load_config
from github_relay.constants import ALLOWED_HOSTS
from github_relay.errors import ConfigError, RelayError
from github_relay.translator import to_proxy_url

logger = logging.getLogger(__name__)


@click.group()
@click.version_option(__version__, prog_name="github-relay")
def cli() -> None:
    """github-relay - edge reverse proxy for GitHub git and download traffic."""


@cli.command()
@click.option("--host", default=None, help="Listen address (overrides RELAY_HOST).")
@click.option("--port", type=int, default=None, help="Listen port (overrides RELAY_PORT).")
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False),
    default=None,
    help="Path to relay.yaml (overrides RELAY_CONFIG).",
)
@click.option("--log-format", type=click.Choice(["json", "text"]), default=None)
@click.option("--debug", is_flag=True, help="Enable debug logging.")
def serve(
    host: Optional[str],
    port: Optional[int],
    config_path: Optional[str],
    log_format: Optional[str],
    debug: bool,
) -> None:
    """Run the relay."""
    from github_relay.gateway import create_app
    from github_relay.logging_config import setup_logging

    setup_logging(level="DEBUG" if debug else None, format_type=log_format)

    try:
        config = load_config(config_path)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc

    listen_host = host or config.listen_host
    listen_port = port or config.listen_port

    logger.info(
        f"Starting github-relay on {listen_host}:{listen_port} "
        f"({'credential configured' if config.has_credential else 'anonymous-only mode'})"
    )
    app = create_app(config)
    app.run(host=listen_host, port=listen_port, debug=False, threaded=True)


@cli.command()
@click.argument("url")
@click.option(
    "--origin",
    default="http://localhost:8080",
    show_default=True,
    help="Public origin of the relay.",
)
def convert(url: str, origin: str) -> None:
    """Print the relay URL for a GitHub URL."""
    try:
        click.echo(to_proxy_url(url, origin))
    except RelayError as exc:
        raise click.ClickException(str(exc)) from exc


@cli.command()
def hosts() -> None:
    """List the hosts the relay will reach."""
    for host in sorted(ALLOWED_HOSTS):
        click.echo(host)


def main() -> None:
    """Entry point for the CLI.

    Usage errors (bad flags, missing arguments) are normalised to exit
    code 1, like every other failure. Click's default for ``UsageError``
    is exit code 2.
    """
    try:
        result = cli(standalone_mode=False)
    except click.UsageError as exc:
        click.echo(f"Error: {exc.format_message()}", err=True)
        sys.exit(1)
    except click.ClickException as exc:
        exc.show()
        sys.exit(exc.exit_code)
    except click.Abort:
        click.echo("Aborted!", err=True)
        sys.exit(1)
    if isinstance(result, int):
        sys.exit(result)


if __name__ == "__main__":
    main()
