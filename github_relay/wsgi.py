"""WSGI entry point for production servers.

    gunicorn --threads 8 github_relay.wsgi:app
"""

from github_relay.gateway import create_app
from github_relay.logging_config import setup_logging

setup_logging()
app = create_app()
