"""github-relay - edge reverse proxy for GitHub git and download traffic."""

from importlib.metadata import PackageNotFoundError, version as _pkg_version

try:
    __version__ = _pkg_version("github-relay")
except PackageNotFoundError:
    __version__ = "1.0.0"  # fallback for editable installs / dev
