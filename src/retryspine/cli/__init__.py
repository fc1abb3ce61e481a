"""retryspine command-line interface (``retryspine ...``)."""

from retryspine.cli.app import app

__all__ = ["app"]
