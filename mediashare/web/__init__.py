"""Web interface for the Media Share server."""

from .server import create_app

__all__ = ["create_app"]
