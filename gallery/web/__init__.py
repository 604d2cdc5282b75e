"""Web interface for the Drive GIF gallery."""

from .server import create_app

__all__ = ["create_app"]
