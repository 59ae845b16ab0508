"""HTTP API over the draw core."""

from .app import create_app

__all__ = ["create_app"]
