"""API module: application factory, diagnostics and route modules."""

from .main import create_app

__all__ = ["create_app"]
