"""
API module for the trading journal risk engine.
"""

from .server import app, create_app

__all__ = ["app", "create_app"]
