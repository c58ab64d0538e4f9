"""
HTTP API for IP Run Gate.
"""

from .app import create_app

__all__ = ["create_app"]
