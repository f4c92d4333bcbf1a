"""
HTTP surface of the layer relay.

Exposes the FastAPI application factory. Import `api.main:app` for the
application built from environment settings.
"""

from api.main import create_app

__all__ = ["create_app"]
