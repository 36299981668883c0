"""
Catalog Web Layer.

HTTP surface of the catalog service: a FastAPI application exposing the
resolver through always-200 JSON envelopes.

Components:
- WebServer: FastAPI application with all routes
- envelope: response envelope helpers
"""

from catalog.web.server import WebServer

__all__ = [
    "WebServer",
]
