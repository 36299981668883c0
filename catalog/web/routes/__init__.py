"""
Web Routes Package.

- api: catalog REST endpoints (/api/*)
"""

from catalog.web.routes.api import register_api_routes

__all__ = [
    "register_api_routes",
]
