"""
Catalog - relationship resolution for a record label catalog API.

The catalog service answers "which releases belong to this artist" (and the
other catalog lookups) against a data store whose schema differs between
deployments, falling back from a direct database connection to a hosted
REST proxy of the same tables when needed.
"""

__version__ = "0.1.0"
__author__ = "Catalog Contributors"

from catalog.server import CatalogServer

__all__ = ["CatalogServer", "__version__"]
