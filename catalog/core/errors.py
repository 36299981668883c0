"""
Error types for the catalog core.

Exceptions are used for programming/contract errors only. Backend outages
and query errors travel as `catalog.core.db.executor.Failure` values so the
strategy chain can move on to the next strategy instead of aborting.
"""

from __future__ import annotations


class CatalogError(RuntimeError):
    """Base error for catalog operations."""


class BackendUnavailableError(CatalogError):
    """Raised when a backend is used before it is opened or configured."""


class MalformedRowError(CatalogError):
    """Raised when a row is missing a field the canonical entity requires."""

    def __init__(self, entity: str, field: str, row: object | None = None) -> None:
        super().__init__(f"{entity} row is missing required field '{field}'")
        self.entity = entity
        self.field = field
        self.row = row


class ConfigError(CatalogError):
    """Raised when the configuration file contains invalid values."""
