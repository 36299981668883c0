"""
Data-access subpackage for the catalog resolver.

- `pool`: bounded connection pool for the primary backend
- `descriptor`: backend-agnostic query descriptors + SQL rendering
- `executor`: dual-backend execution with typed failures
- `inspector`: schema introspection used for strategy viability
- `schema`: canonical schema bootstrap / migrations
- `functions`: SQL functions registered on pooled connections

Re-exports here are for convenience inside the `core` package.
"""

from __future__ import annotations

from .descriptor import JoinSpec, Op, OrderBy, Predicate, QueryDescriptor
from .executor import Backend, Failure, FailureKind, QueryExecutor, RowSet, RowShape
from .functions import catalog_functions
from .inspector import ColumnInfo, SchemaInspector
from .pool import SqlitePool
from .schema import SCHEMA_VERSION, ensure_schema, migrate

__all__ = [
    # descriptors
    "JoinSpec",
    "Op",
    "OrderBy",
    "Predicate",
    "QueryDescriptor",
    # execution
    "Backend",
    "Failure",
    "FailureKind",
    "QueryExecutor",
    "RowSet",
    "RowShape",
    "SqlitePool",
    "catalog_functions",
    # introspection
    "ColumnInfo",
    "SchemaInspector",
    # schema
    "SCHEMA_VERSION",
    "ensure_schema",
    "migrate",
]
