"""
Persisted store adapters.

The migration engine reads and writes documents only through the
:class:`~table_migrator.stores.base.DocumentStore` contract.  Three
implementations are provided: an in-memory store for fixtures and tests, a
local DuckDB database, and a PostgREST-style HTTP backend.
"""

from typing import Any, Dict

from .base import DocumentStore, InMemoryDocumentStore
from .duckdb_store import DuckDBDocumentStore, initialize_database
from .rest_store import RestDocumentStore


def build_store(cfg: Dict[str, Any]) -> DocumentStore:
    """Create the document store described by the ``store`` config section."""
    backend = cfg.get("backend", "duckdb")
    if backend == "duckdb":
        return DuckDBDocumentStore(cfg.get("db_path", "data/documents.duckdb"), table=cfg.get("table", "documents"))
    if backend == "rest":
        return RestDocumentStore(cfg.get("rest", {}))
    if backend == "memory":
        return InMemoryDocumentStore()
    raise ValueError(f"Unknown store backend '{backend}'")


__all__ = [
    "DocumentStore",
    "DuckDBDocumentStore",
    "InMemoryDocumentStore",
    "RestDocumentStore",
    "build_store",
    "initialize_database",
]
