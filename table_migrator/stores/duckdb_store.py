"""
DuckDB-backed document store.

Documents live in a single table (``documents`` by default) with the
columns ``id``, ``title``, ``content`` (JSON text) and ``updated_at``.
:func:`initialize_database` creates and fills that table from a CSV or
JSON Lines export of the application's documents.
"""

from __future__ import annotations

import json
import logging
import os
import threading
from typing import Any, Dict, List, Optional

import duckdb
import pandas as pd

from ..utils.errors import NotFoundError, QueryError, StoreError, WriteError
from .base import DocumentStore

logger = logging.getLogger(__name__)

_COLUMNS = ("id", "title", "content", "updated_at")


def _serialize(content: Any) -> str:
    return content if isinstance(content, str) else json.dumps(content, ensure_ascii=False)


class DuckDBDocumentStore(DocumentStore):
    """
    Document store on a DuckDB database file (or ``:memory:``).  One
    connection is shared by all workers and guarded by a lock, which also
    serializes writers to the same document.
    """

    def __init__(self, db_path: str = "data/documents.duckdb", *, table: str = "documents", connection: Optional[duckdb.DuckDBPyConnection] = None) -> None:
        self.db_path = db_path
        self.table = table
        self._lock = threading.Lock()
        if connection is not None:
            self.con = connection
        else:
            if db_path != ":memory:":
                os.makedirs(os.path.dirname(db_path) or ".", exist_ok=True)
            self.con = duckdb.connect(database=db_path, read_only=False)
        self.ensure_table()

    def ensure_table(self) -> None:
        with self._lock:
            self.con.execute(
                f"CREATE TABLE IF NOT EXISTS {self.table} ("
                "id VARCHAR PRIMARY KEY, title VARCHAR, content VARCHAR, "
                "updated_at TIMESTAMP DEFAULT current_timestamp)"
            )

    def insert_document(self, document_id: str, content: Any, title: Optional[str] = None) -> None:
        with self._lock:
            self.con.execute(
                f"INSERT INTO {self.table} (id, title, content, updated_at) VALUES (?, ?, ?, current_timestamp)",
                [document_id, title, _serialize(content)],
            )

    def read_document(self, document_id: str) -> Any:
        try:
            with self._lock:
                row = self.con.execute(f"SELECT content FROM {self.table} WHERE id = ?", [document_id]).fetchone()
        except duckdb.Error as e:
            raise StoreError(f"Failed to read document {document_id}: {e}") from e
        if row is None:
            raise NotFoundError(f"Document {document_id} not found")
        return row[0]

    def write_document(self, document_id: str, content: Any) -> None:
        try:
            with self._lock:
                exists = self.con.execute(f"SELECT count(*) FROM {self.table} WHERE id = ?", [document_id]).fetchone()[0]
                if not exists:
                    raise WriteError(f"Failed to update document {document_id}: not found")
                self.con.execute(
                    f"UPDATE {self.table} SET content = ?, updated_at = current_timestamp WHERE id = ?",
                    [_serialize(content), document_id],
                )
        except duckdb.Error as e:
            raise WriteError(f"Failed to update document {document_id}: {e}") from e

    def query_ids_containing_marker(self, marker: str) -> List[Dict[str, Any]]:
        try:
            with self._lock:
                rows = self.con.execute(
                    f"SELECT id, length(content), updated_at, title FROM {self.table} "
                    "WHERE contains(content, ?) ORDER BY id",
                    [marker],
                ).fetchall()
        except duckdb.Error as e:
            raise QueryError(f"Failed to query {self.table}: {e}") from e
        return [
            {"id": r[0], "size": r[1] or 0, "last_modified": r[2], "title": r[3]}
            for r in rows
        ]

    def count(self) -> int:
        with self._lock:
            return self.con.execute(f"SELECT count(*) FROM {self.table}").fetchone()[0]

    def close(self) -> None:
        self.con.close()


def _read_export(export_path: str) -> pd.DataFrame:
    if export_path.endswith((".jsonl", ".ndjson")):
        df = pd.read_json(export_path, lines=True, dtype=False)
    else:
        df = pd.read_csv(export_path, dtype=str, keep_default_na=False)
    # Clean column names to be SQL friendly
    df.columns = [str(col).strip().replace(" ", "_").replace("-", "_").lower() for col in df.columns]
    if "id" not in df.columns or "content" not in df.columns:
        raise ValueError(f"Export {export_path} must have 'id' and 'content' columns")
    df["id"] = df["id"].astype(str)
    df["content"] = df["content"].map(_serialize)
    if "title" not in df.columns:
        df["title"] = None
    if "updated_at" in df.columns:
        df["updated_at"] = pd.to_datetime(df["updated_at"], errors="coerce", utc=True).dt.tz_localize(None)
    else:
        df["updated_at"] = pd.Timestamp.now(tz="UTC").tz_localize(None)
    return df[list(_COLUMNS)]


def initialize_database(db_path: str, export_path: str, *, table: str = "documents") -> int:
    """
    Load a CSV or JSON Lines export into the documents table.  Rows whose id
    already exists are left untouched, so the load can be repeated.

    :return: The number of rows inserted.
    """
    df = _read_export(export_path)
    store = DuckDBDocumentStore(db_path, table=table)
    try:
        before = store.count()
        with store._lock:
            store.con.register("df_temp", df)
            try:
                store.con.execute(
                    f"INSERT INTO {table} SELECT id, title, content, updated_at FROM df_temp "
                    f"WHERE id NOT IN (SELECT id FROM {table})"
                )
            finally:
                store.con.unregister("df_temp")
        inserted = store.count() - before
        logger.info("Loaded %d documents from %s into %s", inserted, export_path, table)
        return inserted
    finally:
        store.close()
