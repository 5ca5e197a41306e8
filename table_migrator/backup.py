"""
Pre-migration snapshots and rollback support.

Before a document is rewritten its original content is recorded under the
run's batch token.  The record is a journal entry: the first snapshot of a
document within a batch wins, entries are never modified, and they are
removed only by an explicit purge once the operator has accepted the
migration (or after a successful rollback).

Two backends are provided.  :class:`DuckDBBackupStore` keeps entries in a
``content_backups`` table; :class:`InMemoryBackupStore` is used by tests and
previews.
"""

from __future__ import annotations

import copy
import json
import logging
import os
import threading
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import duckdb

from .utils.errors import BackupError, NoBackupError

logger = logging.getLogger(__name__)

BACKUP_TYPE = "pre_table_migration"


class InMemoryBackupStore:
    def __init__(self) -> None:
        self._entries: Dict[Tuple[str, str], Tuple[str, datetime]] = {}
        self._lock = threading.Lock()

    def insert(self, batch_token: str, document_id: str, payload: str) -> bool:
        with self._lock:
            key = (batch_token, document_id)
            if key in self._entries:
                return False
            self._entries[key] = (payload, datetime.now(timezone.utc))
            return True

    def get(self, batch_token: str, document_id: str) -> Optional[str]:
        with self._lock:
            entry = self._entries.get((batch_token, document_id))
            return entry[0] if entry else None

    def delete(self, batch_token: str, document_id: Optional[str] = None) -> int:
        with self._lock:
            keys = [k for k in self._entries if k[0] == batch_token and (document_id is None or k[1] == document_id)]
            for k in keys:
                del self._entries[k]
            return len(keys)

    def document_ids(self, batch_token: str) -> List[str]:
        with self._lock:
            return sorted(doc_id for token, doc_id in self._entries if token == batch_token)

    def batches(self) -> List[Dict[str, Any]]:
        with self._lock:
            counts: Dict[str, int] = {}
            for token, _ in self._entries:
                counts[token] = counts.get(token, 0) + 1
            return [{"batch_token": t, "documents": n} for t, n in sorted(counts.items())]


class DuckDBBackupStore:
    """Backup journal in a DuckDB table, one row per (batch, document)."""

    def __init__(self, db_path: str = "data/backups.duckdb", *, table: str = "content_backups", connection: Optional[duckdb.DuckDBPyConnection] = None) -> None:
        self.table = table
        self._lock = threading.Lock()
        if connection is not None:
            self.con = connection
        else:
            if db_path != ":memory:":
                os.makedirs(os.path.dirname(db_path) or ".", exist_ok=True)
            self.con = duckdb.connect(database=db_path, read_only=False)
        with self._lock:
            self.con.execute(
                f"CREATE TABLE IF NOT EXISTS {self.table} ("
                "batch_token VARCHAR, document_id VARCHAR, backup_content VARCHAR, "
                "backup_type VARCHAR, created_at TIMESTAMP DEFAULT current_timestamp, "
                "PRIMARY KEY (batch_token, document_id))"
            )

    def insert(self, batch_token: str, document_id: str, payload: str) -> bool:
        with self._lock:
            exists = self.con.execute(
                f"SELECT count(*) FROM {self.table} WHERE batch_token = ? AND document_id = ?",
                [batch_token, document_id],
            ).fetchone()[0]
            if exists:
                return False
            self.con.execute(
                f"INSERT INTO {self.table} (batch_token, document_id, backup_content, backup_type, created_at) "
                "VALUES (?, ?, ?, ?, current_timestamp)",
                [batch_token, document_id, payload, BACKUP_TYPE],
            )
            return True

    def get(self, batch_token: str, document_id: str) -> Optional[str]:
        with self._lock:
            row = self.con.execute(
                f"SELECT backup_content FROM {self.table} WHERE batch_token = ? AND document_id = ?",
                [batch_token, document_id],
            ).fetchone()
        return row[0] if row else None

    def delete(self, batch_token: str, document_id: Optional[str] = None) -> int:
        with self._lock:
            if document_id is None:
                where, params = "batch_token = ?", [batch_token]
            else:
                where, params = "batch_token = ? AND document_id = ?", [batch_token, document_id]
            count = self.con.execute(f"SELECT count(*) FROM {self.table} WHERE {where}", params).fetchone()[0]
            self.con.execute(f"DELETE FROM {self.table} WHERE {where}", params)
            return count

    def document_ids(self, batch_token: str) -> List[str]:
        with self._lock:
            rows = self.con.execute(
                f"SELECT document_id FROM {self.table} WHERE batch_token = ? ORDER BY document_id",
                [batch_token],
            ).fetchall()
        return [r[0] for r in rows]

    def batches(self) -> List[Dict[str, Any]]:
        with self._lock:
            rows = self.con.execute(
                f"SELECT batch_token, count(*) FROM {self.table} GROUP BY batch_token ORDER BY batch_token"
            ).fetchall()
        return [{"batch_token": r[0], "documents": r[1]} for r in rows]

    def close(self) -> None:
        self.con.close()


def build_backup_store(cfg: Dict[str, Any]):
    backend = cfg.get("backend", "duckdb")
    if backend == "duckdb":
        return DuckDBBackupStore(cfg.get("db_path", "data/backups.duckdb"), table=cfg.get("table", "content_backups"))
    if backend == "memory":
        return InMemoryBackupStore()
    raise ValueError(f"Unknown backup backend '{backend}'")


class BackupManager:
    """
    Snapshot/restore/purge for one batch.

    :param backend: An :class:`InMemoryBackupStore` or :class:`DuckDBBackupStore`.
    :param batch_token: The run's rollback token.  Every snapshot taken
        through this manager is filed under it.
    """

    def __init__(self, backend: Any, batch_token: str) -> None:
        self.backend = backend
        self.batch_token = batch_token

    def snapshot(self, document_id: str, content: Any) -> bool:
        """
        Record ``content`` as the pre-migration state of ``document_id``.
        Returns once the entry is stored.  A second snapshot of the same
        document in this batch is ignored.

        :return: ``True`` if a new entry was written.
        :raises BackupError: if the entry could not be stored.
        """
        try:
            payload = json.dumps(copy.deepcopy(content), ensure_ascii=False)
            created = self.backend.insert(self.batch_token, document_id, payload)
        except (TypeError, ValueError, duckdb.Error) as e:
            raise BackupError(f"Failed to back up document {document_id}: {e}") from e
        if not created:
            logger.warning("Backup for %s already exists in batch %s; keeping the first one", document_id, self.batch_token)
        return created

    def restore(self, document_id: str) -> Any:
        """Return the content recorded for ``document_id`` in this batch."""
        payload = self.backend.get(self.batch_token, document_id)
        if payload is None:
            raise NoBackupError(f"No backup found for document {document_id} in batch {self.batch_token}")
        try:
            return json.loads(payload)
        except ValueError as e:
            raise BackupError(f"Backup of document {document_id} in batch {self.batch_token} is unreadable: {e}") from e

    def purge(self, document_id: Optional[str] = None) -> int:
        """Delete this batch's snapshot of ``document_id``, or all of them."""
        removed = self.backend.delete(self.batch_token, document_id)
        logger.info("Purged %d backup(s) from batch %s", removed, self.batch_token)
        return removed

    def document_ids(self) -> List[str]:
        return self.backend.document_ids(self.batch_token)
