"""
Document store contract and an in-memory implementation.

The engine only needs three capabilities from the application's persisted
store: read one document's content, replace one document's content, and
list the documents whose serialized content contains a marker string.
"""

from __future__ import annotations

import copy
import json
import threading
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from ..utils.errors import NotFoundError, QueryError, WriteError


class DocumentStore:
    """
    Capability surface consumed by the migration engine.  Implementations
    must make ``write_document`` a single replacement of the content field
    and serialize concurrent writers to the same document.
    """

    def read_document(self, document_id: str) -> Any:
        """Return the stored content or raise :class:`NotFoundError`."""
        raise NotImplementedError

    def write_document(self, document_id: str, content: Any) -> None:
        """Replace the content of ``document_id`` or raise :class:`WriteError`."""
        raise NotImplementedError

    def query_ids_containing_marker(self, marker: str) -> List[Dict[str, Any]]:
        """
        Return ``[{"id", "size", "last_modified", "title"}, ...]`` for every
        document whose serialized content contains ``marker``, in a stable
        order.  Raises :class:`QueryError` if the store cannot be reached.
        """
        raise NotImplementedError

    def close(self) -> None:
        pass


class InMemoryDocumentStore(DocumentStore):
    """
    Dictionary-backed store.  Content is kept as JSON text, exactly as a
    database column would hold it, so the marker search runs over the same
    serialized form.  ``writes`` counts successful writes.
    """

    def __init__(self, documents: Optional[Dict[str, Any]] = None, *, titles: Optional[Dict[str, str]] = None) -> None:
        self._rows: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()
        self.writes = 0
        self.available = True
        self.fail_writes_for: set[str] = set()
        for document_id, content in (documents or {}).items():
            self._put(str(document_id), content, (titles or {}).get(document_id))

    def _put(self, document_id: str, content: Any, title: Optional[str] = None) -> None:
        raw = content if isinstance(content, str) else json.dumps(content, ensure_ascii=False)
        row = self._rows.setdefault(document_id, {"title": title})
        row["content"] = raw
        row["updated_at"] = datetime.now(timezone.utc)

    def add(self, document_id: str, content: Any, title: Optional[str] = None) -> None:
        with self._lock:
            self._put(document_id, content, title)

    def ids(self) -> Iterable[str]:
        return list(self._rows)

    def raw(self, document_id: str) -> str:
        return self._rows[document_id]["content"]

    def read_document(self, document_id: str) -> Any:
        with self._lock:
            row = self._rows.get(document_id)
            if row is None:
                raise NotFoundError(f"Document {document_id} not found")
            return row["content"]

    def write_document(self, document_id: str, content: Any) -> None:
        with self._lock:
            if document_id in self.fail_writes_for:
                raise WriteError(f"Failed to update document {document_id}")
            if document_id not in self._rows:
                raise WriteError(f"Failed to update document {document_id}: not found")
            self._put(document_id, copy.deepcopy(content))
            self.writes += 1

    def query_ids_containing_marker(self, marker: str) -> List[Dict[str, Any]]:
        with self._lock:
            if not self.available:
                raise QueryError("In-memory store is unavailable")
            return [
                {
                    "id": document_id,
                    "size": len(row["content"]),
                    "last_modified": row["updated_at"],
                    "title": row.get("title"),
                }
                for document_id, row in sorted(self._rows.items())
                if marker in row["content"]
            ]
