"""
Error taxonomy and structured logging helpers for the table migration.

The exception classes defined here are raised by the stores, the backup
manager and the document pipeline.  Per-document errors are caught by the
orchestrator and recorded in the run report; only :class:`QueryError`
aborts a whole run.

Two public functions are provided to keep an append-only trail of every
per-document event:

``report_error``
    Record an error that occurred for a document.  An optional exception can
    be supplied and will be serialized to the log.

``report_ok``
    Record a successful step for a document.  Additional key/value
    information can be attached to the entry via the ``extra`` parameter.

Each entry is appended to a JSON Lines file under ``reports/migration`` so
that the information can be reviewed or parsed after a run.  The ``ERRORS``
dictionary maps event codes to human readable messages.  Codes not present
in the dictionary fall back to the code itself.
"""

from __future__ import annotations

import json
import logging
import os
import threading
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class MigrationError(Exception):
    """Base class for every error raised by the migration engine."""


class ParseError(MigrationError):
    """Stored content is not a well-formed document tree."""


class QueryError(MigrationError):
    """The candidate query could not reach the persisted store."""


class NotFoundError(MigrationError):
    """A document id does not exist in the persisted store."""


class StoreError(MigrationError):
    """The persisted store failed to answer a request for one document."""


class WriteError(MigrationError):
    """Persisting a document failed."""


class BackupError(MigrationError):
    """A pre-migration snapshot could not be recorded."""


class NoBackupError(MigrationError):
    """Rollback was requested for a document that was never snapshotted."""


class ValidationError(MigrationError):
    """A migrated tree failed the post-transform checks."""


# Mapping of event codes used throughout the migration to descriptive messages.
# The keys include both error and success codes as the same lookup is used by
# :func:`report_error` and :func:`report_ok`.
ERRORS: Dict[str, str] = {
    "ParseError": "Document content is not a well-formed tree",
    "NotFoundError": "Document not found in the store",
    "StoreError": "Document store request failed",
    "WriteError": "Failed to write migrated content",
    "BackupError": "Failed to snapshot original content",
    "NoBackupError": "No backup recorded for document",
    "ValidationError": "Migrated tree failed validation",
    "MIGRATED": "Document migrated successfully",
    "PREVIEWED": "Document would be migrated",
    "ROLLED_BACK": "Document restored from backup",
}

_REPORT_DIR = os.path.join("reports", "migration")
_ERROR_LOG = os.path.join(_REPORT_DIR, "errors.jsonl")
_OK_LOG = os.path.join(_REPORT_DIR, "success.jsonl")
_write_lock = threading.Lock()


def _write_jsonl(path: str, data: Dict[str, Any]) -> None:
    """Append ``data`` as a JSON object followed by a newline to ``path``."""
    line = json.dumps(data, ensure_ascii=False, default=str)
    with _write_lock:
        os.makedirs(_REPORT_DIR, exist_ok=True)
        with open(path, "a", encoding="utf-8") as f:
            f.write(line + "\n")


def report_error(code: str, document_id: str, exc: Optional[BaseException] = None, *, batch_token: Optional[str] = None) -> None:
    """Log an error event for ``document_id``.

    Parameters
    ----------
    code:
        A key identifying the type of error, usually the exception class
        name.  If ``code`` is present in :data:`ERRORS` its value will be used
        as the message.
    document_id:
        The id of the document the error belongs to.
    exc:
        Optional exception instance that triggered the error.  The string
        representation of the exception will be included in the log entry.
    batch_token:
        Token of the run the event happened in.
    """
    message = ERRORS.get(code, code)
    entry: Dict[str, Any] = {
        "code": code,
        "message": message,
        "document_id": document_id,
        "batch_token": batch_token,
    }
    if exc is not None:
        entry["error"] = str(exc)
    logger.error("%s - %s", message, document_id)
    _write_jsonl(_ERROR_LOG, entry)


def report_ok(code: str, document_id: str, extra: Optional[Dict[str, Any]] = None, *, batch_token: Optional[str] = None) -> None:
    """Log a successful event for ``document_id``.

    Parameters
    ----------
    code:
        A key identifying the type of event.
    document_id:
        The id of the document the event belongs to.
    extra:
        Optional dictionary of additional fields to merge into the log entry.
    batch_token:
        Token of the run the event happened in.
    """
    message = ERRORS.get(code, code)
    entry: Dict[str, Any] = {
        "code": code,
        "message": message,
        "document_id": document_id,
        "batch_token": batch_token,
    }
    if extra:
        entry.update(extra)
    logger.info("%s - %s", message, document_id)
    _write_jsonl(_OK_LOG, entry)
