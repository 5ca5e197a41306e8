"""
Utility helpers used by the migration tool.

This subpackage exposes the error taxonomy, structured JSON Lines logging
of per-document events, and report file generation.
"""

from .errors import (
    ERRORS,
    BackupError,
    MigrationError,
    NoBackupError,
    NotFoundError,
    ParseError,
    QueryError,
    StoreError,
    ValidationError,
    WriteError,
    report_error,
    report_ok,
)
from .reports import render_diff, write_audit_csv, write_run_report

__all__ = [
    "ERRORS",
    "BackupError",
    "MigrationError",
    "NoBackupError",
    "NotFoundError",
    "ParseError",
    "QueryError",
    "StoreError",
    "ValidationError",
    "WriteError",
    "render_diff",
    "report_error",
    "report_ok",
    "write_audit_csv",
    "write_run_report",
]
