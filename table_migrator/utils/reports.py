"""
Report files produced by audits and migration runs.

* :func:`write_audit_csv` writes one row per candidate document so the
  affected documents can be reviewed in a spreadsheet.
* :func:`write_run_report` stores a run summary (without the per-document
  content) as JSON next to the JSON Lines logs.
* :func:`render_diff` produces the before/after text shown by a dry run.
"""

from __future__ import annotations

import difflib
import json
import os
from typing import Any

import pandas as pd

from ..models import AuditReport, RunReport

_REPORT_DIR = os.path.join("reports", "migration")


def write_audit_csv(report: AuditReport, out_path: str = "reports/audit.csv") -> str:
    """Write the candidates of ``report`` to ``out_path`` and return the path."""
    os.makedirs(os.path.dirname(out_path) or ".", exist_ok=True)
    columns = ["id", "title", "size", "last_modified", "table_count", "migration_required"]
    df = pd.DataFrame([c.model_dump() for c in report.candidates], columns=columns)
    df.to_csv(out_path, index=False)
    return out_path


def write_run_report(report: RunReport, out_dir: str = _REPORT_DIR) -> str:
    os.makedirs(out_dir, exist_ok=True)
    path = os.path.join(out_dir, f"run-{report.batch_token}.json")
    with open(path, "w", encoding="utf-8") as f:
        json.dump(report.summary(), f, ensure_ascii=False, indent=2)
    return path


def _pretty(content: Any) -> list[str]:
    return json.dumps(content, ensure_ascii=False, indent=2, sort_keys=True).splitlines(keepends=True)


def render_diff(before: Any, after: Any, *, name: str = "document") -> str:
    """Unified diff of two trees rendered as indented JSON."""
    return "".join(
        difflib.unified_diff(_pretty(before), _pretty(after), fromfile=f"{name} (before)", tofile=f"{name} (after)")
    )
