import json
import os
import sys
from datetime import datetime, timezone

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

import pandas as pd

from table_migrator.models import AuditCandidate, AuditReport, MigrationMode, RunReport
from table_migrator.utils.reports import render_diff, write_audit_csv, write_run_report


def test_write_audit_csv(tmp_path):
    report = AuditReport(
        marker='"customTable"',
        candidates=[
            AuditCandidate(id="a", size=10, title="First", lastModified=datetime(2024, 1, 1, tzinfo=timezone.utc)),
            AuditCandidate(id=7, size=20, tableCount=2, migrationRequired=True),
        ],
    )
    path = write_audit_csv(report, str(tmp_path / "out" / "audit.csv"))
    df = pd.read_csv(path, dtype={"id": str})
    assert list(df.columns) == ["id", "title", "size", "last_modified", "table_count", "migration_required"]
    assert list(df["id"]) == ["a", "7"]
    assert list(df["size"]) == [10, 20]


def test_write_run_report(tmp_path):
    report = RunReport(batch_token="tok", mode=MigrationMode.DRY_RUN, migrated=3)
    path = write_run_report(report, str(tmp_path))
    assert os.path.basename(path) == "run-tok.json"
    with open(path, encoding="utf-8") as f:
        data = json.load(f)
    assert data["mode"] == "dry-run"
    assert data["migrated"] == 3
    assert "outcomes" not in data


def test_render_diff_shows_changed_lines():
    before = {"kind": "doc", "children": [{"kind": "customTable"}]}
    after = {"kind": "doc", "children": [{"kind": "basicTable"}]}
    diff = render_diff(before, after, name="doc-1")
    assert diff.startswith("--- doc-1 (before)")
    assert '-      "kind": "customTable"' in diff
    assert '+      "kind": "basicTable"' in diff


def test_render_diff_of_identical_trees_is_empty():
    tree = {"kind": "doc", "children": []}
    assert render_diff(tree, tree) == ""
