import json
import os
import sys

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

import pandas as pd
import pytest

import main
from table_migrator.migration_tool import TableMigrationTool
from table_migrator.parsers.node_schema import custom_table, doc
from table_migrator.stores import DuckDBDocumentStore
from table_migrator.utils.errors import QueryError


@pytest.fixture
def config_file(tmp_path):
    config = {
        "store": {"backend": "duckdb", "db_path": str(tmp_path / "data" / "documents.duckdb")},
        "backup": {"backend": "duckdb", "db_path": str(tmp_path / "data" / "backups.duckdb")},
        "migration": {"concurrency": 2},
    }
    path = tmp_path / "config.json"
    path.write_text(json.dumps(config), encoding="utf-8")
    return str(path), config


@pytest.fixture
def loaded(config_file, tmp_path, sample_doc):
    path, config = config_file
    export = tmp_path / "export.csv"
    pd.DataFrame(
        {
            "id": ["r1", "r2", "r3"],
            "title": ["With table", "Plain", "Two tables"],
            "content": [
                json.dumps(sample_doc),
                json.dumps(doc([])),
                json.dumps(doc([custom_table([], []), custom_table(["h"], [["c"]])])),
            ],
        }
    ).to_csv(export, index=False)
    assert main.main(["--config", path, "init-db", str(export)]) == 0
    return path, config


def read_doc(config, document_id):
    store = DuckDBDocumentStore(config["store"]["db_path"])
    try:
        return json.loads(store.read_document(document_id))
    finally:
        store.close()


def test_audit_command(loaded, capsys, tmp_path):
    path, _ = loaded
    csv_path = str(tmp_path / "audit.csv")
    assert main.main(["--config", path, "audit", "--deep", "--csv", csv_path]) == 0
    out = capsys.readouterr().out
    assert "r1\t" in out
    assert "r3\t" in out
    assert "r2\t" not in out
    df = pd.read_csv(csv_path)
    assert list(df["table_count"]) == [1, 2]


def test_dry_run_then_commit_then_rollback(loaded, capsys, sample_doc, expected_sample_doc):
    path, config = loaded

    assert main.main(["--config", path, "migrate", "--dry-run"]) == 0
    out = capsys.readouterr().out
    assert '+' in out and '"basicTable"' in out
    assert read_doc(config, "r1") == sample_doc

    assert main.main(["--config", path, "migrate"]) == 0
    summary_out = capsys.readouterr().out
    assert '"migrated": 2' in summary_out
    assert read_doc(config, "r1") == expected_sample_doc
    assert [c["kind"] for c in read_doc(config, "r3")["children"]] == ["basicTable", "basicTable"]

    tool = TableMigrationTool(config_file=path)
    try:
        batches = tool.list_batches()
    finally:
        tool.close()
    assert len(batches) == 1
    assert batches[0]["documents"] == 2

    assert main.main(["--config", path, "rollback", batches[0]["batch_token"]]) == 0
    assert read_doc(config, "r1") == sample_doc
    assert [c["kind"] for c in read_doc(config, "r3")["children"]] == ["customTable", "customTable"]


def test_purge_command(loaded):
    path, config = loaded
    assert main.main(["--config", path, "migrate"]) == 0
    tool = TableMigrationTool(config_file=path)
    try:
        token = tool.list_batches()[0]["batch_token"]
    finally:
        tool.close()

    assert main.main(["--config", path, "purge", token]) == 0
    tool = TableMigrationTool(config_file=path)
    try:
        assert tool.list_batches() == []
    finally:
        tool.close()


def test_audit_only_writes_nothing(loaded, sample_doc):
    path, config = loaded
    assert main.main(["--config", path, "migrate", "--audit-only"]) == 0
    assert read_doc(config, "r1") == sample_doc


def test_query_failure_exits_with_error(config_file, monkeypatch):
    path, _ = config_file

    def failing_audit(self, *, deep=False):
        raise QueryError("store unreachable")

    monkeypatch.setattr(TableMigrationTool, "audit", failing_audit)
    assert main.main(["--config", path, "audit"]) == 1
    assert main.main(["--config", path, "migrate", "--dry-run"]) == 1
