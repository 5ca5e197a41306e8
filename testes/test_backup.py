import os
import sys

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

import pytest

from table_migrator.backup import BackupManager, DuckDBBackupStore, InMemoryBackupStore, build_backup_store
from table_migrator.utils.errors import BackupError, NoBackupError


@pytest.fixture(params=["memory", "duckdb"])
def backend(request, tmp_path):
    if request.param == "memory":
        yield InMemoryBackupStore()
    else:
        store = DuckDBBackupStore(str(tmp_path / "backups.duckdb"))
        yield store
        store.close()


def test_snapshot_and_restore(backend, sample_doc):
    manager = BackupManager(backend, "batch-1")
    assert manager.snapshot("doc-1", sample_doc) is True
    restored = manager.restore("doc-1")
    assert restored == sample_doc
    assert restored is not sample_doc


def test_snapshot_is_taken_at_call_time(backend, sample_doc):
    manager = BackupManager(backend, "batch-1")
    manager.snapshot("doc-1", sample_doc)
    sample_doc["children"].clear()
    assert manager.restore("doc-1")["children"] != []


def test_first_snapshot_wins(backend):
    manager = BackupManager(backend, "batch-1")
    assert manager.snapshot("doc-1", {"kind": "doc", "children": [], "v": 1}) is True
    assert manager.snapshot("doc-1", {"kind": "doc", "children": [], "v": 2}) is False
    assert manager.restore("doc-1")["v"] == 1


def test_batches_are_independent(backend):
    BackupManager(backend, "batch-a").snapshot("doc-1", {"v": "a"})
    BackupManager(backend, "batch-b").snapshot("doc-1", {"v": "b"})
    assert BackupManager(backend, "batch-a").restore("doc-1") == {"v": "a"}
    assert BackupManager(backend, "batch-b").restore("doc-1") == {"v": "b"}
    assert backend.batches() == [
        {"batch_token": "batch-a", "documents": 1},
        {"batch_token": "batch-b", "documents": 1},
    ]


def test_restore_without_snapshot_raises(backend):
    with pytest.raises(NoBackupError):
        BackupManager(backend, "batch-1").restore("missing")


def test_purge_one_and_all(backend):
    manager = BackupManager(backend, "batch-1")
    for doc_id in ("a", "b", "c"):
        manager.snapshot(doc_id, {"id": doc_id})
    assert manager.document_ids() == ["a", "b", "c"]
    assert manager.purge("b") == 1
    assert manager.document_ids() == ["a", "c"]
    with pytest.raises(NoBackupError):
        manager.restore("b")
    assert manager.purge() == 2
    assert manager.document_ids() == []
    assert manager.purge() == 0


def test_unserializable_content_raises_backup_error(backend):
    manager = BackupManager(backend, "batch-1")
    with pytest.raises(BackupError):
        manager.snapshot("doc-1", {"kind": "doc", "children": [object()]})
    assert manager.document_ids() == []


def test_corrupted_snapshot_raises_backup_error(backend):
    backend.insert("batch-1", "doc-1", "{not json")
    with pytest.raises(BackupError):
        BackupManager(backend, "batch-1").restore("doc-1")


def test_duckdb_backups_survive_reconnect(tmp_path):
    path = str(tmp_path / "backups.duckdb")
    store = DuckDBBackupStore(path)
    BackupManager(store, "batch-1").snapshot("doc-1", {"kind": "doc", "children": []})
    store.close()

    reopened = DuckDBBackupStore(path)
    try:
        assert BackupManager(reopened, "batch-1").restore("doc-1") == {"kind": "doc", "children": []}
    finally:
        reopened.close()


def test_build_backup_store():
    assert isinstance(build_backup_store({"backend": "memory"}), InMemoryBackupStore)
    with pytest.raises(ValueError):
        build_backup_store({"backend": "s3"})
