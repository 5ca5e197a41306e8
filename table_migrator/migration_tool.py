"""
High-level orchestration of the customTable → basicTable migration.

This module defines a :class:`TableMigrationTool` class that ties together
the audit scanner, the tree walker, the backup manager and the document
store into a complete batch pipeline.  A run goes through these states::

    pending → auditing → previewing | migrating → completed
                                                 | completed-with-failures

and a finished commit can later be rolled back with its batch token.

Three modes are supported.  ``audit-only`` evaluates every candidate and
records what would change; ``dry-run`` does the same and attaches a
before/after diff to each changed document; ``commit`` snapshots the
original content and then rewrites the document.  Per-document failures
are recorded in the run report and never stop the batch; only a failing
candidate query aborts a run.

Configuration is supplied via a JSON file path or directly as a
dictionary, with three sections: ``store``, ``backup`` and ``migration``.
"""

from __future__ import annotations

import json
import logging
import os
import secrets
import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from .audit import scan
from .backup import BackupManager, build_backup_store
from .models import (
    AuditReport,
    FailureRecord,
    MigrationMode,
    MigrationOutcome,
    OutcomeError,
    Progress,
    RollbackReport,
    RunReport,
    RunState,
)
from .parsers.node_schema import get_layout, parse_content
from .parsers.table_converter import IdFactory, TableIdFactory
from .parsers.tree_walker import migrate_tree, validate_migration
from .stores import DocumentStore, build_store
from .utils.errors import MigrationError, report_error, report_ok
from .utils.reports import render_diff, write_run_report

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = "config/migration_config.json"
LOG_FILE = os.path.join("reports", "migration", "migration.log")

ProgressCallback = Callable[[Progress], None]


def load_config(config: Optional[Dict[str, Any]] = None, *, config_file: Optional[str] = None) -> Dict[str, Any]:
    if config_file and os.path.exists(config_file):
        with open(config_file, "r", encoding="utf-8") as f:
            config = json.load(f)
    elif config is None:
        # Default configuration
        config = {}

    # Ensure essential keys exist to prevent KeyErrors
    config.setdefault("store", {})
    config["store"].setdefault("backend", "duckdb")
    config["store"].setdefault("db_path", "data/documents.duckdb")
    config["store"].setdefault("table", "documents")
    config["store"].setdefault("rest", {})
    config["store"]["rest"].setdefault("base_url", os.getenv("SUPABASE_URL", ""))
    config["store"]["rest"].setdefault("api_key", os.getenv("SUPABASE_KEY", ""))
    config["store"]["rest"].setdefault("table", "reviews")
    config["store"]["rest"].setdefault("query_function", "documents_containing_marker")
    config["store"]["rest"].setdefault("rpm", 600)

    config.setdefault("backup", {})
    config["backup"].setdefault("backend", "duckdb")
    config["backup"].setdefault("db_path", "data/backups.duckdb")
    config["backup"].setdefault("table", "content_backups")

    config.setdefault("migration", {})
    config["migration"].setdefault("mode", MigrationMode.DRY_RUN.value)
    config["migration"].setdefault("concurrency", 4)
    config["migration"].setdefault("limit", None)
    config["migration"].setdefault("layout", "kind")
    config["migration"].setdefault("strip_html", False)
    config["migration"].setdefault("marker", None)
    return config


def configure_logging(level: str = "INFO", log_file: str = LOG_FILE) -> None:
    """Send the package's log records to the console and to ``log_file``."""
    root = logging.getLogger("table_migrator")
    root.setLevel(level)
    if root.handlers:
        return
    formatter = logging.Formatter("[%(levelname)s] %(message)s")
    console = logging.StreamHandler()
    console.setFormatter(formatter)
    root.addHandler(console)
    os.makedirs(os.path.dirname(log_file) or ".", exist_ok=True)
    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    file_handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    root.addHandler(file_handler)


def new_batch_token() -> str:
    return f"{datetime.now(timezone.utc):%Y%m%dT%H%M%S}-{secrets.token_hex(4)}"


class TableMigrationTool:
    """
    Encapsulates all state and behavior required to audit, migrate and roll
    back a document store.  Each call to :meth:`run` is independent: its
    counters, failures and outcomes live in the returned
    :class:`~table_migrator.models.RunReport`.
    """

    def __init__(
        self,
        config: Optional[Dict[str, Any]] = None,
        *,
        config_file: Optional[str] = None,
        store: Optional[DocumentStore] = None,
        backup_store: Any = None,
    ) -> None:
        self.config = load_config(config, config_file=config_file)
        migration = self.config["migration"]
        self.layout = get_layout(migration["layout"])
        self.marker: str = migration["marker"] or self.layout.marker
        self.strip_html = bool(migration["strip_html"])
        self.store = store if store is not None else build_store(self.config["store"])
        self.backup_store = backup_store if backup_store is not None else build_backup_store(self.config["backup"])
        self.state = RunState.PENDING

    def log_message(self, message: str, level: str = "INFO") -> None:
        logger.log(logging.getLevelName(level), message)

    # ------------------------------------------------------------------ audit

    def audit(self, *, deep: bool = False) -> AuditReport:
        """Read-only list of candidate documents.  Raises ``QueryError``."""
        return scan(self.store, layout=self.layout, marker=self.marker, deep=deep)

    # -------------------------------------------------------------------- run

    def run(
        self,
        mode: Optional[Union[MigrationMode, str]] = None,
        *,
        concurrency: Optional[int] = None,
        progress_callback: Optional[ProgressCallback] = None,
        cancel_event: Optional[threading.Event] = None,
        batch_token: Optional[str] = None,
    ) -> RunReport:
        """
        Run the pipeline over every candidate of the audit.

        :param mode: ``audit-only``, ``dry-run`` or ``commit``; defaults to
            the configured mode.
        :param concurrency: Maximum number of documents in flight.
        :param progress_callback: Called after every finished document.
        :param cancel_event: When set, no further document is dispatched;
            documents already started run to completion and the report is
            marked ``cancelled``.
        :param batch_token: Rollback token to file snapshots under; a new
            one is generated when omitted.
        :raises QueryError: if the candidate query fails.
        """
        mode = MigrationMode(mode or self.config["migration"]["mode"])
        concurrency = max(1, int(concurrency or self.config["migration"]["concurrency"]))
        report = RunReport(
            batch_token=batch_token or new_batch_token(),
            mode=mode,
            started_at=datetime.now(timezone.utc),
        )

        self._set_state(report, RunState.AUDITING)
        candidate_ids = self._candidate_ids(self.audit())
        report.total_candidates = len(candidate_ids)
        self.log_message(f"Batch {report.batch_token}: {len(candidate_ids)} candidate(s), mode={mode.value}")

        self._set_state(report, RunState.MIGRATING if mode is MigrationMode.COMMIT else RunState.PREVIEWING)
        id_factory = TableIdFactory()
        backups = BackupManager(self.backup_store, report.batch_token)
        progress = Progress(total=len(candidate_ids))

        outcomes = self._process(candidate_ids, mode, id_factory, backups, concurrency, cancel_event, report, progress, progress_callback)

        order = {doc_id: i for i, doc_id in enumerate(candidate_ids)}
        outcomes.sort(key=lambda o: order[o.document_id])
        report.outcomes = outcomes
        report.failures = [
            FailureRecord(document_id=o.document_id, error_class=o.error.error_class, message=o.error.message)
            for o in outcomes
            if o.error is not None
        ]
        report.finished_at = datetime.now(timezone.utc)
        self._set_state(report, RunState.COMPLETED_WITH_FAILURES if report.failed else RunState.COMPLETED)

        write_run_report(report)
        self.log_message(
            f"Batch {report.batch_token} finished: {report.processed}/{report.total_candidates} processed, "
            f"{report.migrated} migrated, {report.unchanged} unchanged, {report.failed} failed"
            + (" (cancelled)" if report.cancelled else "")
        )
        return report

    def _candidate_ids(self, audit: AuditReport) -> List[str]:
        # One entry per id, so no two workers ever hold the same document.
        ids = list(dict.fromkeys(audit.candidate_ids))
        limit = self.config["migration"]["limit"]
        if limit is not None:
            ids = ids[: int(limit)]
        return ids

    def _process(
        self,
        candidate_ids: Iterable[str],
        mode: MigrationMode,
        id_factory: IdFactory,
        backups: BackupManager,
        concurrency: int,
        cancel_event: Optional[threading.Event],
        report: RunReport,
        progress: Progress,
        progress_callback: Optional[ProgressCallback],
    ) -> List[MigrationOutcome]:
        outcomes: List[MigrationOutcome] = []
        pending = iter(candidate_ids)
        in_flight: Dict[Future, str] = {}

        def cancelled() -> bool:
            return cancel_event is not None and cancel_event.is_set()

        with ThreadPoolExecutor(max_workers=concurrency, thread_name_prefix="migrate") as pool:
            def dispatch() -> None:
                while len(in_flight) < concurrency and not cancelled():
                    document_id = next(pending, None)
                    if document_id is None:
                        return
                    future = pool.submit(self.migrate_document, document_id, mode, id_factory, backups)
                    in_flight[future] = document_id

            dispatch()
            while in_flight:
                done, _ = wait(in_flight, return_when=FIRST_COMPLETED)
                for future in done:
                    del in_flight[future]
                    outcome = future.result()
                    outcomes.append(outcome)
                    self._record(report, progress, outcome)
                    if progress_callback is not None:
                        progress_callback(progress.model_copy())
                dispatch()

        if cancelled() and report.processed < report.total_candidates:
            report.cancelled = True
            self.log_message(f"Batch {report.batch_token} cancelled after {report.processed} document(s)", "WARNING")
        return outcomes

    @staticmethod
    def _record(report: RunReport, progress: Progress, outcome: MigrationOutcome) -> None:
        report.processed += 1
        if outcome.failed:
            report.failed += 1
        elif outcome.would_change:
            report.migrated += 1
            report.tables_converted += outcome.tables_converted
        else:
            report.unchanged += 1
        progress.processed = report.processed
        progress.migrated = report.migrated
        progress.failed = report.failed

    def migrate_document(
        self,
        document_id: str,
        mode: MigrationMode,
        id_factory: IdFactory,
        backups: BackupManager,
    ) -> MigrationOutcome:
        """
        Full pipeline for one document.  Errors are captured in the outcome
        instead of being raised, so one bad document cannot stop a batch.
        """
        start = time.time()
        outcome = MigrationOutcome(document_id=document_id)
        try:
            tree = parse_content(self.store.read_document(document_id), self.layout)
            outcome.original_snapshot = tree
            new_tree, changed = migrate_tree(tree, id_factory, layout=self.layout, strip_html=self.strip_html)
            outcome.new_content = new_tree
            if not changed:
                return outcome

            outcome.tables_converted = validate_migration(tree, new_tree, layout=self.layout)
            if mode is MigrationMode.DRY_RUN:
                outcome.diff = render_diff(tree, new_tree, name=document_id)
            if mode is not MigrationMode.COMMIT:
                report_ok("PREVIEWED", document_id, {"tables": outcome.tables_converted}, batch_token=backups.batch_token)
                return outcome

            # The snapshot must be stored before the write is issued.
            outcome.backed_up = backups.snapshot(document_id, tree)
            self.store.write_document(document_id, new_tree)
            outcome.migrated = True
            report_ok("MIGRATED", document_id, {"tables": outcome.tables_converted}, batch_token=backups.batch_token)
        except MigrationError as e:
            self._fail(outcome, e, backups.batch_token)
        except Exception as e:
            logger.exception("Unexpected error while migrating %s", document_id)
            self._fail(outcome, e, backups.batch_token)
        finally:
            outcome.elapsed_ms = (time.time() - start) * 1000
        return outcome

    @staticmethod
    def _fail(outcome: MigrationOutcome, exc: Exception, batch_token: str) -> None:
        outcome.error = OutcomeError(error_class=type(exc).__name__, message=str(exc))
        report_error(type(exc).__name__, outcome.document_id, exc, batch_token=batch_token)

    # --------------------------------------------------------------- rollback

    def rollback(self, batch_token: str, document_ids: Optional[Iterable[str]] = None) -> RollbackReport:
        """
        Restore every document snapshotted in ``batch_token`` (or only
        ``document_ids``) and purge each snapshot once its document has been
        rewritten.  Failures are reported per document.
        """
        backups = BackupManager(self.backup_store, batch_token)
        targets = list(document_ids) if document_ids is not None else backups.document_ids()
        report = RollbackReport(batch_token=batch_token)
        self.log_message(f"Rolling back {len(targets)} document(s) from batch {batch_token}")

        for document_id in targets:
            try:
                content = backups.restore(document_id)
                self.store.write_document(document_id, content)
            except Exception as e:
                if not isinstance(e, MigrationError):
                    logger.exception("Unexpected error while restoring %s", document_id)
                report.failures.append(FailureRecord(document_id=document_id, error_class=type(e).__name__, message=str(e)))
                report_error(type(e).__name__, document_id, e, batch_token=batch_token)
                continue
            backups.purge(document_id)
            report.restored.append(document_id)
            report_ok("ROLLED_BACK", document_id, batch_token=batch_token)

        report.state = RunState.COMPLETED_WITH_FAILURES if report.failures else RunState.ROLLED_BACK
        self.state = report.state
        return report

    def purge(self, batch_token: str, document_id: Optional[str] = None) -> int:
        """Drop the snapshots of an accepted batch."""
        return BackupManager(self.backup_store, batch_token).purge(document_id)

    def list_batches(self) -> List[Dict[str, Any]]:
        return self.backup_store.batches()

    def _set_state(self, report: RunReport, state: RunState) -> None:
        self.state = state
        report.state = state
        logger.debug("Batch %s → %s", report.batch_token, state.value)

    def close(self) -> None:
        self.store.close()
        close = getattr(self.backup_store, "close", None)
        if close is not None:
            close()
