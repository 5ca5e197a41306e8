"""
Entry point for the customTable → basicTable migration tool.

Commands::

    python main.py audit [--deep] [--csv reports/audit.csv]
    python main.py migrate --dry-run
    python main.py migrate [--concurrency 8]
    python main.py rollback <batch_token>
    python main.py purge <batch_token>
    python main.py init-db <export.csv|export.jsonl>
"""

import argparse
import json
import signal
import sys
import threading

from table_migrator.migration_tool import DEFAULT_CONFIG_FILE, TableMigrationTool, configure_logging, load_config
from table_migrator.models import MigrationMode, Progress
from table_migrator.stores import initialize_database
from table_migrator.utils.errors import QueryError
from table_migrator.utils.pre_flight_checks import PreFlightCheckError, run_store_pre_flight_checks
from table_migrator.utils.reports import write_audit_csv


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Migrate deprecated customTable blocks to basicTable.")
    parser.add_argument("--config", default=DEFAULT_CONFIG_FILE, help="Path to the JSON configuration file")
    parser.add_argument("--log-level", default="INFO")
    sub = parser.add_subparsers(dest="command", required=True)

    audit = sub.add_parser("audit", help="List documents that contain customTable blocks")
    audit.add_argument("--deep", action="store_true", help="Read each candidate and count its tables")
    audit.add_argument("--csv", default=None, help="Write the candidates to a CSV file")

    migrate = sub.add_parser("migrate", help="Convert customTable blocks")
    migrate.add_argument("--dry-run", action="store_true", help="Show the before/after diff, write nothing")
    migrate.add_argument("--audit-only", action="store_true", help="Evaluate documents without diffs or writes")
    migrate.add_argument("--concurrency", type=int, default=None)
    migrate.add_argument("--limit", type=int, default=None)

    rollback = sub.add_parser("rollback", help="Restore every document of a committed batch")
    rollback.add_argument("batch_token")

    purge = sub.add_parser("purge", help="Delete the backups of an accepted batch")
    purge.add_argument("batch_token")

    init_db = sub.add_parser("init-db", help="Load a CSV or JSON Lines export into the DuckDB store")
    init_db.add_argument("export_path")
    return parser


def print_progress(progress: Progress) -> None:
    print(
        f"\r{progress.processed}/{progress.total} processed, {progress.migrated} migrated, {progress.failed} failed",
        end="",
        flush=True,
    )


def cmd_audit(tool: TableMigrationTool, args: argparse.Namespace) -> int:
    report = tool.audit(deep=args.deep)
    tool.log_message(f"{len(report.affected_ids)} document(s) affected")
    for candidate in report.candidates:
        print(f"{candidate.id}\t{candidate.size}\t{candidate.last_modified or ''}\t{candidate.title or ''}")
    if args.deep:
        tool.log_message(f"{report.total_tables} table(s), estimated {report.estimated_minutes} minute(s)")
    if args.csv:
        write_audit_csv(report, args.csv)
        tool.log_message(f"Audit CSV written to {args.csv}")
    return 0


def cmd_migrate(tool: TableMigrationTool, args: argparse.Namespace) -> int:
    if args.dry_run:
        mode = MigrationMode.DRY_RUN
    elif args.audit_only:
        mode = MigrationMode.AUDIT_ONLY
    else:
        mode = MigrationMode.COMMIT
    if args.limit is not None:
        tool.config["migration"]["limit"] = args.limit

    if mode is MigrationMode.COMMIT:
        run_store_pre_flight_checks(tool.store, tool.marker)

    cancel = threading.Event()

    def request_cancel(signum, frame):
        tool.log_message("Cancellation requested; finishing documents in progress", "WARNING")
        cancel.set()

    previous = signal.signal(signal.SIGINT, request_cancel)
    try:
        report = tool.run(mode, concurrency=args.concurrency, progress_callback=print_progress, cancel_event=cancel)
    finally:
        signal.signal(signal.SIGINT, previous)
    print()

    if mode is MigrationMode.DRY_RUN:
        for outcome in report.outcomes:
            if outcome.diff:
                print(outcome.diff)

    for failure in report.failures:
        print(f"FAILED {failure.document_id}: {failure.error_class}: {failure.message}")
    print(json.dumps(report.summary(), ensure_ascii=False, indent=2))
    if mode is MigrationMode.COMMIT and report.migrated:
        tool.log_message(f"Rollback token: {report.batch_token}")
    return 0


def cmd_rollback(tool: TableMigrationTool, args: argparse.Namespace) -> int:
    report = tool.rollback(args.batch_token)
    for failure in report.failures:
        print(f"FAILED {failure.document_id}: {failure.error_class}: {failure.message}")
    tool.log_message(f"Restored {len(report.restored)} document(s) from batch {args.batch_token}")
    return 0


def cmd_purge(tool: TableMigrationTool, args: argparse.Namespace) -> int:
    removed = tool.purge(args.batch_token)
    tool.log_message(f"Removed {removed} backup(s) from batch {args.batch_token}")
    return 0


COMMANDS = {
    "audit": cmd_audit,
    "migrate": cmd_migrate,
    "rollback": cmd_rollback,
    "purge": cmd_purge,
}


def main(argv=None) -> int:
    """
    Main function to run the migration tool.
    """
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level)

    if args.command == "init-db":
        store_cfg = load_config(config_file=args.config)["store"]
        inserted = initialize_database(store_cfg["db_path"], args.export_path, table=store_cfg["table"])
        print(f"Loaded {inserted} document(s)")
        return 0

    tool = TableMigrationTool(config_file=args.config)
    try:
        return COMMANDS[args.command](tool, args)
    except (QueryError, PreFlightCheckError) as e:
        tool.log_message(str(e), level="ERROR")
        return 1
    finally:
        tool.close()


if __name__ == "__main__":
    sys.exit(main())
