"""
Command-line entry point.

    marketsync <job> [--check | --stats]
    marketsync cleanup-logs <entity> [--days N]
    marketsync init-db
"""

import argparse
import sys
from importlib import resources
from typing import List, Optional

from marketsync.config import Config
from marketsync.jobs import JOB_ENTITIES, JOBS, run_job
from marketsync.load.connection import Database
from marketsync.load.run_log import cleanup_old_logs, get_last_runs
from marketsync.load.tables import ENTITY_TABLES, table_stats
from marketsync.utils.logging_utils import (
    log_error,
    log_progress,
    log_section_complete,
    log_section_start,
)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="marketsync", description="Marketplace data sync jobs"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    for job in JOBS:
        job_parser = subparsers.add_parser(job, help=f"Run the {job} sync")
        mode = job_parser.add_mutually_exclusive_group()
        mode.add_argument(
            "--check", action="store_true", help="Show the last runs instead of syncing"
        )
        mode.add_argument(
            "--stats", action="store_true", help="Show table statistics instead of syncing"
        )

    cleanup = subparsers.add_parser("cleanup-logs", help="Delete old run log rows")
    cleanup.add_argument("entity", choices=sorted(ENTITY_TABLES))
    cleanup.add_argument(
        "--days",
        type=int,
        default=Config.LOG_RETENTION_DAYS,
        help="Keep rows newer than this many days",
    )

    subparsers.add_parser("init-db", help="Create the tables if they do not exist")
    return parser


def show_last_runs(db: Database, job: str) -> None:
    for entity in JOB_ENTITIES[job]:
        section = f"Last runs - {entity}"
        log_section_start(section)
        runs = get_last_runs(db, entity)
        if not runs:
            log_progress(section, "No runs recorded")
        for run in runs:
            line = (
                f"{run['sync_at']} {run['status']}: {run['records_count']} records, "
                f"{run['pages_count']} pages, {run['failed_count']} failed, "
                f"{run['execution_time_seconds']}s"
            )
            if run["error_message"]:
                line += f" ({run['error_message']})"
            log_progress(section, line)
        log_section_complete(section)


def show_stats(db: Database, job: str) -> None:
    for entity in JOB_ENTITIES[job]:
        stats = table_stats(db, entity)
        log_progress(
            f"Stats - {entity}",
            f"{stats['table']}: {stats['total']} rows, "
            f"{stats['updated_last_hour']} updated in the last hour",
        )


def init_db(db: Database) -> None:
    schema = resources.files("marketsync.load").joinpath("schema.sql").read_text(encoding="utf-8")
    db.execute(schema)
    log_progress("Database", "Schema applied")


def main(argv: Optional[List[str]] = None) -> int:
    """
    Parse CLI arguments and dispatch.

    Returns:
        int: Process exit code, 1 when any run ended with an error
    """
    args = build_parser().parse_args(argv)
    db = Database()

    try:
        if args.command == "init-db":
            init_db(db)
            return 0

        if args.command == "cleanup-logs":
            cleanup_old_logs(db, args.entity, args.days)
            return 0

        if args.check:
            show_last_runs(db, args.command)
            return 0

        if args.stats:
            show_stats(db, args.command)
            return 0

        Config.validate(args.command)
        results = run_job(args.command, db)
        return 0 if all(result.succeeded for result in results) else 1

    except Exception as e:
        log_error("marketsync", f"{type(e).__name__}: {e}")
        return 1

    finally:
        db.close()


if __name__ == "__main__":
    sys.exit(main())
