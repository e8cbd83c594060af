"""
Run log: one append-only row per sync run in the shared ``sync_logs`` table.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from psycopg2.extras import Json

from marketsync.utils.logging_utils import log_progress


@dataclass(frozen=True)
class RunLogEntry:
    entity_type: str
    status: str
    records_count: int = 0
    pages_count: int = 0
    failed_count: int = 0
    date_from: Optional[str] = None
    date_to: Optional[str] = None
    error_message: Optional[str] = None
    execution_time_seconds: float = 0.0
    details: Dict[str, Any] = field(default_factory=dict)


def insert_run_log(db: Any, entry: RunLogEntry) -> int:
    """
    Append a run log row.

    Returns:
        int: Id of the inserted row
    """
    rows = db.query(
        """
        INSERT INTO sync_logs (
            entity_type, status, records_count, pages_count, failed_count,
            date_from, date_to, error_message, execution_time_seconds, details
        ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
        RETURNING id
        """,
        (
            entry.entity_type,
            entry.status,
            entry.records_count,
            entry.pages_count,
            entry.failed_count,
            entry.date_from,
            entry.date_to,
            entry.error_message,
            round(entry.execution_time_seconds, 3),
            Json(entry.details),
        ),
    )
    return rows[0]["id"]


def get_last_runs(db: Any, entity_type: str, limit: int = 5) -> List[Dict[str, Any]]:
    """Most recent runs of one entity, newest first."""
    return db.query(
        """
        SELECT id, sync_at, entity_type, status, records_count, pages_count,
               failed_count, date_from, date_to, error_message,
               execution_time_seconds, details
        FROM sync_logs
        WHERE entity_type = %s
        ORDER BY sync_at DESC
        LIMIT %s
        """,
        (entity_type, limit),
    )


def cleanup_old_logs(db: Any, entity_type: str, days_to_keep: int) -> int:
    """
    Delete log rows of one entity older than ``days_to_keep`` days.

    Returns:
        int: Number of deleted rows
    """
    deleted = db.execute(
        """
        DELETE FROM sync_logs
        WHERE entity_type = %s
          AND sync_at < NOW() - INTERVAL '1 day' * %s
        """,
        (entity_type, days_to_keep),
    )
    log_progress(f"Run Log - {entity_type}", f"Deleted {deleted} log rows older than {days_to_keep} days")
    return deleted
