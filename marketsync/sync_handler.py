"""
Sync orchestrator.

Runs one stream end to end: checks connectivity, restores the cursor,
drives pagination, persists every batch and its cursor, and always writes
a run log row, whatever happened before.
"""

import enum
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Union

from marketsync.errors import ConnectivityError
from marketsync.extract.pagination import (
    CompositeCursor,
    PageFetcher,
    PaginationSettings,
    PaginationState,
    Record,
    ReportSource,
    drain_all,
)
from marketsync.load.checkpoint import CheckpointState, CursorStore
from marketsync.load.run_log import RunLogEntry, insert_run_log
from marketsync.load.upsert import UpsertResult
from marketsync.utils.logging_utils import (
    log_error,
    log_progress,
    log_section_complete,
    log_section_start,
)


class RunState(enum.Enum):
    IDLE = "idle"
    CONNECTIVITY_CHECKED = "connectivity_checked"
    CURSOR_LOADED = "cursor_loaded"
    PAGINATING = "paginating"
    BATCH_PERSISTING = "batch_persisting"
    CURSOR_SAVED = "cursor_saved"
    LOG_WRITTEN = "log_written"


@dataclass
class StreamJob:
    """
    Everything the orchestrator needs to sync one stream.

    Attributes:
        entity_type: Run log discriminator (also the checkpoint stream name)
        initial_cursor: Cursor used when no checkpoint applies
        fetcher: Page fetcher, or a ReportSource for task streams
        persist: Normalizes and upserts one batch
        settings: Pagination knobs
        checkpoint: Cursor store, None for streams without resume
        resume: Builds the starting cursor from a stored checkpoint
        checkpoint_cursor: Maps the cursor reached after a batch to the one
            stored, for streams whose stored position must stay bounded
        check_api: Minimal provider probe, run before pagination
        before: Hook run after the cursor is loaded, before the first page
        after: Hook run once pagination completed without error
        date_from, date_to: Window recorded in the run log
        details: Extra counters recorded in the run log
    """

    entity_type: str
    initial_cursor: PaginationState
    fetcher: Union[PageFetcher, ReportSource]
    persist: Callable[[List[Record], PaginationState], UpsertResult]
    settings: PaginationSettings
    checkpoint: Optional[CursorStore] = None
    resume: Optional[Callable[[CheckpointState], PaginationState]] = None
    checkpoint_cursor: Optional[Callable[[PaginationState], PaginationState]] = None
    check_api: Optional[Callable[[], bool]] = None
    before: Optional[Callable[[], None]] = None
    after: Optional[Callable[[], None]] = None
    date_from: Optional[str] = None
    date_to: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)


@dataclass
class RunResult:
    entity_type: str
    status: str = "error"
    records_count: int = 0
    pages_count: int = 0
    failed_count: int = 0
    error_message: Optional[str] = None
    final_cursor: Optional[PaginationState] = None
    loop_guard_triggered: bool = False
    log_id: Optional[int] = None
    execution_time_seconds: float = 0.0
    transitions: List[RunState] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.status == "success"


class SyncRunner:
    """
    Executes StreamJobs against one database.

    Args:
        db: Database wrapper (test_connection, query, execute)
        sleep: Sleep function handed to the pagination driver
    """

    def __init__(self, db: Any, sleep: Callable[[float], None] = time.sleep):
        self.db = db
        self.sleep = sleep

    def run(self, job: StreamJob) -> RunResult:
        """
        Sync one stream.

        Never raises for run failures: the error is recorded on the result
        and in the run log.
        """
        section = f"Sync - {job.entity_type}"
        log_section_start(section)
        started = time.monotonic()
        result = RunResult(entity_type=job.entity_type)
        result.transitions.append(RunState.IDLE)
        date_from = job.date_from

        try:
            if not self.db.test_connection():
                raise ConnectivityError("Database is unreachable")
            if job.check_api is not None and not job.check_api():
                raise ConnectivityError(f"{job.entity_type} API is unreachable")
            result.transitions.append(RunState.CONNECTIVITY_CHECKED)

            cursor = job.initial_cursor
            if job.checkpoint is not None:
                checkpoint = job.checkpoint.load()
                if checkpoint is not None and job.resume is not None:
                    cursor = job.resume(checkpoint)
                    log_progress(section, f"Resuming from {cursor}")
            if date_from is None and isinstance(cursor, CompositeCursor):
                date_from = cursor.high_water_timestamp
            result.final_cursor = cursor
            result.transitions.append(RunState.CURSOR_LOADED)

            if job.before is not None:
                job.before()

            def on_batch(records: List[Record], next_cursor: PaginationState) -> None:
                result.transitions.append(RunState.BATCH_PERSISTING)
                upserted = job.persist(records, next_cursor)
                result.records_count += upserted.success_count
                result.failed_count += upserted.failed_count
                result.pages_count += 1
                result.final_cursor = next_cursor
                if job.checkpoint is not None:
                    stored = next_cursor
                    if job.checkpoint_cursor is not None:
                        stored = job.checkpoint_cursor(next_cursor)
                    job.checkpoint.save(stored)
                    result.transitions.append(RunState.CURSOR_SAVED)
                result.transitions.append(RunState.PAGINATING)

            result.transitions.append(RunState.PAGINATING)
            drained = drain_all(
                cursor,
                job.fetcher,
                on_batch,
                job.settings,
                sleep=self.sleep,
                label=f"Pagination - {job.entity_type}",
            )
            result.loop_guard_triggered = drained.loop_guard_triggered

            if job.after is not None:
                job.after()
            result.status = "success"

        except Exception as e:
            result.status = "error"
            result.error_message = str(e)
            log_error(section, f"{type(e).__name__}: {e}")

        finally:
            result.execution_time_seconds = time.monotonic() - started
            date_to = job.date_to
            if date_to is None and isinstance(result.final_cursor, CompositeCursor):
                date_to = result.final_cursor.high_water_timestamp
            details = dict(job.details)
            if result.loop_guard_triggered:
                details["loop_guard_triggered"] = True
            entry = RunLogEntry(
                entity_type=job.entity_type,
                status=result.status,
                records_count=result.records_count,
                pages_count=result.pages_count,
                failed_count=result.failed_count,
                date_from=date_from,
                date_to=date_to,
                error_message=result.error_message,
                execution_time_seconds=result.execution_time_seconds,
                details=details,
            )
            try:
                result.log_id = insert_run_log(self.db, entry)
            except Exception as log_exc:
                log_error(section, f"Failed to write run log: {log_exc}")
            result.transitions.append(RunState.LOG_WRITTEN)

        summary = (
            f"{result.status}: {result.records_count} records, "
            f"{result.pages_count} pages, {result.failed_count} failed "
            f"in {result.execution_time_seconds:.1f}s"
        )
        if result.succeeded:
            log_section_complete(section, summary)
        else:
            log_progress(section, summary)
        return result
