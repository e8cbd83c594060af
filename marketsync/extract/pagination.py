"""
Pagination driver.

Drives a provider to exhaustion under one of four cursor styles and hands
every non-empty page to a caller-supplied sink:

- CompositeCursor: (timestamp, id) high-water mark echoed by the server
- OffsetCursor: offset into a server-reported total
- TokenCursor: opaque last-id token seeding the next request
- TaskCursor: asynchronous report, polled until done then downloaded

Pages are fetched strictly one after another with a fixed pacing delay
between successful pages.
"""

import time
import warnings
from dataclasses import dataclass, replace
from typing import Any, Callable, Dict, List, Optional, Protocol, Union

from marketsync.errors import LoopGuardTriggered, ReportGenerationFailed
from marketsync.utils.logging_utils import log_progress, log_warning

Record = Dict[str, Any]


@dataclass(frozen=True)
class CompositeCursor:
    high_water_timestamp: Optional[str] = None
    high_water_id: Any = None


@dataclass(frozen=True)
class OffsetCursor:
    offset: int = 0
    total: Optional[int] = None


@dataclass(frozen=True)
class TokenCursor:
    last_id: Optional[str] = None


class TaskStatus:
    NEW = "new"
    PENDING = "pending"
    PROCESSING = "processing"
    DONE = "done"
    ERROR = "error"

    WAITING = (NEW, PENDING, PROCESSING)


@dataclass(frozen=True)
class TaskCursor:
    task_id: Optional[str] = None
    status: str = TaskStatus.NEW


PaginationState = Union[CompositeCursor, OffsetCursor, TokenCursor, TaskCursor]


@dataclass
class Page:
    """
    One provider response.

    Attributes:
        records: Raw provider records, in server order
        next_cursor: Continuation returned by the server (ignored for offset
            style, where the driver advances the offset itself)
        has_more: Explicit "more data" flag; None means infer it from a full page
        total: Server-reported total (offset style)
    """

    records: List[Record]
    next_cursor: Optional[PaginationState] = None
    has_more: Optional[bool] = None
    total: Optional[int] = None


@dataclass
class DrainResult:
    total_records: int = 0
    page_count: int = 0
    final_cursor: Optional[PaginationState] = None
    loop_guard_triggered: bool = False


@dataclass(frozen=True)
class PaginationSettings:
    """
    Per-stream pagination knobs. Durations are in seconds.

    Attributes:
        page_size: Requested page size (also the "full page" threshold)
        pacing_delay: Fixed sleep between successful pages
        poll_interval: Sleep between report status checks
        ready_delay: Sleep after a report reaches "done", before download
        max_polls: Give up on a report after this many status checks (None = never)
        chunk_size: Batch size used to hand a downloaded report to the sink
    """

    page_size: int
    pacing_delay: float = 0.0
    poll_interval: float = 5.0
    ready_delay: float = 0.0
    max_polls: Optional[int] = None
    chunk_size: Optional[int] = None


class ReportSource(Protocol):
    def create_task(self) -> str: ...

    def poll_task(self, task_id: str) -> str: ...

    def download_task(self, task_id: str) -> List[Record]: ...


PageFetcher = Callable[[PaginationState], Page]
BatchSink = Callable[[List[Record], PaginationState], None]


def drain_all(
    initial_cursor: PaginationState,
    fetcher: Union[PageFetcher, ReportSource],
    on_batch: BatchSink,
    settings: PaginationSettings,
    sleep: Callable[[float], None] = time.sleep,
    label: str = "Pagination",
) -> DrainResult:
    """
    Fetch every page reachable from ``initial_cursor``.

    Args:
        initial_cursor: Starting state; its type selects the pagination style
        fetcher: ``cursor -> Page`` callable, or a ReportSource for TaskCursor
        on_batch: Sink called with (records, cursor after this page); its
            errors propagate and abort the drive
        settings: Page size and delays
        sleep: Sleep function, injectable for tests
        label: Section name used in log lines

    Returns:
        DrainResult with the number of records and non-empty pages emitted
    """
    if isinstance(initial_cursor, TaskCursor):
        return _drain_task(initial_cursor, fetcher, on_batch, settings, sleep, label)

    cursor = initial_cursor
    result = DrainResult(final_cursor=cursor)

    while True:
        page = fetcher(cursor)
        records = page.records or []
        next_cursor = _advance(cursor, page)

        if not records:
            if result.page_count == 0:
                log_progress(label, "Empty first page, nothing changed since checkpoint")
            else:
                log_progress(label, "Empty page, end of data")
            break

        on_batch(records, next_cursor)
        result.page_count += 1
        result.total_records += len(records)
        result.final_cursor = next_cursor
        log_progress(
            label,
            f"Page {result.page_count}: {len(records)} records "
            f"(total {result.total_records})",
        )

        if not _should_continue(cursor, next_cursor, page, settings):
            break

        if next_cursor == cursor:
            log_warning(label, f"Cursor did not advance ({cursor}), stopping pagination")
            warnings.warn(
                f"{label}: cursor did not advance past {cursor}",
                LoopGuardTriggered,
                stacklevel=2,
            )
            result.loop_guard_triggered = True
            break

        cursor = next_cursor
        if settings.pacing_delay > 0:
            sleep(settings.pacing_delay)

    log_progress(
        label,
        f"Pagination finished: {result.page_count} pages, {result.total_records} records",
    )
    return result


def _advance(cursor: PaginationState, page: Page) -> PaginationState:
    if isinstance(cursor, OffsetCursor):
        total = page.total if page.total is not None else cursor.total
        return OffsetCursor(offset=cursor.offset + len(page.records or []), total=total)
    if page.next_cursor is None:
        return cursor
    return page.next_cursor


def _should_continue(
    cursor: PaginationState,
    next_cursor: PaginationState,
    page: Page,
    settings: PaginationSettings,
) -> bool:
    count = len(page.records)

    if isinstance(cursor, OffsetCursor):
        if count < settings.page_size:
            return False
        return next_cursor.total is None or next_cursor.offset < next_cursor.total

    more = page.has_more if page.has_more is not None else count >= settings.page_size
    if not more:
        return False

    if isinstance(cursor, CompositeCursor):
        return count >= settings.page_size

    if isinstance(next_cursor, TokenCursor):
        return bool(next_cursor.last_id)

    return True


def _drain_task(
    cursor: TaskCursor,
    source: ReportSource,
    on_batch: BatchSink,
    settings: PaginationSettings,
    sleep: Callable[[float], None],
    label: str,
) -> DrainResult:
    if cursor.task_id is None:
        cursor = TaskCursor(task_id=source.create_task(), status=TaskStatus.NEW)
        log_progress(label, f"Report task created: {cursor.task_id}")

    polls = 0
    while cursor.status != TaskStatus.DONE:
        if cursor.status == TaskStatus.ERROR:
            raise ReportGenerationFailed(
                f"Report task {cursor.task_id} failed on the provider side"
            )
        if cursor.status not in TaskStatus.WAITING:
            raise ReportGenerationFailed(
                f"Report task {cursor.task_id} returned unknown status '{cursor.status}'"
            )
        if settings.max_polls and polls >= settings.max_polls:
            raise ReportGenerationFailed(
                f"Report task {cursor.task_id} not ready after {polls} status checks"
            )
        if polls > 0:
            log_progress(
                label,
                f"Report is {cursor.status}, next check in {settings.poll_interval:g}s",
            )
            sleep(settings.poll_interval)

        cursor = replace(cursor, status=source.poll_task(cursor.task_id))
        polls += 1

    log_progress(label, f"Report {cursor.task_id} ready after {polls} status checks")
    if settings.ready_delay > 0:
        sleep(settings.ready_delay)

    records = source.download_task(cursor.task_id) or []
    chunk_size = settings.chunk_size or settings.page_size
    result = DrainResult(final_cursor=cursor)

    for start in range(0, len(records), chunk_size):
        chunk = records[start : start + chunk_size]
        on_batch(chunk, cursor)
        result.page_count += 1
        result.total_records += len(chunk)

    log_progress(
        label,
        f"Report downloaded: {result.total_records} records in {result.page_count} batches",
    )
    return result
