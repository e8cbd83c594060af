"""
Sync jobs: one StreamJob factory per data source.

Each factory wires a provider adapter, its normalizer, the table's upsert
engine and, where the stream resumes, its cursor store.
"""

import time
from datetime import timedelta
from typing import Any, Callable, Dict, List

from marketsync.config import Config
from marketsync.extract.moysklad import (
    build_moysklad_source,
    normalize_stock_rows,
    normalize_store,
)
from marketsync.extract.ozon_orders import build_ozon_orders_source, normalize_posting
from marketsync.extract.ozon_stocks import build_ozon_stocks_source, normalize_stock
from marketsync.extract.pagination import (
    CompositeCursor,
    OffsetCursor,
    PaginationSettings,
    TaskCursor,
    TokenCursor,
    drain_all,
)
from marketsync.extract.wb_cards import build_wb_cards_source, normalize_card
from marketsync.extract.wb_orders import build_wb_orders_source, normalize_order
from marketsync.extract.wb_remains import build_wb_remains_source, normalize_remains
from marketsync.load.checkpoint import CheckpointState, CursorStore
from marketsync.load.tables import (
    MS_PRODUCT_TOTALS,
    MS_STOCK_DETAILS,
    MS_STORES,
    OZON_ORDERS,
    OZON_REMAINS,
    WB_CARDS,
    WB_ORDERS,
    WB_REMAINS,
    create_snapshot,
    reset_stale_stocks,
)
from marketsync.load.upsert import BatchUpsertEngine, UpsertResult
from marketsync.sync_handler import RunResult, StreamJob, SyncRunner
from marketsync.utils.dates import (
    calculate_date_range,
    filter_by_date,
    parse_iso,
    to_iso_utc,
)
from marketsync.utils.logging_utils import log_progress, log_warning

Sleep = Callable[[float], None]


def _drop_keyless(records: List[Dict[str, Any]], key: str, section: str) -> List[Dict[str, Any]]:
    kept = [record for record in records if record.get(key) not in (None, "")]
    if len(kept) < len(records):
        log_warning(section, f"Skipped {len(records) - len(kept)} records without {key}")
    return kept


def wb_orders_jobs(db: Any, sleep: Sleep = time.sleep) -> List[StreamJob]:
    """
    Orders changed since the checkpoint, kept when created inside the window.

    The stored checkpoint never moves past the end of the window. Orders
    created today are filtered out, and the next day starts again from the
    first moment outside the old window, so they are picked up once today
    falls inside it.
    """
    window = calculate_date_range(Config.DAYS_TO_LOAD, Config.EXCLUDE_TODAY)
    window_start = CompositeCursor(high_water_timestamp=to_iso_utc(window.date_from))
    window_end = window.date_to + timedelta(milliseconds=1)
    source = build_wb_orders_source(sleep)
    engine = BatchUpsertEngine(db, WB_ORDERS)

    def clamp(cursor: CompositeCursor) -> CompositeCursor:
        if cursor.high_water_timestamp and parse_iso(cursor.high_water_timestamp) > window_end:
            return CompositeCursor(to_iso_utc(window_end), cursor.high_water_id)
        return cursor

    def resume(state: CheckpointState) -> CompositeCursor:
        if not state.last_timestamp:
            return window_start
        if parse_iso(state.last_timestamp) <= window.date_from:
            return window_start
        return clamp(state.as_composite())

    def persist(records: List[Dict[str, Any]], cursor: Any) -> UpsertResult:
        in_window = filter_by_date(records, "date", window)
        log_progress(
            "WB Orders", f"{len(in_window)} of {len(records)} orders inside {window.human_readable}"
        )
        orders = _drop_keyless([normalize_order(o) for o in in_window], "srid", "WB Orders")
        return engine.upsert(orders)

    return [
        StreamJob(
            entity_type="wb_orders",
            initial_cursor=window_start,
            fetcher=source.fetch_page,
            persist=persist,
            settings=PaginationSettings(
                page_size=Config.WB_ORDERS_PAGE_LIMIT,
                pacing_delay=Config.WB_ORDERS_PAGINATION_DELAY,
            ),
            checkpoint=CursorStore(db, "wb_orders"),
            resume=resume,
            checkpoint_cursor=clamp,
            date_from=to_iso_utc(window.date_from),
            date_to=to_iso_utc(window.date_to),
        )
    ]


def wb_cards_jobs(db: Any, sleep: Sleep = time.sleep) -> List[StreamJob]:
    """Cards updated after the stored ``(updatedAt, nmID)`` cursor."""
    source = build_wb_cards_source(sleep)
    engine = BatchUpsertEngine(db, WB_CARDS)

    def persist(records: List[Dict[str, Any]], cursor: Any) -> UpsertResult:
        cards = _drop_keyless([normalize_card(c) for c in records], "nm_id", "WB Cards")
        return engine.upsert(cards)

    return [
        StreamJob(
            entity_type="wb_cards",
            initial_cursor=CompositeCursor(),
            fetcher=source.fetch_page,
            persist=persist,
            settings=PaginationSettings(
                page_size=Config.CARDS_PAGE_LIMIT,
                pacing_delay=Config.CARDS_PAGINATION_DELAY,
            ),
            checkpoint=CursorStore(db, "wb_cards"),
            resume=CheckpointState.as_composite,
            check_api=source.check_connection,
        )
    ]


def wb_remains_jobs(db: Any, sleep: Sleep = time.sleep) -> List[StreamJob]:
    """Warehouse remains from a freshly generated report."""
    source = build_wb_remains_source(sleep)
    engine = BatchUpsertEngine(db, WB_REMAINS)
    details = {"report_items": 0}

    def persist(records: List[Dict[str, Any]], cursor: Any) -> UpsertResult:
        details["report_items"] += len(records)
        return engine.upsert(normalize_remains(records))

    return [
        StreamJob(
            entity_type="wb_remains",
            initial_cursor=TaskCursor(),
            fetcher=source,
            persist=persist,
            settings=PaginationSettings(
                page_size=Config.REMAINS_CHUNK_SIZE,
                poll_interval=Config.REMAINS_POLL_INTERVAL,
                ready_delay=Config.REMAINS_READY_DELAY,
                max_polls=Config.REMAINS_MAX_POLLS or None,
                chunk_size=Config.REMAINS_CHUNK_SIZE,
            ),
            details=details,
        )
    ]


def moysklad_jobs(db: Any, sleep: Sleep = time.sleep) -> List[StreamJob]:
    """
    Store directory, then a new snapshot of the stock by store report.

    Stores are synced in the ``before`` hook so the snapshot's details can
    reference them.
    """
    source = build_moysklad_source(sleep)
    stores_engine = BatchUpsertEngine(db, MS_STORES)
    details_engine = BatchUpsertEngine(db, MS_STOCK_DETAILS)
    totals_engine = BatchUpsertEngine(db, MS_PRODUCT_TOTALS)
    details: Dict[str, Any] = {
        "snapshot_id": None,
        "stores": 0,
        "stock_rows": 0,
        "product_totals": 0,
    }

    def persist_stores(rows: List[Dict[str, Any]], cursor: Any) -> None:
        stores = [store for store in map(normalize_store, rows) if store is not None]
        if len(stores) < len(rows):
            log_warning("MoySklad", f"Skipped {len(rows) - len(stores)} stores without id")
        details["stores"] += stores_engine.upsert(stores).success_count

    def before() -> None:
        drain_all(
            OffsetCursor(),
            source.fetch_stores_page,
            persist_stores,
            PaginationSettings(
                page_size=Config.MS_PAGE_LIMIT,
                pacing_delay=Config.MS_PAGINATION_DELAY,
            ),
            sleep=sleep,
            label="Pagination - moysklad stores",
        )
        details["snapshot_id"] = create_snapshot(db)
        log_progress("MoySklad", f"Created snapshot {details['snapshot_id']}")

    def persist(rows: List[Dict[str, Any]], cursor: Any) -> UpsertResult:
        stock_details, aggregates = normalize_stock_rows(rows, details["snapshot_id"])
        saved = details_engine.upsert(stock_details)
        totals = totals_engine.upsert(aggregates)
        details["stock_rows"] += len(rows)
        details["product_totals"] += totals.success_count
        return UpsertResult(
            success_count=saved.success_count,
            failures=saved.failures + totals.failures,
        )

    return [
        StreamJob(
            entity_type="moysklad",
            initial_cursor=OffsetCursor(),
            fetcher=source.fetch_stock_page,
            persist=persist,
            settings=PaginationSettings(
                page_size=Config.MS_PAGE_LIMIT,
                pacing_delay=Config.MS_HEAVY_REQUEST_DELAY,
            ),
            check_api=source.check_connection,
            before=before,
            details=details,
        )
    ]


def ozon_orders_jobs(db: Any, sleep: Sleep = time.sleep) -> List[StreamJob]:
    """FBO and FBS postings of the window, each as its own stream."""
    window = calculate_date_range(Config.DAYS_TO_LOAD, Config.EXCLUDE_TODAY)
    source = build_ozon_orders_source(window, sleep)
    engine = BatchUpsertEngine(db, OZON_ORDERS)
    settings = PaginationSettings(
        page_size=source.page_limit, pacing_delay=Config.OZON_PAGINATION_DELAY
    )

    def persist_for(scheme: str) -> Callable[[List[Dict[str, Any]], Any], UpsertResult]:
        def persist(records: List[Dict[str, Any]], cursor: Any) -> UpsertResult:
            postings = _drop_keyless(
                [normalize_posting(p, scheme) for p in records],
                "posting_number",
                f"Ozon {scheme}",
            )
            return engine.upsert(postings)

        return persist

    return [
        StreamJob(
            entity_type="ozon_orders_fbo",
            initial_cursor=OffsetCursor(),
            fetcher=source.fetch_fbo_page,
            persist=persist_for("FBO"),
            settings=settings,
            check_api=source.check_connection,
            date_from=source.since,
            date_to=source.to,
        ),
        StreamJob(
            entity_type="ozon_orders_fbs",
            initial_cursor=TokenCursor(),
            fetcher=source.fetch_fbs_page,
            persist=persist_for("FBS"),
            settings=settings,
            date_from=source.since,
            date_to=source.to,
        ),
    ]


def ozon_stocks_jobs(db: Any, sleep: Sleep = time.sleep) -> List[StreamJob]:
    """
    Full product list; products the run did not see are reset to zero stock.

    The reset only runs after a successful run that wrote at least one row.
    """
    source = build_ozon_stocks_source(sleep)
    engine = BatchUpsertEngine(db, OZON_REMAINS)
    details: Dict[str, Any] = {"products": 0, "reset_stale": 0}
    started: Dict[str, Any] = {}

    def before() -> None:
        started["at"] = db.query("SELECT CURRENT_TIMESTAMP AS now")[0]["now"]

    def persist(records: List[Dict[str, Any]], cursor: Any) -> UpsertResult:
        stocks = _drop_keyless([normalize_stock(i) for i in records], "sku", "Ozon Stocks")
        result = engine.upsert(stocks)
        details["products"] += result.success_count
        return result

    def after() -> None:
        if not details["products"]:
            log_warning("Ozon Stocks", "No products written, skipping stale stock reset")
            return
        details["reset_stale"] = reset_stale_stocks(db, started["at"])
        log_progress("Ozon Stocks", f"Reset {details['reset_stale']} stale stock rows")

    return [
        StreamJob(
            entity_type="ozon_stocks",
            initial_cursor=TokenCursor(),
            fetcher=source.fetch_page,
            persist=persist,
            settings=PaginationSettings(
                page_size=source.page_limit, pacing_delay=Config.OZON_PAGINATION_DELAY
            ),
            check_api=source.check_connection,
            before=before,
            after=after,
            details=details,
        )
    ]


JOBS: Dict[str, Callable[[Any, Sleep], List[StreamJob]]] = {
    "wb-orders": wb_orders_jobs,
    "wb-cards": wb_cards_jobs,
    "wb-remains": wb_remains_jobs,
    "moysklad": moysklad_jobs,
    "ozon-orders": ozon_orders_jobs,
    "ozon-stocks": ozon_stocks_jobs,
}

# Run log entity types written by each job
JOB_ENTITIES: Dict[str, List[str]] = {
    "wb-orders": ["wb_orders"],
    "wb-cards": ["wb_cards"],
    "wb-remains": ["wb_remains"],
    "moysklad": ["moysklad"],
    "ozon-orders": ["ozon_orders_fbo", "ozon_orders_fbs"],
    "ozon-stocks": ["ozon_stocks"],
}


def run_job(name: str, db: Any, sleep: Sleep = time.sleep) -> List[RunResult]:
    """
    Run every stream of a job, one after another.

    Raises:
        ValueError: If the job name is unknown
    """
    if name not in JOBS:
        raise ValueError(f"Unsupported job: {name}")
    runner = SyncRunner(db, sleep=sleep)
    return [runner.run(job) for job in JOBS[name](db, sleep)]
