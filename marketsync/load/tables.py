"""
Table definitions for every synced entity.

Each spec names the natural key used for conflict resolution and the
transaction mode chosen for that source:

- wb_orders, wb_remains, ms_*: BATCH (a page is written or rejected as a whole)
- wb_cards, ozon_orders: PER_RECORD (one bad card or posting does not block the page)
- ozon_remains: SUB_BATCH (chunks of UPSERT_SUB_BATCH_SIZE rows)
"""

from datetime import datetime
from typing import Any, Dict

from marketsync.config import Config
from marketsync.load.upsert import TransactionMode, UpsertSpec

WB_ORDERS = UpsertSpec(
    table="wb_orders",
    columns=(
        "srid", "g_number", "date", "last_change_date", "supplier_article",
        "tech_size", "barcode", "total_price", "discount_percent", "warehouse_name",
        "is_cancel", "dest_city_name", "country_name", "oblast_okrug_name",
        "region_name", "nm_id", "category", "brand",
    ),
    conflict_columns=("srid",),
    update_columns=("last_change_date", "is_cancel", "total_price", "discount_percent"),
    touch_columns=("synced_at",),
    mode=TransactionMode.BATCH,
    sub_batch_size=1000,
)

WB_CARDS = UpsertSpec(
    table="wb_cards",
    columns=(
        "nm_id", "vendor_code", "brand", "title", "description", "category",
        "subject", "characteristics", "sizes", "photos", "video", "dimensions",
        "weight", "updated_at",
    ),
    conflict_columns=("nm_id",),
    update_columns=(
        "vendor_code", "brand", "title", "description", "category", "subject",
        "characteristics", "sizes", "photos", "video", "dimensions", "weight",
        "updated_at",
    ),
    touch_columns=("synced_at",),
    json_columns=("characteristics", "sizes", "photos", "dimensions"),
    mode=TransactionMode.PER_RECORD,
)

WB_REMAINS = UpsertSpec(
    table="wb_remains",
    columns=("nm_id", "size", "warehouse", "quantity", "barcode"),
    conflict_columns=("nm_id", "warehouse", "size"),
    update_columns=("quantity", "barcode"),
    touch_columns=("synced_at",),
    mode=TransactionMode.BATCH,
    sub_batch_size=1000,
)

MS_STORES = UpsertSpec(
    table="ms_stores",
    columns=("uuid", "name", "code", "external_code", "address", "created_at", "updated_at"),
    conflict_columns=("uuid",),
    update_columns=("name", "code", "external_code", "address", "updated_at"),
    mode=TransactionMode.BATCH,
)

MS_STOCK_DETAILS = UpsertSpec(
    table="ms_stock_details",
    columns=("snapshot_id", "product_uuid", "store_uuid", "stock", "reserve", "in_transit"),
    conflict_columns=("product_uuid", "store_uuid", "snapshot_id"),
    update_columns=("stock", "reserve", "in_transit"),
    mode=TransactionMode.BATCH,
    sub_batch_size=1000,
)

MS_PRODUCT_TOTALS = UpsertSpec(
    table="ms_product_totals",
    columns=(
        "product_uuid", "article", "name", "total_stock", "total_reserve",
        "total_in_transit", "snapshot_id",
    ),
    conflict_columns=("product_uuid",),
    update_columns=(
        "article", "name", "total_stock", "total_reserve", "total_in_transit",
        "snapshot_id",
    ),
    touch_columns=("updated_at",),
    mode=TransactionMode.BATCH,
    sub_batch_size=1000,
)

OZON_ORDERS = UpsertSpec(
    table="ozon_orders",
    columns=(
        "posting_number", "order_id", "order_number", "status", "delivery_method_id",
        "tpl_integration_type", "created_at", "in_process_at", "shipment_date",
        "delivering_date", "products", "analytics_data", "financial_data", "scheme",
    ),
    conflict_columns=("posting_number",),
    update_columns=("status", "products", "analytics_data", "financial_data"),
    touch_columns=("updated_at",),
    json_columns=("products", "analytics_data", "financial_data"),
    mode=TransactionMode.PER_RECORD,
)

OZON_REMAINS = UpsertSpec(
    table="ozon_remains",
    columns=(
        "sku", "product_id", "item_code", "category", "brand", "name",
        "fbo_visible_amount", "fbo_present_amount",
    ),
    conflict_columns=("sku",),
    update_columns=(
        "product_id", "item_code", "category", "brand", "name",
        "fbo_visible_amount", "fbo_present_amount",
    ),
    touch_columns=("synced_at",),
    mode=TransactionMode.SUB_BATCH,
    sub_batch_size=Config.UPSERT_SUB_BATCH_SIZE,
)

# Data table and its "last touched" column per run-log entity type
ENTITY_TABLES: Dict[str, tuple] = {
    "wb_orders": ("wb_orders", "synced_at"),
    "wb_cards": ("wb_cards", "synced_at"),
    "wb_remains": ("wb_remains", "synced_at"),
    "moysklad": ("ms_product_totals", "updated_at"),
    "ozon_orders_fbo": ("ozon_orders", "updated_at"),
    "ozon_orders_fbs": ("ozon_orders", "updated_at"),
    "ozon_stocks": ("ozon_remains", "synced_at"),
}


def create_snapshot(db: Any) -> int:
    """
    Open a new MoySklad stock snapshot.

    Returns:
        int: Snapshot id
    """
    rows = db.query(
        "INSERT INTO ms_snapshots (collected_at) VALUES (CURRENT_TIMESTAMP) RETURNING id"
    )
    return rows[0]["id"]


def reset_stale_stocks(db: Any, sync_started_at: datetime) -> int:
    """
    Zero the Ozon stock rows that the run did not touch.

    Returns:
        int: Number of rows reset
    """
    return db.execute(
        """
        UPDATE ozon_remains
        SET fbo_visible_amount = 0,
            fbo_present_amount = 0,
            synced_at = CURRENT_TIMESTAMP
        WHERE synced_at < %s
        """,
        (sync_started_at,),
    )


def table_stats(db: Any, entity_type: str) -> Dict[str, Any]:
    """
    Row count and rows touched in the last hour for an entity's table.
    """
    if entity_type not in ENTITY_TABLES:
        raise ValueError(f"Unsupported entity: {entity_type}")
    table, touched_column = ENTITY_TABLES[entity_type]
    rows = db.query(
        f"""
        SELECT COUNT(*) AS total,
               COUNT(*) FILTER (
                   WHERE {touched_column} > NOW() - INTERVAL '1 hour'
               ) AS updated_last_hour
        FROM {table}
        """
    )
    return {
        "table": table,
        "total": int(rows[0]["total"]),
        "updated_last_hour": int(rows[0]["updated_last_hour"]),
    }
