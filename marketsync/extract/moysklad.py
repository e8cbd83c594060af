"""
MoySklad API adapter (stores and stock by store report).

MoySklad throttles two request classes separately: ordinary entity reads
(45/min) and report endpoints (5/min). Both listings use offset pagination
with the total reported in ``meta.size``.
"""

import time
from typing import Any, Callable, Dict, List, Optional, Tuple

import pandas as pd

from marketsync.config import Config
from marketsync.errors import PermanentRequestError, SyncError
from marketsync.extract.http_client import ApiClient
from marketsync.extract.pagination import OffsetCursor, Page
from marketsync.extract.rate_limiter import RateLimiter
from marketsync.extract.transport import RetryingTransport, RetryPolicy
from marketsync.utils.logging_utils import log_error, log_progress, log_warning

STORES_ENDPOINT = "/entity/store"
STOCK_ENDPOINT = "/report/stock/byStore"
STORE_FIELDS = "id,name,code,externalCode,address,created,updated"

NORMAL = "normal"
HEAVY = "heavy"


class MoyskladSource:
    """
    Page fetchers for the store directory and the stock report.

    Args:
        client: ApiClient bound to the MoySklad JSON API
        transport: Retrying transport with a normal/heavy limiter
        page_limit: Rows per request
    """

    def __init__(self, client: ApiClient, transport: RetryingTransport, page_limit: int = 1000):
        self.client = client
        self.transport = transport
        self.page_limit = page_limit

    def _list(self, path: str, params: Dict[str, Any], request_class: str) -> Tuple[List, Optional[int]]:
        response = self.transport.execute(
            lambda: self.client.get(path, params=params), request_class=request_class
        )
        body = response.body or {}
        if not isinstance(body, dict):
            raise PermanentRequestError(
                f"Unexpected response format from {path}",
                status=response.status,
                response_body=str(body)[:500],
            )
        total = (body.get("meta") or {}).get("size")
        return body.get("rows") or [], total

    def fetch_stores_page(self, cursor: OffsetCursor) -> Page:
        rows, total = self._list(
            STORES_ENDPOINT,
            {"limit": self.page_limit, "offset": cursor.offset, "fields": STORE_FIELDS},
            NORMAL,
        )
        return Page(records=rows, total=total)

    def fetch_stock_page(self, cursor: OffsetCursor) -> Page:
        rows, total = self._list(
            STOCK_ENDPOINT,
            {"limit": self.page_limit, "offset": cursor.offset, "stockMode": "byStore"},
            HEAVY,
        )
        if rows and not any(row.get("stockByStore") for row in rows):
            log_warning("MoySklad API", f"No stockByStore data at offset {cursor.offset}")
        return Page(records=rows, total=total)

    def check_connection(self) -> bool:
        """Read one store to verify the token."""
        try:
            self._list(STORES_ENDPOINT, {"limit": 1}, NORMAL)
        except SyncError as e:
            log_error("MoySklad API", f"Connection check failed: {e}")
            return False
        log_progress("MoySklad API", "Connection OK")
        return True


def extract_uuid_from_href(href: Optional[str]) -> Optional[str]:
    """Return the last path segment of a MoySklad meta href."""
    if not href:
        return None
    return href.rstrip("/").split("/")[-1].split("?")[0] or None


def _meta_uuid(entity: Optional[Dict[str, Any]]) -> Optional[str]:
    return extract_uuid_from_href(((entity or {}).get("meta") or {}).get("href"))


def normalize_store(store: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Map a store row to the ``ms_stores`` columns, None when it has no id."""
    uuid = store.get("id") or _meta_uuid(store)
    if not uuid:
        return None
    return {
        "uuid": uuid,
        "name": store.get("name") or None,
        "code": store.get("code") or None,
        "external_code": store.get("externalCode") or None,
        "address": store.get("address") or None,
        "created_at": store.get("created"),
        "updated_at": store.get("updated"),
    }


def _clean(value: Any) -> Any:
    return None if pd.isna(value) else value


def normalize_stock_rows(
    rows: List[Dict[str, Any]], snapshot_id: int
) -> Tuple[List[Dict[str, Any]], List[Dict[str, Any]]]:
    """
    Split stock report rows into per-store details and per-product totals.

    Returns:
        (details, aggregates) ready for ``ms_stock_details`` and
        ``ms_product_totals``
    """
    details = []
    products = []
    for row in rows:
        product = row.get("product") or {}
        product_uuid = _meta_uuid(product)
        if not product_uuid:
            continue
        products.append(
            {
                "product_uuid": product_uuid,
                "article": product.get("article") or None,
                "name": product.get("name") or None,
            }
        )
        for item in row.get("stockByStore") or []:
            store_uuid = _meta_uuid(item.get("store"))
            if not store_uuid:
                continue
            details.append(
                {
                    "snapshot_id": snapshot_id,
                    "product_uuid": product_uuid,
                    "store_uuid": store_uuid,
                    "stock": item.get("stock", item.get("quantity")) or 0,
                    "reserve": item.get("reserve") or 0,
                    "in_transit": item.get("inTransit") or 0,
                }
            )

    if not products:
        return details, []

    detail_frame = pd.DataFrame(
        details,
        columns=["snapshot_id", "product_uuid", "store_uuid", "stock", "reserve", "in_transit"],
    )
    totals = detail_frame.groupby("product_uuid", sort=False)[
        ["stock", "reserve", "in_transit"]
    ].sum()
    names = pd.DataFrame(products).groupby("product_uuid", sort=False).agg(
        article=("article", "first"), name=("name", "first")
    )
    merged = names.join(totals, how="left").fillna(
        {"stock": 0, "reserve": 0, "in_transit": 0}
    )

    aggregates = []
    for product_uuid, row in merged.iterrows():
        aggregates.append(
            {
                "product_uuid": product_uuid,
                "article": _clean(row["article"]),
                "name": _clean(row["name"]),
                "total_stock": float(row["stock"]),
                "total_reserve": float(row["reserve"]),
                "total_in_transit": float(row["in_transit"]),
                "snapshot_id": snapshot_id,
            }
        )
    return details, aggregates


def build_moysklad_source(
    sleep: Callable[[float], None] = time.sleep,
    session: Optional[Any] = None,
) -> MoyskladSource:
    """Create the MoySklad source from Config."""
    client = ApiClient(
        Config.MS_BASE_URL,
        headers={
            "Authorization": f"Bearer {Config.MS_TOKEN}",
            "Accept-Encoding": "gzip",
        },
        timeout=Config.MS_TIMEOUT,
        session=session,
    )
    policy = RetryPolicy(
        max_retries=Config.MS_MAX_RETRIES,
        base_delay=Config.MS_RETRY_DELAY,
        max_delay=Config.MAX_BACKOFF,
    )
    limiter = RateLimiter(
        {NORMAL: Config.MS_NORMAL_PER_MINUTE, HEAVY: Config.MS_HEAVY_PER_MINUTE}
    )
    transport = RetryingTransport(policy, limiter, sleep=sleep, label="MoySklad API")
    return MoyskladSource(client, transport, page_limit=Config.MS_PAGE_LIMIT)
