"""Ozon seller API adapter (product list with FBO stock flags)."""

import time
from typing import Any, Callable, Dict, Optional

from marketsync.config import Config
from marketsync.errors import PermanentRequestError, SyncError
from marketsync.extract.http_client import ApiClient
from marketsync.extract.ozon_orders import build_ozon_client, build_ozon_transport
from marketsync.extract.pagination import Page, TokenCursor
from marketsync.extract.transport import RetryingTransport
from marketsync.utils.logging_utils import log_error, log_progress

PRODUCTS_ENDPOINT = "/v3/product/list"
MAX_PAGE_LIMIT = 100


class OzonStocksSource:
    """Page fetcher for ``/v3/product/list``, continued by ``last_id``."""

    def __init__(self, client: ApiClient, transport: RetryingTransport, page_limit: int = MAX_PAGE_LIMIT):
        self.client = client
        self.transport = transport
        self.page_limit = min(page_limit, MAX_PAGE_LIMIT)

    def _result(self, last_id: Optional[str], limit: int) -> Dict[str, Any]:
        body = {
            "filter": {"visibility": "ALL"},
            "limit": limit,
            "last_id": last_id or "",
        }
        response = self.transport.execute(
            lambda: self.client.post(PRODUCTS_ENDPOINT, body)
        )
        if not isinstance(response.body, dict):
            raise PermanentRequestError(
                "Unexpected product list response format",
                status=response.status,
                response_body=str(response.body)[:500],
            )
        return response.body.get("result") or {}

    def fetch_page(self, cursor: TokenCursor) -> Page:
        result = self._result(cursor.last_id, self.page_limit)
        last_id = result.get("last_id") or None
        return Page(
            records=result.get("items") or [],
            next_cursor=TokenCursor(last_id=last_id),
            has_more=bool(last_id),
        )

    def check_connection(self) -> bool:
        """Request a single product to verify the credentials."""
        try:
            self._result(None, 1)
        except SyncError as e:
            log_error("Ozon API", f"Connection check failed: {e}")
            return False
        log_progress("Ozon API", "Connection OK")
        return True


def normalize_stock(item: Dict[str, Any]) -> Dict[str, Any]:
    """Map a product list item to the ``ozon_remains`` columns."""
    amount = 1 if item.get("has_fbo_stocks") else 0
    return {
        "sku": item.get("product_id"),
        "product_id": item.get("product_id"),
        "item_code": item.get("offer_id"),
        "category": "",
        "brand": "",
        "name": item.get("offer_id") or "Ozon Product",
        "fbo_visible_amount": amount,
        "fbo_present_amount": amount,
    }


def build_ozon_stocks_source(
    sleep: Callable[[float], None] = time.sleep,
    session: Optional[Any] = None,
) -> OzonStocksSource:
    """Create the stocks source from Config."""
    return OzonStocksSource(
        build_ozon_client(session),
        build_ozon_transport(sleep, "Ozon Stocks API"),
        page_limit=Config.OZON_STOCKS_PAGE_LIMIT,
    )
