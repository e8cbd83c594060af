"""
Wildberries statistics API adapter (supplier orders).

The orders endpoint returns up to 80 000 rows per call, ordered by
``lastChangeDate``, and admits one request per minute. The next page starts
1ms after the last row's ``lastChangeDate``.
"""

import time
from typing import Any, Callable, Dict, Optional

from marketsync.config import Config
from marketsync.errors import PermanentRequestError
from marketsync.extract.http_client import ApiClient
from marketsync.extract.pagination import CompositeCursor, Page
from marketsync.extract.rate_limiter import RateLimiter
from marketsync.extract.transport import RetryingTransport, RetryPolicy
from marketsync.utils.dates import next_date_from

ORDERS_ENDPOINT = "/api/v1/supplier/orders"


class WbOrdersSource:
    """
    Page fetcher for ``/api/v1/supplier/orders``.

    Args:
        client: ApiClient bound to the statistics API
        transport: Retrying transport (1 request/minute limiter)
        flag: WB ``flag`` parameter (0 = changes since dateFrom)
    """

    def __init__(self, client: ApiClient, transport: RetryingTransport, flag: int = 0):
        self.client = client
        self.transport = transport
        self.flag = flag

    def fetch_page(self, cursor: CompositeCursor) -> Page:
        """
        Fetch every order changed at or after ``cursor.high_water_timestamp``.

        Raises:
            PermanentRequestError: If the body is not a JSON array
        """
        params = {"dateFrom": cursor.high_water_timestamp, "flag": self.flag}
        response = self.transport.execute(
            lambda: self.client.get(ORDERS_ENDPOINT, params=params)
        )

        orders = response.body if response.body is not None else []
        if not isinstance(orders, list):
            raise PermanentRequestError(
                "Unexpected orders response format, expected a list",
                status=response.status,
                response_body=str(orders)[:500],
            )

        if not orders:
            return Page(records=[], next_cursor=cursor)

        last = orders[-1]
        next_cursor = CompositeCursor(
            high_water_timestamp=next_date_from(last["lastChangeDate"]),
            high_water_id=last.get("srid"),
        )
        return Page(records=orders, next_cursor=next_cursor)


def normalize_order(order: Dict[str, Any]) -> Dict[str, Any]:
    """Map a raw WB order to the ``wb_orders`` columns."""
    return {
        "srid": order.get("srid"),
        "g_number": order.get("gNumber"),
        "date": order.get("date"),
        "last_change_date": order.get("lastChangeDate"),
        "supplier_article": order.get("supplierArticle") or None,
        "tech_size": order.get("techSize") or None,
        "barcode": order.get("barcode") or None,
        "total_price": order.get("totalPrice") or 0,
        "discount_percent": order.get("discountPercent") or 0,
        "warehouse_name": order.get("warehouseName") or None,
        "is_cancel": bool(order.get("isCancel")),
        "dest_city_name": order.get("destCityName") or None,
        "country_name": order.get("countryName") or None,
        "oblast_okrug_name": order.get("oblastOkrugName") or None,
        "region_name": order.get("regionName") or None,
        "nm_id": order.get("nmId") or None,
        "category": order.get("category") or None,
        "brand": order.get("brand") or None,
    }


def build_wb_orders_source(
    sleep: Callable[[float], None] = time.sleep,
    session: Optional[Any] = None,
) -> WbOrdersSource:
    """Create the orders source from Config."""
    client = ApiClient(
        Config.WB_STATISTICS_URL,
        headers={"Authorization": Config.WB_API_TOKEN},
        timeout=Config.WB_TIMEOUT,
        session=session,
    )
    policy = RetryPolicy(
        max_retries=Config.WB_MAX_RETRIES,
        base_delay=Config.WB_RETRY_DELAY,
        max_delay=Config.MAX_BACKOFF,
        rate_limit_wait=Config.WB_ORDERS_RATE_LIMIT_WAIT,
    )
    limiter = RateLimiter({"normal": Config.WB_ORDERS_REQUESTS_PER_MINUTE})
    transport = RetryingTransport(policy, limiter, sleep=sleep, label="WB Orders API")
    return WbOrdersSource(client, transport, flag=Config.WB_ORDERS_FLAG)
