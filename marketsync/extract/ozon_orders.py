"""
Ozon seller API adapter (FBO and FBS postings).

FBO postings are listed by offset against ``result.total``; FBS postings
continue from the last posting number while ``has_next`` is set.
"""

import time
from typing import Any, Callable, Dict, List, Optional, Tuple

from marketsync.config import Config
from marketsync.errors import PermanentRequestError, SyncError
from marketsync.extract.http_client import ApiClient
from marketsync.extract.pagination import OffsetCursor, Page, TokenCursor
from marketsync.extract.transport import RetryingTransport, RetryPolicy
from marketsync.utils.dates import DateRange, to_iso_utc
from marketsync.utils.logging_utils import log_error, log_progress

FBO_ENDPOINT = "/v2/posting/fbo/list"
FBS_ENDPOINT = "/v3/posting/fbs/list"
MAX_PAGE_LIMIT = 1000


class OzonOrdersSource:
    """
    Page fetchers for FBO and FBS postings inside a fixed window.

    Args:
        client: ApiClient with Client-Id / Api-Key headers
        transport: Retrying transport
        window: Sync window (``since``/``to`` filter)
        page_limit: Postings per request, capped at 1000
    """

    def __init__(
        self,
        client: ApiClient,
        transport: RetryingTransport,
        window: DateRange,
        page_limit: int = MAX_PAGE_LIMIT,
    ):
        self.client = client
        self.transport = transport
        self.since = to_iso_utc(window.date_from, timespec="seconds")
        self.to = to_iso_utc(window.date_to, timespec="seconds")
        self.page_limit = min(page_limit, MAX_PAGE_LIMIT)

    def _body(self, limit: int) -> Dict[str, Any]:
        return {
            "dir": "ASC",
            "filter": {"since": self.since, "to": self.to},
            "limit": limit,
            "with": {"analytics_data": True, "financial_data": True},
        }

    def _result(self, path: str, body: Dict[str, Any]) -> Any:
        response = self.transport.execute(lambda: self.client.post(path, body))
        result = (response.body or {}).get("result") if isinstance(response.body, dict) else None
        if result is None:
            raise PermanentRequestError(
                f"Empty result from {path}",
                status=response.status,
                response_body=str(response.body)[:500],
            )
        return result

    def _fbo(self, offset: int, limit: int) -> Tuple[List[Dict[str, Any]], Optional[int]]:
        body = self._body(limit)
        body["offset"] = offset
        result = self._result(FBO_ENDPOINT, body)
        if isinstance(result, list):
            return result, None
        return result.get("postings") or [], result.get("total")

    def fetch_fbo_page(self, cursor: OffsetCursor) -> Page:
        postings, total = self._fbo(cursor.offset, self.page_limit)
        return Page(records=postings, total=total)

    def fetch_fbs_page(self, cursor: TokenCursor) -> Page:
        body = self._body(self.page_limit)
        body["last_id"] = cursor.last_id
        result = self._result(FBS_ENDPOINT, body)
        postings = result.get("postings") or []
        if not postings:
            return Page(records=[], next_cursor=cursor, has_more=False)

        has_more = bool(result.get("has_next")) and len(postings) >= self.page_limit
        next_cursor = TokenCursor(last_id=postings[-1].get("posting_number"))
        return Page(records=postings, next_cursor=next_cursor, has_more=has_more)

    def check_connection(self) -> bool:
        """Request a single FBO posting to verify the credentials."""
        try:
            self._fbo(0, 1)
        except SyncError as e:
            log_error("Ozon API", f"Connection check failed: {e}")
            return False
        log_progress("Ozon API", "Connection OK")
        return True


def normalize_posting(posting: Dict[str, Any], scheme: str) -> Dict[str, Any]:
    """Map a raw posting to the ``ozon_orders`` columns."""
    return {
        "posting_number": posting.get("posting_number"),
        "order_id": posting.get("order_id"),
        "order_number": posting.get("order_number"),
        "status": posting.get("status"),
        "delivery_method_id": (posting.get("delivery_method") or {}).get("id")
        or posting.get("delivery_method_id"),
        "tpl_integration_type": posting.get("tpl_integration_type"),
        "created_at": posting.get("created_at"),
        "in_process_at": posting.get("in_process_at"),
        "shipment_date": posting.get("shipment_date"),
        "delivering_date": posting.get("delivering_date"),
        "products": posting.get("products") or [],
        "analytics_data": posting.get("analytics_data") or {},
        "financial_data": posting.get("financial_data") or {},
        "scheme": posting.get("scheme") or scheme,
    }


def build_ozon_client(session: Optional[Any] = None) -> ApiClient:
    return ApiClient(
        Config.OZON_BASE_URL,
        headers={"Client-Id": Config.OZON_CLIENT_ID, "Api-Key": Config.OZON_API_KEY},
        timeout=Config.OZON_TIMEOUT,
        session=session,
    )


def build_ozon_transport(sleep: Callable[[float], None], label: str) -> RetryingTransport:
    policy = RetryPolicy(
        max_retries=Config.OZON_MAX_RETRIES,
        base_delay=1.0,
        max_delay=Config.MAX_BACKOFF,
    )
    return RetryingTransport(policy, sleep=sleep, label=label)


def build_ozon_orders_source(
    window: DateRange,
    sleep: Callable[[float], None] = time.sleep,
    session: Optional[Any] = None,
) -> OzonOrdersSource:
    """Create the postings source from Config."""
    return OzonOrdersSource(
        build_ozon_client(session),
        build_ozon_transport(sleep, "Ozon Orders API"),
        window,
        page_limit=Config.OZON_ORDERS_PAGE_LIMIT,
    )
