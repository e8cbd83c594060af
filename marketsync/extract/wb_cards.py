"""
Wildberries content API adapter (product cards).

Cards are listed with a server-issued ``(updatedAt, nmID)`` cursor that the
client echoes back on the next request.
"""

import time
from typing import Any, Callable, Dict, Optional

from marketsync.config import Config
from marketsync.errors import PermanentRequestError, SyncError
from marketsync.extract.http_client import ApiClient
from marketsync.extract.pagination import CompositeCursor, Page
from marketsync.extract.transport import RetryingTransport, RetryPolicy
from marketsync.utils.logging_utils import log_error, log_progress

CARDS_ENDPOINT = "/content/v2/get/cards/list"


class WbCardsSource:
    """
    Page fetcher for ``/content/v2/get/cards/list``.

    Args:
        client: ApiClient bound to the content API
        transport: Retrying transport
        page_limit: Cards per request (API maximum is 100)
    """

    def __init__(self, client: ApiClient, transport: RetryingTransport, page_limit: int = 100):
        self.client = client
        self.transport = transport
        self.page_limit = page_limit

    def _request(self, cursor: CompositeCursor, limit: int) -> Dict[str, Any]:
        request_cursor: Dict[str, Any] = {"limit": limit}
        if cursor.high_water_timestamp and cursor.high_water_id is not None:
            request_cursor["updatedAt"] = cursor.high_water_timestamp
            request_cursor["nmID"] = int(cursor.high_water_id)

        body = {"settings": {"cursor": request_cursor, "filter": {"withPhoto": -1}}}
        response = self.transport.execute(lambda: self.client.post(CARDS_ENDPOINT, body))

        data = response.body or {}
        if not isinstance(data, dict):
            raise PermanentRequestError(
                "Unexpected cards response format, expected an object",
                status=response.status,
                response_body=str(data)[:500],
            )
        return data

    def fetch_page(self, cursor: CompositeCursor) -> Page:
        """
        Fetch the cards following ``cursor``.

        The page reports ``has_more=False`` when the server sends no cursor.
        """
        data = self._request(cursor, self.page_limit)
        nested = data.get("data") or {}
        cards = data.get("cards") or nested.get("cards") or []
        server_cursor = data.get("cursor") or nested.get("cursor") or {}

        if server_cursor.get("updatedAt") and server_cursor.get("nmID") is not None:
            next_cursor = CompositeCursor(
                high_water_timestamp=server_cursor["updatedAt"],
                high_water_id=server_cursor["nmID"],
            )
            return Page(records=cards, next_cursor=next_cursor, has_more=True)

        return Page(records=cards, next_cursor=cursor, has_more=False)

    def check_connection(self) -> bool:
        """Request a single card to verify the token and endpoint."""
        try:
            self._request(CompositeCursor(), limit=1)
        except SyncError as e:
            log_error("WB Content API", f"Connection check failed: {e}")
            return False
        log_progress("WB Content API", "Connection OK")
        return True


def normalize_card(card: Dict[str, Any]) -> Dict[str, Any]:
    """Map a raw card to the ``wb_cards`` columns."""
    return {
        "nm_id": card.get("nmID"),
        "vendor_code": card.get("vendorCode") or "",
        "brand": card.get("brand") or None,
        "title": card.get("title") or None,
        "description": card.get("description") or None,
        "category": card.get("category") or None,
        "subject": card.get("subjectName") or card.get("subject") or None,
        "characteristics": card.get("characteristics") or [],
        "sizes": card.get("sizes") or [],
        "photos": card.get("photos") or [],
        "video": card.get("video") or None,
        "dimensions": card.get("dimensions") or {},
        "weight": card.get("weight") or None,
        "updated_at": card.get("updatedAt"),
    }


def build_wb_cards_source(
    sleep: Callable[[float], None] = time.sleep,
    session: Optional[Any] = None,
) -> WbCardsSource:
    """Create the cards source from Config."""
    client = ApiClient(
        Config.WB_CONTENT_URL,
        headers={"Authorization": Config.WB_API_TOKEN},
        timeout=Config.CARDS_TIMEOUT,
        session=session,
    )
    policy = RetryPolicy(
        max_retries=Config.CARDS_MAX_RETRIES,
        base_delay=Config.WB_RETRY_DELAY,
        max_delay=Config.MAX_BACKOFF,
    )
    transport = RetryingTransport(policy, sleep=sleep, label="WB Content API")
    return WbCardsSource(client, transport, page_limit=Config.CARDS_PAGE_LIMIT)
