"""
Unit tests for provider adapters and normalizers.
"""

from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest

from marketsync.errors import PermanentRequestError, RateLimited
from marketsync.extract.http_client import ApiResponse
from marketsync.extract.moysklad import (
    MoyskladSource,
    extract_uuid_from_href,
    normalize_stock_rows,
    normalize_store,
)
from marketsync.extract.ozon_orders import OzonOrdersSource, normalize_posting
from marketsync.extract.ozon_stocks import OzonStocksSource, normalize_stock
from marketsync.extract.pagination import CompositeCursor, OffsetCursor, TokenCursor
from marketsync.extract.rate_limiter import RateLimiter
from marketsync.extract.transport import RetryingTransport, RetryPolicy
from marketsync.extract.wb_cards import WbCardsSource, normalize_card
from marketsync.extract.wb_orders import WbOrdersSource, normalize_order
from marketsync.extract.wb_remains import WbRemainsSource, normalize_remains
from marketsync.utils.dates import DateRange

MS = "https://api.moysklad.ru/api/remap/1.2/entity"


def _transport(**policy):
    return RetryingTransport(RetryPolicy(**policy), sleep=MagicMock())


def _client(*bodies):
    client = MagicMock()
    responses = [ApiResponse(status=200, body=body) for body in bodies]
    client.get.side_effect = responses
    client.post.side_effect = responses
    return client


class TestWbOrders:
    """Test the statistics orders adapter."""

    def test_next_cursor_is_last_change_plus_1ms(self):
        """Test the next dateFrom follows the last order's lastChangeDate."""
        client = _client(
            [
                {"srid": "a", "lastChangeDate": "2024-01-15T13:00:00"},
                {"srid": "b", "lastChangeDate": "2024-01-15T13:30:00"},
            ]
        )
        source = WbOrdersSource(client, _transport())
        page = source.fetch_page(CompositeCursor("2024-01-01T00:00:00.000Z"))

        assert len(page.records) == 2
        assert page.next_cursor == CompositeCursor("2024-01-15T10:30:00.001Z", "b")
        assert page.has_more is None
        client.get.assert_called_once_with(
            "/api/v1/supplier/orders",
            params={"dateFrom": "2024-01-01T00:00:00.000Z", "flag": 0},
        )

    def test_empty_page_keeps_cursor(self):
        """Test an empty list keeps the cursor unchanged."""
        cursor = CompositeCursor("2024-01-01T00:00:00.000Z")
        page = WbOrdersSource(_client([]), _transport()).fetch_page(cursor)
        assert page.records == []
        assert page.next_cursor == cursor

    def test_non_list_body_is_permanent(self):
        """Test an object body is a malformed mandatory payload."""
        with pytest.raises(PermanentRequestError):
            WbOrdersSource(_client({"errors": ["x"]}), _transport()).fetch_page(CompositeCursor("t"))

    def test_rate_limited_waits_fixed_time(self):
        """Test a 429 without Retry-After waits the statistics API's fixed 65s."""
        client = MagicMock()
        client.get.side_effect = [
            RateLimited("Too Many Requests", status=429),
            ApiResponse(status=200, body=[]),
        ]
        sleep = MagicMock()
        transport = RetryingTransport(RetryPolicy(rate_limit_wait=65.0), sleep=sleep)
        WbOrdersSource(client, transport).fetch_page(CompositeCursor("t"))
        sleep.assert_called_once_with(65.0)

    def test_normalize_order(self):
        """Test defaults for missing order fields."""
        row = normalize_order({"srid": "s1", "gNumber": "g", "date": "d", "lastChangeDate": "l", "nmId": 5})
        assert row["srid"] == "s1"
        assert row["total_price"] == 0
        assert row["is_cancel"] is False
        assert row["nm_id"] == 5
        assert row["brand"] is None


class TestWbCards:
    """Test the content cards adapter."""

    def test_first_request_has_no_cursor(self):
        """Test the initial request sends only the limit."""
        client = _client({"cards": [], "cursor": {}})
        WbCardsSource(client, _transport(), page_limit=100).fetch_page(CompositeCursor())

        body = client.post.call_args.args[1]
        assert body["settings"]["cursor"] == {"limit": 100}
        assert body["settings"]["filter"] == {"withPhoto": -1}

    def test_echoes_server_cursor(self):
        """Test the server cursor becomes the next request cursor."""
        client = _client(
            {
                "cards": [{"nmID": 1}, {"nmID": 2}],
                "cursor": {"updatedAt": "2024-01-15T10:00:00Z", "nmID": 2, "total": 2},
            }
        )
        source = WbCardsSource(client, _transport(), page_limit=2)
        page = source.fetch_page(CompositeCursor("2024-01-14T00:00:00Z", "1"))

        sent = client.post.call_args.args[1]["settings"]["cursor"]
        assert sent == {"limit": 2, "updatedAt": "2024-01-14T00:00:00Z", "nmID": 1}
        assert page.next_cursor == CompositeCursor("2024-01-15T10:00:00Z", 2)
        assert page.has_more is True

    def test_nested_data_and_missing_cursor(self):
        """Test cards under data.cards and a missing cursor end pagination."""
        client = _client({"data": {"cards": [{"nmID": 1}]}})
        page = WbCardsSource(client, _transport()).fetch_page(CompositeCursor())
        assert page.records == [{"nmID": 1}]
        assert page.has_more is False

    def test_check_connection(self):
        """Test the probe reports failures instead of raising."""
        client = MagicMock()
        client.post.side_effect = PermanentRequestError("unauthorized", status=401)
        assert WbCardsSource(client, _transport()).check_connection() is False
        assert WbCardsSource(_client({"cards": []}), _transport()).check_connection() is True

    def test_normalize_card(self):
        """Test card fields and JSON defaults."""
        row = normalize_card({"nmID": 9, "subjectName": "Shirts", "updatedAt": "u"})
        assert row["nm_id"] == 9
        assert row["vendor_code"] == ""
        assert row["subject"] == "Shirts"
        assert row["characteristics"] == []
        assert row["dimensions"] == {}


class TestWbRemains:
    """Test the warehouse remains report adapter."""

    def test_create_poll_download(self):
        """Test the task id, status and download shapes."""
        client = _client(
            {"data": {"taskId": "abc"}},
            {"data": {"status": "done"}},
            {"data": [{"nmId": 1}]},
        )
        source = WbRemainsSource(client, _transport())

        assert source.create_task() == "abc"
        assert source.poll_task("abc") == "done"
        assert source.download_task("abc") == [{"nmId": 1}]
        assert client.get.call_args_list[1].args[0] == "/api/v1/warehouse_remains/tasks/abc/status"

    def test_missing_task_id(self):
        """Test a response without a task id is a permanent error."""
        with pytest.raises(PermanentRequestError):
            WbRemainsSource(_client({"data": {}}), _transport()).create_task()

    def test_download_uses_its_own_policy(self):
        """Test a 429 during download waits the download-specific time."""
        client = MagicMock()
        client.get.side_effect = [RateLimited("slow down", status=429), ApiResponse(200, [])]
        transport = _transport(rate_limit_wait=60.0)
        source = WbRemainsSource(client, transport, download_policy=RetryPolicy(rate_limit_wait=300.0))

        assert source.download_task("abc") == []
        transport.sleep.assert_called_once_with(300.0)

    def test_normalize_flattens_warehouses(self):
        """Test one row per warehouse and items without nmId skipped."""
        rows = normalize_remains(
            [
                {
                    "nmId": 10,
                    "techSize": "M",
                    "barcode": "200",
                    "warehouses": [
                        {"warehouseName": "Koledino", "quantity": "5"},
                        {"warehouseName": "Kazan", "quantity": None},
                    ],
                },
                {"warehouses": [{"warehouseName": "Koledino", "quantity": 1}]},
            ]
        )
        assert rows == [
            {"nm_id": 10, "size": "M", "warehouse": "Koledino", "quantity": 5, "barcode": "200"},
            {"nm_id": 10, "size": "M", "warehouse": "Kazan", "quantity": 0, "barcode": "200"},
        ]


class TestMoysklad:
    """Test the MoySklad adapter."""

    def test_stock_page_uses_heavy_class(self):
        """Test the stock report is requested under the heavy limiter class."""
        client = _client({"rows": [{"stockByStore": []}], "meta": {"size": 2500}})
        limiter = MagicMock(spec=RateLimiter)
        limiter.wait_for_slot.return_value = 0.0
        transport = RetryingTransport(RetryPolicy(), limiter, sleep=MagicMock())

        page = MoyskladSource(client, transport, page_limit=1000).fetch_stock_page(OffsetCursor(offset=1000))

        assert page.total == 2500
        assert limiter.wait_for_slot.call_args.args[0] == "heavy"
        assert client.get.call_args.kwargs["params"] == {
            "limit": 1000,
            "offset": 1000,
            "stockMode": "byStore",
        }

    def test_stores_page(self):
        """Test the store listing uses offset and the field list."""
        client = _client({"rows": [{"id": "s1"}], "meta": {"size": 1}})
        page = MoyskladSource(client, _transport()).fetch_stores_page(OffsetCursor())
        assert page.records == [{"id": "s1"}]
        assert client.get.call_args.kwargs["params"]["fields"].startswith("id,name")

    def test_extract_uuid(self):
        """Test the uuid is the last href segment."""
        assert extract_uuid_from_href(f"{MS}/product/abc-123?expand=x") == "abc-123"
        assert extract_uuid_from_href(None) is None

    def test_normalize_store(self):
        """Test stores without an id are dropped."""
        assert normalize_store({"meta": {"href": f"{MS}/store/s9"}, "name": "Main"})["uuid"] == "s9"
        assert normalize_store({"name": "ghost"}) is None

    def test_normalize_stock_rows(self):
        """Test details per store and totals per product."""
        rows = [
            {
                "product": {"meta": {"href": f"{MS}/product/p1"}, "article": "A-1", "name": "Shirt"},
                "stockByStore": [
                    {"store": {"meta": {"href": f"{MS}/store/s1"}}, "stock": 5, "reserve": 1, "inTransit": 0},
                    {"store": {"meta": {"href": f"{MS}/store/s2"}}, "stock": 3, "reserve": 0, "inTransit": 2},
                    {"store": {}, "stock": 100},
                ],
            },
            {"product": {"meta": {"href": f"{MS}/product/p2"}}, "stockByStore": []},
            {"product": {}},
        ]
        details, aggregates = normalize_stock_rows(rows, snapshot_id=7)

        assert [(d["product_uuid"], d["store_uuid"], d["stock"]) for d in details] == [
            ("p1", "s1", 5),
            ("p1", "s2", 3),
        ]
        by_product = {a["product_uuid"]: a for a in aggregates}
        assert by_product["p1"]["total_stock"] == 8
        assert by_product["p1"]["total_reserve"] == 1
        assert by_product["p1"]["total_in_transit"] == 2
        assert by_product["p1"]["article"] == "A-1"
        assert by_product["p2"]["total_stock"] == 0
        assert by_product["p2"]["name"] is None
        assert by_product["p2"]["snapshot_id"] == 7


class TestOzon:
    """Test the Ozon adapters."""

    WINDOW = DateRange(
        date_from=datetime(2024, 1, 1, tzinfo=timezone.utc),
        date_to=datetime(2024, 1, 31, 23, 59, 59, tzinfo=timezone.utc),
    )

    def test_fbo_offset_page(self):
        """Test FBO postings come with the reported total."""
        client = _client({"result": {"postings": [{"posting_number": "1-1"}], "total": 2500}})
        source = OzonOrdersSource(client, _transport(), self.WINDOW)
        page = source.fetch_fbo_page(OffsetCursor(offset=2000))

        body = client.post.call_args.args[1]
        assert body["offset"] == 2000
        assert body["filter"] == {"since": "2024-01-01T00:00:00Z", "to": "2024-01-31T23:59:59Z"}
        assert page.total == 2500

    def test_fbo_empty_result_is_permanent(self):
        """Test a missing result object is a permanent error."""
        source = OzonOrdersSource(_client({}), _transport(), self.WINDOW)
        with pytest.raises(PermanentRequestError):
            source.fetch_fbo_page(OffsetCursor())

    def test_fbs_token_page(self):
        """Test FBS continues from the last posting number while has_next holds."""
        postings = [{"posting_number": f"n-{i}"} for i in range(2)]
        client = _client({"result": {"postings": postings, "has_next": True}})
        source = OzonOrdersSource(client, _transport(), self.WINDOW, page_limit=2)

        page = source.fetch_fbs_page(TokenCursor("n-0"))

        assert client.post.call_args.args[1]["last_id"] == "n-0"
        assert page.next_cursor == TokenCursor("n-1")
        assert page.has_more is True

    def test_fbs_short_page_ends(self):
        """Test a short FBS page ends pagination despite has_next."""
        client = _client({"result": {"postings": [{"posting_number": "x"}], "has_next": True}})
        page = OzonOrdersSource(client, _transport(), self.WINDOW, page_limit=1000).fetch_fbs_page(TokenCursor())
        assert page.has_more is False

    def test_stocks_page(self):
        """Test the product list continues while last_id is returned."""
        client = _client({"result": {"items": [{"product_id": 1}], "last_id": "next"}})
        page = OzonStocksSource(client, _transport()).fetch_page(TokenCursor())

        assert client.post.call_args.args[1]["last_id"] == ""
        assert page.next_cursor == TokenCursor("next")
        assert page.has_more is True

    def test_stocks_last_page(self):
        """Test an empty last_id ends pagination."""
        client = _client({"result": {"items": [{"product_id": 1}], "last_id": ""}})
        page = OzonStocksSource(client, _transport()).fetch_page(TokenCursor("prev"))
        assert page.next_cursor == TokenCursor(None)
        assert page.has_more is False

    def test_normalizers(self):
        """Test posting and stock column mapping."""
        posting = normalize_posting(
            {"posting_number": "1-2", "delivery_method": {"id": 15}, "products": [{"sku": 1}]}, "FBS"
        )
        assert posting["scheme"] == "FBS"
        assert posting["delivery_method_id"] == 15
        assert posting["financial_data"] == {}

        stock = normalize_stock({"product_id": 42, "offer_id": "SKU-42", "has_fbo_stocks": True})
        assert stock["sku"] == 42
        assert stock["name"] == "SKU-42"
        assert stock["fbo_visible_amount"] == 1
