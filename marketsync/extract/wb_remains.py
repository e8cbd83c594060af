"""
Wildberries analytics API adapter (warehouse remains report).

The remains report is asynchronous: a task is created, its status polled
until ``done``, then the full report is downloaded in one call.
"""

import time
from typing import Any, Callable, Dict, List, Optional

from marketsync.config import Config
from marketsync.errors import PermanentRequestError
from marketsync.extract.http_client import ApiClient
from marketsync.extract.transport import RetryingTransport, RetryPolicy
from marketsync.utils.logging_utils import log_progress, log_warning

REMAINS_ENDPOINT = "/api/v1/warehouse_remains"


class WbRemainsSource:
    """
    Report source for ``/api/v1/warehouse_remains``.

    Status checks and downloads carry their own retry policies because the
    provider throttles them separately.
    """

    def __init__(
        self,
        client: ApiClient,
        transport: RetryingTransport,
        status_policy: Optional[RetryPolicy] = None,
        download_policy: Optional[RetryPolicy] = None,
    ):
        self.client = client
        self.transport = transport
        self.status_policy = status_policy
        self.download_policy = download_policy

    def create_task(self) -> str:
        response = self.transport.execute(lambda: self.client.get(REMAINS_ENDPOINT))
        task_id = ((response.body or {}).get("data") or {}).get("taskId")
        if not task_id:
            raise PermanentRequestError(
                "Report task id missing from response",
                status=response.status,
                response_body=str(response.body)[:500],
            )
        return task_id

    def poll_task(self, task_id: str) -> str:
        response = self.transport.execute(
            lambda: self.client.get(f"{REMAINS_ENDPOINT}/tasks/{task_id}/status"),
            policy=self.status_policy,
        )
        body = response.body or {}
        status = body.get("status") or (body.get("data") or {}).get("status")
        if not status:
            raise PermanentRequestError(
                f"Status missing from report task {task_id} response",
                status=response.status,
                response_body=str(body)[:500],
            )
        return status

    def download_task(self, task_id: str) -> List[Dict[str, Any]]:
        response = self.transport.execute(
            lambda: self.client.get(f"{REMAINS_ENDPOINT}/tasks/{task_id}/download"),
            policy=self.download_policy,
        )
        data = response.body
        if isinstance(data, list):
            return data
        if isinstance(data, dict) and isinstance(data.get("data"), list):
            return data["data"]
        raise PermanentRequestError(
            f"Unexpected download format for report task {task_id}",
            status=response.status,
            response_body=str(data)[:500],
        )


def normalize_remains(items: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    Flatten report items into one row per (product, size, warehouse).

    Items without a product id are skipped.
    """
    flattened = []
    skipped = 0
    for item in items:
        nm_id = item.get("nmID") or item.get("nmId") or item.get("nm_id")
        if not nm_id:
            skipped += 1
            continue
        for warehouse in item.get("warehouses") or []:
            flattened.append(
                {
                    "nm_id": nm_id,
                    "size": item.get("size") or item.get("techSize") or "",
                    "warehouse": warehouse.get("warehouseName") or "Unknown warehouse",
                    "quantity": _to_number(warehouse.get("quantity")),
                    "barcode": item.get("barcode") or None,
                }
            )

    if skipped:
        log_warning("WB Remains", f"Skipped {skipped} report items without nmId")
    log_progress(
        "WB Remains", f"Flattened {len(items)} items into {len(flattened)} rows"
    )
    return flattened


def _to_number(value: Any) -> int:
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return 0


def build_wb_remains_source(
    sleep: Callable[[float], None] = time.sleep,
    session: Optional[Any] = None,
) -> WbRemainsSource:
    """Create the remains source from Config."""
    client = ApiClient(
        Config.WB_REPORTS_URL,
        headers={"Authorization": Config.WB_API_TOKEN},
        timeout=Config.WB_TIMEOUT,
        session=session,
    )
    base = RetryPolicy(
        max_retries=Config.WB_MAX_RETRIES,
        base_delay=Config.WB_RETRY_DELAY,
        max_delay=Config.MAX_BACKOFF,
        rate_limit_wait=Config.REMAINS_RATE_LIMIT_WAIT,
    )
    download = RetryPolicy(
        max_retries=Config.WB_MAX_RETRIES,
        base_delay=Config.WB_RETRY_DELAY,
        max_delay=Config.MAX_BACKOFF,
        rate_limit_wait=Config.REMAINS_DOWNLOAD_RATE_LIMIT_WAIT,
    )
    transport = RetryingTransport(base, sleep=sleep, label="WB Analytics API")
    return WbRemainsSource(client, transport, status_policy=base, download_policy=download)
