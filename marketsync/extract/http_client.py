"""
Thin HTTP client shared by the provider adapters.

Wraps a ``requests.Session`` with a base URL, static auth headers and a
fixed timeout, and converts every failure into the sync error taxonomy.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import requests

from marketsync.errors import (
    HttpError,
    PermanentRequestError,
    RateLimited,
    TransientServerError,
)


@dataclass
class ApiResponse:
    """Status, decoded JSON body and headers of a successful call."""

    status: int
    body: Any
    headers: Dict[str, str] = field(default_factory=dict)


class ApiClient:
    """
    Session-backed JSON client for one provider base URL.

    Args:
        base_url: Provider root, e.g. ``https://api-seller.ozon.ru``
        headers: Static headers (auth token, content type)
        timeout: Per-request timeout in seconds
        session: Optional pre-built session (tests inject a mock)
    """

    def __init__(
        self,
        base_url: str,
        headers: Dict[str, str],
        timeout: float,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update(
            {"Accept": "application/json", "Content-Type": "application/json"}
        )
        self.session.headers.update(headers)

    def request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json_body: Optional[Dict[str, Any]] = None,
    ) -> ApiResponse:
        """
        Perform one HTTP call.

        Raises:
            RateLimited: On HTTP 429
            TransientServerError: On 5xx, timeout or connection failure
            PermanentRequestError: On any other non-2xx or an undecodable body
        """
        url = f"{self.base_url}/{path.lstrip('/')}"
        try:
            response = self.session.request(
                method, url, params=params, json=json_body, timeout=self.timeout
            )
        except requests.exceptions.RequestException as e:
            raise TransientServerError(
                f"{method} {path} failed: {type(e).__name__}: {e}"
            ) from e

        headers = dict(response.headers)
        if not response.ok:
            raise self._error_for(method, path, response, headers)

        if not response.content:
            return ApiResponse(status=response.status_code, body=None, headers=headers)

        try:
            body = response.json()
        except ValueError as e:
            raise PermanentRequestError(
                f"{method} {path} returned a non-JSON body",
                status=response.status_code,
                response_body=response.text[:500],
                headers=headers,
            ) from e

        return ApiResponse(status=response.status_code, body=body, headers=headers)

    def get(self, path: str, params: Optional[Dict[str, Any]] = None) -> ApiResponse:
        return self.request("GET", path, params=params)

    def post(self, path: str, json_body: Dict[str, Any]) -> ApiResponse:
        return self.request("POST", path, json_body=json_body)

    def close(self) -> None:
        self.session.close()

    @staticmethod
    def _error_for(
        method: str, path: str, response: requests.Response, headers: Dict[str, str]
    ) -> HttpError:
        try:
            response_body = response.json()
        except ValueError:
            response_body = response.text[:500] or None

        status = response.status_code
        message = f"{method} {path} failed ({response.reason})"
        if status == 429:
            error_class = RateLimited
        elif status >= 500:
            error_class = TransientServerError
        else:
            error_class = PermanentRequestError
        return error_class(
            message, status=status, response_body=response_body, headers=headers
        )
