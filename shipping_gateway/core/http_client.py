"""
JSON HTTP client for shipping provider APIs

- Synchronous: the calling thread blocks for the round trip
- One timeout per call, taken from the owning shipping system
- No retry: a failed call surfaces once as WebClientError
"""
import logging
import threading
from typing import Any, Dict, Optional

import httpx

logger = logging.getLogger(__name__)


class WebClientError(Exception):
    """
    Raised when a request could not produce a JSON document.

    Covers transport failures, timeouts, HTTP error statuses and
    unparsable bodies.
    """
    def __init__(self, message: str, url: str, status_code: Optional[int] = None):
        self.url = url
        self.status_code = status_code
        super().__init__(message)


class JSONWebClient:
    """
    Thin JSON-over-HTTP client.

    Usage:
        with JSONWebClient(timeout=20.0) as client:
            data = client.get_json("https://api.example.com/v1/things", method="GET")
    """

    def __init__(
        self,
        timeout: Optional[float] = 20.0,
        keep_alive: bool = True,
        default_headers: Optional[Dict[str, str]] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        # 0 or less means no client-side timeout
        self.timeout = timeout if timeout and timeout > 0 else None
        self.keep_alive = keep_alive
        self.default_headers = {
            "Accept": "application/json",
            **(default_headers or {}),
        }
        if not keep_alive:
            self.default_headers["Connection"] = "close"

        self._transport = transport
        self._client: Optional[httpx.Client] = None
        self._client_lock = threading.Lock()

    def __enter__(self):
        self._get_client()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def _get_client(self) -> httpx.Client:
        client = self._client
        if client is None:
            with self._client_lock:
                if self._client is None:
                    self._client = httpx.Client(
                        timeout=self.timeout,
                        headers=self.default_headers,
                        transport=self._transport,
                        follow_redirects=True,
                    )
                client = self._client
        return client

    def close(self) -> None:
        """Close the underlying connection pool."""
        with self._client_lock:
            client, self._client = self._client, None
        if client is not None:
            client.close()

    def get_json(
        self,
        url: str,
        method: str = "GET",
        headers: Optional[Dict[str, str]] = None,
        body: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """
        Perform a request and return the parsed JSON response.

        Args:
            url: Absolute URL
            method: HTTP method
            headers: Per-request headers (e.g. Authorization)
            body: JSON body, sent when not None

        Returns:
            Parsed JSON document (None for an empty body)

        Raises:
            WebClientError: On connection/timeout, HTTP status >= 400, or bad JSON
        """
        client = self._get_client()
        logger.debug(f"{method} {url}")

        try:
            response = client.request(method, url, headers=headers, json=body)
        except httpx.TimeoutException as e:
            raise WebClientError(f"Timeout calling {method} {url}", url) from e
        except httpx.HTTPError as e:
            raise WebClientError(f"Connection failure calling {method} {url}: {e}", url) from e

        if response.status_code >= 400:
            raise WebClientError(
                f"{method} {url} returned HTTP {response.status_code}: {response.text[:500]}",
                url,
                status_code=response.status_code,
            )

        if not response.content:
            return None

        try:
            return response.json()
        except ValueError as e:
            raise WebClientError(f"Invalid JSON in response from {method} {url}", url,
                                 status_code=response.status_code) from e
