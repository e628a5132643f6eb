"""
Remote API client for the commerce backend and the messaging provider.

One shared httpx.AsyncClient is used for every call. Failures are
classified into the taxonomy in pharmabot.core.exceptions:

    httpx.TimeoutException / httpx.TransportError  -> TransportError
    non-2xx                                        -> HttpError
    body is not JSON                               -> DecodeError

Retry policy: idempotent-enough verbs (GET/POST/PUT/PATCH) are retried on
TransportError and 5xx up to `max_retries` total attempts with a fixed
backoff. 4xx and DecodeError are raised at once. Non-idempotent creates
pass retry=False.
"""
import asyncio
import logging
from typing import Any, Dict, List, Mapping, Optional

import httpx

from pharmabot.core.exceptions import DecodeError, HttpError, RemoteServiceError, TransportError
from pharmabot.schemas.media import MediaDownload

logger = logging.getLogger(__name__)

RETRYABLE_METHODS = frozenset({"GET", "POST", "PUT", "PATCH"})
LIST_KEYS = ("results", "data")


def extract_list(response: Any, resource: str = "resource") -> List[Any]:
    """
    Single list-normalization point for backend responses.

    Accepts a bare list, {"results": [...]} (paginated) or {"data": [...]}.
    Anything else is treated as empty and logged.
    """
    if isinstance(response, list):
        return response
    if isinstance(response, dict):
        for key in LIST_KEYS:
            value = response.get(key)
            if isinstance(value, list):
                return value
    logger.warning(f"[ApiClient] Unexpected {resource} response shape: {type(response).__name__}")
    return []


class ApiClient:
    """Async JSON client with retry and error classification."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 15.0,
        max_retries: int = 3,
        backoff: float = 1.0,
        auth_token: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.max_retries = max(1, max_retries)
        self.backoff = backoff
        self.auth_token = auth_token
        self._client = client or httpx.AsyncClient(timeout=timeout)

    def _url(self, endpoint: str) -> str:
        if endpoint.startswith(("http://", "https://")):
            return endpoint
        return f"{self.base_url}/{endpoint.lstrip('/')}"

    def _headers(self, url: str, extra: Optional[Mapping[str, str]]) -> Dict[str, str]:
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        # Backend token only goes to the backend, never to third parties
        if self.auth_token and url.startswith(self.base_url):
            headers["Authorization"] = self.auth_token
        if extra:
            headers.update(extra)
        return headers

    async def request(
        self,
        endpoint: str,
        method: str = "GET",
        body: Any = None,
        params: Optional[Mapping[str, Any]] = None,
        headers: Optional[Mapping[str, str]] = None,
        retry: bool = True,
    ) -> Any:
        """
        Issue one logical call and return the parsed JSON body (None when empty).

        Raises:
            TransportError: network failure or timeout (after retries)
            HttpError: non-2xx (5xx after retries, 4xx immediately)
            DecodeError: response body is not JSON
        """
        method = method.upper()
        url = self._url(endpoint)
        attempts = max(1, self.max_retries) if retry and method in RETRYABLE_METHODS else 1

        for attempt in range(1, attempts + 1):
            try:
                response = await self._send(method, url, body, params, headers)
                return self._decode(response, url)
            except RemoteServiceError as e:
                if not e.retryable or attempt >= attempts:
                    raise
                logger.warning(
                    f"[ApiClient] {method} {url} failed ({type(e).__name__}), "
                    f"attempt {attempt}/{attempts}, retrying in {self.backoff}s"
                )
                await asyncio.sleep(self.backoff)

    async def _send(
        self,
        method: str,
        url: str,
        body: Any,
        params: Optional[Mapping[str, Any]],
        headers: Optional[Mapping[str, str]],
    ) -> httpx.Response:
        try:
            response = await self._client.request(
                method,
                url,
                json=body,
                params=params,
                headers=self._headers(url, headers),
            )
        except httpx.TimeoutException as e:
            raise TransportError(f"Timeout calling {url}", url=url) from e
        except httpx.HTTPError as e:
            raise TransportError(f"Network error calling {url}: {e}", url=url) from e

        if response.is_error:
            raise HttpError(response.status_code, body=_safe_body(response), url=url)
        return response

    @staticmethod
    def _decode(response: httpx.Response, url: str) -> Any:
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise DecodeError(f"Non-JSON response from {url}", url=url) from e

    async def download(self, url: str, headers: Optional[Mapping[str, str]] = None) -> MediaDownload:
        """Fetch raw bytes (no JSON decoding, no retry)."""
        try:
            response = await self._client.get(url, headers=dict(headers or {}))
        except httpx.TimeoutException as e:
            raise TransportError(f"Timeout downloading {url}", url=url) from e
        except httpx.HTTPError as e:
            raise TransportError(f"Network error downloading {url}: {e}", url=url) from e

        if response.is_error:
            raise HttpError(response.status_code, body=_safe_body(response), url=url)

        content = response.content
        return MediaDownload(
            content=content,
            size=len(content),
            content_type=response.headers.get("content-type"),
        )

    async def aclose(self):
        await self._client.aclose()


def _safe_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text[:500]
