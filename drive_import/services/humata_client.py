"""HTTP adapter for the remote import service (Humata API)."""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from ..errors import PermanentError, RemoteServiceError
from ..protocols import ImportReceipt, RemoteStatus
from .rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://app.humata.ai"


class HumataClient:
    """
    HTTP client adapter for the remote importer.

    Implements IRemoteImporter protocol. Every call goes through the shared
    rate limiter. Failures raise RemoteServiceError carrying the HTTP status
    code (None for transport errors); retrying is the caller's job.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = DEFAULT_API_URL,
        rate_limiter: Optional[RateLimiter] = None,
        connect_timeout: float = 30.0,
        read_timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._rate_limiter = rate_limiter or RateLimiter()
        self._timeout = httpx.Timeout(read_timeout, connect=connect_timeout)
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self):
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            timeout=self._timeout,
            headers={"Authorization": f"Bearer {self._api_key}"},
            transport=self._transport,
        )
        return self

    async def __aexit__(self, *args):
        if self._client:
            await self._client.aclose()
            self._client = None

    async def upload(self, url: str, destination_folder_id: str) -> ImportReceipt:
        """Submit ``url`` for import into ``destination_folder_id``."""
        body = await self._request(
            "POST",
            "/api/v2/import-url",
            json={"url": url, "folder_id": destination_folder_id},
        )
        destination_id = self._extract_destination_id(body)
        if not destination_id:
            raise PermanentError("import response carries no document id", payload=body)
        return ImportReceipt(destination_id=destination_id, payload=body)

    async def get_status(self, destination_id: str) -> RemoteStatus:
        """Fetch processing status of an imported document."""
        body = await self._request("GET", f"/api/v1/pdf/{destination_id}")
        status = body.get("read_status") or body.get("status")
        message = body.get("message") or body.get("error")
        return RemoteStatus(status=status, message=message, payload=body)

    @staticmethod
    def _extract_destination_id(body: Dict[str, Any]) -> Optional[str]:
        data = body.get("data")
        if isinstance(data, dict):
            pdf = data.get("pdf")
            if isinstance(pdf, dict) and pdf.get("id"):
                return str(pdf["id"])
            if data.get("id"):
                return str(data["id"])
        if body.get("id"):
            return str(body["id"])
        return None

    async def _request(self, method: str, endpoint: str, json: Optional[Dict] = None) -> Dict[str, Any]:
        if not self._client:
            raise RuntimeError("HumataClient not initialized. Use 'async with' context.")

        await self._rate_limiter.acquire()
        logger.debug("%s %s", method, endpoint)
        try:
            response = await self._client.request(method, endpoint, json=json)
        except (httpx.RequestError, httpx.TimeoutException) as exc:
            raise RemoteServiceError(
                f"HTTP request failed on {method} {endpoint}: {type(exc).__name__}: {exc}"
            ) from exc

        if response.status_code >= 400:
            try:
                error_detail = response.json()
            except ValueError:
                error_detail = response.text
            message = error_detail
            if isinstance(error_detail, dict):
                message = error_detail.get("message") or error_detail.get("error") or error_detail
            raise RemoteServiceError(
                f"API error on {method} {endpoint}: {message}",
                status_code=response.status_code,
                payload=error_detail,
            )

        try:
            body = response.json()
        except ValueError as exc:
            raise RemoteServiceError(
                f"Failed to parse API response on {method} {endpoint}: {exc}",
                status_code=response.status_code,
                payload=response.text,
            ) from exc
        if not isinstance(body, dict):
            raise RemoteServiceError(
                f"Unexpected API response on {method} {endpoint}",
                status_code=response.status_code,
                payload=body,
            )
        return body
