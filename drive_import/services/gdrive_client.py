"""Source lister over the Google Drive v3 REST API."""
from __future__ import annotations

import logging
from collections import deque
from typing import Any, AsyncIterator, Dict, Optional

import httpx

from ..errors import SourceListingError
from ..models import DiscoveredFile
from ..utils.urls import extract_folder_id

logger = logging.getLogger(__name__)

DRIVE_API_URL = "https://www.googleapis.com"
FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"
FILE_FIELDS = "nextPageToken, files(id, name, mimeType, webContentLink, webViewLink, size)"
PAGE_SIZE = 100


class GoogleDriveClient:
    """
    Lists files of a Google Drive folder.

    Implements ISourceLister protocol. Authentication is an OAuth bearer
    token obtained outside the tool (``GOOGLE_ACCESS_TOKEN``).

    Usage:
        async with GoogleDriveClient(token) as drive:
            async for item in drive.list_files(folder_url, recursive=True):
                ...
    """

    def __init__(
        self,
        access_token: str,
        base_url: str = DRIVE_API_URL,
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._access_token = access_token
        self._base_url = base_url
        self._timeout = httpx.Timeout(timeout, connect=30.0)
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self):
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            timeout=self._timeout,
            headers={"Authorization": f"Bearer {self._access_token}"},
            transport=self._transport,
        )
        return self

    async def __aexit__(self, *args):
        if self._client:
            await self._client.aclose()
            self._client = None

    async def list_files(
        self,
        container_ref: str,
        recursive: bool = True,
        max_items: Optional[int] = None,
    ) -> AsyncIterator[DiscoveredFile]:
        """
        Lazily yield the files of a folder.

        Args:
            container_ref: Google Drive folder URL
            recursive: Descend into sub-folders
            max_items: Stop after this many files (None for unlimited)
        """
        root_id = extract_folder_id(container_ref)
        logger.info("[discover] Listing folder %s (recursive=%s, max=%s)", root_id, recursive, max_items or "unlimited")

        folders = deque([root_id])
        yielded = 0
        while folders:
            folder_id = folders.popleft()
            page_token: Optional[str] = None
            while True:
                page = await self._fetch_page(folder_id, page_token)
                for entry in page.get("files") or []:
                    if entry.get("mimeType") == FOLDER_MIME_TYPE:
                        if recursive:
                            folders.append(entry["id"])
                        continue
                    yield self._to_discovered(entry)
                    yielded += 1
                    if max_items is not None and yielded >= max_items:
                        logger.info("[discover] Reached max files limit (%d)", max_items)
                        return
                page_token = page.get("nextPageToken")
                if not page_token:
                    break
        logger.info("[discover] Listing complete: %d files", yielded)

    async def _fetch_page(self, folder_id: str, page_token: Optional[str]) -> Dict[str, Any]:
        if not self._client:
            raise RuntimeError("GoogleDriveClient not initialized. Use 'async with' context.")

        params = {
            "q": f"'{folder_id}' in parents and trashed = false",
            "fields": FILE_FIELDS,
            "pageSize": PAGE_SIZE,
            "supportsAllDrives": "true",
            "includeItemsFromAllDrives": "true",
        }
        if page_token:
            params["pageToken"] = page_token

        try:
            response = await self._client.get("/drive/v3/files", params=params)
        except (httpx.RequestError, httpx.TimeoutException) as exc:
            raise SourceListingError(f"Drive request failed for folder {folder_id}: {exc}") from exc

        if response.status_code >= 400:
            try:
                detail = response.json().get("error", {}).get("message")
            except (ValueError, AttributeError):
                detail = response.text
            raise SourceListingError(
                f"Drive API error for folder {folder_id}: {detail}",
                status_code=response.status_code,
            )
        try:
            return response.json()
        except ValueError as exc:
            raise SourceListingError(
                f"Unreadable Drive response for folder {folder_id}: {exc}",
                status_code=response.status_code,
            ) from exc

    @staticmethod
    def _to_discovered(entry: Dict[str, Any]) -> DiscoveredFile:
        size = entry.get("size")
        return DiscoveredFile(
            external_id=entry["id"],
            name=entry.get("name") or entry["id"],
            url=entry.get("webContentLink")
            or entry.get("webViewLink")
            or f"https://drive.google.com/file/d/{entry['id']}/view",
            mime_type=entry.get("mimeType"),
            size=int(size) if size is not None else None,
        )
