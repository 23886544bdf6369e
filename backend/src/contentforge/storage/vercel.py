"""Vercel Blob adapter.

Talks to the Vercel Blob HTTP API directly:
- PUT  {api}/{pathname}  stores a public blob and returns its URL
- POST {api}/delete      deletes blobs by URL
"""

import logging
from urllib.parse import quote

import httpx

from contentforge.core.errors import StorageError
from contentforge.storage.base import BlobAdapter, StoredBlob

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://blob.vercel-storage.com"
API_VERSION = "7"


class VercelBlobAdapter(BlobAdapter):
    """Stores blobs in Vercel Blob storage with public access.

    Args:
        token: BLOB_READ_WRITE_TOKEN of the blob store
        client: Optional shared AsyncClient (tests pass one with a MockTransport)
        api_url: Blob API base URL
        timeout: Per-request timeout in seconds
    """

    def __init__(
        self,
        token: str | None,
        client: httpx.AsyncClient | None = None,
        api_url: str = DEFAULT_API_URL,
        timeout: float = 30.0,
    ):
        if not token:
            logger.warning(
                "BLOB_READ_WRITE_TOKEN is not set. Vercel Blob storage may not work correctly."
            )
        self.token = token
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self._client = client

    def _headers(self) -> dict[str, str]:
        return {
            "authorization": f"Bearer {self.token or ''}",
            "x-api-version": API_VERSION,
        }

    async def _send(self, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            if self._client is not None:
                response = await self._client.request(method, url, **kwargs)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.request(method, url, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise StorageError(
                f"Vercel Blob request failed with {e.response.status_code}: "
                f"{e.response.text}"
            ) from e
        except httpx.HTTPError as e:
            raise StorageError(f"Vercel Blob request failed: {e}") from e
        return response

    async def put(self, content: bytes, name: str, content_type: str) -> StoredBlob:
        headers = self._headers()
        headers["x-content-type"] = content_type
        headers["x-add-random-suffix"] = "1"

        response = await self._send(
            "PUT",
            f"{self.api_url}/{quote(name)}",
            content=content,
            headers=headers,
        )
        body = response.json()
        return StoredBlob(
            name=body.get("pathname", name),
            url=body["url"],
            size=len(content),
            content_type=body.get("contentType", content_type),
        )

    async def delete(self, name_or_url: str) -> None:
        # Deleting an unknown blob succeeds on the Vercel side
        await self._send(
            "POST",
            f"{self.api_url}/delete",
            json={"urls": [name_or_url]},
            headers=self._headers(),
        )
