"""Object-storage client for the hosted storage API.

Only the three calls the portal needs: upload, signed download URL and
remove. Buckets are private; downloads always go through short-lived
signed URLs.
"""

import logging
from urllib.parse import quote

import httpx

from ..core.config import get_settings
from .errors import UpstreamError

logger = logging.getLogger(__name__)

SIGNED_URL_TTL_SECONDS = 60


class StorageNotConfiguredError(UpstreamError):
    def __init__(self):
        super().__init__("Object storage is not configured", status_code=503)


class StorageClient:
    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        settings = get_settings()
        self.base_url = (base_url or settings.storage_url or "").rstrip("/")
        self.api_key = api_key or settings.storage_api_key
        self.http_client = http_client

    @property
    def is_configured(self) -> bool:
        return bool(self.base_url)

    def _headers(self, extra: dict[str, str] | None = None) -> dict[str, str]:
        headers = {}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
            headers["apikey"] = self.api_key
        if extra:
            headers.update(extra)
        return headers

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        if not self.is_configured:
            raise StorageNotConfiguredError()

        client = self.http_client or httpx.AsyncClient(timeout=30.0)
        try:
            response = await client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            logger.error(f"Storage request failed: {method} {url}: {e}")
            raise UpstreamError(f"Storage unreachable: {e}") from e
        finally:
            if self.http_client is None:
                await client.aclose()

        if response.status_code >= 400:
            logger.error(f"Storage error: {response.status_code} - {response.text}")
            raise UpstreamError(
                f"Storage error: {response.status_code}", status_code=response.status_code
            )
        return response

    def _object_url(self, bucket: str, path: str, prefix: str = "object") -> str:
        return f"{self.base_url}/{prefix}/{bucket}/{quote(path)}"

    async def upload(
        self,
        bucket: str,
        path: str,
        data: bytes,
        content_type: str | None = None,
    ) -> str:
        await self._request(
            "POST",
            self._object_url(bucket, path),
            content=data,
            headers=self._headers(
                {"Content-Type": content_type or "application/octet-stream", "x-upsert": "false"}
            ),
        )
        logger.info(f"Uploaded {len(data)} bytes to {bucket}/{path}")
        return path

    async def signed_url(
        self, bucket: str, path: str, expires_in: int = SIGNED_URL_TTL_SECONDS
    ) -> str:
        response = await self._request(
            "POST",
            self._object_url(bucket, path, prefix="object/sign"),
            json={"expiresIn": expires_in},
            headers=self._headers(),
        )
        signed = response.json().get("signedURL") or response.json().get("signedUrl")
        if not signed:
            raise UpstreamError("Could not generate download link")
        if signed.startswith("http"):
            return signed
        return f"{self.base_url}{signed}"

    async def remove(self, bucket: str, paths: list[str]) -> None:
        if not paths:
            return
        await self._request(
            "DELETE",
            f"{self.base_url}/object/{bucket}",
            json={"prefixes": paths},
            headers=self._headers(),
        )
        logger.info(f"Removed {len(paths)} object(s) from {bucket}")
