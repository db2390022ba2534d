"""Object-storage collaborator for project attachments. File contents are opaque here."""
import logging
from typing import Optional, Protocol
from urllib.parse import quote

import httpx

from ..config import Settings
from ..errors import ExternalUnavailable

logger = logging.getLogger("agentflow-core.storage")

COLLABORATOR = "object-storage"


class ObjectStorage(Protocol):
    def put(self, key: str, data: bytes, mime_type: str) -> str:
        """Store bytes under key and return their public URL."""
        ...

    def delete(self, key: str) -> None:
        ...


class HttpObjectStorage:
    """
    Storage proxy speaking a plain HTTP object API.

    PUT {base_url}/objects/{key} uploads, DELETE removes. The upload response
    may carry {"url": ...}; otherwise the object URL itself is returned.
    """

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        timeout: float = 60.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.transport = transport

    @classmethod
    def from_settings(cls, settings: Settings) -> "HttpObjectStorage":
        if not settings.storage_base_url:
            raise ExternalUnavailable(COLLABORATOR, "AGENTFLOW_STORAGE_BASE_URL is not configured")
        return cls(settings.storage_base_url, settings.storage_api_key)

    def _object_url(self, key: str) -> str:
        return f"{self.base_url}/objects/{quote(key.lstrip('/'))}"

    def _client(self) -> httpx.Client:
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}
        return httpx.Client(timeout=self.timeout, headers=headers, transport=self.transport)

    def put(self, key: str, data: bytes, mime_type: str) -> str:
        url = self._object_url(key)
        try:
            with self._client() as client:
                response = client.put(url, content=data, headers={"Content-Type": mime_type})
                response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error(f"Upload of {key} failed with HTTP {e.response.status_code}")
            raise ExternalUnavailable(COLLABORATOR, f"HTTP {e.response.status_code}") from e
        except httpx.RequestError as e:
            logger.error(f"Upload of {key} failed: {e}")
            raise ExternalUnavailable(COLLABORATOR, str(e) or type(e).__name__) from e

        try:
            body = response.json()
        except ValueError:
            body = {}
        return body.get("url", url) if isinstance(body, dict) else url

    def delete(self, key: str) -> None:
        try:
            with self._client() as client:
                response = client.delete(self._object_url(key))
                if response.status_code != 404:
                    response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error(f"Delete of {key} failed with HTTP {e.response.status_code}")
            raise ExternalUnavailable(COLLABORATOR, f"HTTP {e.response.status_code}") from e
        except httpx.RequestError as e:
            logger.error(f"Delete of {key} failed: {e}")
            raise ExternalUnavailable(COLLABORATOR, str(e) or type(e).__name__) from e
