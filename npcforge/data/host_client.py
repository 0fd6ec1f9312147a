"""Client for the host document store (collections, indexes, documents)."""

from __future__ import annotations

from contextlib import asynccontextmanager
import logging
from typing import Any, AsyncIterator, Protocol

import httpx

from .config import HostStoreConfig
from .models import CollectionInfo

logger = logging.getLogger(__name__)


class HostStoreError(RuntimeError):
    """Raised when the host store fails, times out or returns an error response."""

    def __init__(self, message: str, *, status_code: int | None = None, payload: Any | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.payload = payload

    @property
    def not_found(self) -> bool:
        return self.status_code == 404


class HostStore(Protocol):
    """Operations the engine consumes from the host document store."""

    async def list_collections(self) -> list[CollectionInfo]: ...

    async def get_index(self, collection: str, fields: list[str]) -> list[dict[str, Any]]: ...

    async def get_document(self, collection: str, doc_id: str) -> dict[str, Any] | None: ...

    async def get_documents(self, collection: str) -> list[dict[str, Any]]: ...


class HttpHostStore:
    """Async HTTP client for the host store REST bridge.

    Usable as an async context manager to share one connection pool across
    calls; outside a context every call opens a short-lived client.
    """

    def __init__(
        self,
        base_url: str | None = None,
        timeout_s: float | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        config = HostStoreConfig()
        self._base_url = (base_url or config.base_url).rstrip("/")
        self._timeout_s = timeout_s or config.timeout_s
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    def _make_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self._base_url,
            timeout=self._timeout_s,
            transport=self._transport,
            headers={"Accept": "application/json"},
        )

    async def __aenter__(self) -> "HttpHostStore":
        self._client = self._make_client()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    @property
    def base_url(self) -> str:
        return self._base_url

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._client is not None:
            yield self._client
            return
        async with self._make_client() as client:
            yield client

    async def _get(self, endpoint: str, params: dict[str, str] | None = None) -> Any:
        try:
            async with self._session() as client:
                response = await client.get(endpoint, params=params)
        except httpx.TimeoutException as exc:
            raise HostStoreError(f"Host store timed out: {endpoint}") from exc
        except httpx.TransportError as exc:
            raise HostStoreError(f"Host store unreachable: {endpoint} ({exc})") from exc
        except httpx.HTTPError as exc:
            raise HostStoreError(f"Host store request failed: {endpoint} ({exc})") from exc
        return self._handle_response(response)

    async def list_collections(self) -> list[CollectionInfo]:
        logger.info("[HostStore] Listing collections: url=%s", self._base_url)
        data = await self._get("/collections")
        if not isinstance(data, list):
            return []
        return [CollectionInfo.from_raw(item) for item in data if isinstance(item, dict)]

    async def get_index(self, collection: str, fields: list[str]) -> list[dict[str, Any]]:
        logger.info("[HostStore] Fetching index: collection=%s fields=%d", collection, len(fields))
        data = await self._get(f"/collections/{collection}/index", params={"fields": ",".join(fields)})
        if not isinstance(data, list):
            return []
        return [entry for entry in data if isinstance(entry, dict)]

    async def get_document(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        try:
            data = await self._get(f"/collections/{collection}/documents/{doc_id}")
        except HostStoreError as exc:
            if exc.not_found:
                return None
            raise
        return data if isinstance(data, dict) else None

    async def get_documents(self, collection: str) -> list[dict[str, Any]]:
        logger.info("[HostStore] Fetching documents: collection=%s", collection)
        data = await self._get(f"/collections/{collection}/documents")
        if not isinstance(data, list):
            return []
        return [doc for doc in data if isinstance(doc, dict)]

    def _handle_response(self, response: httpx.Response) -> Any:
        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            payload: Any | None = None
            try:
                payload = response.json()
            except ValueError:
                payload = response.text
            raise HostStoreError(
                f"Host store error ({response.status_code}).",
                status_code=response.status_code,
                payload=payload,
            ) from exc

        try:
            return response.json()
        except ValueError as exc:
            raise HostStoreError("Host store returned invalid JSON.", status_code=response.status_code) from exc
