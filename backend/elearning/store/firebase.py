"""Minimal REST client for a hosted realtime document tree."""

from __future__ import annotations

import logging
from typing import Any, Dict, Mapping, Optional
from urllib.parse import quote

import httpx

from ..errors import StoreError
from .base import split_path

logger = logging.getLogger(__name__)


class FirebaseDocumentStore:
    """Reads and writes paths through ``{base_url}/{path}.json``.

    A client may be injected (tests pass one built on ``httpx.MockTransport``);
    otherwise a short-lived ``httpx.AsyncClient`` is opened per call.
    """

    def __init__(
        self,
        base_url: str,
        *,
        auth_token: Optional[str] = None,
        timeout_seconds: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        if not base_url:
            raise RuntimeError("ELEARNING_FIREBASE_URL must be configured for the firebase store backend.")
        self._base_url = base_url.rstrip("/")
        self._auth_token = auth_token
        self._timeout = timeout_seconds
        self._client = client

    def _url(self, path: str) -> str:
        encoded = "/".join(quote(segment, safe="") for segment in split_path(path))
        return f"{self._base_url}/{encoded}.json"

    def _params(self) -> Dict[str, str]:
        return {"auth": self._auth_token} if self._auth_token else {}

    async def _request(self, method: str, path: str, payload: Any = None) -> httpx.Response:
        url = self._url(path)
        client = self._client or httpx.AsyncClient(timeout=self._timeout)
        close_client = self._client is None
        kwargs: Dict[str, Any] = {"params": self._params()}
        if payload is not None:
            kwargs["json"] = payload
        try:
            response = await client.request(method, url, **kwargs)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning("Document store %s %s failed: %s", method, path, exc)
            raise StoreError(f"Document store {method} {path} failed: {exc}") from exc
        finally:
            if close_client:
                await client.aclose()
        return response

    async def get(self, path: str) -> Optional[Any]:
        response = await self._request("GET", path)
        try:
            return response.json()
        except ValueError as exc:
            raise StoreError(f"Document store returned invalid JSON for {path}: {exc}") from exc

    async def set(self, path: str, value: Any) -> None:
        if value is None:
            await self._request("DELETE", path)
            return
        await self._request("PUT", path, value)

    async def update(self, path: str, fields: Mapping[str, Any]) -> None:
        if not fields:
            return
        await self._request("PATCH", path, dict(fields))

    async def exists(self, path: str) -> bool:
        return await self.get(path) is not None


__all__ = ["FirebaseDocumentStore"]
