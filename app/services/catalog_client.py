"""Utilities for communicating with the remote media catalog."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import httpx

from ..config import Settings

logger = logging.getLogger(__name__)


class CatalogRequestError(RuntimeError):
    """Raised when a catalog page could not be fetched or understood."""


@dataclass(slots=True)
class CatalogPage:
    """Container for a page of catalog items and the reported total size."""

    items: list[dict[str, Any]]
    total: int = 0
    offset: int = 0


class CatalogClient:
    """Thin wrapper around the remote catalog HTTP API."""

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        self._settings = settings
        self._client = http_client
        self._url = str(settings.catalog_api_url)
        self._page_size = settings.catalog_page_size
        self._timeout = httpx.Timeout(settings.catalog_request_timeout)

    @property
    def page_size(self) -> int:
        return self._page_size

    def _headers(self) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "User-Agent": f"{self._settings.app_name} (kioskplay)",
        }
        if self._settings.catalog_api_token:
            headers["Authorization"] = f"Token {self._settings.catalog_api_token}"
        return headers

    async def fetch_page(self, offset: int = 0) -> CatalogPage:
        """Fetch one page of media starting at ``offset``."""

        params = {"size": str(self._page_size), "offset": str(offset)}
        logger.info("Fetching catalog page at offset %s", offset)
        try:
            response = await self._client.get(
                self._url,
                headers=self._headers(),
                params=params,
                timeout=self._timeout,
            )
        except httpx.HTTPError as exc:
            raise CatalogRequestError(
                f"Catalog request at offset {offset} failed: {exc.__class__.__name__}"
            ) from exc

        if response.status_code >= 400:
            raise CatalogRequestError(
                f"Catalog responded with HTTP {response.status_code} at offset {offset}"
            )

        try:
            data = response.json()
        except ValueError as exc:
            raise CatalogRequestError(
                f"Unexpected non-JSON catalog response at offset {offset}"
            ) from exc

        body = self._unwrap(data)
        medias = body.get("medias")
        if not isinstance(medias, list):
            raise CatalogRequestError(
                f"Catalog response at offset {offset} is missing the media list"
            )

        items = [entry for entry in medias if isinstance(entry, dict)]
        if len(items) != len(medias):
            logger.warning(
                "Dropped %s malformed catalog entries at offset %s",
                len(medias) - len(items),
                offset,
            )
        total = self._extract_total_count(body, fallback=offset + len(items))
        return CatalogPage(items=items, total=total, offset=offset)

    @staticmethod
    def _unwrap(data: Any) -> dict[str, Any]:
        if not isinstance(data, dict):
            return {}
        nested = data.get("response")
        if isinstance(nested, dict):
            return nested
        return data

    @staticmethod
    def _extract_total_count(body: dict[str, Any], *, fallback: int) -> int:
        raw_total = body.get("qtd_medias")
        try:
            total = int(raw_total)
        except (TypeError, ValueError):
            return fallback
        return max(total, 0)
