"""Per-device blob cache for playlist assets.

Assets are stored in a local SQLite database keyed by their origin URL.
Entries expire ``max_age`` after they were fetched and are also evicted
once they have been idle for ``max_age``. The size ceiling is soft: the
sweep only runs after a write pushes the total over it (or on the
optional periodic timer), and the size check and the sweep are not
atomic.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Iterable

import httpx
from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..config import DEFAULT_CACHE_MAX_AGE_SECONDS, DEFAULT_CACHE_MAX_BYTES
from ..db_models import CachedAsset

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ResolvedAsset:
    """Where a renderer should read an asset from.

    ``payload`` holds the bytes when the asset is available locally. When
    it is ``None`` the renderer streams ``url`` directly.
    """

    url: str
    kind: str
    payload: bytes | None = None

    @property
    def is_cached(self) -> bool:
        return self.payload is not None

    @property
    def size(self) -> int:
        return len(self.payload) if self.payload is not None else 0


@dataclass
class CacheStats:
    total_size: int
    item_count: int
    max_size: int
    last_cleanup_at: datetime | None = None

    def to_payload(self) -> dict[str, Any]:
        return {
            "totalSize": self.total_size,
            "itemCount": self.item_count,
            "maxSize": self.max_size,
            "lastCleanupAt": (
                self.last_cleanup_at.isoformat() if self.last_cleanup_at else None
            ),
        }


class AssetCache:
    """Fetches assets over HTTP and keeps copies in the local blob store."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        max_bytes: int = DEFAULT_CACHE_MAX_BYTES,
        max_age_seconds: int = DEFAULT_CACHE_MAX_AGE_SECONDS,
        fetch_timeout: float = 60.0,
        cleanup_interval_seconds: int = 0,
        preload_stagger_seconds: float = 0.1,
    ) -> None:
        self._client = http_client
        self._session_factory = session_factory
        self._max_bytes = max_bytes
        self._max_age = timedelta(seconds=max_age_seconds)
        self._timeout = httpx.Timeout(fetch_timeout, connect=min(fetch_timeout, 10.0))
        self._cleanup_interval = cleanup_interval_seconds
        self._preload_stagger = preload_stagger_seconds
        self._online = True
        self._last_cleanup_at: datetime | None = None
        self._cleanup_task: asyncio.Task[None] | None = None

    @property
    def online(self) -> bool:
        """Connectivity as last reported by the playlist feed.

        Failed asset downloads never change it.
        """

        return self._online

    def set_online(self, online: bool) -> None:
        if online != self._online:
            logger.info("Asset cache connectivity changed: %s", "online" if online else "offline")
        self._online = online

    async def start(self) -> None:
        """Launch the periodic cleanup loop when an interval is configured."""

        if self._cleanup_interval > 0 and self._cleanup_task is None:
            self._cleanup_task = asyncio.create_task(self._cleanup_loop())

    async def stop(self) -> None:
        if self._cleanup_task is None:
            return
        self._cleanup_task.cancel()
        with suppress(asyncio.CancelledError):
            await self._cleanup_task
        self._cleanup_task = None

    async def cache_media(self, url: str, kind: str) -> ResolvedAsset:
        """Return the cached asset, downloading and storing it when missing.

        Failures fall back to the remote URL; this never raises.
        """

        cached = await self._load_fresh(url)
        if cached is not None:
            logger.debug("Serving %s from cache", url)
            await self._touch(url)
            return ResolvedAsset(url=url, kind=cached.kind, payload=cached.payload)

        payload = await self._download(url)
        if payload is None:
            return ResolvedAsset(url=url, kind=kind)

        if await self._store(url, kind, payload):
            logger.info("Cached %s (%s bytes)", url, len(payload))
            await self._cleanup_if_needed()
        return ResolvedAsset(url=url, kind=kind, payload=payload)

    async def get_media_blob(self, url: str) -> bytes | None:
        """Return the stored bytes for ``url`` without touching the network."""

        cached = await self._load_fresh(url)
        return cached.payload if cached is not None else None

    async def resolve(self, url: str, kind: str) -> ResolvedAsset:
        """Offline-aware lookup used by the playback scheduler."""

        if self._online:
            return await self.cache_media(url, kind)
        payload = await self.get_media_blob(url)
        if payload is None:
            logger.info("Offline and %s is not cached, falling back to the remote URL", url)
        return ResolvedAsset(url=url, kind=kind, payload=payload)

    async def preload(self, urls: Iterable[str], kind: str) -> list[ResolvedAsset]:
        """Cache several assets, staggering the start of each download."""

        targets = list(dict.fromkeys(urls))
        if not targets:
            return []
        logger.info("Preloading %s %s assets", len(targets), kind)

        async def _staggered(index: int, url: str) -> ResolvedAsset:
            await asyncio.sleep(index * self._preload_stagger)
            return await self.cache_media(url, kind)

        results = await asyncio.gather(
            *(_staggered(index, url) for index, url in enumerate(targets))
        )
        cached = sum(1 for asset in results if asset.is_cached)
        logger.info("Preload finished: %s/%s cached", cached, len(targets))
        return list(results)

    async def cleanup(self) -> int:
        """Remove expired entries and entries idle for longer than ``max_age``."""

        now = datetime.utcnow()
        idle_cutoff = now - self._max_age
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    delete(CachedAsset).where(
                        or_(
                            CachedAsset.expires_at <= now,
                            CachedAsset.last_accessed_at < idle_cutoff,
                        )
                    )
                )
                await session.commit()
        except SQLAlchemyError as exc:
            logger.error("Asset cache cleanup failed: %s", exc)
            return 0
        removed = int(result.rowcount or 0)
        self._last_cleanup_at = now
        logger.info("Asset cache cleanup removed %s entries", removed)
        return removed

    async def clear_all(self) -> int:
        """Remove every cached asset."""

        try:
            async with self._session_factory() as session:
                result = await session.execute(delete(CachedAsset))
                await session.commit()
        except SQLAlchemyError as exc:
            logger.error("Failed to clear the asset cache: %s", exc)
            return 0
        removed = int(result.rowcount or 0)
        logger.info("Asset cache cleared (%s entries)", removed)
        return removed

    async def get_stats(self) -> CacheStats:
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(
                        func.coalesce(func.sum(CachedAsset.size), 0),
                        func.count(CachedAsset.url),
                    )
                )
                total_size, item_count = result.one()
        except SQLAlchemyError as exc:
            logger.error("Failed to read asset cache statistics: %s", exc)
            total_size, item_count = 0, 0
        return CacheStats(
            total_size=int(total_size),
            item_count=int(item_count),
            max_size=self._max_bytes,
            last_cleanup_at=self._last_cleanup_at,
        )

    async def _cleanup_loop(self) -> None:
        while True:
            await asyncio.sleep(self._cleanup_interval)
            try:
                await self.cleanup()
            except Exception as exc:  # pragma: no cover - background safety net
                logger.exception("Scheduled asset cache cleanup failed: %s", exc)

    async def _cleanup_if_needed(self) -> None:
        stats = await self.get_stats()
        if stats.total_size > self._max_bytes:
            logger.info(
                "Asset cache at %s bytes exceeds %s, sweeping",
                stats.total_size,
                self._max_bytes,
            )
            await self.cleanup()

    async def _load_fresh(self, url: str) -> CachedAsset | None:
        try:
            async with self._session_factory() as session:
                cached = await session.get(CachedAsset, url)
        except SQLAlchemyError as exc:
            logger.error("Asset cache lookup failed for %s: %s", url, exc)
            return None
        if cached is None:
            return None
        if cached.expires_at <= datetime.utcnow():
            return None
        return cached

    async def _touch(self, url: str) -> None:
        try:
            async with self._session_factory() as session:
                await session.execute(
                    update(CachedAsset)
                    .where(CachedAsset.url == url)
                    .values(last_accessed_at=datetime.utcnow())
                )
                await session.commit()
        except SQLAlchemyError as exc:
            logger.warning("Failed to update last access for %s: %s", url, exc)

    async def _store(self, url: str, kind: str, payload: bytes) -> bool:
        now = datetime.utcnow()
        asset = CachedAsset(
            url=url,
            payload=payload,
            kind=kind,
            size=len(payload),
            last_accessed_at=now,
            expires_at=now + self._max_age,
        )
        try:
            async with self._session_factory() as session:
                await session.merge(asset)
                await session.commit()
        except SQLAlchemyError as exc:
            logger.error("Failed to store %s in the asset cache: %s", url, exc)
            return False
        return True

    async def _download(self, url: str) -> bytes | None:
        try:
            response = await self._client.get(
                url, timeout=self._timeout, follow_redirects=True
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            logger.warning(
                "Asset download failed for %s with HTTP %s",
                url,
                exc.response.status_code,
            )
            return None
        except httpx.TransportError as exc:
            logger.warning("Asset download failed for %s: %s", url, exc.__class__.__name__)
            return None
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            logger.warning("Asset download failed for %s: %s", url, exc)
            return None
        return response.content
