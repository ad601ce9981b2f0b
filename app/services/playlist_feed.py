"""Device-side polling of the media query service."""

from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from datetime import datetime, timezone
from typing import Any, Sequence
from urllib.parse import quote

import httpx
from pydantic import ValidationError

from ..models import PlaylistItem
from ..utils import weekday_label
from .asset_cache import AssetCache
from .playback import PlaybackScheduler

logger = logging.getLogger(__name__)


class PlaylistFeedError(RuntimeError):
    """Raised when the server playlist cannot be fetched or parsed."""


class PlaylistFeed:
    """Keeps a scheduler's playlist in step with the server.

    Each refresh asks the server for the group's current playlist, caches
    any assets the device has not seen yet and only then hands the new
    list to the scheduler. Failed refreshes keep the current playlist.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        cache: AssetCache,
        scheduler: PlaybackScheduler,
        *,
        group_key: str,
        serial: str | None = None,
        device_name: str | None = None,
        refresh_seconds: int = 300,
        heartbeat_seconds: int = 15,
    ):
        self._client = http_client
        self._cache = cache
        self._scheduler = scheduler
        self._group_key = group_key
        self._serial = serial
        self._device_name = device_name
        self._refresh_seconds = refresh_seconds
        self._heartbeat_seconds = heartbeat_seconds
        self._fingerprint: tuple[tuple[str, str], ...] | None = None
        self._known_urls: set[str] = set()
        self._tasks: list[asyncio.Task[None]] = []

    @property
    def group_key(self) -> str:
        return self._group_key

    async def fetch_playlist(self, *, now: datetime | None = None) -> list[PlaylistItem]:
        moment = now or datetime.now(timezone.utc)
        local = moment.astimezone()
        params = {"day": weekday_label(local), "timestamp": moment.isoformat()}
        path = f"/media/{quote(self._group_key, safe='')}"
        try:
            response = await self._client.get(path, params=params)
        except httpx.HTTPError as exc:
            raise PlaylistFeedError(f"Playlist request failed: {exc}") from exc
        if response.status_code >= 400:
            raise PlaylistFeedError(
                f"Playlist request failed with status {response.status_code}"
            )
        try:
            data = response.json()
        except ValueError as exc:
            raise PlaylistFeedError("Playlist response was not valid JSON") from exc

        medias = data.get("medias") if isinstance(data, dict) else None
        if not isinstance(medias, list):
            raise PlaylistFeedError("Playlist response did not include a media list")

        items: list[PlaylistItem] = []
        for entry in medias:
            try:
                items.append(PlaylistItem.model_validate(entry))
            except ValidationError as exc:
                logger.warning("Skipping malformed playlist entry: %s", exc)
        return items

    async def refresh(self, *, now: datetime | None = None) -> bool:
        """Fetch, precache and install the playlist. Returns ``True`` on change."""

        try:
            items = await self.fetch_playlist(now=now)
        except PlaylistFeedError as exc:
            self._cache.set_online(False)
            logger.warning("Keeping the current playlist: %s", exc)
            return False
        self._cache.set_online(True)

        fingerprint = tuple((item.id, item.url) for item in items)
        if fingerprint == self._fingerprint:
            logger.debug("Playlist for group %s unchanged", self._group_key)
            return False

        await self._precache(items)
        self._fingerprint = fingerprint
        self._known_urls = {item.url for item in items}
        self._scheduler.replace_playlist(items)
        logger.info("Installed playlist of %s items for group %s", len(items), self._group_key)
        return True

    async def heartbeat(self) -> bool:
        if not self._serial:
            return False
        body: dict[str, Any] = {"group_key": self._group_key}
        if self._device_name:
            body["name"] = self._device_name
        try:
            response = await self._client.post(
                f"/devices/{quote(self._serial, safe='')}/heartbeat", json=body
            )
        except httpx.HTTPError as exc:
            logger.warning("Heartbeat failed: %s", exc)
            return False
        if response.status_code >= 400:
            logger.warning("Heartbeat rejected with status %s", response.status_code)
            return False
        return True

    async def start(self) -> None:
        """Run the first refresh and launch the refresh and heartbeat loops."""

        await self.heartbeat()
        await self.refresh()
        if not self._scheduler.running:
            await self._scheduler.start(self._scheduler.playlist.items)
        if not self._tasks:
            self._tasks.append(asyncio.create_task(self._refresh_loop()))
            if self._serial:
                self._tasks.append(asyncio.create_task(self._heartbeat_loop()))

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            with suppress(asyncio.CancelledError):
                await task
        self._tasks.clear()

    async def _precache(self, items: Sequence[PlaylistItem]) -> None:
        fresh = [item for item in items if item.url not in self._known_urls]
        if not fresh:
            return
        for kind in ("image", "video"):
            urls = [item.url for item in fresh if item.kind == kind]
            if urls:
                await self._cache.preload(urls, kind)

    async def _refresh_loop(self) -> None:
        while True:
            await asyncio.sleep(self._refresh_seconds)
            try:
                await self.refresh()
            except Exception as exc:  # pragma: no cover - background safety net
                logger.exception("Playlist refresh failed: %s", exc)

    async def _heartbeat_loop(self) -> None:
        while True:
            await asyncio.sleep(self._heartbeat_seconds)
            await self.heartbeat()
