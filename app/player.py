"""Headless kiosk player that follows a store group's playlist."""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
from contextlib import AsyncExitStack, suppress
from typing import Sequence

import httpx

from .config import Settings, get_settings
from .database import CacheBase, Database
from .services.asset_cache import AssetCache
from .services.playback import LoggingRenderer, PlaybackScheduler
from .services.playlist_feed import PlaylistFeed

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Kioskplay signage player")
    parser.add_argument("--group", required=True, help="Store group key to play")
    parser.add_argument(
        "--serial",
        default=None,
        help="Device serial used for heartbeats (default: heartbeats disabled)",
    )
    parser.add_argument(
        "--name", default=None, help="Friendly device name (default: unnamed)"
    )
    parser.add_argument(
        "--server",
        default=None,
        help="Base URL of the media service (default: configured player API URL)",
    )
    parser.add_argument(
        "--clear-cache",
        action="store_true",
        help="Drop every cached asset before starting (default: keep the cache)",
    )
    return parser


async def run_player(args: argparse.Namespace, settings: Settings) -> None:
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with suppress(NotImplementedError):
            loop.add_signal_handler(sig, stop_event.set)

    async with AsyncExitStack() as stack:
        api_client = await stack.enter_async_context(
            httpx.AsyncClient(
                base_url=args.server or str(settings.player_api_url),
                timeout=httpx.Timeout(20.0, connect=10.0),
            )
        )
        asset_client = await stack.enter_async_context(httpx.AsyncClient())
        database = Database(settings.cache_database_url, metadata=CacheBase.metadata)
        await database.create_all()
        stack.push_async_callback(database.dispose)

        cache = AssetCache(
            asset_client,
            database.session_factory,
            max_bytes=settings.cache_max_bytes,
            max_age_seconds=settings.cache_max_age_seconds,
            fetch_timeout=settings.cache_fetch_timeout,
            cleanup_interval_seconds=settings.cache_cleanup_interval_seconds,
        )
        if args.clear_cache:
            await cache.clear_all()
        await cache.start()
        stack.push_async_callback(cache.stop)

        renderer = LoggingRenderer()
        scheduler = PlaybackScheduler(
            cache, renderer, image_duration=settings.image_duration_seconds
        )
        renderer.attach(scheduler)
        stack.push_async_callback(scheduler.stop)
        stack.callback(renderer.close)

        feed = PlaylistFeed(
            api_client,
            cache,
            scheduler,
            group_key=args.group,
            serial=args.serial,
            device_name=args.name,
            refresh_seconds=settings.player_refresh_seconds,
            heartbeat_seconds=settings.player_heartbeat_seconds,
        )
        await feed.start()
        stack.push_async_callback(feed.stop)

        stats = await cache.get_stats()
        logger.info(
            "Player running for group %s (cache %s items, %s bytes)",
            args.group,
            stats.item_count,
            stats.total_size,
        )
        await stop_event.wait()
        logger.info("Stopping player")


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()
    logging.basicConfig(level=settings.log_level)
    try:
        asyncio.run(run_player(args, settings))
    except KeyboardInterrupt:  # pragma: no cover - interactive shutdown
        pass
    return 0


if __name__ == "__main__":  # pragma: no cover - manual execution
    raise SystemExit(main())
