"""Double-buffered playlist scheduler.

Two buffers, ``A`` and ``B``, alternate as the visible slot. While one is
active the scheduler loads the next playlist item into the other one, and
only promotes it once that load has resolved, so the screen never shows a
blank frame. Each slot moves through ``idle -> loading -> ready -> active``
and back to ``idle`` when it is replaced.

Images advance on a timer; videos advance when the renderer reports that
playback finished. A slow asset stalls the current item rather than
cutting to an empty slot.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Protocol, Sequence

from ..models import PlaylistItem
from .asset_cache import AssetCache, ResolvedAsset

logger = logging.getLogger(__name__)

DEFAULT_IMAGE_SECONDS = 8.0


class SlotState(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    ACTIVE = "active"


class BufferSwapError(RuntimeError):
    """Raised when a buffer transition would break the swap invariant."""


@dataclass
class PlaybackBuffer:
    """One of the two render slots."""

    name: str
    state: SlotState = SlotState.IDLE
    item: PlaylistItem | None = None
    asset: ResolvedAsset | None = None

    @property
    def is_loading(self) -> bool:
        return self.state is SlotState.LOADING

    @property
    def is_active(self) -> bool:
        return self.state is SlotState.ACTIVE

    def begin_load(self, item: PlaylistItem) -> None:
        if self.state is SlotState.ACTIVE:
            raise BufferSwapError(f"Buffer {self.name} is visible and cannot be reloaded")
        self.state = SlotState.LOADING
        self.item = item
        self.asset = None

    def finish_load(self, asset: ResolvedAsset) -> None:
        if self.state is not SlotState.LOADING:
            raise BufferSwapError(f"Buffer {self.name} is not loading")
        self.asset = asset
        self.state = SlotState.READY

    def activate(self) -> None:
        if self.state is not SlotState.READY:
            raise BufferSwapError(
                f"Buffer {self.name} cannot be promoted while {self.state.value}"
            )
        self.state = SlotState.ACTIVE

    def release(self) -> None:
        self.state = SlotState.IDLE
        self.item = None
        self.asset = None


class Playlist:
    """Ordered items with a cursor that wraps around."""

    def __init__(self, items: Iterable[PlaylistItem] = ()) -> None:
        self._items: list[PlaylistItem] = list(items)
        self._cursor = 0

    def __len__(self) -> int:
        return len(self._items)

    @property
    def items(self) -> Sequence[PlaylistItem]:
        return tuple(self._items)

    @property
    def is_empty(self) -> bool:
        return not self._items

    @property
    def cursor(self) -> int:
        return self._cursor

    @property
    def current(self) -> PlaylistItem | None:
        if not self._items:
            return None
        return self._items[self._cursor % len(self._items)]

    def peek_next(self) -> PlaylistItem | None:
        if not self._items:
            return None
        return self._items[(self._cursor + 1) % len(self._items)]

    def advance(self) -> PlaylistItem | None:
        if not self._items:
            return None
        self._cursor = (self._cursor + 1) % len(self._items)
        return self._items[self._cursor]

    def replace(self, items: Iterable[PlaylistItem], *, playing_id: str | None = None) -> None:
        """Swap in new items, keeping the cursor on the playing item if present."""

        self._items = list(items)
        if playing_id is not None:
            for index, item in enumerate(self._items):
                if item.id == playing_id:
                    self._cursor = index
                    return
            # Next advance starts from the head of the new list.
            self._cursor = -1
            return
        self._cursor = 0


class Renderer(Protocol):
    """Display surface driven by the scheduler."""

    def present(self, buffer: PlaybackBuffer) -> None:
        ...

    def show_placeholder(self) -> None:
        ...


class PlaybackScheduler:
    """Drives a renderer from a playlist using two alternating buffers."""

    def __init__(
        self,
        cache: AssetCache,
        renderer: Renderer,
        *,
        image_duration: float = DEFAULT_IMAGE_SECONDS,
    ) -> None:
        self._cache = cache
        self._renderer = renderer
        self._image_duration = image_duration
        self._buffers = (PlaybackBuffer("A"), PlaybackBuffer("B"))
        self._active: PlaybackBuffer | None = None
        self._playlist = Playlist()
        self._advance = asyncio.Event()
        self._playlist_changed = asyncio.Event()
        self._timer: asyncio.TimerHandle | None = None
        self._load_task: asyncio.Task[None] | None = None
        self._task: asyncio.Task[None] | None = None
        self._showing_placeholder = False
        self.swap_count = 0

    @property
    def buffers(self) -> tuple[PlaybackBuffer, PlaybackBuffer]:
        return self._buffers

    @property
    def active_buffer(self) -> PlaybackBuffer | None:
        return self._active

    @property
    def playlist(self) -> Playlist:
        return self._playlist

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def inactive_buffer(self) -> PlaybackBuffer:
        if self._active is self._buffers[0]:
            return self._buffers[1]
        return self._buffers[0]

    async def start(self, items: Iterable[PlaylistItem] = ()) -> None:
        """Begin playback of ``items``; an empty list shows the placeholder."""

        if self.running:
            self.replace_playlist(items)
            return
        self._playlist.replace(items)
        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        """Tear down timers, in-flight loads and the playback loop."""

        self._cancel_timer()
        tasks = [task for task in (self._load_task, self._task) if task is not None]
        for task in tasks:
            task.cancel()
        for task in tasks:
            with suppress(asyncio.CancelledError):
                await task
        self._load_task = None
        self._task = None
        for buffer in self._buffers:
            buffer.release()
        self._active = None

    def replace_playlist(self, items: Iterable[PlaylistItem]) -> None:
        """Install a new playlist without interrupting the visible item."""

        playing = self._active.item if self._active is not None else None
        self._playlist.replace(items, playing_id=playing.id if playing else None)
        logger.info("Playlist replaced with %s items", len(self._playlist))
        self._playlist_changed.set()

    def notify_playback_complete(self, slot_name: str) -> None:
        """Called by the renderer when a video in ``slot_name`` has ended."""

        active = self._active
        if active is None or active.name != slot_name:
            logger.debug("Ignoring completion from inactive slot %s", slot_name)
            return
        if active.item is None or active.item.kind != "video":
            return
        self._advance.set()

    def notify_render_error(self, slot_name: str, reason: str | None = None) -> None:
        """Log a render failure; the item stays until its next advance trigger."""

        buffer = next((b for b in self._buffers if b.name == slot_name), None)
        item = buffer.item if buffer is not None else None
        logger.warning(
            "Render failed for %s in slot %s: %s",
            item.url if item else "unknown item",
            slot_name,
            reason or "load error",
        )

    async def _run(self) -> None:
        try:
            while True:
                if self._playlist.is_empty:
                    await self._await_content()
                    continue
                if self._active is None:
                    await self._show_first()
                    continue
                await self._play_next()
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # pragma: no cover - background safety net
            logger.exception("Playback loop stopped unexpectedly: %s", exc)
            self._renderer.show_placeholder()
            raise

    async def _await_content(self) -> None:
        if self._active is not None:
            self._active.release()
            self._active = None
        if not self._showing_placeholder:
            logger.info("Playlist is empty, awaiting content")
            self._renderer.show_placeholder()
            self._showing_placeholder = True
        self._playlist_changed.clear()
        await self._playlist_changed.wait()

    async def _show_first(self) -> None:
        target = self.inactive_buffer()
        while True:
            first = self._playlist.current
            if first is None:
                target.release()
                return
            await self._load(target, first)
            # The playlist may have been replaced while the first item loaded.
            current = self._playlist.current
            if current is not None and self._same_item(target.item, current):
                break
            target.release()
        self._swap(target)

    async def _play_next(self) -> None:
        target = self.inactive_buffer()
        upcoming = self._playlist.peek_next()
        assert upcoming is not None
        self._load_task = asyncio.create_task(self._load(target, upcoming))

        await self._wait_for_advance()

        expected = self._playlist.peek_next()
        if expected is None:
            await self._discard_load(target)
            return
        if not self._same_item(target.item, expected):
            # Playlist changed while the previous candidate was loading.
            await self._discard_load(target)
            self._load_task = asyncio.create_task(self._load(target, expected))

        load_task = self._load_task
        if load_task is not None:
            await load_task
        self._load_task = None
        self._playlist.advance()
        self._swap(target)

    async def _wait_for_advance(self) -> None:
        active = self._active
        assert active is not None and active.item is not None
        self._advance.clear()
        if active.item.kind == "image":
            delay = active.item.display_seconds(self._image_duration)
            loop = asyncio.get_running_loop()
            self._cancel_timer()
            self._timer = loop.call_later(delay, self._advance.set)
        try:
            await self._advance.wait()
        finally:
            self._cancel_timer()

    async def _load(self, buffer: PlaybackBuffer, item: PlaylistItem) -> None:
        buffer.begin_load(item)
        try:
            asset = await self._cache.resolve(item.url, item.kind)
        except asyncio.CancelledError:
            buffer.release()
            raise
        buffer.finish_load(asset)

    async def _discard_load(self, buffer: PlaybackBuffer) -> None:
        task = self._load_task
        self._load_task = None
        if task is not None and not task.done():
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task
        if not buffer.is_active:
            buffer.release()

    def _swap(self, target: PlaybackBuffer) -> None:
        if target.is_loading:
            raise BufferSwapError(f"Buffer {target.name} is still loading")
        previous = self._active
        target.activate()
        self._active = target
        self._showing_placeholder = False
        self.swap_count += 1
        self._renderer.present(target)
        if previous is not None and previous is not target:
            previous.release()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    @staticmethod
    def _same_item(current: PlaylistItem | None, expected: PlaylistItem) -> bool:
        if current is None:
            return False
        return current.id == expected.id and current.url == expected.url


class LoggingRenderer:
    """Headless renderer that logs what would be on screen.

    Videos are reported complete after their nominal duration (or
    ``video_seconds``) so a kiosk without a display still cycles.
    """

    def __init__(self, *, video_seconds: float = 30.0) -> None:
        self._video_seconds = video_seconds
        self._scheduler: PlaybackScheduler | None = None
        self._pending: asyncio.TimerHandle | None = None

    def attach(self, scheduler: PlaybackScheduler) -> None:
        self._scheduler = scheduler

    def present(self, buffer: PlaybackBuffer) -> None:
        item = buffer.item
        asset = buffer.asset
        if item is None:
            return
        source = "cache" if asset is not None and asset.is_cached else "remote"
        logger.info(
            "Showing %s %s in slot %s from %s",
            item.kind,
            item.display_name(),
            buffer.name,
            source,
        )
        if self._pending is not None:
            self._pending.cancel()
            self._pending = None
        if item.kind == "video" and self._scheduler is not None:
            seconds = item.display_seconds(self._video_seconds)
            loop = asyncio.get_running_loop()
            self._pending = loop.call_later(
                seconds, self._scheduler.notify_playback_complete, buffer.name
            )

    def show_placeholder(self) -> None:
        logger.info("Awaiting content")

    def close(self) -> None:
        if self._pending is not None:
            self._pending.cancel()
            self._pending = None
