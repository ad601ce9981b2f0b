"""Mirror the remote media catalog into the local authoritative table."""

from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Sequence

from pydantic import ValidationError
from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..config import Settings
from ..db_models import MediaRecord
from ..models import CatalogMedia
from .catalog_client import CatalogClient, CatalogRequestError

logger = logging.getLogger(__name__)


class SyncStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"


class SyncOutcome(str, Enum):
    COMPLETED = "completed"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class SyncResult:
    """Summary of a single ``trigger_sync`` call."""

    outcome: SyncOutcome
    started_at: datetime | None = None
    finished_at: datetime | None = None
    fetched: int = 0
    saved: int = 0
    failed: int = 0
    error: str | None = None

    @property
    def duration_ms(self) -> int | None:
        if self.started_at is None or self.finished_at is None:
            return None
        return int((self.finished_at - self.started_at).total_seconds() * 1000)

    def to_payload(self) -> dict[str, Any]:
        return {
            "outcome": self.outcome.value,
            "startedAt": self.started_at.isoformat() if self.started_at else None,
            "finishedAt": self.finished_at.isoformat() if self.finished_at else None,
            "durationMs": self.duration_ms,
            "fetched": self.fetched,
            "saved": self.saved,
            "failed": self.failed,
            "error": self.error,
        }


@dataclass
class MirrorStatus:
    """Expose freshness information for the status endpoints."""

    status: SyncStatus
    last_sync_at: datetime | None
    needs_sync: bool
    last_result: SyncResult | None = None

    def to_payload(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "syncInProgress": self.status is SyncStatus.RUNNING,
            "lastSyncAt": self.last_sync_at.isoformat() if self.last_sync_at else None,
            "needsSync": self.needs_sync,
            "lastResult": self.last_result.to_payload() if self.last_result else None,
        }


class CatalogMirror:
    """Owns the mirror table, its freshness timestamp and the sync guard."""

    def __init__(
        self,
        settings: Settings,
        catalog_client: CatalogClient,
        session_factory: async_sessionmaker[AsyncSession],
    ):
        self._settings = settings
        self._client = catalog_client
        self._session_factory = session_factory
        self._batch_size = settings.sync_batch_size
        self._page_delay = settings.catalog_page_delay
        self._freshness = timedelta(seconds=settings.sync_freshness_seconds)
        self._interval_seconds = settings.sync_interval_seconds
        self._lock = asyncio.Lock()
        self._status = SyncStatus.IDLE
        self._last_sync_at: datetime | None = None
        self._last_result: SyncResult | None = None
        self._refresh_task: asyncio.Task[None] | None = None

    @property
    def last_sync_at(self) -> datetime | None:
        return self._last_sync_at

    @property
    def is_syncing(self) -> bool:
        return self._status is SyncStatus.RUNNING

    async def start(self) -> None:
        """Run the initial sync and launch the scheduled sync loop."""

        if self._settings.sync_on_startup:
            await self.trigger_sync()
        if self._refresh_task is None:
            self._refresh_task = asyncio.create_task(self._refresh_loop())

    async def stop(self) -> None:
        """Stop the scheduled sync loop."""

        if self._refresh_task is None:
            return
        self._refresh_task.cancel()
        with suppress(asyncio.CancelledError):
            await self._refresh_task
        self._refresh_task = None

    def should_sync(self, now: datetime | None = None) -> bool:
        """Return ``True`` when the mirror was never synced or has gone stale."""

        if self._last_sync_at is None:
            return True
        current = now or datetime.utcnow()
        return self._last_sync_at < current - self._freshness

    def status(self) -> MirrorStatus:
        return MirrorStatus(
            status=self._status,
            last_sync_at=self._last_sync_at,
            needs_sync=self.should_sync(),
            last_result=self._last_result,
        )

    async def count(self) -> int:
        """Return the number of mirrored rows."""

        async with self._session_factory() as session:
            result = await session.execute(select(func.count()).select_from(MediaRecord))
            return int(result.scalar_one())

    async def trigger_sync(self) -> SyncResult:
        """Mirror the remote catalog unless a sync is already running."""

        if self._lock.locked():
            logger.info("Catalog sync already in progress, skipping request")
            return SyncResult(outcome=SyncOutcome.SKIPPED)

        async with self._lock:
            self._status = SyncStatus.RUNNING
            started_at = datetime.utcnow()
            try:
                result = await self._run_sync(started_at)
            except (CatalogRequestError, SQLAlchemyError) as exc:
                logger.error("Catalog sync failed: %s", exc)
                result = SyncResult(
                    outcome=SyncOutcome.FAILED,
                    started_at=started_at,
                    finished_at=datetime.utcnow(),
                    error=str(exc),
                )
            finally:
                self._status = SyncStatus.IDLE
            self._last_result = result
            return result

    async def _refresh_loop(self) -> None:
        while True:
            await asyncio.sleep(self._interval_seconds)
            logger.info("Running scheduled catalog sync")
            try:
                await self.trigger_sync()
            except Exception as exc:  # pragma: no cover - background safety net
                logger.exception("Scheduled catalog sync failed: %s", exc)

    async def _run_sync(self, started_at: datetime) -> SyncResult:
        logger.info("Starting catalog sync at %s", started_at.isoformat())
        collected = await self._collect_pages()
        logger.info("Collected %s catalog entries", len(collected))

        if not collected:
            logger.warning("Catalog returned no media; keeping the existing mirror")
            return SyncResult(
                outcome=SyncOutcome.FAILED,
                started_at=started_at,
                finished_at=datetime.utcnow(),
                error="No media collected from the catalog",
            )

        saved, failed = await self._replace_mirror(collected)
        finished_at = datetime.utcnow()
        self._last_sync_at = finished_at
        result = SyncResult(
            outcome=SyncOutcome.COMPLETED,
            started_at=started_at,
            finished_at=finished_at,
            fetched=len(collected),
            saved=saved,
            failed=failed,
        )
        logger.info(
            "Catalog sync finished in %sms: %s saved, %s failed",
            result.duration_ms,
            saved,
            failed,
        )
        return result

    async def _collect_pages(self) -> list[dict[str, Any]]:
        first_page = await self._client.fetch_page(0)
        total = first_page.total
        collected = list(first_page.items)
        offset = len(first_page.items)
        logger.info(
            "Catalog reports %s media; received %s on the first page", total, offset
        )

        while offset < total:
            # Fixed pause between requests to spare the remote service.
            await asyncio.sleep(self._page_delay)
            try:
                page = await self._client.fetch_page(offset)
            except CatalogRequestError as exc:
                logger.warning(
                    "Stopping pagination at offset %s, keeping %s entries: %s",
                    offset,
                    len(collected),
                    exc,
                )
                break
            if not page.items:
                logger.warning("Empty catalog page at offset %s, stopping pagination", offset)
                break
            collected.extend(page.items)
            offset += len(page.items)
            logger.info("Accumulated %s catalog entries", len(collected))

        return collected

    async def _replace_mirror(self, collected: Sequence[dict[str, Any]]) -> tuple[int, int]:
        synced_at = datetime.utcnow()
        saved = 0
        failed = 0
        total = len(collected)
        async with self._session_factory() as session:
            async with session.begin():
                await session.execute(delete(MediaRecord))
                logger.info("Cleared mirror table")
                for start in range(0, total, self._batch_size):
                    batch = collected[start : start + self._batch_size]
                    outcomes = await self._settle_batch(session, batch, start, synced_at)
                    for position, error in outcomes:
                        if error is None:
                            saved += 1
                            continue
                        failed += 1
                        logger.warning(
                            "Failed to store catalog entry at position %s: %s",
                            position,
                            error,
                        )
                    done = start + len(batch)
                    logger.info(
                        "Sync progress: %s%% (%s/%s)",
                        round(done / total * 100),
                        done,
                        total,
                    )
        return saved, failed

    async def _settle_batch(
        self,
        session: AsyncSession,
        batch: Sequence[dict[str, Any]],
        start: int,
        synced_at: datetime,
    ) -> list[tuple[int, Exception | None]]:
        """Attempt every row of the batch and report each outcome."""

        outcomes: list[tuple[int, Exception | None]] = []
        for offset, raw in enumerate(batch):
            position = start + offset
            try:
                await self._upsert(session, raw, position, synced_at)
            except (ValidationError, SQLAlchemyError) as exc:
                outcomes.append((position, exc))
            else:
                outcomes.append((position, None))
        return outcomes

    @staticmethod
    async def _upsert(
        session: AsyncSession,
        raw: dict[str, Any],
        position: int,
        synced_at: datetime,
    ) -> None:
        media = CatalogMedia.model_validate(raw)
        record = MediaRecord(**media.to_record_values(position=position, synced_at=synced_at))
        # Savepoint per row so one bad row does not poison the batch.
        async with session.begin_nested():
            await session.merge(record)
