"""Playlist queries over the mirrored catalog."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..db_models import MediaRecord
from ..models import PlaylistItem
from ..utils import to_naive_utc
from .catalog_mirror import CatalogMirror

logger = logging.getLogger(__name__)

LISTING_ORDER_COLUMNS = {
    "created_date": MediaRecord.remote_created_at,
    "modified_date": MediaRecord.remote_modified_at,
    "sort_order": MediaRecord.sort_order,
    "name": MediaRecord.name,
    "group_key": MediaRecord.group_key,
    "synced_at": MediaRecord.synced_at,
}


@dataclass
class MediaPage:
    """One page of the raw mirror listing."""

    items: list[MediaRecord]
    total: int
    page: int
    limit: int

    @property
    def total_pages(self) -> int:
        if self.limit <= 0:
            return 0
        return -(-self.total // self.limit)

    def to_payload(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "page": self.page,
            "limit": self.limit,
            "totalPages": self.total_pages,
            "medias": [_record_payload(record) for record in self.items],
        }


def _record_payload(record: MediaRecord) -> dict[str, Any]:
    payload: dict[str, Any] = {}
    for column in MediaRecord.__table__.columns:
        value = getattr(record, column.key)
        if isinstance(value, datetime):
            value = value.isoformat()
        payload[column.key] = value
    return payload


class MediaQueryService:
    """Reads the mirror and applies group, window and weekday filters."""

    def __init__(
        self,
        mirror: CatalogMirror,
        session_factory: async_sessionmaker[AsyncSession],
    ):
        self._mirror = mirror
        self._session_factory = session_factory

    @property
    def mirror(self) -> CatalogMirror:
        return self._mirror

    async def get_filtered_media(
        self,
        group_key: str,
        day: str | None = None,
        reference_timestamp: datetime | None = None,
    ) -> list[PlaylistItem]:
        """Return the ordered playlist for ``group_key``.

        A stale mirror is refreshed before reading. Without a
        ``reference_timestamp`` no active-window filtering happens, and
        without ``day`` no weekday filtering happens.
        """

        if self._mirror.should_sync():
            logger.info("Mirror is stale, syncing before serving group %s", group_key)
            await self._mirror.trigger_sync()

        stmt = select(MediaRecord).where(
            MediaRecord.group_key == group_key,
            MediaRecord.enabled.is_(True),
        )
        if reference_timestamp is not None:
            moment = to_naive_utc(reference_timestamp)
            stmt = stmt.where(
                MediaRecord.starts_at <= moment,
                MediaRecord.ends_at >= moment,
            )
        stmt = stmt.order_by(MediaRecord.sort_order.asc(), MediaRecord.position.asc())

        async with self._session_factory() as session:
            result = await session.execute(stmt)
            records = list(result.scalars().all())

        if day is not None:
            wanted = day.strip()
            records = [record for record in records if wanted in (record.days_of_week or [])]

        items = [PlaylistItem.model_validate(record) for record in records]
        logger.info("Found %s media for group %s", len(items), group_key)
        return items

    async def list_media(
        self,
        *,
        page: int = 1,
        limit: int = 50,
        order_by: str = "created_date",
        descending: bool = True,
    ) -> MediaPage:
        """Return a page of the raw mirror for inspection."""

        if page < 1:
            raise ValueError("page must be at least 1")
        if not 1 <= limit <= 500:
            raise ValueError("limit must be between 1 and 500")
        column = LISTING_ORDER_COLUMNS.get(order_by)
        if column is None:
            raise ValueError(f"Unsupported order column: {order_by}")

        ordering = column.desc() if descending else column.asc()
        async with self._session_factory() as session:
            total = (
                await session.execute(select(func.count()).select_from(MediaRecord))
            ).scalar_one()
            stmt = (
                select(MediaRecord)
                .order_by(ordering, MediaRecord.position.asc())
                .limit(limit)
                .offset((page - 1) * limit)
            )
            records = list((await session.execute(stmt)).scalars().all())
        return MediaPage(items=records, total=int(total), page=page, limit=limit)
