"""SQLAlchemy ORM models backing the persistent state."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Float, Index, Integer, JSON, LargeBinary, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from .database import Base, CacheBase


class MediaRecord(Base):
    """Mirrored catalog entry; the mirror owns every write to this table."""

    __tablename__ = "media"
    __table_args__ = (
        Index("ix_media_group_enabled", "group_key", "enabled"),
        Index("ix_media_window", "starts_at", "ends_at"),
    )

    external_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    legacy_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    url: Mapped[str] = mapped_column(Text)
    kind: Mapped[str] = mapped_column(String(16), default="image")
    sort_order: Mapped[float] = mapped_column(Float, default=0.0)
    position: Mapped[int] = mapped_column(Integer, default=0)
    volume: Mapped[int | None] = mapped_column(Integer, nullable=True)
    duration_seconds: Mapped[float | None] = mapped_column(Float, nullable=True)
    starts_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    ends_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    schedule_range: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    days_of_week: Mapped[list[str]] = mapped_column(JSON, default=list)
    enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    group_key: Mapped[str | None] = mapped_column(String(128), nullable=True)
    collection: Mapped[str | None] = mapped_column(String(255), nullable=True)
    remote_created_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    remote_modified_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_by: Mapped[str | None] = mapped_column(String(128), nullable=True)
    synced_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class Device(Base):
    """Kiosk terminal presence reported through heartbeats."""

    __tablename__ = "devices"

    serial: Mapped[str] = mapped_column(String(128), primary_key=True)
    name: Mapped[str | None] = mapped_column(String(120), nullable=True)
    group_key: Mapped[str | None] = mapped_column(String(128), nullable=True)
    last_heartbeat_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )


class CachedAsset(CacheBase):
    """Binary asset stored on a device, keyed by its origin URL."""

    __tablename__ = "cached_assets"

    url: Mapped[str] = mapped_column(String(2048), primary_key=True)
    payload: Mapped[bytes] = mapped_column(LargeBinary)
    kind: Mapped[str] = mapped_column(String(16))
    size: Mapped[int] = mapped_column(Integer, default=0)
    last_accessed_at: Mapped[datetime] = mapped_column(DateTime, index=True)
    expires_at: Mapped[datetime] = mapped_column(DateTime)
