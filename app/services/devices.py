"""Heartbeat-based presence tracking for kiosk terminals."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..db_models import Device


@dataclass
class DeviceStatus:
    serial: str
    name: str | None
    group_key: str | None
    last_heartbeat_at: datetime | None
    online: bool

    def to_payload(self) -> dict[str, Any]:
        return {
            "serial": self.serial,
            "name": self.name,
            "groupKey": self.group_key,
            "lastHeartbeatAt": (
                self.last_heartbeat_at.isoformat() if self.last_heartbeat_at else None
            ),
            "status": "online" if self.online else "offline",
            "online": self.online,
        }


class DeviceRegistry:
    """Records heartbeats and derives online status from their age."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        heartbeat_ttl_seconds: int = 30,
    ):
        self._session_factory = session_factory
        self._ttl = timedelta(seconds=heartbeat_ttl_seconds)

    async def heartbeat(
        self,
        serial: str,
        *,
        group_key: str | None = None,
        name: str | None = None,
        now: datetime | None = None,
    ) -> DeviceStatus:
        serial = serial.strip()
        if not serial:
            raise ValueError("Device serial must not be blank")
        moment = now or datetime.utcnow()
        async with self._session_factory() as session:
            device = await session.get(Device, serial)
            if device is None:
                device = Device(serial=serial, created_at=moment)
                session.add(device)
            if group_key:
                device.group_key = group_key
            if name:
                device.name = name
            device.last_heartbeat_at = moment
            device.updated_at = moment
            await session.commit()
            return self._to_status(device, moment)

    async def get_device(self, serial: str, *, now: datetime | None = None) -> DeviceStatus | None:
        async with self._session_factory() as session:
            device = await session.get(Device, serial)
            if device is None:
                return None
            return self._to_status(device, now or datetime.utcnow())

    async def list_devices(self, *, now: datetime | None = None) -> list[DeviceStatus]:
        moment = now or datetime.utcnow()
        async with self._session_factory() as session:
            result = await session.execute(select(Device).order_by(Device.serial))
            return [self._to_status(device, moment) for device in result.scalars().all()]

    def _to_status(self, device: Device, now: datetime) -> DeviceStatus:
        last_seen = device.last_heartbeat_at
        online = last_seen is not None and now - last_seen <= self._ttl
        return DeviceStatus(
            serial=device.serial,
            name=device.name,
            group_key=device.group_key,
            last_heartbeat_at=last_seen,
            online=online,
        )
