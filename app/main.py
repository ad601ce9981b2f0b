"""Entry point for the FastAPI-powered signage media service."""

from __future__ import annotations

import logging
from contextlib import AsyncExitStack, asynccontextmanager
from datetime import datetime
from typing import Any

import httpx
from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError

from .config import settings
from .database import Database
from .services.catalog_client import CatalogClient
from .services.catalog_mirror import CatalogMirror, SyncOutcome
from .services.devices import DeviceRegistry
from .services.media_query import MediaQueryService
from .utils import parse_timestamp

logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

app: FastAPI


class HeartbeatPayload(BaseModel):
    group_key: str | None = None
    name: str | None = None


@asynccontextmanager
async def lifespan(_: FastAPI):
    exit_stack = AsyncExitStack()
    catalog_http_client = await exit_stack.enter_async_context(
        httpx.AsyncClient(
            timeout=httpx.Timeout(settings.catalog_request_timeout, connect=10.0),
        )
    )
    database = Database(settings.database_url)
    await database.create_all()

    catalog_client = CatalogClient(settings, catalog_http_client)
    mirror = CatalogMirror(settings, catalog_client, database.session_factory)
    media_service = MediaQueryService(mirror, database.session_factory)
    device_registry = DeviceRegistry(
        database.session_factory,
        heartbeat_ttl_seconds=settings.device_heartbeat_ttl_seconds,
    )

    app.state.database = database
    app.state.catalog_mirror = mirror
    app.state.media_service = media_service
    app.state.device_registry = device_registry
    await mirror.start()

    try:
        yield
    finally:  # pragma: no cover - teardown path exercised at runtime
        await mirror.stop()
        await database.dispose()
        await exit_stack.aclose()


def create_app() -> FastAPI:
    fastapi_app = FastAPI(
        title=settings.app_name,
        description="Store-group media playlists mirrored from the remote catalog",
        version="1.0.0",
        lifespan=lifespan,
    )

    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    register_routes(fastapi_app)
    return fastapi_app


def get_media_service(app: FastAPI) -> MediaQueryService:
    service = getattr(app.state, "media_service", None)
    if not isinstance(service, MediaQueryService):
        raise RuntimeError("Media service not initialised")
    return service


def get_catalog_mirror(app: FastAPI) -> CatalogMirror:
    mirror = getattr(app.state, "catalog_mirror", None)
    if not isinstance(mirror, CatalogMirror):
        raise RuntimeError("Catalog mirror not initialised")
    return mirror


def get_device_registry(app: FastAPI) -> DeviceRegistry:
    registry = getattr(app.state, "device_registry", None)
    if not isinstance(registry, DeviceRegistry):
        raise RuntimeError("Device registry not initialised")
    return registry


def _parse_reference_timestamp(raw: str | None) -> datetime | None:
    try:
        return parse_timestamp(raw)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def register_routes(fastapi_app: FastAPI) -> None:
    async def _playlist_endpoint(
        group_key: str,
        day: str | None,
        timestamp: str | None,
    ) -> dict[str, Any]:
        group = group_key.strip()
        if not group:
            raise HTTPException(status_code=400, detail="Group key is required")
        reference = _parse_reference_timestamp(timestamp)
        service = get_media_service(fastapi_app)
        items = await service.get_filtered_media(
            group,
            day=(day or "").strip() or None,
            reference_timestamp=reference,
        )
        last_sync_at = service.mirror.last_sync_at
        return {
            "success": True,
            "group_key": group,
            "total": len(items),
            "last_sync_at": last_sync_at.isoformat() if last_sync_at else None,
            "medias": [item.to_payload() for item in items],
        }

    @fastapi_app.get("/healthz")
    async def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    @fastapi_app.get("/media/{group_key}")
    async def group_media(
        group_key: str,
        day: str | None = Query(default=None),
        dia: str | None = Query(default=None),
        timestamp: str | None = Query(default=None),
        timestamp_atual: str | None = Query(default=None),
    ) -> dict[str, Any]:
        return await _playlist_endpoint(
            group_key, day or dia, timestamp or timestamp_atual
        )

    @fastapi_app.get("/get_medias_")
    async def legacy_group_media(request: Request) -> dict[str, Any]:
        params = request.query_params
        group_key = params.get("_id") or params.get("group_key")
        if not group_key:
            raise HTTPException(status_code=400, detail="Query parameter '_id' is required")
        timestamp = params.get("timestamp") or params.get("timestamp_atual")
        day = params.get("day") or params.get("dia")
        return await _playlist_endpoint(group_key, day, timestamp)

    @fastapi_app.post("/sync")
    async def force_sync() -> JSONResponse:
        mirror = get_catalog_mirror(fastapi_app)
        result = await mirror.trigger_sync()
        payload = result.to_payload()
        payload["success"] = result.outcome is not SyncOutcome.FAILED
        status_code = 502 if result.outcome is SyncOutcome.FAILED else 200
        return JSONResponse(payload, status_code=status_code)

    @fastapi_app.get("/status")
    async def status_endpoint() -> dict[str, Any]:
        mirror = get_catalog_mirror(fastapi_app)
        payload = mirror.status().to_payload()
        payload.update({"online": True, "port": settings.server_port})
        return payload

    @fastapi_app.get("/stats")
    async def stats_endpoint() -> dict[str, Any]:
        mirror = get_catalog_mirror(fastapi_app)
        last_sync_at = mirror.last_sync_at
        return {
            "totalMedias": await mirror.count(),
            "lastSyncAt": last_sync_at.isoformat() if last_sync_at else None,
            "syncInProgress": mirror.is_syncing,
        }

    @fastapi_app.get("/medias")
    async def list_medias(
        page: int = Query(default=1),
        limit: int = Query(default=50),
        order_by: str = Query(default="created_date"),
        order: str = Query(default="desc"),
    ) -> dict[str, Any]:
        direction = order.strip().lower()
        if direction not in {"asc", "desc"}:
            raise HTTPException(status_code=400, detail="order must be 'asc' or 'desc'")
        service = get_media_service(fastapi_app)
        try:
            listing = await service.list_media(
                page=page,
                limit=limit,
                order_by=order_by,
                descending=direction == "desc",
            )
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return listing.to_payload()

    @fastapi_app.post("/devices/{serial}/heartbeat")
    async def device_heartbeat(serial: str, request: Request) -> dict[str, Any]:
        registry = get_device_registry(fastapi_app)
        try:
            body = await request.json()
        except ValueError:
            body = {}
        try:
            payload = HeartbeatPayload.model_validate(body or {})
        except ValidationError as exc:
            raise HTTPException(status_code=400, detail=exc.errors()) from exc
        try:
            status = await registry.heartbeat(
                serial, group_key=payload.group_key, name=payload.name
            )
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return status.to_payload()

    @fastapi_app.get("/devices")
    async def list_devices() -> dict[str, Any]:
        registry = get_device_registry(fastapi_app)
        devices = await registry.list_devices()
        return {
            "total": len(devices),
            "devices": [device.to_payload() for device in devices],
        }

    @fastapi_app.get("/devices/{serial}")
    async def device_status(serial: str) -> dict[str, Any]:
        registry = get_device_registry(fastapi_app)
        status = await registry.get_device(serial)
        if status is None:
            raise HTTPException(status_code=404, detail="Device not found")
        return status.to_payload()


app = create_app()


if __name__ == "__main__":  # pragma: no cover - manual execution
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.server_host,
        port=settings.server_port,
        reload=settings.environment == "development",
    )
