"""Playlist filtering over the mirrored catalog."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, cast

import httpx
import pytest

from app.config import Settings
from app.database import Database
from app.db_models import MediaRecord
from app.services.catalog_client import CatalogClient
from app.services.catalog_mirror import CatalogMirror, SyncOutcome, SyncResult
from app.services.media_query import MediaQueryService


def build_settings() -> Settings:
    return Settings(  # type: ignore[call-arg]
        _env_file=None,
        CATALOG_API_URL="https://catalog.example.com/api/get_medias_all",
        CATALOG_PAGE_DELAY=0,
        SYNC_ON_STARTUP=False,
    )


def make_entries(count: int, *, group: str) -> list[dict[str, Any]]:
    return [
        {
            "_id": f"media-{index:04d}",
            "link": f"https://cdn.example.com/{index}.jpg",
            "ordem": index,
            "ativado": True,
            "grupo-lojas": group,
            "inicia": "2024-01-01T00:00:00Z",
            "final": "2030-01-01T00:00:00Z",
            "dias-da-semana": "Segunda,Quarta",
        }
        for index in range(count)
    ]


def catalog_handler(entries: list[dict[str, Any]]):
    def handler(request: httpx.Request) -> httpx.Response:
        offset = int(request.url.params["offset"])
        size = int(request.url.params["size"])
        return httpx.Response(
            200,
            json={
                "response": {
                    "medias": entries[offset : offset + size],
                    "qtd_medias": len(entries),
                }
            },
        )

    return handler


class StubMirror:
    """Mirror stand-in that records lazy sync requests."""

    def __init__(self, *, stale: bool = False) -> None:
        self.stale = stale
        self.sync_calls = 0
        self.last_sync_at: datetime | None = None

    def should_sync(self, now: datetime | None = None) -> bool:
        return self.stale

    async def trigger_sync(self) -> SyncResult:
        self.sync_calls += 1
        self.stale = False
        return SyncResult(outcome=SyncOutcome.COMPLETED)


def _record(external_id: str, **overrides: Any) -> MediaRecord:
    values: dict[str, Any] = {
        "external_id": external_id,
        "name": external_id,
        "url": f"https://cdn.example.com/{external_id}.jpg",
        "kind": "image",
        "sort_order": 0.0,
        "position": 0,
        "starts_at": datetime(2024, 1, 1),
        "ends_at": datetime(2024, 12, 31, 23, 59),
        "days_of_week": ["Segunda", "Terça"],
        "enabled": True,
        "group_key": "loja-centro",
        "synced_at": datetime(2024, 1, 1),
    }
    values.update(overrides)
    return MediaRecord(**values)


async def _seed(tmp_path, records: list[MediaRecord]) -> Database:
    database = Database(f"sqlite+aiosqlite:///{tmp_path / 'query.db'}")
    await database.create_all()
    async with database.session_factory() as session:
        session.add_all(records)
        await session.commit()
    return database


@pytest.mark.anyio("asyncio")
async def test_only_enabled_rows_for_the_group_are_returned(tmp_path) -> None:
    database = await _seed(
        tmp_path,
        [
            _record("on"),
            _record("off", enabled=False),
            _record("elsewhere", group_key="loja-norte"),
        ],
    )
    service = MediaQueryService(cast(CatalogMirror, StubMirror()), database.session_factory)
    try:
        items = await service.get_filtered_media("loja-centro")
    finally:
        await database.dispose()

    assert [item.id for item in items] == ["on"]


@pytest.mark.anyio("asyncio")
async def test_window_bounds_are_inclusive(tmp_path) -> None:
    start = datetime(2024, 6, 1, 8, 0)
    end = datetime(2024, 6, 1, 18, 0)
    database = await _seed(
        tmp_path,
        [
            _record("window", starts_at=start, ends_at=end),
            _record("open-ended", starts_at=None, ends_at=None),
        ],
    )
    service = MediaQueryService(cast(CatalogMirror, StubMirror()), database.session_factory)
    try:
        at_start = await service.get_filtered_media("loja-centro", reference_timestamp=start)
        at_end = await service.get_filtered_media("loja-centro", reference_timestamp=end)
        after = await service.get_filtered_media(
            "loja-centro", reference_timestamp=datetime(2024, 6, 1, 18, 0, 1)
        )
        aware = await service.get_filtered_media(
            "loja-centro",
            reference_timestamp=datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc),
        )
        unfiltered = await service.get_filtered_media("loja-centro")
    finally:
        await database.dispose()

    assert [item.id for item in at_start] == ["window"]
    assert [item.id for item in at_end] == ["window"]
    assert after == []
    assert [item.id for item in aware] == ["window"]
    assert {item.id for item in unfiltered} == {"window", "open-ended"}


@pytest.mark.anyio("asyncio")
async def test_day_filter_requires_membership(tmp_path) -> None:
    database = await _seed(
        tmp_path,
        [
            _record("weekdays", days_of_week=["Segunda", "Terça"]),
            _record("weekend", days_of_week=["Sábado", "Domingo"]),
            _record("no-days", days_of_week=[]),
        ],
    )
    service = MediaQueryService(cast(CatalogMirror, StubMirror()), database.session_factory)
    try:
        monday = await service.get_filtered_media("loja-centro", day="Segunda")
        sunday = await service.get_filtered_media("loja-centro", day="Domingo")
    finally:
        await database.dispose()

    assert [item.id for item in monday] == ["weekdays"]
    assert [item.id for item in sunday] == ["weekend"]


@pytest.mark.anyio("asyncio")
async def test_results_follow_sort_order_then_position(tmp_path) -> None:
    database = await _seed(
        tmp_path,
        [
            _record("third", sort_order=2.0, position=0),
            _record("second", sort_order=1.0, position=5),
            _record("first", sort_order=1.0, position=1),
        ],
    )
    service = MediaQueryService(cast(CatalogMirror, StubMirror()), database.session_factory)
    try:
        items = await service.get_filtered_media("loja-centro")
    finally:
        await database.dispose()

    assert [item.id for item in items] == ["first", "second", "third"]


@pytest.mark.anyio("asyncio")
async def test_stale_mirror_is_synced_before_reading(tmp_path) -> None:
    database = await _seed(tmp_path, [_record("only")])
    mirror = StubMirror(stale=True)
    service = MediaQueryService(cast(CatalogMirror, mirror), database.session_factory)
    try:
        await service.get_filtered_media("loja-centro")
        await service.get_filtered_media("loja-centro")
    finally:
        await database.dispose()

    assert mirror.sync_calls == 1


@pytest.mark.anyio("asyncio")
async def test_list_media_paginates_and_validates(tmp_path) -> None:
    database = await _seed(
        tmp_path,
        [_record(f"m{index}", name=f"Item {index}", position=index) for index in range(5)],
    )
    service = MediaQueryService(cast(CatalogMirror, StubMirror()), database.session_factory)
    try:
        page = await service.list_media(page=2, limit=2, order_by="name", descending=False)
        with pytest.raises(ValueError):
            await service.list_media(order_by="url")
        with pytest.raises(ValueError):
            await service.list_media(page=0)
    finally:
        await database.dispose()

    payload = page.to_payload()
    assert payload["total"] == 5
    assert payload["totalPages"] == 3
    assert [media["name"] for media in payload["medias"]] == ["Item 2", "Item 3"]


@pytest.mark.anyio("asyncio")
async def test_end_to_end_sync_then_query(tmp_path) -> None:
    """Five enabled, in-window rows for a group come back ordered by sort order."""

    entries = make_entries(5, group="loja-sul")
    for entry, order in zip(entries, [5, 3, 1, 4, 2]):
        entry["ordem"] = order
    entries.append({**make_entries(1, group="loja-sul")[0], "_id": "disabled", "ativado": False})
    entries.append(
        {
            **make_entries(1, group="loja-sul")[0],
            "_id": "expired",
            "inicia": "2020-01-01T00:00:00Z",
            "final": "2020-12-31T00:00:00Z",
        }
    )
    entries.extend(make_entries(3, group="loja-norte"))
    for index, entry in enumerate(entries[-3:]):
        entry["_id"] = f"norte-{index}"

    settings = build_settings()
    database = Database(f"sqlite+aiosqlite:///{tmp_path / 'e2e.db'}")
    await database.create_all()
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(catalog_handler(entries)))
    mirror = CatalogMirror(settings, CatalogClient(settings, http_client), database.session_factory)
    service = MediaQueryService(mirror, database.session_factory)
    try:
        items = await service.get_filtered_media(
            "loja-sul",
            day="Segunda",
            reference_timestamp=datetime(2024, 6, 3, 12, 0),
        )
        row_count = await mirror.count()
    finally:
        await http_client.aclose()
        await database.dispose()

    assert row_count == 10
    assert len(items) == 5
    assert [item.sort_order for item in items] == [1.0, 2.0, 3.0, 4.0, 5.0]
    assert all(item.group_key == "loja-sul" for item in items)
