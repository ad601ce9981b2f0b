from __future__ import annotations

import asyncio

from sqlalchemy import create_engine, inspect

from app.database import CacheBase, Database
import app.db_models  # noqa: F401  registers the mapped tables


def test_server_database_creates_mirror_and_device_tables(tmp_path) -> None:
    database_path = tmp_path / "server.db"

    database = Database(f"sqlite+aiosqlite:///{database_path}")

    async def _create_twice() -> None:
        await database.create_all()
        await database.create_all()
        await database.dispose()

    asyncio.run(_create_twice())

    engine = create_engine(f"sqlite:///{database_path}")
    try:
        inspector = inspect(engine)
        tables = set(inspector.get_table_names())
        indexes = {index["name"] for index in inspector.get_indexes("media")}
    finally:
        engine.dispose()
    assert tables == {"media", "devices"}
    assert {"ix_media_group_enabled", "ix_media_window"} <= indexes


def test_cache_database_only_creates_the_asset_table(tmp_path) -> None:
    database_path = tmp_path / "cache.db"

    database = Database(
        f"sqlite+aiosqlite:///{database_path}", metadata=CacheBase.metadata
    )
    asyncio.run(database.create_all())
    asyncio.run(database.dispose())

    engine = create_engine(f"sqlite:///{database_path}")
    try:
        tables = set(inspect(engine).get_table_names())
    finally:
        engine.dispose()
    assert tables == {"cached_assets"}
