from __future__ import annotations

import asyncio
from datetime import datetime

import pytest
from sqlalchemy import create_engine, inspect
from sqlalchemy.exc import IntegrityError

from app.database import Database
from app.db_models import WatchLog


def _log(**overrides) -> WatchLog:
    values = dict(
        media_type="movie",
        activity_type="watch",
        title="Heat",
        subject_key="plex:m-1",
        plex_key="m-1",
        start_time=datetime(2024, 1, 1),
        is_completed=False,
        is_paused=False,
    )
    values.update(overrides)
    return WatchLog(**values)


def test_create_all_builds_schema(tmp_path) -> None:
    database_path = tmp_path / "schema.db"

    database = Database(f"sqlite+aiosqlite:///{database_path}")
    asyncio.run(database.create_all())
    asyncio.run(database.dispose())

    inspector_engine = create_engine(f"sqlite:///{database_path}")
    try:
        inspector = inspect(inspector_engine)
        tables = set(inspector.get_table_names())
        indexes = {index["name"]: index for index in inspector.get_indexes("watch_logs")}
    finally:
        inspector_engine.dispose()

    assert {
        "settings",
        "movies",
        "tv_shows",
        "tv_seasons",
        "tv_episodes",
        "custom_orders",
        "custom_order_items",
        "watch_logs",
    } <= tables
    assert "uq_watch_logs_active_subject" in indexes


def test_only_one_running_session_per_subject(tmp_path) -> None:
    async def runner() -> None:
        database = Database(f"sqlite+aiosqlite:///{tmp_path / 'sessions.db'}")
        await database.create_all()

        async with database.session() as session:
            session.add(_log())
            session.add(_log(is_paused=True))
            session.add(_log(is_completed=True))
            await session.commit()

        async with database.session() as session:
            session.add(_log())
            with pytest.raises(IntegrityError):
                await session.commit()

        await database.dispose()

    asyncio.run(runner())
