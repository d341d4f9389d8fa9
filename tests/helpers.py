"""Shared seeding helpers for database-backed tests."""

from __future__ import annotations

from datetime import datetime, timedelta
from pathlib import Path
from typing import Iterable, Mapping

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.database import Database
from app.db_models import Movie, TVEpisode, TVSeason, TVShow
from app.models import SessionSubject
from app.services.session_tracker import SessionTracker


class ManualClock:
    """Deterministic ``datetime`` source for session timing."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 1, 1, 20, 0, 0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, minutes: float) -> None:
        self.now += timedelta(minutes=minutes)


async def open_database(tmp_path: Path, name: str = "masterorder.db") -> Database:
    database = Database(f"sqlite+aiosqlite:///{tmp_path / name}")
    await database.create_all()
    return database


def episode_id(series_id: str, season: int, episode: int) -> str:
    return f"{series_id}-s{season}e{episode}"


async def add_series(
    session_factory: async_sessionmaker[AsyncSession],
    series_id: str,
    title: str,
    seasons: Mapping[int, int],
    *,
    year: int | None = None,
    collections: Iterable[str] = (),
) -> None:
    """Insert a show with ``seasons`` mapping season number to episode count."""

    async with session_factory() as session:
        show = TVShow(id=series_id, title=title, year=year, collections=list(collections))
        for season_number, episode_count in seasons.items():
            season = TVSeason(
                id=f"{series_id}-s{season_number}",
                show_id=series_id,
                season_number=season_number,
                title=f"Season {season_number}",
            )
            for number in range(1, episode_count + 1):
                season.episodes.append(
                    TVEpisode(
                        id=episode_id(series_id, season_number, number),
                        show_id=series_id,
                        season_number=season_number,
                        episode_number=number,
                        title=f"{title} {season_number}x{number:02d}",
                    )
                )
            show.seasons.append(season)
        session.add(show)
        await session.commit()


async def add_movie(
    session_factory: async_sessionmaker[AsyncSession],
    movie_id: str,
    title: str,
    *,
    year: int | None = None,
    collections: Iterable[str] = (),
) -> None:
    async with session_factory() as session:
        session.add(
            Movie(id=movie_id, title=title, year=year, collections=list(collections))
        )
        await session.commit()


def episode_subject(series_id: str, title: str, season: int, episode: int) -> SessionSubject:
    return SessionSubject(
        media_type="tv",
        title=f"{title} {season}x{episode:02d}",
        plex_key=episode_id(series_id, season, episode),
        series_key=series_id,
        series_title=title,
        season_number=season,
        episode_number=episode,
    )


async def complete_episode(
    tracker: SessionTracker, series_id: str, title: str, season: int, episode: int
) -> None:
    await tracker.log_watched(episode_subject(series_id, title, season, episode), 42.0)


async def complete_movie(tracker: SessionTracker, movie_id: str, title: str) -> None:
    await tracker.log_watched(
        SessionSubject(media_type="movie", title=title, plex_key=movie_id), 110.0
    )
