from __future__ import annotations

import asyncio
import random

import pytest

from app.models import MovieRef, OrderSettings
from app.services.catalog_store import CatalogStore
from app.services.continuation import (
    CollectionContinuationResolver,
    ContinueMovie,
    ContinueSeries,
    Standalone,
)
from app.services.progression import ProgressionResolver
from app.services.session_tracker import SessionTracker
from app.utils import search_variants

from helpers import add_movie, add_series, complete_episode, complete_movie, open_database


@pytest.mark.parametrize(
    ("name", "expected"),
    [
        ("Batman Collection", ["Batman Collection", "Batman"]),
        ("Batman", ["Batman"]),
        ("  Alien Collection ", ["Alien Collection", "Alien"]),
        ("Collection", ["Collection"]),
        ("", []),
    ],
)
def test_search_variants_only_strip_suffix(name: str, expected: list[str]) -> None:
    assert search_variants(name) == expected


def _always(percent: int) -> OrderSettings:
    return OrderSettings(partially_watched_collection_percent=percent)


def _build(database):
    store = CatalogStore(database.session_factory)
    tracker = SessionTracker(database.session_factory)
    progression = ProgressionResolver(store, tracker)
    resolver = CollectionContinuationResolver(store, progression, random.Random(5))
    return store, tracker, resolver


def test_movie_without_collections_is_standalone(tmp_path) -> None:
    async def runner() -> None:
        database = await open_database(tmp_path)
        _, _, resolver = _build(database)
        movie = MovieRef(id="m1", title="Heat", year=1995)

        decision = await resolver.resolve(movie, _always(100))

        assert decision == Standalone(movie)
        await database.dispose()

    asyncio.run(runner())


def test_coin_failure_is_standalone(tmp_path) -> None:
    async def runner() -> None:
        database = await open_database(tmp_path)
        await add_series(database.session_factory, "bat", "Batman", {1: 3})
        _, _, resolver = _build(database)
        movie = MovieRef(id="m1", title="Batman Begins", collections=["Batman Collection"])

        decision = await resolver.resolve(movie, _always(0))

        assert isinstance(decision, Standalone)
        await database.dispose()

    asyncio.run(runner())


def test_collection_continues_as_series_via_stripped_name(tmp_path) -> None:
    async def runner() -> None:
        database = await open_database(tmp_path)
        await add_series(database.session_factory, "bat", "Batman", {1: 3})
        _, tracker, resolver = _build(database)
        await complete_episode(tracker, "bat", "Batman", 1, 1)
        movie = MovieRef(id="m1", title="Batman Begins", collections=["Batman Collection"])

        decision = await resolver.resolve(movie, _always(100))

        assert isinstance(decision, ContinueSeries)
        assert decision.collection == "Batman Collection"
        assert decision.series.id == "bat"
        assert decision.episode.position == (1, 2)
        await database.dispose()

    asyncio.run(runner())


def test_series_found_by_collection_tag(tmp_path) -> None:
    async def runner() -> None:
        database = await open_database(tmp_path)
        await add_series(
            database.session_factory,
            "clone",
            "The Clone Wars",
            {1: 2},
            collections=["Star Wars Collection"],
        )
        _, _, resolver = _build(database)
        movie = MovieRef(id="m1", title="A New Hope", collections=["Star Wars Collection"])

        decision = await resolver.resolve(movie, _always(100))

        assert isinstance(decision, ContinueSeries)
        assert decision.series.title == "The Clone Wars"
        await database.dispose()

    asyncio.run(runner())


def test_falls_back_to_earliest_unwatched_movie(tmp_path) -> None:
    async def runner() -> None:
        database = await open_database(tmp_path)
        factory = database.session_factory
        collection = ["Batman Collection"]
        await add_series(factory, "bat", "Batman", {1: 1})
        await add_movie(factory, "m-2005", "Batman Begins", year=2005, collections=collection)
        await add_movie(factory, "m-1989", "Batman", year=1989, collections=collection)
        await add_movie(factory, "m-1992", "Batman Returns", year=1992, collections=collection)
        await add_movie(factory, "m-undated", "Batman: Bootleg", collections=collection)
        _, tracker, resolver = _build(database)
        await complete_episode(tracker, "bat", "Batman", 1, 1)
        await complete_movie(tracker, "m-1989", "Batman")

        movie = MovieRef(id="m-2005", title="Batman Begins", year=2005, collections=collection)
        decision = await resolver.resolve(movie, _always(100))

        assert isinstance(decision, ContinueMovie)
        assert decision.movie.id == "m-1992"
        await database.dispose()

    asyncio.run(runner())


def test_no_continuation_is_standalone(tmp_path) -> None:
    async def runner() -> None:
        database = await open_database(tmp_path)
        _, _, resolver = _build(database)
        movie = MovieRef(id="m1", title="Alien", collections=["Alien Collection"])

        decision = await resolver.resolve(movie, _always(100))

        assert decision == Standalone(movie)
        await database.dispose()

    asyncio.run(runner())


def test_collection_movies_sorted_by_year_then_title(tmp_path) -> None:
    async def runner() -> None:
        database = await open_database(tmp_path)
        factory = database.session_factory
        await add_movie(factory, "c", "Zeta", year=2001, collections=["Set"])
        await add_movie(factory, "a", "Alpha", year=2001, collections=["Set"])
        await add_movie(factory, "n", "Undated", collections=["Set"])
        await add_movie(factory, "o", "Older", year=1999, collections=["set"])
        await add_movie(factory, "x", "Elsewhere", year=1990, collections=["Other"])
        store = CatalogStore(factory)

        movies = await store.list_collection_movies("Set")

        assert [movie.id for movie in movies] == ["o", "a", "c", "n"]
        await database.dispose()

    asyncio.run(runner())
