"""General TV and movie pickers."""

from __future__ import annotations

import logging
import random
from typing import Iterable, TypeVar

from ..errors import AllWatchedError, NoEligibleContentError, NotFoundError
from ..models import Category, EpisodeRef, MovieRef, NextItem, OrderSettings, SeriesRef
from .catalog_store import CatalogStore
from .continuation import (
    CollectionContinuationResolver,
    ContinuationDecision,
    ContinueMovie,
    ContinueSeries,
)
from .progression import ProgressionResolver

logger = logging.getLogger(__name__)

RefT = TypeVar("RefT", MovieRef, SeriesRef)
T = TypeVar("T")


def _in_ignored_collection(collections: Iterable[str], ignored: Iterable[str]) -> bool:
    ignored_names = {name.casefold() for name in ignored}
    return any(name.casefold() in ignored_names for name in collections)


def _without_ignored(refs: list[RefT], ignored: list[str]) -> list[RefT]:
    if not ignored:
        return refs
    return [ref for ref in refs if not _in_ignored_collection(ref.collections, ignored)]


def _prefer_filtered(original: list[T], filtered: list[T], label: str) -> list[T]:
    if filtered:
        return filtered
    if original:
        logger.info("Filtering %s would leave nothing; using the unfiltered list", label)
    return original


class TVPicker:
    """Pick the next episode of a random eligible series."""

    category = Category.TV

    def __init__(
        self,
        store: CatalogStore,
        progression: ProgressionResolver,
        rng: random.Random | None = None,
    ):
        self._store = store
        self._progression = progression
        self._rng = rng or random.Random()

    async def candidate_episodes(
        self, settings: OrderSettings
    ) -> list[tuple[SeriesRef, EpisodeRef]]:
        """Next episode of every unfinished series the filters allow.

        Ignored collections are always excluded. Series queued in a custom
        order are skipped unless no other series has an episode left.
        """

        series = _without_ignored(
            await self._store.list_series(), settings.ignored_tv_collections
        )
        available: list[tuple[SeriesRef, EpisodeRef]] = []
        for ref in series:
            try:
                episode = await self._progression.next_episode(ref.id)
            except (AllWatchedError, NotFoundError):
                continue
            available.append((ref, episode))
        if not available:
            return []

        _, reserved_titles = await self._store.custom_order_reservations()
        unreserved = [
            entry for entry in available if entry[0].title.casefold() not in reserved_titles
        ]
        return _prefer_filtered(available, unreserved, "custom-order TV shows")

    async def has_candidates(self, settings: OrderSettings) -> bool:
        return bool(await self.candidate_episodes(settings))

    async def pick(self, settings: OrderSettings) -> NextItem:
        candidates = await self.candidate_episodes(settings)
        if not candidates:
            raise NoEligibleContentError("No series has an unwatched episode")

        series, episode = self._rng.choice(candidates)
        logger.info(
            "TV pick: %s S%02dE%02d", series.title, episode.season_number, episode.episode_number
        )
        return NextItem(
            category=self.category,
            media_type="tv",
            title=episode.title,
            year=series.year,
            plex_key=episode.episode_id,
            series_id=series.id,
            series_title=series.title,
            season_number=episode.season_number,
            episode_number=episode.episode_number,
        )


class MoviePicker:
    """Pick a random unwatched movie, possibly continuing its collection."""

    category = Category.MOVIES

    def __init__(
        self,
        store: CatalogStore,
        resolver: CollectionContinuationResolver,
        rng: random.Random | None = None,
    ):
        self._store = store
        self._resolver = resolver
        self._rng = rng or random.Random()

    async def candidate_movies(self, settings: OrderSettings) -> list[MovieRef]:
        unwatched = await self._store.list_unwatched_movies()
        if not unwatched:
            return []

        allowed = _prefer_filtered(
            unwatched,
            _without_ignored(unwatched, settings.ignored_movie_collections),
            "ignored movie collections",
        )
        reserved_keys, _ = await self._store.custom_order_reservations()
        unreserved = [movie for movie in allowed if movie.id not in reserved_keys]
        return _prefer_filtered(allowed, unreserved, "custom-order movies")

    async def has_candidates(self, settings: OrderSettings) -> bool:
        return bool(await self.candidate_movies(settings))

    async def pick(self, settings: OrderSettings) -> NextItem:
        candidates = await self.candidate_movies(settings)
        if not candidates:
            raise NoEligibleContentError("No unwatched movies")

        movie = self._rng.choice(candidates)
        logger.info("Movie pick: %s (%s)", movie.title, movie.year)
        decision = await self._resolver.resolve(movie, settings)
        return self._to_next_item(decision)

    def _to_next_item(self, decision: ContinuationDecision) -> NextItem:
        if isinstance(decision, ContinueSeries):
            episode = decision.episode
            return NextItem(
                category=self.category,
                media_type="tv",
                title=episode.title,
                year=decision.series.year,
                plex_key=episode.episode_id,
                series_id=decision.series.id,
                series_title=decision.series.title,
                season_number=episode.season_number,
                episode_number=episode.episode_number,
                collection=decision.collection,
            )

        movie = decision.movie
        return NextItem(
            category=self.category,
            media_type="movie",
            title=movie.title,
            year=movie.year,
            plex_key=movie.id,
            collection=decision.collection if isinstance(decision, ContinueMovie) else None,
        )
