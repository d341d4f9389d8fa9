"""Decide whether a picked movie continues one of its collections."""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from typing import Union

from ..errors import AllWatchedError
from ..models import EpisodeRef, MovieRef, OrderSettings, SeriesRef
from ..utils import search_variants
from .catalog_store import CatalogStore
from .progression import ProgressionResolver

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class Standalone:
    """Treat the movie on its own."""

    movie: MovieRef


@dataclass(slots=True)
class ContinueSeries:
    """The collection maps onto a series; watch its next episode."""

    collection: str
    series: SeriesRef
    episode: EpisodeRef


@dataclass(slots=True)
class ContinueMovie:
    """Watch the earliest unwatched movie of the collection."""

    collection: str
    movie: MovieRef


ContinuationDecision = Union[Standalone, ContinueSeries, ContinueMovie]


class CollectionContinuationResolver:
    def __init__(
        self,
        store: CatalogStore,
        progression: ProgressionResolver,
        rng: random.Random | None = None,
    ):
        self._store = store
        self._progression = progression
        self._rng = rng or random.Random()

    def should_continue(self, settings: OrderSettings) -> bool:
        """Flip the partially-watched-collection coin."""

        return self._rng.random() * 100 < settings.partially_watched_collection_percent

    async def resolve(self, movie: MovieRef, settings: OrderSettings) -> ContinuationDecision:
        if not movie.collections:
            return Standalone(movie)
        if not self.should_continue(settings):
            logger.debug("Not continuing collections of %s this time", movie.title)
            return Standalone(movie)

        for collection in movie.collections:
            decision = await self._continue_collection(collection)
            if decision is not None:
                return decision

        logger.info("No continuation found for %s, treating as standalone", movie.title)
        return Standalone(movie)

    async def _continue_collection(self, collection: str) -> ContinuationDecision | None:
        for variant in search_variants(collection):
            for series in await self._store.find_series_by_collection(variant):
                try:
                    episode = await self._progression.next_episode(series.id)
                except AllWatchedError:
                    continue
                logger.info(
                    "Collection %r continues as series %s (variant %r)",
                    collection,
                    series.title,
                    variant,
                )
                return ContinueSeries(collection=collection, series=series, episode=episode)

        movies = await self._store.list_collection_movies(collection)
        if movies:
            logger.info(
                "Continuing collection %r with %s (%s)",
                collection,
                movies[0].title,
                movies[0].year,
            )
            return ContinueMovie(collection=collection, movie=movies[0])
        return None
