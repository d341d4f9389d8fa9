"""Next-episode inference from completed sessions."""

from __future__ import annotations

import logging

from ..errors import AllWatchedError, NotFoundError
from ..models import EpisodeRef
from .catalog_store import CatalogStore
from .session_tracker import SessionTracker

logger = logging.getLogger(__name__)


class ProgressionResolver:
    """Computes the next unconsumed episode of a series.

    The furthest completed ``(season, episode)`` wins, compared season first.
    The next episode is the first catalog episode after it, which is the
    successor in the same season or, once a season is exhausted, the first
    episode of the following season.
    """

    def __init__(self, store: CatalogStore, tracker: SessionTracker):
        self._store = store
        self._tracker = tracker

    async def next_episode(self, series_id: str) -> EpisodeRef:
        series = await self._store.get_series(series_id)
        if series is None:
            raise NotFoundError(f"Series {series_id} not found")

        position = await self._tracker.last_completed_position(series_id)
        remaining = await self._store.list_unwatched_episodes(series_id, after=position)
        if not remaining:
            raise AllWatchedError(series_id, f"All episodes of {series.title} are watched")

        episode = remaining[0]
        logger.debug(
            "Next episode for %s after %s: S%02dE%02d %s",
            series.title,
            position,
            episode.season_number,
            episode.episode_number,
            episode.title,
        )
        return episode
