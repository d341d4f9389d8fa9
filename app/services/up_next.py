"""Service wiring the store, tracker, resolvers and pickers together."""

from __future__ import annotations

import logging
import random
from typing import Any, Mapping

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..errors import NotFoundError
from ..models import (
    CustomOrderItemView,
    EpisodeRef,
    NextItem,
    OrderSettings,
    SessionSubject,
    SessionView,
    SettingsUpdate,
)
from .catalog_store import CatalogStore
from .continuation import CollectionContinuationResolver
from .custom_orders import CustomOrderPicker
from .metadata_cache import MetadataCache
from .pickers import MoviePicker, TVPicker
from .progression import ProgressionResolver
from .selection import SelectionEngine
from .session_tracker import SessionTracker

logger = logging.getLogger(__name__)


class UpNextService:
    """Entry point used by the HTTP layer."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        metadata: MetadataCache | None = None,
        *,
        rng: random.Random | None = None,
        enrichment_timeout: float = 3.0,
    ):
        self._rng = rng or random.Random()
        self.store = CatalogStore(session_factory)
        self.tracker = SessionTracker(session_factory)
        self.progression = ProgressionResolver(self.store, self.tracker)
        self.continuation = CollectionContinuationResolver(
            self.store, self.progression, self._rng
        )
        self.custom_orders = CustomOrderPicker(self.store, self._rng)
        self.engine = SelectionEngine(
            [
                TVPicker(self.store, self.progression, self._rng),
                MoviePicker(self.store, self.continuation, self._rng),
                self.custom_orders,
            ],
            metadata,
            rng=self._rng,
            enrichment_timeout=enrichment_timeout,
        )

    async def up_next(self) -> NextItem:
        settings = await self.store.get_settings()
        return await self.engine.select_next(settings)

    async def next_episode(self, series_id: str) -> EpisodeRef:
        return await self.progression.next_episode(series_id)

    async def next_custom_order_item(self) -> NextItem:
        settings = await self.store.get_settings()
        item = await self.custom_orders.pick(settings)
        return await self.engine.enrich(item)

    async def mark_item_watched(self, item_id: int) -> CustomOrderItemView:
        return await self.store.mark_item_watched(item_id)

    async def record_book_progress(
        self, item_id: int, current_page: int
    ) -> CustomOrderItemView:
        return await self.store.record_book_progress(item_id, current_page)

    async def get_settings(self) -> OrderSettings:
        return await self.store.get_settings()

    async def update_settings(
        self, update: SettingsUpdate | Mapping[str, Any]
    ) -> OrderSettings:
        return await self.store.update_settings(update)

    async def resolve_subject(self, subject: SessionSubject) -> SessionSubject:
        """Fill in series and position for a TV subject known only by key.

        TV progression reads ``series_key``, ``season_number`` and
        ``episode_number`` from completed sessions, so a bare episode key is
        looked up in the library. Custom order items that are not in the
        library are kept as given.

        Raises:
            NotFoundError: ``plex_key`` names no known episode and the
                subject is not a custom order item.
        """

        if subject.media_type != "tv" or (
            subject.series_key
            and subject.season_number is not None
            and subject.episode_number is not None
        ):
            return subject

        plex_key = subject.plex_key
        if plex_key is None and subject.custom_order_item_id is not None:
            item = await self.store.get_custom_order_item(subject.custom_order_item_id)
            plex_key = item.plex_key

        episode = await self.store.find_episode(plex_key) if plex_key else None
        if episode is None:
            if subject.custom_order_item_id is not None:
                return subject
            raise NotFoundError(f"Episode {subject.plex_key} not found")

        return subject.model_copy(
            update={
                "series_key": episode.series_id,
                "series_title": subject.series_title or episode.series_title,
                "season_number": episode.season_number,
                "episode_number": episode.episode_number,
            }
        )

    async def start_session(self, subject: SessionSubject) -> SessionView:
        subject = await self.resolve_subject(subject)
        return await self.tracker.start_session(subject)

    async def pause_session(self, session_id: int) -> SessionView:
        return await self.tracker.pause_session(session_id)

    async def resume_session(self, session_id: int) -> SessionView:
        return await self.tracker.resume_session(session_id)

    async def complete_session(
        self, session_id: int, final_watch_time: float | None = None
    ) -> SessionView:
        """Complete a session and mark its custom order item as consumed."""

        view = await self.tracker.complete_session(session_id, final_watch_time)
        if view.custom_order_item_id is not None:
            await self.store.mark_item_watched(view.custom_order_item_id)
        return view

    async def log_watched(self, subject: SessionSubject, minutes: float = 0.0) -> SessionView:
        subject = await self.resolve_subject(subject)
        view = await self.tracker.log_watched(subject, minutes)
        if view.custom_order_item_id is not None:
            await self.store.mark_item_watched(view.custom_order_item_id)
        return view

    async def delete_session(self, session_id: int) -> None:
        await self.tracker.delete_session(session_id)

    async def get_session(self, session_id: int) -> SessionView:
        return await self.tracker.get_session(session_id)

    async def list_recent_sessions(self, limit: int = 20) -> list[SessionView]:
        return await self.tracker.list_recent(limit)
