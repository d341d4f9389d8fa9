"""Read/write access to the catalog, custom orders and settings."""

from __future__ import annotations

import logging
from typing import Any, Mapping

from pydantic import TypeAdapter
from sqlalchemy import exists, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from ..db_models import (
    SETTINGS_ROW_ID,
    CustomOrder,
    CustomOrderItem,
    Movie,
    SettingsRecord,
    TVEpisode,
    TVSeason,
    TVShow,
    WatchLog,
)
from ..errors import NotFoundError
from ..models import (
    BookItem,
    CustomOrderItemView,
    CustomOrderView,
    EpisodeItem,
    EpisodeRef,
    ItemDetails,
    MovieRef,
    OrderSettings,
    SeriesRef,
    SettingsUpdate,
)
from ..utils import parse_collections

logger = logging.getLogger(__name__)

_DETAILS_ADAPTER: TypeAdapter[Any] = TypeAdapter(ItemDetails)


def _year_sort_key(movie: MovieRef) -> tuple[int, int, str]:
    # Movies without a year sort after dated ones.
    return (movie.year is None, movie.year or 0, movie.title.casefold())


class CatalogStore:
    """Catalog queries consumed by the pickers and resolvers.

    Settings are cached after the first read; :meth:`update_settings` is the
    only write path and refreshes the cache.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory
        self._settings_cache: OrderSettings | None = None

    # Settings -----------------------------------------------------------------

    async def get_settings(self) -> OrderSettings:
        """Return the settings singleton, creating it on first access."""

        if self._settings_cache is not None:
            return self._settings_cache

        async with self._session_factory() as session:
            record = await session.get(SettingsRecord, SETTINGS_ROW_ID)
            if record is None:
                record = await self._create_default_settings(session)
            self._settings_cache = self._settings_from_record(record)
        return self._settings_cache

    async def update_settings(
        self, update: SettingsUpdate | Mapping[str, Any]
    ) -> OrderSettings:
        """Apply a partial update and return the refreshed settings."""

        if not isinstance(update, SettingsUpdate):
            update = SettingsUpdate.model_validate(update)
        changes = update.changes()

        async with self._session_factory() as session:
            record = await session.get(SettingsRecord, SETTINGS_ROW_ID)
            if record is None:
                record = await self._create_default_settings(session)
            for field, value in changes.items():
                setattr(record, field, value)
            await session.commit()
            await session.refresh(record)
            refreshed = self._settings_from_record(record)

        self._settings_cache = refreshed
        logger.info("Settings updated: %s", ", ".join(sorted(changes)) or "no changes")
        return refreshed

    def invalidate_settings(self) -> None:
        self._settings_cache = None

    async def _create_default_settings(self, session: AsyncSession) -> SettingsRecord:
        defaults = OrderSettings()
        record = SettingsRecord(
            id=SETTINGS_ROW_ID,
            tv_general_percent=defaults.tv_general_percent,
            movies_general_percent=defaults.movies_general_percent,
            custom_order_percent=defaults.custom_order_percent,
            partially_watched_collection_percent=defaults.partially_watched_collection_percent,
            ignored_movie_collections=[],
            ignored_tv_collections=[],
        )
        session.add(record)
        try:
            await session.commit()
        except IntegrityError:
            # Another request created the row first.
            await session.rollback()
            existing = await session.get(SettingsRecord, SETTINGS_ROW_ID)
            if existing is None:
                raise
            return existing
        logger.info("Created default settings row")
        return record

    @staticmethod
    def _settings_from_record(record: SettingsRecord) -> OrderSettings:
        return OrderSettings(
            tv_general_percent=record.tv_general_percent,
            movies_general_percent=record.movies_general_percent,
            custom_order_percent=record.custom_order_percent,
            partially_watched_collection_percent=record.partially_watched_collection_percent,
            ignored_movie_collections=record.ignored_movie_collections or [],
            ignored_tv_collections=record.ignored_tv_collections or [],
        )

    # Series -------------------------------------------------------------------

    async def list_series(self) -> list[SeriesRef]:
        async with self._session_factory() as session:
            result = await session.execute(select(TVShow).order_by(TVShow.title))
            return [self._series_ref(show) for show in result.scalars().all()]

    async def get_series(self, series_id: str) -> SeriesRef | None:
        async with self._session_factory() as session:
            show = await session.get(TVShow, series_id)
            return self._series_ref(show) if show is not None else None

    async def find_series_by_collection(self, name: str) -> list[SeriesRef]:
        """Return series tagged with ``name`` or titled ``name`` (case-insensitive)."""

        target = (name or "").strip().casefold()
        if not target:
            return []
        matches: list[SeriesRef] = []
        for series in await self.list_series():
            tags = {tag.casefold() for tag in series.collections}
            if target in tags or series.title.casefold() == target:
                matches.append(series)
        return matches

    async def list_unwatched_episodes(
        self, series_id: str, after: tuple[int, int] | None = None
    ) -> list[EpisodeRef]:
        """Return regular-season episodes positioned after ``after``.

        Episodes are ordered by season then episode number. Season 0
        (specials) is never included.
        """

        async with self._session_factory() as session:
            show = await session.get(TVShow, series_id)
            if show is None:
                raise NotFoundError(f"Series {series_id} not found")
            stmt = (
                select(TVEpisode, TVSeason.title)
                .join(TVSeason, TVEpisode.season_id == TVSeason.id)
                .where(TVEpisode.show_id == series_id, TVEpisode.season_number > 0)
                .order_by(TVEpisode.season_number, TVEpisode.episode_number)
            )
            result = await session.execute(stmt)
            rows = result.all()

        episodes: list[EpisodeRef] = []
        for episode, season_title in rows:
            position = (episode.season_number, episode.episode_number)
            if after is not None and position <= after:
                continue
            episodes.append(
                EpisodeRef(
                    series_id=show.id,
                    series_title=show.title,
                    episode_id=episode.id,
                    season_number=episode.season_number,
                    episode_number=episode.episode_number,
                    title=episode.title,
                    season_title=season_title,
                )
            )
        return episodes

    async def find_episode(self, episode_id: str) -> EpisodeRef | None:
        async with self._session_factory() as session:
            result = await session.execute(
                select(TVEpisode, TVShow.title, TVSeason.title)
                .join(TVShow, TVEpisode.show_id == TVShow.id)
                .join(TVSeason, TVEpisode.season_id == TVSeason.id)
                .where(TVEpisode.id == episode_id)
            )
            row = result.first()
        if row is None:
            return None
        episode, series_title, season_title = row
        return EpisodeRef(
            series_id=episode.show_id,
            series_title=series_title,
            episode_id=episode.id,
            season_number=episode.season_number,
            episode_number=episode.episode_number,
            title=episode.title,
            season_title=season_title,
        )

    # Movies -------------------------------------------------------------------

    async def list_unwatched_movies(self) -> list[MovieRef]:
        """Movies without a completed session."""

        completed = exists().where(
            WatchLog.plex_key == Movie.id, WatchLog.is_completed.is_(True)
        )
        async with self._session_factory() as session:
            result = await session.execute(
                select(Movie).where(~completed).order_by(Movie.title)
            )
            return [self._movie_ref(movie) for movie in result.scalars().all()]

    async def list_collection_movies(self, collection: str) -> list[MovieRef]:
        """Unwatched movies of a collection, oldest release first, then by title."""

        target = collection.strip().casefold()
        movies = [
            movie
            for movie in await self.list_unwatched_movies()
            if target in {name.casefold() for name in movie.collections}
        ]
        return sorted(movies, key=_year_sort_key)

    # Custom orders ------------------------------------------------------------

    async def list_active_custom_orders(self) -> list[CustomOrderView]:
        async with self._session_factory() as session:
            stmt = (
                select(CustomOrder)
                .where(CustomOrder.is_active.is_(True))
                .options(selectinload(CustomOrder.items))
                .order_by(CustomOrder.id)
            )
            result = await session.execute(stmt)
            return [self._order_view(order) for order in result.scalars().all()]

    async def custom_order_reservations(self) -> tuple[set[str], set[str]]:
        """Return plex keys and series titles queued in active custom orders.

        Only unwatched items count.
        """

        plex_keys: set[str] = set()
        series_titles: set[str] = set()
        for order in await self.list_active_custom_orders():
            for item in order.items:
                if item.is_watched:
                    continue
                if item.plex_key:
                    plex_keys.add(item.plex_key)
                if isinstance(item.details, EpisodeItem) and item.details.series_title:
                    series_titles.add(item.details.series_title.casefold())
        return plex_keys, series_titles

    async def create_custom_order(
        self, name: str, *, description: str | None = None, is_active: bool = True
    ) -> CustomOrderView:
        async with self._session_factory() as session:
            order = CustomOrder(name=name, description=description, is_active=is_active)
            session.add(order)
            await session.commit()
            return CustomOrderView(
                id=order.id,
                name=order.name,
                description=order.description,
                is_active=order.is_active,
            )

    async def add_custom_order_item(
        self,
        order_id: int,
        title: str,
        details: ItemDetails | Mapping[str, Any],
        *,
        sort_order: int | None = None,
        is_watched: bool = False,
    ) -> CustomOrderItemView:
        """Append an item; without ``sort_order`` it goes after the last one."""

        if not isinstance(details, Mapping):
            details = details.model_dump()
        parsed = _DETAILS_ADAPTER.validate_python(details)

        async with self._session_factory() as session:
            order = await session.get(CustomOrder, order_id)
            if order is None:
                raise NotFoundError(f"Custom order {order_id} not found")
            if sort_order is None:
                result = await session.execute(
                    select(func.max(CustomOrderItem.sort_order)).where(
                        CustomOrderItem.custom_order_id == order_id
                    )
                )
                last = result.scalar_one_or_none()
                sort_order = 0 if last is None else last + 1

            payload = parsed.model_dump(exclude={"media_type", "percent_read"})
            plex_key = payload.pop("plex_key", None)
            record = CustomOrderItem(
                custom_order_id=order_id,
                media_type=parsed.media_type,
                title=title,
                sort_order=sort_order,
                is_watched=is_watched,
                plex_key=plex_key,
                details=payload,
            )
            session.add(record)
            await session.commit()
            return self._item_view(record)

    async def get_custom_order_item(self, item_id: int) -> CustomOrderItemView:
        async with self._session_factory() as session:
            record = await session.get(CustomOrderItem, item_id)
            if record is None:
                raise NotFoundError(f"Custom order item {item_id} not found")
            return self._item_view(record)

    async def mark_item_watched(self, item_id: int) -> CustomOrderItemView:
        """Flag an item as consumed. Watched items never revert."""

        async with self._session_factory() as session:
            record = await session.get(CustomOrderItem, item_id)
            if record is None:
                raise NotFoundError(f"Custom order item {item_id} not found")
            if not record.is_watched:
                record.is_watched = True
                await session.commit()
                logger.info("Marked custom order item %s as watched", item_id)
            return self._item_view(record)

    async def record_book_progress(
        self, item_id: int, current_page: int
    ) -> CustomOrderItemView:
        """Store the reader's page; finishing the last page marks the book watched."""

        if current_page < 0:
            raise ValueError("current_page must not be negative")
        async with self._session_factory() as session:
            record = await session.get(CustomOrderItem, item_id)
            if record is None:
                raise NotFoundError(f"Custom order item {item_id} not found")
            if record.media_type != "book":
                raise ValueError(
                    f"Reading progress only applies to books, not {record.media_type}"
                )
            details = dict(record.details or {})
            details["current_page"] = current_page
            book = BookItem.model_validate(details)
            record.details = details
            if book.is_finished() and not record.is_watched:
                record.is_watched = True
                logger.info("Book item %s finished at page %s", item_id, current_page)
            await session.commit()
            return self._item_view(record)

    # Conversions --------------------------------------------------------------

    @staticmethod
    def _movie_ref(movie: Movie) -> MovieRef:
        return MovieRef(
            id=movie.id,
            title=movie.title,
            year=movie.year,
            collections=parse_collections(movie.collections),
        )

    @staticmethod
    def _series_ref(show: TVShow) -> SeriesRef:
        return SeriesRef(
            id=show.id,
            title=show.title,
            year=show.year,
            collections=parse_collections(show.collections),
        )

    @staticmethod
    def _item_view(record: CustomOrderItem) -> CustomOrderItemView:
        payload: dict[str, Any] = dict(record.details or {})
        payload["media_type"] = record.media_type
        if record.media_type in {"movie", "tv"}:
            payload["plex_key"] = record.plex_key
        return CustomOrderItemView(
            id=record.id,
            custom_order_id=record.custom_order_id,
            title=record.title,
            sort_order=record.sort_order,
            is_watched=record.is_watched,
            details=_DETAILS_ADAPTER.validate_python(payload),
        )

    def _order_view(self, order: CustomOrder) -> CustomOrderView:
        return CustomOrderView(
            id=order.id,
            name=order.name,
            description=order.description,
            is_active=order.is_active,
            items=[self._item_view(item) for item in order.items],
        )
