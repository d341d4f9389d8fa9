"""Picker for user-curated custom orders."""

from __future__ import annotations

import logging
import random

from ..errors import NoEligibleContentError
from ..models import (
    Category,
    ComicItem,
    CustomOrderItemView,
    CustomOrderView,
    EpisodeItem,
    NextItem,
    OrderSettings,
)
from .catalog_store import CatalogStore

logger = logging.getLogger(__name__)


class CustomOrderPicker:
    """Serve the next unwatched item of a randomly chosen active order."""

    category = Category.CUSTOM_ORDER

    def __init__(self, store: CatalogStore, rng: random.Random | None = None):
        self._store = store
        self._rng = rng or random.Random()

    async def _pending_items(self) -> list[tuple[CustomOrderView, CustomOrderItemView]]:
        pending = []
        for order in await self._store.list_active_custom_orders():
            item = order.next_unwatched()
            if item is not None:
                pending.append((order, item))
        return pending

    async def has_candidates(self, settings: OrderSettings) -> bool:
        return bool(await self._pending_items())

    async def next_custom_order_item(self) -> tuple[CustomOrderView, CustomOrderItemView]:
        """Return an order and its lowest-``sort_order`` unwatched item.

        Raises:
            NoEligibleContentError: no active order has unwatched items.
        """

        pending = await self._pending_items()
        if not pending:
            raise NoEligibleContentError("No active custom order has unwatched items")

        order, item = self._rng.choice(pending)
        logger.info(
            "Custom order %r serves item %s (sort order %s): %s",
            order.name,
            item.id,
            item.sort_order,
            item.title,
        )
        return order, item

    async def pick(self, settings: OrderSettings) -> NextItem:
        order, item = await self.next_custom_order_item()
        return self.to_next_item(order, item)

    @staticmethod
    def to_next_item(order: CustomOrderView, item: CustomOrderItemView) -> NextItem:
        details = item.details
        next_item = NextItem(
            category=Category.CUSTOM_ORDER,
            media_type=details.media_type,
            title=item.title,
            year=getattr(details, "year", None),
            plex_key=item.plex_key,
            sort_order=item.sort_order,
            custom_order_id=order.id,
            custom_order_name=order.name,
            custom_order_item_id=item.id,
            details=details,
        )
        if isinstance(details, EpisodeItem):
            next_item.series_title = details.series_title
            next_item.season_number = details.season_number
            next_item.episode_number = details.episode_number
        elif isinstance(details, ComicItem):
            next_item.series_title = details.series
        return next_item
