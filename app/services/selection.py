"""Weighted category selection with fallback and enrichment."""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Awaitable, Iterable, Protocol, Sequence

from ..errors import (
    AllWatchedError,
    EnrichmentTimeoutError,
    MetadataError,
    NoEligibleContentError,
    NotFoundError,
)
from ..models import (
    CATEGORY_ORDER,
    BookItem,
    Category,
    ComicItem,
    Enrichment,
    NextItem,
    OrderSettings,
    ShortStoryItem,
)
from .metadata_cache import ArtworkContext, MetadataCache

logger = logging.getLogger(__name__)


class Picker(Protocol):
    category: Category

    async def has_candidates(self, settings: OrderSettings) -> bool: ...

    async def pick(self, settings: OrderSettings) -> NextItem: ...


@dataclass(slots=True)
class CategoryWeight:
    category: Category
    weight: float
    eligible: bool = True


def normalise_weights(entries: Iterable[CategoryWeight]) -> list[CategoryWeight]:
    """Drop ineligible entries and scale the rest to sum to 100.

    Order is preserved. When every eligible weight is zero the eligible
    categories share the range equally.
    """

    eligible = [entry for entry in entries if entry.eligible]
    if not eligible:
        return []

    total = sum(max(entry.weight, 0.0) for entry in eligible)
    if total <= 0:
        share = 100.0 / len(eligible)
        return [CategoryWeight(entry.category, share) for entry in eligible]
    return [
        CategoryWeight(entry.category, max(entry.weight, 0.0) * 100.0 / total)
        for entry in eligible
    ]


def choose_category(weights: Sequence[CategoryWeight], roll: float) -> Category:
    """Map ``roll`` in ``[0, 100)`` onto cumulative ranges.

    Entry ``i`` wins when ``low_i <= roll < high_i``; zero-width ranges never
    win.
    """

    if not weights:
        raise NoEligibleContentError("No eligible categories")

    low = 0.0
    for entry in weights:
        high = low + entry.weight
        if entry.weight > 0 and low <= roll < high:
            return entry.category
        low = high

    # Floating point drift can leave the top of the range uncovered.
    for entry in reversed(weights):
        if entry.weight > 0:
            return entry.category
    return weights[-1].category


def fallback_order(weights: Sequence[CategoryWeight], chosen: Category) -> list[Category]:
    """Remaining categories by descending weight; ties keep the fixed order."""

    rest = [entry for entry in weights if entry.category != chosen]
    rest.sort(key=lambda entry: -entry.weight)
    return [entry.category for entry in rest]


class SelectionEngine:
    """Choose what to watch or read next."""

    def __init__(
        self,
        pickers: Iterable[Picker],
        metadata: MetadataCache | None = None,
        *,
        rng: random.Random | None = None,
        enrichment_timeout: float = 3.0,
    ):
        self._pickers = {picker.category: picker for picker in pickers}
        self._metadata = metadata
        self._rng = rng or random.Random()
        self._enrichment_timeout = enrichment_timeout

    async def category_weights(self, settings: OrderSettings) -> list[CategoryWeight]:
        configured = settings.category_weights()
        entries: list[CategoryWeight] = []
        for category in CATEGORY_ORDER:
            picker = self._pickers.get(category)
            eligible = picker is not None and await picker.has_candidates(settings)
            entries.append(CategoryWeight(category, float(configured[category]), eligible))
        return normalise_weights(entries)

    async def select_next(self, settings: OrderSettings) -> NextItem:
        """Pick a category by weight and return its next item, enriched.

        Raises:
            NoEligibleContentError: every category is exhausted.
        """

        weights = await self.category_weights(settings)
        if not weights:
            raise NoEligibleContentError("Nothing to watch or read")

        roll = self._rng.random() * 100
        chosen = choose_category(weights, roll)
        logger.info(
            "Rolled %.2f over %s -> %s",
            roll,
            ", ".join(f"{entry.category.value}={entry.weight:.1f}" for entry in weights),
            chosen.value,
        )

        for category in [chosen, *fallback_order(weights, chosen)]:
            try:
                item = await self._pickers[category].pick(settings)
            except (NoEligibleContentError, AllWatchedError, NotFoundError) as exc:
                logger.info("%s had nothing to offer (%s), falling back", category.value, exc)
                continue
            return await self.enrich(item)

        raise NoEligibleContentError("Nothing to watch or read")

    async def enrich(self, item: NextItem) -> NextItem:
        """Attach artwork/details; failures leave an empty enrichment."""

        if self._metadata is None:
            return item

        try:
            enrichment = await self._with_timeout(self._lookup(self._metadata, item))
        except MetadataError as exc:
            logger.warning("Enrichment failed for %s: %s", item.title, exc)
            item.warnings.append(str(exc))
            enrichment = Enrichment()
        except Exception as exc:
            logger.warning(
                "Unexpected enrichment payload for %s: %s", item.title, exc, exc_info=True
            )
            item.warnings.append(f"Enrichment failed: {exc}")
            enrichment = Enrichment()
        item.enrichment = enrichment
        return item

    async def _with_timeout(self, lookup: Awaitable[Enrichment]) -> Enrichment:
        try:
            return await asyncio.wait_for(lookup, timeout=self._enrichment_timeout)
        except asyncio.TimeoutError as exc:
            raise EnrichmentTimeoutError(
                f"Enrichment timed out after {self._enrichment_timeout:g}s"
            ) from exc

    @staticmethod
    async def _lookup(metadata: MetadataCache, item: NextItem) -> Enrichment:
        details = item.details

        if isinstance(details, ComicItem):
            comic = await metadata.resolve_comic_details(
                details.series, details.year, details.issue
            )
            if comic is None:
                return Enrichment()
            return Enrichment(
                cover_url=comic.cover_url,
                description=comic.description,
                publisher=comic.publisher,
                source="comicvine",
            )

        if isinstance(details, (BookItem, ShortStoryItem)):
            if details.cover_url:
                return Enrichment(cover_url=details.cover_url, source="stored")
            return Enrichment()

        if item.media_type == "tv":
            context = ArtworkContext(
                title=item.series_title or item.title,
                content_type="series",
                season_number=item.season_number,
                episode_number=item.episode_number,
            )
        else:
            context = ArtworkContext(title=item.title, content_type="movie", year=item.year)

        artwork = await metadata.resolve_artwork(context)
        if artwork is None:
            return Enrichment()
        return Enrichment(
            poster=artwork.poster,
            background=artwork.background,
            description=artwork.description,
            source="addon",
        )
