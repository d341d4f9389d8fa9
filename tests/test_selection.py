from __future__ import annotations

import asyncio
import random
from collections import Counter

import pytest

from app.errors import AllWatchedError, MetadataError, NoEligibleContentError, NotFoundError
from app.models import Category, ComicItem, NextItem, OrderSettings
from app.services.metadata_cache import ArtworkRef, ComicDetails
from app.services.selection import (
    CategoryWeight,
    SelectionEngine,
    choose_category,
    fallback_order,
    normalise_weights,
)


class StubPicker:
    def __init__(
        self,
        category: Category,
        *,
        eligible: bool = True,
        error: Exception | None = None,
        item: NextItem | None = None,
    ) -> None:
        self.category = category
        self.eligible = eligible
        self.error = error
        self.item = item
        self.calls = 0

    async def has_candidates(self, settings: OrderSettings) -> bool:
        return self.eligible

    async def pick(self, settings: OrderSettings) -> NextItem:
        self.calls += 1
        if self.error is not None:
            raise self.error
        if self.item is not None:
            return self.item.model_copy(deep=True)
        return NextItem(category=self.category, media_type="movie", title=self.category.value)


class StubMetadata:
    def __init__(self, *, delay: float = 0.0, error: Exception | None = None) -> None:
        self.delay = delay
        self.error = error
        self.artwork_calls = []
        self.comic_calls = []

    async def resolve_artwork(self, context):
        self.artwork_calls.append(context)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return ArtworkRef(
            id="tt0113277", title=context.title, type=context.content_type, poster="https://img/p.jpg"
        )

    async def resolve_comic_details(self, series, year, issue):
        self.comic_calls.append((series, year, issue))
        return ComicDetails(
            series_name=series,
            series_id=1,
            year=year,
            issue_number=issue,
            cover_url="https://comicvine/cover.jpg",
            publisher="Image",
        )


def _settings(tv: int, movies: int, custom: int) -> OrderSettings:
    return OrderSettings(
        tv_general_percent=tv, movies_general_percent=movies, custom_order_percent=custom
    )


def _pickers(**overrides) -> list[StubPicker]:
    return [
        overrides.get("tv") or StubPicker(Category.TV),
        overrides.get("movies") or StubPicker(Category.MOVIES),
        overrides.get("custom") or StubPicker(Category.CUSTOM_ORDER),
    ]


def test_normalise_weights_redistributes_ineligible_share() -> None:
    weights = normalise_weights(
        [
            CategoryWeight(Category.TV, 50),
            CategoryWeight(Category.MOVIES, 30, eligible=False),
            CategoryWeight(Category.CUSTOM_ORDER, 20),
        ]
    )

    assert [entry.category for entry in weights] == [Category.TV, Category.CUSTOM_ORDER]
    assert [entry.weight for entry in weights] == pytest.approx([50 / 70 * 100, 20 / 70 * 100])


def test_normalise_weights_zero_total_is_uniform() -> None:
    weights = normalise_weights(
        [
            CategoryWeight(Category.TV, 0),
            CategoryWeight(Category.MOVIES, 100, eligible=False),
            CategoryWeight(Category.CUSTOM_ORDER, 0),
        ]
    )

    assert [entry.weight for entry in weights] == pytest.approx([50.0, 50.0])


def test_normalise_weights_nothing_eligible() -> None:
    assert normalise_weights([CategoryWeight(Category.TV, 100, eligible=False)]) == []


@pytest.mark.parametrize(
    ("roll", "expected"),
    [
        (0.0, Category.TV),
        (49.999, Category.TV),
        (50.0, Category.MOVIES),
        (99.999, Category.MOVIES),
    ],
)
def test_choose_category_lower_bound_inclusive(roll: float, expected: Category) -> None:
    weights = [
        CategoryWeight(Category.TV, 50),
        CategoryWeight(Category.MOVIES, 50),
        CategoryWeight(Category.CUSTOM_ORDER, 0),
    ]

    assert choose_category(weights, roll) is expected


def test_choose_category_requires_weights() -> None:
    with pytest.raises(NoEligibleContentError):
        choose_category([], 10.0)


def test_fallback_order_by_descending_weight_with_stable_ties() -> None:
    weights = [
        CategoryWeight(Category.TV, 20),
        CategoryWeight(Category.MOVIES, 40),
        CategoryWeight(Category.CUSTOM_ORDER, 40),
    ]

    assert fallback_order(weights, Category.TV) == [Category.MOVIES, Category.CUSTOM_ORDER]
    assert fallback_order(weights, Category.MOVIES) == [Category.CUSTOM_ORDER, Category.TV]


def test_selection_frequencies_follow_weights() -> None:
    engine = SelectionEngine(_pickers(), rng=random.Random(1234))
    settings = _settings(60, 30, 10)

    async def runner() -> Counter:
        counts: Counter = Counter()
        for _ in range(3000):
            item = await engine.select_next(settings)
            counts[item.category] += 1
        return counts

    counts = asyncio.run(runner())

    assert counts[Category.TV] / 3000 == pytest.approx(0.6, abs=0.04)
    assert counts[Category.MOVIES] / 3000 == pytest.approx(0.3, abs=0.04)
    assert counts[Category.CUSTOM_ORDER] / 3000 == pytest.approx(0.1, abs=0.03)


def test_ineligible_movies_always_yield_tv() -> None:
    """With 50/50/0 and no movies at all, every pick is TV."""

    movies = StubPicker(Category.MOVIES, eligible=False)
    custom = StubPicker(Category.CUSTOM_ORDER, eligible=False)
    engine = SelectionEngine(_pickers(movies=movies, custom=custom), rng=random.Random(7))

    async def runner() -> set[Category]:
        return {(await engine.select_next(_settings(50, 50, 0))).category for _ in range(1000)}

    assert asyncio.run(runner()) == {Category.TV}
    assert movies.calls == 0


def test_race_falls_back_to_next_heaviest_category() -> None:
    tv = StubPicker(Category.TV, error=AllWatchedError("dw"))
    movies = StubPicker(Category.MOVIES, error=NoEligibleContentError("gone"))
    engine = SelectionEngine(_pickers(tv=tv, movies=movies), rng=random.Random(3))

    item = asyncio.run(engine.select_next(_settings(100, 0, 0)))

    assert item.category is Category.CUSTOM_ORDER
    assert tv.calls == 1


def test_exhausted_categories_raise() -> None:
    pickers = [
        StubPicker(Category.TV, error=NoEligibleContentError("none")),
        StubPicker(Category.MOVIES, eligible=False),
        StubPicker(Category.CUSTOM_ORDER, eligible=False),
    ]
    engine = SelectionEngine(pickers, rng=random.Random(3))

    with pytest.raises(NoEligibleContentError):
        asyncio.run(engine.select_next(_settings(50, 50, 0)))


def test_nothing_eligible_raises() -> None:
    pickers = [StubPicker(category, eligible=False) for category in Category]
    engine = SelectionEngine(pickers, rng=random.Random(3))

    with pytest.raises(NoEligibleContentError):
        asyncio.run(engine.select_next(OrderSettings()))


def test_enrichment_attaches_artwork() -> None:
    metadata = StubMetadata()
    engine = SelectionEngine(_pickers(), metadata, rng=random.Random(1))

    item = asyncio.run(engine.select_next(_settings(0, 100, 0)))

    assert item.enrichment is not None
    assert item.enrichment.poster == "https://img/p.jpg"
    assert metadata.artwork_calls[0].content_type == "movie"


def test_enrichment_timeout_returns_empty_enrichment() -> None:
    metadata = StubMetadata(delay=1.0)
    engine = SelectionEngine(
        _pickers(), metadata, rng=random.Random(1), enrichment_timeout=0.01
    )

    item = asyncio.run(engine.select_next(_settings(0, 100, 0)))

    assert item.category is Category.MOVIES
    assert item.enrichment is not None
    assert item.enrichment.is_empty()
    assert any("timed out" in warning for warning in item.warnings)


def test_enrichment_provider_failure_is_a_warning() -> None:
    metadata = StubMetadata(error=MetadataError("provider down"))
    engine = SelectionEngine(_pickers(), metadata, rng=random.Random(1))

    item = asyncio.run(engine.select_next(_settings(100, 0, 0)))

    assert item.enrichment is not None and item.enrichment.is_empty()
    assert item.warnings == ["provider down"]


def test_comic_items_use_comic_lookup() -> None:
    comic = NextItem(
        category=Category.CUSTOM_ORDER,
        media_type="comic",
        title="Saga (2012) #1",
        details=ComicItem(series="Saga", year=2012, issue="1"),
    )
    metadata = StubMetadata()
    engine = SelectionEngine(
        _pickers(custom=StubPicker(Category.CUSTOM_ORDER, item=comic)),
        metadata,
        rng=random.Random(1),
    )

    item = asyncio.run(engine.select_next(_settings(0, 0, 100)))

    assert metadata.comic_calls == [("Saga", 2012, "1")]
    assert metadata.artwork_calls == []
    assert item.enrichment is not None
    assert item.enrichment.cover_url == "https://comicvine/cover.jpg"
    assert item.enrichment.publisher == "Image"


def test_unexpected_enrichment_failure_is_a_warning() -> None:
    metadata = StubMetadata(error=AttributeError("'str' object has no attribute 'get'"))
    engine = SelectionEngine(_pickers(), metadata, rng=random.Random(1))

    item = asyncio.run(engine.select_next(_settings(0, 100, 0)))

    assert item.category is Category.MOVIES
    assert item.enrichment is not None and item.enrichment.is_empty()
    assert len(item.warnings) == 1
    assert item.warnings[0].startswith("Enrichment failed")


def test_vanished_series_falls_back_to_next_category() -> None:
    tv = StubPicker(Category.TV, error=NotFoundError("Series dw not found"))
    engine = SelectionEngine(_pickers(tv=tv), rng=random.Random(3))

    item = asyncio.run(engine.select_next(_settings(100, 0, 0)))

    assert tv.calls == 1
    assert item.category is Category.MOVIES
