"""Pydantic models describing settings, catalog items, sessions and picks."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    computed_field,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from .utils import parse_collections

MediaType = Literal["movie", "tv", "book", "comic", "shortstory"]
ActivityType = Literal["watch", "read"]

READ_MEDIA_TYPES: frozenset[str] = frozenset({"book", "comic", "shortstory"})


def activity_for(media_type: str) -> ActivityType:
    """Books, comics and short stories are read; everything else is watched."""

    return "read" if media_type in READ_MEDIA_TYPES else "watch"


class CamelModel(BaseModel):
    """Base model exchanging camelCase keys with API clients."""

    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)


class Category(str, Enum):
    """The three pools selection weights are distributed over."""

    TV = "TV_GENERAL"
    MOVIES = "MOVIES_GENERAL"
    CUSTOM_ORDER = "CUSTOM_ORDER"


CATEGORY_ORDER: tuple[Category, ...] = (
    Category.TV,
    Category.MOVIES,
    Category.CUSTOM_ORDER,
)


Percent = Annotated[int, Field(ge=0, le=100)]


def _clean_collection_list(value: object) -> list[str]:
    if value is None:
        return []
    return parse_collections(value)


class OrderSettings(CamelModel):
    """Selection preferences, loaded once per request."""

    tv_general_percent: Percent = 50
    movies_general_percent: Percent = 50
    custom_order_percent: Percent = 0
    partially_watched_collection_percent: Percent = 75
    ignored_movie_collections: list[str] = Field(default_factory=list)
    ignored_tv_collections: list[str] = Field(
        default_factory=list, alias="ignoredTVCollections"
    )

    @field_validator(
        "ignored_movie_collections", "ignored_tv_collections", mode="before"
    )
    @classmethod
    def _normalise_ignored(cls, value: object) -> list[str]:
        return _clean_collection_list(value)

    def category_weights(self) -> dict[Category, int]:
        return {
            Category.TV: self.tv_general_percent,
            Category.MOVIES: self.movies_general_percent,
            Category.CUSTOM_ORDER: self.custom_order_percent,
        }


class SettingsUpdate(CamelModel):
    """Partial settings update; omitted fields stay unchanged."""

    tv_general_percent: Percent | None = None
    movies_general_percent: Percent | None = None
    custom_order_percent: Percent | None = None
    partially_watched_collection_percent: Percent | None = None
    ignored_movie_collections: list[str] | None = None
    ignored_tv_collections: list[str] | None = Field(
        default=None, alias="ignoredTVCollections"
    )

    @field_validator(
        "ignored_movie_collections", "ignored_tv_collections", mode="before"
    )
    @classmethod
    def _normalise_ignored(cls, value: object) -> list[str] | None:
        if value is None:
            return None
        return parse_collections(value)

    @model_validator(mode="after")
    def _check_category_total(self) -> "SettingsUpdate":
        parts = (
            self.tv_general_percent,
            self.movies_general_percent,
            self.custom_order_percent,
        )
        if all(part is not None for part in parts):
            total = sum(part for part in parts if part is not None)
            if total != 100:
                raise ValueError(
                    f"Order type percentages must add up to exactly 100%. Current total: {total}%"
                )
        return self

    def changes(self) -> dict[str, object]:
        """Return only the fields the caller supplied."""

        return self.model_dump(exclude_unset=True, exclude_none=True)


class MovieItem(CamelModel):
    media_type: Literal["movie"] = "movie"
    plex_key: str | None = None


class EpisodeItem(CamelModel):
    media_type: Literal["tv"] = "tv"
    plex_key: str | None = None
    series_title: str | None = None
    season_number: int | None = None
    episode_number: int | None = None


class BookItem(CamelModel):
    media_type: Literal["book"] = "book"
    author: str | None = None
    year: int | None = None
    isbn: str | None = None
    publisher: str | None = None
    open_library_id: str | None = None
    cover_url: str | None = None
    page_count: int | None = Field(default=None, ge=1)
    current_page: int = Field(default=0, ge=0)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def percent_read(self) -> float | None:
        if not self.page_count:
            return None
        return round(min(self.current_page, self.page_count) * 100 / self.page_count, 1)

    def is_finished(self) -> bool:
        return bool(self.page_count) and self.current_page >= (self.page_count or 0)


class ComicItem(CamelModel):
    media_type: Literal["comic"] = "comic"
    series: str
    year: int | None = None
    issue: str
    volume: str | None = None

    @field_validator("issue", mode="before")
    @classmethod
    def _issue_as_text(cls, value: object) -> object:
        if isinstance(value, int):
            return str(value)
        return value


class ShortStoryItem(CamelModel):
    media_type: Literal["shortstory"] = "shortstory"
    author: str | None = None
    year: int | None = None
    url: str | None = None
    cover_url: str | None = None
    contained_in_book_id: int | None = None


ItemDetails = Annotated[
    Union[MovieItem, EpisodeItem, BookItem, ComicItem, ShortStoryItem],
    Field(discriminator="media_type"),
]


class CustomOrderItemView(CamelModel):
    """A custom order entry with its media payload."""

    id: int
    custom_order_id: int
    title: str
    sort_order: int
    is_watched: bool = False
    details: ItemDetails

    @computed_field  # type: ignore[prop-decorator]
    @property
    def media_type(self) -> str:
        return self.details.media_type

    @property
    def plex_key(self) -> str | None:
        return getattr(self.details, "plex_key", None)


class CustomOrderView(CamelModel):
    id: int
    name: str
    description: str | None = None
    is_active: bool = True
    items: list[CustomOrderItemView] = Field(default_factory=list)

    def next_unwatched(self) -> CustomOrderItemView | None:
        """Return the unwatched item with the smallest sort order."""

        pending = [item for item in self.items if not item.is_watched]
        if not pending:
            return None
        return min(pending, key=lambda item: item.sort_order)


class MovieRef(CamelModel):
    id: str
    title: str
    year: int | None = None
    collections: list[str] = Field(default_factory=list)


class SeriesRef(CamelModel):
    id: str
    title: str
    year: int | None = None
    collections: list[str] = Field(default_factory=list)


class EpisodeRef(CamelModel):
    series_id: str
    series_title: str
    episode_id: str
    season_number: int
    episode_number: int
    title: str
    season_title: str | None = None

    @property
    def position(self) -> tuple[int, int]:
        return self.season_number, self.episode_number


class SessionState(str, Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"


class SessionSubject(CamelModel):
    """What a new session is about."""

    media_type: MediaType
    title: str = Field(min_length=1)
    plex_key: str | None = None
    custom_order_item_id: int | None = None
    series_key: str | None = None
    series_title: str | None = None
    season_number: int | None = Field(default=None, ge=0)
    episode_number: int | None = Field(default=None, ge=0)

    @model_validator(mode="after")
    def _require_reference(self) -> "SessionSubject":
        if not self.plex_key and self.custom_order_item_id is None:
            raise ValueError("Either plexKey or customOrderItemId is required")
        return self

    @property
    def activity_type(self) -> ActivityType:
        return activity_for(self.media_type)

    @property
    def subject_key(self) -> str:
        if self.plex_key:
            return f"plex:{self.plex_key}"
        return f"item:{self.custom_order_item_id}"


class SessionView(CamelModel):
    """Read model for a watch/read session."""

    id: int
    media_type: str
    activity_type: str
    title: str
    plex_key: str | None = None
    custom_order_item_id: int | None = None
    series_key: str | None = None
    series_title: str | None = None
    season_number: int | None = None
    episode_number: int | None = None
    start_time: datetime
    end_time: datetime | None = None
    total_watch_time: float = 0.0
    is_completed: bool = False
    is_paused: bool = False

    @computed_field  # type: ignore[prop-decorator]
    @property
    def state(self) -> SessionState:
        if self.is_completed:
            return SessionState.COMPLETED
        if self.is_paused:
            return SessionState.PAUSED
        return SessionState.ACTIVE


class Enrichment(CamelModel):
    """Artwork and details attached to a pick; every field is optional."""

    poster: str | None = None
    background: str | None = None
    cover_url: str | None = None
    description: str | None = None
    publisher: str | None = None
    source: str | None = None

    def is_empty(self) -> bool:
        return not any(
            (self.poster, self.background, self.cover_url, self.description)
        )


class NextItem(CamelModel):
    """Normalised "what to watch/read next" descriptor."""

    category: Category
    media_type: MediaType
    title: str
    year: int | None = None
    plex_key: str | None = None
    series_id: str | None = None
    series_title: str | None = None
    season_number: int | None = None
    episode_number: int | None = None
    sort_order: int | None = None
    custom_order_id: int | None = None
    custom_order_name: str | None = None
    custom_order_item_id: int | None = None
    collection: str | None = None
    details: ItemDetails | None = None
    enrichment: Enrichment | None = None
    warnings: list[str] = Field(default_factory=list)


class CompleteSessionRequest(CamelModel):
    final_watch_time: float | None = Field(default=None, ge=0)


class BookProgressRequest(CamelModel):
    current_page: int = Field(ge=0)
