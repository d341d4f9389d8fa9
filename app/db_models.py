"""SQLAlchemy ORM models backing the persistent state."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .database import Base

SETTINGS_ROW_ID = 1


class SettingsRecord(Base):
    """Singleton row holding the user's selection preferences."""

    __tablename__ = "settings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, default=SETTINGS_ROW_ID)
    tv_general_percent: Mapped[int] = mapped_column(Integer, default=50)
    movies_general_percent: Mapped[int] = mapped_column(Integer, default=50)
    custom_order_percent: Mapped[int] = mapped_column(Integer, default=0)
    partially_watched_collection_percent: Mapped[int] = mapped_column(
        Integer, default=75
    )
    ignored_movie_collections: Mapped[list[str] | None] = mapped_column(
        JSON, nullable=True
    )
    ignored_tv_collections: Mapped[list[str] | None] = mapped_column(
        JSON, nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )


class Movie(Base):
    """Movie synced from the media server."""

    __tablename__ = "movies"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    title: Mapped[str] = mapped_column(String(255))
    year: Mapped[int | None] = mapped_column(Integer, nullable=True)
    collections: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    summary: Mapped[str | None] = mapped_column(Text, nullable=True)


class TVShow(Base):
    """Series synced from the media server."""

    __tablename__ = "tv_shows"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    title: Mapped[str] = mapped_column(String(255))
    year: Mapped[int | None] = mapped_column(Integer, nullable=True)
    collections: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)

    seasons: Mapped[list["TVSeason"]] = relationship(
        back_populates="show",
        cascade="all, delete-orphan",
        order_by="TVSeason.season_number",
    )


class TVSeason(Base):
    __tablename__ = "tv_seasons"
    __table_args__ = (
        UniqueConstraint("show_id", "season_number", name="uq_season_show_number"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    show_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("tv_shows.id", ondelete="CASCADE")
    )
    season_number: Mapped[int] = mapped_column(Integer)
    title: Mapped[str | None] = mapped_column(String(255), nullable=True)

    show: Mapped[TVShow] = relationship(back_populates="seasons")
    episodes: Mapped[list["TVEpisode"]] = relationship(
        back_populates="season",
        cascade="all, delete-orphan",
        order_by="TVEpisode.episode_number",
    )


class TVEpisode(Base):
    __tablename__ = "tv_episodes"
    __table_args__ = (
        UniqueConstraint(
            "show_id", "season_number", "episode_number", name="uq_episode_position"
        ),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    season_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("tv_seasons.id", ondelete="CASCADE")
    )
    show_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("tv_shows.id", ondelete="CASCADE"), index=True
    )
    season_number: Mapped[int] = mapped_column(Integer)
    episode_number: Mapped[int] = mapped_column(Integer)
    title: Mapped[str] = mapped_column(String(255))

    season: Mapped[TVSeason] = relationship(back_populates="episodes")


class CustomOrder(Base):
    """User-curated ordered list of heterogeneous media."""

    __tablename__ = "custom_orders"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255))
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    items: Mapped[list["CustomOrderItem"]] = relationship(
        back_populates="custom_order",
        cascade="all, delete-orphan",
        order_by="CustomOrderItem.sort_order",
    )


class CustomOrderItem(Base):
    """Entry of a custom order.

    ``details`` carries the media-specific payload selected by ``media_type``.
    """

    __tablename__ = "custom_order_items"
    __table_args__ = (
        UniqueConstraint("custom_order_id", "sort_order", name="uq_item_sort_order"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    custom_order_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("custom_orders.id", ondelete="CASCADE")
    )
    media_type: Mapped[str] = mapped_column(String(16))
    title: Mapped[str] = mapped_column(String(255))
    sort_order: Mapped[int] = mapped_column(Integer)
    is_watched: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    plex_key: Mapped[str | None] = mapped_column(String(64), nullable=True)
    details: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)

    custom_order: Mapped[CustomOrder] = relationship(back_populates="items")


class WatchLog(Base):
    """A single watch or read session."""

    __tablename__ = "watch_logs"
    __table_args__ = (
        # At most one running session per subject.
        Index(
            "uq_watch_logs_active_subject",
            "subject_key",
            unique=True,
            sqlite_where=text("is_completed = 0 AND is_paused = 0"),
            postgresql_where=text("NOT is_completed AND NOT is_paused"),
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    media_type: Mapped[str] = mapped_column(String(16))
    activity_type: Mapped[str] = mapped_column(String(8))
    title: Mapped[str] = mapped_column(String(255))
    subject_key: Mapped[str] = mapped_column(String(80), index=True)
    plex_key: Mapped[str | None] = mapped_column(String(64), nullable=True)
    custom_order_item_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("custom_order_items.id", ondelete="SET NULL"),
        nullable=True,
    )
    series_key: Mapped[str | None] = mapped_column(
        String(64), nullable=True, index=True
    )
    series_title: Mapped[str | None] = mapped_column(String(255), nullable=True)
    season_number: Mapped[int | None] = mapped_column(Integer, nullable=True)
    episode_number: Mapped[int | None] = mapped_column(Integer, nullable=True)
    start_time: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    end_time: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    last_resumed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    total_watch_time: Mapped[float] = mapped_column(Float, default=0.0)
    is_completed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_paused: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )
