"""Watch/read session lifecycle.

Sessions move through an explicit state machine::

    ACTIVE <-> PAUSED
    ACTIVE  -> COMPLETED
    PAUSED  -> COMPLETED

Completion always clears the paused flag, so a finished session is never
also "paused".
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..db_models import WatchLog
from ..errors import ConflictError, NotFoundError
from ..models import SessionState, SessionSubject, SessionView

logger = logging.getLogger(__name__)


def _state_of(log: WatchLog) -> SessionState:
    if log.is_completed:
        return SessionState.COMPLETED
    if log.is_paused:
        return SessionState.PAUSED
    return SessionState.ACTIVE


class SessionTracker:
    """Manages session state transitions with validation and persistence."""

    VALID_TRANSITIONS = {
        SessionState.ACTIVE: {SessionState.PAUSED, SessionState.COMPLETED},
        SessionState.PAUSED: {SessionState.ACTIVE, SessionState.COMPLETED},
        SessionState.COMPLETED: set(),  # Terminal state
    }

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self._session_factory = session_factory
        self._clock = clock

    def can_transition(self, from_state: SessionState, to_state: SessionState) -> bool:
        """Return True when ``to_state`` is reachable from ``from_state``.

        Staying in the same state is always allowed.
        """

        if from_state == to_state:
            return True
        return to_state in self.VALID_TRANSITIONS.get(from_state, set())

    async def start_session(self, subject: SessionSubject) -> SessionView:
        """Open a new ACTIVE session.

        Raises:
            ConflictError: another unfinished, unpaused session holds the subject.
        """

        subject_key = subject.subject_key
        now = self._clock()
        async with self._session_factory() as session:
            running = await session.execute(
                select(WatchLog.id).where(
                    WatchLog.subject_key == subject_key,
                    WatchLog.is_completed.is_(False),
                    WatchLog.is_paused.is_(False),
                )
            )
            existing_id = running.scalars().first()
            if existing_id is not None:
                raise ConflictError(
                    f"Session {existing_id} is already running for {subject.title}"
                )

            log = WatchLog(
                media_type=subject.media_type,
                activity_type=subject.activity_type,
                title=subject.title,
                subject_key=subject_key,
                plex_key=subject.plex_key,
                custom_order_item_id=subject.custom_order_item_id,
                series_key=subject.series_key,
                series_title=subject.series_title,
                season_number=subject.season_number,
                episode_number=subject.episode_number,
                start_time=now,
                last_resumed_at=now,
                total_watch_time=0.0,
                is_completed=False,
                is_paused=False,
            )
            session.add(log)
            await self._commit_or_conflict(session, subject.title)
            logger.info(
                "Started %s session %s for %s: %s",
                subject.activity_type,
                log.id,
                subject.media_type,
                subject.title,
            )
            return self._view(log)

    async def pause_session(self, session_id: int) -> SessionView:
        async with self._session_factory() as session:
            log = await self._load_open(session, session_id)
            if not self.can_transition(_state_of(log), SessionState.PAUSED):
                raise NotFoundError(f"Session {session_id} cannot be paused")
            if not log.is_paused:
                now = self._clock()
                log.total_watch_time = (log.total_watch_time or 0.0) + self._elapsed(log, now)
                log.is_paused = True
                log.last_resumed_at = None
                await session.commit()
                logger.info("Paused session %s", session_id)
            return self._view(log)

    async def resume_session(self, session_id: int) -> SessionView:
        """Return a paused session to ACTIVE.

        Raises:
            ConflictError: a different session is already running for the subject.
        """

        async with self._session_factory() as session:
            log = await self._load_open(session, session_id)
            if not self.can_transition(_state_of(log), SessionState.ACTIVE):
                raise NotFoundError(f"Session {session_id} cannot be resumed")
            if log.is_paused:
                log.is_paused = False
                log.last_resumed_at = self._clock()
                await self._commit_or_conflict(session, log.title)
                logger.info("Resumed session %s", session_id)
            return self._view(log)

    async def complete_session(
        self, session_id: int, final_watch_time: float | None = None
    ) -> SessionView:
        """Finish a session; completing twice returns the stored record.

        ``final_watch_time`` is the number of minutes for the last stretch.
        When omitted, the time since the last start/resume is used (zero if
        the session is paused).
        """

        if final_watch_time is not None and final_watch_time < 0:
            raise ValueError("final_watch_time must not be negative")

        async with self._session_factory() as session:
            log = await session.get(WatchLog, session_id)
            if log is None:
                raise NotFoundError(f"Session {session_id} not found")
            if log.is_completed:
                return self._view(log)

            now = self._clock()
            if final_watch_time is not None:
                extra = float(final_watch_time)
            elif log.is_paused:
                extra = 0.0
            else:
                extra = self._elapsed(log, now)
            log.total_watch_time = (log.total_watch_time or 0.0) + extra
            log.end_time = now
            log.is_completed = True
            log.is_paused = False
            log.last_resumed_at = None
            await session.commit()
            logger.info(
                "Completed session %s (%s) after %.1f minutes",
                session_id,
                log.title,
                log.total_watch_time,
            )
            return self._view(log)

    async def delete_session(self, session_id: int) -> None:
        async with self._session_factory() as session:
            result = await session.execute(
                delete(WatchLog).where(WatchLog.id == session_id)
            )
            if result.rowcount == 0:
                await session.rollback()
                raise NotFoundError(f"Session {session_id} not found")
            await session.commit()
        logger.info("Deleted session %s", session_id)

    async def get_session(self, session_id: int) -> SessionView:
        async with self._session_factory() as session:
            log = await session.get(WatchLog, session_id)
            if log is None:
                raise NotFoundError(f"Session {session_id} not found")
            return self._view(log)

    async def list_recent(self, limit: int = 20) -> list[SessionView]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(WatchLog)
                .order_by(WatchLog.created_at.desc(), WatchLog.id.desc())
                .limit(limit)
            )
            return [self._view(log) for log in result.scalars().all()]

    async def log_watched(
        self, subject: SessionSubject, minutes: float = 0.0
    ) -> SessionView:
        """Record an already finished session in one step."""

        if minutes < 0:
            raise ValueError("minutes must not be negative")
        end = self._clock()
        async with self._session_factory() as session:
            log = WatchLog(
                media_type=subject.media_type,
                activity_type=subject.activity_type,
                title=subject.title,
                subject_key=subject.subject_key,
                plex_key=subject.plex_key,
                custom_order_item_id=subject.custom_order_item_id,
                series_key=subject.series_key,
                series_title=subject.series_title,
                season_number=subject.season_number,
                episode_number=subject.episode_number,
                start_time=end - timedelta(minutes=minutes),
                end_time=end,
                total_watch_time=float(minutes),
                is_completed=True,
                is_paused=False,
            )
            session.add(log)
            await session.commit()
            logger.info("Logged finished %s: %s", subject.media_type, subject.title)
            return self._view(log)

    async def last_completed_position(self, series_key: str) -> tuple[int, int] | None:
        """Highest (season, episode) among completed sessions for a series."""

        async with self._session_factory() as session:
            result = await session.execute(
                select(WatchLog.season_number, WatchLog.episode_number)
                .where(
                    WatchLog.series_key == series_key,
                    WatchLog.is_completed.is_(True),
                    WatchLog.season_number.is_not(None),
                    WatchLog.episode_number.is_not(None),
                )
                .order_by(
                    WatchLog.season_number.desc(), WatchLog.episode_number.desc()
                )
                .limit(1)
            )
            row = result.first()
        if row is None:
            return None
        return int(row[0]), int(row[1])

    async def _load_open(self, session: AsyncSession, session_id: int) -> WatchLog:
        log = await session.get(WatchLog, session_id)
        if log is None or log.is_completed:
            raise NotFoundError(f"No open session with id {session_id}")
        return log

    async def _commit_or_conflict(self, session: AsyncSession, title: str) -> None:
        try:
            await session.commit()
        except IntegrityError as exc:
            await session.rollback()
            raise ConflictError(f"A session is already running for {title}") from exc

    @staticmethod
    def _elapsed(log: WatchLog, now: datetime) -> float:
        started = log.last_resumed_at or log.start_time
        if started is None:
            return 0.0
        return max((now - started).total_seconds() / 60.0, 0.0)

    @staticmethod
    def _view(log: WatchLog) -> SessionView:
        return SessionView(
            id=log.id,
            media_type=log.media_type,
            activity_type=log.activity_type,
            title=log.title,
            plex_key=log.plex_key,
            custom_order_item_id=log.custom_order_item_id,
            series_key=log.series_key,
            series_title=log.series_title,
            season_number=log.season_number,
            episode_number=log.episode_number,
            start_time=log.start_time,
            end_time=log.end_time,
            total_watch_time=log.total_watch_time or 0.0,
            is_completed=log.is_completed,
            is_paused=log.is_paused,
        )
