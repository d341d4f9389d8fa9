"""Artwork and comic-issue lookups with an in-memory cache.

Artwork comes from a Cinemeta-compatible add-on search endpoint and comic
details from the ComicVine API. Misses are returned as ``None``; only
infrastructure failures (transport errors, 5xx responses) raise
:class:`~app.errors.MetadataError`.
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
from dataclasses import dataclass
from typing import Any, Callable, Literal
from urllib.parse import quote

import httpx

from ..errors import MetadataError
from ..utils import format_comic_string, slugify

logger = logging.getLogger(__name__)

ContentType = Literal["movie", "series"]

_MISSING = object()


@dataclass(frozen=True, slots=True)
class ArtworkContext:
    """What to look artwork up for."""

    title: str
    content_type: ContentType
    year: int | None = None
    season_number: int | None = None
    episode_number: int | None = None

    def cache_key(self) -> str:
        return f"artwork:{self.content_type}:{slugify(self.title)}:{self.year or ''}"


@dataclass(slots=True)
class ArtworkRef:
    """Represents the useful fields returned from an artwork lookup."""

    id: str
    title: str
    type: str
    year: int | None = None
    poster: str | None = None
    background: str | None = None
    description: str | None = None


@dataclass(slots=True)
class ComicDetails:
    series_name: str
    series_id: int | None
    year: int | None
    issue_number: str
    issue_id: int | None = None
    issue_name: str | None = None
    cover_url: str | None = None
    description: str | None = None
    publisher: str | None = None


class MetadataCache:
    """Caching wrapper around the artwork and comic providers."""

    _SEARCH_PATH = "/catalog/{type}/top/search={query}.json"
    _USER_AGENT = "MasterOrder/1.0"

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        *,
        addon_base_url: str | None = None,
        comicvine_api_key: str | None = None,
        comicvine_base_url: str = "https://comicvine.gamespot.com/api",
        ttl_seconds: float = 86_400,
        max_entries: int = 1_024,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._client = http_client
        self._addon_base_url = self._normalize_base_url(addon_base_url)
        self._comicvine_api_key = (comicvine_api_key or "").strip() or None
        self._comicvine_base_url = comicvine_base_url.rstrip("/")
        self._ttl = ttl_seconds
        self._max_entries = max(1, max_entries)
        self._clock = clock
        self._entries: dict[str, tuple[float, Any]] = {}
        self._semaphore = asyncio.Semaphore(8)

    @property
    def addon_base_url(self) -> str | None:
        return self._addon_base_url

    def clear(self) -> None:
        self._entries.clear()

    def _cached(self, key: str) -> Any:
        entry = self._entries.get(key)
        if entry is None:
            return _MISSING
        stored_at, value = entry
        if self._clock() - stored_at > self._ttl:
            self._entries.pop(key, None)
            return _MISSING
        return value

    def _store(self, key: str, value: Any) -> None:
        now = self._clock()
        expired = [
            cached_key
            for cached_key, (stored_at, _) in self._entries.items()
            if now - stored_at > self._ttl
        ]
        for cached_key in expired:
            del self._entries[cached_key]

        self._entries.pop(key, None)
        while len(self._entries) >= self._max_entries:
            # Insertion order doubles as age order.
            del self._entries[next(iter(self._entries))]
        self._entries[key] = (now, value)

    async def resolve_artwork(self, context: ArtworkContext) -> ArtworkRef | None:
        """Return artwork for the title, or ``None`` on a miss."""

        title = (context.title or "").strip()
        if not title or not self._addon_base_url:
            return None

        key = context.cache_key()
        cached = self._cached(key)
        if cached is not _MISSING:
            return cached

        result = await self._lookup_artwork(title, context.content_type, context.year)
        self._store(key, result)
        return result

    async def resolve_comic_details(
        self, series: str, year: int | None, issue: str
    ) -> ComicDetails | None:
        """Return ComicVine details for ``series (year) #issue``."""

        series = (series or "").strip()
        issue = str(issue or "").strip()
        if not series or not issue or not self._comicvine_api_key:
            return None

        key = f"comic:{format_comic_string(series, year, issue).casefold()}"
        cached = self._cached(key)
        if cached is not _MISSING:
            return cached

        result = await self._lookup_comic(series, year, issue)
        self._store(key, result)
        return result

    async def _lookup_artwork(
        self, title: str, content_type: str, year: int | None
    ) -> ArtworkRef | None:
        path = self._SEARCH_PATH.format(type=content_type, query=quote(title, safe=""))
        payload = await self._get_json(f"{self._addon_base_url}{path}")
        if payload is None:
            return None

        metas = payload.get("metas") or []
        if not isinstance(metas, list) or not metas:
            return None

        match = self._select_best_match(title, year, metas)
        if match is None:
            return None

        match_id = str(match.get("imdb_id") or match.get("id") or "").strip()
        if not match_id:
            return None

        return ArtworkRef(
            id=match_id,
            title=self._text(match.get("name")) or title,
            type=self._text(match.get("type")) or content_type,
            year=self._parse_year(match.get("releaseInfo") or match.get("year")),
            poster=self._ensure_url(match.get("poster") or match.get("thumbnail")),
            background=self._ensure_url(match.get("background") or match.get("fanart")),
            description=self._text(match.get("description")),
        )

    async def _lookup_comic(
        self, series: str, year: int | None, issue: str
    ) -> ComicDetails | None:
        base_params = {"api_key": self._comicvine_api_key, "format": "json"}
        search = await self._get_json(
            f"{self._comicvine_base_url}/search/",
            params={**base_params, "query": series, "resources": "volume", "limit": 10},
        )
        volumes = self._dict_list((search or {}).get("results"))
        if not volumes:
            logger.info("No ComicVine volume found for %s", series)
            return None

        volume = next(
            (
                candidate
                for candidate in volumes
                if year is not None and self._parse_year(candidate.get("start_year")) == year
            ),
            volumes[0],
        )
        volume_id = volume.get("id")

        issues_payload = await self._get_json(
            f"{self._comicvine_base_url}/issues/",
            params={
                **base_params,
                "filter": f"volume:{volume_id},issue_number:{issue}",
                "limit": 1,
            },
        )
        issues = self._dict_list((issues_payload or {}).get("results"))
        if not issues:
            logger.info("Issue #%s not found in ComicVine volume %s", issue, volume_id)
            return None

        found = issues[0]
        image = found.get("image")
        if not isinstance(image, dict):
            image = {}
        publisher = volume.get("publisher")
        if not isinstance(publisher, dict):
            publisher = {}
        return ComicDetails(
            series_name=self._text(volume.get("name")) or series,
            series_id=volume_id if isinstance(volume_id, int) else None,
            year=self._parse_year(volume.get("start_year")) or year,
            issue_number=issue,
            issue_id=found.get("id") if isinstance(found.get("id"), int) else None,
            issue_name=self._text(found.get("name")),
            cover_url=self._ensure_url(
                image.get("original_url")
                or image.get("screen_url")
                or image.get("small_url")
            ),
            description=self._text(found.get("description")),
            publisher=self._text(publisher.get("name")),
        )

    async def _get_json(
        self, url: str, params: dict[str, Any] | None = None
    ) -> dict[str, Any] | None:
        """GET ``url`` and decode JSON; 4xx responses count as a miss."""

        try:
            async with self._semaphore:
                response = await self._client.get(
                    url, params=params, headers={"User-Agent": self._USER_AGENT}
                )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            if status >= 500:
                raise MetadataError(f"Metadata provider returned {status}") from exc
            logger.info("Metadata lookup miss (%s) for %s", status, exc.request.url.path)
            return None
        except httpx.HTTPError as exc:
            raise MetadataError(f"Metadata provider unreachable: {exc}") from exc

        try:
            payload = response.json()
        except ValueError as exc:
            raise MetadataError("Metadata provider returned invalid JSON") from exc
        return payload if isinstance(payload, dict) else None

    def _select_best_match(
        self,
        title: str,
        year: int | None,
        metas: list[Any],
    ) -> dict[str, Any] | None:
        candidates: list[dict[str, Any]] = [
            meta for meta in metas if isinstance(meta, dict)
        ]
        if not candidates:
            return None

        target_slug = slugify(title)

        def candidate_year(meta: dict[str, Any]) -> int | None:
            return self._parse_year(meta.get("releaseInfo") or meta.get("year"))

        exact_title_matches = [
            meta
            for meta in candidates
            if slugify(str(meta.get("name") or "")) == target_slug
        ]
        if year is not None:
            for meta in exact_title_matches:
                if candidate_year(meta) == year:
                    return meta
            if exact_title_matches:
                return min(
                    exact_title_matches,
                    key=lambda meta: self._year_delta(candidate_year(meta), year),
                )
        if exact_title_matches:
            return exact_title_matches[0]
        return candidates[0]

    @staticmethod
    def _year_delta(candidate: int | None, target: int) -> int:
        if candidate is None:
            return 1_000
        return abs(candidate - target)

    @staticmethod
    def _parse_year(value: Any) -> int | None:
        if isinstance(value, int):
            return value
        if not value:
            return None
        match = re.search(r"(19|20|21)\d{2}", str(value))
        if not match:
            return None
        year = int(match.group(0))
        if 1900 <= year <= 2100:
            return year
        return None

    @staticmethod
    def _text(value: Any) -> str | None:
        if isinstance(value, str) and value.strip():
            return value
        return None

    @staticmethod
    def _dict_list(value: Any) -> list[dict[str, Any]]:
        if not isinstance(value, list):
            return []
        return [entry for entry in value if isinstance(entry, dict)]

    @staticmethod
    def _ensure_url(value: Any) -> str | None:
        if isinstance(value, str) and value.startswith("http"):
            return value
        return None

    @staticmethod
    def _normalize_base_url(value: str | None) -> str | None:
        if not value:
            return None
        normalized = value.strip().rstrip("/")
        lowered = normalized.lower()
        for suffix in ("/manifest.json", "/manifest"):
            if lowered.endswith(suffix):
                normalized = normalized[: -len(suffix)].rstrip("/")
                break
        return normalized or None
