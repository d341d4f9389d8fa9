"""Utility helpers for the Master Order service."""

from __future__ import annotations

import json
import re
import unicodedata
from typing import Any, Iterable


COLLECTION_SUFFIX = " Collection"
COMIC_STRING_RE = re.compile(r"^(.+?)\s*\((\d{4})\)\s*#(.+)$")


def slugify(value: str) -> str:
    """Return a URL-friendly slug."""

    value = unicodedata.normalize("NFKD", value)
    value = value.encode("ascii", "ignore").decode("ascii")
    value = re.sub(r"[^a-zA-Z0-9]+", "-", value)
    value = value.strip("-")
    value = re.sub(r"-+", "-", value)
    return value.lower()


def parse_collections(value: Any) -> list[str]:
    """Return collection names from a JSON string or list, de-duplicated in order."""

    if not value:
        return []
    raw: Any = value
    if isinstance(value, str):
        try:
            raw = json.loads(value)
        except json.JSONDecodeError:
            return []
    if not isinstance(raw, Iterable) or isinstance(raw, (str, bytes)):
        return []

    names: list[str] = []
    for entry in raw:
        if not isinstance(entry, str):
            continue
        name = entry.strip()
        if name and name not in names:
            names.append(name)
    return names


def search_variants(collection_name: str) -> list[str]:
    """Return lookup variants for a collection name.

    The raw name comes first, followed by the name with a trailing
    " Collection" removed. The suffix is only ever stripped, never added.
    """

    name = (collection_name or "").strip()
    if not name:
        return []
    variants = [name]
    if name.endswith(COLLECTION_SUFFIX):
        stripped = name[: -len(COLLECTION_SUFFIX)].strip()
        if stripped and stripped not in variants:
            variants.append(stripped)
    return variants


def parse_comic_string(value: str) -> tuple[str, int, str] | None:
    """Split ``"Series (Year) #Issue"`` into its parts."""

    match = COMIC_STRING_RE.match((value or "").strip())
    if not match:
        return None
    series, year, issue = match.groups()
    return series.strip(), int(year), issue.strip()


def format_comic_string(series: str, year: int | None, issue: str) -> str:
    """Inverse of :func:`parse_comic_string`."""

    if year is None:
        return f"{series} #{issue}"
    return f"{series} ({year}) #{issue}"
