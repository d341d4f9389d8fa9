"""Exception types shared by the selection engine and session tracker."""

from __future__ import annotations


class MasterOrderError(Exception):
    """Base exception for all Master Order errors."""


class NoEligibleContentError(MasterOrderError):
    """No category (or picker) has anything left to offer."""


class AllWatchedError(MasterOrderError):
    """Every episode of a series has been completed."""

    def __init__(self, series_id: str, message: str | None = None) -> None:
        super().__init__(message or f"All episodes of series {series_id} are watched")
        self.series_id = series_id


class ConflictError(MasterOrderError):
    """An unfinished, unpaused session already exists for the subject."""


class NotFoundError(MasterOrderError):
    """Unknown or no longer addressable session, order, or item."""


class MetadataError(MasterOrderError):
    """The metadata provider could not be reached.

    Raised by the metadata cache for infrastructure failures only; a plain
    miss is reported as ``None``.
    """


class EnrichmentTimeoutError(MetadataError):
    """Enrichment did not finish inside the configured timeout."""
