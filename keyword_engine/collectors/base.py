"""Base SERP client interface."""

import logging
from abc import ABC, abstractmethod

from keyword_engine.analysis.types import AppMetadata, Platform, SerpResult

logger = logging.getLogger(__name__)


class BaseSerpClient(ABC):
    """Abstract base for app-store search clients.

    Implementations perform exactly one lookup per call: they apply a request
    timeout and raise ``FetchError`` variants, but never retry. Retry policy
    belongs to the caller.
    """

    platform: Platform = Platform.IOS
    page_size: int = 25

    @abstractmethod
    async def fetch_serp(self, term: str, region: str, max_pages: int = 2) -> SerpResult:
        """Ranked apps for ``term`` in ``region``, in source order."""
        ...

    @abstractmethod
    async def lookup_app(self, app_id: str, region: str) -> AppMetadata:
        """Store listing metadata for one app."""
        ...
