"""
sources/base.py — Abstract base class for paginated upstream sources.

Each concrete source must implement:
  fetch_page()   — fetch one page of raw records at (offset, limit)
  get_metadata() — return dict with source info for run summaries

Sources own their HTTP client and are used as async context managers so
the client is closed even when a run aborts:

    async with DataGovSource(...) as source:
        records = await source.fetch_page(0, 1000)
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

import structlog

log = structlog.get_logger(__name__)


class SourceError(Exception):
    """Upstream answered, but not with a usable page of records."""


class BaseSource(ABC):
    """Abstract base for upstream record sources."""

    # Override in subclass; used for logging and run summaries
    name: str = "unknown"

    def __init__(self) -> None:
        self._log = log.bind(source_name=self.name)

    async def __aenter__(self) -> "BaseSource":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Release network resources. Default: nothing to release."""

    # ------------------------------------------------------------------
    # Abstract interface
    # ------------------------------------------------------------------

    @abstractmethod
    async def fetch_page(self, offset: int, limit: int) -> list[dict[str, Any]]:
        """
        Fetch one page of upstream records.

        Args:
            offset: Zero-based index of the first record.
            limit:  Maximum number of records to return.

        Returns:
            Records exactly as served by the upstream; an empty list past
            the end of the data.

        Raises:
            SourceError, httpx.HTTPError, asyncio.TimeoutError on failure.
        """
        ...

    @abstractmethod
    def get_metadata(self) -> dict[str, Any]:
        """Return source-level metadata for logging and run summaries."""
        ...
