"""
sources/datagov.py — data.gov.in MGNREGA resource adapter.

The Open Government Data platform serves the district-wise MGNREGA
"At a Glance" resource as paginated JSON:

  GET /resource/ee03643a-ee4c-48c2-ac30-9f2ff26ab722
      ?api-key=<key>&format=json&limit=<n>&offset=<k>

Response shape (abridged):
  {
    "status": "ok",
    "total": 61234,
    "count": 1000,
    "records": [
      {"fin_year": "2024-2025", "month": "Dec", "state_code": "18",
       "Total_Exp": "1234.56", "Women_Persondays": "NA", ...},
      ...
    ]
  }

Every measure arrives as a string and "NA" marks a missing value; parsing
is left to transforms.normalize. Pages past the end of the data come back
with an empty records list.

Usage:
    async with DataGovSource() as source:
        records = await source.fetch_page(offset=0, limit=1000)
"""

from __future__ import annotations

import asyncio
from typing import Any

import httpx

from mgnrega_shared.config import settings
from mgnrega_pipeline.sources.base import BaseSource, SourceError
from mgnrega_pipeline.utils.retry import with_retry


class DataGovSource(BaseSource):
    """Pages through the MGNREGA resource on api.data.gov.in."""

    name = "data.gov.in"

    def __init__(
        self,
        resource_url: str | None = None,
        api_key: str | None = None,
        *,
        timeout: float | None = None,
        retry_attempts: int | None = None,
        retry_base_delay: float = 1.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__()
        self._resource_url = (resource_url or settings.data_gov_resource_url).rstrip("/")
        self._api_key = settings.data_gov_api_key if api_key is None else api_key
        self._timeout = timeout or settings.fetch_timeout_s
        self._retry_attempts = retry_attempts or settings.fetch_retry_attempts
        self._retry_base_delay = retry_base_delay
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=self._timeout)

        if not self._api_key:
            self._log.warning("datagov_api_key_missing")

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    async def _get(self, params: dict[str, Any]) -> httpx.Response:
        response = await self._client.get(self._resource_url, params=params)
        response.raise_for_status()
        return response

    # ------------------------------------------------------------------
    # BaseSource interface
    # ------------------------------------------------------------------

    async def fetch_page(self, offset: int, limit: int) -> list[dict[str, Any]]:
        """
        Fetch records [offset, offset + limit) from the resource.

        The whole call, retries included, is bounded by the configured
        timeout. Transport errors (connection refused, reset, read timeout)
        are retried; HTTP status errors are not.

        Raises:
            asyncio.TimeoutError:  the call exceeded the timeout.
            httpx.HTTPStatusError: non-2xx response.
            httpx.TransportError:  still failing after all attempts.
            SourceError:           body is not JSON or has no records list.
        """
        params: dict[str, Any] = {
            "api-key": self._api_key,
            "format": "json",
            "limit": limit,
            "offset": offset,
        }
        self._log.debug("datagov_fetch", offset=offset, limit=limit)

        get = with_retry(
            max_attempts=self._retry_attempts,
            base_delay=self._retry_base_delay,
            retry_on=(httpx.TransportError,),
        )(self._get)
        response = await asyncio.wait_for(get(params), timeout=self._timeout)

        try:
            payload = response.json()
        except ValueError as exc:
            raise SourceError(f"Non-JSON response at offset {offset}") from exc

        records = payload.get("records") if isinstance(payload, dict) else None
        if not isinstance(records, list):
            raise SourceError(f"Response at offset {offset} has no records list")

        self._log.debug(
            "datagov_page_fetched",
            offset=offset,
            count=len(records),
            total=payload.get("total"),
        )
        return records

    def get_metadata(self) -> dict[str, Any]:
        return {
            "source_name": self.name,
            "resource_url": self._resource_url,
            "description": "MGNREGA district-wise monthly performance (At a Glance)",
            "timeout_s": self._timeout,
            "retry_attempts": self._retry_attempts,
        }
