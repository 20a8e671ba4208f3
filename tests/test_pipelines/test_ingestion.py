"""
tests/test_pipelines/test_ingestion.py — Unit tests for the ingestion orchestrator.

The upstream is a scripted in-memory source. Store and aggregator are either
MagicMock spies or the real classes on an in-memory SQLite database.
No network access required.
"""

from __future__ import annotations

import asyncio
from typing import Any
from unittest.mock import MagicMock

import httpx
import pytest
from sqlalchemy.exc import OperationalError

from mgnrega_pipeline.loaders.aggregates import AggregationEngine, AggregationResult
from mgnrega_pipeline.loaders.raw_store import ConflictPolicy, IngestResult, RawRecordStore
from mgnrega_pipeline.pipelines.ingestion import (
    IngestionOrchestrator,
    IngestionRunResult,
    RunState,
    run,
)
from mgnrega_pipeline.sources.base import BaseSource, SourceError

PAGE_SIZE = 2


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

class ScriptedSource(BaseSource):
    """Serves pre-scripted pages; an exception instance in the script is raised."""

    name = "scripted"

    def __init__(self, pages: list[Any]) -> None:
        super().__init__()
        self._pages = list(pages)
        self.offsets: list[int] = []
        self.closed = False

    async def fetch_page(self, offset: int, limit: int) -> list[dict[str, Any]]:
        self.offsets.append(offset)
        item = self._pages.pop(0) if self._pages else []
        if isinstance(item, BaseException):
            raise item
        return item

    def get_metadata(self) -> dict[str, Any]:
        return {"source_name": self.name}

    async def aclose(self) -> None:
        self.closed = True


def _mock_store(inserted: int = 2) -> MagicMock:
    store = MagicMock(spec=RawRecordStore)
    store.ingest.side_effect = lambda records, on_conflict: IngestResult(
        policy=on_conflict, received=len(records), inserted=inserted
    )
    return store


def _mock_aggregator() -> MagicMock:
    aggregator = MagicMock(spec=AggregationEngine)
    aggregator.incremental_upsert.return_value = AggregationResult(mode="incremental", district_rows=2)
    aggregator.full_rebuild.return_value = AggregationResult(mode="full", district_rows=4)
    aggregator.count_rows.return_value = {"mgnrega_data": 4}
    return aggregator


def _orchestrator(source, store=None, aggregator=None, **kwargs) -> IngestionOrchestrator:
    kwargs.setdefault("page_size", PAGE_SIZE)
    kwargs.setdefault("max_consecutive_empty", 2)
    kwargs.setdefault("max_consecutive_errors", 5)
    kwargs.setdefault("stop_on_short_page", False)
    kwargs.setdefault("daily_policy", ConflictPolicy.DO_NOTHING)
    return IngestionOrchestrator(
        source,
        store if store is not None else _mock_store(),
        aggregator if aggregator is not None else _mock_aggregator(),
        **kwargs,
    )


@pytest.fixture
def page(make_record):
    """Factory for one full page of distinct records."""
    counter = iter(range(1000))

    def _page(size: int = PAGE_SIZE, **fields) -> list[dict]:
        return [make_record(district_code=f"18{next(counter):02d}", **fields) for _ in range(size)]

    return _page


# ---------------------------------------------------------------------------
# Path A: incremental
# ---------------------------------------------------------------------------

class TestIncrementalTermination:
    @pytest.mark.asyncio
    async def test_two_empty_pages_finish(self):
        source = ScriptedSource([[], []])
        result = await _orchestrator(source).run_incremental()

        assert result.state is RunState.DONE
        assert result.succeeded
        assert result.pages_fetched == 2
        assert source.offsets == [0, PAGE_SIZE]

    @pytest.mark.asyncio
    async def test_single_empty_page_does_not_finish(self, page):
        source = ScriptedSource([page(), [], page(), [], []])
        result = await _orchestrator(source).run_incremental()

        assert result.state is RunState.DONE
        assert result.pages_fetched == 5
        assert result.records_received == 4

    @pytest.mark.asyncio
    async def test_short_page_finishes(self, page):
        source = ScriptedSource([page(), page(size=1), page()])
        result = await _orchestrator(source, stop_on_short_page=True).run_incremental()

        assert result.state is RunState.DONE
        assert result.pages_fetched == 2
        assert source.offsets == [0, PAGE_SIZE]

    @pytest.mark.asyncio
    async def test_max_pages(self, page):
        source = ScriptedSource([page(), page(), page()])
        result = await _orchestrator(source, max_pages=2).run_incremental()

        assert result.state is RunState.DONE
        assert result.pages_fetched == 2


class TestIncrementalAggregation:
    @pytest.mark.asyncio
    async def test_fast_forward_skips_aggregation(self, page):
        aggregator = _mock_aggregator()
        source = ScriptedSource([page(), page(), [], []])
        result = await _orchestrator(source, _mock_store(inserted=0), aggregator).run_incremental()

        aggregator.incremental_upsert.assert_not_called()
        assert result.pages_fast_forwarded == 2
        assert result.rows_skipped == 4
        assert result.aggregation_runs == 0

    @pytest.mark.asyncio
    async def test_new_rows_aggregate_after_each_page(self, page):
        aggregator = _mock_aggregator()
        source = ScriptedSource([page(), page(), [], []])
        result = await _orchestrator(source, aggregator=aggregator).run_incremental()

        assert aggregator.incremental_upsert.call_count == 2
        assert result.aggregation_runs == 2
        assert result.rows_inserted == 4
        aggregator.full_rebuild.assert_not_called()

    @pytest.mark.asyncio
    async def test_uses_daily_policy(self, page):
        store = _mock_store()
        source = ScriptedSource([page(), [], []])
        await _orchestrator(source, store, daily_policy=ConflictPolicy.DO_UPDATE).run_incremental()

        assert store.ingest.call_args.kwargs["on_conflict"] is ConflictPolicy.DO_UPDATE

    @pytest.mark.asyncio
    async def test_summary_includes_table_counts(self):
        result = await _orchestrator(ScriptedSource([[], []])).run_incremental()
        assert result.table_counts == {"mgnrega_data": 4}
        assert result.summary()["state"] == "DONE"


class TestIncrementalFetchErrors:
    @pytest.mark.asyncio
    async def test_error_streak_aborts(self):
        errors = [httpx.ConnectError("refused") for _ in range(5)]
        source = ScriptedSource(errors)
        result = await _orchestrator(source).run_incremental()

        assert result.state is RunState.ABORT
        assert not result.succeeded
        assert result.pages_failed == 5
        assert source.offsets == [0, 2, 4, 6, 8]
        assert "ConnectError" in result.last_error

    @pytest.mark.asyncio
    async def test_failed_page_is_skipped(self, page):
        store = _mock_store()
        source = ScriptedSource([page(), SourceError("bad payload"), page(), [], []])
        result = await _orchestrator(source, store).run_incremental()

        assert result.state is RunState.DONE
        assert result.pages_failed == 1
        assert store.ingest.call_count == 2
        assert source.offsets[:3] == [0, 2, 4]

    @pytest.mark.asyncio
    async def test_success_resets_error_streak(self, page):
        pages = [
            asyncio.TimeoutError(),
            asyncio.TimeoutError(),
            page(),
            asyncio.TimeoutError(),
            asyncio.TimeoutError(),
            [],
            [],
        ]
        result = await _orchestrator(
            ScriptedSource(pages), max_consecutive_errors=3
        ).run_incremental()

        assert result.state is RunState.DONE
        assert result.pages_failed == 4
        assert result.last_error == "upstream request timed out"

    @pytest.mark.asyncio
    async def test_http_status_error_counts_as_fetch_failure(self):
        request = httpx.Request("GET", "https://api.data.gov.in/resource/x")
        error = httpx.HTTPStatusError(
            "503", request=request, response=httpx.Response(503, request=request)
        )
        result = await _orchestrator(
            ScriptedSource([error]), max_consecutive_errors=1
        ).run_incremental()
        assert result.state is RunState.ABORT

    @pytest.mark.asyncio
    async def test_database_error_propagates(self, page):
        store = _mock_store()
        store.ingest.side_effect = OperationalError("INSERT", {}, Exception("server closed"))
        source = ScriptedSource([page(), page()])

        with pytest.raises(OperationalError):
            await _orchestrator(source, store).run_incremental()
        assert source.offsets == [0]


# ---------------------------------------------------------------------------
# Path B: full sync
# ---------------------------------------------------------------------------

class TestFullSync:
    @pytest.mark.asyncio
    async def test_replaces_and_rebuilds_once(self, page):
        store = _mock_store()
        aggregator = _mock_aggregator()
        source = ScriptedSource([page(), page(), page(size=1)])
        result = await _orchestrator(
            source, store, aggregator, stop_on_short_page=True
        ).run_full_sync()

        assert result.state is RunState.DONE
        assert {c.kwargs["on_conflict"] for c in store.ingest.call_args_list} == {
            ConflictPolicy.DO_UPDATE
        }
        aggregator.incremental_upsert.assert_not_called()
        aggregator.full_rebuild.assert_called_once()
        assert result.aggregation_runs == 1
        assert result.district_rows == 4

    @pytest.mark.asyncio
    async def test_fetch_error_aborts_but_still_rebuilds(self, page):
        store = _mock_store()
        aggregator = _mock_aggregator()
        source = ScriptedSource([page(), httpx.ReadTimeout("slow"), page(), [], []])
        result = await _orchestrator(source, store, aggregator).run_full_sync()

        assert result.state is RunState.ABORT
        assert source.offsets == [0, PAGE_SIZE]
        assert result.pages_failed == 1
        assert result.rows_inserted == 2
        store.ingest.assert_called_once()
        aggregator.full_rebuild.assert_called_once()
        assert result.aggregation_runs == 1
        assert not result.succeeded

    @pytest.mark.asyncio
    async def test_rebuild_after_abort_reflects_committed_pages(self, engine, page):
        source = ScriptedSource([page(), SourceError("bad payload")])
        orchestrator = _orchestrator(source, RawRecordStore(engine), AggregationEngine(engine))
        result = await orchestrator.run_full_sync()

        assert result.state is RunState.ABORT
        assert result.table_counts["mgnrega_data"] == 2
        assert result.table_counts["district_monthly_performance"] == 2

    @pytest.mark.asyncio
    async def test_database_error_skips_rebuild(self, page):
        store = _mock_store()
        store.ingest.side_effect = OperationalError("INSERT", {}, Exception("gone"))
        aggregator = _mock_aggregator()
        with pytest.raises(OperationalError):
            await _orchestrator(ScriptedSource([page()]), store, aggregator).run_full_sync()
        aggregator.full_rebuild.assert_not_called()

    @pytest.mark.asyncio
    async def test_end_to_end_on_sqlite(self, engine, page):
        source = ScriptedSource([page(), page(), page(size=1)])
        orchestrator = _orchestrator(
            source,
            RawRecordStore(engine),
            AggregationEngine(engine),
            stop_on_short_page=True,
        )
        result = await orchestrator.run_full_sync()

        assert result.state is RunState.DONE
        assert result.rows_inserted == 5
        assert result.table_counts == {
            "mgnrega_data": 5,
            "district_monthly_performance": 5,
            "state_monthly_averages": 1,
        }


# ---------------------------------------------------------------------------
# run() entry point
# ---------------------------------------------------------------------------

class TestRunEntryPoint:
    @pytest.mark.asyncio
    async def test_incremental_on_sqlite(self, engine, page):
        source = ScriptedSource([page(), [], []])
        result = await run("incremental", engine=engine, source=source)

        assert isinstance(result, IngestionRunResult)
        assert result.mode == "incremental"
        assert result.state is RunState.DONE
        assert result.rows_inserted == 2
        assert result.table_counts["district_monthly_performance"] == 2
        assert source.closed

    @pytest.mark.asyncio
    async def test_rerun_is_fast_forwarded(self, engine, make_record):
        records = [make_record(district_code="1801"), make_record(district_code="1802")]
        await run("incremental", engine=engine, source=ScriptedSource([records, [], []]))
        result = await run("incremental", engine=engine, source=ScriptedSource([records, [], []]))

        assert result.rows_inserted == 0
        assert result.pages_fast_forwarded == 1
        assert result.aggregation_runs == 0

    @pytest.mark.asyncio
    async def test_unknown_mode(self, engine):
        with pytest.raises(ValueError):
            await run("weekly", engine=engine, source=ScriptedSource([]))
