"""
tests/conftest.py — Shared pytest fixtures for the pipeline test suite.

Provides:
  fixture_path()  — resolves paths to tests/fixtures/
  engine()        — in-memory SQLite engine with the real schema
  make_record()   — factory for upstream-shaped data.gov.in records
  datagov_page    — parsed fixture page from tests/fixtures/
  mock_http       — configured respx router for faking HTTP responses
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Callable

import pytest
import respx
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from mgnrega_shared.schema import MEASURE_FIELDS, metadata

FIXTURES_DIR = Path(__file__).parent / "fixtures"


# ---------------------------------------------------------------------------
# Path helpers
# ---------------------------------------------------------------------------

@pytest.fixture
def fixture_path() -> Path:
    return FIXTURES_DIR


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------

@pytest.fixture
def engine():
    """
    In-memory SQLite engine with all pipeline tables created.

    StaticPool keeps one shared connection so worker threads (the
    orchestrator runs database steps via asyncio.to_thread) see the same
    database.
    """
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    metadata.create_all(eng)
    yield eng
    eng.dispose()


# ---------------------------------------------------------------------------
# Upstream records
# ---------------------------------------------------------------------------

_DEFAULT_MEASURES: dict[str, str] = {
    "Total_Households_Worked": "200",
    "Persondays_of_Central_Liability_so_far": "10000",
    "Women_Persondays": "5000",
    "SC_persondays": "1000",
    "ST_persondays": "500",
    "Total_Exp": "123.45",
    "percentage_payments_gererated_within_15_days": "95.5",
    "Total_No_of_HHs_completed_100_Days_of_Wage_Employment": "20",
    "Number_of_Completed_Works": "10",
    "Number_of_Ongoing_Works": "30",
}


@pytest.fixture
def make_record() -> Callable[..., dict[str, Any]]:
    """
    Factory for one data.gov.in record. Unlisted measures are "NA".

    Usage:
        rec = make_record(district_code="1802", month="Jan", Total_Exp="9.5")
    """

    def _make(
        *,
        fin_year: str = "2024-2025",
        month: str = "Dec",
        state_code: str = "18",
        state_name: str = "ASSAM",
        district_code: str = "1801",
        district_name: str | None = None,
        **measures: str,
    ) -> dict[str, Any]:
        record: dict[str, Any] = {
            "fin_year": fin_year,
            "month": month,
            "state_code": state_code,
            "state_name": state_name,
            "district_code": district_code,
            "district_name": district_name or f"DISTRICT {district_code}",
        }
        record.update({field: "NA" for field in MEASURE_FIELDS})
        record.update(_DEFAULT_MEASURES)
        record.update(measures)
        record["Remarks"] = "NA"
        return record

    return _make


@pytest.fixture
def datagov_page() -> dict:
    """Parsed data.gov.in resource response (three records, one repeated key)."""
    return json.loads((FIXTURES_DIR / "datagov_page.json").read_text())


# ---------------------------------------------------------------------------
# respx HTTP mock router
# ---------------------------------------------------------------------------

@pytest.fixture
def mock_http():
    """
    Activate the respx mock router for all httpx requests.

    Usage in tests:
        def test_something(mock_http):
            mock_http.get("https://...").mock(return_value=httpx.Response(200, json={...}))
    """
    with respx.mock(assert_all_called=False) as router:
        yield router
