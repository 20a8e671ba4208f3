"""
transforms/normalize.py — Scalar normalizers and the raw-batch frame builder.

data.gov.in serves every measure as a string and marks missing values with
"NA" (sometimes "", sometimes nothing at all). Month names arrive in any
case and length. This module turns one page of upstream records into a
typed polars DataFrame with one row per natural key, ready for the raw
record store.

Zero-coalescing is NOT done here: a missing measure stays null so the raw
table keeps the difference between "reported 0" and "not reported".

Usage:
    from mgnrega_pipeline.transforms.normalize import (
        normalize_month,
        normalize_records,
        parse_number,
    )

    parse_number("1,234.5")    # 1234.5
    parse_number("NA")         # None
    normalize_month("APRIL")   # "Apr"

    df = normalize_records(page_records)
"""

from __future__ import annotations

import math
from typing import Any

import polars as pl
import structlog

from mgnrega_shared.schema import (
    IDENTITY_FIELDS,
    MEASURE_COLUMNS,
    MEASURE_FIELDS,
    NATURAL_KEY,
    REMARKS_FIELD,
)
from mgnrega_shared.time_utils import canonical_month

log = structlog.get_logger(__name__)

MISSING_MARKERS = frozenset({"", "NA"})

RAW_FRAME_SCHEMA: dict[str, type[pl.DataType]] = {
    **{name: pl.String for name in IDENTITY_FIELDS},
    **{name: pl.Float64 for name in MEASURE_COLUMNS},
    "remarks": pl.String,
}


# ---------------------------------------------------------------------------
# Scalar normalizers
# ---------------------------------------------------------------------------


def parse_number(value: Any) -> float | None:
    """
    Convert an upstream scalar to a finite float, or None for "no value".

    Never raises. Absent values, the "NA" sentinel, booleans, garbage text
    and non-finite numbers all map to None.
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        s = value.strip()
        if s.upper() in MISSING_MARKERS:
            return None
        try:
            number = float(s.replace(",", ""))
        except ValueError:
            return None
    else:
        return None

    return number if math.isfinite(number) else None


def normalize_month(token: str | None) -> str | None:
    """
    Map a month token to its canonical short form ("Jan" … "Dec", "July").

    Unrecognized tokens are returned unchanged so malformed months surface
    later as unmatched sort keys instead of being dropped here.
    """
    if token is None:
        return None
    return canonical_month(token) or token


def _clean_text(value: Any) -> str | None:
    if value is None:
        return None
    s = str(value).strip()
    return s or None


# ---------------------------------------------------------------------------
# Batch frame builder
# ---------------------------------------------------------------------------


def normalize_record(record: dict[str, Any]) -> dict[str, Any]:
    """Map one upstream record to a raw-table row dict (column → value)."""
    row: dict[str, Any] = {name: _clean_text(record.get(name)) for name in IDENTITY_FIELDS}
    row["month"] = normalize_month(row["month"])
    for field, column in zip(MEASURE_FIELDS, MEASURE_COLUMNS):
        row[column] = parse_number(record.get(field))
    row["remarks"] = _clean_text(record.get(REMARKS_FIELD))
    return row


def normalize_records(records: list[dict[str, Any]]) -> pl.DataFrame:
    """
    Build the typed raw-table frame for one batch of upstream records.

    Rows missing any natural-key field are dropped. Rows sharing a natural
    key are collapsed, keeping the last occurrence in upstream order.

    Args:
        records: Records exactly as returned by the data.gov.in API.

    Returns:
        polars DataFrame with RAW_FRAME_SCHEMA columns.
    """
    df, _ = normalize_batch(records)
    return df


def normalize_batch(records: list[dict[str, Any]]) -> tuple[pl.DataFrame, int]:
    """Like normalize_records(), also returning how many records lacked a natural key."""
    rows = [normalize_record(r) for r in records]
    df = pl.DataFrame(rows, schema=RAW_FRAME_SCHEMA)

    n_before = len(df)
    df = df.filter(pl.all_horizontal([pl.col(c).is_not_null() for c in NATURAL_KEY]))
    missing_key = n_before - len(df)
    if missing_key:
        log.warning("records_missing_natural_key", dropped=missing_key, total=n_before)

    return deduplicate_keys(df, list(NATURAL_KEY), keep="last"), missing_key


def deduplicate_keys(
    df: pl.DataFrame,
    key_cols: list[str],
    *,
    keep: str = "last",
) -> pl.DataFrame:
    """
    Remove duplicate rows by (key_cols), keeping first or last occurrence.

    Use case: the upstream API repeats records within and across pages;
    the last copy seen wins.
    """
    n_before = len(df)
    df = df.unique(subset=key_cols, keep=keep, maintain_order=True)

    dropped = n_before - len(df)
    if dropped:
        log.debug("deduplicated", dropped=dropped, key_cols=key_cols)

    return df
