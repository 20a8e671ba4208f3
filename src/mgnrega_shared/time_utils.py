"""
time_utils.py — Month spellings and financial-year ordering.

data.gov.in publishes the month of an observation as free text: "April",
"apr", "Sept", "July". Everything that needs to compare or sort months goes
through the single lookup below so the ordering is defined once.

The Indian financial year runs April–March, so April is ordinal 1 and March
is ordinal 12.

Usage:
    from mgnrega_shared.time_utils import canonical_month, fiscal_month_ordinal

    canonical_month("september")     # "Sep"
    fiscal_month_ordinal("Apr")      # 1
    fiscal_month_ordinal("March")    # 12

    stmt = select(t).order_by(fiscal_month_order(t.c.month))
"""

from __future__ import annotations

from sqlalchemy import case
from sqlalchemy.sql.elements import ColumnElement

# Canonical short forms, in financial-year order. "July" is the upstream's
# own four-letter spelling and is kept as-is.
FISCAL_MONTHS: tuple[str, ...] = (
    "Apr", "May", "Jun", "July", "Aug", "Sep",
    "Oct", "Nov", "Dec", "Jan", "Feb", "Mar",
)

# Lower-cased spelling → canonical short form
_MONTH_NAMES: dict[str, str] = {
    "january": "Jan", "jan": "Jan",
    "february": "Feb", "feb": "Feb",
    "march": "Mar", "mar": "Mar",
    "april": "Apr", "apr": "Apr",
    "may": "May",
    "june": "Jun", "jun": "Jun",
    "july": "July", "jul": "July",
    "august": "Aug", "aug": "Aug",
    "september": "Sep", "sep": "Sep", "sept": "Sep",
    "october": "Oct", "oct": "Oct",
    "november": "Nov", "nov": "Nov",
    "december": "Dec", "dec": "Dec",
}

_FISCAL_ORDINALS: dict[str, int] = {
    month: i for i, month in enumerate(FISCAL_MONTHS, start=1)
}


def canonical_month(token: str | None) -> str | None:
    """
    Return the canonical short month for any known spelling, else None.

    Matching ignores case, surrounding whitespace and a trailing period
    ("Sept.", " AUGUST ").
    """
    if token is None:
        return None
    key = token.strip().rstrip(".").lower()
    return _MONTH_NAMES.get(key)


def fiscal_month_ordinal(month: str | None) -> int | None:
    """Return April=1 … March=12 for any known spelling, else None."""
    canonical = canonical_month(month)
    if canonical is None:
        return None
    return _FISCAL_ORDINALS[canonical]


def fiscal_month_order(column: ColumnElement) -> ColumnElement:
    """
    SQL CASE expression mapping a canonical month column to its fiscal ordinal.

    Months that are not in canonical form sort as 0 (before April).
    """
    return case(
        {month: ordinal for month, ordinal in _FISCAL_ORDINALS.items()},
        value=column,
        else_=0,
    )
