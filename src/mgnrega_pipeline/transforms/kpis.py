"""
transforms/kpis.py — District KPI arithmetic and state averaging.

Every district-month KPI is a pure, row-wise function of the raw
mgnrega_data row, and every state-month average is the unweighted mean of
the district rows sharing (fin_year, month, state_code). Both the full
rebuild and the incremental upsert go through these two functions, so the
two modes cannot drift apart.

Rules:
  - missing measures count as 0
  - ratios are ×100, rounded half away from zero to 2 decimals (as
    PostgreSQL NUMERIC ROUND does), and 0 when the denominator is
    missing or not positive
  - every percentage is clamped to [0, 100]; the source has rows whose
    numerator exceeds the denominator

Usage:
    from mgnrega_pipeline.transforms.kpis import (
        compute_district_kpis,
        compute_state_averages,
    )

    district_df = compute_district_kpis(raw_df)
    state_df = compute_state_averages(district_df)
"""

from __future__ import annotations

import polars as pl

from mgnrega_shared.schema import AVERAGE_COLUMNS, KPI_COLUMNS, STATE_KEY

IDENTITY_COLUMNS: list[str] = [
    "fin_year",
    "month",
    "state_code",
    "state_name",
    "district_code",
    "district_name",
]

STATE_IDENTITY_COLUMNS: list[str] = ["fin_year", "month", "state_code", "state_name"]


def _round_half_away(expr: pl.Expr, decimals: int) -> pl.Expr:
    """Round like PostgreSQL NUMERIC ROUND(): ties go away from zero."""
    scale = 10**decimals
    # snap float noise first so 1.005 lands on the tie instead of just below it
    scaled = (expr * scale).round(6, mode="half_away_from_zero")
    return scaled.round(0, mode="half_away_from_zero") / scale


def _measure(column: str) -> pl.Expr:
    return pl.col(column).cast(pl.Float64).fill_null(0.0)


def _percent_of(numerator: str, denominator: str) -> pl.Expr:
    denom = pl.col(denominator).cast(pl.Float64)
    return (
        pl.when(denom.is_not_null() & (denom > 0))
        .then(_round_half_away(_measure(numerator) / denom * 100, 2))
        .otherwise(0.0)
        .clip(0.0, 100.0)
    )


def compute_district_kpis(raw: pl.DataFrame) -> pl.DataFrame:
    """
    Derive one district_monthly_performance row per raw row.

    Args:
        raw: Frame with the identity columns and the raw measure columns
             (lower-cased upstream names) of mgnrega_data.

    Returns:
        Frame with IDENTITY_COLUMNS followed by KPI_COLUMNS, sorted by
        natural key.
    """
    persondays = "persondays_of_central_liability_so_far"
    households = "total_households_worked"

    kpis = raw.select(
        *[pl.col(c) for c in IDENTITY_COLUMNS],
        _measure(households).alias("families_worked"),
        _measure(persondays).alias("total_person_days"),
        _measure("percentage_payments_gererated_within_15_days")
        .clip(0.0, 100.0)
        .alias("on_time_payment_percent"),
        _measure("total_exp").alias("total_expenditure"),
        _measure("number_of_completed_works").alias("completed_works"),
        _measure("number_of_ongoing_works").alias("ongoing_works"),
        _percent_of(
            "total_no_of_hhs_completed_100_days_of_wage_employment", households
        ).alias("hundred_day_completion_rate"),
        _measure("total_no_of_hhs_completed_100_days_of_wage_employment").alias(
            "households_completed_100_days"
        ),
        _percent_of("women_persondays", persondays).alias("percent_women"),
        _percent_of("sc_persondays", persondays).alias("percent_sc"),
        _percent_of("st_persondays", persondays).alias("percent_st"),
    )
    return kpis.select([*IDENTITY_COLUMNS, *KPI_COLUMNS]).sort(
        ["fin_year", "month", "state_code", "district_code"]
    )


def compute_state_averages(district: pl.DataFrame) -> pl.DataFrame:
    """
    Average district KPIs per (fin_year, month, state_code).

    Means are unweighted and rounded to 2 decimals; the person-days average
    is rounded to a whole number. state_name is taken from the first
    district row of the group.

    Args:
        district: Frame with STATE_IDENTITY_COLUMNS and KPI_COLUMNS.

    Returns:
        Frame with STATE_IDENTITY_COLUMNS followed by AVERAGE_COLUMNS.
    """
    aggs: list[pl.Expr] = [pl.col("state_name").first()]
    for column in KPI_COLUMNS:
        mean = pl.col(column).cast(pl.Float64).mean()
        if column == "total_person_days":
            aggs.append(_round_half_away(mean, 0).cast(pl.Int64).alias(f"avg_{column}"))
        else:
            aggs.append(_round_half_away(mean, 2).alias(f"avg_{column}"))

    averages = district.group_by(list(STATE_KEY), maintain_order=True).agg(aggs)
    return averages.select([*STATE_IDENTITY_COLUMNS, *AVERAGE_COLUMNS]).sort(list(STATE_KEY))
