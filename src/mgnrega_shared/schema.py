"""
schema.py — SQLAlchemy Core table definitions.

Three tables make up the pipeline's storage contract. The reporting layer
only ever reads them:

  mgnrega_data                  — one raw row per (fin_year, month, state, district)
  district_monthly_performance  — KPIs derived row-by-row from mgnrega_data
  state_monthly_averages        — per-state means of the district KPIs

Upstream field names are case-sensitive and inconsistently styled; the raw
column for each field is its lower-cased name.

Usage:
    from mgnrega_shared.schema import metadata, raw_data, district_performance

    metadata.create_all(engine)   # tests / local development only
"""

from __future__ import annotations

from sqlalchemy import (
    BigInteger,
    Boolean,
    Column,
    DateTime,
    Float,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    false,
    func,
)

metadata = MetaData()

# Natural key shared by the raw and district tables
NATURAL_KEY: tuple[str, ...] = ("fin_year", "month", "state_code", "district_code")
STATE_KEY: tuple[str, ...] = ("fin_year", "month", "state_code")

# Identifying fields, verbatim from the data.gov.in record
IDENTITY_FIELDS: tuple[str, ...] = (
    "fin_year",
    "month",
    "state_code",
    "state_name",
    "district_code",
    "district_name",
)

# Numeric measure fields, verbatim from the data.gov.in record
MEASURE_FIELDS: tuple[str, ...] = (
    "Approved_Labour_Budget",
    "Average_Wage_rate_per_day_per_person",
    "Average_days_of_employment_provided_per_Household",
    "Differently_abled_persons_worked",
    "Material_and_skilled_Wages",
    "Number_of_Completed_Works",
    "Number_of_Ongoing_Works",
    "Number_of_GPs_with_NIL_exp",
    "Persondays_of_Central_Liability_so_far",
    "SC_persondays",
    "SC_workers_against_active_workers",
    "ST_persondays",
    "ST_workers_against_active_workers",
    "Total_Adm_Expenditure",
    "Total_Exp",
    "Total_Households_Worked",
    "Total_Individuals_Worked",
    "Total_No_of_Active_Job_Cards",
    "Total_No_of_Active_Workers",
    "Total_No_of_HHs_completed_100_Days_of_Wage_Employment",
    "Total_No_of_JobCards_issued",
    "Total_No_of_Workers",
    "Total_No_of_Works_Takenup",
    "Wages",
    "Women_Persondays",
    "percent_of_Category_B_Works",
    "percent_of_Expenditure_on_Agriculture_Allied_Works",
    "percent_of_NRM_Expenditure",
    "percentage_payments_gererated_within_15_days",
)

REMARKS_FIELD = "Remarks"

MEASURE_COLUMNS: tuple[str, ...] = tuple(f.lower() for f in MEASURE_FIELDS)

# KPI columns of district_monthly_performance, in reporting order
KPI_COLUMNS: tuple[str, ...] = (
    "families_worked",
    "total_person_days",
    "on_time_payment_percent",
    "total_expenditure",
    "completed_works",
    "ongoing_works",
    "hundred_day_completion_rate",
    "households_completed_100_days",
    "percent_women",
    "percent_sc",
    "percent_st",
)

AVERAGE_COLUMNS: tuple[str, ...] = tuple(f"avg_{c}" for c in KPI_COLUMNS)


def _timestamps() -> list[Column]:
    return [
        Column("created_at", DateTime(timezone=True), server_default=func.now(), nullable=False),
        Column("updated_at", DateTime(timezone=True), server_default=func.now(), nullable=False),
    ]


raw_data = Table(
    "mgnrega_data",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("fin_year", String(16), nullable=False),
    Column("month", String(16), nullable=False),
    Column("state_code", String(16), nullable=False),
    Column("state_name", String(128)),
    Column("district_code", String(16), nullable=False),
    Column("district_name", String(128)),
    *[Column(name, Float) for name in MEASURE_COLUMNS],
    Column("remarks", Text),
    *_timestamps(),
    UniqueConstraint(*NATURAL_KEY, name="uq_mgnrega_data_natural_key"),
)

district_performance = Table(
    "district_monthly_performance",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("fin_year", String(16), nullable=False),
    Column("month", String(16), nullable=False),
    Column("state_code", String(16), nullable=False),
    Column("state_name", String(128)),
    Column("district_code", String(16), nullable=False),
    Column("district_name", String(128)),
    *[Column(name, Float, nullable=False, server_default="0") for name in KPI_COLUMNS],
    Column("is_latest_month", Boolean, nullable=False, server_default=false()),
    *_timestamps(),
    UniqueConstraint(*NATURAL_KEY, name="uq_district_performance_natural_key"),
    Index("ix_district_performance_district", "district_code"),
)

state_averages = Table(
    "state_monthly_averages",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("fin_year", String(16), nullable=False),
    Column("month", String(16), nullable=False),
    Column("state_code", String(16), nullable=False),
    Column("state_name", String(128)),
    *[
        Column(name, BigInteger if name == "avg_total_person_days" else Float)
        for name in AVERAGE_COLUMNS
    ],
    *_timestamps(),
    UniqueConstraint(*STATE_KEY, name="uq_state_averages_state_key"),
)
