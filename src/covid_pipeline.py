"""
covid_pipeline.py
JHU CSSE COVID-19 time series → tidy US state-by-day table

Stages:
- Confirmed and deaths files are prepared independently: project, rename,
  reshape wide → long, roll county rows up to (State, Date), add daily deltas
- The two tables are combined positionally, but only after their key sequences
  have been checked to agree row for row
- All-zero rows are dropped and the result is sorted by (Date, State)

A single `run_pipeline()` call rebuilds the table from the live sources.
"""

import logging

import numpy as np
import pandas as pd

from data_cleaning import (
    AuditTrail,
    add_deltas,
    aggregate_by_key,
    combine_aligned,
    date_columns,
    drop_inactive,
    rename_columns,
    select_columns,
    wide_to_long,
)
from data_collection import COVID_CASES_URL, COVID_DEATHS_URL, fetch_csv
from pipeline_errors import SchemaError

# ── Logging Setup ─────────────────────────────────────────────────────────────
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)s | %(message)s",
    datefmt="%H:%M:%S",
)
log = logging.getLogger(__name__)


# ── Constants ─────────────────────────────────────────────────────────────────

# Identity columns kept alongside the per-date columns; UID, FIPS, Admin2,
# Lat/Long_ and Combined_Key are dropped
CASES_COLUMNS  = ["Province_State", "Country_Region"]
DEATHS_COLUMNS = ["Province_State", "Country_Region", "Population"]

RENAMES = {
    "Province_State": "State",
    "Country_Region": "Country",
}

KEYS = ["State", "Date"]

# Population is per county in the source; summing county rows gives the state figure
CASES_MEASURES  = {"Cases": "sum"}
DEATHS_MEASURES = {"Deaths": "sum", "Population": "sum"}

CASES_DELTAS  = {"Cases": "NewCases"}
DEATHS_DELTAS = {"Deaths": "NewDeaths"}

METRICS = ["Cases", "NewCases", "Deaths", "NewDeaths"]

TIDY_COLUMNS = ["Date", "State", "Population", "Cases", "NewCases", "Deaths", "NewDeaths"]

PER = 1000


# ── Step 1: Prepare each source ───────────────────────────────────────────────

def _project_wide(raw: pd.DataFrame, identity: list, audit: AuditTrail) -> pd.DataFrame:
    dates = date_columns(raw)
    if not dates:
        raise SchemaError("Time-series file has no date columns", stage="project", key=list(raw.columns)[:15])
    return select_columns(raw, identity + dates, audit)


def prepare_cases(raw: pd.DataFrame, audit: AuditTrail = None) -> pd.DataFrame:
    """Confirmed-cases wide table → (State, Date, Cases, NewCases)."""
    df = _project_wide(raw, CASES_COLUMNS, audit)
    df = rename_columns(df, RENAMES, audit)
    df = wide_to_long(df, ["State", "Country"], value_name="Cases", audit=audit)
    df = aggregate_by_key(df, KEYS, CASES_MEASURES, audit)
    return add_deltas(df, "State", "Date", CASES_DELTAS, audit)


def prepare_deaths(raw: pd.DataFrame, audit: AuditTrail = None) -> pd.DataFrame:
    """
    Deaths wide table → (State, Date, Deaths, Population, NewDeaths).

    Population is published per county, so it is summed (not maxed) when
    county rows roll up to (State, Date); the state figure is then constant
    across dates.
    """
    df = _project_wide(raw, DEATHS_COLUMNS, audit)
    df = rename_columns(df, RENAMES, audit)
    df = wide_to_long(df, ["State", "Country", "Population"], value_name="Deaths", audit=audit)
    df = aggregate_by_key(df, KEYS, DEATHS_MEASURES, audit)
    return add_deltas(df, "State", "Date", DEATHS_DELTAS, audit)


# ── Step 2: Combine ───────────────────────────────────────────────────────────

def combine_cases_deaths(cases: pd.DataFrame, deaths: pd.DataFrame, audit: AuditTrail = None) -> pd.DataFrame:
    us = combine_aligned(cases, deaths, KEYS, audit)
    return us[TIDY_COLUMNS]


# ── Step 3: Finish ────────────────────────────────────────────────────────────

def finish(us: pd.DataFrame, audit: AuditTrail = None) -> pd.DataFrame:
    return drop_inactive(us, METRICS, ["Date", "State"], audit)


# ── Analysis ──────────────────────────────────────────────────────────────────

def national_totals(us: pd.DataFrame) -> pd.DataFrame:
    """US-wide daily totals of the four metrics."""
    return us.groupby("Date", as_index=False)[METRICS].sum()


def state_totals(us: pd.DataFrame) -> pd.DataFrame:
    """
    Latest cumulative figures per state, scaled by population.
    Entities with no population (cruise ships, some territories) are excluded.
    """
    latest = (
        us.sort_values(["State", "Date"], kind="mergesort")
        .groupby("State")
        .tail(1)
    )
    excluded = (latest["Population"] <= 0).sum()
    if excluded:
        log.info(f"{excluded} entities without population excluded from per-capita totals")

    totals = latest.loc[latest["Population"] > 0, ["State", "Date", "Population", "Cases", "Deaths"]]
    totals = totals.reset_index(drop=True)
    totals["CasesPerThou"]  = totals["Cases"] * PER / totals["Population"]
    totals["DeathsPerThou"] = totals["Deaths"] * PER / totals["Population"]
    return totals


def fit_population_model(totals: pd.DataFrame) -> dict:
    """
    Least-squares line DeathsPerThou ~ CasesPerThou across states.

    Returns slope, intercept, r_squared and the totals with a `Predicted` column.
    """
    if len(totals) < 2:
        raise ValueError(f"Need at least two states to fit a line, got {len(totals)}")

    x = totals["CasesPerThou"].to_numpy(dtype=float)
    y = totals["DeathsPerThou"].to_numpy(dtype=float)
    slope, intercept = np.polyfit(x, y, 1)
    predicted = intercept + slope * x

    ss_res = np.sum((y - predicted) ** 2)
    ss_tot = np.sum((y - y.mean()) ** 2)
    r_squared = 1 - ss_res / ss_tot if ss_tot else 1.0

    log.info(f"DeathsPerThou = {intercept:.4f} + {slope:.4f} × CasesPerThou (R² = {r_squared:.3f})")
    return {
        "slope": float(slope),
        "intercept": float(intercept),
        "r_squared": float(r_squared),
        "fitted": totals.assign(Predicted=predicted),
    }


# ── Pipeline Orchestrator ─────────────────────────────────────────────────────

def run_pipeline(
    cases_source: str = COVID_CASES_URL,
    deaths_source: str = COVID_DEATHS_URL,
) -> pd.DataFrame:
    """
    End-to-end run: fetch both files and return the tidy US table.

    Parameters
    ----------
    cases_source  : URL or path of the confirmed-cases time series
    deaths_source : URL or path of the deaths time series (carries Population)

    Returns
    -------
    DataFrame with columns Date, State, Population, Cases, NewCases, Deaths, NewDeaths
    """
    log.info("=" * 60)
    log.info("JHU COVID-19 — US PIPELINE START")
    log.info("=" * 60)

    cases_raw = fetch_csv(cases_source)
    deaths_raw = fetch_csv(deaths_source)
    audit = AuditTrail("COVID-19 US", total_rows=len(cases_raw) + len(deaths_raw))

    cases = prepare_cases(cases_raw, audit)
    deaths = prepare_deaths(deaths_raw, audit)
    us = combine_cases_deaths(cases, deaths, audit)
    us = finish(us, audit)

    log.info(f"Final shape: {us.shape[0]:,} rows × {us.shape[1]} columns, "
             f"{us['State'].nunique()} states, {us['Date'].min():%Y-%m-%d} → {us['Date'].max():%Y-%m-%d}")
    audit.summary()
    return us


# ── Entry Point ───────────────────────────────────────────────────────────────

if __name__ == "__main__":
    us = run_pipeline()
    model = fit_population_model(state_totals(us))
    print(national_totals(us).tail())
    print(model["fitted"].sort_values("DeathsPerThou", ascending=False).head(10).to_string())
