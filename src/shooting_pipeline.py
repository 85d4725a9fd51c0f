"""
shooting_pipeline.py
NYPD Shooting Incident Data (Historic) → tidy incident table

Design principles:
- One row per incident in and out; nothing is aggregated until analysis
- Inconsistent categorical encodings collapse into a small fixed vocabulary
- Values outside the known vocabularies are reported, not rewritten
"""

import logging

import pandas as pd

from data_cleaning import (
    AuditTrail,
    canonicalize_sex,
    canonicalize_unknowns,
    parse_dates,
    parse_flag,
    rename_columns,
    select_columns,
    unexpected_values,
)
from data_collection import NYPD_SHOOTING_URL, fetch_csv

# ── Logging Setup ─────────────────────────────────────────────────────────────
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)s | %(message)s",
    datefmt="%H:%M:%S",
)
log = logging.getLogger(__name__)


# ── Constants ─────────────────────────────────────────────────────────────────

# Incident keys, times, precinct/location descriptions, age groups and
# coordinates are not used by the report
SOURCE_COLUMNS = [
    "OCCUR_DATE", "BORO", "STATISTICAL_MURDER_FLAG",
    "VIC_SEX", "VIC_RACE", "PERP_SEX", "PERP_RACE",
]

RENAMES = {
    "OCCUR_DATE": "Date",
    "BORO": "Borough",
    "STATISTICAL_MURDER_FLAG": "Murder",
    "VIC_SEX": "VicSex",
    "VIC_RACE": "VicRace",
    "PERP_SEX": "PerpSex",
    "PERP_RACE": "PerpRace",
}

TIDY_COLUMNS = ["Date", "Borough", "Murder", "VicSex", "PerpSex", "VicRace", "PerpRace"]

UNKNOWN_COLUMNS = ["Borough", "VicRace", "PerpRace"]
SEX_COLUMNS     = ["VicSex", "PerpSex"]

# Canonical spellings map to themselves so a second pass changes nothing
SEX_MAP = {
    "M": "Male", "F": "Female",
    "Male": "Male", "Female": "Female",
}

DATE_FORMAT = "%m/%d/%Y"

BOROUGHS = {"BRONX", "BROOKLYN", "MANHATTAN", "QUEENS", "STATEN ISLAND", "Unknown"}

RACES = {
    "AMERICAN INDIAN/ALASKAN NATIVE", "ASIAN / PACIFIC ISLANDER",
    "BLACK", "BLACK HISPANIC", "WHITE", "WHITE HISPANIC", "Unknown",
}

PIVOT_YEAR = 2020


# ── Cleaning ──────────────────────────────────────────────────────────────────

def _report_vocabulary(df: pd.DataFrame, column: str, vocabulary: set, audit: AuditTrail):
    extra = unexpected_values(df, column, vocabulary)
    if len(extra):
        log.warning(f"{column}: {int(extra.sum()):,} rows outside the known vocabulary "
                    f"{dict(extra.head(5))}")
    if audit is not None:
        audit.record(f"Vocabulary: {column}", "Values outside the known vocabulary (kept)",
                     len(df), len(df), int(extra.sum()))


def clean_incidents(raw: pd.DataFrame, audit: AuditTrail = None) -> pd.DataFrame:
    """Raw incident log → Date, Borough, Murder, VicSex, PerpSex, VicRace, PerpRace."""
    df = select_columns(raw, SOURCE_COLUMNS, audit)
    df = rename_columns(df, RENAMES, audit)
    df = canonicalize_unknowns(df, UNKNOWN_COLUMNS, audit)
    df = canonicalize_sex(df, SEX_COLUMNS, SEX_MAP, audit)
    df = parse_dates(df, "Date", DATE_FORMAT, audit)
    df = parse_flag(df, "Murder", audit)

    _report_vocabulary(df, "Borough", BOROUGHS, audit)
    for col in ("VicRace", "PerpRace"):
        _report_vocabulary(df, col, RACES, audit)

    return df[TIDY_COLUMNS].reset_index(drop=True)


# ── Analysis ──────────────────────────────────────────────────────────────────

def incidents_by_year(df: pd.DataFrame, by: str = None) -> pd.DataFrame:
    """
    Incident and murder counts per calendar year, optionally split by a
    categorical column (e.g. "VicRace", "PerpSex", "Borough").
    """
    keys = ["Year"] if by is None else ["Year", by]
    yearly = (
        df.assign(Year=df["Date"].dt.year)
        .groupby(keys, as_index=False)
        .agg(Incidents=("Murder", "size"), Murders=("Murder", "sum"))
    )
    yearly["Murders"] = yearly["Murders"].astype("int64")
    yearly["MurderRate"] = yearly["Murders"] / yearly["Incidents"]
    return yearly


def inflection_summary(df: pd.DataFrame, by: str, pivot_year: int = PIVOT_YEAR) -> pd.DataFrame:
    """
    Mean yearly incidents per group before `pivot_year` and from `pivot_year` on.

    Years in which a group has no incidents count as zero, so every group is
    averaged over the same set of years.
    """
    yearly = incidents_by_year(df, by).pivot(index="Year", columns=by, values="Incidents").fillna(0)
    before = yearly[yearly.index < pivot_year]
    after = yearly[yearly.index >= pivot_year]

    summary = pd.DataFrame({
        "MeanBefore": before.mean() if len(before) else float("nan"),
        "MeanSince": after.mean() if len(after) else float("nan"),
    }, index=yearly.columns)
    summary["Ratio"] = summary["MeanSince"] / summary["MeanBefore"]
    summary.index.name = by
    return summary.reset_index()


# ── Pipeline Orchestrator ─────────────────────────────────────────────────────

def run_pipeline(source: str = NYPD_SHOOTING_URL) -> pd.DataFrame:
    """
    End-to-end run: fetch the incident log and return the tidy incident table.

    Every column is read as text so the murder flag and dates reach the
    normalizer exactly as published.
    """
    log.info("=" * 60)
    log.info("NYPD SHOOTING INCIDENTS — PIPELINE START")
    log.info("=" * 60)

    raw = fetch_csv(source, dtype=str)
    audit = AuditTrail("NYPD shootings", total_rows=len(raw))

    df = clean_incidents(raw, audit)

    log.info(f"Final shape: {df.shape[0]:,} rows × {df.shape[1]} columns")
    audit.summary()
    return df


# ── Entry Point ───────────────────────────────────────────────────────────────

if __name__ == "__main__":
    incidents = run_pipeline()
    print(incidents_by_year(incidents).to_string(index=False))
    for column in ("VicRace", "VicSex", "PerpSex"):
        print(inflection_summary(incidents, column).to_string(index=False))
