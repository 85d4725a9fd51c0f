"""
data_cleaning.py
Generic tidy-data stages shared by the COVID-19 and NYPD shooting pipelines.

Design principles:
- Every transformation is logged with before/after counts
- No silent data loss: dropped rows, rewritten values and suspicious inputs are recorded
- Functions are pure (input → output), the caller's table is never mutated
- Rules (allow-lists, renames, value maps, aggregators) are passed in, not inlined
"""

import logging
import re

import numpy as np
import pandas as pd

from pipeline_errors import IntegrityError, ParseError, SchemaError

log = logging.getLogger(__name__)


# ── Constants ─────────────────────────────────────────────────────────────────

UNKNOWN = "Unknown"

# Compared case-insensitively; empty strings and nulls are handled separately
UNKNOWN_TOKENS = {"unknown", "(null)"}

AGGREGATORS = {"sum", "max"}

# Wide-table date headers: "1/22/20" as served, "X1.22.20" after R-style name mangling
DATE_HEADER = re.compile(r"^\D*(\d{1,2})[./](\d{1,2})[./](\d{2})$")


# ── Audit Trail ───────────────────────────────────────────────────────────────

class AuditTrail:
    """Tracks every pipeline step with before/after row counts and change stats."""

    def __init__(self, name: str, total_rows: int):
        self.name = name
        self.total_rows = total_rows
        self.steps: list[dict] = []

    def record(self, step: str, description: str, rows_before: int, rows_after: int,
               changed: int = 0, detail: str = ""):
        changed = int(changed)
        pct = changed / rows_before * 100 if rows_before else 0.0
        self.steps.append({
            "step": step,
            "description": description,
            "rows_before": int(rows_before),
            "rows_after": int(rows_after),
            "values_changed": changed,
            "pct_changed": round(pct, 2),
            "detail": detail,
        })
        log.info(f"[{step}] {description} → {rows_before:,} → {rows_after:,} rows, "
                 f"{changed:,} values changed ({pct:.1f}%) {detail}")

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame(self.steps)

    def summary(self):
        print("\n" + "=" * 78)
        print(f"{self.name.upper()} AUDIT SUMMARY ({self.total_rows:,} raw rows)")
        print("=" * 78)
        print(f"{'Step':<22} {'Before':>10} {'After':>10} {'Changed':>10}  Description")
        print("-" * 78)
        for s in self.steps:
            print(f"{s['step']:<22} {s['rows_before']:>10,} {s['rows_after']:>10,} "
                  f"{s['values_changed']:>10,}  {s['description']}")
        print("=" * 78)


def _record(audit, *args, **kwargs):
    if audit is not None:
        audit.record(*args, **kwargs)


def _require(df: pd.DataFrame, columns, stage: str):
    missing = [c for c in columns if c not in df.columns]
    if missing:
        raise SchemaError(f"Table is missing expected columns: {missing}", stage=stage, key=missing)


# ── Column Projector ──────────────────────────────────────────────────────────

def date_columns(df: pd.DataFrame) -> list:
    """Columns of a wide table whose header is a month/day/2-digit-year date."""
    return [c for c in df.columns if DATE_HEADER.match(str(c))]


def select_columns(df: pd.DataFrame, columns: list, audit: AuditTrail = None) -> pd.DataFrame:
    """
    Keep exactly `columns`, in that order. Row order and count are untouched.
    A requested column that the source no longer has is schema drift and raises.
    """
    _require(df, columns, "project")
    out = df.loc[:, list(columns)].copy()
    _record(audit, "Projection", f"Kept {len(out.columns)} of {len(df.columns)} columns",
            len(df), len(out), detail=f"({len(df.columns) - len(out.columns)} dropped)")
    return out


# ── Field Normalizer ──────────────────────────────────────────────────────────

def rename_columns(df: pd.DataFrame, mapping: dict, audit: AuditTrail = None) -> pd.DataFrame:
    """Apply a fixed source → canonical name mapping; unmapped columns pass through."""
    applied = {src: dst for src, dst in mapping.items() if src in df.columns}
    out = df.rename(columns=applied)
    _record(audit, "Rename", f"Renamed {len(applied)} columns", len(df), len(out),
            detail=f"({', '.join(f'{s}→{d}' for s, d in applied.items())})")
    return out


def canonicalize_unknowns(df: pd.DataFrame, columns: list, audit: AuditTrail = None) -> pd.DataFrame:
    """
    Collapse empty strings, nulls and any casing of "unknown" / "(null)" into the
    literal "Unknown". Every other value is left as it is, casing included.
    """
    _require(df, columns, "normalize")
    out = df.copy()
    for col in columns:
        values = out[col]
        text = values.fillna("").astype(str)
        is_unknown = (text == "") | text.str.lower().isin(UNKNOWN_TOKENS)
        changed = (is_unknown & (text != UNKNOWN)).sum()
        out[col] = values.where(~is_unknown, UNKNOWN)
        _record(audit, f"Unknowns: {col}", "Empty/null/unknown sentinels → 'Unknown'",
                len(df), len(out), changed)
    return out


def canonicalize_sex(df: pd.DataFrame, columns: list, mapping: dict, audit: AuditTrail = None) -> pd.DataFrame:
    """Map sex codes through `mapping`; anything unmapped (nulls included) becomes "Unknown"."""
    _require(df, columns, "normalize")
    out = df.copy()
    for col in columns:
        mapped = out[col].map(mapping).fillna(UNKNOWN)
        changed = (mapped != out[col]).sum()
        out[col] = mapped
        _record(audit, f"Sex codes: {col}", "Codes mapped to Male/Female/Unknown",
                len(df), len(out), changed)
    return out


def parse_dates(df: pd.DataFrame, column: str, fmt: str = "%m/%d/%Y",
                audit: AuditTrail = None) -> pd.DataFrame:
    """
    Cast a textual date column to datetime64. Well-formed sources never fail here,
    so a single unparseable or missing value aborts the run.
    """
    _require(df, [column], "normalize")
    parsed = pd.to_datetime(df[column], format=fmt, errors="coerce")
    bad = parsed.isna()
    if bad.any():
        offenders = df.loc[bad, column]
        raise ParseError(
            f"{bad.sum():,} values in {column!r} are not {fmt} dates, e.g. {offenders.head(5).tolist()}",
            stage="normalize", key=offenders.index[:5].tolist(),
        )
    out = df.copy()
    out[column] = parsed
    _record(audit, f"Date parse: {column}", f"Parsed {fmt} strings to dates", len(df), len(out), len(out))
    return out


def parse_flag(df: pd.DataFrame, column: str, audit: AuditTrail = None) -> pd.DataFrame:
    """
    Cast a "true"/"false" column to bool. Only the exact string "true" (or an
    already-parsed True, as pandas produces when the file is not read as text)
    is True; everything else, nulls included, is False.
    """
    _require(df, [column], "normalize")
    out = df.copy()
    raw = df[column]
    if pd.api.types.is_bool_dtype(raw):
        _record(audit, f"Flag parse: {column}", "Already bool, unchanged", len(df), len(out))
        return out

    unexpected = (~raw.isin(["true", "false", True, False])).sum()
    if unexpected:
        log.warning(f"{unexpected:,} values in {column!r} are neither 'true' nor 'false' — read as False")
    out[column] = raw.eq("true") | raw.eq(True)
    _record(audit, f"Flag parse: {column}", "'true'/'false' strings → bool", len(df), len(out),
            unexpected, f"({unexpected:,} unexpected spellings read as False)")
    return out


def unexpected_values(df: pd.DataFrame, column: str, vocabulary) -> pd.Series:
    """Counts of the values in `column` that fall outside `vocabulary`."""
    counts = df[column].value_counts(dropna=False)
    return counts[~counts.index.isin(list(vocabulary))]


# ── Reshaper ──────────────────────────────────────────────────────────────────

def parse_date_header(name) -> pd.Timestamp:
    """Strip any non-digit prefix from a wide-table header and parse it as m/d/yy."""
    match = DATE_HEADER.match(str(name))
    if match is None:
        raise ParseError(f"Column header {name!r} is not a month/day/year date", stage="reshape", key=name)
    month, day, year = (int(g) for g in match.groups())
    try:
        return pd.Timestamp(year=2000 + year, month=month, day=day)
    except ValueError as exc:
        raise ParseError(f"Column header {name!r} is not a valid date: {exc}", stage="reshape", key=name) from exc


def wide_to_long(df: pd.DataFrame, id_columns: list, value_name: str = "Value",
                 date_name: str = "Date", audit: AuditTrail = None) -> pd.DataFrame:
    """
    Pivot one-column-per-date into one-row-per-entity-per-date.

    Every column outside `id_columns` is a date column. The result has exactly
    len(df) × (number of date columns) rows and the identity columns plus
    `date_name` and `value_name`.
    """
    _require(df, id_columns, "reshape")
    value_columns = [c for c in df.columns if c not in id_columns]

    # Parse every header before melting so a bad one fails fast
    dates = {c: parse_date_header(c) for c in value_columns}

    long = df.melt(id_vars=list(id_columns), value_vars=value_columns,
                   var_name=date_name, value_name=value_name)
    long[date_name] = pd.to_datetime(long[date_name].map(dates))

    span = ""
    if value_columns:
        span = f"({dates[value_columns[0]]:%Y-%m-%d} … {dates[value_columns[-1]]:%Y-%m-%d})"
    _record(audit, "Reshape", f"Wide → long over {len(value_columns)} date columns",
            len(df), len(long), detail=span)
    return long


# ── Aggregator ────────────────────────────────────────────────────────────────

def aggregate_by_key(df: pd.DataFrame, keys: list, measures: dict, audit: AuditTrail = None) -> pd.DataFrame:
    """
    Collapse to one row per distinct key tuple. `measures` fixes the function per
    column: "sum" for additive counts, "max" for values constant within a key.
    Columns that are neither keys nor measures are dropped.
    """
    invalid = {col: fn for col, fn in measures.items() if fn not in AGGREGATORS}
    if invalid:
        raise ValueError(f"Unsupported aggregators {invalid}; expected one of {sorted(AGGREGATORS)}")
    _require(df, list(keys) + list(measures), "aggregate")

    out = df.groupby(list(keys), as_index=False, sort=True, dropna=False).agg(measures)
    _record(audit, "Aggregation", f"Rolled up to one row per {tuple(keys)}", len(df), len(out),
            detail=f"({', '.join(f'{c}:{f}' for c, f in measures.items())})")
    return out


def add_deltas(df: pd.DataFrame, entity: str, date: str, deltas: dict, audit: AuditTrail = None) -> pd.DataFrame:
    """
    Day-over-day change of cumulative columns within each entity.

    delta[0] is the first cumulative value itself; later deltas are plain
    differences between consecutive rows. Missing dates are not interpolated,
    so a gap folds into the next available delta. Negative deltas come from
    upstream revisions and are kept. Rows with a null entity form their own
    group, matching `aggregate_by_key`.
    """
    _require(df, [entity, date] + list(deltas), "aggregate")
    out = df.sort_values([entity, date], kind="mergesort").reset_index(drop=True)
    grouped = out.groupby(entity, sort=False, dropna=False)
    is_first = grouped.cumcount() == 0

    for value_col, delta_col in deltas.items():
        values = out[value_col]
        delta = grouped[value_col].diff().where(~is_first, values)
        if pd.api.types.is_integer_dtype(values):
            delta = delta.astype("int64")
        out[delta_col] = delta

        negative = (delta < 0).sum()
        if negative:
            log.warning(f"{negative:,} negative {delta_col} values (upstream revisions) kept as-is")
        _record(audit, f"Delta: {delta_col}", f"{value_col}[t] − {value_col}[t−1] per {entity}",
                len(df), len(out), negative, f"({negative:,} negative)")
    return out


# ── Combiner ──────────────────────────────────────────────────────────────────

def find_key_mismatches(left: pd.DataFrame, right: pd.DataFrame, keys: list) -> pd.DataFrame:
    """
    Compare the key columns of two tables position by position, in each table's
    current row order. Null keys on both sides compare equal. Positions present
    on one side only count as mismatches.
    Returns one row per mismatched position; empty when the sequences agree.
    """
    n = max(len(left), len(right))
    left_keys = left[list(keys)].reset_index(drop=True).reindex(range(n))
    right_keys = right[list(keys)].reset_index(drop=True).reindex(range(n))
    same = (left_keys == right_keys) | (left_keys.isna() & right_keys.isna())
    unpaired = pd.Series(range(n)) >= min(len(left), len(right))
    differs = ~same.all(axis=1) | unpaired

    mismatches = pd.concat([
        left_keys[differs].add_suffix("_left"),
        right_keys[differs].add_suffix("_right"),
    ], axis=1)
    mismatches.insert(0, "Position", mismatches.index)
    return mismatches.reset_index(drop=True)


def combine_aligned(left: pd.DataFrame, right: pd.DataFrame, keys: list, audit: AuditTrail = None) -> pd.DataFrame:
    """
    Column-wise concatenation of two tables that share the same key set.

    Both sides are sorted by `keys` and the key sequences must agree row for row
    before anything is concatenated; a single mismatch raises IntegrityError.
    """
    keys = list(keys)
    _require(left, keys, "combine")
    _require(right, keys, "combine")
    overlap = sorted((set(left.columns) & set(right.columns)) - set(keys))
    if overlap:
        raise SchemaError(f"Both tables carry non-key columns {overlap}", stage="combine", key=overlap)

    left_sorted = left.sort_values(keys, kind="mergesort").reset_index(drop=True)
    right_sorted = right.sort_values(keys, kind="mergesort").reset_index(drop=True)

    mismatches = find_key_mismatches(left_sorted, right_sorted, keys)
    if not mismatches.empty:
        first = mismatches.iloc[0]
        left_key = tuple(first[f"{k}_left"] for k in keys)
        right_key = tuple(first[f"{k}_right"] for k in keys)
        raise IntegrityError(
            f"{len(mismatches):,} of {max(len(left_sorted), len(right_sorted)):,} positions have "
            f"mismatched keys ({len(left_sorted):,} vs {len(right_sorted):,} rows); "
            f"first at position {first['Position']}: {left_key} vs {right_key}",
            stage="combine", key=left_key,
        )

    combined = pd.concat([left_sorted, right_sorted.drop(columns=keys)], axis=1)
    _record(audit, "Combine", f"Key-validated positional merge on {tuple(keys)}",
            len(left_sorted), len(combined), detail="(0 key mismatches)")
    return combined


# ── Finishing Filter ──────────────────────────────────────────────────────────

def drop_inactive(df: pd.DataFrame, metrics: list, sort_by: list, audit: AuditTrail = None) -> pd.DataFrame:
    """Drop rows where every metric is zero, then sort ascending by `sort_by`."""
    _require(df, list(metrics) + list(sort_by), "finish")
    active = np.any(df[list(metrics)].to_numpy() != 0, axis=1)
    out = (
        df[active]
        .sort_values(list(sort_by), kind="mergesort")
        .reset_index(drop=True)
    )
    removed = len(df) - len(out)
    _record(audit, "Finishing filter", "All-zero rows dropped, sorted by " + ", ".join(sort_by),
            len(df), len(out), removed)
    return out
