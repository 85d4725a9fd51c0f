"""
Data Collection
Fetches the raw source CSVs into DataFrames. No caching, no retry.
"""

import logging

import pandas as pd

from pipeline_errors import FetchError

log = logging.getLogger(__name__)

# ── Sources ───────────────────────────────────────────────────────────────────

JHU_BASE_URL = (
    "https://raw.githubusercontent.com/CSSEGISandData/COVID-19/master/"
    "csse_covid_19_data/csse_covid_19_time_series/"
)
COVID_CASES_URL  = JHU_BASE_URL + "time_series_covid19_confirmed_US.csv"
COVID_DEATHS_URL = JHU_BASE_URL + "time_series_covid19_deaths_US.csv"

NYPD_SHOOTING_URL = "https://data.cityofnewyork.us/api/views/833y-pep8/rows.csv?accessType=DOWNLOAD"


def fetch_csv(source: str, **read_csv_kwargs) -> pd.DataFrame:
    """
    Read one delimited file with a header row, from a URL or a local path.
    All-or-nothing: any transport or parse failure raises FetchError.
    """
    log.info(f"Fetching: {source}")
    try:
        df = pd.read_csv(source, **read_csv_kwargs)
    except (OSError, UnicodeDecodeError) as exc:
        raise FetchError(f"Could not read source: {exc}", stage="fetch", key=source) from exc
    except (pd.errors.EmptyDataError, pd.errors.ParserError) as exc:
        raise FetchError(f"Payload is not delimited text with a header: {exc}",
                         stage="fetch", key=source) from exc

    if len(df.columns) == 0:
        raise FetchError("Payload has no columns", stage="fetch", key=source)

    log.info(f"Fetched {len(df):,} rows × {len(df.columns)} columns")
    return df


def fetch_csvs(sources: list[str], **read_csv_kwargs) -> list[pd.DataFrame]:
    """Fetch several files in order; the first failure aborts the whole batch."""
    return [fetch_csv(source, **read_csv_kwargs) for source in sources]


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s | %(levelname)s | %(message)s",
                        datefmt="%H:%M:%S")
    for url in (COVID_CASES_URL, COVID_DEATHS_URL, NYPD_SHOOTING_URL):
        df = fetch_csv(url)
        print(f"Columns: {list(df.columns)[:15]}")
        print(df.head())
