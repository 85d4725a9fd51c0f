"""Pytest configuration and shared source-shaped fixtures."""

import sys
from pathlib import Path

import pandas as pd
import pytest


def pytest_sessionstart() -> None:
    """Add src directory to sys.path for test imports."""
    project_root = Path(__file__).resolve().parent.parent
    src_path = project_root / "src"
    if str(src_path) not in sys.path:
        sys.path.insert(0, str(src_path))


@pytest.fixture
def wide_cases():
    """Confirmed-cases time series shaped like the JHU US file (county rows)."""
    return pd.DataFrame({
        "UID": [84001001, 84002020, 84002110],
        "Admin2": ["Autauga", "Anchorage", "Juneau"],
        "Province_State": ["Alabama", "Alaska", "Alaska"],
        "Country_Region": ["US", "US", "US"],
        "Lat": [32.54, 61.15, 58.45],
        "Long_": [-86.64, -149.11, -134.18],
        "Combined_Key": ["Autauga, Alabama, US", "Anchorage, Alaska, US", "Juneau, Alaska, US"],
        "1/22/20": [0, 1, 0],
        "1/23/20": [0, 2, 1],
        "1/24/20": [1, 2, 3],
    })


@pytest.fixture
def wide_deaths():
    """Deaths time series: same shape as the cases file plus a county Population column."""
    return pd.DataFrame({
        "UID": [84001001, 84002020, 84002110],
        "Admin2": ["Autauga", "Anchorage", "Juneau"],
        "Province_State": ["Alabama", "Alaska", "Alaska"],
        "Country_Region": ["US", "US", "US"],
        "Lat": [32.54, 61.15, 58.45],
        "Long_": [-86.64, -149.11, -134.18],
        "Combined_Key": ["Autauga, Alabama, US", "Anchorage, Alaska, US", "Juneau, Alaska, US"],
        "Population": [55869, 288000, 31974],
        "1/22/20": [0, 0, 0],
        "1/23/20": [0, 0, 0],
        "1/24/20": [0, 1, 0],
    })


@pytest.fixture
def raw_shootings():
    """Incident log as read with dtype=str: missing cells are NaN, everything else text."""
    return pd.DataFrame({
        "INCIDENT_KEY": ["1001", "1002", "1003", "1004", "1005"],
        "OCCUR_DATE": ["01/05/2019", "07/14/2019", "03/02/2020", "11/30/2020", "06/18/2021"],
        "OCCUR_TIME": ["23:10:00", "01:45:00", "12:00:00", "03:30:00", "20:05:00"],
        "BORO": ["BRONX", "BROOKLYN", "QUEENS", "", "MANHATTAN"],
        "PRECINCT": ["44", "73", "113", "40", "28"],
        "STATISTICAL_MURDER_FLAG": ["true", "false", "false", "true", "TRUE"],
        "PERP_SEX": ["M", "", None, "U", "F"],
        "PERP_RACE": ["BLACK", "(null)", None, "UNKNOWN", "(NULL)"],
        "VIC_SEX": ["M", "F", "M", "U", "F"],
        "VIC_RACE": ["BLACK", "WHITE HISPANIC", "BLACK", "UNKNOWN", "Black"],
        "Latitude": ["40.83", "40.67", "40.69", "40.81", "40.80"],
    })
