import pandas as pd
import pytest

from data_cleaning import canonicalize_sex, canonicalize_unknowns
from data_collection import fetch_csv
from pipeline_errors import ParseError, SchemaError
from shooting_pipeline import (
    SEX_MAP,
    TIDY_COLUMNS,
    clean_incidents,
    incidents_by_year,
    inflection_summary,
    run_pipeline,
)


@pytest.fixture
def incidents(raw_shootings):
    return clean_incidents(raw_shootings)


def test_clean_keeps_one_row_per_incident(raw_shootings, incidents):
    assert list(incidents.columns) == TIDY_COLUMNS
    assert len(incidents) == len(raw_shootings)
    assert incidents["Date"].tolist() == list(pd.to_datetime(
        ["2019-01-05", "2019-07-14", "2020-03-02", "2020-11-30", "2021-06-18"]
    ))


def test_sex_columns_are_closed(incidents):
    for col in ("VicSex", "PerpSex"):
        assert set(incidents[col]) <= {"Male", "Female", "Unknown"}
    assert incidents["PerpSex"].tolist() == ["Male", "Unknown", "Unknown", "Unknown", "Female"]


def test_unknown_sentinels_are_gone(incidents):
    for col in ("Borough", "VicRace", "PerpRace"):
        values = incidents[col]
        assert values.notna().all()
        assert not (values == "").any()
        lowered = values.str.lower()
        assert (values[lowered.isin(["unknown", "(null)"])] == "Unknown").all()

    assert incidents["Borough"].tolist()[3] == "Unknown"
    assert incidents["PerpRace"].tolist() == ["BLACK", "Unknown", "Unknown", "Unknown", "Unknown"]


def test_real_values_keep_their_casing(incidents):
    assert incidents["VicRace"].tolist()[-1] == "Black"


def test_normalization_is_idempotent(incidents):
    again = canonicalize_unknowns(incidents, ["Borough", "VicRace", "PerpRace"])
    again = canonicalize_sex(again, ["VicSex", "PerpSex"], SEX_MAP)

    pd.testing.assert_frame_equal(again, incidents)


def test_murder_flag_is_case_sensitive(incidents):
    assert incidents["Murder"].tolist() == [True, False, False, True, False]


def test_out_of_vocabulary_race_is_reported(raw_shootings, caplog):
    clean_incidents(raw_shootings)
    assert "VicRace: 1 rows outside the known vocabulary" in caplog.text


def test_missing_source_column_is_schema_drift(raw_shootings):
    with pytest.raises(SchemaError) as excinfo:
        clean_incidents(raw_shootings.drop(columns=["BORO"]))
    assert excinfo.value.key == ["BORO"]


def test_malformed_date_aborts(raw_shootings):
    raw = raw_shootings.copy()
    raw.loc[2, "OCCUR_DATE"] = "2020-03-02"

    with pytest.raises(ParseError, match="OCCUR_DATE|Date"):
        clean_incidents(raw)


def test_yearly_counts(incidents):
    yearly = incidents_by_year(incidents)

    assert yearly["Year"].tolist() == [2019, 2020, 2021]
    assert yearly["Incidents"].tolist() == [2, 2, 1]
    assert yearly["Murders"].tolist() == [1, 1, 0]
    assert yearly["MurderRate"].tolist() == [0.5, 0.5, 0.0]


def test_yearly_counts_by_group(incidents):
    yearly = incidents_by_year(incidents, by="Borough")
    in_2020 = yearly[yearly["Year"] == 2020].set_index("Borough")["Incidents"]

    assert in_2020.to_dict() == {"QUEENS": 1, "Unknown": 1}


def test_inflection_summary_around_2020(incidents):
    summary = inflection_summary(incidents, "VicSex").set_index("VicSex")

    assert summary.loc["Female", "MeanBefore"] == 1.0
    assert summary.loc["Female", "MeanSince"] == 0.5
    assert summary.loc["Male", "Ratio"] == 0.5
    assert summary.loc["Unknown", "MeanBefore"] == 0.0


def test_run_pipeline_from_local_file(tmp_path, raw_shootings, capsys):
    path = tmp_path / "shootings.csv"
    raw_shootings.to_csv(path, index=False)

    df = run_pipeline(str(path))

    assert list(df.columns) == TIDY_COLUMNS
    assert df["Murder"].tolist() == [True, False, False, True, False]
    assert df["Borough"].tolist() == ["BRONX", "BROOKLYN", "QUEENS", "Unknown", "MANHATTAN"]
    assert "NYPD SHOOTINGS AUDIT SUMMARY" in capsys.readouterr().out


def test_flags_read_without_text_dtype(tmp_path, raw_shootings):
    raw = raw_shootings.copy()
    raw["STATISTICAL_MURDER_FLAG"] = ["true", "false", "false", "true", None]
    path = tmp_path / "shootings.csv"
    raw.to_csv(path, index=False)

    df = clean_incidents(fetch_csv(str(path)))

    assert df["Murder"].tolist() == [True, False, False, True, False]


def test_inflection_summary_of_empty_table(incidents):
    summary = inflection_summary(incidents.iloc[0:0], "VicSex")

    assert summary.empty
    assert "MeanBefore" in summary.columns


def test_inflection_summary_without_years_since_pivot(incidents):
    before_only = incidents[incidents["Date"].dt.year < 2020]

    summary = inflection_summary(before_only, "VicSex")

    assert sorted(summary["VicSex"]) == ["Female", "Male"]
    assert summary["MeanBefore"].tolist() == [1.0, 1.0]
    assert summary["MeanSince"].isna().all()
