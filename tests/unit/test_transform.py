"""Unit tests for the flight cleaning stages."""

from __future__ import annotations

from datetime import date, time

import numpy as np
import pandas as pd
import pytest

from flight_delay_dw.config import ErrorPolicy, PipelineConfig, SchemaConfig
from flight_delay_dw.errors import (
    BatchRejectedError,
    DataIntegrityError,
    DuplicateFieldError,
    InvalidDateError,
    InvalidTimeError,
    SchemaMismatch,
)
from flight_delay_dw.transform import (
    build_date_key,
    build_dates_and_times,
    clean_flights,
    coerce_status_flags,
    frame_from_source,
    normalize_nulls,
    parse_hhmm,
    prune_columns,
)

DELAY_FIELDS = list(SchemaConfig().delay_cause_fields)


def _flights(**overrides) -> pd.DataFrame:
    """Two well-formed flight rows; keyword arguments replace whole columns."""
    data = {
        "flight_id": [101, 102],
        "year": [2008, 2008],
        "month": [1, 4],
        "day_of_month": [3, 30],
        "day_of_week": [4, 3],
        "dep_time": [930, 2400],
        "crs_dep_time": [925, 2355],
        "arr_time": [1105, np.nan],
        "crs_arr_time": [1100, 130],
        "carrier_code": ["WN", "AA"],
        "origin": ["LAX", "JFK"],
        "dest": ["SFO", "ORD"],
        "cancelled": [0, 1],
        "diverted": [0, 0],
        "carrier_delay": [np.nan, 5.0],
        "weather_delay": [np.nan, 0.0],
        "nas_delay": [3.0, np.nan],
        "security_delay": [np.nan, np.nan],
        "late_aircraft_delay": [np.nan, 12.0],
    }
    data.update(overrides)
    return pd.DataFrame(data)


# ====================================================================================================================================
# NullNormalizer


def test_normalize_nulls_fills_missing_delay_causes_with_zero() -> None:
    """Absent delay values become 0; present values are kept."""
    flights = _flights()

    cleaned = normalize_nulls(flights, DELAY_FIELDS)

    assert cleaned[DELAY_FIELDS].notna().all().all()
    assert cleaned["carrier_delay"].tolist() == [0, 5]
    assert cleaned["nas_delay"].tolist() == [3, 0]
    assert cleaned["late_aircraft_delay"].tolist() == [0, 12]


def test_normalize_nulls_leaves_other_fields_and_input_untouched() -> None:
    """Fields outside the set pass through and the input frame is not modified."""
    flights = _flights()

    cleaned = normalize_nulls(flights, DELAY_FIELDS)

    assert pd.isna(cleaned.at[1, "arr_time"])
    assert flights["carrier_delay"].isna().sum() == 1


def test_normalize_nulls_raises_for_missing_field() -> None:
    """A configured field absent from the frame is a schema mismatch naming the field."""
    flights = _flights().drop(columns=["weather_delay"])

    with pytest.raises(SchemaMismatch) as excinfo:
        normalize_nulls(flights, DELAY_FIELDS)

    assert excinfo.value.missing == ["weather_delay"]
    assert "weather_delay" in str(excinfo.value)


def test_normalize_nulls_rejects_fractional_delay() -> None:
    """Delays are whole minutes, 5.7 is not truncated to 5."""
    flights = _flights(carrier_delay=[np.nan, 5.7])

    with pytest.raises(DataIntegrityError) as excinfo:
        normalize_nulls(flights, DELAY_FIELDS)

    assert excinfo.value.field == "carrier_delay"
    assert excinfo.value.flight_id == 102


def test_normalize_nulls_collect_reports_negative_and_fractional_delays() -> None:
    flights = _flights(weather_delay=[-3.0, 0.0], nas_delay=[3.0, 0.5])

    with pytest.raises(BatchRejectedError) as excinfo:
        normalize_nulls(flights, DELAY_FIELDS, policy=ErrorPolicy.COLLECT)

    assert {(e.offset, e.field) for e in excinfo.value.errors} == {(0, "weather_delay"), (1, "nas_delay")}


# ====================================================================================================================================
# TypeCoercer


def test_coerce_status_flags_maps_zero_and_one_to_booleans() -> None:
    flights = _flights(diverted=[1.0, 0.0])

    coerced = coerce_status_flags(flights)

    assert coerced["cancelled"].tolist() == [False, True]
    assert coerced["diverted"].tolist() == [True, False]
    assert coerced["cancelled"].dtype == bool


def test_coerce_status_flags_rejects_value_two() -> None:
    """Codes outside 0/1 are data integrity errors carrying the row identity."""
    flights = _flights(cancelled=[0, 2])

    with pytest.raises(DataIntegrityError) as excinfo:
        coerce_status_flags(flights)

    assert excinfo.value.field == "cancelled"
    assert excinfo.value.flight_id == 102
    assert excinfo.value.offset == 1


def test_coerce_status_flags_rejects_null() -> None:
    flights = _flights(diverted=[np.nan, 0])

    with pytest.raises(DataIntegrityError):
        coerce_status_flags(flights)


def test_coerce_status_flags_collect_reports_every_offending_row() -> None:
    """The collect policy finishes the stage and then rejects the batch with all errors."""
    flights = _flights(cancelled=[3, 2], diverted=[0, -1])

    with pytest.raises(BatchRejectedError) as excinfo:
        coerce_status_flags(flights, policy=ErrorPolicy.COLLECT)

    errors = excinfo.value.errors
    assert len(errors) == 3
    assert {(e.offset, e.field) for e in errors} == {(0, "cancelled"), (1, "cancelled"), (1, "diverted")}


def test_coerce_status_flags_quarantine_drops_rows(tmp_path) -> None:
    """The quarantine policy logs offending rows to CSV and keeps the others."""
    quarantine_file = tmp_path / "rejected.csv"
    flights = _flights(cancelled=[0, 7])

    coerced = coerce_status_flags(flights, policy=ErrorPolicy.QUARANTINE, quarantine_file=quarantine_file)

    assert coerced["flight_id"].tolist() == [101]
    rejected = pd.read_csv(quarantine_file)
    assert rejected["flight_id"].tolist() == [102]
    assert rejected["field"].tolist() == ["cancelled"]
    assert rejected["error"].tolist() == ["DataIntegrityError"]


# ====================================================================================================================================
# DateTimeBuilder


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        (930, time(9, 30)),
        (0, time(0, 0)),
        (2400, time(0, 0)),
        (5, time(0, 5)),
        (1200.0, time(12, 0)),
        ("2359", time(23, 59)),
    ],
)
def test_parse_hhmm_valid_values(value, expected) -> None:
    assert parse_hhmm(value) == expected


@pytest.mark.parametrize("value", [2500, 1260, -5, 930.5, "noon"])
def test_parse_hhmm_rejects_invalid_values(value) -> None:
    with pytest.raises(InvalidTimeError):
        parse_hhmm(value)


def test_parse_hhmm_keeps_missing_values_missing() -> None:
    assert parse_hhmm(None) is None
    assert parse_hhmm(np.nan) is None


def test_build_date_key_matches_date_for_every_day_of_a_leap_year() -> None:
    """date_key is the YYYYMMDD rendering of date, day after day."""
    for day in pd.date_range("2008-01-01", "2008-12-31").date:
        key = build_date_key(day)
        assert key == int(f"{day.year:04d}{day.month:02d}{day.day:02d}")
        assert date(key // 10000, key // 100 % 100, key % 100) == day


def test_build_dates_and_times_derives_date_key_and_times() -> None:
    built = build_dates_and_times(_flights())

    assert built["date"].tolist() == [date(2008, 1, 3), date(2008, 4, 30)]
    assert built["date_key"].tolist() == [20080103, 20080430]
    assert built["dep_time"].tolist() == [time(9, 30), time(0, 0)]
    assert built["crs_arr_time"].tolist() == [time(11, 0), time(1, 30)]
    assert built.at[1, "arr_time"] is None


def test_build_dates_and_times_date_key_is_consistent_with_date() -> None:
    built = build_dates_and_times(_flights())

    for day, key in zip(built["date"], built["date_key"]):
        assert key == int(day.strftime("%Y%m%d"))


def test_build_dates_and_times_rejects_april_31st() -> None:
    flights = _flights(day_of_month=[3, 31])

    with pytest.raises(InvalidDateError) as excinfo:
        build_dates_and_times(flights)

    assert excinfo.value.flight_id == 102


def test_build_dates_and_times_rejects_aliased_components() -> None:
    """Month 0 with day 131 must not be read as January 31st."""
    flights = _flights(month=[0, 4], day_of_month=[131, 30])

    with pytest.raises(InvalidDateError):
        build_dates_and_times(flights)


def test_build_dates_and_times_rejects_hour_25() -> None:
    flights = _flights(crs_dep_time=[2500, 2355])

    with pytest.raises(InvalidTimeError) as excinfo:
        build_dates_and_times(flights)

    assert excinfo.value.field == "crs_dep_time"
    assert excinfo.value.offset == 0


def test_build_dates_and_times_collect_mixes_date_and_time_errors() -> None:
    flights = _flights(day_of_month=[3, 31], dep_time=[1299, 2400])

    with pytest.raises(BatchRejectedError) as excinfo:
        build_dates_and_times(flights, policy=ErrorPolicy.COLLECT)

    kinds = sorted(type(e).__name__ for e in excinfo.value.errors)
    assert kinds == ["InvalidDateError", "InvalidTimeError"]


def test_build_dates_and_times_raises_schema_mismatch_for_missing_time_field() -> None:
    with pytest.raises(SchemaMismatch):
        build_dates_and_times(_flights().drop(columns=["crs_arr_time"]))


# ====================================================================================================================================
# ColumnPruner


def test_prune_columns_removes_date_components() -> None:
    pruned = prune_columns(_flights())

    assert not {"year", "month", "day_of_month", "day_of_week"} & set(pruned.columns)
    assert "flight_id" in pruned.columns


def test_prune_columns_is_idempotent() -> None:
    once = prune_columns(_flights())
    twice = prune_columns(once)

    pd.testing.assert_frame_equal(once, twice)


# ====================================================================================================================================
# Frame building


def test_frame_from_source_renames_raw_headers_and_reads_missing_markers() -> None:
    rows = [
        {"Year": "2008", "Month": "1", "DayofMonth": "3", "UniqueCarrier": "WN", "CarrierDelay": "NA"},
        {"Year": "2008", "Month": "1", "DayofMonth": "4", "UniqueCarrier": "WN", "CarrierDelay": "12"},
    ]

    flights = frame_from_source(rows)

    assert {"year", "month", "day_of_month", "carrier_code", "carrier_delay"} <= set(flights.columns)
    assert pd.isna(flights.at[0, "carrier_delay"])
    assert flights.at[1, "carrier_delay"] == 12
    assert flights["flight_id"].tolist() == [1, 2]


def test_frame_from_source_rejects_non_numeric_values() -> None:
    rows = [{"flight_id": "7", "Year": "2008", "Cancelled": "yes"}]

    with pytest.raises(DataIntegrityError) as excinfo:
        frame_from_source(rows)

    assert excinfo.value.field == "cancelled"
    assert excinfo.value.flight_id == 7


def test_frame_from_source_rejects_headers_mapping_to_the_same_field() -> None:
    rows = [{"": "1", "Unnamed: 0": "1", "Year": "2008"}]

    with pytest.raises(DuplicateFieldError) as excinfo:
        frame_from_source(rows)

    assert excinfo.value.fields == ["flight_id"]


def test_frame_from_source_rejects_repeated_flight_ids() -> None:
    rows = [
        {"flight_id": "7", "Year": "2008"},
        {"flight_id": "8", "Year": "2008"},
        {"flight_id": "7", "Year": "2008"},
    ]

    with pytest.raises(BatchRejectedError) as excinfo:
        frame_from_source(rows, policy=ErrorPolicy.COLLECT)

    assert [(e.offset, e.flight_id) for e in excinfo.value.errors] == [(0, 7), (2, 7)]


# ====================================================================================================================================
# Whole cleaning run


def test_clean_flights_collect_reports_rows_of_every_stage() -> None:
    """A row rejected by an early stage does not hide the rows a later stage rejects."""
    flights = _flights(
        flight_id=[101, 102, 103],
        year=[2008, 2008, 2008],
        month=[1, 4, 5],
        day_of_month=[3, 31, 2],
        day_of_week=[4, 4, 5],
        dep_time=[930, 1000, 1010],
        crs_dep_time=[925, 955, 1000],
        arr_time=[1105, 1130, 1140],
        crs_arr_time=[1100, 1125, 1135],
        carrier_code=["WN", "AA", "UA"],
        origin=["LAX", "JFK", "ORD"],
        dest=["SFO", "ORD", "JFK"],
        cancelled=[0, 0, 2],
        diverted=[0, 0, 0],
        carrier_delay=[np.nan, np.nan, np.nan],
        weather_delay=[-1.0, np.nan, np.nan],
        nas_delay=[np.nan, np.nan, np.nan],
        security_delay=[np.nan, np.nan, np.nan],
        late_aircraft_delay=[np.nan, np.nan, np.nan],
    )

    with pytest.raises(BatchRejectedError) as excinfo:
        clean_flights(flights, PipelineConfig(error_policy=ErrorPolicy.COLLECT))

    stages = {e.flight_id: e.stage for e in excinfo.value.errors}
    assert stages == {101: "NullNormalizer", 102: "DateTimeBuilder", 103: "TypeCoercer"}


def test_clean_flights_quarantine_drops_rows_of_every_stage(tmp_path) -> None:
    quarantine_file = tmp_path / "rejected.csv"
    config = PipelineConfig(error_policy=ErrorPolicy.QUARANTINE, quarantine_file=quarantine_file)
    flights = _flights(cancelled=[0, 5], dep_time=[2460, 2400])

    cleaned = clean_flights(flights, config)

    assert cleaned.empty
    assert sorted(pd.read_csv(quarantine_file)["stage"]) == ["DateTimeBuilder", "TypeCoercer"]
