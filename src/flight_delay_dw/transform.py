import logging
from datetime import date, time
from pathlib import Path
from typing import Any, Iterable, Optional

import numpy as np
import pandas as pd

from flight_delay_dw.config import (
    MISSING_MARKERS,
    RAW_COLUMN_NAMES,
    ErrorPolicy,
    PipelineConfig,
    SchemaConfig,
)
from flight_delay_dw.errors import (
    DataIntegrityError,
    DuplicateFieldError,
    InvalidDateError,
    InvalidTimeError,
    SchemaMismatch,
)
from flight_delay_dw.quality import RowIssueCollector, row_identity

# Configure logging for information and errors
logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")

MIDNIGHT_NEXT_DAY = 2400


# ====================================================================================================================================
# Utility functions for date keys and HHMM times
def build_date_key(day: date) -> int:
    """
    Prec: calendar date day
    Post: returns the integer date key YYYYMMDD of day
    """
    return int(day.strftime("%Y%m%d"))


def parse_hhmm(value: Any) -> Optional[time]:
    """
    Prec: value is an HHMM integer (930 means 09:30), possibly stored as float or string, or missing
    Post: returns the time of day with minute granularity, None for missing values.
    2400 maps to 00:00 of the same day: the fact row has no way to represent the rollover.
    """
    if value is None or (not isinstance(value, str) and pd.isna(value)):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise InvalidTimeError(f"HHMM value {value!r} is not a number", value=value) from None
    if not number.is_integer() or number < 0:
        raise InvalidTimeError(f"HHMM value {value!r} is not a non-negative integer", value=value)
    hhmm = int(number)
    if hhmm == MIDNIGHT_NEXT_DAY:
        return time(0, 0)
    text = str(hhmm).zfill(4)
    hour, minute = int(text[:-2]), int(text[-2:])
    if hour > 23 or minute > 59:
        raise InvalidTimeError(f"HHMM value {hhmm} is out of range", value=value)
    return time(hour, minute)


def _require_fields(df: pd.DataFrame, fields: Iterable[str], stage: str) -> None:
    missing = [f for f in fields if f not in df.columns]
    if missing:
        raise SchemaMismatch(missing, stage)


# ====================================================================================================================================
# Building the working frame from a row source


def _canonical_names(columns: Iterable[str]) -> dict[str, str]:
    """Renames from raw BTS headers, refusing sources where two headers end up as the same field."""
    columns = list(columns)
    renames = {c: RAW_COLUMN_NAMES[c] for c in columns if c in RAW_COLUMN_NAMES}
    names = [renames.get(c, c) for c in columns]
    duplicated = {n for n in names if names.count(n) > 1}
    if duplicated:
        raise DuplicateFieldError(duplicated)
    return renames


def frame_from_source(
    flights_source: Iterable[dict],
    schema: SchemaConfig = SchemaConfig(),
    policy: ErrorPolicy = ErrorPolicy.FAIL_FAST,
    quarantine_file: Optional[Path] = None,
    collector: Optional[RowIssueCollector] = None,
) -> pd.DataFrame:
    """
    Prec: flights_source yields one dict per flight leg (CSVSource, SQLSource, PandasSource, ...)
    Post: returns a dataframe indexed by source offset with canonical column names, missing markers
    replaced by NaN and numeric fields converted. Non-numeric values in numeric fields and missing or
    repeated flight ids are row errors.
    """
    flights_df = pd.DataFrame(list(flights_source))  # blocking operation
    if flights_df.empty:
        logging.warning("No flights found in source.")
        return flights_df
    flights_df.rename(columns=_canonical_names(flights_df.columns), inplace=True)
    flights_df = flights_df.replace(list(MISSING_MARKERS), np.nan).reset_index(drop=True)

    collector = collector or RowIssueCollector("FrameBuilder", policy, quarantine_file)
    for col in [f for f in schema.numeric_fields if f in flights_df.columns]:
        converted = pd.to_numeric(flights_df[col], errors="coerce")
        bad = converted.isna() & flights_df[col].notna()
        for offset in flights_df.index[bad]:
            collector.add(
                DataIntegrityError(
                    f"Non-numeric value {flights_df.at[offset, col]!r}",
                    flight_id=row_identity(flights_df, offset, schema.flight_id_field),
                    offset=int(offset),
                    field=col,
                    value=flights_df.at[offset, col],
                ),
                "FrameBuilder",
            )
        flights_df[col] = converted

    if schema.flight_id_field in flights_df.columns:
        ids = flights_df[schema.flight_id_field]
        flagged = flights_df.index.isin(collector.flagged_offsets())
        for offset in flights_df.index[(ids.isna() & ~flagged) | (ids.notna() & ids.duplicated(keep=False))]:
            value = flights_df.at[offset, schema.flight_id_field]
            collector.add(
                DataIntegrityError(
                    "Missing flight id" if pd.isna(value) else f"Flight id {value} is not unique",
                    flight_id=row_identity(flights_df, offset, schema.flight_id_field),
                    offset=int(offset),
                    field=schema.flight_id_field,
                    value=value,
                ),
                "FrameBuilder",
            )
    flights_df = collector.resolve(flights_df)

    if schema.flight_id_field not in flights_df.columns:
        # surrogate ids follow the source order
        flights_df.insert(0, schema.flight_id_field, np.arange(1, len(flights_df) + 1))
        logging.info(f"Assigned {schema.flight_id_field} to {len(flights_df)} flights")
    logging.info(f"Read {len(flights_df)} flights with {len(flights_df.columns)} fields")
    return flights_df


# ====================================================================================================================================
# Cleaning stages


def normalize_nulls(
    flights_df: pd.DataFrame,
    fields: Iterable[str] = SchemaConfig().delay_cause_fields,
    policy: ErrorPolicy = ErrorPolicy.FAIL_FAST,
    quarantine_file: Optional[Path] = None,
    flight_id_field: str = "flight_id",
    collector: Optional[RowIssueCollector] = None,
) -> pd.DataFrame:
    """
    Prec: flights_df contains every field in fields
    Post: returns a copy where missing values of those fields are 0 and the fields are integers.
    Present values must be non-negative whole minutes; anything else is a DataIntegrityError for that row.
    """
    fields = list(fields)
    _require_fields(flights_df, fields, "NullNormalizer")
    out = flights_df.copy()
    collector = collector or RowIssueCollector("NullNormalizer", policy, quarantine_file)
    for col in fields:
        minutes = pd.to_numeric(out[col], errors="coerce")
        valid = out[col].isna() | (minutes.notna() & (minutes >= 0) & (minutes % 1 == 0))
        for offset in out.index[~valid]:
            value = out.at[offset, col]
            collector.add(
                DataIntegrityError(
                    f"Delay must be a non-negative number of minutes, got {value!r}",
                    flight_id=row_identity(out, offset, flight_id_field),
                    offset=int(offset),
                    field=col,
                    value=value,
                ),
                "NullNormalizer",
            )
    out = collector.resolve(out)
    filled = 0
    for col in fields:
        filled += int(out[col].isna().sum())
        out[col] = pd.to_numeric(out[col]).fillna(0).astype("int64")
    logging.info(f"NullNormalizer: filled {filled} missing delay value(s) with 0")
    return out


def coerce_status_flags(
    flights_df: pd.DataFrame,
    fields: Iterable[str] = SchemaConfig().status_flag_fields,
    policy: ErrorPolicy = ErrorPolicy.FAIL_FAST,
    quarantine_file: Optional[Path] = None,
    flight_id_field: str = "flight_id",
    collector: Optional[RowIssueCollector] = None,
) -> pd.DataFrame:
    """
    Prec: flights_df contains every field in fields, coded 0/1
    Post: returns a copy where those fields are booleans (0 -> False, 1 -> True).
    Any other value, null included, is a DataIntegrityError for that row.
    """
    fields = list(fields)
    _require_fields(flights_df, fields, "TypeCoercer")
    out = flights_df.copy()
    collector = collector or RowIssueCollector("TypeCoercer", policy, quarantine_file)
    for col in fields:
        valid = out[col].isin([0, 1]) & out[col].notna()
        for offset in out.index[~valid]:
            value = out.at[offset, col]
            collector.add(
                DataIntegrityError(
                    f"Status flag must be 0 or 1, got {value!r}",
                    flight_id=row_identity(out, offset, flight_id_field),
                    offset=int(offset),
                    field=col,
                    value=value,
                ),
                "TypeCoercer",
            )
    out = collector.resolve(out)
    for col in fields:
        out[col] = (out[col] == 1).astype(bool)
    logging.info(f"TypeCoercer: converted {', '.join(fields)} to booleans")
    return out


def _derive_dates(out: pd.DataFrame, schema: SchemaConfig) -> pd.Series:
    """Calendar dates from the year/month/day fields, NaT where the triple is not a date."""
    y, m, d = schema.year_field, schema.month_field, schema.day_field
    parts = out[[y, m, d]].apply(pd.to_numeric, errors="coerce")
    # range checks first: year*10000 + month*100 + day would alias e.g. month 0 / day 131
    well_formed = (
        parts.notna().all(axis=1)
        & (parts % 1 == 0).all(axis=1)
        & parts[y].between(1, 9999)
        & parts[m].between(1, 12)
        & parts[d].between(1, 31)
    )
    dates = pd.Series(pd.NaT, index=out.index, dtype="datetime64[ns]")
    if well_formed.any():
        triples = parts[well_formed].astype("int64").rename(columns={y: "year", m: "month", d: "day"})
        dates[well_formed] = pd.to_datetime(triples, errors="coerce")
    return dates


def build_dates_and_times(
    flights_df: pd.DataFrame,
    schema: SchemaConfig = SchemaConfig(),
    policy: ErrorPolicy = ErrorPolicy.FAIL_FAST,
    quarantine_file: Optional[Path] = None,
    collector: Optional[RowIssueCollector] = None,
) -> pd.DataFrame:
    """
    Prec: flights_df contains the year/month/day fields and the HHMM time fields of schema
    Post: returns a copy with 'date' (datetime.date) and 'date_key' (int YYYYMMDD) columns added and
    every HHMM field replaced by datetime.time values (None where the source value was missing).
    Invalid triples raise InvalidDateError, invalid HHMM values InvalidTimeError (subject to policy).
    """
    _require_fields(
        flights_df,
        [schema.year_field, schema.month_field, schema.day_field, *schema.time_fields],
        "DateTimeBuilder",
    )
    out = flights_df.copy()
    collector = collector or RowIssueCollector("DateTimeBuilder", policy, quarantine_file)

    dates = _derive_dates(out, schema)
    for offset in out.index[dates.isna()]:
        triple = tuple(out.at[offset, f] for f in (schema.year_field, schema.month_field, schema.day_field))
        collector.add(
            InvalidDateError(
                f"Not a calendar date: year={triple[0]}, month={triple[1]}, day={triple[2]}",
                flight_id=row_identity(out, offset, schema.flight_id_field),
                offset=int(offset),
                field=schema.day_field,
                value=triple,
            ),
            "DateTimeBuilder",
        )

    times = {}
    for col in schema.time_fields:
        parsed = []
        for offset, value in out[col].items():
            try:
                parsed.append(parse_hhmm(value))
            except InvalidTimeError as e:
                parsed.append(None)
                collector.add(
                    InvalidTimeError(
                        e.message,
                        flight_id=row_identity(out, offset, schema.flight_id_field),
                        offset=int(offset),
                        field=col,
                        value=value,
                    ),
                    "DateTimeBuilder",
                )
        times[col] = pd.Series(parsed, index=out.index, dtype=object)
        rollovers = int((pd.to_numeric(out[col], errors="coerce") == MIDNIGHT_NEXT_DAY).sum())
        if rollovers:
            logging.info(f"DateTimeBuilder: {rollovers} {col} value(s) of 2400 mapped to 00:00 without day rollover")

    out = collector.resolve(out)
    for col, values in times.items():
        out[col] = values.loc[out.index]
    kept = dates.loc[out.index]
    out["date"] = kept.dt.date
    out["date_key"] = kept.dt.strftime("%Y%m%d").astype("int64")
    logging.info(f"DateTimeBuilder: derived date/date_key and {len(times)} time-of-day field(s) for {len(out)} flights")
    return out


def prune_columns(
    flights_df: pd.DataFrame, fields: Iterable[str] = SchemaConfig().pruned_fields
) -> pd.DataFrame:
    """
    Prec: dataframe flights_df
    Post: returns flights_df without the given fields; fields already absent are ignored
    """
    dropped = [c for c in fields if c in flights_df.columns]
    if dropped:
        logging.info(f"ColumnPruner: dropped {', '.join(dropped)}")
    return flights_df.drop(columns=dropped)


def clean_flights(
    flights_df: pd.DataFrame,
    config: PipelineConfig = PipelineConfig(),
    collector: Optional[RowIssueCollector] = None,
) -> pd.DataFrame:
    """
    Prec: flights_df built by frame_from_source, with collector if one was passed to it
    Post: returns the cleaned fact rows after null filling, flag coercion, date/time derivation and pruning.
    Rows rejected by one stage are not checked by the next ones; the error policy is applied once, at the end,
    to the errors of every stage (frame building included when it shared the collector).
    """
    schema = config.schema
    quarantine_file = config.quarantine_file if config.error_policy is ErrorPolicy.QUARANTINE else None
    collector = collector or RowIssueCollector("FlightCleaning", config.error_policy, quarantine_file, deferred=True)
    flights_df = normalize_nulls(
        flights_df,
        schema.delay_cause_fields,
        config.error_policy,
        quarantine_file,
        schema.flight_id_field,
        collector,
    )
    flights_df = coerce_status_flags(
        flights_df,
        schema.status_flag_fields,
        config.error_policy,
        quarantine_file,
        schema.flight_id_field,
        collector,
    )
    flights_df = build_dates_and_times(flights_df, schema, config.error_policy, quarantine_file, collector)
    return collector.finish(prune_columns(flights_df, schema.pruned_fields))
