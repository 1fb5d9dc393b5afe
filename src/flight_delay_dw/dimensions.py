import logging
from datetime import date
from typing import NamedTuple, Optional

import pandas as pd

from flight_delay_dw.errors import DataIntegrityError, SchemaMismatch

# Configure logging for information and errors
logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")

AIRPORT_COLUMNS = ["iata", "icao", "name", "country_code", "latitude", "longitude", "region"]
CARRIER_COLUMNS = ["iata_carrier_code", "carrier_name", "icao_carrier_code"]
CANCELLATION_COLUMNS = ["cancellation_code", "reason"]
DATE_COLUMNS = ["date_key", "date", "day", "day_name", "month", "month_name", "year"]

# BTS cancellation codes, used when no reference table is supplied
DEFAULT_CANCELLATION_REASONS = {
    "A": "Carrier",
    "B": "Weather",
    "C": "National Air System",
    "D": "Security",
}


class StarSchema(NamedTuple):
    facts: pd.DataFrame
    airports: pd.DataFrame
    carriers: pd.DataFrame
    cancellations: pd.DataFrame
    dates: pd.DataFrame


# ====================================================================================================================================
# Helpers


def _project(reference: pd.DataFrame, columns: list[str], name: str) -> pd.DataFrame:
    """
    Prec: reference holds raw lookup rows (strings when read through CSVSource)
    Post: returns the dimension columns only, with surrounding whitespace removed and blanks as missing
    """
    missing = [c for c in columns if c not in reference.columns]
    if missing:
        raise SchemaMismatch(missing, name)
    projected = reference[columns].copy()
    for col in projected.columns:
        if projected[col].dtype == object:
            stripped = projected[col].map(lambda v: v.strip() if isinstance(v, str) else v)
            projected[col] = stripped.where(stripped != "")
    return projected


def deduplicate_dimension(rows: pd.DataFrame, key: str, name: str) -> pd.DataFrame:
    """
    Prec: rows contains the natural key column key
    Post: returns one row per key, sorted by key. Identical duplicates collapse; rows sharing a key
    but differing in any other attribute raise DataIntegrityError.
    """
    unique = rows.drop_duplicates()
    if unique[key].isna().any():
        raise DataIntegrityError(f"{name}: dimension row without natural key", field=key)
    ambiguous = unique[unique[key].duplicated(keep=False)]
    if not ambiguous.empty:
        keys = sorted(ambiguous[key].astype(str).unique())
        raise DataIntegrityError(
            f"{name}: ambiguous dimension rows for {key} {', '.join(keys)}",
            field=key,
            value=keys,
        )
    dropped = len(rows) - len(unique)
    if dropped:
        logging.info(f"{name}: collapsed {dropped} duplicate row(s)")
    return unique.sort_values(key).reset_index(drop=True)


def find_orphan_keys(
    facts: pd.DataFrame, fact_field: str, dim: pd.DataFrame, dim_field: str
) -> set:
    """Fact key values (nulls excluded) with no matching dimension row."""
    referenced = set(facts[fact_field].dropna())
    return referenced - set(dim[dim_field].dropna())


# ====================================================================================================================================
# Dimension builders


def extract_airport_dim(reference: Optional[pd.DataFrame], facts: pd.DataFrame) -> pd.DataFrame:
    """
    Prec: reference airport rows with AIRPORT_COLUMNS, or None to derive codes from facts origin/dest
    Post: returns AirportDim, one row per IATA code
    """
    if reference is None:
        codes = sorted(set(facts["origin"].dropna()) | set(facts["dest"].dropna()))
        airports = pd.DataFrame({"iata": codes}).reindex(columns=AIRPORT_COLUMNS)
        logging.info(f"Airports: derived {len(airports)} codes from flights")
        return airports
    airports = _project(reference, AIRPORT_COLUMNS, "Airports")
    for col, bound in (("latitude", 90), ("longitude", 180)):
        coords = pd.to_numeric(airports[col], errors="coerce")
        bad = (coords.isna() & airports[col].notna()) | (coords.abs() > bound)
        if bad.any():
            values = airports.loc[bad, col].tolist()
            raise DataIntegrityError(
                f"Airports: invalid {col} for {', '.join(map(str, airports.loc[bad, 'iata']))}: {values}",
                field=col,
                value=values,
            )
        airports[col] = coords
    return deduplicate_dimension(airports, "iata", "Airports")


def extract_carrier_dim(reference: Optional[pd.DataFrame], facts: pd.DataFrame) -> pd.DataFrame:
    """
    Prec: reference carrier rows with CARRIER_COLUMNS, or None to derive codes from facts carrier_code
    Post: returns CarrierDim, one row per IATA carrier code
    """
    if reference is None:
        codes = sorted(set(facts["carrier_code"].dropna()))
        carriers = pd.DataFrame({"iata_carrier_code": codes}).reindex(columns=CARRIER_COLUMNS)
        logging.info(f"Carriers: derived {len(carriers)} codes from flights")
        return carriers
    return deduplicate_dimension(
        _project(reference, CARRIER_COLUMNS, "Carriers"), "iata_carrier_code", "Carriers"
    )


def extract_cancellation_dim(reference: Optional[pd.DataFrame]) -> pd.DataFrame:
    """
    Prec: reference cancellation rows with CANCELLATION_COLUMNS, or None for the standard BTS codes
    Post: returns CancellationDim, one row per cancellation code
    """
    if reference is None:
        reference = pd.DataFrame(
            list(DEFAULT_CANCELLATION_REASONS.items()), columns=CANCELLATION_COLUMNS
        )
    return deduplicate_dimension(
        _project(reference, CANCELLATION_COLUMNS, "Cancellations"),
        "cancellation_code",
        "Cancellations",
    )


def build_date_dim(facts: pd.DataFrame, date_key_field: str = "date_key") -> pd.DataFrame:
    """
    Prec: facts carry integer date keys YYYYMMDD
    Post: returns DateDim with one row per day from January 1 of the earliest year
    to December 31 of the latest year found in facts
    """
    keys = facts[date_key_field].dropna() if date_key_field in facts.columns else pd.Series(dtype="int64")
    if keys.empty:
        logging.warning("Date: no date keys in flights, date dimension is empty")
        return pd.DataFrame(columns=DATE_COLUMNS)
    first_year, last_year = int(keys.min()) // 10000, int(keys.max()) // 10000
    days = pd.date_range(date(first_year, 1, 1), date(last_year, 12, 31), freq="D")
    date_dim = pd.DataFrame(
        {
            "date_key": days.strftime("%Y%m%d").astype("int64"),
            "date": days.date,
            "day": days.day.astype("int64"),
            "day_name": days.day_name(),
            "month": days.month.astype("int64"),
            "month_name": days.month_name(),
            "year": days.year.astype("int64"),
        }
    )
    logging.info(f"Date: generated {len(date_dim)} days for {first_year}-{last_year}")
    return date_dim


def extract_dimensions(
    facts: pd.DataFrame,
    airports_ref: Optional[pd.DataFrame] = None,
    carriers_ref: Optional[pd.DataFrame] = None,
    cancellations_ref: Optional[pd.DataFrame] = None,
) -> StarSchema:
    """
    Prec: facts are cleaned flight rows (see transform.clean_flights)
    Post: returns the star schema: facts plus the four dimension tables
    """
    schema = StarSchema(
        facts=facts,
        airports=extract_airport_dim(airports_ref, facts),
        carriers=extract_carrier_dim(carriers_ref, facts),
        cancellations=extract_cancellation_dim(cancellations_ref),
        dates=build_date_dim(facts),
    )
    logging.info(
        f"Built star schema: {len(schema.facts)} flights, {len(schema.airports)} airports, "
        f"{len(schema.carriers)} carriers, {len(schema.cancellations)} cancellation reasons, "
        f"{len(schema.dates)} days"
    )
    return schema
