import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from flight_delay_dw.errors import ConfigError

# ====================================================================================================================================
# Project paths configuration
PROJECT_ROOT = Path(__file__).resolve().parents[2]
CONFIG_DIR = PROJECT_ROOT / "config"
DATA_DIR = PROJECT_ROOT / "data"
LOOKUPS_DIR = DATA_DIR / "lookups"
DEFAULT_DW_FILE = DATA_DIR / "dw.duckdb"
DEFAULT_QUARANTINE_FILE = DATA_DIR / "rejected_rows.csv"
DB_CONF_FILE = CONFIG_DIR / "db_conf.txt"

DB_CONF_KEYS = ("dbname", "user", "password", "ip", "port")

# Raw BTS on-time headers mapped to the canonical field names
RAW_COLUMN_NAMES = {
    "Unnamed: 0": "flight_id",
    "": "flight_id",
    "Year": "year",
    "Month": "month",
    "DayofMonth": "day_of_month",
    "DayOfWeek": "day_of_week",
    "DepTime": "dep_time",
    "CRSDepTime": "crs_dep_time",
    "ArrTime": "arr_time",
    "CRSArrTime": "crs_arr_time",
    "UniqueCarrier": "carrier_code",
    "FlightNum": "flight_num",
    "TailNum": "tail_num",
    "ActualElapsedTime": "actual_elapsed_time",
    "CRSElapsedTime": "crs_elapsed_time",
    "AirTime": "air_time",
    "ArrDelay": "arr_delay",
    "DepDelay": "dep_delay",
    "Origin": "origin",
    "Dest": "dest",
    "Distance": "distance",
    "TaxiIn": "taxi_in",
    "TaxiOut": "taxi_out",
    "Cancelled": "cancelled",
    "CancellationCode": "cancellation_code",
    "Diverted": "diverted",
    "CarrierDelay": "carrier_delay",
    "WeatherDelay": "weather_delay",
    "NASDelay": "nas_delay",
    "SecurityDelay": "security_delay",
    "LateAircraftDelay": "late_aircraft_delay",
}

# Markers used by the BTS extracts for missing values
MISSING_MARKERS = ("", "NA", "NaN", "nan", "null", "NULL", "None")


class ErrorPolicy(str, Enum):
    """What a stage does with rows whose values fall outside their domain."""

    FAIL_FAST = "fail_fast"
    COLLECT = "collect"
    QUARANTINE = "quarantine"


@dataclass(frozen=True)
class SchemaConfig:
    """Field sets each cleaning stage works on."""

    flight_id_field: str = "flight_id"
    delay_cause_fields: tuple[str, ...] = (
        "carrier_delay",
        "weather_delay",
        "nas_delay",
        "security_delay",
        "late_aircraft_delay",
    )
    status_flag_fields: tuple[str, ...] = ("cancelled", "diverted")
    year_field: str = "year"
    month_field: str = "month"
    day_field: str = "day_of_month"
    time_fields: tuple[str, ...] = ("dep_time", "crs_dep_time", "arr_time", "crs_arr_time")
    pruned_fields: tuple[str, ...] = ("year", "month", "day_of_month", "day_of_week")
    numeric_fields: tuple[str, ...] = (
        "flight_id",
        "year",
        "month",
        "day_of_month",
        "day_of_week",
        "dep_time",
        "crs_dep_time",
        "arr_time",
        "crs_arr_time",
        "flight_num",
        "actual_elapsed_time",
        "crs_elapsed_time",
        "air_time",
        "arr_delay",
        "dep_delay",
        "distance",
        "taxi_in",
        "taxi_out",
        "cancelled",
        "diverted",
        "carrier_delay",
        "weather_delay",
        "nas_delay",
        "security_delay",
        "late_aircraft_delay",
    )


@dataclass(frozen=True)
class PipelineConfig:
    """Run-level settings for one refresh of the warehouse."""

    schema: SchemaConfig = SchemaConfig()
    error_policy: ErrorPolicy = ErrorPolicy.COLLECT
    quarantine_file: Path = DEFAULT_QUARANTINE_FILE
    lookups_dir: Path = LOOKUPS_DIR
    dw_file: Path = DEFAULT_DW_FILE


# ====================================================================================================================================
# Configuration files


def read_db_conf(path: Path = DB_CONF_FILE) -> dict[str, str]:
    """
    Prec: path points to a key=value text file (see config/db_conf.example.txt)
    Post: returns the connection parameters, raising ConfigError if the file is missing or incomplete
    """
    if not path.is_file():
        raise ConfigError(f"Database configuration file '{path.absolute()}' not found.")
    parameters = {}
    with open(path, "r", encoding="utf-8") as f:
        for lineno, line in enumerate(f, start=1):
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            if "=" not in line:
                raise ConfigError(
                    f"Database configuration file '{path.absolute()}' not properly formatted (line {lineno})."
                )
            key, value = line.split("=", 1)
            parameters[key.strip()] = value.strip()
    missing = [key for key in DB_CONF_KEYS if key not in parameters]
    if missing:
        raise ConfigError(f"Database configuration file '{path.absolute()}' lacks: {', '.join(missing)}")
    logging.debug(f"Read database configuration from {path}")
    return parameters
