import logging
import warnings
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

import pandas as pd
import psycopg2
from pygrametl.datasources import CSVSource, SQLSource

from flight_delay_dw.config import DB_CONF_FILE, LOOKUPS_DIR, RAW_COLUMN_NAMES, read_db_conf
from flight_delay_dw.errors import ConfigError

# Configure logging for information and errors
logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")
# Filter unwanted warnings out
warnings.filterwarnings("ignore", message=".*pandas only supports SQLAlchemy.*")

AIRPORTS_LOOKUP = "airports.csv"
CARRIERS_LOOKUP = "carriers.csv"
CANCELLATIONS_LOOKUP = "cancellation_codes.csv"

# canonical names, in source order, for the PostgreSQL flights table
FLIGHT_COLUMNS = list(dict.fromkeys(RAW_COLUMN_NAMES.values()))


# ====================================================================================================================================
# Source connections


def connect_source_db(conf_path: Path = DB_CONF_FILE):
    """
    Prec: conf_path is a db_conf.txt file with dbname, user, password, ip and port
    Post: returns an open psycopg2 connection to the source database
    """
    parameters = read_db_conf(conf_path)
    try:
        conn = psycopg2.connect(
            dbname=parameters["dbname"],
            user=parameters["user"],
            password=parameters["password"],
            host=parameters["ip"],
            port=parameters["port"],
        )
    except psycopg2.Error as e:
        logging.critical(f"Unable to connect to the source database {parameters['dbname']}@{parameters['ip']}: {e}")
        raise ConfigError(f"Unable to connect to the database '{parameters['dbname']}'") from e
    logging.info("Connection to the source database created successfully")
    return conn


# ====================================================================================================================================
# extracting functions


@contextmanager
def extract_flights_csv(path: Path, delimiter: str = ",") -> Iterator[CSVSource]:
    """
    Prec: path is a delimited file with a header row (raw BTS or canonical column names)
    Post: yields a CSVSource over the flight rows; the file is closed when the block exits
    """
    try:
        f = open(path, "r", 16384, encoding="utf-8")  # buffered reads as recommended by pygrametl
    except OSError as e:
        logging.critical(f"[extract_flights_csv] Error reading {path}: {e}")
        raise
    try:
        yield CSVSource(f=f, delimiter=delimiter)
    finally:  # close the underlying file even if there is an error
        f.close()


def extract_flights_db(conn, table: str = '"BTS"."flights"') -> SQLSource:
    """
    Prec: conn is an open connection to the source database holding table with canonical column names
    Post: returns a SQLSource over the flight rows of table
    """
    query = f"SELECT {', '.join(FLIGHT_COLUMNS)} FROM {table}"
    return SQLSource(connection=conn, query=query)


def extract_lookup(filename: str, lookups_dir: Path = LOOKUPS_DIR) -> Optional[pd.DataFrame]:
    """
    Prec: filename is a CSV lookup under lookups_dir
    Post: returns the lookup rows as a dataframe, or None if the file does not exist
    """
    path = lookups_dir / filename
    if not path.is_file():
        logging.info(f"No lookup file {path}, dimension will be derived from the flights")
        return None
    with open(path, "r", 16384, encoding="utf-8") as f:
        lookup_df = pd.DataFrame(list(CSVSource(f=f, delimiter=",")))  # blocking operation
    if lookup_df.empty:
        logging.warning(f"Lookup file {path} has no rows, dimension will be derived from the flights")
        return None
    logging.info(f"Read {len(lookup_df)} rows from {path}")
    return lookup_df


def extract_reference_lookups(
    lookups_dir: Path = LOOKUPS_DIR,
) -> tuple[Optional[pd.DataFrame], Optional[pd.DataFrame], Optional[pd.DataFrame]]:
    """
    Post: returns the (airports, carriers, cancellations) reference rows found in lookups_dir
    """
    return (
        extract_lookup(AIRPORTS_LOOKUP, lookups_dir),
        extract_lookup(CARRIERS_LOOKUP, lookups_dir),
        extract_lookup(CANCELLATIONS_LOOKUP, lookups_dir),
    )
