import logging
import os
from pathlib import Path

import duckdb  # https://duckdb.org
import pygrametl  # https://pygrametl.org
from pygrametl.tables import CachedDimension, FactTable

from flight_delay_dw.config import DEFAULT_DW_FILE
from flight_delay_dw.dimensions import AIRPORT_COLUMNS, CANCELLATION_COLUMNS, CARRIER_COLUMNS
from flight_delay_dw.errors import WarehouseError

# Configure logging for information and errors
logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")

FLIGHT_KEYREFS = ("flight_id", "date_key", "carrierid", "originid", "destid", "cancellationid")
FLIGHT_MEASURES = (
    "flight_num",
    "tail_num",
    "dep_time",
    "crs_dep_time",
    "arr_time",
    "crs_arr_time",
    "actual_elapsed_time",
    "crs_elapsed_time",
    "air_time",
    "taxi_in",
    "taxi_out",
    "dep_delay",
    "arr_delay",
    "carrier_delay",
    "weather_delay",
    "nas_delay",
    "security_delay",
    "late_aircraft_delay",
    "distance",
    "cancelled",
    "diverted",
)

# ====================================================================================================================================
# DW definition
DDL = [
    # dimensions tables first
    """
    CREATE TABLE Airports(
        airportid INT PRIMARY KEY,
        iata VARCHAR(3) UNIQUE NOT NULL,
        icao VARCHAR(4),
        name VARCHAR(200),
        country_code VARCHAR(2),
        latitude DOUBLE,
        longitude DOUBLE,
        region VARCHAR(100)
    );
    """,
    """
    CREATE TABLE Carriers(
        carrierid INT PRIMARY KEY,
        iata_carrier_code VARCHAR(3) UNIQUE NOT NULL,
        carrier_name VARCHAR(200),
        icao_carrier_code VARCHAR(3)
    );
    """,
    """
    CREATE TABLE Cancellations(
        cancellationid INT PRIMARY KEY,
        cancellation_code VARCHAR(1) UNIQUE NOT NULL,
        reason VARCHAR(100) NOT NULL
    );
    """,
    """
    CREATE TABLE Date(
        date_key INT PRIMARY KEY, --YYYYMMDD
        date DATE UNIQUE NOT NULL,
        day INT NOT NULL,
        day_name VARCHAR(9) NOT NULL,
        month INT NOT NULL,
        month_name VARCHAR(9) NOT NULL,
        year INT NOT NULL
    );
    """,
    # fact table next
    """
    CREATE TABLE Flights(
        flight_id BIGINT PRIMARY KEY,
        date_key INT NOT NULL,
        carrierid INT NOT NULL,
        originid INT NOT NULL,
        destid INT NOT NULL,
        cancellationid INT,
        flight_num INT,
        tail_num VARCHAR(10),
        dep_time TIME,
        crs_dep_time TIME,
        arr_time TIME,
        crs_arr_time TIME,
        actual_elapsed_time INT,
        crs_elapsed_time INT,
        air_time INT,
        taxi_in INT,
        taxi_out INT,
        dep_delay INT,
        arr_delay INT,
        carrier_delay INT NOT NULL DEFAULT 0,
        weather_delay INT NOT NULL DEFAULT 0,
        nas_delay INT NOT NULL DEFAULT 0,
        security_delay INT NOT NULL DEFAULT 0,
        late_aircraft_delay INT NOT NULL DEFAULT 0,
        distance INT,
        cancelled BOOLEAN NOT NULL,
        diverted BOOLEAN NOT NULL,
        FOREIGN KEY (date_key) REFERENCES Date(date_key),
        FOREIGN KEY (carrierid) REFERENCES Carriers(carrierid),
        FOREIGN KEY (originid) REFERENCES Airports(airportid),
        FOREIGN KEY (destid) REFERENCES Airports(airportid),
        FOREIGN KEY (cancellationid) REFERENCES Cancellations(cancellationid)
    );
    """,
]


class DW:
    # Data Warehouse class for managing DuckDB connections and operations

    def __init__(self, filename: Path = DEFAULT_DW_FILE, create: bool = False):
        """Initialize the DW object, creating or connecting to the DuckDB database."""
        self.filename = Path(filename)
        # a re-run fully replaces the previous warehouse
        if create and os.path.exists(self.filename):
            os.remove(self.filename)
        self.filename.parent.mkdir(parents=True, exist_ok=True)
        try:
            self.conn_duckdb = duckdb.connect(str(self.filename))
            logging.info("Connection to the DW created successfully")
        except duckdb.Error as e:
            logging.error("Unable to connect to DuckDB database '%s': %s", self.filename, e)
            raise WarehouseError(f"Unable to connect to DuckDB database '{self.filename}'") from e

        # Create tables in DuckDB if required
        if create:
            try:
                for statement in DDL:
                    self.conn_duckdb.execute(statement)
                self.conn_duckdb.commit()
                logging.info("All DW tables created successfully")
            except duckdb.Error as e:
                logging.error("Error creating the DW tables: %s", e)
                self.conn_duckdb.close()
                raise WarehouseError("Error creating the DW tables") from e

        # Link DuckDB and pygrametl
        self.conn_pygrametl = pygrametl.ConnectionWrapper(self.conn_duckdb, paramstyle="qmark")

        # Create dimension and fact table pygrametl objects
        self.airport_dim = CachedDimension(
            name="Airports",
            key="airportid",
            attributes=AIRPORT_COLUMNS,
            lookupatts=["iata"],
            targetconnection=self.conn_pygrametl,
        )

        self.carrier_dim = CachedDimension(
            name="Carriers",
            key="carrierid",
            attributes=CARRIER_COLUMNS,
            lookupatts=["iata_carrier_code"],
            targetconnection=self.conn_pygrametl,
        )

        self.cancellation_dim = CachedDimension(
            name="Cancellations",
            key="cancellationid",
            attributes=CANCELLATION_COLUMNS,
            lookupatts=["cancellation_code"],
            targetconnection=self.conn_pygrametl,
        )

        # natural key: rows arrive with their date_key already set
        self.date_dim = CachedDimension(
            name="Date",
            key="date_key",
            attributes=["date", "day", "day_name", "month", "month_name", "year"],
            lookupatts=["date"],
            targetconnection=self.conn_pygrametl,
        )

        self.flight_fact = FactTable(
            name="Flights",
            keyrefs=FLIGHT_KEYREFS,  # foreign keys to dimensions
            measures=FLIGHT_MEASURES,
            targetconnection=self.conn_pygrametl,
        )

    def count_rows(self, table: str) -> int:
        """Number of rows currently stored in table."""
        return self.conn_duckdb.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]  # type: ignore

    def query_delay_causes_by_month(self):
        """Query total delay minutes per cause for each month."""
        result = self.conn_duckdb.execute(
            """
            SELECT d.year, d.month, d.month_name,
                SUM(f.carrier_delay) AS carrier,
                SUM(f.weather_delay) AS weather,
                SUM(f.nas_delay) AS nas,
                SUM(f.security_delay) AS security,
                SUM(f.late_aircraft_delay) AS late_aircraft
            FROM Flights f, Date d
            WHERE f.date_key = d.date_key
            GROUP BY d.year, d.month, d.month_name
            ORDER BY d.year, d.month;
            """
        ).fetchall()
        return result

    def query_cancellations_by_reason(self):
        """Query the number of cancelled flights per cancellation reason."""
        result = self.conn_duckdb.execute(
            """
            SELECT c.cancellation_code, c.reason, COUNT(*) AS cancellations
            FROM Flights f, Cancellations c
            WHERE f.cancellationid = c.cancellationid AND f.cancelled
            GROUP BY c.cancellation_code, c.reason
            ORDER BY cancellations DESC, c.cancellation_code;
            """
        ).fetchall()
        return result

    def query_carrier_punctuality(self):
        """Query flights, delayed arrivals (15 minutes or more) and average arrival delay per carrier."""
        result = self.conn_duckdb.execute(
            """
            SELECT ca.iata_carrier_code, ca.carrier_name,
                COUNT(*) AS flights,
                SUM(CASE WHEN f.arr_delay >= 15 THEN 1 ELSE 0 END) AS delayed,
                CAST(ROUND(AVG(f.arr_delay), 2) AS DECIMAL(10,2)) AS avg_arr_delay
            FROM Flights f, Carriers ca
            WHERE f.carrierid = ca.carrierid AND NOT f.cancelled AND NOT f.diverted
            GROUP BY ca.iata_carrier_code, ca.carrier_name
            ORDER BY ca.iata_carrier_code;
            """
        ).fetchall()
        return result

    def close(self):
        """Close the DW connections."""
        self.conn_pygrametl.commit()
        self.conn_pygrametl.close()
