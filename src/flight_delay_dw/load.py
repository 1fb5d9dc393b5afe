import logging
from typing import Optional

import duckdb
import pandas as pd
from pygrametl.datasources import PandasSource
from tqdm import tqdm

from flight_delay_dw.dimensions import StarSchema
from flight_delay_dw.dw import DW, FLIGHT_KEYREFS, FLIGHT_MEASURES
from flight_delay_dw.errors import WarehouseError

# Configure logging for information and errors
logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")


# ====================================================================================================================================
# loading functions
def _as_source(df: pd.DataFrame) -> PandasSource:
    """
    Prec: dataframe df
    Post: returns a PandasSource over df where missing values are None, as expected by the DB driver
    """
    return PandasSource(df.astype(object).where(df.notna(), None))


def _load_dimension(dw: DW, table_name: str, df: pd.DataFrame, label: str) -> None:
    """
    Prec: df contains the rows of dimension table_name of dw
    Post: every row of df is present in the dimension; any error stops the pipeline
    """
    table = getattr(dw, table_name)
    for row in tqdm(_as_source(df), total=len(df), desc=f"Loading {label}"):
        try:
            table.ensure(row)
        except Exception as e:
            logging.critical(f"Error loading {label} dimension: {e}")
            raise  # stop pipeline
    dw.conn_pygrametl.commit()
    logging.info(f"Finished loading {label} dimension.")


def load_airports(dw: DW, airports_df: pd.DataFrame) -> None:
    _load_dimension(dw, "airport_dim", airports_df, "airports")


def load_carriers(dw: DW, carriers_df: pd.DataFrame) -> None:
    _load_dimension(dw, "carrier_dim", carriers_df, "carriers")


def load_cancellations(dw: DW, cancellations_df: pd.DataFrame) -> None:
    _load_dimension(dw, "cancellation_dim", cancellations_df, "cancellations")


def load_dates(dw: DW, dates_df: pd.DataFrame) -> None:
    _load_dimension(dw, "date_dim", dates_df, "dates")


def _resolve_keys(dw: DW, row: dict) -> Optional[dict]:
    """
    Prec: row is a cleaned flight row
    Post: returns the surrogate keys of its dimension members, or None if any required member is missing
    """
    keys = {
        "carrierid": dw.carrier_dim.lookup(row, {"iata_carrier_code": "carrier_code"}),
        "originid": dw.airport_dim.lookup(row, {"iata": "origin"}),
        "destid": dw.airport_dim.lookup(row, {"iata": "dest"}),
        "cancellationid": None,
    }
    if row.get("cancellation_code") is not None:
        keys["cancellationid"] = dw.cancellation_dim.lookup(row)
        if keys["cancellationid"] is None:
            return None
    if dw.date_dim.lookup(row) is None:
        return None
    if None in (keys["carrierid"], keys["originid"], keys["destid"]):
        return None
    return keys


def load_flights(dw: DW, facts_df: pd.DataFrame) -> int:
    """
    Prec: dimensions are loaded in dw; facts_df contains the cleaned flight rows
    Post: loads the Flights fact table, skipping rows whose dimension members are missing.
    Returns the number of loaded rows.
    """
    table = getattr(dw, "flight_fact")
    loaded = skipped = 0
    for row in tqdm(_as_source(facts_df), total=len(facts_df), desc="Loading flights"):
        keys = _resolve_keys(dw, row)
        if keys is None:
            skipped += 1
            continue
        fact = {att: row.get(att) for att in FLIGHT_KEYREFS + FLIGHT_MEASURES}
        fact.update(keys)
        try:
            table.insert(fact)
        except Exception as e:
            logging.critical(f"Error loading flight {row.get('flight_id')}: {e}")
            raise
        loaded += 1
    dw.conn_pygrametl.commit()
    if skipped:
        logging.warning(f"Skipped {skipped} flight(s) referencing missing dimension rows")
    logging.info(f"Finished loading Flights fact table ({loaded} rows).")
    return loaded


def load_star_schema(dw: DW, star: StarSchema) -> int:
    """
    Prec: star is the output of dimensions.extract_dimensions
    Post: loads the four dimensions and then the fact table into the DW
    Database failures (constraint violations included) are raised as WarehouseError.
    """
    try:
        load_airports(dw, star.airports)
        load_carriers(dw, star.carriers)
        load_cancellations(dw, star.cancellations)
        load_dates(dw, star.dates)
        return load_flights(dw, star.facts)
    except duckdb.Error as e:
        logging.critical(f"Error loading star schema: {e}")
        raise WarehouseError(f"Loading the star schema failed: {e}") from e
    except Exception as e:
        logging.critical(f"Error loading star schema: {e}")
        raise  # stop pipeline
