import argparse
import logging
from dataclasses import replace
from pathlib import Path
from typing import Iterable, Optional, Sequence

from flight_delay_dw.config import DB_CONF_FILE, ErrorPolicy, PipelineConfig
from flight_delay_dw.dimensions import StarSchema, extract_dimensions, find_orphan_keys
from flight_delay_dw.dw import DW
from flight_delay_dw.errors import FlightDWError
from flight_delay_dw.extract import (
    connect_source_db,
    extract_flights_csv,
    extract_flights_db,
    extract_reference_lookups,
)
from flight_delay_dw.load import load_star_schema
from flight_delay_dw.quality import RowIssueCollector
from flight_delay_dw.transform import clean_flights, frame_from_source

# Configure logging for information and errors
logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")

# (fact field, dimension, dimension field) pairs checked before loading
RELATIONSHIPS = [
    ("date_key", "dates", "date_key"),
    ("origin", "airports", "iata"),
    ("dest", "airports", "iata"),
    ("carrier_code", "carriers", "iata_carrier_code"),
    ("cancellation_code", "cancellations", "cancellation_code"),
]


def report_orphans(star: StarSchema) -> dict[str, set]:
    """
    Prec: star schema built by extract_dimensions
    Post: returns, per fact field, the key values without a dimension row (logged as warnings)
    """
    orphans = {}
    for fact_field, dim_name, dim_field in RELATIONSHIPS:
        missing = find_orphan_keys(star.facts, fact_field, getattr(star, dim_name), dim_field)
        if missing:
            orphans[fact_field] = missing
            shown = ", ".join(sorted(map(str, missing))[:10])
            logging.warning(f"{len(missing)} {fact_field} value(s) missing from {dim_name}: {shown}")
    return orphans


def build_star_schema(flights_source: Iterable[dict], config: PipelineConfig = PipelineConfig()) -> StarSchema:
    """
    Prec: flights_source yields raw flight rows
    Post: returns the cleaned facts and the four dimensions, ready to be loaded
    """
    quarantine_file = config.quarantine_file if config.error_policy is ErrorPolicy.QUARANTINE else None
    collector = RowIssueCollector("FlightCleaning", config.error_policy, quarantine_file, deferred=True)
    flights_df = frame_from_source(flights_source, config.schema, config.error_policy, quarantine_file, collector)
    if flights_df.empty and not collector.errors:
        raise FlightDWError("No flights found in source.")
    facts = clean_flights(flights_df, config, collector)
    airports_ref, carriers_ref, cancellations_ref = extract_reference_lookups(config.lookups_dir)
    star = extract_dimensions(facts, airports_ref, carriers_ref, cancellations_ref)
    report_orphans(star)
    return star


def run_pipeline(
    config: PipelineConfig = PipelineConfig(),
    flights_path: Optional[Path] = None,
    db_conf: Path = DB_CONF_FILE,
) -> StarSchema:
    """
    Prec: flights_path is a flights CSV file, or None to read the flights table of the PostgreSQL source
    Post: the DW file of config is recreated and holds the star schema, which is also returned.
    Under the quarantine policy the quarantine file only holds the rows rejected by this run.
    """
    if config.error_policy is ErrorPolicy.QUARANTINE and config.quarantine_file.exists():
        config.quarantine_file.unlink()
        logging.info(f"Removed previous quarantine file {config.quarantine_file}")
    if flights_path is not None:
        with extract_flights_csv(flights_path) as flights_source:
            star = build_star_schema(flights_source, config)
    else:
        conn = connect_source_db(db_conf)
        try:
            star = build_star_schema(extract_flights_db(conn), config)
        finally:
            conn.close()
    # create a data warehouse object
    dw = DW(config.dw_file, create=True)
    try:
        load_star_schema(dw, star)
    finally:
        dw.close()
    return star


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="run_etl", description="Load airline delay data into the flight delay DW"
    )
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument("--flights", type=Path, help="Flights CSV file (BTS or canonical headers)")
    source.add_argument("--postgres", action="store_true", help="Read flights from the PostgreSQL source")
    parser.add_argument("--db-conf", type=Path, default=DB_CONF_FILE, help="PostgreSQL connection file")
    parser.add_argument("--lookups-dir", type=Path, help="Directory with airports/carriers/cancellation_codes CSV files")
    parser.add_argument("--dw", type=Path, help="DuckDB file to (re)create")
    parser.add_argument(
        "--error-policy",
        choices=[p.value for p in ErrorPolicy],
        default=ErrorPolicy.COLLECT.value,
        help="What to do with invalid rows",
    )
    parser.add_argument("--quarantine-file", type=Path, help="CSV file receiving quarantined rows")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run the ETL from the command line and return the process exit code."""
    args = build_parser().parse_args(argv)
    config = PipelineConfig(error_policy=ErrorPolicy(args.error_policy))
    if args.lookups_dir is not None:
        config = replace(config, lookups_dir=args.lookups_dir)
    if args.dw is not None:
        config = replace(config, dw_file=args.dw)
    if args.quarantine_file is not None:
        config = replace(config, quarantine_file=args.quarantine_file)
    try:
        star = run_pipeline(config, None if args.postgres else args.flights, args.db_conf)
    except FlightDWError as e:
        logging.error(str(e))
        return 1
    logging.info(f"ETL pipeline completed successfully ({len(star.facts)} clean flights, DW at {config.dw_file})")
    return 0
