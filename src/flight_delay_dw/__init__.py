from flight_delay_dw.dimensions import StarSchema, extract_dimensions
from flight_delay_dw.transform import (
    build_dates_and_times,
    clean_flights,
    coerce_status_flags,
    normalize_nulls,
    prune_columns,
)

__all__ = [
    "StarSchema",
    "build_dates_and_times",
    "clean_flights",
    "coerce_status_flags",
    "extract_dimensions",
    "normalize_nulls",
    "prune_columns",
]
