from typing import Any, Iterable, Optional


class FlightDWError(Exception):
    """Base exception for all pipeline failures."""


class ConfigError(FlightDWError):
    """Raised for missing or malformed configuration files."""


class SchemaMismatch(FlightDWError):
    """Raised when an expected field is absent from the dataset."""

    def __init__(self, missing: Iterable[str], stage: str = "") -> None:
        self.missing = sorted(missing)
        self.stage = stage
        where = f" ({stage})" if stage else ""
        super().__init__(f"Missing expected field(s){where}: {', '.join(self.missing)}")


class DuplicateFieldError(FlightDWError):
    """Raised when several source headers map to the same field."""

    def __init__(self, fields: Iterable[str]) -> None:
        self.fields = sorted(fields)
        super().__init__(f"Source headers map more than once to: {', '.join(self.fields)}")


class RowError(FlightDWError):
    """Base class for failures tied to one source row."""

    def __init__(
        self,
        message: str,
        flight_id: Any = None,
        offset: Optional[int] = None,
        field: Optional[str] = None,
        value: Any = None,
    ) -> None:
        self.message = message
        self.flight_id = flight_id
        self.offset = offset
        self.field = field
        self.value = value
        self.stage: Optional[str] = None
        super().__init__(self._describe())

    def _describe(self) -> str:
        context = []
        if self.flight_id is not None:
            context.append(f"flight_id={self.flight_id}")
        if self.offset is not None:
            context.append(f"offset={self.offset}")
        if self.field is not None:
            context.append(f"field={self.field}")
        if not context:
            return self.message
        return f"{self.message} [{', '.join(context)}]"

    def as_record(self) -> dict[str, Any]:
        """Flat representation used for quarantine files and reports."""
        return {
            "stage": self.stage,
            "error": type(self).__name__,
            "flight_id": self.flight_id,
            "offset": self.offset,
            "field": self.field,
            "value": self.value,
            "message": self.message,
        }


class DataIntegrityError(RowError):
    """Raised for values outside their documented domain or ambiguous dimension rows."""


class InvalidDateError(RowError):
    """Raised when year/month/day do not form a calendar date."""


class InvalidTimeError(RowError):
    """Raised for HHMM values that are not a valid time of day."""


class BatchRejectedError(FlightDWError):
    """Raised when a stage collected one or more row errors."""

    def __init__(self, stage: str, errors: list[RowError]) -> None:
        self.stage = stage
        self.errors = errors
        lines = "\n".join(f"  - {e.stage or stage}: {e}" for e in errors[:20])
        more = f"\n  ... and {len(errors) - 20} more" if len(errors) > 20 else ""
        super().__init__(f"{stage}: rejected {len(errors)} row(s)\n{lines}{more}")


class WarehouseError(FlightDWError):
    """Raised for DuckDB warehouse failures."""
