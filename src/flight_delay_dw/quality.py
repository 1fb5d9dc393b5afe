import logging
from pathlib import Path
from typing import Any, Optional

import pandas as pd

from flight_delay_dw.config import ErrorPolicy
from flight_delay_dw.errors import BatchRejectedError, RowError

# Configure logging for information and errors
logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")


def row_identity(df: pd.DataFrame, offset: Any, flight_id_field: str) -> Any:
    """Flight id of the row at index `offset`, or None when the frame has no id column."""
    if flight_id_field not in df.columns:
        return None
    value = df.at[offset, flight_id_field]
    if pd.isna(value):
        return None
    return int(value) if pd.api.types.is_number(value) else value


class RowIssueCollector:
    """
    Gathers row errors and applies the error policy to them.
    Rows are identified by their frame index, which is the source offset.

    A deferred collector is shared by consecutive stages: resolve() only removes the rows flagged so far,
    so later stages keep checking the remaining rows, and finish() applies the policy to every error at once.
    """

    def __init__(
        self,
        stage: str,
        policy: ErrorPolicy = ErrorPolicy.COLLECT,
        quarantine_file: Optional[Path] = None,
        deferred: bool = False,
    ):
        self.stage = stage
        self.policy = policy
        self.quarantine_file = quarantine_file
        self.deferred = deferred
        self.errors: list[RowError] = []

    def add(self, error: RowError, stage: Optional[str] = None) -> None:
        error.stage = stage or self.stage
        if self.policy is ErrorPolicy.FAIL_FAST:
            raise error
        self.errors.append(error)

    def flagged_offsets(self) -> list:
        return sorted({e.offset for e in self.errors if e.offset is not None})

    def resolve(self, df: pd.DataFrame) -> pd.DataFrame:
        """
        Prec: df is the stage output, indexed by source offset
        Post: for a deferred collector, returns df without the rows flagged so far.
        Otherwise same as finish(df).
        """
        if self.deferred:
            return df.drop(index=self.flagged_offsets(), errors="ignore")
        return self.finish(df)

    def finish(self, df: pd.DataFrame) -> pd.DataFrame:
        """
        Prec: df is indexed by source offset
        Post: returns df unchanged when no errors were collected; raises BatchRejectedError (COLLECT)
        or returns df without the offending rows after writing them to the quarantine file (QUARANTINE)
        """
        if not self.errors:
            return df
        if self.policy is ErrorPolicy.QUARANTINE:
            return self._quarantine(df)
        logging.error(f"{self.stage}: {len(self.errors)} invalid row(s), aborting batch")
        raise BatchRejectedError(self.stage, self.errors)

    def _quarantine(self, df: pd.DataFrame) -> pd.DataFrame:
        offsets = self.flagged_offsets()
        if self.quarantine_file is not None:
            rejected = pd.DataFrame([e.as_record() for e in self.errors])
            self.quarantine_file.parent.mkdir(parents=True, exist_ok=True)
            rejected.to_csv(
                self.quarantine_file,
                mode="a",
                index=False,
                header=not self.quarantine_file.exists(),
            )
        logging.warning(
            f"{self.stage}: quarantined {len(offsets)} row(s)"
            + (f" (logged to {self.quarantine_file})" if self.quarantine_file else "")
        )
        self.errors = []
        return df.drop(index=offsets, errors="ignore")
