"""
Derived columns of the working table of the ATE estimator.
"""
from typing import Iterable, Optional, Tuple
import numpy as np
import pandas as pd

RESERVED_COLUMNS = (
    "time_tau",
    "status_tau",
    "censoring_tau",
    "treatment_bin",
    "prob_event",
    "prob_event0",
    "prob_event1",
    "prob_treatment",
    "weights",
    "prob_censoring",
    "prob_indiv_censoring",
    "Lterm",
    "status_event",
    "status_censor",
    "times",
)


class WorkingSchema:
    """Names of the columns the ATE estimator derives from the input data.

    The input table is never modified: :meth:`build` returns a private copy
    with a fresh index, and the original index labels are kept in
    ``index`` so that results can be mapped back to the input rows.

    Parameters
    ----------
    columns : iterable of str, optional
        Derived column names, the reserved names by default
    """

    def __init__(self, columns: Optional[Iterable[str]] = None):
        self.columns: Tuple[str, ...] = tuple(columns) if columns is not None else RESERVED_COLUMNS
        self.index = None

    def validate(self, data: pd.DataFrame) -> None:
        """Reject input data that already uses one of the derived names"""
        collisions = [col for col in self.columns if col in data.columns]
        if collisions:
            raise ValueError("Incorrect naming of the variables in data: " +
                             ", ".join(f'"{col}"' for col in collisions) +
                             " are used internally and should be renamed")

    def build(self, data: pd.DataFrame, columns: Iterable[str]) -> pd.DataFrame:
        """Private working copy of the used columns, with the derived columns unset"""
        self.validate(data)
        columns = list(dict.fromkeys(columns))
        working = data[columns].copy()
        self.index = np.asarray(data.index)
        working.index = pd.RangeIndex(len(working))
        for col in self.columns:
            working[col] = np.nan
        return working
