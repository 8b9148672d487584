"""
Step-function lookup and long-format export of predictions.
"""
from typing import Dict, Mapping, Optional
import numpy as np
import pandas as pd

# value of each outcome at time 0
INITIAL_VALUES = {
    "cumhazard": 0.0,
    "survival": 1.0,
    "absRisk": 0.0,
}


def sindex(jump_times: np.ndarray, eval_times: np.ndarray, strict: bool = False) -> np.ndarray:
    """
    Index of the step of a right-continuous step function

    Parameters
    ----------
    jump_times : np.ndarray
        Sorted jump times of the step function
    eval_times : np.ndarray
        Evaluation times, any order
    strict : bool
        Count the jumps strictly before each evaluation time (left limit)

    Returns
    -------
    np.ndarray
        Number of jumps at or before (strictly before if ``strict``) each
        evaluation time; 0 before the first jump
    """
    jump_times = np.asarray(jump_times, dtype=float)
    eval_times = np.asarray(eval_times, dtype=float)
    return np.searchsorted(jump_times, eval_times, side="left" if strict else "right")


def average_factors(average_iid, n_subjects: int, n_times: int) -> Dict[str, np.ndarray]:
    """Weighting factors of average_iid as (n_subjects, n_times) arrays"""
    if average_iid is None or average_iid is False:
        return {}
    if average_iid is True:
        return {"mean": np.ones((n_subjects, n_times))}
    if not isinstance(average_iid, Mapping):
        raise ValueError("Argument 'average_iid' must be a bool or a mapping name -> factor")

    factors = {}
    for name, factor in average_iid.items():
        factor = np.asarray(factor, dtype=float)
        if factor.ndim == 1 and len(factor) == n_subjects:
            factor = np.repeat(factor[:, None], n_times, axis=1)
        elif factor.shape != (n_subjects, n_times):
            raise ValueError(f"Factor '{name}' of average_iid must have length {n_subjects} or shape "
                             f"({n_subjects}, {n_times}), got shape {factor.shape}")
        factors[str(name)] = factor
    return factors


def _group_labels(result, group_by: str, n_subjects: int, digits: int) -> np.ndarray:
    if group_by == "row":
        return np.arange(n_subjects)
    if group_by == "strata":
        if result.strata is None:
            raise ValueError("group_by='strata' requires the strata: predict with keep_strata=True")
        return np.asarray(result.strata)
    if group_by == "covariates":
        if result.newdata is None:
            raise ValueError("group_by='covariates' requires newdata: predict with keep_newdata=True")
        data = result.newdata.round(digits)
        return np.array([", ".join(f"{col}={value}" for col, value in row.items())
                         for _, row in data.iterrows()], dtype=object)
    raise ValueError(f"group_by must be 'row', 'strata' or 'covariates', got '{group_by}'")


def predict_to_long(
    result,
    type: Optional[str] = None,
    ci: bool = False,
    band: bool = False,
    group_by: str = "row",
    digits: int = 2
) -> pd.DataFrame:
    """
    Convert subject-specific predictions to a tidy long table.

    The table is meant for plotting: one row per subject and time, starting
    with a row at time 0 where the cumulative hazard and the absolute risk
    are 0 and the survival is 1.

    Parameters
    ----------
    result : PredictionResult or AbsoluteRiskResult
        Predictions for new subjects (not in diagonal mode)
    type : str, optional
        Outcome to export; the first available one by default
    ci, band : bool
        Add the confidence interval / band columns
    group_by : str
        Identifier column: "row", "strata" or "covariates"
    digits : int
        Rounding of covariate values when ``group_by="covariates"``

    Returns
    -------
    pd.DataFrame
        Columns ``row``, the group column, ``time``, the outcome and
        optionally ``lowerCI``, ``upperCI``, ``lowerBand``, ``upperBand``
    """
    available = [name for name in result.types if name in INITIAL_VALUES]
    if type is None:
        if not available:
            raise ValueError("No cumulative hazard, survival or absolute risk to export")
        type = available[0]
    if type not in available:
        raise ValueError(f"Type '{type}' is not available, choose among {available}")
    if getattr(result, "diag", False):
        raise ValueError("Predictions made with diag=True cannot be converted to a long table")
    if result.times is None:
        raise ValueError("The evaluation times are required: predict with keep_times=True")

    values = np.asarray(getattr(result, type))
    if values.ndim != 2:
        raise ValueError("Only predictions for new subjects can be converted to a long table")
    n_subjects, n_times = values.shape

    columns = {type: values}
    if ci:
        if getattr(result, f"{type}_lower") is None:
            raise ValueError("Confidence intervals have not been computed")
        columns["lowerCI"] = getattr(result, f"{type}_lower")
        columns["upperCI"] = getattr(result, f"{type}_upper")
    if band:
        if getattr(result, f"{type}_lower_band") is None:
            raise ValueError("Confidence bands have not been computed")
        columns["lowerBand"] = getattr(result, f"{type}_lower_band")
        columns["upperBand"] = getattr(result, f"{type}_upper_band")

    times = np.concatenate([[0.0], np.asarray(result.times, dtype=float)])
    order = np.argsort(times, kind="stable")
    frame = pd.DataFrame({
        "row": np.repeat(np.arange(n_subjects), n_times + 1),
        "time": np.tile(times[order], n_subjects),
    })
    if group_by != "row":
        frame[group_by] = np.repeat(_group_labels(result, group_by, n_subjects, digits), n_times + 1)
    start = INITIAL_VALUES[type]
    for name, matrix in columns.items():
        padded = np.hstack([np.full((n_subjects, 1), start), np.asarray(matrix, dtype=float)])
        frame[name] = padded[:, order].ravel()
    return frame
