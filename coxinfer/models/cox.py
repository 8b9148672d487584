"""
Fitted Cox regression models.
"""
import logging
from typing import List, Optional, Sequence, Union
import numpy as np
import pandas as pd
from lifelines import CoxPHFitter

from coxinfer.data import Survival, DataValidator
from coxinfer.models.base import CoxModel

logger = logging.getLogger(__name__)


def _to_list(value) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    return list(value)


class FittedCox(CoxModel):
    """
    Cox model defined by its training data and estimated coefficients.

    Any fitting routine can produce this object: it only needs the
    coefficients and the columns that were used for the fit.

    Parameters
    ----------
    coefficients : array-like
        Estimated regression coefficients, in the order of ``covariates``
    data : pd.DataFrame
        Training data
    duration_col : str
        Column with the event/censoring times
    event_col : str
        Column with the event indicator (1 event, 0 censored)
    covariates : list of str, optional
        Numeric columns entering the linear predictor
    strata : str or list of str, optional
        Stratification columns
    entry_col : str, optional
        Column with delayed entry (left truncation) times
    ties : str
        Tie handling used by the fitter: "breslow" or "efron"
    weights : array-like, optional
        Case weights used by the fitter
    penalizer : float
        Ridge penalty used by the fitter. Predictions are available for a
        penalized model but influence functions are not

    Examples
    --------
    >>> from coxinfer.models import FittedCox
    >>> from coxinfer.data import sample_data
    >>> d = sample_data(40, seed=10)
    >>> fit = FittedCox([0.5, 0.3], d, "time", "event", covariates=["X1", "X6"], ties="breslow")
    >>> fit.linear_predictor(d.head(2)).shape
    (2,)
    """

    def __init__(
        self,
        coefficients,
        data: pd.DataFrame,
        duration_col: str,
        event_col: str,
        covariates: Optional[Sequence[str]] = None,
        strata: Optional[Union[str, Sequence[str]]] = None,
        entry_col: Optional[str] = None,
        ties: str = "efron",
        weights: Optional[np.ndarray] = None,
        penalizer: float = 0.0
    ):
        self._covariates = _to_list(covariates)
        self._strata_cols = _to_list(strata)
        self._coefficients = np.asarray(coefficients, dtype=float).ravel()
        if len(self._coefficients) != len(self._covariates):
            raise ValueError(f"Got {len(self._coefficients)} coefficient(s) for "
                             f"{len(self._covariates)} covariate(s)")
        self._ties = str(ties).lower()
        self._weights = None if weights is None else np.asarray(weights, dtype=float)
        self._penalizer = float(penalizer)

        columns = [duration_col, event_col] + self._covariates + self._strata_cols
        if entry_col is not None:
            columns.append(entry_col)
        DataValidator.validate_columns(data, columns, name="data")
        self.duration_col = duration_col
        self.event_col = event_col
        self.entry_col = entry_col
        self._data = data[list(dict.fromkeys(columns))].reset_index(drop=True).copy()

        y = Survival(self._data[duration_col], self._data[event_col],
                     entry=None if entry_col is None else self._data[entry_col])
        self._frame = pd.DataFrame({
            "start": y.entry,
            "stop": y.time,
            "status": y.event,
        })
        labels = self._strata_labels(self._data)
        self._levels = sorted(set(labels)) if self._strata_cols else []
        self._frame["strata"] = self._encode(labels) if self._strata_cols else 0
        self._design = self._build_design(self._data)

    @property
    def n_obs(self) -> int:
        return len(self._frame)

    @property
    def coefficients(self) -> np.ndarray:
        return self._coefficients

    @property
    def covariates(self) -> List[str]:
        return list(self._covariates)

    @property
    def strata_columns(self) -> List[str]:
        return list(self._strata_cols)

    @property
    def ties(self) -> str:
        return self._ties

    @property
    def strata_levels(self) -> List[str]:
        return list(self._levels)

    @property
    def weights(self) -> Optional[np.ndarray]:
        return self._weights

    @property
    def penalizer(self) -> float:
        return self._penalizer

    @property
    def means(self) -> np.ndarray:
        if self._design.shape[1] == 0:
            return np.zeros(0)
        return self._design.mean(axis=0)

    def model_frame(self) -> pd.DataFrame:
        return self._frame.copy()

    def design_matrix(self, newdata: Optional[pd.DataFrame] = None) -> np.ndarray:
        if newdata is None:
            return self._design.copy()
        DataValidator.validate_columns(newdata, self._covariates)
        return self._build_design(newdata)

    def strata_assignment(self, newdata: Optional[pd.DataFrame] = None) -> np.ndarray:
        if newdata is None:
            return self._frame["strata"].to_numpy()
        if not self._strata_cols:
            return np.zeros(len(newdata), dtype=int)
        DataValidator.validate_columns(newdata, self._strata_cols)
        return self._encode(self._strata_labels(newdata))

    def _build_design(self, data: pd.DataFrame) -> np.ndarray:
        if not self._covariates:
            return np.zeros((len(data), 0))
        design = data[self._covariates].to_numpy(dtype=float)
        return DataValidator.validate_design(design, len(data))

    def _strata_labels(self, data: pd.DataFrame) -> List[str]:
        if not self._strata_cols:
            return []
        values = data[self._strata_cols].astype(str).to_numpy()
        return [", ".join(f"{col}={v}" for col, v in zip(self._strata_cols, row)) for row in values]

    def _encode(self, labels: List[str]) -> np.ndarray:
        code = {level: i for i, level in enumerate(self._levels)}
        unknown = sorted(set(labels) - set(code))
        if unknown:
            raise ValueError("Unknown strata in newdata: " + ", ".join(f'"{u}"' for u in unknown) +
                             f"; the model was fitted on strata {self._levels}")
        return np.array([code[label] for label in labels], dtype=int)

    def __repr__(self) -> str:
        coef = ", ".join(f"{name}={value:.4g}" for name, value in zip(self._covariates, self._coefficients))
        strata = f", strata={self._strata_cols}" if self._strata_cols else ""
        return f"FittedCox(n={self.n_obs}, ties='{self._ties}', coef=[{coef}]{strata})"


def fit_cox(
    data: pd.DataFrame,
    duration_col: str,
    event_col: str,
    covariates: Optional[Sequence[str]] = None,
    strata: Optional[Union[str, Sequence[str]]] = None,
    entry_col: Optional[str] = None,
    penalizer: float = 0.0
) -> FittedCox:
    """
    Fit a Cox model with lifelines.

    lifelines handles ties with the Efron method, so the returned model
    uses ``ties="efron"``. A model without covariates has no parameter to
    estimate and is built directly.

    Parameters
    ----------
    data : pd.DataFrame
        Training data
    duration_col : str
        Column with the event/censoring times
    event_col : str
        Column with the event indicator
    covariates : list of str, optional
        Numeric covariates
    strata : str or list of str, optional
        Stratification columns
    entry_col : str, optional
        Column with delayed entry times
    penalizer : float
        Ridge penalty passed to :class:`lifelines.CoxPHFitter`

    Returns
    -------
    FittedCox
        The fitted model
    """
    covariates = _to_list(covariates)
    strata = _to_list(strata)

    if covariates:
        columns = list(dict.fromkeys(covariates + [duration_col, event_col] + strata +
                                     ([entry_col] if entry_col else [])))
        DataValidator.validate_columns(data, columns, name="data")
        cph = CoxPHFitter(penalizer=penalizer)
        cph.fit(data[columns], duration_col=duration_col, event_col=event_col,
                strata=strata or None, entry_col=entry_col)
        coefficients = cph.params_.reindex(covariates).to_numpy(dtype=float)
        DataValidator.validate_coefficients(coefficients)
    else:
        coefficients = np.zeros(0)

    model = FittedCox(coefficients, data, duration_col, event_col, covariates=covariates,
                      strata=strata, entry_col=entry_col, ties="efron", penalizer=penalizer)
    logger.debug("Fitted %r", model)
    return model
