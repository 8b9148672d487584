"""
Subject-specific predictions from fitted Cox models.
"""
import logging
import warnings
from typing import Dict, List, Mapping, Optional, Sequence, Union
import numpy as np
import pandas as pd

from coxinfer.data import EventTable, DataValidator
from coxinfer.models.base import CoxModel
from coxinfer.utils.hazard_estimation import HazardEstimator, BaselineHazard
from coxinfer.utils.time_handler import TimeHandler
from coxinfer.utils.prediction_utils import average_factors
from coxinfer.inference.influence import CoxInfluence, subject_terms
from coxinfer.inference.confint import confint_predictions

logger = logging.getLogger(__name__)

VALID_TYPES = ("hazard", "cumhazard", "survival")


class PredictionResult:
    """Predictions of a Cox model with optional uncertainty quantification.

    Without new subjects, ``hazard``/``cumhazard``/``survival`` are 1-D
    arrays aligned with ``times`` and ``strata`` (baseline estimates). With
    new subjects they are (n_subjects, n_times) arrays, or (n_subjects, 1)
    in diagonal mode. Fields that were not requested are None.

    Attributes
    ----------
    types : list of str
        Requested outputs
    times : np.ndarray
        Evaluation times (in the order they were requested)
    strata : np.ndarray
        Stratum label of each row
    <type>_se, <type>_iid : np.ndarray
        Standard errors (n_subjects, n_times) and influence functions
        (n_subjects, n_times, n_train)
    <type>_average_iid : dict
        Influence function of weighted averages over subjects, one
        (n_train, n_times) array per factor
    <type>_lower, <type>_upper : np.ndarray
        Pointwise confidence intervals
    <type>_lower_band, <type>_upper_band : np.ndarray
        Confidence bands
    quantile_band : dict
        Band critical value of each subject, per type
    last_event_time : np.ndarray
        Last observed time of each stratum
    """

    def __init__(self, types: List[str], times: Optional[np.ndarray] = None,
                 strata: Optional[np.ndarray] = None, diag: bool = False,
                 centered: bool = True, newdata: Optional[pd.DataFrame] = None,
                 last_event_time: Optional[np.ndarray] = None):
        self.types = list(types)
        self.times = times
        self.strata = strata
        self.diag = diag
        self.centered = centered
        self.newdata = newdata
        self.last_event_time = last_event_time
        self.has_newdata = False
        self.conf_level = None
        self.quantile_band: Dict[str, np.ndarray] = {}
        for name in VALID_TYPES:
            for suffix in ("", "_se", "_iid", "_average_iid", "_lower", "_upper",
                           "_lower_band", "_upper_band"):
                setattr(self, name + suffix, None)

    def confint(self, conf_level: float = 0.95, band: bool = False, n_sim: int = 10000,
                seed: Optional[int] = None, transform: Optional[str] = None) -> "PredictionResult":
        """
        Compute pointwise confidence intervals and optionally confidence bands

        Intervals use the log transform for the cumulative hazard and the
        log-log transform for the survival, unless ``transform`` is given.
        """
        types = [name for name in self.types if name != "hazard"]
        if not any(getattr(self, f"{name}_se") is not None for name in types):
            raise ValueError("Standard errors have not been computed: call predict_cox with se=True")
        return confint_predictions(self, types, conf_level=conf_level, band=band,
                                   n_sim=n_sim, seed=seed, transform=transform)

    def to_frame(self) -> pd.DataFrame:
        """Long table with one row per subject (or stratum) and time"""
        first = getattr(self, self.types[0])
        if not self.has_newdata:
            frame = pd.DataFrame({"time": self.times})
            if self.strata is not None:
                frame["strata"] = self.strata
            for name in self.types:
                frame[name] = getattr(self, name)
            return frame

        n_subjects, n_times = first.shape
        if self.diag:
            times = self.times
        elif self.times is not None:
            times = np.tile(self.times, n_subjects)
        else:
            times = np.tile(np.arange(n_times), n_subjects)
        frame = pd.DataFrame({
            "row": np.repeat(np.arange(n_subjects), n_times),
            "time": times,
        })
        if self.strata is not None:
            frame["strata"] = np.repeat(self.strata, n_times)
        for name in self.types:
            for suffix in ("", "_se", "_lower", "_upper", "_lower_band", "_upper_band"):
                values = getattr(self, name + suffix)
                if values is not None:
                    frame[name + suffix] = np.asarray(values).ravel()
        return frame

    def __repr__(self) -> str:
        shape = getattr(self, self.types[0]).shape
        return f"PredictionResult(types={self.types}, shape={shape}, diag={self.diag})"


def _normalize_types(type) -> List[str]:
    if isinstance(type, str):
        type = [type]
    requested = [str(t).lower() for t in type]
    invalid = [t for t in requested if t not in VALID_TYPES]
    if not requested or invalid:
        raise ValueError(f"Argument 'type' must be a non-empty subset of {list(VALID_TYPES)}, "
                         f"got {list(type)}")
    return [t for t in VALID_TYPES if t in requested]


def _check_model(model: CoxModel) -> None:
    DataValidator.validate_ties(model.ties)
    DataValidator.validate_weights(model.weights)
    DataValidator.validate_coefficients(model.coefficients)
    frame = model.model_frame()
    if np.any(frame["start"].to_numpy() != 0):
        warnings.warn("The Cox model was fitted on left-truncated data (delayed entry): "
                      "the risk sets use start < t <= stop and no further correction is applied",
                      UserWarning)


def _strata_labels(model: CoxModel, codes: np.ndarray) -> np.ndarray:
    levels = model.strata_levels
    if not levels:
        return None
    return np.asarray(levels, dtype=object)[codes]


def _lookup(baseline: BaselineHazard, eXb: np.ndarray, strata: np.ndarray, times: np.ndarray):
    """Hazard and cumulative hazard of subjects at their (n_subjects, n_times) times"""
    hazard = np.zeros(times.shape)
    cumhazard = np.zeros(times.shape)
    for s in np.unique(strata):
        members = np.flatnonzero(strata == s)
        h, c = baseline.evaluate(times[members].ravel(), [s])
        hazard[members] = h[0].reshape(len(members), -1)
        cumhazard[members] = c[0].reshape(len(members), -1)
    return hazard * eXb[:, None], cumhazard * eXb[:, None]


def _baseline_prediction(model: CoxModel, baseline: BaselineHazard, times: np.ndarray,
                         types: List[str], centered: bool, keep_strata: bool,
                         keep_times: bool) -> PredictionResult:
    coefficients = np.asarray(model.coefficients, dtype=float)
    shift = 1.0 if (centered or coefficients.size == 0) else float(np.exp(-model.means @ coefficients))

    if len(times) == 0:
        out_times = baseline.times
        codes = baseline.strata
        hazard = baseline.hazard * shift
        cumhazard = baseline.cumhazard * shift
    else:
        hazard, cumhazard = baseline.evaluate(times)
        out_times = np.tile(times, baseline.n_strata)
        codes = np.repeat(np.arange(baseline.n_strata), len(times))
        hazard = hazard.ravel() * shift
        cumhazard = cumhazard.ravel() * shift

    result = PredictionResult(types, times=out_times if keep_times else None,
                              strata=_strata_labels(model, codes) if keep_strata else None,
                              centered=centered, last_event_time=baseline.last_times)
    if "hazard" in types:
        result.hazard = hazard
    if "cumhazard" in types:
        result.cumhazard = cumhazard
    if "survival" in types:
        result.survival = np.exp(-cumhazard)
    return result


def predict_cox(
    model: CoxModel,
    times=None,
    newdata: Optional[pd.DataFrame] = None,
    centered: bool = True,
    type: Union[str, Sequence[str]] = ("cumhazard", "survival"),
    keep_strata: bool = True,
    keep_times: bool = True,
    keep_newdata: bool = False,
    se: bool = False,
    band: bool = False,
    iid: bool = False,
    confint: Optional[bool] = None,
    diag: bool = False,
    average_iid: Union[bool, Mapping[str, np.ndarray]] = False,
    store_iid: str = "full",
    conf_level: float = 0.95,
    n_sim: int = 10000,
    seed: Optional[int] = None
) -> PredictionResult:
    """
    Predict hazard, cumulative hazard and survival from a Cox model.

    Parameters
    ----------
    model : CoxModel
        Fitted Cox model
    times : array-like, optional
        Evaluation times, in any order. Without ``newdata`` and ``times``,
        the baseline hazard is returned at every observed time.
    newdata : pd.DataFrame, optional
        Subjects to predict for; the baseline hazard is returned when omitted
    centered : bool
        Baseline at the mean covariate values (True) or at 0 (False).
        Ignored when ``newdata`` is given.
    type : str or list of str
        Outputs among "hazard", "cumhazard" and "survival"
    keep_strata, keep_times, keep_newdata : bool
        Store the strata labels, the times and a copy of ``newdata``
    se : bool
        Compute standard errors
    band : bool
        Compute confidence bands
    iid : bool
        Store the influence functions
    confint : bool, optional
        Compute confidence intervals (defaults to ``se or band``)
    diag : bool
        Predict subject i at time i only
    average_iid : bool or dict
        Influence function of the average prediction over ``newdata``: True
        for the plain average, or a mapping name -> factor where a factor is
        a vector over subjects or a (n_subjects, n_times) matrix of weights
    store_iid : str
        "full" computes the influence function of each subject; "minimal"
        only what standard errors and averages need
    conf_level : float
        Confidence level
    n_sim : int
        Number of simulations for the band critical values
    seed : int, optional
        Seed of the band simulations

    Returns
    -------
    PredictionResult

    Raises
    ------
    ValueError
        On invalid arguments or unsupported models
    """
    types = _normalize_types(type)
    if store_iid not in ("full", "minimal"):
        raise ValueError(f"Argument 'store_iid' must be 'full' or 'minimal', got '{store_iid}'")
    _check_model(model)
    times = TimeHandler.validate_times(times)
    wants_average = average_iid is not None and average_iid is not False
    if confint and not (se or band):
        raise ValueError("Argument 'confint' requires se=True or band=True")

    if newdata is None:
        if se or band or iid or wants_average:
            raise ValueError("Argument 'newdata' is required to compute standard errors, bands "
                             "or influence functions")
        table = EventTable.from_model(model, center=True)
        baseline = HazardEstimator.baseline_hazard(table, method=model.ties)
        logger.debug("Baseline hazard over %d strata", baseline.n_strata)
        return _baseline_prediction(model, baseline, times, types, centered, keep_strata, keep_times)

    if len(times) == 0:
        raise ValueError("Argument 'times' is required when 'newdata' is given")
    if diag:
        if len(times) != len(newdata):
            raise ValueError(f"When diag=True, 'times' must have the same length as 'newdata' "
                             f"({len(times)} != {len(newdata)})")
        if se or band or wants_average:
            raise ValueError("Standard errors, bands and average_iid are not available with diag=True")
        if iid and store_iid == "minimal":
            raise ValueError("store_iid='minimal' cannot be used with diag=True and iid=True")
    if (se or band) and "hazard" in types:
        raise ValueError("Standard errors and bands are not available for the hazard")

    n_subjects = len(newdata)
    if diag:
        sorted_times, inverse = times, None
        grid = times[:, None]
    else:
        sorted_times, inverse = TimeHandler.sort_times(times)
        grid = np.broadcast_to(sorted_times, (n_subjects, len(times)))

    factors = average_factors(average_iid, n_subjects, grid.shape[1])
    if inverse is not None:
        order = np.argsort(inverse)
        factors = {name: factor[:, order] for name, factor in factors.items()}

    Z, eXb, strata = subject_terms(model, newdata)
    needs_influence = se or band or iid or bool(factors)
    engine = CoxInfluence(model) if needs_influence else None
    if engine is not None:
        baseline = engine.baseline
    else:
        baseline = HazardEstimator.baseline_hazard(EventTable.from_model(model, center=True),
                                                   method=model.ties)
    hazard, cumhazard = _lookup(baseline, eXb, strata, grid)
    survival = np.exp(-cumhazard)

    result = PredictionResult(types, times=times if keep_times else None,
                              strata=_strata_labels(model, strata) if keep_strata else None,
                              diag=diag, newdata=newdata.copy() if keep_newdata else None,
                              last_event_time=baseline.last_times)
    result.has_newdata = True
    result.hazard = hazard if "hazard" in types else None
    result.cumhazard = cumhazard if "cumhazard" in types else None
    result.survival = survival if "survival" in types else None

    if engine is not None:
        full = band or iid or store_iid == "full"
        logger.debug("Influence functions for %d subjects at %d times (store_iid=%s)",
                     n_subjects, grid.shape[1], "full" if full else "minimal")
        for name in types:
            kind = "hazard" if name == "hazard" else "cumhazard"
            sign = -survival if name == "survival" else 1.0
            if full:
                values = engine.iid(Z, eXb, strata, grid, kind=kind)
                if name == "survival":
                    values = -survival[:, :, None] * values
                if se or band:
                    setattr(result, f"{name}_se", np.sqrt(np.sum(values ** 2, axis=2)))
                if iid or band:
                    setattr(result, f"{name}_iid", values)
                if factors:
                    setattr(result, f"{name}_average_iid", {
                        key: np.einsum("jt,jti->it", factor, values) / n_subjects
                        for key, factor in factors.items()
                    })
            else:
                if se:
                    values = engine.se(Z, eXb, strata, grid, kind=kind)
                    setattr(result, f"{name}_se", survival * values if name == "survival" else values)
                if factors:
                    setattr(result, f"{name}_average_iid", {
                        key: engine.average_iid(Z, eXb, strata, sorted_times, factor * sign, kind=kind)
                        for key, factor in factors.items()
                    })

    if inverse is not None:
        for name in types:
            for suffix in ("", "_se", "_iid"):
                setattr(result, name + suffix,
                        TimeHandler.restore_order(getattr(result, name + suffix), inverse, axis=1))
            averages = getattr(result, f"{name}_average_iid")
            if averages is not None:
                setattr(result, f"{name}_average_iid", {
                    key: TimeHandler.restore_order(values, inverse, axis=1)
                    for key, values in averages.items()
                })

    if confint is None:
        confint = se or band
    if confint or band:
        confint_predictions(result, [name for name in types if name != "hazard"],
                            conf_level=conf_level, band=band, n_sim=n_sim, seed=seed)
        if not confint:
            for name in types:
                setattr(result, f"{name}_lower", None)
                setattr(result, f"{name}_upper", None)
    if band and not se:
        for name in types:
            setattr(result, f"{name}_se", None)
    if band and not iid:
        for name in types:
            setattr(result, f"{name}_iid", None)
    return result


def _product_limit(baseline: BaselineHazard, eXb: np.ndarray, strata: np.ndarray,
                   times: np.ndarray) -> np.ndarray:
    """Product-limit survival of subjects over their stratum's jumps"""
    survival = np.zeros(times.shape)
    for s in np.unique(strata):
        members = np.flatnonzero(strata == s)
        jump_times, dLambda, _ = baseline.jumps(s)
        factors = np.clip(1 - eXb[members][:, None] * dLambda[None, :], 0, None)
        steps = np.hstack([np.ones((len(members), 1)), np.cumprod(factors, axis=1)])
        col = np.searchsorted(jump_times, times[members], side="right")
        values = np.take_along_axis(steps, col, axis=1)
        values[times[members] > baseline.last_times[s]] = np.nan
        survival[members] = values
    return survival


def predict_cox_pl(
    model: CoxModel,
    times,
    newdata: pd.DataFrame,
    keep_strata: bool = True,
    keep_times: bool = True,
    keep_newdata: bool = False,
    se: bool = False,
    iid: bool = False,
    confint: Optional[bool] = None,
    diag: bool = False,
    average_iid: Union[bool, Mapping[str, np.ndarray]] = False,
    store_iid: str = "full",
    conf_level: float = 0.95
) -> PredictionResult:
    """
    Predict survival with the product-limit estimator.

    The survival of a subject is ``prod(1 - exp(eta) dLambda_0)`` over the
    jumps of its stratum. Its influence function is approximated by the one
    of the exponential approximation ``exp(-Lambda)`` rescaled by the ratio
    of the two survival estimates.

    See :func:`predict_cox` for the parameters.
    """
    times = TimeHandler.validate_times(times)
    if newdata is None or len(times) == 0:
        raise ValueError("Arguments 'newdata' and 'times' are required for product-limit predictions")
    if confint and not se:
        raise ValueError("Argument 'confint' requires se=True")
    _check_model(model)

    n_subjects = len(newdata)
    if diag:
        if len(times) != n_subjects:
            raise ValueError(f"When diag=True, 'times' must have the same length as 'newdata' "
                             f"({len(times)} != {n_subjects})")
        grid = times[:, None]
    else:
        grid = np.broadcast_to(times, (n_subjects, len(times)))

    Z, eXb, strata = subject_terms(model, newdata)
    baseline = HazardEstimator.baseline_hazard(EventTable.from_model(model, center=True),
                                               method=model.ties)
    survival_pl = _product_limit(baseline, eXb, strata, grid)
    _, cumhazard = _lookup(baseline, eXb, strata, grid)
    with np.errstate(invalid="ignore"):
        ratio = survival_pl / np.exp(-cumhazard)

    factors = average_factors(average_iid, n_subjects, grid.shape[1])
    result = predict_cox(model, times, newdata, type="survival", keep_strata=keep_strata,
                         keep_times=keep_times, keep_newdata=keep_newdata, se=se, iid=iid,
                         confint=False, diag=diag,
                         average_iid={key: factor * ratio for key, factor in factors.items()} or False,
                         store_iid=store_iid, conf_level=conf_level)
    result.survival = survival_pl
    if result.survival_se is not None:
        result.survival_se = result.survival_se * ratio
    if result.survival_iid is not None:
        result.survival_iid = result.survival_iid * ratio[:, :, None]
    if (se if confint is None else confint) and result.survival_se is not None:
        result.confint(conf_level)
    return result
