"""
Cause-specific Cox regression for competing risks.
"""
import logging
from typing import Dict, List, Mapping, Optional, Sequence, Union
import numpy as np
import pandas as pd
from sklearn.base import BaseEstimator

from coxinfer.data import CompetingRisks, DataValidator
from coxinfer.models.cox import FittedCox, fit_cox
from coxinfer.inference.influence import CoxInfluence, subject_terms
from coxinfer.inference.confint import confint_predictions
from coxinfer.predictor import predict_cox
from coxinfer.utils.time_handler import TimeHandler
from coxinfer.utils.prediction_utils import sindex, average_factors

logger = logging.getLogger(__name__)

# key of the event-free survival model when surv_type="survival"
SURVIVAL_KEY = "survival"


class AbsoluteRiskResult:
    """Absolute risk of a cause predicted by a cause-specific Cox model.

    Attributes
    ----------
    absRisk : np.ndarray of shape (n_subjects, n_times)
        Absolute risk (cumulative incidence) of the cause of interest
    survival : np.ndarray of shape (n_subjects, n_times)
        Event-free survival
    absRisk_se, absRisk_iid, absRisk_average_iid
        Standard errors, influence functions (n_subjects, n_times, n_train)
        and influence functions of weighted averages (dict of
        (n_train, n_times) arrays), when requested
    absRisk_lower, absRisk_upper : np.ndarray
        Pointwise confidence intervals
    """

    def __init__(self, cause, times: Optional[np.ndarray], product_limit: bool,
                 newdata: Optional[pd.DataFrame] = None):
        self.types = ["absRisk"]
        self.cause = cause
        self.times = times
        self.product_limit = product_limit
        self.newdata = newdata
        self.strata = None
        self.diag = False
        self.conf_level = None
        self.quantile_band: Dict[str, np.ndarray] = {}
        self.survival = None
        for suffix in ("", "_se", "_iid", "_average_iid", "_lower", "_upper",
                       "_lower_band", "_upper_band"):
            setattr(self, "absRisk" + suffix, None)

    def confint(self, conf_level: float = 0.95, band: bool = False, n_sim: int = 10000,
                seed: Optional[int] = None, transform: Optional[str] = None) -> "AbsoluteRiskResult":
        """Confidence intervals (log-log transform of the risk by default)"""
        if self.absRisk_se is None:
            raise ValueError("Standard errors have not been computed: predict with se=True")
        return confint_predictions(self, ["absRisk"], conf_level=conf_level, band=band,
                                   n_sim=n_sim, seed=seed, transform=transform)

    def to_frame(self) -> pd.DataFrame:
        n_subjects, n_times = self.absRisk.shape
        frame = pd.DataFrame({
            "row": np.repeat(np.arange(n_subjects), n_times),
            "time": np.tile(self.times if self.times is not None else np.arange(n_times), n_subjects),
        })
        for name in ("absRisk", "absRisk_se", "absRisk_lower", "absRisk_upper", "survival"):
            values = getattr(self, name)
            if values is not None:
                frame[name] = np.asarray(values).ravel()
        return frame


class CauseSpecificCox(BaseEstimator):
    """Cause-specific Cox regression model.

    One Cox model is fitted for the hazard of each cause, treating the other
    causes as censoring. The absolute risk of the cause of interest is

    ``F(t) = sum_{u <= t} S(u-) dLambda_cause(u)``

    where the event-free survival ``S`` is either the exponential of minus
    the summed cumulative hazards or the product-limit over the summed
    hazard increments.

    Parameters
    ----------
    cause : int, optional
        Cause of interest, the smallest observed cause by default
    surv_type : str
        "hazard" to fit one model per cause, "survival" to fit the cause of
        interest and an event-free survival model
    penalizer : float
        Ridge penalty passed to the Cox fitter

    Attributes
    ----------
    models_ : dict
        Fitted Cox model of each cause (and of the event-free survival)
    causes_ : list
        Observed causes
    event_times_ : np.ndarray
        Distinct times at which any event was observed

    Examples
    --------
    >>> from coxinfer.data import sample_data
    >>> from coxinfer.models import CauseSpecificCox
    >>> d = sample_data(200, outcome="competing_risks", seed=1)
    >>> csc = CauseSpecificCox(cause=1).fit(d, "time", "event", ["X1", "X6"])
    >>> csc.predict(d.head(3), times=[2, 5]).absRisk.shape
    (3, 2)
    """

    def __init__(self, cause=None, surv_type: str = "hazard", penalizer: float = 0.0):
        self.cause = cause
        self.surv_type = surv_type
        self.penalizer = penalizer
        self.is_fitted_ = False

    def fit(
        self,
        data: pd.DataFrame,
        duration_col: str,
        event_col: str,
        covariates: Union[Sequence[str], Mapping[int, Sequence[str]]],
        strata: Optional[Union[str, Sequence[str]]] = None
    ) -> "CauseSpecificCox":
        """
        Fit the cause-specific Cox models.

        Parameters
        ----------
        data : pd.DataFrame
            Training data
        duration_col : str
            Column with the event/censoring times
        event_col : str
            Column with the cause (0 for censoring)
        covariates : list of str or dict
            Covariates shared by all models, or a mapping cause -> covariates
            (key "survival" for the event-free survival model)
        strata : str or list of str, optional
            Stratification columns shared by all models

        Returns
        -------
        self : CauseSpecificCox
            Fitted model
        """
        if self.surv_type not in ("hazard", "survival"):
            raise ValueError(f"surv_type must be 'hazard' or 'survival', got '{self.surv_type}'")
        DataValidator.validate_columns(data, [duration_col, event_col], name="data")
        y = CompetingRisks(data[duration_col], data[event_col])
        causes = y.causes
        if not causes:
            raise ValueError("No event observed in the data")
        cause = causes[0] if self.cause is None else self.cause
        if cause not in causes:
            raise ValueError(f"Cause {cause} is not among the observed causes {causes}")

        keys = list(causes) if self.surv_type == "hazard" else [cause, SURVIVAL_KEY]
        self.models_: Dict[object, FittedCox] = {}
        for key in keys:
            indicator = (y.event != 0) if key == SURVIVAL_KEY else (y.event == key)
            working = data.copy()
            working[event_col] = indicator.astype(int)
            if isinstance(covariates, Mapping):
                if key not in covariates:
                    raise ValueError(f"No covariates given for the model of '{key}'")
                model_covariates = covariates[key]
            else:
                model_covariates = covariates
            self.models_[key] = fit_cox(working, duration_col, event_col, covariates=model_covariates,
                                        strata=strata, penalizer=self.penalizer)

        self.causes_ = list(causes)
        self.cause_ = cause
        self.n_obs_ = len(y)
        self.event_times_ = y.event_times
        self.max_time_ = float(np.max(y.time))
        self.duration_col_ = duration_col
        self.event_col_ = event_col
        self.is_fitted_ = True
        logger.debug("Fitted cause-specific Cox models for %s (surv_type=%s)", keys, self.surv_type)
        return self

    def _check_is_fitted(self) -> None:
        if not self.is_fitted_:
            raise ValueError("Model must be fitted before prediction")

    def _resolve_cause(self, cause):
        cause = self.cause_ if cause is None else cause
        if cause not in self.models_ or cause == SURVIVAL_KEY:
            raise ValueError(f"No model for cause {cause}, fitted causes: "
                             f"{[key for key in self.models_ if key != SURVIVAL_KEY]}")
        return cause

    def _contributors(self) -> List:
        """Models whose hazards make up the event-free survival"""
        if self.surv_type == "survival":
            return [SURVIVAL_KEY]
        return list(self.causes_)

    def _grid(self, horizon: float) -> np.ndarray:
        return self.event_times_[self.event_times_ <= horizon]

    def _grid_hazards(self, newdata: pd.DataFrame, grid: np.ndarray, keys) -> Dict[object, np.ndarray]:
        if len(grid) == 0:
            return {key: np.zeros((len(newdata), 0)) for key in keys}
        return {key: predict_cox(self.models_[key], grid, newdata, type="hazard").hazard
                for key in keys}

    @staticmethod
    def _event_free(total: np.ndarray, product_limit: bool):
        """Event-free survival on the grid and the derivative factor of its log"""
        if product_limit:
            survival = np.cumprod(np.clip(1 - total, 0, None), axis=1)
            with np.errstate(divide="ignore"):
                ratio = np.where(total < 1, 1 / (1 - total), 0.0)
        else:
            survival = np.exp(-np.cumsum(total, axis=1))
            ratio = np.ones_like(total)
        return survival, ratio

    def predict_survival(self, newdata: pd.DataFrame, times, product_limit: bool = False) -> np.ndarray:
        """
        Event-free survival

        Returns
        -------
        np.ndarray of shape (n_subjects, n_times)
        """
        self._check_is_fitted()
        times = TimeHandler.validate_times(times)
        if len(times) == 0:
            raise ValueError("Argument 'times' must not be empty")
        grid = self._grid(np.max(times))
        hazards = self._grid_hazards(newdata, grid, self._contributors())
        total = sum(hazards.values())
        survival, _ = self._event_free(total, product_limit)
        padded = np.hstack([np.ones((len(newdata), 1)), survival])
        out = padded[:, sindex(grid, times)]
        out[:, times > self.max_time_] = np.nan
        return out

    def predict(
        self,
        newdata: pd.DataFrame,
        times,
        cause=None,
        product_limit: bool = False,
        se: bool = False,
        iid: bool = False,
        average_iid: Union[bool, Mapping[str, np.ndarray]] = False,
        band: bool = False,
        keep_times: bool = True,
        keep_newdata: bool = False,
        conf_level: float = 0.95,
        n_sim: int = 10000,
        seed: Optional[int] = None
    ) -> AbsoluteRiskResult:
        """
        Predict the absolute risk of a cause.

        Parameters
        ----------
        newdata : pd.DataFrame
            Subjects to predict for
        times : array-like
            Evaluation times, any order
        cause : optional
            Cause of interest (the one given at construction by default)
        product_limit : bool
            Product-limit (True) or exponential approximation (False) of the
            event-free survival
        se, iid : bool
            Compute the standard errors / store the influence functions
        average_iid : bool or dict
            Influence function of weighted averages of the risk over
            ``newdata`` (see :func:`coxinfer.predictor.predict_cox`)
        band : bool
            Compute confidence bands
        conf_level : float
            Confidence level of the intervals

        Returns
        -------
        AbsoluteRiskResult
        """
        self._check_is_fitted()
        cause = self._resolve_cause(cause)
        times = TimeHandler.validate_times(times)
        if len(times) == 0:
            raise ValueError("Argument 'times' must not be empty")
        sorted_times, inverse = TimeHandler.sort_times(times)
        n_subjects = len(newdata)
        factors = average_factors(average_iid, n_subjects, len(times))
        if inverse is not None:
            order = np.argsort(inverse)
            factors = {name: factor[:, order] for name, factor in factors.items()}

        grid = self._grid(sorted_times[-1])
        contributors = self._contributors()
        keys = list(dict.fromkeys([cause] + contributors))
        hazards = self._grid_hazards(newdata, grid, keys)
        total = sum(hazards[key] for key in contributors)
        survival, ratio = self._event_free(total, product_limit)
        survival_minus = np.hstack([np.ones((n_subjects, 1)), survival[:, :-1]])
        increments = survival_minus * hazards[cause]
        cuminc = np.cumsum(increments, axis=1)

        col = sindex(grid, sorted_times)
        outside = sorted_times > self.max_time_
        absRisk = np.hstack([np.zeros((n_subjects, 1)), cuminc])[:, col]
        event_free = np.hstack([np.ones((n_subjects, 1)), survival])[:, col]
        absRisk[:, outside] = np.nan
        event_free[:, outside] = np.nan

        result = AbsoluteRiskResult(cause, times if keep_times else None, product_limit,
                                    newdata=newdata.copy() if keep_newdata else None)
        result.absRisk = absRisk
        result.survival = event_free

        if se or iid or band or factors:
            engines = {key: CoxInfluence(self.models_[key]) for key in keys}
            terms = {key: subject_terms(self.models_[key], newdata) for key in keys}
        if se or iid or band:
            grid_matrix = np.broadcast_to(grid, (n_subjects, len(grid)))
            hazard_iid = {key: engines[key].iid(*terms[key], grid_matrix, kind="hazard") for key in keys}
            total_iid = sum(hazard_iid[key] for key in contributors) * ratio[:, :, None]
            shifted = np.cumsum(total_iid, axis=1) - total_iid
            values = np.cumsum(-increments[:, :, None] * shifted +
                               survival_minus[:, :, None] * hazard_iid[cause], axis=1)
            values = np.concatenate([np.zeros((n_subjects, 1, self.n_obs_)), values], axis=1)[:, col]
            values[:, outside] = np.nan
            if se or band:
                result.absRisk_se = np.sqrt(np.sum(values ** 2, axis=2))
            if iid or band:
                result.absRisk_iid = values
        if factors:
            result.absRisk_average_iid = {
                name: self._average_iid(engines, terms, cause, contributors, grid, sorted_times,
                                        survival_minus, ratio, cuminc, absRisk, factor)
                for name, factor in factors.items()
            }

        if inverse is not None:
            for name in ("absRisk", "survival", "absRisk_se", "absRisk_iid"):
                setattr(result, name, TimeHandler.restore_order(getattr(result, name), inverse, axis=1))
            if result.absRisk_average_iid is not None:
                result.absRisk_average_iid = {
                    name: TimeHandler.restore_order(values, inverse, axis=1)
                    for name, values in result.absRisk_average_iid.items()
                }
        if se or band:
            confint_predictions(result, ["absRisk"], conf_level=conf_level, band=band,
                                n_sim=n_sim, seed=seed)
            if band and not se:
                result.absRisk_se = None
            if band and not iid:
                result.absRisk_iid = None
        return result

    def _average_iid(self, engines, terms, cause, contributors, grid, times, survival_minus,
                     ratio, cuminc, absRisk, factor) -> np.ndarray:
        """Influence function of the weighted average absolute risk.

        Swapping the sums over the grid turns the survival term into a
        hazard average with weights ``-ratio(u) (F(t) - F(u))`` over the grid
        times u before t, so each model is only averaged, never expanded.
        """
        out = np.zeros((self.n_obs_, len(times)))
        for q, t in enumerate(times):
            if t > self.max_time_:
                out[:, q] = np.nan
                continue
            weight = factor[:, q][:, None]
            upto = grid <= t
            if upto.any():
                direct = engines[cause].average_iid(*terms[cause], grid, weight * survival_minus * upto,
                                                    kind="hazard")
                out[:, q] += direct[:, upto].sum(axis=1)
            before = grid < t
            if before.any():
                remaining = -weight * ratio * (absRisk[:, q][:, None] - cuminc) * before
                for key in contributors:
                    indirect = engines[key].average_iid(*terms[key], grid, remaining, kind="hazard")
                    out[:, q] += indirect[:, before].sum(axis=1)
        return out
