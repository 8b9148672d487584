"""
Doubly robust estimation of the average treatment effect on the absolute
risk at a fixed horizon, under right censoring.
"""
import logging
from typing import Dict, List, Mapping, Optional, Sequence, Union
import numpy as np
import pandas as pd
from sklearn.base import BaseEstimator

from coxinfer.data import DataValidator
from coxinfer.models.cox import FittedCox, fit_cox
from coxinfer.models.competing_risks import CauseSpecificCox
from coxinfer.models.propensity import PropensityModel
from coxinfer.predictor import predict_cox, predict_cox_pl
from coxinfer.inference.confint import gaussian_quantile
from coxinfer.utils.time_handler import TimeHandler
from coxinfer.causal.schema import WorkingSchema

logger = logging.getLogger(__name__)

# evaluate the censoring survival just before each subject's time
LEFT_LIMIT_OFFSET = 1e-10

ROWS = ["risk_0", "risk_1", "ate_diff"]


class ATEResult:
    """Average treatment effect estimated by several estimators.

    Attributes
    ----------
    value, se, lower, upper : pd.DataFrame
        One row per quantity (``risk_0``, ``risk_1``, ``ate_diff``) and one
        column per estimator
    iid : dict
        Centred influence function of each estimator, a (n_obs, 2) array
        with one column per treatment arm
    n_censor : int
        Number of observations censored before the horizon
    level_treatment : list
        Treatment levels; the first one is arm 0
    working_table : pd.DataFrame
        Working copy of the data with the derived columns
    """

    def __init__(self, value: pd.DataFrame, se: Optional[pd.DataFrame], iid: Dict[str, np.ndarray],
                 n_censor: int, level_treatment: list, working_table: pd.DataFrame,
                 augment_cens: bool, product_limit: bool, conf_level: float = 0.95):
        self.value = value
        self.se = se
        self.iid = iid
        self.n_censor = n_censor
        self.level_treatment = level_treatment
        self.working_table = working_table
        self.augment_cens = augment_cens
        self.product_limit = product_limit
        self.lower = None
        self.upper = None
        self.conf_level = None
        if se is not None:
            self.confint(conf_level)

    @property
    def estimators(self) -> List[str]:
        return list(self.value.columns)

    def confint(self, conf_level: float = 0.95) -> "ATEResult":
        """Gaussian confidence intervals"""
        if self.se is None:
            raise ValueError("Standard errors have not been computed: use se=True")
        z = gaussian_quantile(conf_level)
        self.lower = self.value - z * self.se
        self.upper = self.value + z * self.se
        self.conf_level = conf_level
        return self

    def to_frame(self) -> pd.DataFrame:
        """Long table with one row per estimator and quantity"""
        def long(table: pd.DataFrame, name: str) -> pd.DataFrame:
            return table.rename_axis("quantity").reset_index().melt(
                id_vars="quantity", var_name="estimator", value_name=name)

        frame = long(self.value, "value")
        for name in ("se", "lower", "upper"):
            table = getattr(self, name)
            if table is not None:
                frame[name] = long(table, name)[name].to_numpy()
        return frame[["estimator", "quantity"] + [col for col in frame.columns
                                                   if col not in ("estimator", "quantity")]]

    def __repr__(self) -> str:
        return f"ATEResult(levels={self.level_treatment}, n_censor={self.n_censor})\n{self.value}"


def _predict_survival(model: FittedCox, times, newdata: pd.DataFrame, product_limit: bool, **kwargs):
    if product_limit:
        return predict_cox_pl(model, times, newdata, **kwargs)
    return predict_cox(model, times, newdata, type="survival", **kwargs)


def _arm_factors(treated: np.ndarray, prob_treatment: np.ndarray) -> Dict[str, Dict[str, np.ndarray]]:
    """Weights of the outcome-model influence functions, per arm and estimator"""
    ones = np.ones(len(treated))
    return {
        "0": {"Gformula": ones, "AIPW": 1 - (1 - treated) / (1 - prob_treatment)},
        "1": {"Gformula": ones, "AIPW": 1 - treated / prob_treatment},
    }


def _censoring_term(working: pd.DataFrame, tau: float, censor_model: FittedCox, event_model,
                    type: str, product_limit: bool, cause) -> np.ndarray:
    """Augmentation term of the censoring martingale.

    ``L_i = sum_{u <= tau} 1(u <= T_i) E[risk(tau) | T > u, X_i] / S_C(u- | X_i)
    (dN^C_i(u) - dLambda^C_i(u))`` over the jump times u of the censoring
    model.
    """
    frame = censor_model.model_frame()
    stop = frame["stop"].to_numpy()
    status = frame["status"].to_numpy()
    jumps = np.unique(stop[(status == 1) & (stop <= tau)])
    if len(jumps) == 0:
        return np.zeros(len(working))

    risk_tau = working["prob_event"].to_numpy()[:, None]
    if type == "survival":
        risk_time = 1 - _predict_survival(event_model, jumps, working, product_limit).survival
        with np.errstate(divide="ignore", invalid="ignore"):
            conditional = (risk_tau - risk_time) / (1 - risk_time)
    else:
        risk_time = event_model.predict(working, jumps, cause=cause, product_limit=product_limit).absRisk
        survival_time = event_model.predict_survival(working, jumps, product_limit=product_limit)
        with np.errstate(divide="ignore", invalid="ignore"):
            conditional = (risk_tau - risk_time) / survival_time

    at_risk = jumps[None, :] <= stop[:, None]
    dN = (jumps[None, :] == stop[:, None]) * status[:, None]
    dLambda = predict_cox(censor_model, jumps, working, type="hazard").hazard
    survival_censoring = _predict_survival(censor_model, jumps, working, product_limit).survival
    survival_minus = np.hstack([np.ones((len(working), 1)), survival_censoring[:, :-1]])
    return np.sum(at_risk * conditional / survival_minus * (dN - dLambda), axis=1)


def ate_robust(
    data: pd.DataFrame,
    times,
    treatment: str,
    duration_col: str,
    event_col: str,
    event_covariates: Union[Sequence[str], Mapping[int, Sequence[str]]],
    censor_covariates: Optional[Sequence[str]],
    treatment_covariates: Optional[Sequence[str]],
    type: str = "survival",
    cause=None,
    product_limit: Optional[bool] = None,
    se: bool = True,
    augment_cens: bool = True,
    na_rm: bool = False,
    conf_level: float = 0.95,
    event_strata: Optional[Union[str, Sequence[str]]] = None,
    censor_strata: Optional[Union[str, Sequence[str]]] = None,
    nuisance_aipw: bool = False
) -> ATEResult:
    """
    Average treatment effect with G-formula, IPW and doubly robust estimators.

    Three nuisance models are fitted: a Cox model (or cause-specific Cox
    models) for the event, a Cox model for the censoring and a logistic
    model for the treatment. The estimators are

    - ``Gformula``: average of the predicted risks under each treatment
    - ``IPTW.IPCW``: inverse probability of treatment and censoring weighting
    - ``AIPTW.IPCW``: IPTW.IPCW augmented with the outcome model
    - ``IPTW.AIPCW`` and ``AIPTW.AIPCW``: the above augmented with the
      censoring martingale term (when ``augment_cens``)

    Parameters
    ----------
    data : pd.DataFrame
        Input data, left unchanged
    times : float
        Time horizon (a single value)
    treatment : str
        Binary treatment column; its sorted levels define arms 0 and 1
    duration_col, event_col : str
        Time and event columns (0 for censoring)
    event_covariates : list of str or dict
        Covariates of the event model(s), usually including ``treatment``
    censor_covariates, treatment_covariates : list of str
        Covariates of the censoring and treatment models
    type : str
        "survival" or "competing_risks"
    cause : optional
        Cause of interest for competing risks
    product_limit : bool, optional
        Product-limit survival estimates (default False for survival and
        True for competing risks)
    se : bool
        Compute standard errors, accounting for the estimation of the
        nuisance parameters
    augment_cens : bool
        Add the censoring augmentation term
    na_rm : bool
        Drop observations with missing influence function values
    conf_level : float
        Confidence level
    event_strata, censor_strata : str or list of str, optional
        Stratification of the event and censoring models
    nuisance_aipw : bool
        Also propagate the estimation of the nuisance parameters in the
        AIPTW estimators. Only meant for simulation studies.

    Returns
    -------
    ATEResult
    """
    tau = TimeHandler.validate_horizon(times)
    schema = WorkingSchema()
    schema.validate(data)
    DataValidator.validate_columns(data, [treatment, duration_col, event_col], name="data")
    level_treatment = DataValidator.validate_binary_treatment(data[treatment], treatment)
    if type not in ("survival", "competing_risks"):
        raise ValueError(f"type must be 'survival' or 'competing_risks', got '{type}'")
    if product_limit is None:
        product_limit = type == "competing_risks"
    if type == "survival" and data[event_col].nunique() > 2:
        raise ValueError("type='survival' can handle at most 2 types of events")

    covariate_lists = list(event_covariates.values()) if isinstance(event_covariates, Mapping) \
        else [event_covariates]
    used = ([duration_col, event_col, treatment] +
            [col for covariates in covariate_lists for col in covariates] +
            list(censor_covariates or []) + list(treatment_covariates or []))
    for strata in (event_strata, censor_strata):
        if strata is not None:
            used += [strata] if isinstance(strata, str) else list(strata)
    working = schema.build(data, used)
    n_obs = len(working)

    treated = (working[treatment] == level_treatment[1]).to_numpy().astype(float)
    working[treatment] = treated.astype(int)
    working["treatment_bin"] = treated
    working["times"] = tau

    # event model
    if type == "survival":
        event_model = fit_cox(working, duration_col, event_col, covariates=event_covariates,
                              strata=event_strata)
        frame = event_model.model_frame()
        stop = frame["stop"].to_numpy()
        status = frame["status"].to_numpy()
        event_of_interest = status == 1
    else:
        event_model = CauseSpecificCox(cause=cause).fit(working, duration_col, event_col,
                                                        event_covariates, strata=event_strata)
        cause = event_model.cause_
        stop = working[duration_col].to_numpy(dtype=float)
        status = (working[event_col] != 0).to_numpy().astype(int)
        event_of_interest = (working[event_col] == cause).to_numpy()
    n_censor = int(np.sum((status == 0) & (stop <= tau)))
    logger.debug("%d observation(s) censored before the horizon %g", n_censor, tau)

    working["status_event"] = status
    working["status_censor"] = 1 - status
    working["time_tau"] = np.minimum(stop, tau)
    working["status_tau"] = ((stop <= tau) & event_of_interest).astype(float)
    working["censoring_tau"] = ((stop >= tau) | ((stop < tau) & (status != 0))).astype(float)

    # treatment model
    propensity = PropensityModel(covariates=treatment_covariates).fit(working, treatment)
    prob_treatment = propensity.predict(working)
    working["prob_treatment"] = prob_treatment

    # censoring model
    censor_model = None
    if n_censor > 0:
        censor_model = fit_cox(working, duration_col, "status_censor", covariates=censor_covariates,
                               strata=censor_strata)

    # outcome model: factual and counterfactual risks
    data0 = working.copy()
    data0[treatment] = 0
    data1 = working.copy()
    data1[treatment] = 1
    factors = _arm_factors(treated, prob_treatment) if se else {"0": False, "1": False}
    nuisance_event = {}
    if type == "survival":
        working["prob_event"] = 1 - _predict_survival(event_model, [tau], working, product_limit).survival[:, 0]
        for arm, newdata in (("0", data0), ("1", data1)):
            prediction = _predict_survival(event_model, [tau], newdata, product_limit,
                                           average_iid=factors[arm], store_iid="minimal")
            working[f"prob_event{arm}"] = 1 - prediction.survival[:, 0]
            if se:
                nuisance_event[arm] = {name: -values[:, 0]
                                       for name, values in prediction.survival_average_iid.items()}
    else:
        working["prob_event"] = event_model.predict(working, [tau], cause=cause,
                                                    product_limit=product_limit).absRisk[:, 0]
        for arm, newdata in (("0", data0), ("1", data1)):
            prediction = event_model.predict(newdata, [tau], cause=cause, product_limit=product_limit,
                                             average_iid=factors[arm])
            working[f"prob_event{arm}"] = prediction.absRisk[:, 0]
            if se:
                nuisance_event[arm] = {name: values[:, 0]
                                       for name, values in prediction.absRisk_average_iid.items()}

    # censoring weights
    if n_censor == 0:
        working["prob_censoring"] = 1.0
        working["prob_indiv_censoring"] = 1.0
        working["weights"] = 1.0
    else:
        working["prob_censoring"] = _predict_survival(censor_model, [tau], working,
                                                      product_limit).survival[:, 0]
        indiv_times = working["time_tau"].to_numpy() - LEFT_LIMIT_OFFSET
        working["prob_indiv_censoring"] = _predict_survival(censor_model, indiv_times, working,
                                                            product_limit, diag=True).survival[:, 0]
        working["weights"] = np.where(stop <= tau,
                                      working["censoring_tau"] / working["prob_indiv_censoring"],
                                      working["censoring_tau"] / working["prob_censoring"])

    weights = working["weights"].to_numpy()
    outcome = working["status_tau"].to_numpy()
    prob_event0 = working["prob_event0"].to_numpy()
    prob_event1 = working["prob_event1"].to_numpy()

    # treatment model nuisance
    if se:
        projection = propensity.average_iid({
            "IPW0": weights * (1 - treated) * outcome / (1 - prob_treatment) ** 2,
            "IPW1": weights * treated * outcome / prob_treatment ** 2,
            "AIPW0": (1 - treated) * prob_event0 / (1 - prob_treatment) ** 2,
            "AIPW1": treated * prob_event1 / prob_treatment ** 2,
        }, working)
        nuisance_ipw = np.column_stack([projection["IPW0"], -projection["IPW1"]])
        nuisance_treatment_aipw = np.column_stack([-projection["AIPW0"], projection["AIPW1"]])

    if augment_cens:
        if n_censor == 0:
            working["Lterm"] = 0.0
        else:
            working["Lterm"] = _censoring_term(working, tau, censor_model, event_model, type,
                                               product_limit, cause)

    # influence functions, summing to the estimates
    IF = {}
    IF["Gformula"] = np.column_stack([prob_event0, prob_event1]) / n_obs
    IF["IPTW.IPCW"] = np.column_stack([
        weights * outcome * (1 - treated) / (1 - prob_treatment),
        weights * outcome * treated / prob_treatment,
    ]) / n_obs
    aipw_term = np.column_stack([
        prob_event0 * (1 - (1 - treated) / (1 - prob_treatment)),
        prob_event1 * (1 - treated / prob_treatment),
    ]) / n_obs
    IF["AIPTW.IPCW"] = IF["IPTW.IPCW"] + aipw_term

    if se:
        IF["Gformula"] = IF["Gformula"] + np.column_stack([nuisance_event["0"]["Gformula"],
                                                          nuisance_event["1"]["Gformula"]])
        IF["IPTW.IPCW"] = IF["IPTW.IPCW"] + nuisance_ipw
        if nuisance_aipw:
            nuisance_event_aipw = np.column_stack([nuisance_event["0"]["AIPW"], nuisance_event["1"]["AIPW"]])
            IF["AIPTW.IPCW"] = IF["AIPTW.IPCW"] + nuisance_event_aipw + nuisance_ipw + nuisance_treatment_aipw

    if augment_cens:
        Lterm = working["Lterm"].to_numpy()
        augment_term = np.column_stack([
            Lterm * (1 - treated) / (1 - prob_treatment),
            Lterm * treated / prob_treatment,
        ]) / n_obs
        IF["IPTW.AIPCW"] = IF["IPTW.IPCW"] + augment_term
        IF["AIPTW.AIPCW"] = IF["AIPTW.IPCW"] + augment_term

    value = pd.DataFrame(index=ROWS, columns=list(IF), dtype=float)
    se_table = pd.DataFrame(index=ROWS, columns=list(IF), dtype=float) if se else None
    for name in IF:
        values = IF[name]
        if na_rm:
            values = values[~np.isnan(values).any(axis=1)]
        estimate = values.sum(axis=0)
        values = values - estimate / n_obs
        IF[name] = values
        value.loc[["risk_0", "risk_1"], name] = estimate
        if se:
            se_table.loc[["risk_0", "risk_1"], name] = np.sqrt(np.sum(values ** 2, axis=0))
            se_table.loc["ate_diff", name] = np.sqrt(np.sum((values[:, 1] - values[:, 0]) ** 2))
    value.loc["ate_diff"] = value.loc["risk_1"] - value.loc["risk_0"]

    return ATEResult(value, se_table, IF if se else {}, n_censor, level_treatment, working,
                     augment_cens=augment_cens, product_limit=product_limit, conf_level=conf_level)


class RobustATE(BaseEstimator):
    """Estimator form of :func:`ate_robust`.

    The constructor takes the arguments of :func:`ate_robust` except the
    data; :meth:`fit` stores the result in ``result_``.

    Examples
    --------
    >>> from coxinfer.data import sample_data
    >>> from coxinfer.causal import RobustATE
    >>> d = sample_data(300, seed=3)
    >>> est = RobustATE(times=3, treatment="X1", duration_col="time", event_col="event",
    ...                 event_covariates=["X1", "X6"], censor_covariates=["X6"],
    ...                 treatment_covariates=["X6"]).fit(d)
    >>> est.result_.value.loc["ate_diff"]  # doctest: +SKIP
    """

    def __init__(self, times=None, treatment=None, duration_col="time", event_col="event",
                 event_covariates=None, censor_covariates=None, treatment_covariates=None,
                 type="survival", cause=None, product_limit=None, se=True, augment_cens=True,
                 na_rm=False, conf_level=0.95, event_strata=None, censor_strata=None,
                 nuisance_aipw=False):
        self.times = times
        self.treatment = treatment
        self.duration_col = duration_col
        self.event_col = event_col
        self.event_covariates = event_covariates
        self.censor_covariates = censor_covariates
        self.treatment_covariates = treatment_covariates
        self.type = type
        self.cause = cause
        self.product_limit = product_limit
        self.se = se
        self.augment_cens = augment_cens
        self.na_rm = na_rm
        self.conf_level = conf_level
        self.event_strata = event_strata
        self.censor_strata = censor_strata
        self.nuisance_aipw = nuisance_aipw
        self.is_fitted_ = False

    def fit(self, data: pd.DataFrame) -> "RobustATE":
        """
        Estimate the average treatment effect on ``data``

        Returns
        -------
        self : RobustATE
        """
        if self.times is None or self.treatment is None or self.event_covariates is None:
            raise ValueError("Arguments 'times', 'treatment' and 'event_covariates' are required")
        self.result_ = ate_robust(data, **self.get_params())
        self.value_ = self.result_.value
        self.se_ = self.result_.se
        self.is_fitted_ = True
        return self
