"""
Pointwise confidence intervals and simultaneous confidence bands.
"""
from typing import Optional, Sequence
import numpy as np
from scipy import stats

# default scale on which the Gaussian approximation is applied
DEFAULT_TRANSFORMS = {
    "cumhazard": "log",
    "survival": "loglog",
    "absRisk": "cloglog",
}

PARAMETER_BOUNDS = {
    "cumhazard": (0.0, np.inf),
    "survival": (0.0, 1.0),
    "absRisk": (0.0, 1.0),
}


def _forward(estimate: np.ndarray, transform: str):
    """Transformed estimate and derivative of the transformation"""
    if transform == "none":
        return estimate, np.ones_like(estimate)
    if transform == "log":
        return np.log(estimate), 1 / estimate
    if transform == "loglog":
        return np.log(-np.log(estimate)), 1 / (estimate * np.log(estimate))
    if transform == "cloglog":
        return np.log(-np.log(1 - estimate)), -1 / ((1 - estimate) * np.log(1 - estimate))
    raise ValueError(f"Unknown transform '{transform}', must be one of 'none', 'log', 'loglog', 'cloglog'")


def _backward(values: np.ndarray, transform: str) -> np.ndarray:
    if transform == "none":
        return values
    if transform == "log":
        return np.exp(values)
    if transform == "loglog":
        return np.exp(-np.exp(values))
    return 1 - np.exp(-np.exp(values))


def gaussian_quantile(conf_level: float) -> float:
    """Two-sided standard normal quantile"""
    if not 0 < conf_level < 1:
        raise ValueError(f"conf_level must be in (0, 1), got {conf_level}")
    return float(stats.norm.ppf(1 - (1 - conf_level) / 2))


def transform_interval(
    estimate: np.ndarray,
    se: np.ndarray,
    quantile,
    transform: str = "none",
    bounds: Sequence[float] = (-np.inf, np.inf)
):
    """
    Gaussian interval computed on a transformed scale

    Parameters
    ----------
    estimate, se : np.ndarray
        Estimates and standard errors on the original scale
    quantile : float or np.ndarray
        Critical value, a scalar or one value per row (bands)
    transform : str
        "none", "log", "loglog" or "cloglog"
    bounds : tuple
        Parameter space used to clip the interval

    Returns
    -------
    lower, upper : np.ndarray
    """
    estimate = np.asarray(estimate, dtype=float)
    se = np.asarray(se, dtype=float)
    quantile = np.asarray(quantile, dtype=float)
    if quantile.ndim == 1:
        quantile = quantile[:, None]

    with np.errstate(divide="ignore", invalid="ignore", over="ignore"):
        center, derivative = _forward(estimate, transform)
        half_width = quantile * np.abs(derivative) * se
        first = _backward(center - half_width, transform)
        second = _backward(center + half_width, transform)
    lower = np.minimum(first, second)
    upper = np.maximum(first, second)

    degenerate = se == 0
    lower = np.where(degenerate, estimate, lower)
    upper = np.where(degenerate, estimate, upper)
    return np.clip(lower, *bounds), np.clip(upper, *bounds)


def band_quantile(
    iid: np.ndarray,
    se: np.ndarray,
    conf_level: float = 0.95,
    n_sim: int = 10000,
    seed: Optional[int] = None,
    chunk_size: int = 500
) -> np.ndarray:
    """
    Critical values of simultaneous confidence bands

    For each subject, the supremum over time of the standardised influence
    process ``|sum_i G_i IF_i(t) / se(t)|`` is simulated with independent
    standard normal multipliers ``G_i``; its ``conf_level`` quantile is the
    band critical value. Times with zero or undefined standard error are
    ignored.

    Parameters
    ----------
    iid : np.ndarray of shape (n_subjects, n_times, n_train)
    se : np.ndarray of shape (n_subjects, n_times)

    Returns
    -------
    np.ndarray of shape (n_subjects,)
    """
    rng = np.random.default_rng(seed)
    with np.errstate(divide="ignore", invalid="ignore"):
        standardized = iid / se[:, :, None]
    valid = np.isfinite(se) & (se > 0)
    standardized = np.where(valid[:, :, None], standardized, 0.0)
    standardized = np.nan_to_num(standardized)

    n_train = iid.shape[2]
    suprema = []
    for begin in range(0, n_sim, chunk_size):
        size = min(chunk_size, n_sim - begin)
        multipliers = rng.standard_normal((size, n_train))
        process = np.einsum("jti,mi->jmt", standardized, multipliers)
        suprema.append(np.abs(process).max(axis=2) if process.shape[2] else np.zeros(process.shape[:2]))
    return np.quantile(np.concatenate(suprema, axis=1), conf_level, axis=1)


def confint_predictions(
    result,
    types: Sequence[str],
    conf_level: float = 0.95,
    band: bool = False,
    n_sim: int = 10000,
    seed: Optional[int] = None,
    transform: Optional[str] = None
):
    """
    Add intervals (and bands) to a prediction result

    The result must expose ``<type>`` and ``<type>_se`` attributes, and
    ``<type>_iid`` when bands are requested. Bounds are written to
    ``<type>_lower``/``<type>_upper`` and ``<type>_lower_band``/
    ``<type>_upper_band``; band critical values to ``quantile_band``.
    """
    z = gaussian_quantile(conf_level)
    for name in types:
        if name not in DEFAULT_TRANSFORMS:
            continue
        estimate = getattr(result, name)
        se = getattr(result, f"{name}_se", None)
        how = transform or DEFAULT_TRANSFORMS[name]
        bounds = PARAMETER_BOUNDS[name]
        if se is not None:
            lower, upper = transform_interval(estimate, se, z, how, bounds)
            setattr(result, f"{name}_lower", lower)
            setattr(result, f"{name}_upper", upper)
        if band:
            iid = getattr(result, f"{name}_iid", None)
            if iid is None or se is None:
                raise ValueError(f"Bands for '{name}' require its influence function and standard error")
            quantile = band_quantile(iid, se, conf_level, n_sim=n_sim, seed=seed)
            result.quantile_band[name] = quantile
            lower, upper = transform_interval(estimate, se, quantile, how, bounds)
            setattr(result, f"{name}_lower_band", lower)
            setattr(result, f"{name}_upper_band", upper)
    result.conf_level = conf_level
    return result
