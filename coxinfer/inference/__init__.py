"""
Influence functions, confidence intervals and confidence bands
"""

from .influence import CoxInfluence
from .confint import (
    band_quantile,
    confint_predictions,
    gaussian_quantile,
    transform_interval
)

__all__ = [
    "CoxInfluence",
    "band_quantile",
    "confint_predictions",
    "gaussian_quantile",
    "transform_interval"
]
