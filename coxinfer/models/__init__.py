"""
Cox, cause-specific Cox and propensity score models
"""

from .base import CoxModel
from .cox import FittedCox, fit_cox
from .competing_risks import CauseSpecificCox, AbsoluteRiskResult
from .propensity import PropensityModel

__all__ = [
    "CoxModel",
    "FittedCox",
    "fit_cox",
    "CauseSpecificCox",
    "AbsoluteRiskResult",
    "PropensityModel"
]
