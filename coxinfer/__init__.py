"""
coxinfer: Cox model predictions with influence-function inference and
doubly robust average treatment effects
"""

__version__ = "0.1.0"

from .data import Survival, CompetingRisks, EventTable, sample_data
from .utils import HazardEstimator, predict_to_long
from .models import FittedCox, fit_cox, CauseSpecificCox, PropensityModel
from .inference import CoxInfluence
from .predictor import predict_cox, predict_cox_pl, PredictionResult
from .causal import ate_robust, RobustATE, ATEResult

__all__ = [
    "Survival",
    "CompetingRisks",
    "EventTable",
    "sample_data",
    "HazardEstimator",
    "predict_to_long",
    "FittedCox",
    "fit_cox",
    "CauseSpecificCox",
    "PropensityModel",
    "CoxInfluence",
    "predict_cox",
    "predict_cox_pl",
    "PredictionResult",
    "ate_robust",
    "RobustATE",
    "ATEResult"
]
