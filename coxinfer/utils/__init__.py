"""
Utility functions for baseline hazards, evaluation times and prediction export
"""

from .hazard_estimation import HazardEstimator, BaselineHazard
from .time_handler import TimeHandler
from .prediction_utils import sindex, predict_to_long, average_factors

__all__ = [
    "HazardEstimator",
    "BaselineHazard",
    "TimeHandler",
    "sindex",
    "predict_to_long",
    "average_factors"
]
