"""
Doubly robust average treatment effects under right censoring
"""

from .schema import WorkingSchema, RESERVED_COLUMNS
from .ate_robust import ate_robust, RobustATE, ATEResult

__all__ = [
    "WorkingSchema",
    "RESERVED_COLUMNS",
    "ate_robust",
    "RobustATE",
    "ATEResult"
]
