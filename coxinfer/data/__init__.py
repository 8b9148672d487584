"""
Data structures for survival analysis
"""

from .data import Survival, CompetingRisks, EventTable
from .data_validator import DataValidator
from .simulation import sample_data

__all__ = [
    "Survival",
    "CompetingRisks",
    "EventTable",
    "DataValidator",
    "sample_data"
]
