"""
Data validation utilities for Cox model inputs
"""

import numpy as np
import pandas as pd
from typing import Optional, Sequence


class DataValidator:
    """Validator for fitted-model inputs and prediction data"""

    @staticmethod
    def validate_columns(data: pd.DataFrame, columns: Sequence[str],
                         name: str = "newdata") -> None:
        """Check that all ``columns`` are present in ``data``

        Raises
        ------
        ValueError
            If one or several columns are missing
        """
        if not isinstance(data, pd.DataFrame):
            raise ValueError(f"Argument '{name}' must be a pandas DataFrame, got {type(data).__name__}")
        missing = [col for col in columns if col not in data.columns]
        if missing:
            raise ValueError(f"Missing variables in argument '{name}': " +
                             ", ".join(f'"{col}"' for col in missing))

    @staticmethod
    def validate_design(design: np.ndarray, n_rows: int) -> np.ndarray:
        """Reject rows of a design matrix that contain missing values

        Rows with missing covariate values would be dropped when building the
        design matrix, which then no longer lines up with ``newdata``.
        """
        complete = ~np.isnan(design).any(axis=1) if design.shape[1] > 0 else np.ones(n_rows, dtype=bool)
        if int(complete.sum()) != n_rows:
            raise ValueError(
                f"Number of rows of the design matrix ({int(complete.sum())}) and newdata ({n_rows}) differ, "
                "maybe because newdata contains missing values")
        return design

    @staticmethod
    def validate_coefficients(coefficients: np.ndarray) -> np.ndarray:
        """Reject coefficient vectors containing missing values"""
        coefficients = np.asarray(coefficients, dtype=float).ravel()
        if np.any(np.isnan(coefficients)):
            raise ValueError("Incorrect model: one or several model parameters have been estimated to be NaN")
        return coefficients

    @staticmethod
    def validate_weights(weights: Optional[np.ndarray]) -> None:
        """Only unit case weights are supported"""
        if weights is not None and not np.all(np.asarray(weights) == 1):
            raise ValueError("Cannot handle Cox models fitted with case weights other than 1")

    @staticmethod
    def validate_ties(ties: str) -> str:
        """Check the tie-handling method of a fitted model"""
        ties = str(ties).lower()
        if ties == "exact":
            raise ValueError("Prediction with exact handling of ties is not implemented")
        if ties not in ("breslow", "efron"):
            raise ValueError(f"ties must be 'breslow' or 'efron', got '{ties}'")
        return ties

    @staticmethod
    def validate_binary_treatment(values: pd.Series, name: str) -> list:
        """Return the two sorted levels of a treatment variable"""
        if values.isna().any():
            raise ValueError(f"Treatment variable \"{name}\" contains missing values")
        levels = sorted(values.unique().tolist())
        if len(levels) != 2:
            raise ValueError(f"Only implemented for binary treatment variables, \"{name}\" has "
                             f"{len(levels)} level(s): {levels}")
        return levels
