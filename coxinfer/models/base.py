"""
Base class for fitted Cox regression models
"""

from abc import ABC, abstractmethod
from typing import List, Optional
import numpy as np
import pandas as pd


class CoxModel(ABC):
    """Abstract interface of a fitted Cox proportional hazards model.

    The baseline hazard estimator, the predictor and the influence function
    engine only rely on this interface, so any fitting routine can be used as
    long as its result is wrapped in a subclass.
    """

    @property
    @abstractmethod
    def n_obs(self) -> int:
        """Number of observations used to fit the model"""
        pass

    @property
    @abstractmethod
    def coefficients(self) -> np.ndarray:
        """Estimated regression coefficients (possibly empty)"""
        pass

    @property
    @abstractmethod
    def covariates(self) -> List[str]:
        """Names of the variables in the linear predictor"""
        pass

    @property
    @abstractmethod
    def ties(self) -> str:
        """Tie handling method: 'breslow', 'efron' or 'exact'"""
        pass

    @property
    @abstractmethod
    def strata_levels(self) -> List[str]:
        """Labels of the strata, empty for an unstratified model"""
        pass

    @property
    def weights(self) -> Optional[np.ndarray]:
        """Case weights used when fitting, None if unweighted"""
        return None

    @property
    def penalizer(self) -> float:
        """Ridge penalty used when fitting, 0 for the partial likelihood estimator"""
        return 0.0

    @property
    def is_stratified(self) -> bool:
        return len(self.strata_levels) > 0

    @abstractmethod
    def model_frame(self) -> pd.DataFrame:
        """
        Training data in model-frame form

        Returns
        -------
        pd.DataFrame
            Columns ``start``, ``stop``, ``status`` and ``strata`` (integer
            stratum code), one row per training observation in the original order
        """
        pass

    @abstractmethod
    def design_matrix(self, newdata: Optional[pd.DataFrame] = None) -> np.ndarray:
        """
        Design matrix of the linear predictor

        Parameters
        ----------
        newdata : pd.DataFrame, optional
            Data to evaluate; the training data when omitted

        Returns
        -------
        np.ndarray of shape (n_samples, n_coefficients)
        """
        pass

    @abstractmethod
    def strata_assignment(self, newdata: Optional[pd.DataFrame] = None) -> np.ndarray:
        """Integer stratum code of each row of ``newdata`` (training data if omitted)"""
        pass

    @property
    def means(self) -> np.ndarray:
        """Mean of the training design matrix"""
        design = self.design_matrix()
        if design.shape[1] == 0:
            return np.zeros(0)
        return design.mean(axis=0)

    def linear_predictor(self, newdata: Optional[pd.DataFrame] = None,
                         center: bool = False) -> np.ndarray:
        """
        Linear predictor

        Parameters
        ----------
        newdata : pd.DataFrame, optional
            Data to evaluate; the training data when omitted
        center : bool
            Subtract the linear predictor evaluated at the training means

        Returns
        -------
        np.ndarray of shape (n_samples,)
        """
        design = self.design_matrix(newdata)
        if design.shape[1] == 0:
            return np.zeros(design.shape[0])
        lp = design @ self.coefficients
        if center:
            lp = lp - self.means @ self.coefficients
        return lp
