"""
Logistic regression propensity score model with influence functions.
"""
import logging
from typing import Dict, List, Mapping, Optional, Sequence, Union
import numpy as np
import pandas as pd
from scipy import linalg
from scipy.special import expit, logit
from sklearn.base import BaseEstimator
from sklearn.linear_model import LogisticRegression

from coxinfer.data import DataValidator

logger = logging.getLogger(__name__)


class PropensityModel(BaseEstimator):
    """Unpenalised logistic regression of a binary treatment.

    Parameters
    ----------
    covariates : list of str, optional
        Numeric covariates; an intercept-only model when empty
    max_iter : int
        Maximum number of iterations of the solver

    Attributes
    ----------
    levels_ : list
        Sorted treatment levels; the probability of the second one is modelled
    intercept_ : float
    coef_ : np.ndarray
    """

    def __init__(self, covariates: Optional[Sequence[str]] = None, max_iter: int = 1000):
        self.covariates = covariates
        self.max_iter = max_iter
        self.is_fitted_ = False

    def _design(self, data: pd.DataFrame) -> np.ndarray:
        covariates = list(self.covariates or [])
        DataValidator.validate_columns(data, covariates)
        X = data[covariates].to_numpy(dtype=float) if covariates else np.zeros((len(data), 0))
        DataValidator.validate_design(X, len(data))
        return np.hstack([np.ones((len(data), 1)), X])

    def fit(self, data: pd.DataFrame, treatment_col: str) -> "PropensityModel":
        """
        Fit the propensity score model.

        Parameters
        ----------
        data : pd.DataFrame
            Training data
        treatment_col : str
            Binary treatment column

        Returns
        -------
        self : PropensityModel
            Fitted model
        """
        DataValidator.validate_columns(data, [treatment_col], name="data")
        self.levels_ = DataValidator.validate_binary_treatment(data[treatment_col], treatment_col)
        treated = (data[treatment_col] == self.levels_[1]).to_numpy().astype(float)
        X = self._design(data)

        if X.shape[1] == 1:
            self.intercept_ = float(logit(treated.mean()))
            self.coef_ = np.zeros(0)
        else:
            clf = LogisticRegression(C=np.inf, max_iter=self.max_iter)
            clf.fit(X[:, 1:], treated)
            self.intercept_ = float(clf.intercept_[0])
            self.coef_ = clf.coef_[0].copy()

        self.treatment_col_ = treatment_col
        self.n_obs_ = len(data)
        self._X = X
        self._treated = treated
        self.is_fitted_ = True
        logger.debug("Fitted propensity model: intercept=%.4g, coef=%s", self.intercept_, self.coef_)
        return self

    def _check_is_fitted(self) -> None:
        if not self.is_fitted_:
            raise ValueError("Model must be fitted before prediction")

    @property
    def params_(self) -> np.ndarray:
        return np.concatenate([[self.intercept_], self.coef_])

    def predict(self, newdata: Optional[pd.DataFrame] = None) -> np.ndarray:
        """Probability of the second treatment level"""
        self._check_is_fitted()
        X = self._X if newdata is None else self._design(newdata)
        return expit(X @ self.params_)

    def iid(self) -> np.ndarray:
        """
        Influence function of the coefficients (intercept first)

        Returns
        -------
        np.ndarray of shape (n_obs, n_params)
            ``(X'WX)^{-1} x_i (A_i - p_i)`` with ``W = diag(p (1 - p))``
        """
        self._check_is_fitted()
        p = self.predict()
        information = self._X.T @ (self._X * (p * (1 - p))[:, None])
        score = self._X * (self._treated - p)[:, None]
        return linalg.solve(information, score.T, assume_a="pos").T

    def average_iid(self, factor: Union[np.ndarray, Mapping[str, np.ndarray]],
                    newdata: Optional[pd.DataFrame] = None):
        """
        Influence function of weighted averages of the predicted probabilities

        Parameters
        ----------
        factor : np.ndarray or dict
            Weight of each subject of ``newdata``, or a mapping name -> weights
        newdata : pd.DataFrame, optional
            Subjects to average over (the training data by default)

        Returns
        -------
        np.ndarray of shape (n_obs,) or dict of them
            ``IF_beta @ (1/N sum_j f_j p_j (1 - p_j) x_j)``
        """
        X = self._X if newdata is None else self._design(newdata)
        p = self.predict(newdata)
        beta_iid = self.iid()
        gradient = X * (p * (1 - p))[:, None]

        def project(weights):
            weights = np.asarray(weights, dtype=float)
            if weights.shape != (len(X),):
                raise ValueError(f"Factor must have length {len(X)}, got shape {weights.shape}")
            return beta_iid @ (weights @ gradient / len(X))

        if isinstance(factor, Mapping):
            return {name: project(weights) for name, weights in factor.items()}
        return project(factor)
