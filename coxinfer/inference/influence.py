"""
Influence functions of Cox model predictions.

All influence functions are scaled so that the standard error of an
estimator is the root sum of squares of its influence function over the
training subjects.
"""
from typing import Dict, List, Optional, Tuple
import numpy as np
from scipy import linalg

from coxinfer.data import EventTable
from coxinfer.models.base import CoxModel
from coxinfer.utils.hazard_estimation import HazardEstimator, BaselineHazard


def subject_terms(model: CoxModel, newdata) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Centred design, exp(centred linear predictor) and stratum code of new subjects"""
    coefficients = np.asarray(model.coefficients, dtype=float)
    if coefficients.size == 0:
        Z = np.zeros((len(newdata), 0))
        eXb = np.ones(len(newdata))
    else:
        Z = model.design_matrix(newdata) - model.means
        eXb = np.exp(Z @ coefficients)
    return Z, eXb, model.strata_assignment(newdata)


class _StratumProcess:
    """Martingale and score quantities of one stratum at its jump times.

    Every matrix carries a leading zero column (or row) so that position 0
    stands for "before the first jump" and position k + 1 for the k-th jump.
    """

    def __init__(self, times, dLambda, dM, E, rows):
        self.times = times
        self.rows = rows
        K = len(times)
        p = E.shape[1]

        self.dLambda = np.concatenate([[0.0], dLambda])
        self.cumhazard = np.cumsum(self.dLambda)
        self.E_dLambda = np.vstack([np.zeros((1, p)), E * dLambda[:, None]])
        self.A = np.cumsum(self.E_dLambda, axis=0)

        self.n_jumps = K
        self.dM = dM
        self.MT = np.cumsum(dM, axis=1)

    def column(self, times: np.ndarray, kind: str) -> np.ndarray:
        """Padded jump position used for each evaluation time"""
        idx = np.searchsorted(self.times, times, side="right")
        if kind == "hazard":
            exact = idx > 0
            exact[exact] = self.times[idx[exact] - 1] == times[exact]
            idx = np.where(exact, idx, 0)
        return idx

    def martingale(self, kind: str) -> np.ndarray:
        """(n_stratum, K + 1) martingale term for the cumulative hazard or the hazard"""
        values = self.MT if kind == "cumhazard" else self.dM
        return np.hstack([np.zeros((values.shape[0], 1)), values])

    def coefficients(self, kind: str) -> Tuple[np.ndarray, np.ndarray]:
        """Baseline value and covariate drift at each padded jump position"""
        if kind == "cumhazard":
            return self.cumhazard, self.A
        return self.dLambda, self.E_dLambda


class CoxInfluence:
    """Influence-function engine of a fitted Cox model.

    The influence function of the cumulative hazard of a new subject j at
    time t decomposes into a martingale term from its own stratum and a term
    propagating the influence function of the regression coefficients:

    ``IF_ij(t) = exp(eta_j) * [M_i(t) + IF_beta_i . (Lambda_0(t) Z_j - A(t))]``

    where ``A(t)`` is the integral of the at-risk covariate mean with
    respect to the baseline hazard. The covariates are centred at the
    training means, which leaves the products unchanged.

    Parameters
    ----------
    model : CoxModel
        Fitted Cox model (ties "breslow" or "efron")
    """

    def __init__(self, model: CoxModel):
        if model.penalizer > 0:
            raise ValueError(f"Influence functions are not available for a penalized Cox model "
                             f"(penalizer={model.penalizer}): refit with penalizer=0")
        self.model = model
        self.n = model.n_obs
        self.means = model.means
        self.coefficients = np.asarray(model.coefficients, dtype=float)
        self.table = EventTable.from_model(model, center=True)
        self.baseline = HazardEstimator.baseline_hazard(self.table, method=model.ties)
        self.design = model.design_matrix() - self.means if self.coefficients.size else np.zeros((self.n, 0))

        self.strata_: List[_StratumProcess] = []
        p = self.coefficients.size
        score = np.zeros((self.n, p))
        information = np.zeros((p, p))
        for s in range(self.table.n_strata):
            process, U, info = self._stratum(s)
            self.strata_.append(process)
            score[process.rows] = U
            information += info

        if p == 0:
            self.beta_iid = np.zeros((self.n, 0))
        else:
            self.beta_iid = linalg.solve(information, score.T, assume_a="sym").T
        self.beta_vcov = self.beta_iid.T @ self.beta_iid

        # per stratum and kind: sum of squared martingale terms and their
        # cross product with the coefficient influence function
        self._moments: Dict[Tuple[int, str], Tuple[np.ndarray, np.ndarray]] = {}

    def _stratum(self, s: int):
        rows = self.table.stratum(s)
        orig = self.table.order[rows]
        start, stop = self.table.start[rows], self.table.stop[rows]
        status, eXb = self.table.status[rows], self.table.eXb[rows]
        Z = self.design[orig]
        p = Z.shape[1]

        times, dLambda, risk = self.baseline.jumps(s)
        at_risk = (start[:, None] < times[None, :]) & (stop[:, None] >= times[None, :])
        dN = ((status[:, None] == 1) & (stop[:, None] == times[None, :])).astype(float)
        deaths = dN.sum(axis=0)

        S0 = at_risk.T @ eXb
        S1 = at_risk.T @ (eXb[:, None] * Z)
        E = S1 / S0[:, None] if len(times) else np.zeros((0, p))

        exposure = at_risk * eXb[:, None]
        # each column sums to zero, also under Efron ties where risk != S0
        dM = dN / risk[None, :] - exposure * (dLambda / S0)[None, :]

        # Breslow score residuals and observed information
        residual = dN - exposure * (deaths / S0)[None, :]
        U = residual.sum(axis=1)[:, None] * Z - residual @ E
        S2 = np.einsum("ik,ip,iq->kpq", exposure, Z, Z)
        info = (np.einsum("k,kpq->pq", deaths / S0, S2) -
                np.einsum("k,kp,kq->pq", deaths, E, E)) if len(times) else np.zeros((p, p))

        return _StratumProcess(times, dLambda, dM, E, orig), U, info

    def prepare(self, newdata) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        return subject_terms(self.model, newdata)

    def _drift(self, process: _StratumProcess, Z: np.ndarray, col: np.ndarray,
               kind: str) -> np.ndarray:
        """Covariate term B_jt of shape (n_subjects, n_times, p)"""
        base, drift = process.coefficients(kind)
        return base[col][:, :, None] * Z[:, None, :] - drift[col]

    def _after(self, s: int, times: np.ndarray) -> np.ndarray:
        return times > self.baseline.last_times[s]

    def iid(self, Z: np.ndarray, eXb: np.ndarray, strata: np.ndarray,
            times: np.ndarray, kind: str = "cumhazard") -> np.ndarray:
        """
        Influence function of the hazard or cumulative hazard of new subjects

        Parameters
        ----------
        Z, eXb, strata : np.ndarray
            Output of :meth:`prepare`
        times : np.ndarray of shape (n_subjects, n_times)
            Evaluation times of each subject
        kind : str
            "cumhazard" or "hazard"

        Returns
        -------
        np.ndarray of shape (n_subjects, n_times, n_train)
        """
        N, T = times.shape
        out = np.zeros((N, T, self.n))
        for s, process in enumerate(self.strata_):
            members = np.flatnonzero(strata == s)
            if len(members) == 0:
                continue
            col = process.column(times[members], kind)
            martingale = process.martingale(kind)
            B = self._drift(process, Z[members], col, kind)
            values = B @ self.beta_iid.T
            values[:, :, process.rows] += np.moveaxis(martingale[:, col], 0, -1)
            values *= eXb[members][:, None, None]
            values[self._after(s, times[members])] = np.nan
            out[members] = values
        return out

    def _stratum_moments(self, s: int, kind: str) -> Tuple[np.ndarray, np.ndarray]:
        key = (s, kind)
        if key not in self._moments:
            process = self.strata_[s]
            martingale = process.martingale(kind)
            self._moments[key] = ((martingale ** 2).sum(axis=0),
                                  martingale.T @ self.beta_iid[process.rows])
        return self._moments[key]

    def se(self, Z: np.ndarray, eXb: np.ndarray, strata: np.ndarray,
           times: np.ndarray, kind: str = "cumhazard") -> np.ndarray:
        """
        Standard error without forming the influence function

        Expands the sum of squares of the influence function into a
        quadratic form in the covariate term. Returns an array of shape
        (n_subjects, n_times).
        """
        N, T = times.shape
        out = np.zeros((N, T))
        for s, process in enumerate(self.strata_):
            members = np.flatnonzero(strata == s)
            if len(members) == 0:
                continue
            col = process.column(times[members], kind)
            squares, cross = self._stratum_moments(s, kind)
            B = self._drift(process, Z[members], col, kind)
            variance = (squares[col] + 2 * np.einsum("jtp,jtp->jt", B, cross[col]) +
                        np.einsum("jtp,pq,jtq->jt", B, self.beta_vcov, B))
            values = eXb[members][:, None] * np.sqrt(np.clip(variance, 0, None))
            values[self._after(s, times[members])] = np.nan
            out[members] = values
        return out

    def average_iid(self, Z: np.ndarray, eXb: np.ndarray, strata: np.ndarray,
                    times: np.ndarray, factor: np.ndarray,
                    kind: str = "cumhazard") -> np.ndarray:
        """
        Influence function of the weighted average of new-subject predictions

        Computes ``1/N sum_j factor_jt IF_j(t)`` for every training subject
        without forming the influence function of each new subject.

        Parameters
        ----------
        times : np.ndarray of shape (n_times,)
            Evaluation times, shared by all subjects
        factor : np.ndarray of shape (n_subjects, n_times)
            Weight of each subject at each time

        Returns
        -------
        np.ndarray of shape (n_train, n_times)
        """
        N = len(eXb)
        out = np.zeros((self.n, len(times)))
        for s, process in enumerate(self.strata_):
            members = np.flatnonzero(strata == s)
            if len(members) == 0:
                continue
            col = process.column(times, kind)
            weight = factor[members] * eXb[members][:, None]
            B = self._drift(process, Z[members], np.broadcast_to(col, (len(members), len(times))), kind)
            out += self.beta_iid @ np.einsum("jt,jtp->pt", weight, B) / N
            martingale = process.martingale(kind)
            out[process.rows] += martingale[:, col] * weight.sum(axis=0)[None, :] / N
            out[:, self._after(s, times)] = np.nan
        return out
