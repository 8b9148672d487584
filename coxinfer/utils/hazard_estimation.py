"""
Baseline hazard estimation for Cox models (Breslow and Efron tie handling).
"""
from typing import Tuple, List, Optional
import numpy as np

from coxinfer.data.data import EventTable


class BaselineHazard:
    """Per-stratum baseline hazard step functions.

    Each stratum holds the distinct observed stop times with the hazard
    increment and the cumulative hazard at each of them. The hazard is 0 at
    times where only censorings occurred.
    """

    def __init__(self, times: List[np.ndarray], hazard: List[np.ndarray],
                 cumhazard: List[np.ndarray], risk_sum: List[np.ndarray],
                 last_times: np.ndarray):
        self.times_by_stratum = times
        self.hazard_by_stratum = hazard
        self.cumhazard_by_stratum = cumhazard
        self.risk_sum_by_stratum = risk_sum
        self.last_times = last_times

    @property
    def n_strata(self) -> int:
        return len(self.times_by_stratum)

    @property
    def times(self) -> np.ndarray:
        return np.concatenate(self.times_by_stratum) if self.n_strata else np.zeros(0)

    @property
    def hazard(self) -> np.ndarray:
        return np.concatenate(self.hazard_by_stratum) if self.n_strata else np.zeros(0)

    @property
    def cumhazard(self) -> np.ndarray:
        return np.concatenate(self.cumhazard_by_stratum) if self.n_strata else np.zeros(0)

    @property
    def strata(self) -> np.ndarray:
        """Stratum code of each row of ``times``/``hazard``/``cumhazard``"""
        return np.concatenate([np.full(len(t), s, dtype=int)
                               for s, t in enumerate(self.times_by_stratum)]) if self.n_strata else np.zeros(0, dtype=int)

    def jumps(self, s: int) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """
        Jump times of stratum ``s``

        Returns
        -------
        times : np.ndarray
            Event times (strictly positive hazard increment)
        hazard : np.ndarray
            Hazard increment at each event time
        effective_risk : np.ndarray
            Number of events divided by the increment, i.e. the risk-set
            sum for Breslow and its tie-corrected counterpart for Efron
        """
        mask = self.hazard_by_stratum[s] > 0
        return (self.times_by_stratum[s][mask], self.hazard_by_stratum[s][mask],
                self.risk_sum_by_stratum[s][mask])

    def evaluate(self, times: np.ndarray, strata: Optional[np.ndarray] = None
                 ) -> Tuple[np.ndarray, np.ndarray]:
        """
        Evaluate the step functions at ``times``

        Parameters
        ----------
        times : np.ndarray
            Evaluation times, any order
        strata : np.ndarray, optional
            Strata to evaluate (all strata by default)

        Returns
        -------
        hazard, cumhazard : np.ndarray of shape (n_strata, n_times)
            Hazard is the jump size when a time coincides with a jump and 0
            otherwise. Both are NaN after the last observed time of the stratum.
        """
        if strata is None:
            strata = np.arange(self.n_strata)
        times = np.asarray(times, dtype=float)
        hazard = np.zeros((len(strata), len(times)))
        cumhazard = np.zeros((len(strata), len(times)))
        for row, s in enumerate(strata):
            jump_times = self.times_by_stratum[s]
            idx = np.searchsorted(jump_times, times, side="right") - 1
            found = idx >= 0
            cumhazard[row, found] = self.cumhazard_by_stratum[s][idx[found]]
            exact = found.copy()
            exact[found] = jump_times[idx[found]] == times[found]
            hazard[row, exact] = self.hazard_by_stratum[s][idx[exact]]
            after = times > self.last_times[s]
            hazard[row, after] = np.nan
            cumhazard[row, after] = np.nan
        return hazard, cumhazard


class HazardEstimator:
    """Baseline hazard estimation for (stratified, left-truncated) Cox models."""

    @staticmethod
    def baseline_hazard(table: EventTable, method: str = "breslow") -> BaselineHazard:
        """
        Estimate the baseline hazard in every stratum.

        Parameters
        ----------
        table : EventTable
            Sorted event data with the exponential of the linear predictor
        method : str
            Tie handling: "breslow" or "efron"

        Returns
        -------
        BaselineHazard
            Step functions at the distinct stop times of each stratum
        """
        if method not in ["breslow", "efron"]:
            raise ValueError("Method must be 'breslow' or 'efron'")

        times, hazards, cumhazards, risk_sums = [], [], [], []
        for s in range(table.n_strata):
            rows = table.stratum(s)
            unique_times, hazard, risk_sum = HazardEstimator._stratum_increments(
                table.start[rows], table.stop[rows], table.status[rows],
                table.eXb[rows], efron=(method == "efron")
            )
            times.append(unique_times)
            hazards.append(hazard)
            cumhazards.append(np.cumsum(hazard))
            risk_sums.append(risk_sum)

        return BaselineHazard(times, hazards, cumhazards, risk_sums, table.last_times)

    @staticmethod
    def _stratum_increments(
        start: np.ndarray,
        stop: np.ndarray,
        status: np.ndarray,
        eXb: np.ndarray,
        efron: bool = False
    ) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """Hazard increments at the distinct stop times of one stratum.

        ``stop`` must be sorted. A subject is at risk at time u when
        start < u <= stop.
        """
        unique_times = np.unique(stop)
        n_times = len(unique_times)
        if n_times == 0:
            return unique_times, np.zeros(0), np.zeros(0)

        # sum of eXb over subjects with stop >= u
        tail_stop = np.append(np.cumsum(eXb[::-1])[::-1], 0.0)
        at_risk = tail_stop[np.searchsorted(stop, unique_times, side="left")]

        # minus subjects that have not entered yet (start >= u)
        start_order = np.argsort(start, kind="stable")
        start_sorted = start[start_order]
        tail_start = np.append(np.cumsum(eXb[start_order][::-1])[::-1], 0.0)
        at_risk = at_risk - tail_start[np.searchsorted(start_sorted, unique_times, side="left")]

        position = np.searchsorted(unique_times, stop)
        deaths = np.bincount(position, weights=status, minlength=n_times)
        deaths_eXb = np.bincount(position, weights=status * eXb, minlength=n_times)

        hazard = np.zeros(n_times)
        jump = deaths > 0
        hazard[jump] = deaths[jump] / at_risk[jump]
        if efron:
            for k in np.flatnonzero(deaths > 1):
                d = int(round(deaths[k]))
                fraction = np.arange(d) / d
                hazard[k] = np.sum(1.0 / (at_risk[k] - fraction * deaths_eXb[k]))

        risk_sum = at_risk.copy()
        risk_sum[jump] = deaths[jump] / hazard[jump]
        return unique_times, hazard, risk_sum
