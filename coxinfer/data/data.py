"""
Data structures for time-to-event analysis
"""

import numpy as np
import pandas as pd
from typing import Union, Optional


class Survival:
    """Class for standard (possibly left-truncated) survival data"""

    def __init__(self, time: Union[np.ndarray, pd.Series],
                 event: Union[np.ndarray, pd.Series],
                 entry: Optional[Union[np.ndarray, pd.Series]] = None):
        """
        Initialize survival data

        Parameters
        ----------
        time : array-like
            Time to event or censoring
        event : array-like
            Event indicator (1 for event, 0 for censored)
        entry : array-like, optional
            Delayed entry (left truncation) times, 0 by default
        """
        self.time = np.asarray(time, dtype=float)
        self.event = np.asarray(event).astype(int)
        if entry is None:
            self.entry = np.zeros_like(self.time)
        else:
            self.entry = np.asarray(entry, dtype=float)
        self._validate()

    def __len__(self):
        return len(self.time)

    def _validate(self):
        """Validate the survival data"""
        if not (len(self.time) == len(self.event) == len(self.entry)):
            raise ValueError("Time, event and entry arrays must have the same length")
        if np.any(np.isnan(self.time)) or np.any(np.isnan(self.entry)):
            raise ValueError("Missing (NaN) values are not allowed in time or entry")
        if not np.all(self.time >= 0):
            raise ValueError("All times must be non-negative")
        if not np.all(self.entry <= self.time):
            raise ValueError("Entry times must not exceed event/censoring times")
        if not np.all(np.isin(self.event, [0, 1])):
            raise ValueError("Event indicators must be 0 or 1")


class CompetingRisks:
    """Class for competing risks data"""

    def __init__(self, time: Union[np.ndarray, pd.Series],
                 event: Union[np.ndarray, pd.Series]):
        """
        Initialize competing risks data

        Parameters
        ----------
        time : array-like
            Time to event or censoring
        event : array-like
            Event type indicator (0 for censored, positive integers for different event types)
        """
        self.time = np.asarray(time, dtype=float)
        self.event = np.asarray(event)
        self._validate()

    def __len__(self):
        return len(self.time)

    @property
    def causes(self):
        """Observed event types, censoring excluded"""
        return [c for c in np.unique(self.event) if c != 0]

    @property
    def event_times(self) -> np.ndarray:
        """Sorted distinct times at which any event was observed"""
        return np.unique(self.time[self.event != 0])

    def _validate(self):
        """Validate the competing risks data"""
        if len(self.time) != len(self.event):
            raise ValueError("Time and event arrays must have the same length")
        if np.any(np.isnan(self.time)):
            raise ValueError("Missing (NaN) values are not allowed in time")
        if not np.all(self.time >= 0):
            raise ValueError("All times must be non-negative")
        if not np.all(self.event >= 0):
            raise ValueError("Event types must be non-negative integers")


class EventTable:
    """Sorted, read-only working copy of a Cox model frame.

    Rows are ordered by stratum, then stop time, then start time, with events
    placed before censorings at the same stop time. The permutation from the
    sorted position back to the original row is kept in ``order`` so that
    nothing has to be reordered in place.

    Parameters
    ----------
    start : array-like
        Entry times (0 without left truncation)
    stop : array-like
        Event or censoring times
    status : array-like
        1 for an event, 0 for a censoring
    strata : array-like of int, optional
        Stratum code of each row, 0 when unstratified
    eXb : array-like, optional
        Exponential of the linear predictor, 1 by default
    n_strata : int, optional
        Number of strata (inferred from ``strata`` when omitted)
    """

    def __init__(self, start, stop, status, strata=None, eXb=None,
                 n_strata: Optional[int] = None):
        stop = np.asarray(stop, dtype=float)
        n = len(stop)
        start = np.zeros(n) if start is None else np.asarray(start, dtype=float)
        status = np.asarray(status).astype(int)
        strata = np.zeros(n, dtype=int) if strata is None else np.asarray(strata).astype(int)
        eXb = np.ones(n) if eXb is None else np.asarray(eXb, dtype=float)

        if not (len(start) == len(status) == len(strata) == len(eXb) == n):
            raise ValueError("start, stop, status, strata and eXb must have the same length")
        if np.any(np.isnan(stop)) or np.any(np.isnan(start)):
            raise ValueError("Missing (NaN) values are not allowed in start or stop times")
        if np.any(stop < start):
            raise ValueError("Stop times must be greater than or equal to start times")

        self.n_strata = int(n_strata) if n_strata is not None else (int(strata.max()) + 1 if n else 0)

        # np.lexsort sorts on the last key first
        order = np.lexsort((1 - status, start, stop, strata))
        self.order = order
        self.start = start[order]
        self.stop = stop[order]
        self.status = status[order]
        self.strata = strata[order]
        self.eXb = eXb[order]
        for values in (self.order, self.start, self.stop, self.status, self.strata, self.eXb):
            values.setflags(write=False)

        self._bounds = np.searchsorted(self.strata, np.arange(self.n_strata + 1), side="left")

    @classmethod
    def from_model(cls, model, center: bool = False) -> "EventTable":
        """Build the table of a fitted :class:`~coxinfer.models.base.CoxModel`"""
        frame = model.model_frame()
        eXb = np.exp(model.linear_predictor(center=center))
        return cls(frame["start"].to_numpy(), frame["stop"].to_numpy(),
                   frame["status"].to_numpy(), frame["strata"].to_numpy(),
                   eXb, n_strata=max(len(model.strata_levels), 1))

    def __len__(self):
        return len(self.stop)

    def stratum(self, s: int) -> slice:
        """Slice of the sorted rows belonging to stratum ``s``"""
        return slice(self._bounds[s], self._bounds[s + 1])

    @property
    def last_times(self) -> np.ndarray:
        """Last observed time in each stratum (NaN for an empty stratum)"""
        out = np.full(self.n_strata, np.nan)
        for s in range(self.n_strata):
            rows = self.stratum(s)
            if rows.stop > rows.start:
                out[s] = self.stop[rows.stop - 1]
        return out

    @property
    def has_left_truncation(self) -> bool:
        return bool(np.any(self.start != 0))
