import numpy as np
from typing import Optional, Tuple, Union, List


class TimeHandler:
    """Unified time handling for predictions"""

    @staticmethod
    def validate_times(times: Union[np.ndarray, List[float], float, None],
                       name: str = "times") -> np.ndarray:
        """
        Validate time values

        Parameters
        ----------
        times : array-like or None
            Time values to validate
        name : str
            Argument name used in error messages

        Returns
        -------
        np.ndarray
            Validated time values as a 1-D float array (empty if None)

        Raises
        ------
        ValueError
            If times are non-numeric or contain missing values
        """
        if times is None:
            return np.zeros(0)
        try:
            times = np.atleast_1d(np.asarray(times, dtype=float))
        except (TypeError, ValueError):
            raise ValueError(f"Argument '{name}' must be numeric")
        if times.ndim != 1:
            raise ValueError(f"Argument '{name}' must be a vector")
        if np.any(np.isnan(times)):
            raise ValueError(f"Missing (NaN) values in argument '{name}' are not allowed")
        return times

    @staticmethod
    def validate_horizon(times) -> float:
        """Validate a single time horizon"""
        times = TimeHandler.validate_times(times)
        if len(times) != 1:
            raise ValueError(f"Argument 'times' must have length 1, got {len(times)}")
        return float(times[0])

    @staticmethod
    def sort_times(times: np.ndarray) -> Tuple[np.ndarray, Optional[np.ndarray]]:
        """
        Sort evaluation times

        Returns
        -------
        sorted_times : np.ndarray
            Times in increasing order
        inverse : np.ndarray or None
            Permutation restoring the input order (``sorted_times[inverse]``
            equals ``times``), None if the times were already sorted
        """
        if len(times) == 0 or np.all(np.diff(times) >= 0):
            return times, None
        order = np.argsort(times, kind="stable")
        return times[order], np.argsort(order)

    @staticmethod
    def restore_order(values: Optional[np.ndarray], inverse: Optional[np.ndarray],
                      axis: int = 1) -> Optional[np.ndarray]:
        """Undo the sorting of the time axis of ``values``"""
        if values is None or inverse is None:
            return values
        return np.take(values, inverse, axis=axis)
