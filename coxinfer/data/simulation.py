"""
Simulated datasets for examples and tests.
"""
from typing import Optional
import numpy as np
import pandas as pd

# log hazard ratios of X1..X7 for cause 1 and cause 2
_EFFECTS_CAUSE1 = np.array([0.5, 0.3, 0.0, 0.0, 0.0, 0.4, 0.0])
_EFFECTS_CAUSE2 = np.array([-0.3, 0.0, 0.2, 0.0, 0.0, 0.2, 0.0])


def sample_data(
    n: int,
    outcome: str = "survival",
    seed: Optional[int] = None,
    censoring_rate: float = 0.1,
    max_follow_up: Optional[float] = None
) -> pd.DataFrame:
    """Simulate right-censored survival or competing risks data.

    Parameters
    ----------
    n : int
        Number of subjects
    outcome : str
        "survival" or "competing_risks"
    seed : int, optional
        Seed of the random generator
    censoring_rate : float
        Rate of the exponential censoring times (0 for no censoring)
    max_follow_up : float, optional
        Administrative end of follow-up; subjects still at risk are censored there

    Returns
    -------
    pd.DataFrame
        Columns X1-X5 (binary), X6-X7 (continuous), time and event
        (0 censored, 1 event; 1 or 2 for competing risks)
    """
    if outcome not in ("survival", "competing_risks"):
        raise ValueError(f"outcome must be 'survival' or 'competing_risks', got '{outcome}'")
    rng = np.random.default_rng(seed)

    X = np.column_stack([
        rng.binomial(1, 0.5, size=(n, 5)).astype(float),
        rng.normal(size=(n, 2))
    ])
    # treatment-like X1 depends on X6 so that propensity models have something to fit
    X[:, 0] = rng.binomial(1, 1.0 / (1.0 + np.exp(-0.5 * X[:, 5])))

    time1 = rng.exponential(scale=1.0 / (0.1 * np.exp(X @ _EFFECTS_CAUSE1)))
    if outcome == "survival":
        latent = time1
        cause = np.ones(n, dtype=int)
    else:
        time2 = rng.exponential(scale=1.0 / (0.1 * np.exp(X @ _EFFECTS_CAUSE2)))
        latent = np.minimum(time1, time2)
        cause = np.where(time1 <= time2, 1, 2)

    if censoring_rate > 0:
        censor = rng.exponential(scale=1.0 / censoring_rate, size=n)
    else:
        censor = np.full(n, np.inf)
    if max_follow_up is not None:
        censor = np.minimum(censor, max_follow_up)

    time = np.minimum(latent, censor)
    event = np.where(latent <= censor, cause, 0)

    data = pd.DataFrame(X, columns=[f"X{i}" for i in range(1, 8)])
    for col in ["X1", "X2", "X3", "X4", "X5"]:
        data[col] = data[col].astype(int)
    data["time"] = time
    data["event"] = event
    return data
