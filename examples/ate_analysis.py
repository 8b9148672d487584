"""
Example of doubly robust estimation of an average treatment effect
"""

from coxinfer.data import sample_data
from coxinfer.causal import RobustATE, ate_robust

# X1 plays the role of the treatment, it depends on X6
data = sample_data(500, seed=42)

result = ate_robust(
    data,
    times=5,
    treatment="X1",
    duration_col="time",
    event_col="event",
    event_covariates=["X1", "X6"],
    censor_covariates=["X6"],
    treatment_covariates=["X6"],
)
print(result)
print(f"\n{result.n_censor} subject(s) censored before the horizon")
print("\nStandard errors:")
print(result.se.round(4))
print("\nLong format:")
print(result.to_frame().round(4))

# Competing risks, with the estimator interface
cr_data = sample_data(500, outcome="competing_risks", seed=7)
estimator = RobustATE(times=5, treatment="X1", event_covariates=["X1", "X6"],
                      censor_covariates=["X6"], treatment_covariates=["X6"],
                      type="competing_risks", cause=1)
estimator.fit(cr_data)
print("\nCompeting risks (cause 1):")
print(estimator.value_.round(4))
