"""
Example of Cox model predictions with standard errors and confidence bands
"""

import numpy as np
import pandas as pd
from coxinfer.data import sample_data
from coxinfer.models import fit_cox
from coxinfer.predictor import predict_cox, predict_cox_pl
from coxinfer.utils import predict_to_long

# Generate synthetic data
train = sample_data(300, seed=42)
print(f"{len(train)} subjects, {int(train['event'].sum())} events")

# Fit the Cox model (lifelines, Efron ties)
model = fit_cox(train, "time", "event", covariates=["X1", "X6"], strata="X2")
print(model)

# Baseline hazard in each stratum
baseline = predict_cox(model, times=[1, 3, 5], centered=False)
print("\nBaseline cumulative hazard:")
print(baseline.to_frame())

# Subject-specific predictions
newdata = pd.DataFrame({"X1": [0, 1, 1], "X6": [0.0, 0.0, 1.5], "X2": [0, 0, 1]})
times = np.array([1, 2, 3, 5, 8])
result = predict_cox(model, times=times, newdata=newdata, se=True, band=True,
                     n_sim=2000, seed=1, keep_newdata=True)

print("\nSurvival with 95% confidence intervals:")
print(result.to_frame()[["row", "time", "strata", "survival", "survival_lower", "survival_upper"]])
print("\nBand critical values:", np.round(result.quantile_band["survival"], 3))

# Long format, e.g. for plotting
long = predict_to_long(result, type="survival", ci=True, band=True, group_by="covariates")
print("\nLong format:")
print(long.head(12))

# Influence function of the average survival over the new subjects
average = predict_cox(model, times=times, newdata=newdata, type="survival", se=True,
                      average_iid=True, store_iid="minimal")
se_mean = np.sqrt(np.sum(average.survival_average_iid["mean"] ** 2, axis=0))
print("\nAverage survival:", np.round(average.survival.mean(axis=0), 3))
print("Standard error of the average:", np.round(se_mean, 4))

# Product-limit estimator
pl = predict_cox_pl(model, times, newdata, se=True)
print("\nProduct-limit survival:")
print(np.round(pl.survival, 3))
