"""
Example of absolute risk predictions with cause-specific Cox models
"""

import numpy as np
from coxinfer.data import sample_data, CompetingRisks
from coxinfer.models import CauseSpecificCox

# Generate synthetic competing risks data
data = sample_data(400, outcome="competing_risks", seed=42)
y = CompetingRisks(data["time"], data["event"])
print("Observed causes:", y.causes)
print("Events per cause:", {int(c): int(np.sum(y.event == c)) for c in y.causes})

# One Cox model per cause
model = CauseSpecificCox(cause=1).fit(data, "time", "event", covariates=["X1", "X6"])

newdata = data.head(3)
times = [1, 2, 4, 6]

# Exponential approximation of the event-free survival
risk = model.predict(newdata, times, se=True, average_iid=True)
print("\nAbsolute risk of cause 1:")
print(risk.to_frame())

# Product-limit event-free survival: risks of all causes and survival sum to 1
risk1 = model.predict(newdata, times, cause=1, product_limit=True)
risk2 = model.predict(newdata, times, cause=2, product_limit=True)
print("\nSum of risks and survival (product-limit):")
print(np.round(risk1.absRisk + risk2.absRisk + risk1.survival, 6))

# Standard error of the average risk
average = risk.absRisk_average_iid["mean"]
print("\nAverage risk:", np.round(risk.absRisk.mean(axis=0), 3))
print("Standard error:", np.round(np.sqrt(np.sum(average ** 2, axis=0)), 4))
