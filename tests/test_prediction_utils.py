"""
Tests for step-function lookup, averaging factors and long-format export
"""
import numpy as np
import pandas as pd
import pytest
from coxinfer.data import sample_data
from coxinfer.models import FittedCox
from coxinfer.predictor import predict_cox
from coxinfer.utils import TimeHandler, average_factors, predict_to_long, sindex


@pytest.fixture
def train():
    d = sample_data(40, seed=2)
    d.loc[0, "time"] = 12.0
    return d


@pytest.fixture
def model(train):
    return FittedCox([0.4, 0.2], train, "time", "event", covariates=["X1", "X6"],
                     strata="X2", ties="breslow")


def test_sindex():
    jumps = np.array([1.0, 2.0, 4.0])
    assert np.array_equal(sindex(jumps, [0.5, 1.0, 3.0, 4.0, 9.0]), [0, 1, 2, 3, 3])
    assert np.array_equal(sindex(jumps, [0.5, 1.0, 3.0, 4.0, 9.0], strict=True), [0, 0, 2, 2, 3])
    assert np.array_equal(sindex(jumps, [4.0, 0.0]), [3, 0])


def test_time_handler():
    assert TimeHandler.validate_times(None).shape == (0,)
    assert np.array_equal(TimeHandler.validate_times(3), [3.0])
    with pytest.raises(ValueError):
        TimeHandler.validate_times([1.0, np.nan])
    with pytest.raises(ValueError):
        TimeHandler.validate_times(["a"])
    assert TimeHandler.validate_horizon([2]) == 2.0

    times = np.array([3.0, 1.0, 2.0])
    ordered, inverse = TimeHandler.sort_times(times)
    assert np.array_equal(ordered, [1.0, 2.0, 3.0])
    assert np.array_equal(ordered[inverse], times)
    assert TimeHandler.sort_times(ordered)[1] is None

    values = np.array([[10.0, 20.0, 30.0]])
    assert np.array_equal(TimeHandler.restore_order(values, inverse), [[30.0, 10.0, 20.0]])


def test_average_factors():
    assert average_factors(False, 3, 2) == {}
    assert average_factors(None, 3, 2) == {}
    plain = average_factors(True, 3, 2)
    assert list(plain) == ["mean"]
    assert np.array_equal(plain["mean"], np.ones((3, 2)))

    factors = average_factors({"w": [1, 2, 3], "m": np.zeros((3, 2))}, 3, 2)
    assert np.array_equal(factors["w"], [[1, 1], [2, 2], [3, 3]])
    assert factors["m"].shape == (3, 2)

    with pytest.raises(ValueError):
        average_factors({"w": [1, 2]}, 3, 2)
    with pytest.raises(ValueError):
        average_factors("mean", 3, 2)


def test_predict_to_long(model, train):
    """One row per subject and time with a leading time-0 row"""
    newdata = train.head(3)
    result = predict_cox(model, times=[4.0, 2.0], newdata=newdata, se=True, keep_newdata=True)
    frame = predict_to_long(result, type="survival", ci=True)

    assert list(frame.columns) == ["row", "time", "survival", "lowerCI", "upperCI"]
    assert len(frame) == 9
    assert np.array_equal(frame["time"].to_numpy()[:3], [0.0, 2.0, 4.0])
    assert np.all(frame.loc[frame["time"] == 0, "survival"] == 1)
    first = frame[frame["row"] == 0]
    assert np.allclose(first["survival"].to_numpy()[1:], result.survival[0, [1, 0]])

    default = predict_to_long(result)
    assert "cumhazard" in default.columns
    assert np.all(default.loc[default["time"] == 0, "cumhazard"] == 0)

    by_strata = predict_to_long(result, group_by="strata")
    assert set(by_strata["strata"]) <= {"X2=0", "X2=1"}

    by_covariates = predict_to_long(result, group_by="covariates", digits=1)
    assert by_covariates["covariates"].str.contains("X6=").all()


def test_predict_to_long_band(model, train):
    result = predict_cox(model, times=np.linspace(1, 6, 4), newdata=train.head(2),
                         type="survival", se=True, band=True, n_sim=300, seed=1)
    frame = predict_to_long(result, band=True)
    assert {"lowerBand", "upperBand"} <= set(frame.columns)
    assert np.all(frame["lowerBand"] <= frame["survival"])


def test_predict_to_long_errors(model, train):
    result = predict_cox(model, times=[2.0, 3.0], newdata=train.head(2))
    with pytest.raises(ValueError, match="Confidence intervals"):
        predict_to_long(result, ci=True)
    with pytest.raises(ValueError, match="bands"):
        predict_to_long(result, band=True)
    with pytest.raises(ValueError):
        predict_to_long(result, type="hazard")
    with pytest.raises(ValueError, match="keep_newdata"):
        predict_to_long(result, group_by="covariates")
    with pytest.raises(ValueError):
        predict_to_long(result, group_by="subject")

    diag = predict_cox(model, times=[2.0, 3.0], newdata=train.head(2), diag=True)
    with pytest.raises(ValueError, match="diag"):
        predict_to_long(diag)
    no_times = predict_cox(model, times=[2.0, 3.0], newdata=train.head(2), keep_times=False)
    with pytest.raises(ValueError, match="keep_times"):
        predict_to_long(no_times)
    baseline = predict_cox(model, times=[2.0, 3.0])
    with pytest.raises(ValueError):
        predict_to_long(baseline)
