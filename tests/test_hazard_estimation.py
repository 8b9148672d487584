"""
Tests for the hazard estimation module.
"""
import numpy as np
import pytest
from coxinfer.data import EventTable
from coxinfer.utils.hazard_estimation import HazardEstimator


@pytest.fixture
def simple_table():
    """Small right-censored sample without ties"""
    stop = np.array([1.0, 2.0, 3.0, 4.0, 5.0])
    status = np.array([1, 1, 0, 1, 0])
    return EventTable(None, stop, status)


def test_breslow_hand_computed(simple_table):
    """Test Breslow estimator against hand-computed values"""
    baseline = HazardEstimator.baseline_hazard(simple_table, method="breslow")

    # one row per distinct observed time, 0 at censoring times
    assert np.array_equal(baseline.times, [1.0, 2.0, 3.0, 4.0, 5.0])
    assert np.allclose(baseline.hazard, [1 / 5, 1 / 4, 0, 1 / 2, 0])
    assert np.allclose(baseline.cumhazard, [0.2, 0.45, 0.45, 0.95, 0.95])
    assert np.array_equal(baseline.strata, np.zeros(5))


def test_breslow_with_linear_predictor():
    """The risk set sums exp(linear predictor)"""
    table = EventTable(None, np.array([1.0, 2.0, 3.0]), np.array([1, 1, 1]),
                       eXb=np.array([2.0, 1.0, 0.5]))
    baseline = HazardEstimator.baseline_hazard(table)
    assert np.allclose(baseline.hazard, [1 / 3.5, 1 / 1.5, 1 / 0.5])


def test_efron_with_ties():
    """Efron averages the risk set over the tied deaths"""
    table = EventTable(None, np.array([1.0, 1.0, 2.0, 3.0]), np.array([1, 1, 1, 0]))
    efron = HazardEstimator.baseline_hazard(table, method="efron")
    breslow = HazardEstimator.baseline_hazard(table, method="breslow")

    assert np.isclose(efron.hazard[0], 1 / 4 + 1 / 3)
    assert np.isclose(breslow.hazard[0], 2 / 4)
    # no tie at time 2
    assert np.isclose(efron.hazard[1], breslow.hazard[1])

    times, increments, effective_risk = efron.jumps(0)
    assert np.array_equal(times, [1.0, 2.0])
    # number of deaths divided by the increment
    assert np.allclose(effective_risk, np.array([2.0, 1.0]) / increments)


def test_breslow_equals_efron_without_ties():
    """Test that tie correction is a no-op without ties"""
    rng = np.random.default_rng(0)
    stop = rng.exponential(size=60)
    status = rng.binomial(1, 0.7, size=60)
    eXb = np.exp(rng.normal(size=60))
    table = EventTable(None, stop, status, eXb=eXb)

    breslow = HazardEstimator.baseline_hazard(table, method="breslow")
    efron = HazardEstimator.baseline_hazard(table, method="efron")
    assert np.allclose(breslow.cumhazard, efron.cumhazard)


def test_left_truncation_risk_set():
    """Subjects are at risk on (start, stop]"""
    table = EventTable(np.array([0.0, 0.0, 2.0]), np.array([1.0, 3.0, 4.0]), np.array([1, 1, 1]))
    baseline = HazardEstimator.baseline_hazard(table)
    # time 1: first two subjects, time 3: last two, time 4: last one
    assert np.allclose(baseline.hazard, [1 / 2, 1 / 2, 1.0])


def test_strata_are_estimated_separately():
    """Each stratum has its own step function"""
    stop = np.array([1.0, 2.0, 3.0, 1.5, 2.5])
    status = np.array([1, 1, 1, 1, 0])
    strata = np.array([0, 0, 0, 1, 1])
    baseline = HazardEstimator.baseline_hazard(EventTable(None, stop, status, strata))

    assert baseline.n_strata == 2
    assert np.array_equal(baseline.times_by_stratum[0], [1.0, 2.0, 3.0])
    assert np.allclose(baseline.hazard_by_stratum[0], [1 / 3, 1 / 2, 1.0])
    assert np.array_equal(baseline.times_by_stratum[1], [1.5, 2.5])
    assert np.allclose(baseline.hazard_by_stratum[1], [1 / 2, 0.0])
    assert np.array_equal(baseline.strata, [0, 0, 0, 1, 1])
    assert np.allclose(baseline.last_times, [3.0, 2.5])


def test_evaluate_step_function(simple_table):
    """Right-continuous lookup, exact-match hazard and NaN after the last time"""
    baseline = HazardEstimator.baseline_hazard(simple_table)
    hazard, cumhazard = baseline.evaluate(np.array([0.5, 2.0, 2.5, 4.0, 6.0]))

    assert hazard.shape == (1, 5)
    assert np.allclose(cumhazard[0, :4], [0.0, 0.45, 0.45, 0.95])
    assert np.allclose(hazard[0, :4], [0.0, 0.25, 0.0, 0.5])
    assert np.isnan(cumhazard[0, 4])
    assert np.isnan(hazard[0, 4])


def test_cumulative_hazard_is_monotone():
    rng = np.random.default_rng(1)
    table = EventTable(None, rng.exponential(size=40), rng.binomial(1, 0.6, size=40))
    baseline = HazardEstimator.baseline_hazard(table, method="efron")
    assert np.all(np.diff(baseline.cumhazard) >= 0)
    assert np.all(baseline.hazard >= 0)


def test_invalid_method(simple_table):
    with pytest.raises(ValueError):
        HazardEstimator.baseline_hazard(simple_table, method="nelson-aalen")
