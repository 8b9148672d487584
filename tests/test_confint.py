"""
Tests for confidence intervals and bands
"""
import numpy as np
import pytest
from coxinfer.inference import band_quantile, gaussian_quantile, transform_interval


def test_gaussian_quantile():
    assert np.isclose(gaussian_quantile(0.95), 1.959964, atol=1e-6)
    assert gaussian_quantile(0.9) < gaussian_quantile(0.95)
    for level in [0, 1, 1.5, -0.1]:
        with pytest.raises(ValueError):
            gaussian_quantile(level)


def test_untransformed_interval():
    estimate = np.array([[0.5, 1.0]])
    se = np.array([[0.1, 0.2]])
    lower, upper = transform_interval(estimate, se, 2.0)
    assert np.allclose(lower, [[0.3, 0.6]])
    assert np.allclose(upper, [[0.7, 1.4]])


def test_log_interval():
    """Interval of the cumulative hazard on the log scale"""
    estimate = np.array([[0.4]])
    se = np.array([[0.1]])
    z = 1.96
    lower, upper = transform_interval(estimate, se, z, "log", (0, np.inf))
    assert np.allclose(lower, 0.4 * np.exp(-z * 0.1 / 0.4))
    assert np.allclose(upper, 0.4 * np.exp(z * 0.1 / 0.4))


def test_loglog_interval():
    """Interval of the survival on the log-log scale"""
    s, se, z = 0.7, 0.05, 1.96
    lower, upper = transform_interval(np.array([[s]]), np.array([[se]]), z, "loglog", (0, 1))
    half_width = z * se / abs(s * np.log(s))
    expected = sorted([np.exp(-np.exp(np.log(-np.log(s)) + half_width)),
                       np.exp(-np.exp(np.log(-np.log(s)) - half_width))])
    assert np.allclose([lower[0, 0], upper[0, 0]], expected)
    assert lower[0, 0] < s < upper[0, 0]


def test_cloglog_interval():
    """Interval of the absolute risk on the complementary log-log scale"""
    f, se, z = 0.2, 0.04, 1.96
    lower, upper = transform_interval(np.array([[f]]), np.array([[se]]), z, "cloglog", (0, 1))
    assert 0 < lower[0, 0] < f < upper[0, 0] < 1


def test_degenerate_and_clipped_intervals():
    """Zero standard errors give a point interval; bounds are respected"""
    lower, upper = transform_interval(np.array([[0.0, 1.0]]), np.array([[0.0, 0.0]]), 1.96,
                                      "loglog", (0, 1))
    assert np.allclose(lower, [[0.0, 1.0]])
    assert np.allclose(upper, [[0.0, 1.0]])

    lower, upper = transform_interval(np.array([[0.1]]), np.array([[0.2]]), 1.96, "none", (0, 1))
    assert lower[0, 0] == 0.0
    assert upper[0, 0] <= 1.0


def test_row_specific_quantiles():
    """Band critical values apply row by row"""
    estimate = np.ones((2, 3))
    se = np.full((2, 3), 0.1)
    lower, upper = transform_interval(estimate, se, np.array([1.0, 2.0]))
    assert np.allclose(upper - lower, [[0.2] * 3, [0.4] * 3])


def test_invalid_transform():
    with pytest.raises(ValueError):
        transform_interval(np.array([[0.5]]), np.array([[0.1]]), 1.96, "logit")


def test_narrower_at_lower_level():
    estimate = np.array([[0.6]])
    se = np.array([[0.05]])
    lower90, upper90 = transform_interval(estimate, se, gaussian_quantile(0.9), "loglog", (0, 1))
    lower95, upper95 = transform_interval(estimate, se, gaussian_quantile(0.95), "loglog", (0, 1))
    assert lower95 < lower90 and upper90 < upper95


def test_band_quantile():
    """Simulated band critical values"""
    rng = np.random.default_rng(0)
    iid = rng.normal(size=(2, 5, 40)) / np.sqrt(40)
    se = np.sqrt(np.sum(iid ** 2, axis=2))

    first = band_quantile(iid, se, n_sim=1000, seed=42)
    second = band_quantile(iid, se, n_sim=1000, seed=42, chunk_size=300)
    assert first.shape == (2,)
    assert np.allclose(first, second)
    # supremum over several times exceeds the pointwise critical value
    assert np.all(first > gaussian_quantile(0.95))
    assert np.all(band_quantile(iid, se, conf_level=0.8, n_sim=1000, seed=42) < first)


def test_band_quantile_ignores_invalid_se():
    """Times without variability do not enter the supremum"""
    rng = np.random.default_rng(1)
    iid = rng.normal(size=(1, 3, 30))
    iid[:, 0, :] = 0.0
    se = np.sqrt(np.sum(iid ** 2, axis=2))
    se[0, 2] = np.nan
    quantile = band_quantile(iid, se, n_sim=500, seed=2)
    assert np.isfinite(quantile).all()
    # a single valid time gives a pointwise quantile
    assert np.isclose(quantile[0], gaussian_quantile(0.95), atol=0.2)
