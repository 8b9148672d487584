"""
Tests for Cox model predictions
"""
import numpy as np
import pandas as pd
import pytest
from lifelines import CoxPHFitter, NelsonAalenFitter
from coxinfer.data import sample_data
from coxinfer.models import FittedCox, fit_cox
from coxinfer.predictor import predict_cox, predict_cox_pl


@pytest.fixture
def train():
    """Simulated training data followed up beyond time 8"""
    d = sample_data(60, seed=10)
    d.loc[0, "time"] = 15.0
    d.loc[0, "event"] = 0
    return d


@pytest.fixture
def model(train):
    """Cox model with lifelines coefficients and Breslow baseline"""
    fitted = fit_cox(train, "time", "event", covariates=["X1", "X6"])
    return FittedCox(fitted.coefficients, train, "time", "event",
                     covariates=["X1", "X6"], ties="breslow")


@pytest.fixture
def newdata(train):
    return train.head(4).reset_index(drop=True)


def test_fit_cox(train):
    """lifelines fit wrapped into a FittedCox"""
    fitted = fit_cox(train, "time", "event", covariates=["X1", "X6"])
    assert fitted.ties == "efron"
    assert fitted.coefficients.shape == (2,)
    assert fitted.n_obs == 60
    assert np.allclose(fitted.means, train[["X1", "X6"]].mean().to_numpy())
    assert "efron" in repr(fitted)

    empty = fit_cox(train, "time", "event")
    assert empty.coefficients.shape == (0,)
    assert np.allclose(empty.linear_predictor(), 0)


def test_prediction_shapes(model, newdata):
    """Subject predictions have one row per subject and one column per time"""
    result = predict_cox(model, times=[3, 8], newdata=newdata, se=True)

    assert result.cumhazard.shape == (4, 2)
    assert result.survival.shape == (4, 2)
    assert result.cumhazard_se.shape == (4, 2)
    assert result.survival_se.shape == (4, 2)
    assert result.hazard is None
    assert result.cumhazard_iid is None
    assert np.all(result.cumhazard >= 0)
    assert np.all(np.diff(result.cumhazard, axis=1) >= 0)
    assert np.allclose(result.survival, np.exp(-result.cumhazard))
    assert np.all(result.cumhazard_se > 0)

    # intervals are added automatically and contain the estimate
    assert np.all(result.cumhazard_lower <= result.cumhazard)
    assert np.all(result.cumhazard <= result.cumhazard_upper)
    assert np.all((result.survival_lower >= 0) & (result.survival_upper <= 1))
    assert result.conf_level == 0.95


def test_survival_se_is_delta_method(model, newdata):
    result = predict_cox(model, times=[2, 5], newdata=newdata, se=True)
    assert np.allclose(result.survival_se, result.survival * result.cumhazard_se)


def test_times_order_is_preserved(model, newdata):
    """Unsorted times give the same values in the requested order"""
    unsorted = predict_cox(model, times=[5, 1, 3], newdata=newdata, se=True, iid=True)
    ordered = predict_cox(model, times=[1, 3, 5], newdata=newdata, se=True, iid=True)

    assert np.array_equal(unsorted.times, [5, 1, 3])
    assert np.allclose(unsorted.cumhazard, ordered.cumhazard[:, [2, 0, 1]])
    assert np.allclose(unsorted.survival_se, ordered.survival_se[:, [2, 0, 1]])
    assert np.allclose(unsorted.cumhazard_iid, ordered.cumhazard_iid[:, [2, 0, 1], :])


def test_baseline_matches_reference_subject(model, train):
    """The baseline is the prediction at covariates 0 (or at the means if centered)"""
    times = np.array([1.0, 4.0, 7.0])
    zero = pd.DataFrame({"X1": [0.0], "X6": [0.0]})
    at_zero = predict_cox(model, times=times, newdata=zero)
    baseline = predict_cox(model, times=times, centered=False)
    assert np.allclose(at_zero.cumhazard[0], baseline.cumhazard)

    means = pd.DataFrame({"X1": [train["X1"].mean()], "X6": [train["X6"].mean()]})
    at_means = predict_cox(model, times=times, newdata=means)
    centered = predict_cox(model, times=times)
    assert np.allclose(at_means.cumhazard[0], centered.cumhazard)

    # the two baselines differ by exp(-mean linear predictor)
    shift = np.exp(-model.means @ model.coefficients)
    assert np.allclose(baseline.cumhazard, centered.cumhazard * shift)


def test_baseline_without_times(model, train):
    """Without times the baseline is returned at every observed time"""
    result = predict_cox(model, type=["hazard", "cumhazard", "survival"])
    assert np.array_equal(result.times, np.unique(train["time"]))
    assert np.allclose(np.cumsum(result.hazard), result.cumhazard)
    assert result.strata is None
    frame = result.to_frame()
    assert list(frame.columns) == ["time", "hazard", "cumhazard", "survival"]


def test_baseline_against_lifelines(train):
    """The Breslow baseline at the lifelines coefficients matches lifelines"""
    cph = CoxPHFitter()
    cph.fit(train[["time", "event", "X1", "X6"]], duration_col="time", event_col="event")
    model = FittedCox(cph.params_.reindex(["X1", "X6"]).to_numpy(), train, "time", "event",
                      covariates=["X1", "X6"], ties="breslow")
    expected = cph.baseline_cumulative_hazard_.iloc[:, 0]
    result = predict_cox(model, times=expected.index.to_numpy())
    assert np.allclose(result.cumhazard, expected.to_numpy(), rtol=1e-6)


def test_no_covariates_is_nelson_aalen(train):
    """A model without covariates gives the Nelson-Aalen estimator"""
    model = FittedCox([], train, "time", "event", ties="breslow")
    times = np.array([0.5, 2.0, 6.0, 10.0])
    result = predict_cox(model, times=times)

    naf = NelsonAalenFitter(nelson_aalen_smoothing=False)
    naf.fit(train["time"], event_observed=train["event"])
    expected = naf.cumulative_hazard_at_times(times).to_numpy()
    assert np.allclose(result.cumhazard, expected)


def test_hazard_at_event_times(model, train, newdata):
    """The hazard is non-zero only at observed event times"""
    event_time = float(train.loc[train["event"] == 1, "time"].min())
    result = predict_cox(model, times=[event_time, event_time + 1e-6], newdata=newdata,
                         type="hazard")
    assert np.all(result.hazard[:, 0] > 0)
    assert np.all(result.hazard[:, 1] == 0)
    assert result.cumhazard is None and result.survival is None


def test_stratified_predictions(train):
    """Subjects use the baseline of their own stratum"""
    model = FittedCox([0.4], train, "time", "event", covariates=["X6"], strata="X2",
                      ties="breslow")
    assert model.strata_levels == ["X2=0", "X2=1"]

    nd = pd.DataFrame({"X6": [0.0, 0.0], "X2": [0, 1]})
    result = predict_cox(model, times=[2.0, 4.0], newdata=nd, se=True)
    assert list(result.strata) == ["X2=0", "X2=1"]
    assert not np.allclose(result.cumhazard[0], result.cumhazard[1])

    baseline = predict_cox(model, times=[2.0, 4.0], centered=False)
    assert list(baseline.strata) == ["X2=0", "X2=0", "X2=1", "X2=1"]
    assert np.allclose(result.cumhazard.ravel(), baseline.cumhazard)

    with pytest.raises(ValueError, match="Unknown strata"):
        predict_cox(model, times=[2.0], newdata=pd.DataFrame({"X6": [0.0], "X2": [5]}))


def test_diag_predictions(model, newdata):
    """diag=True predicts subject i at time i only"""
    times = np.array([1.0, 2.0, 4.0, 6.0])
    full = predict_cox(model, times=times, newdata=newdata, iid=True)
    diag = predict_cox(model, times=times, newdata=newdata, diag=True, iid=True)

    assert diag.cumhazard.shape == (4, 1)
    assert np.allclose(diag.cumhazard[:, 0], np.diag(full.cumhazard))
    assert np.allclose(diag.cumhazard_iid[:, 0, :], full.cumhazard_iid[np.arange(4), np.arange(4), :])


def test_after_last_time_is_missing(model, newdata, train):
    """Predictions after the last observed time are NaN"""
    result = predict_cox(model, times=[3.0, 1000.0], newdata=newdata, se=True)
    assert np.all(np.isfinite(result.cumhazard[:, 0]))
    assert np.all(np.isnan(result.cumhazard[:, 1]))
    assert np.all(np.isnan(result.cumhazard_se[:, 1]))
    assert np.allclose(result.last_event_time, [train["time"].max()])


def test_average_iid_is_mean_of_iid(model, newdata):
    result = predict_cox(model, times=[2.0, 5.0], newdata=newdata, iid=True,
                         average_iid=True)
    average = result.cumhazard_average_iid["mean"]
    assert average.shape == (60, 2)
    assert np.allclose(average, result.cumhazard_iid.mean(axis=0).T)


def test_band(model, newdata):
    """Bands are wider than pointwise intervals"""
    times = np.linspace(1, 8, 10)
    result = predict_cox(model, times=times, newdata=newdata, se=True, band=True,
                         n_sim=2000, seed=1)
    assert result.quantile_band["survival"].shape == (4,)
    assert np.all(result.quantile_band["survival"] > 1.9)
    assert np.all(result.survival_lower_band <= result.survival_lower + 1e-12)
    assert np.all(result.survival_upper_band >= result.survival_upper - 1e-12)
    # the influence function was only needed for the band
    assert result.survival_iid is None

    band_only = predict_cox(model, times=times, newdata=newdata, band=True, confint=False,
                            n_sim=500, seed=1)
    assert band_only.survival_se is None
    assert band_only.survival_lower is None
    assert band_only.survival_lower_band is not None


def test_product_limit(model, newdata):
    """The product-limit survival is below its exponential approximation"""
    times = [1.0, 3.0, 8.0]
    pl = predict_cox_pl(model, times, newdata, se=True)
    exp = predict_cox(model, times=times, newdata=newdata, type="survival", se=True)

    assert np.all(pl.survival <= exp.survival + 1e-12)
    assert np.allclose(pl.survival, exp.survival, atol=0.05)
    assert np.allclose(pl.survival_se, exp.survival_se * pl.survival / exp.survival)
    assert pl.survival_lower is not None

    with pytest.raises(ValueError):
        predict_cox_pl(model, None, newdata)


def test_left_truncation_warning(train):
    d = train.copy()
    d["entry"] = 0.1 * d["time"]
    model = FittedCox([0.5], d, "time", "event", covariates=["X1"], entry_col="entry",
                      ties="breslow")
    with pytest.warns(UserWarning, match="left-truncated"):
        predict_cox(model, times=[2.0], newdata=d.head(2))


def test_keep_arguments(model, newdata):
    result = predict_cox(model, times=[2.0, 3.0], newdata=newdata, keep_times=False,
                         keep_newdata=True)
    assert result.times is None
    pd.testing.assert_frame_equal(result.newdata, newdata)
    assert len(result.to_frame()) == 8


def test_invalid_arguments(model, newdata, train):
    """Test error handling of invalid arguments"""
    with pytest.raises(ValueError):
        predict_cox(model, times=[1.0], newdata=newdata, type="density")
    with pytest.raises(ValueError):
        predict_cox(model, times=[1.0], newdata=newdata, store_iid="partial")
    with pytest.raises(ValueError, match="newdata"):
        predict_cox(model, times=[1.0], se=True)
    with pytest.raises(ValueError, match="times"):
        predict_cox(model, newdata=newdata)
    with pytest.raises(ValueError):
        predict_cox(model, times=[1.0, np.nan], newdata=newdata)
    with pytest.raises(ValueError):
        predict_cox(model, times=[1.0, 2.0], newdata=newdata, diag=True)
    with pytest.raises(ValueError):
        predict_cox(model, times=[1.0, 2.0, 3.0, 4.0], newdata=newdata, diag=True, se=True)
    with pytest.raises(ValueError):
        predict_cox(model, times=[1.0], newdata=newdata, type="hazard", se=True)
    with pytest.raises(ValueError, match="Missing variables"):
        predict_cox(model, times=[1.0], newdata=newdata[["X1"]])

    missing = newdata.copy()
    missing.loc[0, "X6"] = np.nan
    with pytest.raises(ValueError, match="missing values"):
        predict_cox(model, times=[1.0], newdata=missing)
    with pytest.raises(ValueError, match="confint"):
        predict_cox(model, times=[1.0], newdata=newdata, confint=True)
    with pytest.raises(ValueError, match="confint"):
        predict_cox_pl(model, [1.0], newdata, confint=True)


def test_unsupported_models(train, newdata):
    exact = FittedCox([0.5], train, "time", "event", covariates=["X1"], ties="exact")
    with pytest.raises(ValueError, match="exact"):
        predict_cox(exact, times=[1.0], newdata=newdata)

    weighted = FittedCox([0.5], train, "time", "event", covariates=["X1"],
                         weights=np.linspace(1, 2, len(train)))
    with pytest.raises(ValueError, match="weights"):
        predict_cox(weighted, times=[1.0], newdata=newdata)

    with pytest.raises(ValueError):
        FittedCox([0.5, 0.1], train, "time", "event", covariates=["X1"])
