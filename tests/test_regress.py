import logging

import numpy as np
import pytest

from trajreg import RegressionConfig, TrialSet, regress
from trajreg.exceptions import ConfigurationError, InsufficientDataError, UnknownMeasure
from trajreg.reg.regress import format_start_message
from trajreg.reg.solver import invalid_regression_result, run_single_regression
from trajreg.traj import TRAJ_COLUMNS, Trial, column_index


def make_trial(i: int, n: int = 4, dt: float = 0.01, custom=None, **columns) -> Trial:
    traj = np.zeros((n, len(TRAJ_COLUMNS)))
    traj[:, column_index("abs_time")] = np.arange(n) * dt
    for name, values in columns.items():
        traj[:, column_index(name)] = values
    return Trial(trial_id=f"t{i}", trajectory=traj, target=float(i), custom=dict(custom or {}))


def linear_trial_set(n_trials: int = 10) -> TrialSet:
    """Trial i: target i, score 2*i, implied endpoint 2*i + row."""
    ts = TrialSet(subject_id="s01", max_movement_time=1.5)
    for i in range(1, n_trials + 1):
        ts.add(
            make_trial(
                i,
                custom={"score": 2.0 * i},
                implied_ep=2.0 * i + np.arange(1, 5),
                x_velocity=np.arange(4.0) * i,
            )
        )
    return ts


def test_exact_linear_relation_single_time_point():
    res = regress(linear_trial_set(), "reg", "Trial.score", ["target"])

    assert res.predictor_names == ["const", "target"]
    assert res.n_time_points == 1
    assert np.isclose(res.r_squared[0], 1.0)
    assert np.isclose(res.get_pred_result("target").b[0], 2.0)
    assert np.isclose(res.get_pred_result("const").b[0], 0.0, atol=1e-8)
    assert res.n_trials == 10
    assert res.max_movement_time == 1.5
    assert res.dependent_var == "Trial.score"


def test_standardized_coefficient():
    ts = TrialSet(subject_id="s01")
    rng = np.random.default_rng(1)
    for i in range(20):
        ts.add(make_trial(i, custom={"score": 0.7 * i + rng.normal()}))

    res = regress(ts, "reg", "Trial.score", "target")

    targets = np.arange(20.0)
    scores = np.array([tr.custom["score"] for tr in ts.trial_list()])
    pred = res.get_pred_result("target")
    expected = pred.b[0] * np.std(targets, ddof=1) / np.std(scores, ddof=1)
    assert np.isclose(pred.beta[0], expected)
    assert res.get_pred_result("const").beta[0] == 0.0


def test_insufficient_trials_degrade_time_point_to_nan():
    ts = TrialSet(subject_id="s01")
    for i in range(1, 11):
        iep = 2.0 * i + np.arange(1, 5)
        if i <= 6:
            iep[1] = np.nan
        ts.add(make_trial(i, implied_ep=iep))

    res = regress(ts, "reg", "#iep", ["target"], explicit_rows=[1, 2, 3])

    assert res.n_time_points == 3
    assert np.isnan(res.r_squared[1])
    assert np.isnan(res.get_pred_result("target").b[1])
    assert np.isnan(res.p[1])
    np.testing.assert_allclose(res.r_squared[[0, 2]], [1.0, 1.0])
    np.testing.assert_allclose(res.get_pred_result("target").b[[0, 2]], [2.0, 2.0])


def test_logglm_singular_time_point_does_not_abort_call():
    # the implied endpoint is 0 for every trial at row 1 and tracks the response at row 2
    rng = np.random.default_rng(3)
    ts = TrialSet(subject_id="s01")
    for i in range(30):
        response = i % 2
        iep = [0.0, 2.0 * response + rng.normal()]
        tr = make_trial(i, n=2, implied_ep=iep)
        ts.add(Trial(trial_id=tr.trial_id, trajectory=tr.trajectory, target=tr.target, user_response=response))

    res = regress(ts, "logglm", "response", "#iep", explicit_rows=[1, 2])

    assert res.n_time_points == 2
    assert np.isnan(res.r_squared[0])
    assert np.isnan(res.get_pred_result("iep").b[0])
    assert np.isfinite(res.r_squared[1])
    assert res.get_pred_result("iep").b[1] > 0


def test_solver_failure_at_one_time_point_is_reported_as_nan(caplog):
    caplog.set_level(logging.DEBUG, logger="trajreg")

    def solver(regression_type, predictors, dependent, *, silent):
        if np.allclose(dependent, 2.0 * np.arange(1, 11) + 2):
            return invalid_regression_result(predictors.shape[1] + 1)
        return run_single_regression(regression_type, predictors, dependent, silent=silent)

    res = regress(linear_trial_set(), "reg", "#iep", "target", explicit_rows=[1, 2, 3], solver=solver)

    assert np.isnan(res.r_squared[1])
    np.testing.assert_allclose(res.r_squared[[0, 2]], [1.0, 1.0])
    assert "s01 progress: .X." in caplog.text


def test_dynamic_predictor_over_delta_time_points():
    res = regress(linear_trial_set(), "reg", "target", ["#xvel"], delta_time=0.01)

    # rows 2, 3, 4 on the longest trial's clock
    np.testing.assert_allclose(res.times, [0.0, 0.01, 0.02])
    assert res.predictor_names == ["const", "xvel"]
    assert res.sd_x.shape == (3, 1)
    assert res.sd_y.shape == (3,)
    np.testing.assert_allclose(res.get_pred_result("xvel").b, [1.0, 0.5, 1.0 / 3])
    assert res.regression_params["fixed_predictors"] == [False]
    assert res.regression_params["fixed_dependent"] is True


def test_group_by_y_time_points():
    ts = TrialSet(subject_id="s01")
    for i in range(1, 11):
        y = np.array([0.0, 1.0, 2.0, 3.0]) * (1 + 0.1 * (i % 2))
        ts.add(make_trial(i, y=y, implied_ep=2.0 * i + y))

    res = regress(ts, "reg", "#iep", "target", group_by_y=True, y_step=1.0)

    np.testing.assert_allclose(res.times, [0.01, 0.02, 0.03])
    assert res.n_time_points == 3


def test_offset_attribute_filters_trials_without_it():
    ts = linear_trial_set(12)
    for tr in list(ts.trials.values())[4:]:
        tr.custom["start"] = 2

    res = regress(ts, "reg", "#iep", "target", per_trial_offset_attribute="start", explicit_rows=[1, 2])

    assert res.n_trials == 8
    np.testing.assert_allclose(res.get_pred_result("target").b, [2.0, 2.0])
    np.testing.assert_allclose(res.get_pred_result("const").b, [2.0, 3.0], atol=1e-8)


def test_trial_filter_and_consolidator():
    ts = linear_trial_set(12)
    seen = []

    def consolidate(trials):
        seen.append(len(trials))
        return trials[:-1]

    res = regress(
        ts,
        "reg",
        "Trial.score",
        "target",
        trial_filter=[lambda tr: tr.target > 1, lambda tr: tr.target < 12],
        trial_consolidator=consolidate,
    )

    assert seen == [10]
    assert res.n_trials == 9
    assert res.regression_params["trial_consolidator"] is consolidate


def test_averaged_trials():
    ts = linear_trial_set(2)
    for i in range(1, 11):
        ts.add(make_trial(100 + i, custom={"score": 3.0 * i}), averaged=True)
    res = regress(ts, "reg", "Trial.score", "target", use_averaged_trials=True)

    assert res.n_trials == 10
    assert np.isclose(res.get_pred_result("target").b[0], 3.0)


def test_pluggable_solver_is_called_quietly_per_time_point():
    calls = []

    def solver(regression_type, predictors, dependent, *, silent):
        calls.append((regression_type, predictors.shape, silent))
        return run_single_regression(regression_type, predictors, dependent, silent=silent)

    regress(linear_trial_set(), "reg", "#iep", "target", explicit_rows=[1, 2, 3], solver=solver)

    assert calls == [("reg", (10, 1), True)] * 3


def test_full_stats_kept_per_time_point():
    res = regress(linear_trial_set(), "reg", "#iep", "target", explicit_rows=[1, 2], full_stats=True)
    assert len(res.stats) == 2
    assert res.stats[0]["nobs"] == 10


def test_result_is_read_only():
    res = regress(linear_trial_set(), "reg", "Trial.score", "target")
    with pytest.raises(ValueError):
        res.r_squared[0] = 0.0
    with pytest.raises(ValueError):
        res.get_pred_result("target").b[0] = 0.0

    table = res.to_dataframe()
    assert list(table["predictor"]) == ["const", "target"]
    assert "b_target" in res.summary_table().columns


def test_too_few_trials_for_predictors_is_fatal():
    with pytest.raises(InsufficientDataError):
        regress(linear_trial_set(3), "reg", "Trial.score", ["target", "mt"])
    with pytest.raises(InsufficientDataError):
        regress(linear_trial_set(5), "reg", "Trial.score", ["target"])


def test_configuration_errors():
    ts = linear_trial_set()
    with pytest.raises(ConfigurationError, match="bogus"):
        regress(ts, "reg", "Trial.score", "target", bogus=1)
    with pytest.raises(ConfigurationError):
        regress(ts, "reg", "#iep", "target", explicit_rows=[1, 2], delta_time=0.05)
    with pytest.raises(ConfigurationError):
        regress(ts, "reg", "Trial.score", "target", time_point_filter=lambda trial, row: True)
    with pytest.raises(ConfigurationError):
        regress(ts, "anova", "Trial.score", "target")
    with pytest.raises(ConfigurationError, match="exactly one predictor"):
        regress(ts, "corr", "Trial.score", ["target", "Trial.score"])
    with pytest.raises(ConfigurationError, match="exactly one predictor"):
        regress(ts, "pointbiserial", "#iep", ["target", "#xvel"], explicit_rows=[1, 2])
    with pytest.raises(UnknownMeasure):
        regress(ts, "reg", "Trial.score", "wobble")


def test_dynamic_dependent_option_matches_marker():
    a = regress(linear_trial_set(), "reg", "iep", "target", explicit_rows=[1, 2], dynamic_dependent=True)
    b = regress(linear_trial_set(), "reg", "#iep", "target", explicit_rows=[1, 2])
    np.testing.assert_allclose(a.get_pred_result("target").b, b.get_pred_result("target").b)


def test_config_object_with_overrides():
    base = RegressionConfig(explicit_rows=(1, 2, 3), min_sample_ratio=2)
    res = regress(linear_trial_set(), "reg", "#iep", "target", config=base, explicit_rows=[1])
    assert res.n_time_points == 1


def test_start_message(caplog):
    caplog.set_level(logging.INFO, logger="trajreg")
    regress(linear_trial_set(), "reg", "#iep", "target", explicit_rows=[1, 2], progress=(2, 5))
    assert "Regressing S01 (2/5) (10 trials, 2 time points)" in caplog.text

    caplog.clear()
    regress(linear_trial_set(), "reg", "#iep", "target", explicit_rows=[1, 2], message="silent")
    assert "Regressing" not in caplog.text


def test_format_start_message_tokens():
    msg = format_start_message("$SUBJID$: $NTRIALS$/$NTP$$PROGRESS$", subject_id="ab", n_trials=7, n_time_points=3)
    assert msg == "AB: 7/3"
