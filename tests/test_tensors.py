import numpy as np
import pytest

from trajreg.reg.spec import parse_measure_spec
from trajreg.reg.tensors import CONST_NAME, apply_time_point_filters, build_regression_data
from trajreg.reg.timepoints import OffsetRowResolver, ThresholdRowResolver, attribute_offset_resolver
from trajreg.traj import TRAJ_COLUMNS, Trial, TrialSet, column_index


def make_trial(trial_id: str, n: int, target: float = np.nan, **columns) -> Trial:
    traj = np.zeros((n, len(TRAJ_COLUMNS)))
    traj[:, column_index("abs_time")] = np.arange(n) * 0.01
    for name, values in columns.items():
        traj[:, column_index(name)] = values
    return Trial(trial_id=trial_id, trajectory=traj, target=target)


def specs(*raw):
    return [parse_measure_spec(s) for s in raw]


def test_dynamic_predictor_with_fixed_dependent_shapes():
    trials = [make_trial(f"t{i}", 6, target=i, x_velocity=np.arange(6) + i) for i in range(4)]
    ts = TrialSet(subject_id="s01")

    data = build_regression_data(ts, trials, [1, 3, 5], specs("#xvel"), parse_measure_spec("target"))

    assert data.predictors.shape == (4, 1, 3)
    assert data.dependent.shape == (4, 1)
    assert not data.predictors_collapsed
    assert data.dependent_collapsed
    assert data.predictor_names == [CONST_NAME, "xvel"]
    assert data.predictor_descriptions[0] == "Intercept"
    np.testing.assert_allclose(data.predictors_at(1)[:, 0], [2, 3, 4, 5])
    np.testing.assert_allclose(data.dependent_at(2), [0, 1, 2, 3])
    assert data.include.all()


def test_fixed_predictors_collapse_to_one_plane():
    trials = [make_trial(f"t{i}", 3, target=i, x=[0, 0, i]) for i in range(3)]
    data = build_regression_data(None, trials, [1], specs("target"), parse_measure_spec("endpoint"))

    assert data.predictors.shape == (3, 1, 1)
    assert data.dependent.shape == (3, 1)
    np.testing.assert_allclose(data.dependent_at(0), [0, 1, 2])


def test_nan_values_exclude_trial_only_at_that_time_point():
    trials = [
        make_trial("a", 4, target=1, implied_ep=[1.0, np.nan, 3.0, 4.0]),
        make_trial("b", 4, target=2, implied_ep=[2.0, 3.0, 4.0, 5.0]),
    ]

    data = build_regression_data(None, trials, [1, 2, 3], specs("target"), parse_measure_spec("#iep"))

    np.testing.assert_array_equal(data.include, [[True, False, True], [True, True, True]])
    assert data.n_excluded == 1
    assert data.n_trials == 2


def test_trials_nan_everywhere_are_dropped():
    trials = [
        make_trial("a", 3, target=1, implied_ep=[1.0, 2.0, 3.0]),
        make_trial("b", 3, target=np.nan, implied_ep=[1.0, 2.0, 3.0]),
        make_trial("c", 3, target=3, implied_ep=[np.nan, np.nan, np.nan]),
    ]

    data = build_regression_data(None, trials, [1, 2], specs("target"), parse_measure_spec("#iep"))

    assert [tr.trial_id for tr in data.trials] == ["a"]
    assert data.n_dropped_trials == 2
    assert data.predictors.shape == (1, 1, 1)
    assert data.dependent.shape == (1, 2)


def test_time_points_beyond_every_trial_are_trimmed():
    trials = [make_trial("a", 3, x=[1, 2, 3]), make_trial("b", 5, x=[1, 2, 3, 4, 5])]

    trimmed = build_regression_data(None, trials, [1, 4, 5, 6, 8], specs("#x"), parse_measure_spec("n_rows"))
    np.testing.assert_allclose(trimmed.time_points, [1, 4, 5])
    np.testing.assert_array_equal(trimmed.row_nums, [[1, 3, 3], [1, 4, 5]])
    np.testing.assert_array_equal(trimmed.raw_rows, [[1, 4, 5], [1, 4, 5]])

    # explicit rows are not trimmed up front, but rows no trial reaches still go
    kept = build_regression_data(
        None, trials, [1, 4, 8], specs("#x"), parse_measure_spec("n_rows"), trim_time_points=False
    )
    np.testing.assert_allclose(kept.time_points, [1, 4])
    assert kept.predictors.shape == (2, 1, 2)


def test_rows_are_clamped_for_every_trial():
    trials = [make_trial("a", 3, y=[0.0, 1.0, 2.0]), make_trial("b", 6, y=np.arange(6.0))]
    data = build_regression_data(
        None,
        trials,
        [1.0, 2.0, 5.0],
        specs("#y"),
        parse_measure_spec("n_rows"),
        row_resolver=ThresholdRowResolver("y"),
    )
    lengths = np.array([tr.n_rows for tr in data.trials])
    assert np.all(data.row_nums <= lengths[:, None])
    assert np.all(data.row_nums >= 1)


def test_attribute_offsets_past_trial_end_are_clamped():
    # "a" starts at row 2 and has 3 rows, so time points 3 and 4 land past its end
    a_traj = make_trial("a", 3, y=[10.0, 11.0, 12.0]).trajectory
    b_traj = make_trial("b", 6, y=np.arange(6.0)).trajectory
    a = Trial(trial_id="a", trajectory=a_traj, custom={"start": 2})
    b = Trial(trial_id="b", trajectory=b_traj, custom={"start": 1})

    data = build_regression_data(
        None,
        [a, b],
        [1.0, 2.0, 3.0, 4.0, 8.0],
        specs("#y"),
        parse_measure_spec("n_rows"),
        row_resolver=attribute_offset_resolver("start"),
    )

    # time point 8 is beyond both trials
    np.testing.assert_allclose(data.time_points, [1.0, 2.0, 3.0, 4.0])
    np.testing.assert_allclose(data.raw_rows, [[2, 3, 4, 5], [1, 2, 3, 4]])
    np.testing.assert_array_equal(data.row_nums, [[2, 3, 3, 3], [1, 2, 3, 4]])
    lengths = np.array([tr.n_rows for tr in data.trials])
    assert np.all((data.row_nums >= 1) & (data.row_nums <= lengths[:, None]))
    np.testing.assert_allclose(data.predictors[:, 0, :], [[11.0, 12.0, 12.0, 12.0], [0.0, 1.0, 2.0, 3.0]])
    assert data.include.all()


def test_negative_offsets_are_clamped_to_first_row():
    trials = [make_trial(f"t{i}", 4, x_velocity=[1.0, 2.0, 3.0, 4.0]) for i in range(2)]
    resolver = OffsetRowResolver(lambda tr: -1 if tr.trial_id == "t0" else 1)

    data = build_regression_data(
        None, trials, [1.0, 2.0, 3.0], specs("#xvel"), parse_measure_spec("n_rows"), row_resolver=resolver
    )

    np.testing.assert_array_equal(data.row_nums, [[1, 1, 1], [1, 2, 3]])
    np.testing.assert_allclose(data.predictors[:, 0, :], [[1.0, 1.0, 1.0], [1.0, 2.0, 3.0]])


def test_time_point_filters_are_applied_incrementally():
    trials = [make_trial(f"t{i}", 4) for i in range(3)]
    rows = np.tile(np.array([1, 2, 3]), (3, 1))
    calls = []

    def first(trial, row):
        return not (trial.trial_id == "t0" and row == 2)

    def second(trial, row):
        calls.append((trial.trial_id, row))
        return row != 3

    flags = apply_time_point_filters(trials, rows, [first, second])

    np.testing.assert_array_equal(flags, [[True, False, False], [True, True, False], [True, True, False]])
    assert ("t0", 2) not in calls
    assert len(calls) == 8


def test_time_point_filters_in_build():
    trials = [make_trial(f"t{i}", 4, target=i, x=np.arange(4.0)) for i in range(3)]
    data = build_regression_data(
        None,
        trials,
        [1, 2, 3],
        specs("#x"),
        parse_measure_spec("target"),
        time_point_filters=[lambda trial, row: trial.trial_id != "t1" or row < 3],
    )
    np.testing.assert_array_equal(data.include[1], [True, True, False])
    assert data.include[0].all() and data.include[2].all()


def test_custom_measure_function_shape_is_checked():
    trials = [make_trial(f"t{i}", 3, target=i) for i in range(3)]

    def bad_fixed(trial_set, measured, measure_specs):
        return np.zeros((len(measured), 2)), ["a", "b"], ["a", "b"]

    with pytest.raises(ValueError):
        build_regression_data(
            None, trials, [1], specs("target"), parse_measure_spec("target"), fixed_measure_func=bad_fixed
        )
