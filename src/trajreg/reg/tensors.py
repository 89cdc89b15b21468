"""
Assembly of the predictor / dependent-variable tensors for a regression call.

Shapes: predictors are always (n_trials, n_predictors, n_axis) and the
dependent variable (n_trials, n_axis), where n_axis is the number of time
points when the tensor has a dynamic component and 1 otherwise. Reading time
point `tp` from either shape uses index min(tp, n_axis - 1).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Tuple

import numpy as np

from trajreg.traj.accessor import clamp_rows, trial_lengths
from trajreg.traj.core import Trial, TrialSet

from .measures import get_trial_dynamic_measures
from .spec import MeasureSpec
from .timepoints import RowResolver, resolve_rows, same_row
from .trial_measures import get_trial_measures

logger = logging.getLogger(__name__)

CONST_NAME = "const"
CONST_DESCRIPTION = "Intercept"

MeasureResult = Tuple[np.ndarray, List[str], List[str]]
FixedMeasureFn = Callable[[Optional[TrialSet], Sequence[Trial], Sequence[MeasureSpec]], MeasureResult]
DynamicMeasureFn = Callable[[Optional[TrialSet], Sequence[Trial], Sequence[MeasureSpec], np.ndarray], MeasureResult]
TimePointFilter = Callable[[Trial, int], bool]


@dataclass
class RegressionData:
    """
    Everything the regression loop needs, aligned on trials x time points.

    predictor_names / predictor_descriptions start with the intercept, which
    has no column in `predictors` (the solver adds it).
    raw_rows are the resolved row numbers before clamping; row_nums are clamped
    to each trial's length. include[i, tp] marks trial i as part of time
    point tp's regression.
    """

    trials: List[Trial]
    time_points: np.ndarray
    predictors: np.ndarray
    predictor_names: List[str]
    predictor_descriptions: List[str]
    dependent: np.ndarray
    dependent_description: str
    raw_rows: np.ndarray
    row_nums: np.ndarray
    include: np.ndarray
    n_dropped_trials: int = 0
    n_nan_excluded: int = 0

    @property
    def n_trials(self) -> int:
        return len(self.trials)

    @property
    def n_time_points(self) -> int:
        return int(len(self.time_points))

    @property
    def n_predictors(self) -> int:
        """Predictor count without the intercept."""
        return int(self.predictors.shape[1])

    @property
    def n_excluded(self) -> int:
        """Trial x time-point entries excluded for NaN values."""
        return self.n_nan_excluded

    @property
    def predictors_collapsed(self) -> bool:
        return self.predictors.shape[2] == 1

    @property
    def dependent_collapsed(self) -> bool:
        return self.dependent.shape[1] == 1

    def predictors_at(self, tp: int) -> np.ndarray:
        return self.predictors[:, :, min(tp, self.predictors.shape[2] - 1)]

    def dependent_at(self, tp: int) -> np.ndarray:
        return self.dependent[:, min(tp, self.dependent.shape[1] - 1)]


def _check_shape(name: str, values: np.ndarray, expected: Tuple[int, ...]) -> np.ndarray:
    values = np.asarray(values, dtype=float)
    if values.shape != expected:
        raise ValueError(f"{name} measure function returned shape {values.shape}, expected {expected}")
    return values


def _broadcast_tp(a: np.ndarray, n_tp: int) -> np.ndarray:
    """(n_trials, 1 or n_tp) -> (n_trials, n_tp)."""
    return np.broadcast_to(a, (a.shape[0], n_tp))


def apply_time_point_filters(
    trials: Sequence[Trial],
    row_nums: np.ndarray,
    filters: Sequence[TimePointFilter],
    include: Optional[np.ndarray] = None,
) -> np.ndarray:
    """
    Run per-time-point filters filter(trial, row) over all trials and time
    points. A trial excluded by one filter is not passed to the later ones.
    """
    row_nums = np.asarray(row_nums, dtype=int)
    flags = np.ones(row_nums.shape, dtype=bool) if include is None else np.array(include, dtype=bool)
    for filt in filters:
        for tp in range(row_nums.shape[1]):
            for i in np.flatnonzero(flags[:, tp]):
                flags[i, tp] = bool(filt(trials[i], int(row_nums[i, tp])))
    return flags


def build_regression_data(
    trial_set: Optional[TrialSet],
    trials: Sequence[Trial],
    time_points: Sequence[float],
    predictor_specs: Sequence[MeasureSpec],
    dependent_spec: MeasureSpec,
    *,
    row_resolver: RowResolver = same_row,
    trim_time_points: bool = True,
    time_point_filters: Sequence[TimePointFilter] = (),
    fixed_measure_func: FixedMeasureFn = get_trial_measures,
    dynamic_measure_func: DynamicMeasureFn = get_trial_dynamic_measures,
) -> RegressionData:
    """
    Resolve rows, evaluate all measures and compute the inclusion mask.

    Args:
        trial_set: Owner of the trials, passed to measure functions.
        trials: Trials to regress, in order.
        time_points: Abstract time points (row numbers, y values, ...).
        predictor_specs: Parsed predictor specs; spec.dynamic selects the measure function.
        dependent_spec: Parsed dependent-variable spec.
        row_resolver: Maps (time_points, trial) to row numbers.
        trim_time_points: Drop time points beyond the end of every trial before
            evaluating measures.
        time_point_filters: filter(trial, row) -> bool, applied per time point.
        fixed_measure_func: Per-trial measure provider.
        dynamic_measure_func: Per-time-point measure provider.
    """
    trials = list(trials)
    n_trials = len(trials)
    lengths = trial_lengths(trials)

    tps = np.asarray(time_points, dtype=float).ravel()
    raw_rows = resolve_rows(tps, trials, row_resolver)
    if trim_time_points and n_trials > 0:
        keep = (raw_rows <= lengths[:, None]).any(axis=0)
        tps, raw_rows = tps[keep], raw_rows[:, keep]
    n_tp = len(tps)

    # ---- predictors ----
    n_pred = len(predictor_specs)
    dynamic_idx = [k for k, s in enumerate(predictor_specs) if s.dynamic]
    fixed_idx = [k for k, s in enumerate(predictor_specs) if not s.dynamic]
    n_axis = n_tp if dynamic_idx else 1

    predictors = np.full((n_trials, n_pred, n_axis), np.nan)
    names: List[str] = [""] * n_pred
    descs: List[str] = [""] * n_pred

    if dynamic_idx:
        vals, pn, pd_ = dynamic_measure_func(trial_set, trials, [predictor_specs[k] for k in dynamic_idx], raw_rows)
        predictors[:, dynamic_idx, :] = _check_shape("Dynamic", vals, (n_trials, len(dynamic_idx), n_tp))
        for j, k in enumerate(dynamic_idx):
            names[k], descs[k] = pn[j], pd_[j]
    if fixed_idx:
        vals, pn, pd_ = fixed_measure_func(trial_set, trials, [predictor_specs[k] for k in fixed_idx])
        vals = _check_shape("Fixed", vals, (n_trials, len(fixed_idx)))
        # same value for every time point
        predictors[:, fixed_idx, :] = vals[:, :, None]
        for j, k in enumerate(fixed_idx):
            names[k], descs[k] = pn[j], pd_[j]

    # ---- dependent variable ----
    if dependent_spec.dynamic:
        vals, _, dd = dynamic_measure_func(trial_set, trials, [dependent_spec], raw_rows)
        dependent = _check_shape("Dynamic", vals, (n_trials, 1, n_tp))[:, 0, :]
    else:
        vals, _, dd = fixed_measure_func(trial_set, trials, [dependent_spec])
        dependent = _check_shape("Fixed", vals, (n_trials, 1))
    dependent_description = dd[0]

    # ---- data-quality exclusion ----
    nan_pred = _broadcast_tp(np.isnan(predictors).any(axis=1), n_tp)
    nan_dep = _broadcast_tp(np.isnan(dependent), n_tp)
    valid = ~(nan_pred | nan_dep)

    regressable = valid.any(axis=1) if n_tp > 0 else np.ones(n_trials, dtype=bool)
    n_dropped = int(np.sum(~regressable))
    if n_dropped:
        logger.debug("Removing %d trials with NaN predictor / dependent variable", n_dropped)
        trials = [tr for tr, ok in zip(trials, regressable) if ok]
        lengths = lengths[regressable]
        predictors = predictors[regressable]
        dependent = dependent[regressable]
        raw_rows = raw_rows[regressable]
        valid = valid[regressable]

    # time points that no remaining trial reaches
    reached = (raw_rows <= lengths[:, None]).any(axis=0)
    if not reached.all():
        tps, raw_rows, valid = tps[reached], raw_rows[:, reached], valid[:, reached]
        if dynamic_idx:
            predictors = predictors[:, :, reached]
        if dependent_spec.dynamic:
            dependent = dependent[:, reached]

    row_nums = clamp_rows(raw_rows, lengths)
    n_nan_excluded = int(np.sum(~valid))
    include = apply_time_point_filters(trials, row_nums, time_point_filters, include=valid)

    return RegressionData(
        trials=trials,
        time_points=tps,
        predictors=predictors,
        predictor_names=[CONST_NAME, *names],
        predictor_descriptions=[CONST_DESCRIPTION, *descs],
        dependent=dependent,
        dependent_description=dependent_description,
        raw_rows=raw_rows,
        row_nums=row_nums,
        include=include,
        n_dropped_trials=n_dropped,
        n_nan_excluded=n_nan_excluded,
    )
