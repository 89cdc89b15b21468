"""
Per-time-point regression over the trials of one subject.

    result = regress(trial_set, "reg", "#iep", ["target", "#xvel"], delta_time=0.05)

Each time point is regressed separately on the trials that are valid at that
time point; time points with too few trials come out as NaN rather than
failing the call.
"""

from __future__ import annotations

import logging
from typing import Any, List, Optional, Sequence, Union

import numpy as np

from trajreg.exceptions import ConfigurationError, InsufficientDataError
from trajreg.traj.core import Trial, TrialSet

from .config import DEFAULT_MESSAGE, RegressionConfig
from .results import RegressionResult, create_empty_result
from .solver import (
    invalid_regression_result,
    run_single_regression,
    validate_predictor_count,
    validate_regression_type,
)
from .spec import MeasureSpec, SpecLike, parse_measure_spec, parse_measure_specs
from .tensors import RegressionData, build_regression_data
from .timepoints import (
    OffsetRowResolver,
    RowResolver,
    ThresholdRowResolver,
    attribute_offset_resolver,
    delta_time_points,
    has_offset_attribute,
    same_row,
    times_mean_per_time_point,
    times_same_row,
    y_time_points,
)

logger = logging.getLogger(__name__)

DEFAULT_DELTA_TIME = 0.05


def select_trials(trial_set: TrialSet, config: RegressionConfig) -> List[Trial]:
    """Trials to regress: raw or averaged, filtered, then consolidated."""
    trials = trial_set.trial_list(averaged=config.use_averaged_trials)
    filters = list(config.trial_filter)
    if config.per_trial_offset_attribute is not None:
        filters.append(has_offset_attribute(config.per_trial_offset_attribute))
    for filt in filters:
        trials = [tr for tr in trials if filt(tr)]
    if config.trial_consolidator is not None:
        trials = list(config.trial_consolidator(trials))
    return trials


def _row_resolver(config: RegressionConfig) -> RowResolver:
    if config.group_by_y:
        return ThresholdRowResolver("y")
    if config.custom_row_resolver is not None:
        return config.custom_row_resolver
    if config.per_trial_offset_function is not None:
        return OffsetRowResolver(config.per_trial_offset_function)
    if config.per_trial_offset_attribute is not None:
        return attribute_offset_resolver(config.per_trial_offset_attribute)
    return same_row


def _time_points(trial_set: TrialSet, config: RegressionConfig) -> np.ndarray:
    if config.explicit_rows is not None:
        return np.asarray(config.explicit_rows, dtype=float)
    all_trials = trial_set.trial_list()
    if config.group_by_y:
        return y_time_points(all_trials, step=config.y_step)
    dt = DEFAULT_DELTA_TIME if config.delta_time is None else config.delta_time
    return delta_time_points(all_trials, dt=dt, max_time=config.max_time)


def format_start_message(
    template: Optional[str],
    *,
    subject_id: str,
    n_trials: int,
    n_time_points: int,
    progress: Optional[Sequence[int]] = None,
) -> str:
    """Substitute $SUBJID$, $PROGRESS$, $NTP$ and $NTRIALS$ in the start message."""
    msg = DEFAULT_MESSAGE if template is None else template
    progress_msg = "" if progress is None else f" ({int(progress[0])}/{int(progress[1])})"
    return (
        msg.replace("$SUBJID$", str(subject_id).upper())
        .replace("$PROGRESS$", progress_msg)
        .replace("$NTP$", str(n_time_points))
        .replace("$NTRIALS$", str(n_trials))
    )


def run_time_point_regressions(
    data: RegressionData,
    result: RegressionResult,
    regression_type: str,
    *,
    solver=run_single_regression,
    min_sample_ratio: float = 3.0,
    full_stats: bool = False,
) -> str:
    """
    Regress every time point in order and fold the outcome into `result`.

    A time point whose included-trial count is zero or below
    (predictors + 1) * min_sample_ratio gets the all-NaN result.
    Returns the progress trace: one '.' per regressed time point, 'X' per invalid one.
    """
    n_predictors = data.n_predictors + 1
    store_se = regression_type == "reg"
    trace = []
    for tp in range(data.n_time_points):
        rows = data.include[:, tp]
        n_included = int(np.sum(rows))
        if n_included == 0 or n_included < n_predictors * min_sample_ratio:
            result.update(invalid_regression_result(n_predictors), tp, full_stats=full_stats, store_se=store_se)
            trace.append("X")
            continue

        X = data.predictors_at(tp)[rows, :]
        y = data.dependent_at(tp)[rows]
        one = solver(regression_type, X, y, silent=True)
        result.update(one, tp, full_stats=full_stats, store_se=store_se)
        trace.append("X" if np.isnan(one.beta[-1]) else ".")
    return "".join(trace)


def regress(
    trial_set: TrialSet,
    regression_type: str,
    dependent_spec: SpecLike,
    predictor_specs: Union[SpecLike, Sequence[SpecLike]],
    config: Optional[RegressionConfig] = None,
    **options: Any,
) -> RegressionResult:
    """
    Run one regression per time point.

    Args:
        trial_set: Subject data.
        regression_type: "reg", "step", "corr", "pointbiserial" or "logglm".
        dependent_spec: Dependent-variable measure spec ("#name" for a dynamic measure).
        predictor_specs: Predictor measure spec(s).
        config: Base configuration; `options` override its fields.
        **options: See RegressionConfig.

    Returns:
        A finalized RegressionResult with one entry per time point.

    Raises:
        ConfigurationError: Unknown option, conflicting options or unsupported regression type.
        InsufficientDataError: Too few trials for the number of predictors.
        UnknownMeasure / UnknownTrajectoryColumn: Bad measure specs.
    """
    validate_regression_type(regression_type)
    config = RegressionConfig.from_options(config, **options)

    predictors, fixed_pred = parse_measure_specs(predictor_specs)
    if not predictors:
        raise ConfigurationError("At least one predictor is required")
    validate_predictor_count(regression_type, len(predictors))
    dependent: MeasureSpec = parse_measure_spec(dependent_spec, dynamic=config.dynamic_dependent)
    only_fixed = all(fixed_pred) and not dependent.dynamic

    if only_fixed:
        if config.time_point_filter:
            raise ConfigurationError(
                "Time-point filters cannot be used when the dependent variable and all predictors are fixed"
            )
        time_points = np.array([1.0])
        resolver: RowResolver = same_row
    else:
        time_points = _time_points(trial_set, config)
        resolver = _row_resolver(config)

    trials = select_trials(trial_set, config)
    if len(trials) < 2 * len(predictors):
        raise InsufficientDataError(
            f"There are {len(predictors)} predictors but only {len(trials)} trials - that's not enough"
        )

    data = build_regression_data(
        trial_set,
        trials,
        time_points,
        predictors,
        dependent,
        row_resolver=resolver,
        trim_time_points=config.explicit_rows is None,
        time_point_filters=config.time_point_filter,
        fixed_measure_func=config.fixed_measure_func,
        dynamic_measure_func=config.dynamic_measure_func,
    )
    if data.n_nan_excluded:
        logger.log(
            logging.INFO if config.verbose else logging.DEBUG,
            "%s: %d trial x time-point entries excluded for NaN values",
            trial_set.subject_id,
            data.n_nan_excluded,
        )

    times_fn = times_mean_per_time_point if config.group_by_y else times_same_row
    times = times_fn(data.time_points, data.trials, data.row_nums) if data.n_trials else np.full(data.n_time_points, np.nan)

    if config.save_input_to:
        from trajreg.io.parquet import save_regression_input

        save_regression_input(config.save_input_to, data, times)

    n_predictors = len(predictors) + 1
    if data.n_trials < n_predictors * config.min_sample_ratio:
        raise InsufficientDataError(
            f"There are only {data.n_trials} trials. This is insufficient for {n_predictors} predictors "
            f"(including const). Minimal trial/predictor ratio = {config.min_sample_ratio:.2f}"
        )

    if config.print_message:
        logger.info(
            format_start_message(
                config.message,
                subject_id=trial_set.subject_id,
                n_trials=data.n_trials,
                n_time_points=data.n_time_points,
                progress=config.progress,
            )
        )

    result = create_empty_result(trial_set.subject_id, regression_type, data, dependent.raw, times)
    result.regression_params = {
        "predictor_specs": [s.raw for s in predictors],
        "dependent_spec": dependent.raw,
        "fixed_predictors": list(fixed_pred),
        "fixed_dependent": not dependent.dynamic,
        "fixed_measure_func": config.fixed_measure_func,
        "dynamic_measure_func": config.dynamic_measure_func,
        "trial_consolidator": config.trial_consolidator,
    }

    trace = run_time_point_regressions(
        data,
        result,
        regression_type,
        solver=config.solver,
        min_sample_ratio=config.min_sample_ratio,
        full_stats=config.full_stats,
    )
    if not config.silent and data.n_time_points > 1:
        logger.debug("%s progress: %s", trial_set.subject_id, trace)

    result.max_movement_time = trial_set.max_movement_time
    return result.finalize()
