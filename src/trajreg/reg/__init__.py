from .config import RegressionConfig
from .measures import DYNAMIC_MEASURES, MeasureRegistry, get_trial_dynamic_measures
from .regress import regress, run_time_point_regressions
from .results import PredictorResult, RegressionResult, create_empty_result
from .solver import REGRESSION_TYPES, RegressionType, SingleRegressionResult, invalid_regression_result, run_single_regression
from .spec import MeasureSpec, parse_measure_spec, parse_measure_specs
from .tensors import RegressionData, build_regression_data
from .timepoints import (
    OffsetRowResolver,
    ThresholdRowResolver,
    attribute_offset_resolver,
    delta_time_points,
    same_row,
    y_time_points,
)
from .trial_measures import TRIAL_MEASURES, get_trial_measures

__all__ = [
    "RegressionConfig",
    "DYNAMIC_MEASURES",
    "MeasureRegistry",
    "get_trial_dynamic_measures",
    "regress",
    "run_time_point_regressions",
    "PredictorResult",
    "RegressionResult",
    "create_empty_result",
    "REGRESSION_TYPES",
    "RegressionType",
    "SingleRegressionResult",
    "invalid_regression_result",
    "run_single_regression",
    "MeasureSpec",
    "parse_measure_spec",
    "parse_measure_specs",
    "RegressionData",
    "build_regression_data",
    "OffsetRowResolver",
    "ThresholdRowResolver",
    "attribute_offset_resolver",
    "delta_time_points",
    "same_row",
    "y_time_points",
    "TRIAL_MEASURES",
    "get_trial_measures",
]
