from __future__ import annotations

from dataclasses import dataclass, fields
from typing import Any, Callable, Optional, Sequence, Tuple

import numpy as np

from trajreg.exceptions import ConfigurationError
from trajreg.traj.core import Trial

from .measures import get_trial_dynamic_measures
from .solver import run_single_regression
from .tensors import DynamicMeasureFn, FixedMeasureFn, TimePointFilter
from .timepoints import OffsetFn, RowResolver
from .trial_measures import get_trial_measures

TrialFilter = Callable[[Trial], bool]
TrialConsolidator = Callable[[Sequence[Trial]], Sequence[Trial]]

SILENT_MESSAGE = "silent"
DEFAULT_MESSAGE = "Regressing $SUBJID$$PROGRESS$ ($NTRIALS$ trials, $NTP$ time points)"


def _as_tuple(value: Any) -> Tuple[Any, ...]:
    if value is None:
        return ()
    if callable(value):
        return (value,)
    return tuple(value)


@dataclass(frozen=True)
class RegressionConfig:
    """
    Options of a regression call (see `trajreg.regress`).

    Trial selection:
      - use_averaged_trials: regress TrialSet.averaged_trials instead of the raw trials.
      - trial_filter: predicate(s) trial -> bool; all must pass.
      - trial_consolidator: trials -> trials, applied after filtering.

    Time points (explicit_rows, delta_time and group_by_y are mutually exclusive):
      - explicit_rows: literal time points (row numbers unless a resolver says otherwise).
      - delta_time: seconds between consecutive time points (default 0.05).
      - group_by_y: one time point per y coordinate, y_step apart.
      - max_time: last time point for delta_time time points (seconds).
      - custom_row_resolver / per_trial_offset_function / per_trial_offset_attribute:
        override how time points map to rows (mutually exclusive).
      - time_point_filter: predicate(s) (trial, row) -> bool.
      - dynamic_dependent: treat the dependent variable as per time point.

    Measures and solver:
      - fixed_measure_func / dynamic_measure_func: measure providers.
      - solver: single-regression function.

    Output:
      - min_sample_ratio: minimal included trials per predictor (intercept included).
      - full_stats: keep the solver's full statistics per time point.
      - save_input_to: folder for a debug dump of the assembled tensors.
      - message: start message; tokens $SUBJID$, $NTRIALS$, $NTP$, $PROGRESS$;
        "silent" suppresses it.
      - progress: (i, n) shown as " (i/n)" in the message.
      - verbose / silent: more / no log output.
    """

    use_averaged_trials: bool = False
    trial_filter: Tuple[TrialFilter, ...] = ()
    trial_consolidator: Optional[TrialConsolidator] = None

    explicit_rows: Optional[Tuple[float, ...]] = None
    delta_time: Optional[float] = None
    group_by_y: bool = False
    y_step: Optional[float] = None
    max_time: Optional[float] = None
    custom_row_resolver: Optional[RowResolver] = None
    per_trial_offset_function: Optional[OffsetFn] = None
    per_trial_offset_attribute: Optional[str] = None
    time_point_filter: Tuple[TimePointFilter, ...] = ()
    dynamic_dependent: bool = False

    fixed_measure_func: FixedMeasureFn = get_trial_measures
    dynamic_measure_func: DynamicMeasureFn = get_trial_dynamic_measures
    solver: Callable[..., Any] = run_single_regression

    min_sample_ratio: float = 3.0
    full_stats: bool = False
    save_input_to: Optional[str] = None
    message: Optional[str] = None
    progress: Optional[Tuple[int, int]] = None
    verbose: bool = False
    silent: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "trial_filter", _as_tuple(self.trial_filter))
        object.__setattr__(self, "time_point_filter", _as_tuple(self.time_point_filter))
        if self.explicit_rows is not None:
            rows = np.atleast_1d(np.asarray(self.explicit_rows, dtype=float)).ravel()
            if rows.size == 0:
                raise ConfigurationError("explicit_rows must not be empty")
            object.__setattr__(self, "explicit_rows", tuple(float(r) for r in rows))
        self.validate()

    @classmethod
    def option_names(cls) -> Tuple[str, ...]:
        return tuple(f.name for f in fields(cls))

    @classmethod
    def from_options(cls, base: Optional["RegressionConfig"] = None, **options: Any) -> "RegressionConfig":
        """Build a config from keyword options; unknown keys are rejected."""
        known = set(cls.option_names())
        unknown = [k for k in options if k not in known]
        if unknown:
            raise ConfigurationError(f"Unsupported configuration key(s): {', '.join(sorted(unknown))}")
        if base is None:
            return cls(**options)
        merged = {name: getattr(base, name) for name in cls.option_names()}
        merged.update(options)
        return cls(**merged)

    def validate(self) -> None:
        modes = [
            name
            for name, on in (
                ("explicit_rows", self.explicit_rows is not None),
                ("delta_time", self.delta_time is not None),
                ("group_by_y", self.group_by_y),
            )
            if on
        ]
        if len(modes) > 1:
            raise ConfigurationError(f"Time-point options are mutually exclusive, got: {', '.join(modes)}")

        resolvers = [
            name
            for name in ("custom_row_resolver", "per_trial_offset_function", "per_trial_offset_attribute")
            if getattr(self, name) is not None
        ]
        if len(resolvers) > 1:
            raise ConfigurationError(f"Row-resolution options are mutually exclusive, got: {', '.join(resolvers)}")
        if self.group_by_y and resolvers:
            raise ConfigurationError(f"group_by_y cannot be combined with {resolvers[0]}")

        if self.delta_time is not None and self.delta_time <= 0:
            raise ConfigurationError(f"delta_time must be positive, got {self.delta_time}")
        if self.y_step is not None and self.y_step <= 0:
            raise ConfigurationError(f"y_step must be positive, got {self.y_step}")
        if self.y_step is not None and not self.group_by_y:
            raise ConfigurationError("y_step requires group_by_y=True")
        if self.min_sample_ratio < 0:
            raise ConfigurationError(f"min_sample_ratio must be non-negative, got {self.min_sample_ratio}")
        if self.progress is not None and len(self.progress) != 2:
            raise ConfigurationError(f"progress must be a pair (i, n), got {self.progress!r}")
        for name in ("trial_consolidator", "fixed_measure_func", "dynamic_measure_func", "solver"):
            value = getattr(self, name)
            if value is not None and not callable(value):
                raise ConfigurationError(f"{name} must be callable")
        for filt in (*self.trial_filter, *self.time_point_filter):
            if not callable(filt):
                raise ConfigurationError(f"Filters must be callable, got {filt!r}")

    @property
    def print_message(self) -> bool:
        return not self.silent and not (
            self.message is not None and self.message.strip().lower() == SILENT_MESSAGE
        )

