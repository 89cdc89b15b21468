"""
Named measures evaluated on trajectories.

A measure turns a spec ("xvel", "dtheta:smoothsd=0.05", "Traj.Theta") into a
trials x time points matrix read at given row numbers. Measures live in a
MeasureRegistry; DYNAMIC_MEASURES holds the built-in per-time-point measures
and can be extended with `register`, or copied and extended for a custom
measure provider.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np

from trajreg.exceptions import ConfigurationError, MeasureNotComputed, UnknownMeasure
from trajreg.stats.velocity import hold_last, smooth_gaussian
from trajreg.traj.accessor import TrajectoryAccessor, trial_lengths
from trajreg.traj.core import Trial, TrialSet, column_index

from .spec import MeasureSpec, SpecLike, parse_measure_spec

# func(accessor, spec) -> (n_trials, n_tp) or (n_trials,) values
MeasureFunc = Callable[[TrajectoryAccessor, MeasureSpec], Optional[np.ndarray]]


@dataclass(frozen=True)
class MeasureDef:
    func: MeasureFunc
    description: Optional[str] = None
    output_name: Optional[str] = None


@dataclass(frozen=True)
class BoundMeasure:
    """A measure definition bound to a parsed spec; call it to get values."""

    spec: MeasureSpec
    definition: MeasureDef

    @property
    def output_name(self) -> str:
        return self.definition.output_name or self.spec.raw

    @property
    def description(self) -> str:
        return self.definition.description or self.spec.name

    def __call__(
        self,
        trial_set: Optional[TrialSet],
        trials: Sequence[Trial],
        row_nums: Optional[np.ndarray] = None,
    ) -> np.ndarray:
        """
        Evaluate on `trials` at the (n_trials, n_tp) 1-based `row_nums`.
        Without row_nums the measure is read at each trial's last row (n_tp=1).
        """
        trials = list(trials)
        if row_nums is None:
            row_nums = trial_lengths(trials)[:, None]
        acc = TrajectoryAccessor(trials, row_nums, trial_set=trial_set)
        values = self.definition.func(acc, self.spec)
        if values is None:
            raise MeasureNotComputed(f"Measure '{self.spec.raw}' was not computed")

        values = np.asarray(values, dtype=float)
        if values.ndim == 1:
            values = np.repeat(values[:, None], acc.n_time_points, axis=1)
        expected = (acc.n_trials, acc.n_time_points)
        if values.shape != expected:
            raise MeasureNotComputed(
                f"Measure '{self.spec.raw}' returned shape {values.shape}, expected {expected}"
            )
        return values


class MeasureRegistry:
    """
    Name -> measure lookup.

    passthrough_prefix: specs of the form "<prefix><Name>" (e.g. "Traj.Theta")
    are served by `passthrough(Name)`, which returns a MeasureDef.
    """

    def __init__(
        self,
        *,
        passthrough_prefix: Optional[str] = None,
        passthrough: Optional[Callable[[str], MeasureDef]] = None,
    ):
        self._measures: Dict[str, MeasureDef] = {}
        self.passthrough_prefix = passthrough_prefix
        self.passthrough = passthrough
        self._pattern = (
            re.compile("^" + re.escape(passthrough_prefix) + r"(\w+)$")
            if passthrough_prefix is not None
            else None
        )

    def register(
        self,
        name: str,
        func: MeasureFunc,
        description: Optional[str] = None,
        *,
        aliases: Iterable[str] = (),
        output_name: Optional[str] = None,
    ) -> None:
        definition = MeasureDef(func=func, description=description, output_name=output_name)
        for key in (name, *aliases):
            self._measures[key] = definition

    def __contains__(self, name: str) -> bool:
        return name in self._measures

    def names(self) -> Tuple[str, ...]:
        return tuple(sorted(self._measures))

    def copy(self) -> "MeasureRegistry":
        out = MeasureRegistry(passthrough_prefix=self.passthrough_prefix, passthrough=self.passthrough)
        out._measures = dict(self._measures)
        return out

    def resolve(self, spec: SpecLike) -> BoundMeasure:
        spec = parse_measure_spec(spec)
        if self._pattern is not None and self.passthrough is not None:
            m = self._pattern.match(spec.raw)
            if m:
                return BoundMeasure(spec, self.passthrough(m.group(1)))
        definition = self._measures.get(spec.name)
        if definition is None:
            raise UnknownMeasure(f"Unknown measure name '{spec.name}' (spec '{spec.raw}')")
        return BoundMeasure(spec, definition)


# ---- built-in dynamic measures ----

def column_measure(name: str) -> MeasureFunc:
    def _fn(acc: TrajectoryAccessor, spec: MeasureSpec) -> np.ndarray:
        return acc.column(name)

    return _fn


def abs_column_measure(name: str) -> MeasureFunc:
    def _fn(acc: TrajectoryAccessor, spec: MeasureSpec) -> np.ndarray:
        return np.abs(acc.column(name))

    return _fn


def _traj_column(col_name: str) -> MeasureDef:
    column_index(col_name)  # fail early on unknown columns
    return MeasureDef(func=column_measure(col_name), description=col_name, output_name=f"traj_{col_name}")


def x_on_scale(acc: TrajectoryAccessor, spec: MeasureSpec) -> np.ndarray:
    if acc.trial_set is None:
        raise ConfigurationError(f"Measure '{spec.raw}' needs the TrialSet's x-to-number mapping")
    return acc.trial_set.number_from_x(acc.column("x"))


def _smooth_window(spec: MeasureSpec) -> Optional[int]:
    raw = spec.arg("smooth", positional=True)
    if raw is None:
        return None
    try:
        window = int(raw)
    except ValueError:
        raise ConfigurationError(f"Invalid smoothing window '{raw}' in measure spec '{spec.raw}'") from None
    # Savitzky-Golay with polyorder 2 needs an odd window of at least 3 samples
    if window < 3 or window % 2 == 0:
        raise ConfigurationError(f"Smoothing window must be odd and >= 3 in measure spec '{spec.raw}'")
    return window


def instantaneous_speed(acc: TrajectoryAccessor, spec: MeasureSpec) -> np.ndarray:
    """
    xy speed re-sampled at the requested rows; rows past the speed series hold
    its last value. "ivel:smooth=5" smooths x and y over a 5-sample window first.
    """
    window = _smooth_window(spec)
    kwargs = {} if window is None else {"smooth_window": window}
    out = np.full((acc.n_trials, acc.n_time_points), np.nan)
    for i, tr in enumerate(acc.trials):
        rows = acc.clamped_rows[i, :]
        v = hold_last(acc.velocity(tr, **kwargs), int(rows.max()))
        out[i, :] = v[rows - 1]
    return out


def current_direction(acc: TrajectoryAccessor) -> np.ndarray:
    """
    -1/0/+1 pointing direction from the implied endpoint. On a number-line
    layout (max_target set) the midpoint of the line splits left from right.
    """
    iep = acc.column("implied_ep")
    max_target = acc.trial_set.max_target if acc.trial_set is not None else None
    with np.errstate(invalid="ignore"):
        if max_target is not None:
            direction = np.where(iep > max_target / 2, 1.0, -1.0)
        else:
            direction = np.sign(iep)
    direction[np.isnan(iep)] = np.nan
    return direction


def _direction_measure(kind: str) -> MeasureFunc:
    def _fn(acc: TrajectoryAccessor, spec: MeasureSpec) -> np.ndarray:
        direction = current_direction(acc)
        if kind == "rldir":
            return direction

        # match between current direction and final response; 0 = no direction
        final = acc.trial_values(lambda tr: tr.user_response) * 2 - 1
        with np.errstate(invalid="ignore"):
            match = np.where(direction == final[:, None], 1.0, -1.0)
        match[direction == 0] = 0.0
        match[np.isnan(direction) | np.isnan(final)[:, None]] = np.nan
        if kind == "rldir_like_final01":
            with np.errstate(invalid="ignore"):
                match = np.where(np.isnan(match), np.nan, (match > 0).astype(float))
        return match

    return _fn


def iep_vs_expected_response(acc: TrajectoryAccessor, spec: MeasureSpec) -> np.ndarray:
    iep = acc.column("implied_ep")
    expected = np.sign(acc.trial_values(lambda tr: tr.required_response) - 0.5)
    return iep * expected[:, None]


def _smooth_sd_samples(acc: TrajectoryAccessor, spec: MeasureSpec) -> Optional[int]:
    raw = spec.arg("smoothsd", positional=True)
    if raw is None:
        return None
    try:
        sd_seconds = float(raw)
    except ValueError:
        raise ConfigurationError(f"Invalid smoothing SD '{raw}' in measure spec '{spec.raw}'") from None
    dt = acc.trials[0].sample_interval() if acc.trials else float("nan")
    if not np.isfinite(dt) or dt <= 0:
        raise ConfigurationError(f"Cannot convert smoothing SD to samples for '{spec.raw}' (sample interval {dt})")
    return int(round(sd_seconds / dt))


def _theta_change(absolute: bool) -> MeasureFunc:
    def _fn(acc: TrajectoryAccessor, spec: MeasureSpec) -> np.ndarray:
        sd = _smooth_sd_samples(acc, spec)
        thetas = acc.column("theta")
        out = np.zeros_like(thetas)
        for i in range(acc.n_trials):
            theta = thetas[i, :]
            if sd:
                theta = smooth_gaussian(theta, sd)
            out[i, 1:] = np.diff(theta)
        return np.abs(out) if absolute else out

    return _fn


DYNAMIC_MEASURES = MeasureRegistry(passthrough_prefix="Traj.", passthrough=_traj_column)

DYNAMIC_MEASURES.register("x", column_measure("x"), "x coord")
DYNAMIC_MEASURES.register("x_nl", x_on_scale, "x value", output_name="x")
DYNAMIC_MEASURES.register("xvel", column_measure("x_velocity"), "x speed")
DYNAMIC_MEASURES.register("xabsvel", abs_column_measure("x_velocity"), "|x speed|")
DYNAMIC_MEASURES.register("y", column_measure("y"), "y coord")
DYNAMIC_MEASURES.register("yvel", column_measure("y_velocity"), "y speed")
DYNAMIC_MEASURES.register("yacc", column_measure("y_acceleration"), "y acceleration")
DYNAMIC_MEASURES.register("ivel", instantaneous_speed, "xy speed")
DYNAMIC_MEASURES.register("iep", column_measure("implied_ep"), "Implied endpoint", aliases=("ep",))
for _kind in ("rldir", "rldir_like_final", "rldir_like_final01"):
    DYNAMIC_MEASURES.register(_kind, _direction_measure(_kind), "L/R")
DYNAMIC_MEASURES.register("iep_vs_expected_response", iep_vs_expected_response, "L/R correct")
DYNAMIC_MEASURES.register("dtheta", _theta_change(False), "Curvature")
DYNAMIC_MEASURES.register("absdtheta", _theta_change(True), "|Curvature|")


def get_trial_dynamic_measures(
    trial_set: Optional[TrialSet],
    trials: Sequence[Trial],
    specs: Sequence[SpecLike],
    row_nums: np.ndarray,
    *,
    registry: Optional[MeasureRegistry] = None,
) -> Tuple[np.ndarray, List[str], List[str]]:
    """
    Evaluate per-time-point measures.

    Args:
        trial_set: Owner of the trials (scale mapping, layout).
        trials: Trials to evaluate, in regression order.
        specs: Measure specs (strings or MeasureSpec).
        row_nums: (n_trials, n_tp) 1-based row numbers per trial and time point.
        registry: Measure registry (default DYNAMIC_MEASURES).

    Returns:
        (values, names, descriptions) with values shaped (n_trials, n_specs, n_tp).
    """
    registry = registry or DYNAMIC_MEASURES
    trials = list(trials)
    row_nums = np.asarray(row_nums, dtype=float)
    if row_nums.ndim != 2 or row_nums.shape[0] != len(trials):
        raise ValueError(
            f"row_nums must be (n_trials={len(trials)}, n_tp). Got shape {row_nums.shape}"
        )

    values = np.full((len(trials), len(specs), row_nums.shape[1]), np.nan)
    names: List[str] = []
    descs: List[str] = []
    for k, spec in enumerate(specs):
        measure = registry.resolve(spec)
        values[:, k, :] = measure(trial_set, trials, row_nums)
        names.append(measure.output_name)
        descs.append(measure.description)
    return values, names, descs
