"""
Time points: abstract regression slices resolved to trajectory rows per trial.

A row resolver maps (time_points, trial) -> 1-based row numbers, one per time
point. Resolvers never raise for rows outside a trial; clamping happens when
the rows are read.
"""

from __future__ import annotations

from typing import Callable, Optional, Sequence

import numpy as np

from trajreg.traj.core import Trial, longest_trial

RowResolver = Callable[[np.ndarray, Trial], np.ndarray]
OffsetFn = Callable[[Trial], float]


def same_row(time_points: np.ndarray, trial: Trial) -> np.ndarray:
    """The time point is the row number."""
    return np.asarray(time_points, dtype=float)


class OffsetRowResolver:
    """
    Shift each trial by a fixed offset: row = time_point + offset(trial) - 1,
    where offset(trial) is the row number that plays the role of row 1.
    """

    def __init__(self, offset_fn: OffsetFn):
        self.offset_fn = offset_fn

    def __call__(self, time_points: np.ndarray, trial: Trial) -> np.ndarray:
        offset = float(self.offset_fn(trial))
        return np.asarray(time_points, dtype=float) + offset - 1


def has_offset_attribute(attr: str) -> Callable[[Trial], bool]:
    """Trial filter: keep trials whose custom attribute `attr` is set."""

    def _fn(trial: Trial) -> bool:
        value = trial.custom.get(attr)
        if value is None:
            return False
        try:
            return not np.isnan(float(value))
        except (TypeError, ValueError):
            return False

    return _fn


def attribute_offset_resolver(attr: str) -> OffsetRowResolver:
    """Offset resolver reading a precomputed per-trial row offset from trial.custom[attr]."""
    return OffsetRowResolver(lambda trial: trial.custom[attr])


class ThresholdRowResolver:
    """
    row = first row whose `column` value reaches (>=) the time point value;
    the trial's last row when the value is never reached. Typically used with
    the y coordinate, so a time point is "the moment the finger crossed y".
    """

    def __init__(self, column: str = "y"):
        self.column = column

    def __call__(self, time_points: np.ndarray, trial: Trial) -> np.ndarray:
        values = trial.column(self.column)
        tps = np.atleast_1d(np.asarray(time_points, dtype=float))
        rows = np.full(len(tps), float(trial.n_rows))
        for i, target in enumerate(tps):
            hits = np.flatnonzero(values >= target)
            if hits.size:
                rows[i] = hits[0] + 1
        return rows


def resolve_rows(
    time_points: Sequence[float],
    trials: Sequence[Trial],
    resolver: RowResolver = same_row,
) -> np.ndarray:
    """Row-number matrix (n_trials, n_tp) for all trials; values are not clamped."""
    tps = np.asarray(time_points, dtype=float).ravel()
    out = np.full((len(trials), len(tps)), np.nan)
    for i, tr in enumerate(trials):
        rows = np.asarray(resolver(tps, tr), dtype=float).ravel()
        if rows.shape != tps.shape:
            raise ValueError(
                f"Row resolver returned {rows.size} rows for {tps.size} time points (trial '{tr.trial_id}')"
            )
        out[i, :] = rows
    return out


# ---- time-point generation ----

def delta_time_points(
    trials: Sequence[Trial],
    dt: float = 0.05,
    max_time: Optional[float] = None,
) -> np.ndarray:
    """
    Evenly spaced row numbers, dt seconds apart, on the longest trial's clock.

    The first time point is one step after row 1. The range ends at the longest
    trial's last row, or at its first row whose abs_time reaches max_time.
    """
    if dt <= 0:
        raise ValueError("dt must be positive.")
    if not trials:
        raise ValueError("No trials to derive time points from.")
    longest, _ = longest_trial(list(trials))
    interval = longest.sample_interval()
    if not np.isfinite(interval) or interval <= 0:
        raise ValueError(f"Cannot derive time points: sample interval of trial '{longest.trial_id}' is {interval}")
    step = int(round(dt / interval))
    if step < 1:
        raise ValueError(f"dt={dt} is shorter than the sample interval ({interval}).")

    last = longest.n_rows
    if max_time is not None:
        hits = np.flatnonzero(longest.abs_time() >= max_time - 1e-5)
        if hits.size:
            last = int(hits[0]) + 1
    return np.arange(step + 1, last + 1, step, dtype=float)


def y_time_points(trials: Sequence[Trial], step: Optional[float] = None) -> np.ndarray:
    """y targets step, 2*step, ... up to the largest final y of any trial (default step: max_y/100)."""
    if not trials:
        raise ValueError("No trials to derive time points from.")
    max_y = max(float(tr.column("y")[-1]) for tr in trials)
    if step is None:
        step = max_y / 100
    if step <= 0:
        raise ValueError(f"y step must be positive, got {step}.")
    return np.arange(1, int(np.floor(max_y / step + 1e-9)) + 1, dtype=float) * step


# ---- absolute time per time point ----

def times_same_row(time_points: np.ndarray, trials: Sequence[Trial], row_nums: np.ndarray) -> np.ndarray:
    """Longest trial's abs_time at its rows, relative to the first time point."""
    longest, idx = longest_trial(list(trials))
    rows = np.clip(np.asarray(row_nums[idx], dtype=int), 1, longest.n_rows)
    t = longest.abs_time()[rows - 1]
    return t - t[0] if t.size else t


def times_mean_per_time_point(
    time_points: np.ndarray, trials: Sequence[Trial], row_nums: np.ndarray
) -> np.ndarray:
    """Trial-averaged abs_time at each time point's rows (for coordinate-grouped time points)."""
    t = np.full(np.shape(row_nums), np.nan)
    for i, tr in enumerate(trials):
        rows = np.clip(np.asarray(row_nums[i], dtype=int), 1, tr.n_rows)
        t[i, :] = tr.abs_time()[rows - 1]
    if t.shape[0] == 0:
        return np.full(t.shape[1], np.nan)
    return np.nanmean(t, axis=0)
