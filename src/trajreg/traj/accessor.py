from __future__ import annotations

from typing import Any, Callable, Optional, Sequence

import numpy as np

from .core import Trial, TrialSet, column_index

VelocityFn = Callable[..., np.ndarray]


def trial_lengths(trials: Sequence[Trial]) -> np.ndarray:
    """Row count per trial, shape (n_trials,)."""
    return np.array([tr.n_rows for tr in trials], dtype=int)


def clamp_rows(row_nums: np.ndarray, max_rows: np.ndarray) -> np.ndarray:
    """
    Clamp a (n_trials, n_tp) row-number matrix to [1, max_rows[i]] per trial.
    NaN entries (unresolved) are mapped to the trial's last row.
    """
    rows = np.asarray(row_nums, dtype=float)
    if rows.ndim != 2:
        raise ValueError(f"row_nums must be 2D (n_trials, n_tp). Got shape {rows.shape}")
    max_rows = np.asarray(max_rows, dtype=int)
    if rows.shape[0] != max_rows.shape[0]:
        raise ValueError("row_nums must have one row per trial.")
    upper = max_rows[:, None].astype(float)
    rows = np.where(np.isnan(rows), upper, rows)
    return np.clip(rows, 1, upper).astype(int)


class TrajectoryAccessor:
    """
    Read-only view over the trajectories of some trials at given row numbers.

    row_nums is a (n_trials, n_tp) matrix of 1-based row numbers; a trial may
    be asked for different rows at the same time point. All reads go through
    the clamped row matrix so no access ever falls outside a trial.
    """

    def __init__(
        self,
        trials: Sequence[Trial],
        row_nums: np.ndarray,
        *,
        trial_set: Optional[TrialSet] = None,
        velocity_fn: Optional[VelocityFn] = None,
    ):
        self.trials = list(trials)
        self.trial_set = trial_set
        self.max_rows = trial_lengths(self.trials)
        self.clamped_rows = clamp_rows(row_nums, self.max_rows)
        if velocity_fn is None:
            from trajreg.stats.velocity import xy_speed

            velocity_fn = xy_speed
        self.velocity_fn = velocity_fn

    @property
    def n_trials(self) -> int:
        return len(self.trials)

    @property
    def n_time_points(self) -> int:
        return int(self.clamped_rows.shape[1])

    def column(self, name: str) -> np.ndarray:
        """Trials x time points values of a trajectory column."""
        col = column_index(name)
        out = np.full((self.n_trials, self.n_time_points), np.nan)
        for i, tr in enumerate(self.trials):
            out[i, :] = tr.trajectory[self.clamped_rows[i, :] - 1, col]
        return out

    def trial_values(self, fn: Callable[[Trial], Any]) -> np.ndarray:
        """Per-trial scalar vector, shape (n_trials,)."""
        return np.array([fn(tr) for tr in self.trials], dtype=float)

    def velocity(self, trial: Trial, **kwargs: Any) -> np.ndarray:
        """Speed series of one trial; kwargs go to velocity_fn (e.g. smooth_window)."""
        return np.asarray(self.velocity_fn(trial, **kwargs), dtype=float)
