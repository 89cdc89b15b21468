from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from trajreg.exceptions import UnknownTrajectoryColumn

# Fixed column layout of the trajectory matrix.
TRAJ_COLUMNS: Tuple[str, ...] = (
    "x",
    "y",
    "x_velocity",
    "y_velocity",
    "y_acceleration",
    "theta",
    "implied_ep",
    "abs_time",
)

_COLUMN_ALIASES: Dict[str, str] = {
    "xvelocity": "x_velocity",
    "yvelocity": "y_velocity",
    "yacceleration": "y_acceleration",
    "angle": "theta",
    "impliedep": "implied_ep",
    "iep": "implied_ep",
    "abstime": "abs_time",
    "time": "abs_time",
}


def column_index(name: str) -> int:
    """
    Resolve a trajectory column name to its index in the trajectory matrix.

    Accepts the canonical snake_case names and the CamelCase names used by
    older experiment files (``XVelocity``, ``ImpliedEP``, ``AbsTime``...).
    """
    key = name.strip().lower()
    if key in TRAJ_COLUMNS:
        return TRAJ_COLUMNS.index(key)
    alias = _COLUMN_ALIASES.get(key.replace("_", ""))
    if alias is None:
        raise UnknownTrajectoryColumn(f"There is no trajectory column '{name}'")
    return TRAJ_COLUMNS.index(alias)


def _as_trajectory_matrix(a: np.ndarray) -> np.ndarray:
    arr = np.asarray(a, dtype=float)
    if arr.ndim != 2:
        raise ValueError(f"trajectory must be 2D array (T, C). Got shape {arr.shape}")
    if arr.shape[0] < 1:
        raise ValueError("trajectory must contain at least one row")
    if arr.shape[1] != len(TRAJ_COLUMNS):
        raise ValueError(
            f"trajectory must have {len(TRAJ_COLUMNS)} columns {TRAJ_COLUMNS}. Got {arr.shape[1]}"
        )
    return arr


@dataclass(frozen=True)
class Trial:
    """
    One recorded trial: a time-ordered trajectory plus per-trial attributes.

    Core arrays:
      - trajectory: (T, C) matrix; columns follow TRAJ_COLUMNS.

    Per-trial attributes:
      - target: the stimulus / target value of the trial.
      - user_response: the response the participant gave (e.g. 0=left, 1=right).
      - required_response: the correct response (same coding).
      - custom: free-form per-trial attributes (precomputed offsets, etc.)
      - meta: arbitrary metadata.

    Row numbers used throughout the package are 1-based (row 1 is the first
    sample); they are converted to array indices only when reading.
    """
    trial_id: str
    trajectory: np.ndarray

    target: float = np.nan
    user_response: float = np.nan
    required_response: float = np.nan

    custom: Dict[str, Any] = field(default_factory=dict)
    meta: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        traj = _as_trajectory_matrix(self.trajectory)
        t = traj[:, TRAJ_COLUMNS.index("abs_time")]
        if not np.all(np.isfinite(t)):
            raise ValueError("abs_time contains non-finite values")
        if np.any(np.diff(t) < 0):
            raise ValueError("abs_time must be non-decreasing")
        object.__setattr__(self, "trajectory", traj)

    @property
    def n_rows(self) -> int:
        return int(self.trajectory.shape[0])

    def column(self, name: str) -> np.ndarray:
        """Full column by name (see column_index for accepted names)."""
        return self.trajectory[:, column_index(name)]

    def abs_time(self) -> np.ndarray:
        return self.trajectory[:, TRAJ_COLUMNS.index("abs_time")]

    def sample_interval(self) -> float:
        """Time between the first two samples (seconds); NaN for single-row trials."""
        t = self.abs_time()
        if len(t) < 2:
            return float("nan")
        return float(t[1] - t[0])

    def movement_time(self) -> float:
        t = self.abs_time()
        return float(t[-1] - t[0])

    def attribute(self, name: str) -> Any:
        """A named per-trial attribute: a dataclass field first, then a custom entry."""
        if name in ("target", "user_response", "required_response", "trial_id"):
            return getattr(self, name)
        if name in self.custom:
            return self.custom[name]
        raise KeyError(f"Trial '{self.trial_id}' has no attribute '{name}'")

    def to_frame_dataframe(self) -> pd.DataFrame:
        """
        Long-form per-sample table.
        Columns: trial_id, row, TRAJ_COLUMNS..., target, user_response, required_response
        """
        data: Dict[str, Any] = {
            "trial_id": np.repeat(self.trial_id, self.n_rows),
            "row": np.arange(1, self.n_rows + 1),
        }
        for j, name in enumerate(TRAJ_COLUMNS):
            data[name] = self.trajectory[:, j]
        data["target"] = self.target
        data["user_response"] = self.user_response
        data["required_response"] = self.required_response
        return pd.DataFrame(data)

    @staticmethod
    def from_frame_dataframe(
        df: pd.DataFrame,
        *,
        trial_id: Optional[str] = None,
        custom: Optional[Dict[str, Any]] = None,
        meta: Optional[Dict[str, Any]] = None,
    ) -> "Trial":
        """
        Construct a Trial from a per-sample dataframe for ONE trial.
        Expected columns: TRAJ_COLUMNS (missing derived columns are filled with NaN,
        but x, y and abs_time are required), optional target / user_response /
        required_response (constant within the trial).
        """
        if trial_id is None:
            if "trial_id" not in df.columns:
                raise ValueError("df must contain 'trial_id' or provide trial_id explicitly")
            uniq = df["trial_id"].unique()
            if len(uniq) != 1:
                raise ValueError("df must contain exactly one trial_id")
            trial_id = str(uniq[0])

        missing = [c for c in ("x", "y", "abs_time") if c not in df.columns]
        if missing:
            raise KeyError(f"DataFrame missing columns: {missing}")

        n = len(df)
        traj = np.column_stack(
            [
                df[c].to_numpy(dtype=float) if c in df.columns else np.full(n, np.nan)
                for c in TRAJ_COLUMNS
            ]
        )

        attrs: Dict[str, float] = {}
        for col in ("target", "user_response", "required_response"):
            if col not in df.columns:
                continue
            vals = df[col].dropna().unique()
            if len(vals) > 1:
                raise ValueError(f"column '{col}' varies within trial '{trial_id}'.")
            if len(vals) == 1:
                attrs[col] = float(vals[0])

        return Trial(
            trial_id=str(trial_id),
            trajectory=traj,
            custom=dict(custom or {}),
            meta=dict(meta or {}),
            **attrs,
        )


def longest_trial(trials: Sequence[Trial]) -> Tuple[Trial, int]:
    """(trial, position) of the trial with most rows; the first one wins ties."""
    if not trials:
        raise ValueError("No trials to choose from.")
    i = int(np.argmax([tr.n_rows for tr in trials]))
    return trials[i], i


@dataclass
class TrialSet:
    """
    The trials of one subject / session.

    averaged_trials: optional alternative trial list (e.g. per-condition averages).
    max_target: upper end of the number-line scale; None for left/right layouts.
    x_to_number: optional callable mapping x coordinates to scale values.
    """
    subject_id: str
    trials: Dict[str, Trial] = field(default_factory=dict)
    averaged_trials: Dict[str, Trial] = field(default_factory=dict)

    max_target: Optional[float] = None
    x_to_number: Optional[Callable[[np.ndarray], np.ndarray]] = None
    max_movement_time: Optional[float] = None
    meta: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dataframe(
        cls,
        df: pd.DataFrame,
        *,
        subject_id: str,
        trial_id_col: str = "trial_id",
        column_map: Optional[Dict[str, str]] = None,
        custom_cols: Sequence[str] = (),
        sort_within_trial: bool = True,
        **kwargs: Any,
    ) -> "TrialSet":
        """
        Build a TrialSet from a long-form per-sample DataFrame.

        Args:
            df: One row per sample of every trial.
            subject_id: Identifier for the resulting TrialSet.
            trial_id_col: Column holding the per-trial identifier.
            column_map: Optional {df column: trajectory column} renames applied first.
            custom_cols: Columns copied into Trial.custom (must be constant per trial).
            sort_within_trial: Sort each trial by abs_time before constructing.
            **kwargs: Passed to the TrialSet constructor (max_target, x_to_number...).
        """
        if column_map:
            df = df.rename(columns=dict(column_map))
        if trial_id_col not in df.columns:
            raise KeyError(f"DataFrame missing columns: {[trial_id_col]}")
        missing = [c for c in custom_cols if c not in df.columns]
        if missing:
            raise KeyError(f"DataFrame missing columns: {missing}")

        ts = cls(subject_id=subject_id, **kwargs)
        if df.empty:
            return ts

        for tid, df_tid in df.groupby(trial_id_col, sort=False):
            if sort_within_trial and "abs_time" in df_tid.columns:
                df_tid = df_tid.sort_values("abs_time").reset_index(drop=True)
            else:
                df_tid = df_tid.reset_index(drop=True)

            custom: Dict[str, Any] = {}
            for col in custom_cols:
                vals = df_tid[col].dropna().unique()
                if len(vals) > 1:
                    raise ValueError(f"custom column '{col}' varies within trial '{tid}'.")
                if len(vals) == 0:
                    continue
                v = vals[0]
                custom[col] = v.item() if hasattr(v, "item") else v

            ts.add(Trial.from_frame_dataframe(df_tid, trial_id=str(tid), custom=custom))

        return ts

    def add(self, trial: Trial, *, averaged: bool = False) -> None:
        target = self.averaged_trials if averaged else self.trials
        if trial.trial_id in target:
            raise KeyError(f"Trial with trial_id='{trial.trial_id}' already exists")
        target[trial.trial_id] = trial

    def get(self, trial_id: str) -> Trial:
        return self.trials[trial_id]

    def ids(self) -> Tuple[str, ...]:
        return tuple(self.trials.keys())

    def trial_list(self, *, averaged: bool = False) -> List[Trial]:
        if averaged:
            if not self.averaged_trials:
                raise ValueError(f"TrialSet '{self.subject_id}' has no averaged trials")
            return list(self.averaged_trials.values())
        return list(self.trials.values())

    def longest_trial(self) -> Trial:
        return longest_trial(self.trial_list())[0]

    def number_from_x(self, x: np.ndarray) -> np.ndarray:
        """
        Map x coordinates onto the number-line scale.

        Uses x_to_number when given; otherwise assumes the line spans x in [-1, 1]
        and maps it linearly onto [0, max_target].
        """
        x = np.asarray(x, dtype=float)
        if self.x_to_number is not None:
            return np.asarray(self.x_to_number(x), dtype=float)
        if self.max_target is None:
            raise ValueError("number_from_x requires x_to_number or max_target on the TrialSet")
        return (x + 1.0) / 2.0 * float(self.max_target)

    def summary_table(self) -> pd.DataFrame:
        """One row per trial: trial_id, n_rows, duration, per-trial attributes."""
        rows = []
        for tid, tr in self.trials.items():
            row: Dict[str, Any] = {
                "trial_id": tid,
                "n_rows": tr.n_rows,
                "movement_time": tr.movement_time(),
                "target": tr.target,
                "user_response": tr.user_response,
                "required_response": tr.required_response,
            }
            for k, v in tr.custom.items():
                row[f"custom_{k}"] = v
            rows.append(row)
        return pd.DataFrame(rows)

    def filter(self, predicate) -> "TrialSet":
        """
        Return a new TrialSet with trials for which predicate(trial) is True.
        """
        out = TrialSet(
            subject_id=self.subject_id,
            averaged_trials=dict(self.averaged_trials),
            max_target=self.max_target,
            x_to_number=self.x_to_number,
            max_movement_time=self.max_movement_time,
            meta=dict(self.meta),
        )
        for tr in self.trials.values():
            if predicate(tr):
                out.trials[tr.trial_id] = tr
        return out
