from .core import TRAJ_COLUMNS, Trial, TrialSet, column_index, longest_trial
from .accessor import TrajectoryAccessor, clamp_rows, trial_lengths

__all__ = [
    "TRAJ_COLUMNS",
    "Trial",
    "TrialSet",
    "column_index",
    "longest_trial",
    "TrajectoryAccessor",
    "clamp_rows",
    "trial_lengths",
]
