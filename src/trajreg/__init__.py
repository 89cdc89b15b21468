from .traj import Trial, TrialSet
from .reg import RegressionConfig, RegressionResult, regress
from .io import load_trial_set, save_trial_set

__all__ = [
    "Trial",
    "TrialSet",
    "RegressionConfig",
    "RegressionResult",
    "regress",
    "load_trial_set",
    "save_trial_set",
]
