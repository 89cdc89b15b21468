from .parquet import load_regression_input, load_trial_set, save_regression_input, save_trial_set

__all__ = [
    "load_regression_input",
    "load_trial_set",
    "save_regression_input",
    "save_trial_set",
]
