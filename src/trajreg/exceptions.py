from __future__ import annotations


class TrajRegError(Exception):
    """Base error for trajreg failures that are not plain input validation."""


# ---- Call-level errors: the whole regression call fails ----
class ConfigurationError(TrajRegError, ValueError):
    """Raised for unknown options, conflicting options or malformed specs."""


class InsufficientDataError(TrajRegError, ValueError):
    """Raised when there are too few trials for the requested predictors."""


# ---- Measure dispatch (also behave like KeyError for lookups) ----
class UnknownMeasure(TrajRegError, KeyError):
    """Raised when a measure spec does not name a registered measure."""


class UnknownTrajectoryColumn(TrajRegError, KeyError):
    """Raised when a trajectory column name cannot be resolved."""


class MeasureNotComputed(TrajRegError, RuntimeError):
    """Raised when a measure evaluator produced no values."""
