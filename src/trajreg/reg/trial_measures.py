"""Per-trial (fixed) measures: one value per trial, shared by all time points."""

from __future__ import annotations

from typing import List, Optional, Sequence, Tuple

import numpy as np

from trajreg.traj.accessor import TrajectoryAccessor
from trajreg.traj.core import Trial, TrialSet

from .measures import MeasureDef, MeasureRegistry, column_measure
from .spec import MeasureSpec, SpecLike


def _attribute(name: str):
    def _fn(acc: TrajectoryAccessor, spec: MeasureSpec) -> np.ndarray:
        return acc.trial_values(lambda tr: tr.attribute(name))

    return _fn


def _trial_attribute(attr: str) -> MeasureDef:
    return MeasureDef(func=_attribute(attr), description=attr, output_name=f"trial_{attr}")


def movement_time(acc: TrajectoryAccessor, spec: MeasureSpec) -> np.ndarray:
    return acc.trial_values(lambda tr: tr.movement_time())


def n_rows(acc: TrajectoryAccessor, spec: MeasureSpec) -> np.ndarray:
    return acc.max_rows.astype(float)


def trial_index(acc: TrajectoryAccessor, spec: MeasureSpec) -> np.ndarray:
    return np.arange(acc.n_trials, dtype=float)


# Fixed measures are read at each trial's last row, so trajectory columns give
# the final value of the trial.
TRIAL_MEASURES = MeasureRegistry(passthrough_prefix="Trial.", passthrough=_trial_attribute)

TRIAL_MEASURES.register("target", _attribute("target"), "Target")
TRIAL_MEASURES.register("response", _attribute("user_response"), "Response")
TRIAL_MEASURES.register("required_response", _attribute("required_response"), "Required response")
TRIAL_MEASURES.register("movement_time", movement_time, "Movement time", aliases=("mt",))
TRIAL_MEASURES.register("endpoint", column_measure("x"), "Endpoint")
TRIAL_MEASURES.register("iep_final", column_measure("implied_ep"), "Final implied endpoint")
TRIAL_MEASURES.register("n_rows", n_rows, "Trajectory length")
TRIAL_MEASURES.register("trial_index", trial_index, "Trial index")


def get_trial_measures(
    trial_set: Optional[TrialSet],
    trials: Sequence[Trial],
    specs: Sequence[SpecLike],
    *,
    registry: Optional[MeasureRegistry] = None,
) -> Tuple[np.ndarray, List[str], List[str]]:
    """
    Evaluate per-trial measures.

    Returns:
        (values, names, descriptions) with values shaped (n_trials, n_specs).
    """
    registry = registry or TRIAL_MEASURES
    trials = list(trials)
    values = np.full((len(trials), len(specs)), np.nan)
    names: List[str] = []
    descs: List[str] = []
    for k, spec in enumerate(specs):
        measure = registry.resolve(spec)
        values[:, k] = measure(trial_set, trials)[:, 0]
        names.append(measure.output_name)
        descs.append(measure.description)
    return values, names, descs
