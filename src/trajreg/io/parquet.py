from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, Sequence, Tuple

import numpy as np
import pandas as pd

from trajreg.reg.tensors import RegressionData
from trajreg.traj.core import Trial, TrialSet


def save_trial_set(
    ts: TrialSet,
    folder: str | Path,
    *,
    trials_filename: str = "trials.parquet",
    index_filename: str = "trials_index.parquet",
    meta_filename: str = "meta.json",
) -> None:
    """
    Writes:
      folder/
        trials.parquet        (per-sample long table)
        trials_index.parquet  (per-trial summary + custom_*)
        meta.json             (subject id, scale, max movement time, metadata)

    Averaged trials and x_to_number are not stored.
    """
    folder = Path(folder)
    folder.mkdir(parents=True, exist_ok=True)

    frames = [tr.to_frame_dataframe() for tr in ts.trials.values()]
    trials_df = pd.concat(frames, ignore_index=True) if frames else pd.DataFrame()
    trials_df.to_parquet(folder / trials_filename, index=False)

    ts.summary_table().to_parquet(folder / index_filename, index=False)

    meta: Dict[str, Any] = {
        "subject_id": ts.subject_id,
        "max_target": ts.max_target,
        "max_movement_time": ts.max_movement_time,
        "meta": ts.meta,
    }
    (folder / meta_filename).write_text(json.dumps(meta, indent=2))


def load_trial_set(
    folder: str | Path,
    *,
    trials_filename: str = "trials.parquet",
    index_filename: str = "trials_index.parquet",
    meta_filename: str = "meta.json",
) -> TrialSet:
    """Reconstruct a TrialSet written by save_trial_set."""
    folder = Path(folder)
    meta = json.loads((folder / meta_filename).read_text())

    ts = TrialSet(
        subject_id=meta["subject_id"],
        max_target=meta.get("max_target"),
        max_movement_time=meta.get("max_movement_time"),
        meta=dict(meta.get("meta", {})),
    )

    trials_df = pd.read_parquet(folder / trials_filename)
    index_df = pd.read_parquet(folder / index_filename) if (folder / index_filename).exists() else None

    # per-trial custom_* attributes from the index table
    custom: Dict[str, Dict[str, Any]] = {}
    if index_df is not None and not index_df.empty:
        for _, row in index_df.iterrows():
            tid = str(row["trial_id"])
            custom[tid] = {
                c[len("custom_"):]: row[c]
                for c in index_df.columns
                if c.startswith("custom_") and pd.notna(row[c])
            }

    if trials_df.empty:
        return ts

    for tid, df_tid in trials_df.groupby("trial_id", sort=False):
        tid = str(tid)
        df_tid = df_tid.sort_values("row").reset_index(drop=True)
        ts.add(Trial.from_frame_dataframe(df_tid, trial_id=tid, custom=custom.get(tid, {})))

    return ts


def save_regression_input(
    folder: str | Path,
    data: RegressionData,
    times: Sequence[float],
    *,
    predictors_filename: str = "predictors.parquet",
    dependent_filename: str = "dependent.parquet",
    meta_filename: str = "regression_input.json",
) -> None:
    """
    Dump the assembled regression input for debugging.

    Writes:
      folder/
        predictors.parquet     (trial_id, time_point, predictor, value, included)
        dependent.parquet      (trial_id, time_point, value, included)
        regression_input.json  (names, descriptions, time points, times, trial ids)

    Collapsed (fixed) tensors are expanded to every time point.
    """
    folder = Path(folder)
    folder.mkdir(parents=True, exist_ok=True)

    n_trials, n_tp = data.n_trials, data.n_time_points
    trial_ids = [tr.trial_id for tr in data.trials]
    names = data.predictor_names[1:]

    pred_frames = []
    for k, name in enumerate(names):
        values = np.broadcast_to(data.predictors[:, k, :], (n_trials, n_tp)) if n_tp else np.empty((n_trials, 0))
        pred_frames.append(
            pd.DataFrame(
                {
                    "trial_id": np.repeat(trial_ids, n_tp),
                    "time_point": np.tile(np.arange(n_tp), n_trials),
                    "predictor": name,
                    "value": values.ravel(),
                    "included": data.include.ravel(),
                }
            )
        )
    pred_df = pd.concat(pred_frames, ignore_index=True) if pred_frames else pd.DataFrame()
    pred_df.to_parquet(folder / predictors_filename, index=False)

    dep = np.broadcast_to(data.dependent, (n_trials, n_tp)) if n_tp else np.empty((n_trials, 0))
    dep_df = pd.DataFrame(
        {
            "trial_id": np.repeat(trial_ids, n_tp),
            "time_point": np.tile(np.arange(n_tp), n_trials),
            "value": dep.ravel(),
            "included": data.include.ravel(),
        }
    )
    dep_df.to_parquet(folder / dependent_filename, index=False)

    meta: Dict[str, Any] = {
        "predictor_names": list(data.predictor_names),
        "predictor_descriptions": list(data.predictor_descriptions),
        "dependent_description": data.dependent_description,
        "time_points": [float(v) for v in data.time_points],
        "times": [None if np.isnan(v) else float(v) for v in np.asarray(times, dtype=float)],
        "trial_ids": trial_ids,
    }
    (folder / meta_filename).write_text(json.dumps(meta, indent=2))


def load_regression_input(
    folder: str | Path,
    *,
    predictors_filename: str = "predictors.parquet",
    dependent_filename: str = "dependent.parquet",
    meta_filename: str = "regression_input.json",
) -> Tuple[pd.DataFrame, pd.DataFrame, Dict[str, Any]]:
    """Read back (predictors, dependent, meta) written by save_regression_input."""
    folder = Path(folder)
    meta = json.loads((folder / meta_filename).read_text())
    meta["times"] = [np.nan if v is None else v for v in meta.get("times", [])]
    return (
        pd.read_parquet(folder / predictors_filename),
        pd.read_parquet(folder / dependent_filename),
        meta,
    )
