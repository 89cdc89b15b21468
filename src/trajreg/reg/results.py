from __future__ import annotations

import warnings
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import numpy as np
import pandas as pd

from .solver import SingleRegressionResult
from .tensors import CONST_NAME, RegressionData


@dataclass
class PredictorResult:
    """Per-time-point statistics of one predictor."""

    name: str
    b: np.ndarray
    beta: np.ndarray
    se_b: np.ndarray
    p: np.ndarray
    r2: np.ndarray
    adj_r2: np.ndarray

    @classmethod
    def empty(cls, name: str, n_time_points: int) -> "PredictorResult":
        def nan():
            return np.full(n_time_points, np.nan)

        return cls(name=name, b=nan(), beta=nan(), se_b=nan(), p=nan(), r2=nan(), adj_r2=nan())

    def arrays(self) -> Dict[str, np.ndarray]:
        return {"b": self.b, "beta": self.beta, "se_b": self.se_b, "p": self.p, "r2": self.r2, "adj_r2": self.adj_r2}


@dataclass
class RegressionResult:
    """
    Results of one regression call: one entry per time point.

    Per time point: r_squared, p, df, mse, optional full solver statistics.
    Per predictor (intercept first): see PredictorResult. sd_x (n_tp, n_predictors
    without intercept) and sd_y (n_tp,) are the standard deviations used for the
    standardized coefficients.
    """

    subject_id: str
    regression_type: str
    predictor_names: List[str]
    dependent_var: str
    times: np.ndarray
    predictor_descriptions: List[str] = field(default_factory=list)
    dependent_var_description: str = ""
    r_squared: np.ndarray = field(default=None)  # type: ignore[assignment]
    p: np.ndarray = field(default=None)  # type: ignore[assignment]
    df: np.ndarray = field(default=None)  # type: ignore[assignment]
    mse: np.ndarray = field(default=None)  # type: ignore[assignment]
    stats: Optional[List[Optional[Dict[str, Any]]]] = None
    sd_x: Optional[np.ndarray] = None
    sd_y: Optional[np.ndarray] = None
    predictors: Dict[str, PredictorResult] = field(default_factory=dict)
    regression_params: Dict[str, Any] = field(default_factory=dict)
    max_movement_time: Optional[float] = None
    n_trials: int = 0

    def __post_init__(self) -> None:
        self.times = np.asarray(self.times, dtype=float)
        n = len(self.times)
        if len(set(self.predictor_names)) != len(self.predictor_names):
            raise ValueError(f"Duplicate predictor names: {self.predictor_names}")
        for attr in ("r_squared", "p", "df", "mse"):
            if getattr(self, attr) is None:
                setattr(self, attr, np.full(n, np.nan))
        for name in self.predictor_names:
            self.predictors.setdefault(name, PredictorResult.empty(name, n))
        self._frozen = False

    @property
    def n_time_points(self) -> int:
        return int(len(self.times))

    @property
    def n_predictors(self) -> int:
        """Predictor count including the intercept."""
        return len(self.predictor_names)

    def get_pred_result(self, name: str) -> PredictorResult:
        if name not in self.predictors:
            raise KeyError(f"No predictor '{name}' in regression results")
        return self.predictors[name]

    def set_variance(self, data: RegressionData) -> None:
        """
        Standard deviations over all retained trials, one row per time point.
        Collapsed (fixed) tensors give one value that is repeated for every time point.
        """
        n_tp = self.n_time_points
        with warnings.catch_warnings():
            warnings.simplefilter("ignore", RuntimeWarning)
            sd_x = np.nanstd(data.predictors, axis=0, ddof=1).T  # (n_axis, n_pred)
            sd_y = np.nanstd(data.dependent, axis=0, ddof=1)  # (n_axis,)
        self.sd_x = np.broadcast_to(sd_x, (n_tp, data.n_predictors)).copy() if sd_x.shape[0] == 1 else sd_x
        self.sd_y = np.broadcast_to(sd_y, (n_tp,)).copy() if sd_y.shape[0] == 1 else sd_y

    def update(self, one: SingleRegressionResult, tp: int, *, full_stats: bool = False, store_se: bool = True) -> None:
        """Fold the result of time point `tp` into the per-time-point arrays."""
        if self._frozen:
            raise RuntimeError("RegressionResult is final and cannot be updated")
        if len(one.beta) != self.n_predictors:
            raise ValueError(
                f"Regression returned {len(one.beta)} coefficients for {self.n_predictors} predictors"
            )

        self.r_squared[tp] = one.r_squared
        self.p[tp] = one.p_value
        self.df[tp] = one.df
        self.mse[tp] = one.mse if one.mse is not None else np.nan
        if full_stats:
            if self.stats is None:
                self.stats = [None] * self.n_time_points
            self.stats[tp] = one.stat

        for k, name in enumerate(self.predictor_names):
            b = one.beta[k]
            pred = self.predictors[name]
            if name == CONST_NAME:
                beta = 0.0
            else:
                with np.errstate(invalid="ignore", divide="ignore"):
                    beta = b / self.sd_y[tp] * self.sd_x[tp, k - 1]
            pred.b[tp] = b
            pred.beta[tp] = beta
            pred.p[tp] = one.p[k]
            pred.r2[tp] = one.r2_per_predictor[k]
            pred.adj_r2[tp] = one.adj_r2_per_predictor[k]
            if store_se:
                pred.se_b[tp] = one.stderr[k]

    def finalize(self) -> "RegressionResult":
        """Make all result arrays read-only."""
        arrays = [self.times, self.r_squared, self.p, self.df, self.mse, self.sd_x, self.sd_y]
        for pred in self.predictors.values():
            arrays.extend(pred.arrays().values())
        for arr in arrays:
            if isinstance(arr, np.ndarray):
                arr.flags.writeable = False
        self._frozen = True
        return self

    def to_dataframe(self) -> pd.DataFrame:
        """
        Long-form table: one row per time point and predictor.
        Columns: time_index, time, predictor, b, beta, se_b, p, r2, adj_r2,
        r_squared, p_regression.
        """
        frames = []
        for name in self.predictor_names:
            pred = self.predictors[name]
            frames.append(
                pd.DataFrame(
                    {
                        "time_index": np.arange(self.n_time_points),
                        "time": self.times,
                        "predictor": name,
                        **pred.arrays(),
                        "r_squared": self.r_squared,
                        "p_regression": self.p,
                    }
                )
            )
        if not frames:
            return pd.DataFrame()
        return pd.concat(frames, ignore_index=True)

    def summary_table(self) -> pd.DataFrame:
        """One row per time point: time, r_squared, p, df, mse, plus b_<predictor> columns."""
        data: Dict[str, Any] = {
            "time": self.times,
            "r_squared": self.r_squared,
            "p": self.p,
            "df": self.df,
            "mse": self.mse,
        }
        for name in self.predictor_names:
            data[f"b_{name}"] = self.predictors[name].b
            data[f"beta_{name}"] = self.predictors[name].beta
        return pd.DataFrame(data)


def create_empty_result(
    subject_id: str,
    regression_type: str,
    data: RegressionData,
    dependent_spec: str,
    times: Sequence[float],
) -> RegressionResult:
    result = RegressionResult(
        subject_id=subject_id,
        regression_type=regression_type,
        predictor_names=list(data.predictor_names),
        dependent_var=dependent_spec,
        times=np.asarray(times, dtype=float),
        predictor_descriptions=list(data.predictor_descriptions),
        dependent_var_description=data.dependent_description,
        n_trials=data.n_trials,
    )
    result.set_variance(data)
    return result
