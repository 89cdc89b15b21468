"""
Single-regression solvers.

The regression loop only relies on the contract

    solver(regression_type, predictors (n, k), dependent (n,), silent=True)
        -> SingleRegressionResult

where every per-predictor array has k + 1 entries, intercept first.
`run_single_regression` is the default implementation.
"""

from __future__ import annotations

import logging
import warnings
from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional, Tuple

import numpy as np
import statsmodels.api as sm
from scipy import stats
from statsmodels.tools.sm_exceptions import PerfectSeparationError

from trajreg.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

RegressionType = Literal["reg", "step", "corr", "pointbiserial", "logglm"]
REGRESSION_TYPES: Tuple[str, ...] = ("reg", "step", "corr", "pointbiserial", "logglm")
SINGLE_PREDICTOR_TYPES: Tuple[str, ...] = ("corr", "pointbiserial")


@dataclass
class SingleRegressionResult:
    """Outcome of one regression; per-predictor arrays are (k + 1,), intercept first."""

    r_squared: float
    p_value: float
    df: float
    beta: np.ndarray
    p: np.ndarray
    stderr: np.ndarray
    r2_per_predictor: np.ndarray
    adj_r2_per_predictor: np.ndarray
    mse: float = np.nan
    stat: Optional[Dict[str, Any]] = field(default=None, repr=False)

    @property
    def is_valid(self) -> bool:
        return not np.all(np.isnan(self.beta))


def invalid_regression_result(n_predictors: int) -> SingleRegressionResult:
    """All-NaN result for a time point that could not be regressed (n_predictors includes the intercept)."""
    nan = np.full(n_predictors, np.nan)
    return SingleRegressionResult(
        r_squared=np.nan,
        p_value=np.nan,
        df=np.nan,
        beta=nan.copy(),
        p=nan.copy(),
        stderr=nan.copy(),
        r2_per_predictor=nan.copy(),
        adj_r2_per_predictor=nan.copy(),
    )


def validate_regression_type(regression_type: str) -> RegressionType:
    if regression_type not in REGRESSION_TYPES:
        raise ConfigurationError(
            f"Unsupported regression type '{regression_type}'; supported: {', '.join(REGRESSION_TYPES)}"
        )
    return regression_type


def _design(X: np.ndarray) -> np.ndarray:
    return np.column_stack([np.ones(X.shape[0]), X])


def _ols(X: np.ndarray, y: np.ndarray):
    with np.errstate(divide="ignore", invalid="ignore"):
        return sm.OLS(y, _design(X)).fit()


def _contributions(fit, X: np.ndarray, y: np.ndarray, columns: List[int], k: int) -> Tuple[np.ndarray, np.ndarray]:
    """
    R^2 (and adjusted R^2) lost when each predictor in `columns` is dropped from
    the model fitted on X[:, columns]. Entries for other predictors are NaN.
    """
    r2 = np.full(k + 1, np.nan)
    adj = np.full(k + 1, np.nan)
    for pos, j in enumerate(columns):
        rest = [c for i, c in enumerate(columns) if i != pos]
        reduced = _ols(X[:, rest], y)
        r2[j + 1] = fit.rsquared - reduced.rsquared
        adj[j + 1] = fit.rsquared_adj - reduced.rsquared_adj
    return r2, adj


def _ols_stat(fit) -> Dict[str, Any]:
    return {
        "nobs": float(fit.nobs),
        "fvalue": float(fit.fvalue),
        "tvalues": np.asarray(fit.tvalues),
        "ssr": float(fit.ssr),
        "aic": float(fit.aic),
        "bic": float(fit.bic),
    }


def ordinary_regression(X: np.ndarray, y: np.ndarray) -> SingleRegressionResult:
    k = X.shape[1]
    fit = _ols(X, y)
    r2, adj = _contributions(fit, X, y, list(range(k)), k)
    return SingleRegressionResult(
        r_squared=float(fit.rsquared),
        p_value=float(fit.f_pvalue),
        df=float(fit.df_resid),
        beta=np.asarray(fit.params, dtype=float),
        p=np.asarray(fit.pvalues, dtype=float),
        stderr=np.asarray(fit.bse, dtype=float),
        r2_per_predictor=r2,
        adj_r2_per_predictor=adj,
        mse=float(fit.mse_resid),
        stat=_ols_stat(fit),
    )


def stepwise_regression(
    X: np.ndarray,
    y: np.ndarray,
    *,
    p_enter: float = 0.05,
    p_remove: float = 0.10,
) -> SingleRegressionResult:
    """
    Forward-backward stepwise OLS. Predictors left out of the final model get
    coefficient 0 and the p-value they would have on entering it.
    """
    k = X.shape[1]
    included: List[int] = []
    for _ in range(4 * k + 1):
        changed = False

        excluded = [j for j in range(k) if j not in included]
        entry_p = {j: _ols(X[:, included + [j]], y).pvalues[-1] for j in excluded}
        if entry_p:
            best = min(entry_p, key=entry_p.get)
            if entry_p[best] < p_enter:
                included.append(best)
                changed = True

        if included:
            pvals = np.asarray(_ols(X[:, included], y).pvalues[1:])
            worst = int(np.nanargmax(pvals)) if not np.all(np.isnan(pvals)) else None
            if worst is not None and pvals[worst] > p_remove:
                included.pop(worst)
                changed = True

        if not changed:
            break

    fit = _ols(X[:, included], y)
    beta = np.zeros(k + 1)
    p = np.full(k + 1, np.nan)
    se = np.full(k + 1, np.nan)
    beta[0], p[0], se[0] = fit.params[0], fit.pvalues[0], fit.bse[0]
    for pos, j in enumerate(included):
        beta[j + 1] = fit.params[pos + 1]
        p[j + 1] = fit.pvalues[pos + 1]
        se[j + 1] = fit.bse[pos + 1]
    for j in range(k):
        if j not in included:
            p[j + 1] = _ols(X[:, included + [j]], y).pvalues[-1]

    r2, adj = _contributions(fit, X, y, included, k)
    stat = _ols_stat(fit) if included else {"nobs": float(fit.nobs)}
    stat["in_model"] = np.array([j in included for j in range(k)])
    return SingleRegressionResult(
        r_squared=float(fit.rsquared),
        p_value=float(fit.f_pvalue) if included else np.nan,
        df=float(fit.df_resid),
        beta=beta,
        p=p,
        stderr=se,
        r2_per_predictor=r2,
        adj_r2_per_predictor=adj,
        mse=float(fit.mse_resid),
        stat=stat,
    )


def validate_predictor_count(regression_type: str, n_predictors: int) -> None:
    """Correlation types take exactly one predictor (intercept not counted)."""
    if regression_type in SINGLE_PREDICTOR_TYPES and n_predictors != 1:
        raise ConfigurationError(
            f"'{regression_type}' regression takes exactly one predictor, got {n_predictors}"
        )


def _single_predictor(regression_type: str, X: np.ndarray) -> np.ndarray:
    validate_predictor_count(regression_type, X.shape[1])
    return X[:, 0]


def _correlation_result(r: float, p: float, n: int) -> SingleRegressionResult:
    return SingleRegressionResult(
        r_squared=r * r,
        p_value=p,
        df=float(n - 2),
        beta=np.array([np.nan, r]),
        p=np.array([np.nan, p]),
        stderr=np.full(2, np.nan),
        r2_per_predictor=np.array([np.nan, r * r]),
        adj_r2_per_predictor=np.full(2, np.nan),
        stat={"r": r, "nobs": float(n)},
    )


def correlation(X: np.ndarray, y: np.ndarray) -> SingleRegressionResult:
    x = _single_predictor("corr", X)
    r, p = stats.pearsonr(x, y)
    return _correlation_result(float(r), float(p), len(y))


def point_biserial(X: np.ndarray, y: np.ndarray) -> SingleRegressionResult:
    """Point-biserial correlation; either the predictor or the dependent variable must be binary."""
    x = _single_predictor("pointbiserial", X)
    if len(np.unique(x)) <= 2:
        r, p = stats.pointbiserialr(x, y)
    elif len(np.unique(y)) <= 2:
        r, p = stats.pointbiserialr(y, x)
    else:
        raise ValueError("pointbiserial regression needs a binary predictor or dependent variable")
    return _correlation_result(float(r), float(p), len(y))


def logistic_regression(X: np.ndarray, y: np.ndarray) -> SingleRegressionResult:
    k = X.shape[1]
    design = _design(X)
    # singular design (e.g. a constant predictor column)
    if np.linalg.matrix_rank(design) < k + 1:
        return invalid_regression_result(k + 1)
    try:
        fit = sm.Logit(y, design).fit(disp=0)
    except (np.linalg.LinAlgError, PerfectSeparationError):
        return invalid_regression_result(k + 1)
    return SingleRegressionResult(
        r_squared=float(fit.prsquared),
        p_value=float(fit.llr_pvalue),
        df=float(fit.df_resid),
        beta=np.asarray(fit.params, dtype=float),
        p=np.asarray(fit.pvalues, dtype=float),
        stderr=np.asarray(fit.bse, dtype=float),
        r2_per_predictor=np.full(k + 1, np.nan),
        adj_r2_per_predictor=np.full(k + 1, np.nan),
        stat={"llf": float(fit.llf), "llnull": float(fit.llnull), "aic": float(fit.aic), "nobs": float(fit.nobs)},
    )


_SOLVERS = {
    "reg": ordinary_regression,
    "step": stepwise_regression,
    "corr": correlation,
    "pointbiserial": point_biserial,
    "logglm": logistic_regression,
}


def run_single_regression(
    regression_type: RegressionType,
    predictors: np.ndarray,
    dependent: np.ndarray,
    *,
    silent: bool = True,
) -> SingleRegressionResult:
    """
    Run one regression of `dependent` (n,) on `predictors` (n, k) plus an intercept.

    Args:
        regression_type: One of REGRESSION_TYPES.
        predictors: Predictor matrix without the constant column.
        dependent: Dependent variable.
        silent: When True, numerical warnings from the fit are suppressed;
            when False, they propagate and a one-line summary is logged.
    """
    validate_regression_type(regression_type)
    X = np.asarray(predictors, dtype=float)
    if X.ndim == 1:
        X = X[:, None]
    y = np.asarray(dependent, dtype=float).ravel()
    if X.shape[0] != y.shape[0]:
        raise ValueError(f"predictors have {X.shape[0]} rows but dependent has {y.shape[0]}")

    if silent:
        with warnings.catch_warnings():
            warnings.simplefilter("ignore")
            result = _SOLVERS[regression_type](X, y)
    else:
        result = _SOLVERS[regression_type](X, y)
        logger.info(
            "%s regression: n=%d, R2=%.4f, p=%.4g", regression_type, len(y), result.r_squared, result.p_value
        )
    return result
