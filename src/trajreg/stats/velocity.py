from __future__ import annotations

from typing import Optional

import numpy as np
from scipy.ndimage import gaussian_filter1d
from scipy.signal import savgol_filter

from trajreg.traj.core import Trial


def xy_speed(
    trial: Trial,
    *,
    smooth_window: Optional[int] = None,
    polyorder: int = 2,
) -> np.ndarray:
    """
    Instantaneous 2-D speed of a trial, one value per sample interval.

    Speed i is |p[i+1] - p[i]| / (t[i+1] - t[i]), so the result has T-1
    entries (empty for a single-row trial). Callers needing one value per row
    hold the last value.

    Args:
        trial: Trial to evaluate.
        smooth_window: Optional Savitzky-Golay window (samples, odd) applied to
            x and y before differencing.
        polyorder: Polynomial order for the Savitzky-Golay filter.
    """
    x = trial.column("x")
    y = trial.column("y")
    t = trial.abs_time()
    if len(t) < 2:
        return np.array([], dtype=float)

    if smooth_window is not None and len(x) > smooth_window:
        x = savgol_filter(x, smooth_window, polyorder)
        y = savgol_filter(y, smooth_window, polyorder)

    dt = np.diff(t)
    dist = np.hypot(np.diff(x), np.diff(y))
    with np.errstate(invalid="ignore", divide="ignore"):
        speed = np.where(dt > 0, dist / dt, np.nan)
    return speed


def hold_last(values: np.ndarray, length: int) -> np.ndarray:
    """Pad a 1D series to `length` by replicating its final value."""
    values = np.asarray(values, dtype=float)
    if len(values) >= length:
        return values
    if len(values) == 0:
        return np.full(length, np.nan)
    return np.concatenate([values, np.repeat(values[-1], length - len(values))])


def smooth_gaussian(values: np.ndarray, sd_samples: float) -> np.ndarray:
    """
    Gaussian smoothing of a 1D series; sd is given in samples.
    Edges are handled by repeating the boundary value.
    """
    values = np.asarray(values, dtype=float)
    if sd_samples <= 0 or len(values) < 2:
        return values.copy()
    return gaussian_filter1d(values, sigma=float(sd_samples), mode="nearest")
