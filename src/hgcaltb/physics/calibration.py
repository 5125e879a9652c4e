# src/hgcaltb/physics/calibration.py
from __future__ import annotations
from typing import Literal, Sequence

import numpy as np

NonFinite = Literal["cut", "propagate"]


def reduce_cells(
    cells: Sequence[float] | np.ndarray,
    divisor: float,
    noise_sigma: float,
    threshold: float,
    rng: np.random.Generator | None = None,
    *,
    nonfinite: NonFinite = "cut",
) -> float:
    """
    Calibrated, noise-smeared, zero-suppressed sum over the cells of one layer.

    Each cell is divided by `divisor` (MIP calibration), gets one independent
    N(0, noise_sigma) sample added, and contributes to the sum only if the
    result is strictly above `threshold`.

    Parameters
    ----------
    cells : raw deposited energies, read in order
    divisor : MIP value in the units of `cells` (> 0)
    noise_sigma : noise standard deviation in MIP units (>= 0)
    threshold : single-cell cut in MIP units
    rng : generator the noise is drawn from; required when noise_sigma > 0
    nonfinite : "cut" drops NaN/inf calibrated cells, "propagate" adds them

    Notes
    -----
    - An empty layer returns 0.0 without touching `rng`.
    - With noise_sigma == 0 nothing is drawn, so the result is exact.
    - Draws happen in cell order, one per cell, so equal generator states
      give equal results.
    """
    if divisor <= 0:
        raise ValueError(f"divisor must be > 0, got {divisor}")
    x = np.asarray(cells, dtype=np.float64).ravel()
    if x.size == 0:
        return 0.0

    calib = x / divisor
    if noise_sigma > 0:
        if rng is None:
            raise ValueError("rng is required when noise_sigma > 0")
        calib = calib + rng.normal(0.0, noise_sigma, size=calib.size)

    finite = np.isfinite(calib)
    if nonfinite == "cut":
        keep = finite & (calib > threshold)
    elif nonfinite == "propagate":
        keep = ~finite | (calib > threshold)
    else:
        raise ValueError(f"Unknown nonfinite policy {nonfinite!r}")

    return float(np.sum(calib[keep]))
