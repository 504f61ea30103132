"""
Motion summaries derived from a 6-parameter registration trace.

``3dvolreg -1Dfile`` writes one row per volume with the columns
``roll pitch yaw dS dL dP`` (rotations in degrees, then translations in mm).
The *enorm* signal is the weighted Euclidean norm of the frame-to-frame
derivative of these parameters::

    enorm[t] = sqrt(w_t * (dS'² + dL'² + dP'²) + w_r * (roll'² + pitch'² + yaw'²))

with ``enorm[0] = 0``, translation weight ``w_t = 0.9`` and rotation weight
``w_r = 1.0``.  A volume is censored at a limit ``L`` when ``enorm > L``;
counts are therefore non-increasing as ``L`` grows.
"""

from __future__ import annotations

import warnings
from pathlib import Path
from typing import Dict, List, Optional, Sequence

import numpy as np

TRANSLATION_WEIGHT = 0.9
ROTATION_WEIGHT = 1.0


def load_1d(path: Path) -> np.ndarray:
    """Read an AFNI ``.1D`` text file into a 2-D float array (rows = volumes).

    Raises:
        ValueError: Rows have different widths or hold non-numeric text.
    """
    with warnings.catch_warnings():
        # an empty trace is reported through its size, not a warning
        warnings.simplefilter("ignore", UserWarning)
        return np.loadtxt(path, comments="#", ndmin=2)


def write_1d(path: Path, values: np.ndarray, fmt: str = "%g") -> Path:
    values = np.asarray(values)
    if values.size == 0:
        path.write_text("")
        return path
    np.savetxt(path, values.reshape(len(values), -1), fmt=fmt)
    return path


def trace_mean(path: Path) -> Optional[float]:
    """Temporal mean of a single-column trace; *None* when it is empty."""
    data = load_1d(path)
    if data.size == 0:
        return None
    return float(np.mean(data[:, 0]))


def enorm(
    params: np.ndarray,
    *,
    translation_weight: float = TRANSLATION_WEIGHT,
    rotation_weight: float = ROTATION_WEIGHT,
) -> np.ndarray:
    """Weighted norm of the derivative of a ``(n_volumes, 6)`` volreg trace."""
    params = np.asarray(params, dtype=float)
    if params.ndim != 2 or params.shape[1] != 6:
        raise ValueError(f"expected a (volumes, 6) motion trace, got {params.shape}")
    out = np.zeros(params.shape[0])
    if params.shape[0] < 2:
        return out
    roll, pitch, yaw, d_s, d_l, d_p = np.diff(params, axis=0).T
    rotation = roll ** 2 + pitch ** 2 + yaw ** 2
    translation = d_s ** 2 + d_l ** 2 + d_p ** 2
    out[1:] = np.sqrt(translation_weight * translation + rotation_weight * rotation)
    return out


def mean_fd(trace: np.ndarray) -> Optional[float]:
    """Mean absolute enorm, i.e. mean framewise displacement."""
    trace = np.asarray(trace, dtype=float)
    if trace.size == 0:
        return None
    return float(np.mean(np.abs(trace)))


def censor_mask(trace: np.ndarray, limit: float, *, prev_tr: bool = False) -> np.ndarray:
    """Boolean mask of volumes whose enorm exceeds *limit*."""
    mask = np.asarray(trace, dtype=float) > limit
    if prev_tr and mask.any():
        mask = mask | np.append(mask[1:], False)
    return mask


def censored_indices(trace: np.ndarray, limit: float, *, prev_tr: bool = False) -> List[int]:
    return [int(i) for i in np.flatnonzero(censor_mask(trace, limit, prev_tr=prev_tr))]


def censor_table(
    trace: np.ndarray, limits: Sequence[float], *, prev_tr: bool = False
) -> Dict[float, List[int]]:
    """Censored volume indices per motion limit, in ascending limit order."""
    return {
        float(lim): censored_indices(trace, lim, prev_tr=prev_tr) for lim in sorted(limits)
    }


def write_censor_file(path: Path, trace: np.ndarray, limit: float, *, prev_tr: bool = False) -> Path:
    """AFNI censor file: ``1`` keeps a volume, ``0`` censors it."""
    keep = (~censor_mask(trace, limit, prev_tr=prev_tr)).astype(int)
    return write_1d(path, keep, fmt="%d")


def censortr_args(indices: Sequence[int], run: int = 0) -> List[str]:
    """``-CENSORTR`` operands (``run:index``) for ``1dplot``."""
    return [f"{run}:{i}" for i in indices]
