"""
Ghost-to-signal ratio (GSR) of an EPI series.

For each in-plane axis the brain mask is shifted by half the field of view
in both directions (wrapping around).  Voxels covered by a shifted copy but
outside the brain form the *ghost* region; everything outside both the
ghost region and the brain is *background*::

    GSR = (mean(ghost) - mean(background)) / median(brain)

The temporal mean and the brain mask come from AFNI; the region arithmetic
is done here on the arrays.
"""

from __future__ import annotations

from pathlib import Path
from typing import Dict, Optional

import nibabel as nib
import numpy as np
import structlog

from quickqc.utils.afni import AfniToolkit
from quickqc.utils.cleanup import scratch_dir

log = structlog.get_logger()

#: Axis label → array axis of the mean volume.
AXES: Dict[str, int] = {"x": 0, "y": 1}


def ghost_regions(mask: np.ndarray, axis: int) -> tuple[np.ndarray, np.ndarray]:
    """Return ``(ghost, background)`` boolean masks for a shift along *axis*."""
    brain = np.asarray(mask) > 0
    half = brain.shape[axis] // 2
    shifted = np.roll(brain, half, axis=axis) | np.roll(brain, -half, axis=axis)
    ghost = shifted & ~brain
    background = ~(ghost | brain)
    return ghost, background


def ghost_to_signal(
    mean: np.ndarray, mask: np.ndarray, axis: int, *, decimals: int = 4
) -> Optional[float]:
    """GSR along *axis*, or *None* when it is not computable.

    Not computable means an empty brain or ghost / background region, or a
    zero or non-finite brain median.
    """
    mean = np.asarray(mean, dtype=float)
    brain = np.asarray(mask) > 0
    if mean.shape != brain.shape:
        raise ValueError(f"mean {mean.shape} and mask {brain.shape} differ in shape")
    if not brain.any():
        return None

    ghost, background = ghost_regions(brain, axis)
    if not ghost.any() or not background.any():
        return None

    median = float(np.median(mean[brain]))
    if not np.isfinite(median) or median == 0:
        return None

    value = (float(mean[ghost].mean()) - float(mean[background].mean())) / median
    if not np.isfinite(value):
        return None
    return round(value, decimals)


def _load_3d(path: Path) -> np.ndarray:
    data = np.asanyarray(nib.load(str(path)).dataobj)
    if data.ndim == 4 and data.shape[3] == 1:
        data = data[..., 0]
    if data.ndim != 3:
        raise ValueError(f"{path.name} is not a 3-D volume")
    return data


def compute_gsr(
    toolkit: AfniToolkit,
    image: Path,
    work_parent: Path,
    *,
    decimals: int = 4,
) -> Dict[str, Optional[float]]:
    """GSR of *image* along x and y.

    Intermediate volumes live in a ``__tmp_gsr_*`` directory under
    *work_parent* that is removed whatever happens.
    """
    with scratch_dir(work_parent, prefix="__tmp_gsr_") as tmp:
        stem = image.name.split(".", 1)[0]
        mean_file = toolkit.tstat(image, tmp / f"{stem}_mean.nii.gz", "-mean")
        mask_file = toolkit.automask(mean_file, tmp / f"{stem}_mask.nii.gz")
        mean = _load_3d(mean_file)
        mask = _load_3d(mask_file)

    result = {
        label: ghost_to_signal(mean, mask, axis, decimals=decimals)
        for label, axis in AXES.items()
    }
    log.debug("gsr", file=image.name, **result)
    return result
