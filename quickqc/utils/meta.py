"""
Readers for the companion metadata of a scan.

* side-car JSON written by dcm2niix (echo time, phase encoding);
* FSL-style ``.bval`` files of diffusion series (via :func:`numpy.loadtxt`).

Missing or corrupt side-cars are treated as empty metadata; callers decide
whether an absent field is fatal (:class:`MissingMetadataError`) or rendered
as ``N/A``.
"""

from __future__ import annotations

import json
from functools import lru_cache
from pathlib import Path
from typing import Any, List, Optional

import numpy as np

from quickqc.utils.errors import MissingMetadataError

_PED_TO_DIRECTION: dict[str, str] = {
    "j": "P>>A",
    "j-": "A>>P",
    "i": "R>>L",
    "i-": "L>>R",
}

_PED_TO_AXIS: dict[str, str] = {
    "j": "COL",
    "j-": "COL",
    "i": "ROW",
    "i-": "ROW",
}


@lru_cache(maxsize=4096)
def _read_json(path: str) -> dict[str, Any]:
    """Read JSON file at *path* and return a dict (cached)."""
    p = Path(path)
    if not p.exists() or p.stat().st_size == 0:
        return {}
    try:
        data = json.loads(p.read_text() or "{}")
    except (OSError, ValueError):
        return {}
    return data if isinstance(data, dict) else {}


def clear_meta_cache() -> None:
    """Clear the JSON cache (side-cars may change between runs in one process)."""
    _read_json.cache_clear()


def sidecar_of(nifti: Path) -> Path:
    name = nifti.name
    for ext in (".nii.gz", ".nii"):
        if name.endswith(ext):
            return nifti.with_name(name[: -len(ext)] + ".json")
    return nifti.with_suffix(".json")


def read_sidecar(nifti: Path) -> dict[str, Any]:
    return _read_json(str(sidecar_of(nifti)))


def echo_time_ms(nifti: Path) -> float:
    """Return ``EchoTime`` of *nifti* converted from seconds to milliseconds.

    Raises:
        MissingMetadataError: Field absent, not numeric or not positive.
    """
    value = read_sidecar(nifti).get("EchoTime")
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        raise MissingMetadataError(nifti, "EchoTime")
    return round(float(value) * 1000, 6)


def phase_encoding_direction(nifti: Path) -> str:
    """Human label for ``PhaseEncodingDirection`` (``P>>A`` …) or ``N/A``."""
    ped = read_sidecar(nifti).get("PhaseEncodingDirection")
    if not isinstance(ped, str):
        return "N/A"
    return _PED_TO_DIRECTION.get(ped.strip(), "N/A")


def phase_encoding_axis(nifti: Path) -> str:
    """``COL`` / ``ROW`` for ``PhaseEncodingAxis`` or ``N/A``."""
    axis = read_sidecar(nifti).get("PhaseEncodingAxis")
    if not isinstance(axis, str):
        return "N/A"
    return _PED_TO_AXIS.get(axis.strip(), "N/A")


def read_bvals(path: Path) -> Optional[List[float]]:
    """Return the b-values listed in *path* or *None* when the file is absent.

    Raises:
        MissingMetadataError: The file exists but cannot be parsed.
    """
    if not path.is_file():
        return None
    try:
        return np.loadtxt(path, ndmin=1).ravel().tolist()
    except ValueError as exc:
        raise MissingMetadataError(path, "b-values") from exc
