"""
Threshold policy.

Diffusion series get an automated Pass/Fail; functional runs only get a
textual motion flag.  Thresholds come from :class:`quickqc.config.QcPolicy`.
"""

from __future__ import annotations

from pathlib import Path
from typing import Iterable, Optional, Sequence

from quickqc.config.schema import QcPolicy
from quickqc.models import DwiVerdict

FD_EXCEEDS = "Result --> Mean FD Motion exceeds acceptable thresholds (<{limit:g}mm)"
FD_WITHIN = "Result --> Mean FD Motion is within acceptable thresholds"
FD_UNKNOWN = "Result --> Mean FD could not be computed"


def read_badlist(path: Path) -> list[int]:
    """Volume indices listed by ``3dZipperZapper`` (whitespace separated)."""
    return sorted({int(float(tok)) for tok in path.read_text().split()})


def usable_b0_count(
    bvals: Optional[Sequence[float]], bad: Iterable[int], *, threshold: float = 10.0
) -> Optional[int]:
    """Number of b0 volumes (``b < threshold``) not flagged as bad.

    Returns *None* when no b-values are available.
    """
    if bvals is None:
        return None
    bad_set = set(bad)
    return sum(1 for i, b in enumerate(bvals) if b < threshold and i not in bad_set)


def dwi_passes(
    bad_count: int, n_volumes: int, usable_b0: Optional[int], *, fraction: float = 0.2
) -> bool:
    """Pass iff ``bad < N * fraction`` and at least one usable b0 remains.

    The b0 condition is skipped when *usable_b0* is *None* (no b-values).
    """
    if bad_count >= n_volumes * fraction:
        return False
    return usable_b0 is None or usable_b0 >= 1


def dwi_verdict(
    filename: str,
    bad: Sequence[int],
    n_volumes: int,
    bvals: Optional[Sequence[float]],
    policy: QcPolicy | None = None,
) -> DwiVerdict:
    policy = policy or QcPolicy()
    bad = tuple(sorted(set(int(i) for i in bad)))
    usable = usable_b0_count(bvals, bad, threshold=policy.b0_threshold)
    return DwiVerdict(
        filename=filename,
        bad_volumes=bad,
        n_volumes=n_volumes,
        usable_b0=usable,
        passed=dwi_passes(len(bad), n_volumes, usable, fraction=policy.bad_volume_fraction),
    )


def fd_flag(mean_fd: Optional[float], *, limit: float = 0.3) -> str:
    """Report sentence for the mean framewise displacement of a run."""
    if mean_fd is None:
        return FD_UNKNOWN
    if mean_fd > limit:
        return FD_EXCEEDS.format(limit=limit)
    return FD_WITHIN
