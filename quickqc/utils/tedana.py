"""Wrapper for tedana's ``t2smap`` monoexponential fit."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence

from quickqc.utils import commands


@dataclass(frozen=True)
class T2sMapOutputs:
    t2star: Path
    s0: Path
    rmse: Path
    confounds: Path


def outputs_for(out_dir: Path, prefix: str) -> T2sMapOutputs:
    """Files ``t2smap --prefix <prefix>`` writes into *out_dir*."""
    return T2sMapOutputs(
        t2star=out_dir / f"{prefix}_T2starmap.nii.gz",
        s0=out_dir / f"{prefix}_S0map.nii.gz",
        rmse=out_dir / f"{prefix}_desc-rmse_statmap.nii.gz",
        confounds=out_dir / f"{prefix}_desc-confounds_timeseries.tsv",
    )


def t2smap(
    echoes: Sequence[Path],
    echo_times_ms: Sequence[float],
    out_dir: Path,
    prefix: str,
    *,
    timeout: Optional[float] = None,
    retries: int = 0,
) -> T2sMapOutputs:
    """Fit T2*/S0 across *echoes* (ordered to match *echo_times_ms*).

    Raises:
        ValueError: Echo and echo-time counts differ.
        FileNotFoundError: ``t2smap`` exited cleanly but an output is missing.
    """
    if len(echoes) != len(echo_times_ms):
        raise ValueError("one echo time per echo is required")
    commands.run_cmd(
        [
            "t2smap",
            "-d", *echoes,
            "-e", *(f"{te:g}" for te in echo_times_ms),
            "--out-dir", out_dir,
            "--prefix", prefix,
        ],
        timeout=timeout,
        retries=retries,
    )
    outs = outputs_for(out_dir, prefix)
    for p in (outs.t2star, outs.s0, outs.rmse, outs.confounds):
        if not p.exists():
            raise FileNotFoundError(f"expected output {p} was not produced")
    return outs
