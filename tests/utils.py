"""Test helpers: synthetic BIDS sessions and a fake AFNI / tedana runner."""

from __future__ import annotations

import json
import re
import subprocess
from pathlib import Path
from typing import Callable, Iterable, Optional

import nibabel as nib
import numpy as np

SHAPE = (8, 8, 4)


def _volume(n_vols: int | None, *, value: float = 100.0) -> np.ndarray:
    """Box-shaped 'brain' in the centre of an otherwise empty field."""
    data = np.zeros(SHAPE + ((n_vols,) if n_vols else ()), dtype="float32")
    data[2:6, 2:6, 1:3, ...] = value
    if n_vols:
        data[2:6, 2:6, 1:3, :] += np.linspace(0, 1, n_vols, dtype="float32")
    return data


def save_nifti(path: Path, n_vols: int | None = None) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    nib.save(nib.Nifti1Image(_volume(n_vols), np.eye(4)), path)
    return path


def make_session(
    root: Path,
    *,
    sub: str = "001",
    ses: Optional[str] = "01",
    anat: bool = True,
    dwi: bool = True,
    func: bool = True,
    fmap: bool = True,
    multiecho: int = 0,
    dwi_vols: int = 15,
    func_vols: int = 12,
    bval: bool = True,
) -> Path:
    """Create one subject/session and return the session directory."""
    root.mkdir(parents=True, exist_ok=True)
    (root / "dataset_description.json").write_text("{}")
    base = root / f"sub-{sub}"
    ses_dir = base / f"ses-{ses}" if ses else base
    tag = f"sub-{sub}_ses-{ses}" if ses else f"sub-{sub}"

    if anat:
        save_nifti(ses_dir / "anat" / f"{tag}_T1w.nii.gz")
    if dwi:
        d = save_nifti(ses_dir / "dwi" / f"{tag}_dwi.nii.gz", dwi_vols)
        d.with_name(f"{tag}_dwi.json").write_text(
            json.dumps({"PhaseEncodingDirection": "j-", "PhaseEncodingAxis": "j"})
        )
        if bval:
            bvals = ["0" if i % 5 == 0 else "1000" for i in range(dwi_vols)]
            d.with_name(f"{tag}_dwi.bval").write_text(" ".join(bvals) + "\n")
    if func:
        save_nifti(ses_dir / "func" / f"{tag}_task-rest_bold.nii.gz", func_vols)
        save_nifti(ses_dir / "func" / f"{tag}_task-rest_sbref.nii.gz")
    if fmap:
        save_nifti(ses_dir / "fmap" / f"{tag}_dir-AP_epi.nii.gz", 2)
    for echo in range(1, multiecho + 1):
        p = save_nifti(
            ses_dir / "func" / f"{tag}_task-me_echo-{echo}_bold.nii.gz", func_vols
        )
        p.with_name(p.name.replace(".nii.gz", ".json")).write_text(
            json.dumps({"EchoTime": round(0.0135 + 0.0177 * (echo - 1), 4)})
        )
    return ses_dir


# --------------------------------------------------------------------------- #
# Fake delegate runner                                                        #
# --------------------------------------------------------------------------- #
_SELECTOR = re.compile(r"\[.*\]$")


def _image(arg: str) -> Path:
    return Path(_SELECTOR.sub("", str(arg)))


def _n_vols(arg: str) -> int:
    shape = nib.load(str(_image(arg))).shape
    return shape[3] if len(shape) > 3 else 1


def _after(cmd: list[str], flag: str, offset: int = 1) -> str:
    return cmd[cmd.index(flag) + offset]


def default_motion(n: int) -> np.ndarray:
    """Quiet trace with a single 1 mm jump at volume 3."""
    params = np.zeros((n, 6))
    if n > 3:
        params[3:, 3] = 1.0
    return params


def fake_run_factory(
    calls: list[list[str]],
    *,
    fail: Iterable[str] = (),
    badlist: str = "",
    motion: Callable[[int], np.ndarray] = default_motion,
):
    """Create a fake ``run_cmd`` that records commands and writes expected outputs.

    Programs named in *fail* exit with status 1 without writing anything.
    """
    failing = set(fail)

    def _fake_run(cmd, *, capture=False, timeout=None, retries=0, cwd=None):
        cmd = [str(c) for c in cmd]
        calls.append(cmd)
        prog = cmd[0]
        stdout = ""
        if prog in failing:
            raise subprocess.CalledProcessError(1, cmd, output="", stderr="boom")

        if prog == "3dinfo":
            name = _image(cmd[-1]).name.split(".", 1)[0]
            stdout = f"8\t8\t4\t{_n_vols(cmd[-1])}\t3.000000\t3.000000\t3.500000\t2.000000\tRAI\t{name}\n"
        elif prog == "3dTstat":
            src = nib.load(str(_image(cmd[-1])))
            data = np.asanyarray(src.dataobj)
            out = data.mean(axis=3) if data.ndim == 4 else data
            nib.save(nib.Nifti1Image(out.astype("float32"), np.eye(4)), _after(cmd, "-prefix"))
        elif prog == "3dAutomask":
            data = np.asanyarray(nib.load(str(_image(cmd[-1]))).dataobj)
            if data.ndim == 4:
                data = data[..., 0]
            nib.save(nib.Nifti1Image((data > 0).astype("uint8"), np.eye(4)), _after(cmd, "-prefix"))
        elif prog == "@chauffeur_afni":
            prefix = _after(cmd, "-prefix")
            for view in ("axi", "cor", "sag"):
                Path(f"{prefix}.{view}.png").touch()
            if "-pbar_saveim" in cmd:
                Path(_after(cmd, "-pbar_saveim")).touch()
        elif prog in ("imcat", "1dplot.py", "3dGrayplot"):
            Path(_after(cmd, "-prefix")).touch()
        elif prog == "1dplot":
            Path(_after(cmd, "-pnms", 2)).touch()
        elif prog == "@djunct_4d_imager":
            prefix = _after(cmd, "-prefix")
            Path(f"{prefix}_qc_sepscl.sag.png").touch()
            Path(f"{prefix}_qc_sepscl.axi.png").touch()
        elif prog == "3dZipperZapper":
            Path(f"{_after(cmd, '-prefix')}_badlist.txt").write_text(badlist)
        elif prog == "3dvolreg":
            params = motion(_n_vols(cmd[-1]))
            np.savetxt(_after(cmd, "-1Dfile"), params, fmt="%.4f")
        elif prog == "3dToutcount":
            stdout = "\n".join(["0.01"] * _n_vols(cmd[-1])) + "\n"
        elif prog == "3dTqual":
            stdout = "\n".join(["0.02"] * _n_vols(cmd[-1])) + "\n"
        elif prog == "3dTto1D":
            n = _n_vols(_after(cmd, "-input"))
            Path(_after(cmd, "-prefix")).write_text("\n".join(["0.5"] * n) + "\n")
        elif prog == "t2smap":
            out_dir = Path(_after(cmd, "--out-dir"))
            prefix = _after(cmd, "--prefix")
            for suffix in ("_T2starmap.nii.gz", "_S0map.nii.gz", "_desc-rmse_statmap.nii.gz"):
                (out_dir / f"{prefix}{suffix}").touch()
            header = "\t".join(
                ["rmse_mean", "rmse_std", "rmse_min", "rmse_p02", "rmse_p25",
                 "rmse_median", "rmse_p75", "rmse_p98"]
            )
            rows = ["\t".join(["1", "1", "1", "2", "3", "4", "5", str(6 + i)]) for i in range(3)]
            (out_dir / f"{prefix}_desc-confounds_timeseries.tsv").write_text(
                header + "\n" + "\n".join(rows) + "\n"
            )
        return subprocess.CompletedProcess(cmd, 0, stdout if capture else None, "")

    return _fake_run


def programs(calls: list[list[str]]) -> list[str]:
    return [c[0] for c in calls]
