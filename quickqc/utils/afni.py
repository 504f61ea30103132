"""
Thin wrappers around the AFNI programs used for QC.

Each method builds one command line, runs it through
:func:`quickqc.utils.commands.run_cmd` and returns the path(s) it is expected
to produce.  A missing output raises :class:`FileNotFoundError` so callers can
treat "tool exited 0 but wrote nothing" the same way as a failed call.
"""

from __future__ import annotations

import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence

import structlog

from quickqc.utils import commands

log = structlog.get_logger()

#: Views written by ``@chauffeur_afni`` and stacked by ``imcat``.
MONTAGE_VIEWS = ("axi", "cor", "sag")


def _expect(*paths: Path) -> None:
    for p in paths:
        if not p.exists():
            raise FileNotFoundError(f"expected output {p} was not produced")


def _trace_text(res, image: Path) -> str:
    text = res.stdout or ""
    if not text.split():
        raise ValueError(f"{res.args[0]} wrote no values for {image.name}")
    return text


@dataclass
class AfniToolkit:
    """AFNI command set bound to one timeout / retry policy."""

    timeout: Optional[float] = None
    retries: int = 0

    def _run(self, cmd: Sequence[str | Path], *, capture: bool = False) -> subprocess.CompletedProcess:
        return commands.run_cmd(
            cmd, capture=capture, timeout=self.timeout, retries=self.retries
        )

    # ------------------------------------------------------------------ #
    # Header information                                                 #
    # ------------------------------------------------------------------ #
    def info(self, image: Path) -> List[str]:
        """Return ``3dinfo -n4 -ad3 -tr -orient -prefix`` fields of *image*."""
        res = self._run(
            ["3dinfo", "-n4", "-ad3", "-tr", "-orient", "-prefix", image], capture=True
        )
        fields = (res.stdout or "").split()
        if len(fields) < 10:
            raise ValueError(f"unexpected 3dinfo output for {image.name}: {res.stdout!r}")
        return fields[:10]

    # ------------------------------------------------------------------ #
    # Volumes                                                            #
    # ------------------------------------------------------------------ #
    def tstat(self, image: Path, out: Path, stat: str) -> Path:
        """Voxelwise temporal statistic (``-mean``, ``-stdev``, ``-cvarinv``)."""
        self._run(["3dTstat", "-overwrite", stat, "-prefix", out, image])
        _expect(out)
        return out

    def automask(self, image: Path, out: Path, *, clfrac: Optional[float] = None) -> Path:
        cmd: List[str | Path] = ["3dAutomask", "-overwrite"]
        if clfrac is not None:
            cmd += ["-clfrac", str(clfrac)]
        cmd += ["-prefix", out, image]
        self._run(cmd)
        _expect(out)
        return out

    # ------------------------------------------------------------------ #
    # Images                                                             #
    # ------------------------------------------------------------------ #
    def montage(
        self,
        ulay: Path | str,
        prefix: Path,
        *,
        montx: int = 10,
        extra: Sequence[str | Path] = (),
        nx: Optional[int] = None,
    ) -> Path:
        """Render axial/coronal/sagittal montages and stack them into one JPEG.

        The per-view images written by ``@chauffeur_afni`` are deleted once
        ``imcat`` has combined them into ``<prefix>.jpg``.
        """
        self._run(
            [
                "@chauffeur_afni",
                "-ulay", ulay,
                "-montx", str(montx),
                "-monty", "1",
                *extra,
                "-prefix", prefix,
            ]
        )
        views: List[Path] = []
        for view in MONTAGE_VIEWS:
            found = sorted(prefix.parent.glob(f"{prefix.name}.{view}.*"))
            if not found:
                raise FileNotFoundError(f"@chauffeur_afni wrote no {view} view for {prefix.name}")
            views.extend(found)

        out = prefix.with_name(prefix.name + ".jpg")
        cmd: List[str | Path] = ["imcat"]
        if nx is not None:
            cmd += ["-nx", str(nx)]
        cmd += ["-ny", "3", "-prefix", out, *views]
        self._run(cmd)
        _expect(out)
        for v in views:
            v.unlink(missing_ok=True)
        return out

    def four_d_imager(self, image: Path, prefix: Path) -> tuple[Path, Path]:
        """One slice per volume, separately scaled; returns (sagittal, axial)."""
        self._run(
            ["@djunct_4d_imager", "-inset", image, "-prefix", prefix, "-no_onescl", "-no_cor"]
        )
        sag = prefix.with_name(prefix.name + "_qc_sepscl.sag.png")
        axi = prefix.with_name(prefix.name + "_qc_sepscl.axi.png")
        _expect(sag, axi)
        return sag, axi

    # ------------------------------------------------------------------ #
    # Traces                                                             #
    # ------------------------------------------------------------------ #
    def zipper(self, image: Path, prefix: Path, mask: Path) -> Path:
        """Run ``3dZipperZapper`` and return its bad-volume list."""
        self._run(
            [
                "3dZipperZapper",
                "-overwrite",
                "-prefix", prefix,
                "-input", image,
                "-mask", mask,
                "-no_out_bad_mask",
            ]
        )
        badlist = prefix.with_name(prefix.name + "_badlist.txt")
        _expect(badlist)
        return badlist

    def volreg(self, image: Path, dfile: Path) -> Path:
        """Rigid-body registration; only the 6-parameter motion file is kept."""
        self._run(
            ["3dvolreg", "-verbose", "-zpad", "1", "-1Dfile", dfile, "-cubic", "-prefix", "NULL", image]
        )
        _expect(dfile)
        return dfile

    def outcount(self, image: Path, out: Path) -> Path:
        """Per-volume outlier fraction (``3dToutcount``) written to *out*."""
        res = self._run(
            ["3dToutcount", "-automask", "-fraction", "-legendre", image], capture=True
        )
        out.write_text(_trace_text(res, image))
        return out

    def tqual(self, image: Path, out: Path) -> Path:
        """Distance-to-median-volume quality index (``3dTqual -spearman``)."""
        res = self._run(["3dTqual", "-automask", "-spearman", image], capture=True)
        out.write_text(_trace_text(res, image))
        return out

    def tto1d(self, image: Path, out: Path, method: str) -> Path:
        """``3dTto1D`` trace; *method* is ``DVARS`` or ``srms``."""
        self._run(
            ["3dTto1D", "-overwrite", "-automask", "-method", method, "-prefix", out, "-input", image]
        )
        _expect(out)
        return out

    # ------------------------------------------------------------------ #
    # Plots                                                              #
    # ------------------------------------------------------------------ #
    def plot(
        self,
        infiles: Sequence[Path],
        out: Path,
        *,
        title: str,
        ylabels: Sequence[str] = (),
        censor_files: Sequence[Path] = (),
        censor_hline: Sequence[float] = (),
        one_graph: bool = False,
        legend_labels: Sequence[str] = (),
    ) -> Path:
        """Draw 1D traces with ``1dplot.py``."""
        cmd: List[str | Path] = ["1dplot.py"]
        if one_graph:
            cmd += ["-one_graph"]
        else:
            cmd += ["-sepscl", "-boxplot_on"]
        cmd += ["-reverse_order"]
        if legend_labels:
            cmd += ["-legend_on", "-legend_labels", *legend_labels]
        if censor_files:
            cmd += ["-censor_files", *censor_files]
        cmd += ["-infiles", *infiles]
        if ylabels:
            cmd += ["-ylabels", *ylabels]
        cmd += ["-xlabel", "vols"]
        if censor_hline:
            cmd += ["-censor_hline", *(str(h) for h in censor_hline)]
        cmd += ["-title", title, "-prefix", out]
        self._run(cmd)
        _expect(out)
        return out

    def carpet(
        self,
        image: Path,
        mask: Path,
        enorm: Path,
        out: Path,
        *,
        censor_tr: Sequence[str] = (),
    ) -> Path:
        """Motion strip stacked on top of a ``3dGrayplot`` carpet."""
        strip = out.with_name(out.stem + "_mot.ppm")
        gray = out.with_name(out.stem + "_gray.pgm")
        cmd: List[str | Path] = ["1dplot", "-nopush", "-naked", "-THICK"]
        if censor_tr:
            cmd += ["-CENSORTR", *censor_tr]
        cmd += ["-censor_RGB", "rgbi:1.0/0.7/0.7", "-pnms", "1800", strip, "-aspect", "10", enorm]
        try:
            self._run(cmd)
            self._run(
                ["3dGrayplot", "-dimen", "1800", "400", "-pvorder",
                 "-prefix", gray, "-mask", mask, "-input", image]
            )
            _expect(strip, gray)
            self._run(["imcat", "-nx", "1", "-ny", "2", "-prefix", out, strip, gray])
            _expect(out)
        finally:
            strip.unlink(missing_ok=True)
            gray.unlink(missing_ok=True)
        return out
