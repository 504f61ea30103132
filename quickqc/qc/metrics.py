"""
Per-file metric computation.

Each modality has a fixed recipe of AFNI calls.  Every step runs inside
:meth:`Collector.metric`; a failing step is converted into a
:class:`MetricComputationError`, logged and recorded in
``MetricRecord.failed`` while the remaining steps continue.  Steps that
depend on a failed step fail the same way instead of being attempted.
"""

from __future__ import annotations

import subprocess
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional

import nibabel as nib
import structlog
from nibabel.filebasedimages import ImageFileError
from nibabel.spatialimages import HeaderDataError
from nibabel.wrapstruct import WrapStructError

from quickqc.config.schema import QcPolicy
from quickqc.models import AcquisitionRow, Figure, MetricRecord, Modality, ScanFile
from quickqc.qc import motion
from quickqc.qc.decision import read_badlist
from quickqc.qc.ghost import compute_gsr
from quickqc.utils.afni import AfniToolkit
from quickqc.utils.errors import MetricComputationError, QcError

log = structlog.get_logger()

#: Exceptions a delegate step may raise; anything else is a programming error.
STEP_ERRORS = (
    subprocess.CalledProcessError,
    subprocess.TimeoutExpired,
    OSError,
    EOFError,
    ValueError,
    ImageFileError,
    HeaderDataError,
    WrapStructError,
    QcError,
)


@dataclass
class MetricContext:
    """Everything a recipe needs besides the scan itself."""

    toolkit: AfniToolkit
    out_dir: Path
    policy: QcPolicy = field(default_factory=QcPolicy)


class Collector:
    """Accumulates values, figures and failed step names for one scan."""

    def __init__(self, scan: ScanFile):
        self.scan = scan
        self.values: Dict[str, Any] = {}
        self.figures: List[Figure] = []
        self.failed: List[str] = []

    @contextmanager
    def metric(self, name: str) -> Iterator[None]:
        try:
            yield
        except STEP_ERRORS as exc:
            err = MetricComputationError(self.scan.path, name, str(exc).strip())
            log.warning("metric-failed", file=self.scan.name, metric=name, error=err.reason)
            self.failed.append(name)

    def figure(self, title: str, path: Path, alt: str = "", caption: Optional[str] = None) -> None:
        self.figures.append(Figure(title=title, path=path, alt=alt or title, caption=caption))

    def freeze(self) -> MetricRecord:
        return MetricRecord(
            scan=self.scan,
            values=dict(self.values),
            figures=tuple(self.figures),
            failed=tuple(self.failed),
        )


def _require(*paths: Optional[Path]) -> None:
    for p in paths:
        if p is None:
            raise FileNotFoundError("prerequisite output is unavailable")


def volume_count(image: Path) -> int:
    shape = nib.load(str(image)).shape
    return int(shape[3]) if len(shape) > 3 else 1


# --------------------------------------------------------------------------- #
# Acquisition parameters                                                      #
# --------------------------------------------------------------------------- #
def _num(value: str, cast: Callable[[str], Any]) -> Any:
    try:
        return cast(value)
    except (TypeError, ValueError):
        return None


def _int(value: str) -> Optional[int]:
    return _num(value, lambda s: int(float(s)))


def _float(value: str) -> Optional[float]:
    return _num(value, float)


def acquisition_row(toolkit: AfniToolkit, scan: ScanFile) -> AcquisitionRow:
    """``3dinfo`` summary of *scan*; unreadable fields stay empty (``N/A``)."""
    try:
        f = toolkit.info(scan.path)
    except STEP_ERRORS as exc:
        log.warning(
            "metric-failed", file=scan.name, metric="3dinfo", error=str(exc).strip()
        )
        return AcquisitionRow(filename=scan.name)
    return AcquisitionRow(
        filename=f[9] if f[9] not in ("", "NA") else scan.name,
        mat_x=_int(f[0]),
        mat_y=_int(f[1]),
        slices=_int(f[2]),
        volumes=_int(f[3]),
        di=_float(f[4]),
        dj=_float(f[5]),
        dk=_float(f[6]),
        tr=_float(f[7]),
        orient=f[8],
    )


# --------------------------------------------------------------------------- #
# Recipes                                                                     #
# --------------------------------------------------------------------------- #
def anat_metrics(ctx: MetricContext, scan: ScanFile) -> MetricRecord:
    """Tri-planar montage of the first volume; no scalar metrics."""
    c = Collector(scan)
    with c.metric("montage"):
        jpg = ctx.toolkit.montage(
            f"{scan.path}[0]",
            ctx.out_dir / f"{scan.stem}_anat",
            montx=8,
            nx=1,
            extra=[
                "-set_dicom_xyz", "5", "18", "18",
                "-delta_slices", "10", "20", "10",
                "-olay_off",
            ],
        )
        c.figure(scan.stem, jpg)
    return c.freeze()


def _motion_trace(
    ctx: MetricContext, c: Collector, scan: ScanFile
) -> tuple[Optional[Path], Optional[Path], Optional[Any]]:
    """Register, derive enorm and store mean FD; returns (dfile, enorm file, trace)."""
    dfile = enorm_file = trace = None
    with c.metric("volreg"):
        dfile = ctx.toolkit.volreg(scan.path, ctx.out_dir / f"dfile_rall_{scan.stem}.1D")
    with c.metric("enorm"):
        _require(dfile)
        trace = motion.enorm(
            motion.load_1d(dfile),
            translation_weight=ctx.policy.translation_weight,
            rotation_weight=ctx.policy.rotation_weight,
        )
        enorm_file = motion.write_1d(ctx.out_dir / f"motion_{scan.stem}_enorm.1D", trace)
        c.values["mean_fd"] = motion.mean_fd(trace)
    return dfile, enorm_file, trace


def dwi_metrics(ctx: MetricContext, scan: ScanFile) -> MetricRecord:
    """Slice-drop detection, per-volume montages and between-volume motion."""
    c = Collector(scan)
    out = ctx.out_dir
    prefix = out / f"{scan.stem}_dwi"

    with c.metric("n_volumes"):
        c.values["n_volumes"] = volume_count(scan.path)

    mask = None
    with c.metric("automask"):
        mask = ctx.toolkit.automask(
            Path(f"{scan.path}[0]"), prefix.with_name(prefix.name + "_mask.nii.gz")
        )
    with c.metric("zipper"):
        _require(mask)
        badlist = ctx.toolkit.zipper(scan.path, prefix.with_name(prefix.name + "_zz"), mask)
        c.values["bad_volumes"] = read_badlist(badlist)

    with c.metric("4d_imager"):
        sag, axi = ctx.toolkit.four_d_imager(scan.path, prefix.with_name(prefix.name + "_4d"))
        caption = "One slice per DWI volume, with separate scalings for each volume"
        c.figure(f"DWI EPI Distortions and Within TR Motion {scan.stem}", sag, f"Sagittal {scan.stem}")
        c.figure(f"DWI axial view {scan.stem}", axi, f"Axial {scan.stem}", caption)

    dfile, enorm_file, _ = _motion_trace(ctx, c, scan)

    n_vols = c.values.get("n_volumes")
    if n_vols is not None and n_vols > ctx.policy.min_plot_volumes:
        with c.metric("motion_plot"):
            _require(dfile, enorm_file)
            png = ctx.toolkit.plot(
                [dfile, enorm_file],
                out / f"motion_outlier_plot_{scan.stem}.png",
                ylabels=["VOLREG", "enorm"],
                title=f"Motion Profile: {scan.stem}",
            )
            c.figure(f"Motion Profile - Between TR {scan.stem}", png)
    else:
        log.info("skip-motion-plot", file=scan.name, volumes=n_vols)
    return c.freeze()


def func_metrics(ctx: MetricContext, scan: ScanFile) -> MetricRecord:
    """TSNR/TSTD maps, outlier and quality traces, motion, DVARS and GSR."""
    c = Collector(scan)
    tk, out, policy = ctx.toolkit, ctx.out_dir, ctx.policy
    stem = scan.stem

    with c.metric("n_volumes"):
        c.values["n_volumes"] = volume_count(scan.path)

    tsnr = mask = None
    with c.metric("tsnr"):
        tsnr = tk.tstat(scan.path, out / f"tsnr_{stem}.nii.gz", "-cvarinv")
    with c.metric("mask"):
        _require(tsnr)
        mask = tk.automask(tsnr, out / f"mask_{stem}.nii.gz", clfrac=policy.automask_clfrac)
    with c.metric("tsnr_montage"):
        _require(tsnr, mask)
        jpg = tk.montage(tsnr, out / f"tsnr_{stem}", extra=["-olay_off", "-box_focus_slices", mask])
        c.figure(f"Temporal signal to noise ratio (TSNR) '-cvarinv' - {stem}", jpg, f"TSNR {stem}")
    with c.metric("tstd"):
        _require(mask)
        tstd = tk.tstat(scan.path, out / f"tstd_{stem}.nii.gz", "-stdev")
        jpg = tk.montage(tstd, out / f"tstd_{stem}", extra=["-olay_off", "-box_focus_slices", mask])
        c.figure(f"Temporal standard deviation (TSTD) '-stdev' - {stem}", jpg, f"TSTD {stem}")

    outliers = tqual = dvars = srms = None
    with c.metric("outliers"):
        outliers = tk.outcount(scan.path, out / f"3dToutcount_fraction_{stem}.1D")
        c.values["mean_outlier_fraction"] = motion.trace_mean(outliers)
    with c.metric("quality"):
        tqual = tk.tqual(scan.path, out / f"3dTqual_{stem}_range.1D")
        c.values["mean_quality_index"] = motion.trace_mean(tqual)

    dfile, enorm_file, trace = _motion_trace(ctx, c, scan)

    censor_file = None
    with c.metric("censor"):
        _require(enorm_file)
        table = motion.censor_table(trace, policy.censor_limits, prev_tr=policy.censor_prev_tr)
        for lim, idx in table.items():
            c.values[f"censored@{lim:g}"] = len(idx)
            c.values[f"censored_indices@{lim:g}"] = idx
        censor_file = motion.write_censor_file(
            out / f"{stem}_censor.1D", trace, policy.plot_censor_limit, prev_tr=policy.censor_prev_tr
        )

    with c.metric("dvars"):
        dvars = tk.tto1d(scan.path, out / f"dvars_{stem}_range.1D", "DVARS")
        c.values["mean_dvars"] = motion.trace_mean(dvars)
    with c.metric("srms"):
        srms = tk.tto1d(scan.path, out / f"srms_{stem}_range.1D", "srms")
        c.values["mean_srms"] = motion.trace_mean(srms)

    with c.metric("motion_plot"):
        _require(dfile, censor_file)
        png = tk.plot(
            [dfile],
            out / f"motion_6p_{stem}.png",
            ylabels=["VOLREG"],
            censor_files=[censor_file],
            title=f"3 translations and 3 rotations: {stem}",
        )
        c.figure(f"Motion Profile - 6 params - {stem}", png, f"Six parameter motion {stem}")
    with c.metric("summary_plot"):
        _require(enorm_file, outliers, srms, censor_file)
        png = tk.plot(
            [enorm_file, outliers, srms],
            out / f"enorm_outlier_srms_plot_{stem}.png",
            ylabels=["enorm", "outliers", "dvars/gmean"],
            censor_files=[censor_file],
            censor_hline=[policy.plot_censor_limit, 0.05, 0.05],
            title=f"Enorm and Outlier plot : {stem}",
        )
        c.figure(f"Motion Profile - summary - {stem}", png, f"Enorm and Outliers {stem}")
    with c.metric("carpet"):
        _require(mask, enorm_file)
        indices = c.values.get(f"censored_indices@{policy.plot_censor_limit:g}", [])
        jpg = tk.carpet(
            scan.path,
            mask,
            enorm_file,
            out / f"mot_gray_{stem}.jpg",
            censor_tr=motion.censortr_args(indices),
        )
        c.figure(f"Motion Profile - Carpet Grayplot - {stem}", jpg, f"Motion_Grayplot {stem}")

    with c.metric("gsr"):
        gsr = compute_gsr(tk, scan.path, out, decimals=policy.gsr_decimals)
        c.values["gsr_x"] = gsr["x"]
        c.values["gsr_y"] = gsr["y"]
        (out / f"{stem}_GSR.txt").write_text(
            "".join(f"GSR_{k}: {'N/A' if v is None else v}\n" for k, v in gsr.items())
        )

    return c.freeze()


_RECIPES: Dict[Modality, Callable[[MetricContext, ScanFile], MetricRecord]] = {
    Modality.ANAT: anat_metrics,
    Modality.DWI: dwi_metrics,
    Modality.FUNC: func_metrics,
}


def compute_metrics(ctx: MetricContext, scan: ScanFile) -> Optional[MetricRecord]:
    """Run the recipe for *scan*'s modality; *None* for unprocessed modalities."""
    recipe = _RECIPES.get(scan.modality)
    if recipe is None:
        return None
    log.info("compute-metrics", file=scan.name, modality=scan.modality.value)
    record = recipe(ctx, scan)
    if record.failed:
        log.warning("metrics-incomplete", file=scan.name, failed=list(record.failed))
    return record
