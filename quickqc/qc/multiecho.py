"""
Multi-echo detection and T2*/S0 fitting.

A group is anchored on its middle (``echo-2``) file and collects every
sibling that differs only by the ``echo`` entity.  Only groups with exactly
``policy.echo_count`` members and strictly increasing echo times are fitted
with ``t2smap``; larger groups are reported without maps and smaller ones
are ignored.
"""

from __future__ import annotations

from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

import pandas as pd
import structlog

from quickqc.models import EchoGroup, EchoGroupResult, EchoRole, Modality, ScanFile
from quickqc.qc import motion
from quickqc.qc.discover import scan_file
from quickqc.qc.metrics import STEP_ERRORS, Collector, MetricContext
from quickqc.utils import meta, tedana
from quickqc.utils.errors import MissingMetadataError

log = structlog.get_logger()

#: Positional RMSE percentile columns of the ``t2smap`` confounds table.
RMSE_COLUMNS = slice(3, 8)
RMSE_LABELS = ("2", "25", "50", "75", "98")


def _identity(scan: ScanFile) -> Tuple[Tuple[Tuple[str, str], ...], str]:
    return tuple((k, v) for k, v in scan.entities.items() if k != "echo"), scan.suffix


def group_stem(scan: ScanFile) -> str:
    """Filename stem without the echo entity and suffix (``sub-01_task-rest``)."""
    return "_".join(f"{k}-{v}" for k, v in scan.entities.items() if k != "echo")


def find_groups(func_files: Sequence[Path]) -> List[EchoGroup]:
    """Echo groups anchored on every middle-echo file in *func_files*."""
    scans = [scan_file(p, Modality.FUNC) for p in sorted(func_files)]
    by_identity: Dict[tuple, List[ScanFile]] = {}
    for s in scans:
        if s.echo is not None:
            by_identity.setdefault(_identity(s), []).append(s)

    groups: List[EchoGroup] = []
    for s in scans:
        if s.echo_role is not EchoRole.MIDDLE:
            continue
        members = sorted(by_identity.get(_identity(s), []), key=lambda m: m.echo or 0)
        groups.append(EchoGroup(stem=group_stem(s), members=tuple(members)))
    return groups


def echo_times(group: EchoGroup) -> Tuple[float, ...]:
    """Echo times in ms, ordered like ``group.members``.

    Raises:
        MissingMetadataError: A side-car lacks ``EchoTime`` or the times are
            not strictly increasing.
    """
    times = tuple(meta.echo_time_ms(m.path) for m in group.members)
    if any(b <= a for a, b in zip(times, times[1:])):
        raise MissingMetadataError(group.members[0].path, "increasing EchoTime")
    return times


def rmse_trace(confounds: Path, out: Path) -> Tuple[Path, Optional[float]]:
    """Extract the RMSE percentile columns into a ``.1D`` file.

    Returns the file and the temporal mean of the 98th-percentile column,
    used as the upper bound of the RMSE map colour scale.
    """
    df = pd.read_csv(confounds, sep="\t")
    if df.shape[1] < RMSE_COLUMNS.stop:
        raise ValueError(f"{confounds.name} has {df.shape[1]} columns, expected >= {RMSE_COLUMNS.stop}")
    centiles = df.iloc[:, RMSE_COLUMNS].apply(pd.to_numeric, errors="coerce")
    motion.write_1d(out, centiles.to_numpy())
    upper = centiles.iloc[:, -1].mean()
    return out, (None if pd.isna(upper) else float(upper))


def process_group(ctx: MetricContext, group: EchoGroup, echo_count: int) -> Optional[EchoGroupResult]:
    """Fit and render one group; *None* when the group is too small."""
    if group.size < echo_count:
        log.info("multi-echo-skip", stem=group.stem, echoes=group.size)
        return None
    if group.size > echo_count:
        log.info("multi-echo-detected", stem=group.stem, echoes=group.size)
        return EchoGroupResult(
            group=group,
            note=f"{group.size} echoes found; T2*/S0 maps are only generated for {echo_count}-echo data.",
        )

    try:
        tes = echo_times(group)
    except MissingMetadataError as exc:
        log.warning("multi-echo-metadata", stem=group.stem, error=str(exc))
        return EchoGroupResult(group=group, note=f"Echo time metadata unusable ({exc}); maps not generated.")

    tk, out = ctx.toolkit, ctx.out_dir
    c = Collector(group.members[1] if group.size > 1 else group.members[0])
    outs = None
    with c.metric("t2smap"):
        outs = tedana.t2smap(
            [m.path for m in group.members], tes, out, group.stem,
            timeout=tk.timeout, retries=tk.retries,
        )
    if outs is None:
        return EchoGroupResult(group=group, echo_times_ms=tes, note="t2smap failed; maps not generated.")

    stem = group.stem
    with c.metric("t2star_montage"):
        jpg = tk.montage(outs.t2star, out / f"t2star_{stem}", extra=["-olay_off"])
        c.figure(f"T2* map - {stem}", jpg, f"T2* map {stem}")
    with c.metric("s0_montage"):
        jpg = tk.montage(outs.s0, out / f"s0map_{stem}", extra=["-olay_off"])
        c.figure(f"S0 map - {stem}", jpg, f"S0 map {stem}")

    upper = trace = None
    with c.metric("rmse_trace"):
        trace, upper = rmse_trace(outs.confounds, out / f"{stem}_desc-confounds_timeseries.1D")
    with c.metric("rmse_plot"):
        if trace is None:
            raise FileNotFoundError("RMSE trace unavailable")
        png = tk.plot(
            [trace],
            out / f"{stem}_rmse_plot.png",
            one_graph=True,
            legend_labels=RMSE_LABELS,
            title=f"RMSE centiles: {stem}",
        )
        c.figure(
            f"RMSE centiles across time for the entire brain for: {stem}",
            png,
            f"RMSE {stem}",
            "Residual Mean Squared Error (RMSE) indicates the fit quality of the "
            "monoexponential T2* decay model, where lower median values for the "
            "volume suggest better data quality.",
        )

    colorbar = None
    with c.metric("rmse_montage"):
        if upper is None:
            raise ValueError("RMSE colour range unavailable")
        prefix = out / f"rmse_{stem}"
        pbar = prefix.with_name(prefix.name + "_pb.jpg")
        jpg = tk.montage(
            outs.rmse,
            prefix,
            extra=[
                "-olay", outs.rmse,
                "-cbar", "Plasma",
                "-pbar_saveim", pbar,
                "-pbar_dim", "32x256H",
                "-pbar_posonly",
                "-func_range", f"{upper:g}",
            ],
        )
        c.figure(f"RMSE map - {stem}", jpg, f"RMSE map {stem}")
        colorbar = pbar if pbar.exists() else None

    record = c.freeze()
    return EchoGroupResult(
        group=group,
        echo_times_ms=tes,
        figures=record.figures,
        rmse_upper=upper,
        colorbar=colorbar,
        maps_generated=True,
        note=("Failed steps: " + ", ".join(record.failed)) if record.failed else None,
    )


def process_session_echoes(
    ctx: MetricContext, func_files: Sequence[Path], echo_count: int = 3
) -> List[EchoGroupResult]:
    results: List[EchoGroupResult] = []
    for group in find_groups(func_files):
        try:
            res = process_group(ctx, group, echo_count)
        except STEP_ERRORS as exc:
            log.warning("multi-echo-failed", stem=group.stem, error=str(exc))
            res = EchoGroupResult(group=group, note=f"Multi-echo processing failed: {exc}")
        if res is not None:
            results.append(res)
    return results
