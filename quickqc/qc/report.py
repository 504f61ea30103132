"""
Session report assembly and rendering.

:func:`build_session_report` gathers the per-file records, multi-echo results
and the review ledger into a :class:`SessionReport`; :func:`write_report`
renders it with the packaged Jinja template and creates the HTML file
exclusively, so an existing report is never overwritten.
"""

from __future__ import annotations

import os
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

import structlog
from jinja2 import Environment, PackageLoader, StrictUndefined
from pydantic import BaseModel, ConfigDict, Field

from quickqc.config.schema import QcPolicy
from quickqc.models import (
    PROCESSED_MODALITIES,
    AcquisitionRow,
    DwiVerdict,
    EchoGroupResult,
    Figure,
    FuncSummary,
    MetricRecord,
    Modality,
    PhaseEncodingRow,
    Session,
)
from quickqc.qc.decision import dwi_verdict, fd_flag
from quickqc.qc.ledger import Ledger, build_ledger, ledger_payload
from quickqc.utils import meta
from quickqc.utils.errors import AlreadyExistsError, MissingMetadataError
from quickqc.utils.paths import decision_filename

log = structlog.get_logger()

TEMPLATE = "report.html.j2"

#: Functional summary rows: (label, MetricRecord key).
FUNC_MEASURES: Tuple[Tuple[str, str], ...] = (
    ("Mean Framewise Displacement (FD) [Motion Index]", "mean_fd"),
    ("Mean DVARS (scaled by glob mean) [sDVARS Index]", "mean_srms"),
    ("Mean DVARS (unscaled)", "mean_dvars"),
    ("Mean Outlier Vox-to-Vol Fraction [Outlier Index]", "mean_outlier_fraction"),
    ("Mean Distance to Median Volume [Quality Index]", "mean_quality_index"),
    ("Ghost to Signal Ratio (GSR) - X Direction", "gsr_x"),
    ("Ghost to Signal Ratio (GSR) - Y Direction", "gsr_y"),
)


class ScanSection(BaseModel):
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    filename: str
    figures: Tuple[Figure, ...] = ()
    failed: Tuple[str, ...] = ()


class DwiRow(BaseModel):
    """Corruption summary row; ``verdict`` is *None* when it could not be derived."""

    model_config = ConfigDict(frozen=True)

    filename: str
    verdict: Optional[DwiVerdict] = None


class SessionReport(BaseModel):
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    subject: str
    session: Optional[str]
    acquisition: Tuple[AcquisitionRow, ...] = ()
    sections: Dict[Modality, Tuple[ScanSection, ...]] = Field(default_factory=dict)
    echo_results: Tuple[EchoGroupResult, ...] = ()
    phase_encoding: Tuple[PhaseEncodingRow, ...] = ()
    dwi_rows: Tuple[DwiRow, ...] = ()
    func_summaries: Tuple[FuncSummary, ...] = ()
    ledger: Ledger = Field(default_factory=Ledger)
    decision_filename: str
    censor_limits: Tuple[float, ...] = ()
    duration_seconds: float = 0.0
    generated_at: datetime

    @property
    def duration_text(self) -> str:
        total = int(round(self.duration_seconds))
        return f"{total // 60} minutes and {total % 60} seconds"


# --------------------------------------------------------------------------- #
# Aggregation                                                                 #
# --------------------------------------------------------------------------- #
def _dwi_row(record: MetricRecord, policy: QcPolicy) -> DwiRow:
    name = record.scan.name
    bad = record.get("bad_volumes")
    n_vols = record.get("n_volumes")
    if bad is None or n_vols is None:
        return DwiRow(filename=name)
    try:
        bvals = meta.read_bvals(record.scan.bval)
    except MissingMetadataError as exc:
        log.warning("bval-unreadable", file=name, error=str(exc))
        bvals = None
    if bvals is None:
        log.info("bval-missing", file=name)
    return DwiRow(filename=name, verdict=dwi_verdict(name, bad, n_vols, bvals, policy))


def _func_summary(record: MetricRecord, policy: QcPolicy) -> FuncSummary:
    measures = tuple((label, record.get(key)) for label, key in FUNC_MEASURES)
    censoring = tuple(
        (float(lim), record.get(f"censored@{lim:g}")) for lim in policy.censor_limits
    )
    return FuncSummary(
        filename=record.scan.name,
        measures=measures,
        fd_flag=fd_flag(record.get("mean_fd"), limit=policy.mean_fd_limit),
        censoring=censoring,
    )


def build_session_report(
    session: Session,
    records: Sequence[MetricRecord],
    *,
    acquisition: Sequence[AcquisitionRow] = (),
    echo_results: Sequence[EchoGroupResult] = (),
    policy: QcPolicy | None = None,
    ledger: Ledger | None = None,
    duration_seconds: float = 0.0,
) -> SessionReport:
    """Aggregate everything computed for *session* into the report model."""
    policy = policy or QcPolicy()
    by_modality: Dict[Modality, List[MetricRecord]] = {}
    for rec in records:
        by_modality.setdefault(rec.scan.modality, []).append(rec)

    sections = {
        m: tuple(
            ScanSection(filename=r.scan.name, figures=r.figures, failed=r.failed)
            for r in by_modality.get(m, [])
        )
        for m in PROCESSED_MODALITIES
        if session.primary(m)
    }

    pe_rows = tuple(
        PhaseEncodingRow(
            filename=s.name,
            direction=meta.phase_encoding_direction(s.path),
            axis=meta.phase_encoding_axis(s.path),
        )
        for s in session.primary(Modality.DWI)
    )

    return SessionReport(
        subject=session.subject,
        session=session.session,
        acquisition=tuple(acquisition),
        sections=sections,
        echo_results=tuple(echo_results),
        phase_encoding=pe_rows,
        dwi_rows=tuple(_dwi_row(r, policy) for r in by_modality.get(Modality.DWI, [])),
        func_summaries=tuple(
            _func_summary(r, policy) for r in by_modality.get(Modality.FUNC, [])
        ),
        ledger=ledger if ledger is not None else build_ledger(session),
        decision_filename=decision_filename(session),
        censor_limits=tuple(policy.censor_limits),
        duration_seconds=duration_seconds,
        generated_at=datetime.now(),
    )


# --------------------------------------------------------------------------- #
# Rendering                                                                   #
# --------------------------------------------------------------------------- #
def _fmt(value, spec: str = "{:.4f}") -> str:
    """Render a metric value, ``N/A`` when unavailable."""
    if value is None:
        return "N/A"
    if isinstance(value, float):
        return spec.format(value)
    return str(value)


def _environment(report_dir: Path) -> Environment:
    env = Environment(
        loader=PackageLoader("quickqc", "resources"),
        autoescape=True,
        undefined=StrictUndefined,
        trim_blocks=True,
        lstrip_blocks=True,
    )
    env.filters["na"] = _fmt
    env.filters["rel"] = lambda p: Path(os.path.relpath(Path(p), report_dir)).as_posix()
    return env


def render_report(report: SessionReport, report_dir: Path) -> str:
    """Return the HTML of *report*; image paths are made relative to *report_dir*."""
    template = _environment(report_dir).get_template(TEMPLATE)
    return template.render(
        report=report,
        modalities=PROCESSED_MODALITIES,
        ledger_modalities=list(Modality),
        ledger_json=ledger_payload(report.ledger),
    )


def write_report(report: SessionReport, path: Path) -> Path:
    """Render and create *path*; never overwrites.

    Raises:
        AlreadyExistsError: *path* exists already.
    """
    html = render_report(report, path.parent)
    path.parent.mkdir(parents=True, exist_ok=True)
    try:
        with path.open("x", encoding="utf-8") as fh:
            fh.write(html)
    except FileExistsError as exc:
        raise AlreadyExistsError(path) from exc
    log.info("report-written", path=str(path))
    return path
