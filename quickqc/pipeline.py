"""
End-to-end QC run for one subject.

Sessions are processed one after another.  Inside a session the order is
fixed: anat, dwi and func files in lexicographic order, then the multi-echo
pass, then report assembly.  A session whose report already exists is
skipped without touching anything under its QC directory.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

import structlog

from quickqc.config import QcConfig, load_config
from quickqc.models import PROCESSED_MODALITIES, MetricRecord, Modality, Session
from quickqc.qc.discover import discover
from quickqc.qc.metrics import STEP_ERRORS, MetricContext, acquisition_row, compute_metrics
from quickqc.qc.multiecho import process_session_echoes
from quickqc.qc.report import build_session_report, write_report
from quickqc.utils import meta
from quickqc.utils.afni import AfniToolkit
from quickqc.utils.display import echo_modality, echo_report, echo_session, echo_skipped, echo_subject
from quickqc.utils.errors import AlreadyExistsError
from quickqc.utils.paths import default_qc_root, report_path, session_dir

log = structlog.get_logger()


@dataclass
class RunResult:
    """Reports written and sessions skipped during one :func:`run`."""

    written: List[Path] = field(default_factory=list)
    skipped: List[Path] = field(default_factory=list)


def toolkit_from_config(cfg: QcConfig) -> AfniToolkit:
    return AfniToolkit(timeout=cfg.toolkit.timeout, retries=cfg.toolkit.retries)


def process_session(
    session: Session,
    qc_root: Path,
    cfg: QcConfig,
    *,
    toolkit: Optional[AfniToolkit] = None,
) -> Path:
    """Compute every metric of *session* and write its report.

    Raises:
        AlreadyExistsError: The report exists already (checked before any
            delegate call and again when the file is created).
    """
    started = time.monotonic()
    report = report_path(qc_root, session)
    if report.exists():
        raise AlreadyExistsError(report)

    out_dir = session_dir(qc_root, session)
    out_dir.mkdir(parents=True, exist_ok=True)
    ctx = MetricContext(
        toolkit=toolkit or toolkit_from_config(cfg), out_dir=out_dir, policy=cfg.policy
    )

    records: List[MetricRecord] = []
    acquisition = []
    for modality in PROCESSED_MODALITIES:
        scans = session.primary(modality)
        if not scans:
            log.debug("modality-absent", session=session.label, modality=modality.value)
            continue
        echo_modality(modality, len(scans))
        for scan in scans:
            acquisition.append(acquisition_row(ctx.toolkit, scan))
            if not scan.echo_role.standalone:
                log.info("skip-echo", file=scan.name, role=scan.echo_role.value)
                continue
            try:
                record = compute_metrics(ctx, scan)
            except STEP_ERRORS as exc:
                log.warning("metrics-failed", file=scan.name, error=str(exc).strip())
                record = MetricRecord(scan=scan, failed=("recipe",))
            if record is not None:
                records.append(record)

    echo_results = process_session_echoes(
        ctx,
        [s.path for s in session.primary(Modality.FUNC)],
        echo_count=cfg.policy.echo_count,
    )

    model = build_session_report(
        session,
        records,
        acquisition=acquisition,
        echo_results=echo_results,
        policy=cfg.policy,
        duration_seconds=time.monotonic() - started,
    )
    return write_report(model, report)


def run(
    subject: str,
    dataset_root: Path | str | None = None,
    session: Optional[str] = None,
    output_root: Path | str | None = None,
    config: Optional[QcConfig] = None,
    *,
    toolkit: Optional[AfniToolkit] = None,
) -> RunResult:
    """QC every selected session of *subject*.

    Args:
        subject: Subject label, with or without ``sub-``.
        dataset_root: BIDS root; defaults to the current directory.
        session: Optional session label; all sessions when omitted or absent.
        output_root: QC root; defaults to ``<dataset_root>/../qc``.
        config: Validated configuration; loaded from the dataset when *None*.
        toolkit: Pre-built toolkit (tests inject one with a short timeout).

    Raises:
        ConfigurationError: *subject* is empty or the configuration is invalid.
        NotFoundError: The subject directory does not exist.
    """
    root = Path(dataset_root or Path.cwd()).expanduser().resolve()
    cfg = config or load_config(dataset_root=root)
    qc_root = Path(output_root).expanduser() if output_root else default_qc_root(root)
    qc_root.mkdir(parents=True, exist_ok=True)
    qc_root = qc_root.resolve()

    sessions = discover(
        root,
        subject,
        session,
        pattern=cfg.discovery.session_pattern,
        exclude_infixes=cfg.discovery.exclude_infixes,
    )
    meta.clear_meta_cache()

    echo_subject(subject, len(sessions))
    result = RunResult()
    for ses in sessions:
        echo_session(ses)
        try:
            path = process_session(ses, qc_root, cfg, toolkit=toolkit)
        except AlreadyExistsError as exc:
            log.warning("report-exists", session=ses.label, path=str(exc.path))
            echo_skipped(ses)
            result.skipped.append(exc.path)
            continue
        echo_report(path)
        result.written.append(path)
    return result
