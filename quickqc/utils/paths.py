"""Output locations under the QC root."""

from __future__ import annotations

from pathlib import Path

from quickqc.models import Session


def default_qc_root(dataset_root: Path) -> Path:
    """``<dataset_root>/../qc`` – reports live next to, not inside, the dataset."""
    return dataset_root.resolve().parent / "qc"


def session_dir(qc_root: Path, session: Session) -> Path:
    """Directory for the figures and traces of *session*."""
    out = qc_root / session.sub
    return out / session.session if session.session else out


def report_path(qc_root: Path, session: Session) -> Path:
    return qc_root / f"QC_Report_{session.label}.html"


def decision_filename(session: Session) -> str:
    """Name of the decision export downloaded from the report."""
    return f"QC_Report_{session.label}.txt"
