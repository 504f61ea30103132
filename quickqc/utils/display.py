"""Progress lines printed while a subject is processed."""

from __future__ import annotations

from pathlib import Path

import click

from quickqc.models import Modality, Session

__all__ = ["echo_subject", "echo_session", "echo_modality", "echo_report", "echo_skipped"]


def echo_subject(subject: str, n_sessions: int) -> None:
    label = subject.removeprefix("sub-")
    noun = "session" if n_sessions == 1 else "sessions"
    click.secho(f"\n=== QC sub-{label} ({n_sessions} {noun}) ===", fg="cyan")


def echo_session(session: Session) -> None:
    """Bullet naming the session about to be processed."""
    click.echo(f"  • {session.sub}/{session.session}" if session.session else f"  • {session.sub}")


def echo_modality(modality: Modality, n_files: int) -> None:
    click.secho(f"    [{modality.value}] {n_files} file(s)", fg="magenta")


def echo_report(path: Path) -> None:
    click.secho(f"✓ QC Report generated at {path}", fg="green")


def echo_skipped(session: Session) -> None:
    """Warn that a session already has a report and was left untouched."""
    click.secho(f"! QC report for {session.label} already exists. Skipping...", fg="yellow", err=True)
