"""``quickqc-cli run`` – compute metrics and write the session reports."""

from __future__ import annotations

from pathlib import Path

import click

from quickqc.pipeline import run
from quickqc.utils.errors import ConfigurationError, NotFoundError


@click.command(name="run")
@click.option("-p", "--subject", required=True, help="Subject ID, with or without 'sub-'.")
@click.option("-s", "--session", help="Session to process. All sessions when omitted.")
@click.option(
    "-o",
    "--qc-root",
    type=click.Path(file_okay=False, path_type=Path),
    help="Output directory for reports. Defaults to <bids-root>/../qc.",
)
@click.pass_obj
def cli(obj: dict, subject: str, session: str | None, qc_root: Path | None) -> None:
    """Run the QC battery for one subject and write one HTML report per session.

    Sessions whose report already exists are skipped.
    """
    root: Path = obj["root"]
    try:
        result = run(
            subject,
            dataset_root=root,
            session=session,
            output_root=qc_root,
            config=obj["cfg"],
        )
    except (ConfigurationError, NotFoundError) as exc:
        raise click.ClickException(str(exc)) from exc

    click.echo(
        f"{len(result.written)} report(s) written, {len(result.skipped)} skipped."
    )
