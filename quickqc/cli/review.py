"""``quickqc-cli review`` – fill in the review ledger without a browser.

The command replays the same transitions as the buttons of the HTML report
and writes the decision file in the format the report exports.
"""

from __future__ import annotations

from pathlib import Path
from typing import Tuple

import click
import structlog

from quickqc.models import Modality
from quickqc.qc.discover import discover
from quickqc.qc.ledger import (
    VerdictState,
    apply_decisions,
    apply_transition,
    build_ledger,
    export_ledger,
    parse_decisions,
    set_all,
    set_comment,
)
from quickqc.utils.errors import ConfigurationError, NotFoundError
from quickqc.utils.paths import decision_filename, default_qc_root

log = structlog.get_logger()


def _split(value: str, option: str) -> Tuple[str, str]:
    key, sep, rest = value.partition("=")
    if not sep or not key.strip():
        raise click.BadParameter(f"expected KEY=VALUE, got {value!r}", param_hint=option)
    return key.strip(), rest


def _state(text: str, option: str) -> VerdictState:
    try:
        return VerdictState.parse(text)
    except ValueError as exc:
        raise click.BadParameter(str(exc), param_hint=option) from exc


@click.command(name="review")
@click.option("-p", "--subject", required=True, help="Subject ID, with or without 'sub-'.")
@click.option("-s", "--session", help="Session to review (required when several exist).")
@click.option(
    "-o",
    "--qc-root",
    type=click.Path(file_okay=False, path_type=Path),
    help="QC directory. Defaults to <bids-root>/../qc.",
)
@click.option(
    "--from",
    "from_file",
    type=click.Path(dir_okay=False, exists=True, path_type=Path),
    help="Start from a previously exported decision file.",
)
@click.option("--set-all", "set_all_", multiple=True, metavar="MODALITY=STATE",
              help="Set every file of a modality (ok, borderline, reject).")
@click.option("--mark", multiple=True, metavar="FILE=STATE", help="Set one file.")
@click.option("--comment", multiple=True, metavar="FILE=TEXT", help="Comment on one file.")
@click.option(
    "--out",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Decision file. Defaults to <qc-root>/QC_Report_<sub>_<ses>.txt; '-' prints.",
)
@click.option("--force", is_flag=True, help="Overwrite an existing decision file.")
@click.pass_obj
def cli(
    obj: dict,
    subject: str,
    session: str | None,
    qc_root: Path | None,
    from_file: Path | None,
    set_all_: tuple[str, ...],
    mark: tuple[str, ...],
    comment: tuple[str, ...],
    out: Path | None,
    force: bool,
) -> None:
    """Record QC verdicts for every file of one session."""
    root: Path = obj["root"]
    cfg = obj["cfg"]
    try:
        sessions = discover(
            root,
            subject,
            session,
            pattern=cfg.discovery.session_pattern,
            exclude_infixes=cfg.discovery.exclude_infixes,
        )
    except (ConfigurationError, NotFoundError) as exc:
        raise click.ClickException(str(exc)) from exc
    if len(sessions) != 1:
        labels = ", ".join(s.session or "-" for s in sessions)
        raise click.ClickException(f"Several sessions found ({labels}); choose one with -s.")
    ses = sessions[0]

    ledger = build_ledger(ses)
    if from_file is not None:
        try:
            previous = parse_decisions(from_file.read_text())
        except ValueError as exc:
            raise click.ClickException(f"{from_file}: {exc}") from exc
        ledger, unknown = apply_decisions(ledger, previous)
        for name in unknown:
            log.warning("decision-unknown-file", file=name)

    try:
        for item in set_all_:
            mod, state = _split(item, "--set-all")
            try:
                modality = Modality(mod.lower())
            except ValueError as exc:
                raise click.BadParameter(f"unknown modality {mod!r}", param_hint="--set-all") from exc
            ledger = set_all(ledger, modality, _state(state, "--set-all"))
        for item in mark:
            name, state = _split(item, "--mark")
            ledger = apply_transition(ledger, name, _state(state, "--mark"))
        for item in comment:
            name, text = _split(item, "--comment")
            ledger = set_comment(ledger, name, text)
    except KeyError as exc:
        raise click.ClickException(f"{exc.args[0]} is not listed for {ses.label}") from exc

    text = export_ledger(ledger)
    if out is not None and str(out) == "-":
        click.echo(text, nl=False)
        return

    target = out or (qc_root or default_qc_root(root)) / decision_filename(ses)
    target.parent.mkdir(parents=True, exist_ok=True)
    try:
        with target.open("w" if force else "x", encoding="utf-8") as fh:
            fh.write(text)
    except FileExistsError as exc:
        raise click.ClickException(f"{target} exists; use --force to replace it") from exc
    click.echo(f"Decisions written to {target}")
