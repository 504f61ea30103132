"""Root ``quickqc-cli`` command.

Global options pick the dataset and configuration and set up logging; the
validated :class:`~quickqc.config.QcConfig` is handed to sub-commands through
``ctx.obj``.  Sub-commands are imported only when invoked so ``--help`` stays
fast.
"""

from __future__ import annotations

import importlib
import os
from pathlib import Path
from typing import Mapping

import click

from quickqc import __version__
from quickqc.config import load_config
from quickqc.utils.errors import QcError
from quickqc.utils.logging import setup_logging

#: Sub-command name -> ``module:attribute`` of its click command.
SUBCOMMANDS: Mapping[str, str] = {
    "run": "quickqc.cli.run:cli",
    "review": "quickqc.cli.review:cli",
}


class LazyGroup(click.Group):
    """Group resolving ``lazy_subcommands`` on first lookup."""

    def __init__(self, *args, lazy_subcommands: Mapping[str, str] | None = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.lazy_subcommands = dict(lazy_subcommands or {})

    def list_commands(self, ctx):
        return sorted({*super().list_commands(ctx), *self.lazy_subcommands})

    def get_command(self, ctx, cmd_name):
        if cmd_name not in self.commands and cmd_name in self.lazy_subcommands:
            module, _, attr = self.lazy_subcommands[cmd_name].partition(":")
            self.add_command(getattr(importlib.import_module(module), attr), cmd_name)
        return super().get_command(ctx, cmd_name)


def _dataset_root(bids_root: Path | None) -> Path:
    raw = bids_root if bids_root is not None else Path(os.environ.get("BIDS_ROOT", "."))
    return raw.expanduser().resolve()


@click.group(
    cls=LazyGroup,
    lazy_subcommands=SUBCOMMANDS,
    context_settings={"help_option_names": ["-h", "--help"], "show_default": True},
)
@click.version_option(__version__, prog_name="quickqc-cli")
@click.option(
    "-b",
    "--bids-root",
    type=click.Path(file_okay=False, path_type=Path),
    help="BIDS dataset root. Falls back to $BIDS_ROOT, then the working directory.",
)
@click.option(
    "-c",
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    help="QC policy YAML used instead of <bids-root>/code/config/quickqc.yaml.",
)
@click.option("-v", "--verbose", is_flag=True, help="Show INFO events on the terminal.")
@click.option("--debug", is_flag=True, help="Show DEBUG events, including every tool call.")
@click.option(
    "--save-logfile",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Append the terminal log to this file as well.",
)
@click.pass_context
def main(ctx, bids_root, config_path, verbose, debug, save_logfile):
    """quickqc-cli – same-day QC reports for BIDS MRI sessions."""
    root = _dataset_root(bids_root)
    known_root = root if root.is_dir() else None
    setup_logging(
        dataset_root=known_root, verbose=verbose, debug=debug, extra_text_log=save_logfile
    )
    try:
        cfg = load_config(config_path=config_path, dataset_root=known_root)
    except QcError as exc:
        raise click.ClickException(str(exc)) from exc
    ctx.obj = {"root": root, "cfg": cfg}


cli = main
__all__ = ["main", "cli", "LazyGroup"]
