"""
Logging for QC runs.

Every event goes through structlog and then the standard library, where
three sinks pick it up:

* the terminal, via :class:`rich.logging.RichHandler`, at WARNING unless
  ``-v``/``--debug`` is given;
* ``quickqc.log`` in the dataset's ``code/logs`` folder (``$QUICKQC_LOG_DIR``
  wins), one JSON object per line, always at INFO or finer so the delegate
  command lines of a session can be audited;
* the ``--save-logfile`` path, if any, with the same text as the terminal.

Modules only ever call ``structlog.get_logger()``.
"""

from __future__ import annotations

import logging
import os
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import List, Optional

import structlog
from rich.logging import RichHandler

__all__ = ["setup_logging", "log_dir_for", "LOG_NAME"]

LOG_NAME = "quickqc.log"

_PRE_CHAIN = [
    structlog.stdlib.add_log_level,
    structlog.processors.TimeStamper(fmt="iso"),
]


def log_dir_for(dataset_root: Path | None) -> Path:
    """Folder receiving ``quickqc.log``.

    ``$QUICKQC_LOG_DIR`` first, then ``<dataset_root>/code/logs``, then the
    current directory's ``logs/``.
    """
    override = os.environ.get("QUICKQC_LOG_DIR")
    if override:
        return Path(override).expanduser()
    if dataset_root is not None:
        return Path(dataset_root) / "code" / "logs"
    return Path.cwd() / "logs"


def _formatter(renderer) -> logging.Formatter:
    return structlog.stdlib.ProcessorFormatter(
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        foreign_pre_chain=_PRE_CHAIN,
    )


def _sinks(
    dataset_root: Path | None, console_level: int, file_level: int, text_log: Optional[Path]
) -> List[logging.Handler]:
    text = _formatter(structlog.dev.ConsoleRenderer(colors=False))

    console = RichHandler(level=console_level, rich_tracebacks=True, markup=False, show_path=False)
    console.setFormatter(text)

    folder = log_dir_for(dataset_root)
    folder.mkdir(parents=True, exist_ok=True)
    audit = RotatingFileHandler(folder / LOG_NAME, maxBytes=5_000_000, backupCount=3, encoding="utf-8")
    audit.setLevel(file_level)
    audit.setFormatter(_formatter(structlog.processors.JSONRenderer()))

    sinks: List[logging.Handler] = [console, audit]
    if text_log is not None:
        text_log = text_log.expanduser().resolve()
        text_log.parent.mkdir(parents=True, exist_ok=True)
        mirror = logging.FileHandler(text_log, mode="a", encoding="utf-8")
        mirror.setLevel(console_level)
        mirror.setFormatter(text)
        sinks.append(mirror)
    return sinks


def setup_logging(
    *,
    dataset_root: Path | None = None,
    verbose: bool = False,
    debug: bool = False,
    extra_text_log: Optional[Path] = None,
) -> None:
    """Install the sinks described in the module docstring.

    Calling it again replaces the previous handlers (and closes them).

    Args:
        dataset_root: BIDS root; decides where ``quickqc.log`` goes.
        verbose: INFO on the terminal.
        debug: DEBUG everywhere.
        extra_text_log: Optional plain-text copy of the terminal output.
    """
    if debug:
        console_level = file_level = logging.DEBUG
    else:
        console_level = logging.INFO if verbose else logging.WARNING
        file_level = logging.INFO

    logging.basicConfig(
        level=min(console_level, file_level),
        handlers=_sinks(dataset_root, console_level, file_level, extra_text_log),
        force=True,
    )
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *_PRE_CHAIN,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )
