"""Exceptions shared by the QC pipeline.

Dataset-level problems (:class:`ConfigurationError`, :class:`NotFoundError`)
abort a run.  Everything else is raised and caught per file or per metric so
one broken series never hides the rest of the session.
"""

from __future__ import annotations

from pathlib import Path


class QcError(RuntimeError):
    """Base class for every error raised by *quickqc*."""

    pass


class ConfigurationError(QcError):
    """Raised when a required identifier or configuration value is invalid."""

    pass


class NotFoundError(QcError):
    """Raised when a subject directory (or other required input) is absent."""

    pass


class AlreadyExistsError(QcError):
    """Raised when a report exists already and must not be overwritten."""

    def __init__(self, path: Path):
        self.path = Path(path)
        super().__init__(f"{self.path} already exists")


class MetricComputationError(QcError):
    """A delegate call failed or did not produce its expected output."""

    def __init__(self, file: Path | str, metric: str, reason: str = ""):
        self.file = Path(file)
        self.metric = metric
        self.reason = reason
        msg = f"{metric} failed for {self.file.name}"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class MissingMetadataError(QcError):
    """Side-car metadata or a b-value file needed by a metric is missing."""

    def __init__(self, file: Path | str, field: str):
        self.file = Path(file)
        self.field = field
        super().__init__(f"{field} missing for {self.file.name}")
