"""
Typed value objects passed between discovery, metric computation and the
report.

Everything here is immutable: discovery creates :class:`ScanFile` and
:class:`Session` once per run, metric computation freezes its results into
:class:`MetricRecord` and the report only reads them.
"""

from __future__ import annotations

import re
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

ENTITY_RE = re.compile(r"([A-Za-z0-9]+)-([A-Za-z0-9.+]+)")


class Modality(str, Enum):
    """BIDS data-type folders inspected by the pipeline."""

    ANAT = "anat"
    DWI = "dwi"
    FUNC = "func"
    FMAP = "fmap"

    @property
    def header(self) -> str:
        return f"{self.value.upper()} FILES:"


#: Processing order for per-file metrics.  ``fmap`` is only listed.
PROCESSED_MODALITIES: Tuple[Modality, ...] = (Modality.ANAT, Modality.DWI, Modality.FUNC)
#: Order of the review ledger and of its export.
LEDGER_MODALITIES: Tuple[Modality, ...] = tuple(Modality)


class EchoRole(str, Enum):
    """Position of a file inside a multi-echo acquisition."""

    SINGLE = "single"
    FIRST = "first"
    MIDDLE = "middle"
    LAST = "last"

    @classmethod
    def from_index(cls, echo: Optional[int]) -> "EchoRole":
        if echo is None:
            return cls.SINGLE
        if echo <= 1:
            return cls.FIRST
        if echo == 2:
            return cls.MIDDLE
        return cls.LAST

    @property
    def standalone(self) -> bool:
        """Whether a file with this role gets its own per-file QC."""
        return self in (EchoRole.SINGLE, EchoRole.MIDDLE)


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)


# --------------------------------------------------------------------------- #
# Discovery                                                                   #
# --------------------------------------------------------------------------- #
class ScanFile(_Frozen):
    """One acquired NIfTI volume."""

    path: Path
    modality: Modality
    entities: Dict[str, str] = Field(default_factory=dict)
    suffix: str = ""
    echo_role: EchoRole = EchoRole.SINGLE

    @property
    def name(self) -> str:
        return self.path.name

    @property
    def stem(self) -> str:
        """Filename without ``.nii.gz`` / ``.nii``."""
        name = self.path.name
        for ext in (".nii.gz", ".nii"):
            if name.endswith(ext):
                return name[: -len(ext)]
        return name

    @property
    def sidecar(self) -> Path:
        return self.path.with_name(self.stem + ".json")

    @property
    def bval(self) -> Path:
        return self.path.with_name(self.stem + ".bval")

    @property
    def echo(self) -> Optional[int]:
        value = self.entities.get("echo")
        return int(value) if value is not None and value.isdigit() else None


class Session(_Frozen):
    """A subject/session pair with its scans bucketed by modality.

    ``scans`` holds the primary files (reference scans removed) used for
    metric computation; ``listing`` holds every ``*.nii.gz`` present and feeds
    the review ledger.
    """

    subject: str
    session: Optional[str] = None
    path: Path
    scans: Dict[Modality, Tuple[ScanFile, ...]] = Field(default_factory=dict)
    listing: Dict[Modality, Tuple[str, ...]] = Field(default_factory=dict)

    @property
    def sub(self) -> str:
        return f"sub-{self.subject}"

    @property
    def label(self) -> str:
        """``sub-XX_ses-YY`` (or ``sub-XX`` for session-less subjects)."""
        return f"{self.sub}_{self.session}" if self.session else self.sub

    def primary(self, modality: Modality) -> Tuple[ScanFile, ...]:
        return self.scans.get(modality, ())

    def files(self, modality: Modality) -> Tuple[str, ...]:
        return self.listing.get(modality, ())


# --------------------------------------------------------------------------- #
# Metrics                                                                     #
# --------------------------------------------------------------------------- #
class Figure(_Frozen):
    """An image embedded in the report, referenced relative to the report."""

    title: str
    path: Path
    alt: str = ""
    caption: Optional[str] = None


class MetricRecord(_Frozen):
    """Metrics and figures produced for one :class:`ScanFile`.

    ``values`` maps a metric name to a scalar, a short list or ``None`` when
    the value could not be computed.  ``failed`` names the metrics whose
    delegate call raised.
    """

    scan: ScanFile
    values: Dict[str, Any] = Field(default_factory=dict)
    figures: Tuple[Figure, ...] = ()
    failed: Tuple[str, ...] = ()

    def get(self, key: str, default: Any = None) -> Any:
        return self.values.get(key, default)


class EchoGroup(_Frozen):
    """Files of one (task, run) acquisition that differ only by echo index."""

    stem: str
    members: Tuple[ScanFile, ...]

    @property
    def size(self) -> int:
        return len(self.members)


class EchoGroupResult(_Frozen):
    group: EchoGroup
    echo_times_ms: Optional[Tuple[float, ...]] = None
    figures: Tuple[Figure, ...] = ()
    rmse_upper: Optional[float] = None
    colorbar: Optional[Path] = None
    note: Optional[str] = None
    maps_generated: bool = False


# --------------------------------------------------------------------------- #
# Report rows                                                                 #
# --------------------------------------------------------------------------- #
class AcquisitionRow(_Frozen):
    """One line of the acquisition-parameter table (``3dinfo`` output)."""

    filename: str
    mat_x: Optional[int] = None
    mat_y: Optional[int] = None
    slices: Optional[int] = None
    volumes: Optional[int] = None
    di: Optional[float] = None
    dj: Optional[float] = None
    dk: Optional[float] = None
    tr: Optional[float] = None
    orient: Optional[str] = None


class PhaseEncodingRow(_Frozen):
    filename: str
    direction: str = "N/A"
    axis: str = "N/A"


class DwiVerdict(_Frozen):
    """Slice-drop / motion corruption summary of one diffusion series."""

    filename: str
    bad_volumes: Tuple[int, ...]
    n_volumes: int
    usable_b0: Optional[int]
    passed: bool

    @property
    def bad_count(self) -> int:
        return len(self.bad_volumes)

    @property
    def status(self) -> str:
        return "Pass" if self.passed else "Fail"

    @property
    def inspection(self) -> str:
        if not self.bad_volumes:
            return "None"
        return " ".join(str(i) for i in self.bad_volumes)


class FuncSummary(_Frozen):
    """Quantitative summary of one functional run."""

    filename: str
    measures: Tuple[Tuple[str, Optional[float]], ...]
    fd_flag: str
    censoring: Tuple[Tuple[float, Optional[int]], ...]
