"""
Review ledger: one verdict and comment per listed file.

The ledger is an immutable value.  :func:`apply_transition` and
:func:`set_all` return a new ledger; :func:`export_ledger` turns it into the
flat decision file.  The report's JavaScript implements the same reducer and
serialisation so an export from the browser and one from ``quickqc-cli
review`` are interchangeable.

Export format::

    ANAT FILES:
    sub-01_T1w.nii.gz : 2 | Comment: sharp

    DWI FILES:
    ...
"""

from __future__ import annotations

import re
from enum import Enum
from typing import Iterable, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict

from quickqc.models import LEDGER_MODALITIES, Modality, Session


class VerdictState(str, Enum):
    UNREVIEWED = "unreviewed"
    REJECT = "reject"
    BORDERLINE = "borderline"
    OK = "ok"

    @property
    def code(self) -> str:
        """Code written to the decision file."""
        return _CODES[self]

    @property
    def label(self) -> str:
        return _LABELS[self]

    @classmethod
    def parse(cls, text: str) -> "VerdictState":
        """Accept a state name, export code or button label (case-insensitive)."""
        key = text.strip().lower()
        for state in cls:
            if key in (state.value, state.code, state.label.lower()):
                return state
        aliases = {"warning": cls.BORDERLINE, "problem": cls.REJECT, "none": cls.UNREVIEWED}
        if key in aliases:
            return aliases[key]
        raise ValueError(f"unknown verdict {text!r}")


_CODES = {
    VerdictState.UNREVIEWED: "null",
    VerdictState.REJECT: "0",
    VerdictState.BORDERLINE: "1",
    VerdictState.OK: "2",
}
_LABELS = {
    VerdictState.UNREVIEWED: "Not Reviewed",
    VerdictState.REJECT: "Reject/Problem",
    VerdictState.BORDERLINE: "Borderline/Warning",
    VerdictState.OK: "OK",
}

_LINE_RE = re.compile(r"^(?P<file>.+?) : (?P<code>\S+) \| Comment: ?(?P<comment>.*)$")
_HEADER_RE = re.compile(r"^(?P<mod>[A-Z]+) FILES:$")


class LedgerRow(BaseModel):
    model_config = ConfigDict(frozen=True)

    modality: Modality
    filename: str
    state: VerdictState = VerdictState.UNREVIEWED
    comment: str = ""


class Ledger(BaseModel):
    """Ordered rows; filenames are unique across the ledger."""

    model_config = ConfigDict(frozen=True)

    rows: Tuple[LedgerRow, ...] = ()

    def for_modality(self, modality: Modality) -> Tuple[LedgerRow, ...]:
        return tuple(r for r in self.rows if r.modality is modality)

    def get(self, filename: str) -> LedgerRow:
        for row in self.rows:
            if row.filename == filename:
                return row
        raise KeyError(filename)


def build_ledger(session: Session) -> Ledger:
    """Every listed file of every modality, initially unreviewed."""
    rows: List[LedgerRow] = []
    seen: set[str] = set()
    for modality in LEDGER_MODALITIES:
        for name in session.files(modality):
            if name in seen:
                continue
            seen.add(name)
            rows.append(LedgerRow(modality=modality, filename=name))
    return Ledger(rows=tuple(rows))


def _flatten(comment: str) -> str:
    return " ".join(comment.split())


def apply_transition(
    ledger: Ledger,
    filename: str,
    state: VerdictState,
    comment: Optional[str] = None,
) -> Ledger:
    """Return a ledger where *filename* is in *state*.

    *comment* replaces the stored comment when given.

    Raises:
        KeyError: *filename* is not part of the ledger.
    """
    ledger.get(filename)
    rows = tuple(
        row.model_copy(
            update={
                "state": state,
                **({"comment": _flatten(comment)} if comment is not None else {}),
            }
        )
        if row.filename == filename
        else row
        for row in ledger.rows
    )
    return Ledger(rows=rows)


def set_comment(ledger: Ledger, filename: str, comment: str) -> Ledger:
    row = ledger.get(filename)
    return apply_transition(ledger, filename, row.state, comment)


def set_all(ledger: Ledger, modality: Modality, state: VerdictState) -> Ledger:
    """Apply *state* to every row of *modality*, leaving other modalities alone."""
    for row in ledger.for_modality(modality):
        ledger = apply_transition(ledger, row.filename, state)
    return ledger


def export_ledger(ledger: Ledger) -> str:
    lines: List[str] = []
    for modality in LEDGER_MODALITIES:
        lines.append(modality.header)
        for row in ledger.for_modality(modality):
            lines.append(f"{row.filename} : {row.state.code} | Comment: {row.comment}")
        lines.append("")
    return "\n".join(lines) + "\n"


def parse_decisions(text: str) -> List[LedgerRow]:
    """Read rows back from an exported decision file.

    Raises:
        ValueError: A line is neither a header, a row nor blank.
    """
    modality: Optional[Modality] = None
    rows: List[LedgerRow] = []
    for lineno, raw in enumerate(text.splitlines(), start=1):
        line = raw.rstrip("\r")
        if not line.strip():
            continue
        header = _HEADER_RE.match(line.strip())
        if header:
            try:
                modality = Modality(header.group("mod").lower())
            except ValueError as exc:
                raise ValueError(f"line {lineno}: unknown modality {header.group('mod')}") from exc
            continue
        m = _LINE_RE.match(line)
        if not m or modality is None:
            raise ValueError(f"line {lineno}: cannot parse {line!r}")
        rows.append(
            LedgerRow(
                modality=modality,
                filename=m.group("file").strip(),
                state=VerdictState.parse(m.group("code")),
                comment=m.group("comment").strip(),
            )
        )
    return rows


def apply_decisions(ledger: Ledger, decisions: Iterable[LedgerRow]) -> Tuple[Ledger, List[str]]:
    """Replay exported *decisions*; returns the ledger and unknown filenames."""
    unknown: List[str] = []
    for row in decisions:
        try:
            ledger = apply_transition(ledger, row.filename, row.state, row.comment)
        except KeyError:
            unknown.append(row.filename)
    return ledger, unknown


def ledger_payload(ledger: Ledger) -> dict:
    """JSON-ready ledger for the report's client-side reducer."""
    return {
        "modalities": [m.value for m in LEDGER_MODALITIES],
        "states": {
            s.value: {"code": s.code, "label": s.label} for s in VerdictState
        },
        "rows": [
            {
                "modality": r.modality.value,
                "filename": r.filename,
                "state": r.state.value,
                "comment": r.comment,
            }
            for r in ledger.rows
        ],
    }
