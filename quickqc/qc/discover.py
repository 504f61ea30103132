"""Resolve a subject into sessions and per-modality scan lists."""

from __future__ import annotations

import re
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

import structlog

from quickqc.models import (
    ENTITY_RE,
    LEDGER_MODALITIES,
    EchoRole,
    Modality,
    ScanFile,
    Session,
)
from quickqc.utils.errors import ConfigurationError, NotFoundError

log = structlog.get_logger()

DEFAULT_SESSION_PATTERN = r"^ses-[A-Za-z0-9]+$"


def _strip_prefix(value: str, prefix: str) -> str:
    value = value.strip()
    return value[len(prefix):] if value.startswith(prefix) else value


def parse_entities(name: str) -> Tuple[Dict[str, str], str]:
    """Split a BIDS filename into its key/value entities and suffix.

    >>> parse_entities("sub-01_task-rest_echo-2_bold.nii.gz")
    ({'sub': '01', 'task': 'rest', 'echo': '2'}, 'bold')
    """
    stem = name.split(".", 1)[0]
    entities: Dict[str, str] = {}
    suffix = ""
    for part in stem.split("_"):
        m = ENTITY_RE.fullmatch(part)
        if m:
            entities[m.group(1)] = m.group(2)
        else:
            suffix = part
    return entities, suffix


def scan_file(path: Path, modality: Modality) -> ScanFile:
    entities, suffix = parse_entities(path.name)
    echo = entities.get("echo")
    role = EchoRole.from_index(int(echo) if echo and echo.isdigit() else None)
    return ScanFile(
        path=path, modality=modality, entities=entities, suffix=suffix, echo_role=role
    )


def is_reference(name: str, exclude_infixes: Sequence[str]) -> bool:
    """True for calibration / reference scans such as single-band references."""
    lowered = name.lower()
    return any(infix.lower() in lowered for infix in exclude_infixes)


def list_modality(session_path: Path, modality: Modality) -> List[Path]:
    """Sorted ``*.nii.gz`` files of one modality folder; empty when absent."""
    mod_dir = session_path / modality.value
    if not mod_dir.is_dir():
        return []
    return sorted(p for p in mod_dir.glob("*.nii.gz") if p.is_file())


def resolve_sessions(
    dataset_root: Path,
    subject: str,
    session: Optional[str] = None,
    *,
    pattern: str = DEFAULT_SESSION_PATTERN,
) -> Tuple[str, Path, List[Optional[str]]]:
    """Return ``(subject label, subject dir, session labels)``.

    Session labels carry their ``ses-`` prefix; a subject without any session
    directory yields ``[None]`` and is processed at subject level.

    Raises:
        ConfigurationError: *subject* is empty.
        NotFoundError: The subject directory does not exist.
    """
    if not subject or not subject.strip():
        raise ConfigurationError("A subject identifier is required")
    label = _strip_prefix(subject, "sub-")
    sub_dir = dataset_root / f"sub-{label}"
    if not sub_dir.is_dir():
        raise NotFoundError(f"Subject directory for sub-{label} not found in {dataset_root}")

    ses_re = re.compile(pattern)
    available = sorted(
        d.name for d in sub_dir.iterdir() if d.is_dir() and ses_re.match(d.name)
    )

    if session:
        wanted = f"ses-{_strip_prefix(session, 'ses-')}"
        if wanted in available:
            return label, sub_dir, [wanted]
        log.warning("session-not-found", subject=label, session=wanted, fallback=available)

    if not available:
        return label, sub_dir, [None]
    return label, sub_dir, list(available)


def discover_session(
    subject: str,
    sub_dir: Path,
    session: Optional[str],
    *,
    exclude_infixes: Sequence[str] = ("sbref",),
) -> Session:
    """Enumerate the scans of one session."""
    ses_path = sub_dir / session if session else sub_dir
    scans: Dict[Modality, Tuple[ScanFile, ...]] = {}
    listing: Dict[Modality, Tuple[str, ...]] = {}

    for modality in LEDGER_MODALITIES:
        paths = list_modality(ses_path, modality)
        if not paths:
            continue
        listing[modality] = tuple(p.name for p in paths)
        primary = [
            scan_file(p, modality)
            for p in paths
            if not is_reference(p.name, exclude_infixes)
        ]
        scans[modality] = tuple(primary)

    log.info(
        "session-discovered",
        subject=subject,
        session=session,
        counts={m.value: len(v) for m, v in listing.items()},
    )
    return Session(
        subject=subject, session=session, path=ses_path, scans=scans, listing=listing
    )


def discover(
    dataset_root: Path,
    subject: str,
    session: Optional[str] = None,
    *,
    pattern: str = DEFAULT_SESSION_PATTERN,
    exclude_infixes: Sequence[str] = ("sbref",),
) -> List[Session]:
    """Resolve *subject* and enumerate every selected session."""
    label, sub_dir, labels = resolve_sessions(dataset_root, subject, session, pattern=pattern)
    return [
        discover_session(label, sub_dir, ses, exclude_infixes=exclude_infixes)
        for ses in labels
    ]
