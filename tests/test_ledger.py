import pytest

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

from .utils import make_session


@pytest.fixture
def ledger(tmp_path):
    make_session(tmp_path, multiecho=3)
    (session,) = discover(tmp_path, "001")
    return build_ledger(session)


def test_every_listed_file_appears_once_unreviewed(ledger):
    names = [r.filename for r in ledger.rows]
    assert len(names) == len(set(names))
    assert all(r.state is VerdictState.UNREVIEWED for r in ledger.rows)
    func = [r.filename for r in ledger.for_modality(Modality.FUNC)]
    # echo-1/echo-3 and the sbref are listed even though they get no metrics
    assert "sub-001_ses-01_task-me_echo-1_bold.nii.gz" in func
    assert "sub-001_ses-01_task-rest_sbref.nii.gz" in func
    assert [r.filename for r in ledger.for_modality(Modality.FMAP)] == [
        "sub-001_ses-01_dir-AP_epi.nii.gz"
    ]


def test_set_all_touches_only_one_modality(ledger):
    updated = set_all(ledger, Modality.FUNC, VerdictState.OK)
    assert all(r.state is VerdictState.OK for r in updated.for_modality(Modality.FUNC))
    others = [r for r in updated.rows if r.modality is not Modality.FUNC]
    assert others and all(r.state is VerdictState.UNREVIEWED for r in others)
    # the original ledger is unchanged
    assert all(r.state is VerdictState.UNREVIEWED for r in ledger.rows)


def test_transition_unknown_file_raises(ledger):
    with pytest.raises(KeyError):
        apply_transition(ledger, "nope.nii.gz", VerdictState.OK)


def test_export_format(ledger):
    name = "sub-001_ses-01_T1w.nii.gz"
    ledger = apply_transition(ledger, name, VerdictState.BORDERLINE, "slight\nringing")
    text = export_ledger(ledger)
    blocks = text.split("\n\n")
    assert blocks[0].splitlines()[0] == "ANAT FILES:"
    assert f"{name} : 1 | Comment: slight ringing" in blocks[0]
    assert text.index("DWI FILES:") < text.index("FUNC FILES:") < text.index("FMAP FILES:")
    assert "sub-001_ses-01_dir-AP_epi.nii.gz : null | Comment: " in text
    n_rows = sum(1 for line in text.splitlines() if " | Comment:" in line)
    assert n_rows == len(ledger.rows)


def test_export_can_be_replayed(ledger):
    edited = set_all(ledger, Modality.DWI, VerdictState.REJECT)
    edited = set_comment(edited, "sub-001_ses-01_dwi.nii.gz", "slice drop")
    rows = parse_decisions(export_ledger(edited))
    replayed, unknown = apply_decisions(ledger, rows)
    assert unknown == []
    assert replayed == edited


def test_parse_rejects_garbage():
    with pytest.raises(ValueError):
        parse_decisions("ANAT FILES:\nthis is not a row\n")


@pytest.mark.parametrize(
    "text,state",
    [("ok", VerdictState.OK), ("2", VerdictState.OK), ("Borderline/Warning", VerdictState.BORDERLINE),
     ("0", VerdictState.REJECT), ("null", VerdictState.UNREVIEWED)],
)
def test_state_parsing(text, state):
    assert VerdictState.parse(text) is state
