import json

import pytest

from quickqc.models import Modality
from quickqc.qc.discover import discover
from quickqc.qc.metrics import MetricContext
from quickqc.qc.multiecho import find_groups, process_session_echoes, rmse_trace
from quickqc.utils.afni import AfniToolkit

from .utils import make_session, programs


def _run(tmp_path, n_echoes, fake_afni):
    make_session(tmp_path, anat=False, dwi=False, fmap=False, multiecho=n_echoes)
    (session,) = discover(tmp_path, "001")
    out = tmp_path / "qc"
    out.mkdir()
    ctx = MetricContext(toolkit=AfniToolkit(), out_dir=out)
    files = [s.path for s in session.primary(Modality.FUNC)]
    return process_session_echoes(ctx, files, echo_count=3), out


@pytest.mark.parametrize("n_echoes", [1, 2])
def test_small_groups_are_skipped(tmp_path, fake_afni, n_echoes):
    results, _ = _run(tmp_path, n_echoes, fake_afni)
    assert results == []
    assert "t2smap" not in programs(fake_afni)


def test_three_echoes_generate_maps(tmp_path, fake_afni):
    """Verify a 3-echo group with ascending echo times runs t2smap."""
    results, out = _run(tmp_path, 3, fake_afni)
    (res,) = results
    assert res.maps_generated
    assert res.group.stem == "sub-001_ses-01_task-me"
    assert res.echo_times_ms == pytest.approx((13.5, 31.2, 48.9))
    t2s = next(c for c in fake_afni if c[0] == "t2smap")
    assert t2s[t2s.index("-e") + 1 : t2s.index("-e") + 4] == ["13.5", "31.2", "48.9"]
    # mean of the 98th-percentile column (6, 7, 8)
    assert res.rmse_upper == pytest.approx(7.0)
    assert res.colorbar is not None and res.colorbar.exists()
    assert (out / "t2star_sub-001_ses-01_task-me.jpg").exists()
    assert len(res.figures) == 4


def test_four_echoes_detected_without_maps(tmp_path, fake_afni):
    results, _ = _run(tmp_path, 4, fake_afni)
    (res,) = results
    assert not res.maps_generated
    assert "4 echoes" in res.note
    assert "t2smap" not in programs(fake_afni)


def test_malformed_echo_times_skip_maps(tmp_path, fake_afni):
    ses = make_session(tmp_path, anat=False, dwi=False, fmap=False, multiecho=3)
    sidecar = ses / "func" / "sub-001_ses-01_task-me_echo-3_bold.json"
    sidecar.write_text(json.dumps({"EchoTime": 0.01}))
    (session,) = discover(tmp_path, "001")
    out = tmp_path / "qc"
    out.mkdir()
    ctx = MetricContext(toolkit=AfniToolkit(), out_dir=out)
    (res,) = process_session_echoes(ctx, [s.path for s in session.primary(Modality.FUNC)])
    assert not res.maps_generated
    assert "Echo time" in res.note
    assert "t2smap" not in programs(fake_afni)


def test_groups_split_by_run(tmp_path):
    func = tmp_path / "func"
    func.mkdir()
    names = [
        f"sub-01_task-a_run-{r}_echo-{e}_bold.nii.gz" for r in (1, 2) for e in (1, 2, 3)
    ]
    for n in names:
        (func / n).touch()
    groups = find_groups(sorted(func.iterdir()))
    assert [g.stem for g in groups] == ["sub-01_task-a_run-1", "sub-01_task-a_run-2"]
    assert all(g.size == 3 for g in groups)
    assert [m.echo for m in groups[0].members] == [1, 2, 3]


def test_rmse_trace_requires_eight_columns(tmp_path):
    tsv = tmp_path / "c.tsv"
    tsv.write_text("a\tb\tc\n1\t2\t3\n")
    with pytest.raises(ValueError):
        rmse_trace(tsv, tmp_path / "c.1D")
