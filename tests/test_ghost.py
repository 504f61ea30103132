import subprocess
from pathlib import Path

import numpy as np
import pytest

from quickqc.qc.ghost import compute_gsr, ghost_regions, ghost_to_signal
from quickqc.utils import commands
from quickqc.utils.afni import AfniToolkit

from .utils import fake_run_factory, save_nifti


def _phantom(shape=(10, 10, 4)):
    data = np.zeros(shape)
    data[3:7, 3:7, :] = 50.0
    return data, data > 0


def test_zero_background_gives_zero_gsr():
    """Verify GSR is 0 when ghost and background are both empty of signal."""
    data, mask = _phantom()
    assert ghost_to_signal(data, mask, 0) == 0.0
    assert ghost_to_signal(data, mask, 1) == 0.0


def test_regions_partition_the_non_brain_field():
    _, mask = _phantom()
    ghost, background = ghost_regions(mask, 0)
    assert not (ghost & background).any()
    assert not (ghost & mask).any()
    assert ((ghost | background | mask)).all()


def test_ghost_signal_is_detected_and_rounded():
    data, mask = _phantom()
    ghost, _ = ghost_regions(mask, 1)
    data[ghost] = 5.0 / 3
    assert ghost_to_signal(data, mask, 1) == round((5.0 / 3) / 50.0, 4)


def test_zero_median_is_not_computable():
    data, mask = _phantom()
    data[mask] = 0.0
    assert ghost_to_signal(data, mask, 0) is None


def test_empty_mask_is_not_computable():
    data = np.zeros((6, 6, 2))
    assert ghost_to_signal(data, data > 0, 0) is None


def test_compute_gsr_removes_scratch(tmp_path, monkeypatch, calls):
    monkeypatch.setattr(commands, "run_cmd", fake_run_factory(calls))
    bold = save_nifti(tmp_path / "bold.nii.gz", 5)
    out = tmp_path / "qc"
    result = compute_gsr(AfniToolkit(), bold, out)
    assert result == {"x": 0.0, "y": 0.0}
    assert not list(out.glob("__tmp_gsr_*"))


def test_compute_gsr_removes_scratch_on_failure(tmp_path, monkeypatch, calls):
    monkeypatch.setattr(commands, "run_cmd", fake_run_factory(calls, fail={"3dAutomask"}))
    bold = save_nifti(tmp_path / "bold.nii.gz", 5)
    out = tmp_path / "qc"
    with pytest.raises(subprocess.CalledProcessError):
        compute_gsr(AfniToolkit(), bold, out)
    assert not list(Path(out).glob("__tmp_gsr_*"))
