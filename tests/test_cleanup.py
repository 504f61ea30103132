import pytest

from quickqc.utils.cleanup import scratch_dir


def test_scratch_dir_removed_on_success(tmp_path):
    with scratch_dir(tmp_path, prefix="__tmp_gsr_") as d:
        (d / "f.nii.gz").touch()
        assert d.name.startswith("__tmp_gsr_")
    assert not d.exists()


def test_scratch_dir_removed_on_error(tmp_path):
    with pytest.raises(RuntimeError):
        with scratch_dir(tmp_path) as d:
            (d / "partial").touch()
            raise RuntimeError("computation failed")
    assert not d.exists()


def test_scratch_dirs_are_unique(tmp_path):
    with scratch_dir(tmp_path) as a, scratch_dir(tmp_path) as b:
        assert a != b
