"""Pytest configuration for quickqc tests."""

import pytest

from quickqc.utils import commands, meta

from .utils import fake_run_factory


@pytest.fixture(autouse=True)
def _isolated_logs(tmp_path, monkeypatch):
    """Keep rotating log files out of the repository."""
    monkeypatch.setenv("QUICKQC_LOG_DIR", str(tmp_path / "logs"))
    meta.clear_meta_cache()


@pytest.fixture
def calls():
    return []


@pytest.fixture
def fake_afni(monkeypatch, calls):
    """Replace every delegate call with the recording fake."""
    monkeypatch.setattr(commands, "run_cmd", fake_run_factory(calls))
    return calls
