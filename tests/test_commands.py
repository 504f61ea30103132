import subprocess

import pytest

from quickqc.utils.commands import run_cmd


def test_run_cmd_echo():
    """Verify RUN CMD echo behavior."""
    res = run_cmd(["bash", "-c", "echo hello"])
    assert res.returncode == 0
    assert res.stdout is None


def test_run_cmd_capture():
    res = run_cmd(["bash", "-c", "echo hello"], capture=True)
    assert res.stdout.strip() == "hello"


def test_run_cmd_failure_after_retries(tmp_path):
    counter = tmp_path / "n"
    script = f"echo x >> {counter}; exit 3"
    with pytest.raises(subprocess.CalledProcessError) as info:
        run_cmd(["bash", "-c", script], retries=2)
    assert info.value.returncode == 3
    assert len(counter.read_text().split()) == 3


def test_run_cmd_retry_recovers(tmp_path):
    flag = tmp_path / "flag"
    script = f"if [ -e {flag} ]; then echo ok; else touch {flag}; exit 1; fi"
    res = run_cmd(["bash", "-c", script], capture=True, retries=1)
    assert res.stdout.strip() == "ok"


def test_run_cmd_timeout():
    with pytest.raises(subprocess.TimeoutExpired):
        run_cmd(["bash", "-c", "sleep 5"], timeout=0.2)


def test_run_cmd_missing_program():
    with pytest.raises(FileNotFoundError):
        run_cmd(["quickqc-no-such-tool-xyz"])
