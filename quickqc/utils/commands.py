"""Blocking invocation of external imaging tools.

Every AFNI / tedana call of the pipeline goes through :func:`run_cmd` so
timeouts, retries and the ``run-cmd`` log trail are handled in one place.
Tests replace this function with a recorder that fabricates the expected
outputs.
"""

from __future__ import annotations

import subprocess
from pathlib import Path
from typing import Optional, Sequence

import structlog

log = structlog.get_logger()

__all__ = ["run_cmd"]


def _run_once(
    cmd: list[str], *, timeout: Optional[float], cwd: Optional[Path]
) -> tuple[int, str, str]:
    with subprocess.Popen(
        cmd,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
        cwd=cwd,
    ) as p:
        try:
            stdout, stderr = p.communicate(timeout=timeout)
        except subprocess.TimeoutExpired:
            p.kill()
            p.communicate()
            raise
        return p.wait(), stdout, stderr


def run_cmd(
    cmd: Sequence[str | Path],
    *,
    capture: bool = False,
    timeout: Optional[float] = None,
    retries: int = 0,
    cwd: Optional[Path] = None,
) -> subprocess.CompletedProcess:
    """Execute *cmd* and wait for it to finish.

    Args:
        cmd: Command vector; items are converted with :class:`str`.
        capture: Return the tool's standard output in ``stdout``.  When
            *False* the output is only forwarded to the DEBUG log.
        timeout: Seconds before a single attempt is killed.  ``None`` waits
            forever.
        retries: Additional attempts after a failure or timeout.
        cwd: Working directory for the child process.

    Returns:
        :class:`subprocess.CompletedProcess` of the successful attempt.

    Raises:
        subprocess.CalledProcessError: Last attempt exited non-zero.
        subprocess.TimeoutExpired: Last attempt exceeded *timeout*.
        FileNotFoundError: The executable is not on ``PATH``.
    """
    cmd = [str(c) for c in cmd]
    attempts = max(0, retries) + 1

    for attempt in range(1, attempts + 1):
        log.info("run-cmd", cmd=" ".join(cmd), attempt=attempt)
        try:
            rc, stdout, stderr = _run_once(cmd, timeout=timeout, cwd=cwd)
        except subprocess.TimeoutExpired:
            log.warning("cmd-timeout", cmd=cmd[0], timeout=timeout, attempt=attempt)
            if attempt == attempts:
                raise
            continue

        if stdout and not capture:
            log.debug("cmd-stdout", cmd=cmd[0], stdout=stdout.strip())
        if rc == 0:
            return subprocess.CompletedProcess(
                cmd, rc, stdout=stdout if capture else None, stderr=stderr
            )

        log.warning(
            "cmd-failed",
            cmd=cmd[0],
            returncode=rc,
            attempt=attempt,
            stderr=(stderr or "").strip()[-2000:],
        )
        if attempt == attempts:
            raise subprocess.CalledProcessError(rc, cmd, output=stdout, stderr=stderr)

    raise AssertionError("unreachable")  # pragma: no cover
