"""Subprocess execution with combined output capture and optional deadline."""

from __future__ import annotations

import logging
import os
import signal
import subprocess
from collections.abc import Mapping

from cd4pe_job_runner.orchestrator.models import RunResult

logger = logging.getLogger(__name__)

TIMEOUT_EXIT_CODE = 124
SPAWN_FAILURE_EXIT_CODE = 127


def run_command(
    command: str,
    *,
    env: Mapping[str, str],
    timeout_seconds: int | None = None,
) -> RunResult:
    """Run ``command`` through the platform shell and capture stdout+stderr.

    Non-zero exits, spawn failures and timeouts are returned as data.
    """

    logger.debug("Running command: %s", command)
    try:
        process = subprocess.Popen(  # noqa: S602
            command,
            shell=True,
            env=dict(env),
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            start_new_session=os.name != "nt",
        )
    except OSError as error:
        return RunResult(
            exit_code=SPAWN_FAILURE_EXIT_CODE,
            message=f"Failed to start command: {error}\n",
        )

    try:
        output, _ = process.communicate(timeout=timeout_seconds)
    except subprocess.TimeoutExpired as error:
        _terminate_process(process)
        partial = _decode(error.output)
        if process.stdout is not None:
            process.stdout.close()
        logger.warning("Command timed out after %ss: %s", timeout_seconds, command)
        return RunResult(
            exit_code=TIMEOUT_EXIT_CODE,
            message=f"{partial}Command timed out after {timeout_seconds} seconds.\n",
        )
    return RunResult(exit_code=process.returncode, message=_decode(output))


def _decode(raw: bytes | str | None) -> str:
    if raw is None:
        return ""
    if isinstance(raw, str):
        return raw
    return raw.decode("utf-8", errors="replace")


def _terminate_process(process: subprocess.Popen[bytes]) -> None:
    try:
        _signal_process(process, signal.SIGTERM)
    except OSError:
        return
    try:
        process.wait(timeout=2)
    except subprocess.TimeoutExpired:
        try:
            _signal_process(process, getattr(signal, "SIGKILL", signal.SIGTERM))
        except OSError:
            return
        process.wait(timeout=2)


def _signal_process(process: subprocess.Popen[bytes], sig: int) -> None:
    if os.name == "nt":
        if sig == signal.SIGTERM:
            process.terminate()
        else:
            process.kill()
        return
    # The shell runs in its own session; signal the whole group so grandchildren stop too.
    os.killpg(process.pid, sig)
