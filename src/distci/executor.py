# executor.py
from __future__ import annotations

import logging
import os
import shlex
import signal
import subprocess
from typing import Protocol, Sequence, Tuple

logger = logging.getLogger(__name__)

Result = Tuple[str, int]


class CommandExecutor(Protocol):
    """Runs one test command and returns (output, exit_code)."""

    def run(self, command: str, timeout: float) -> Result: ...


def _run_shell(argv_or_cmd, *, shell: bool, timeout: float, label: str) -> Result:
    # own session, so a timeout can take down everything the command started
    proc = subprocess.Popen(
        argv_or_cmd,
        shell=shell,
        text=True,
        stdout=subprocess.PIPE,
        stderr=subprocess.STDOUT,
        start_new_session=True,
    )
    try:
        out, _ = proc.communicate(timeout=timeout if timeout and timeout > 0 else None)
    except subprocess.TimeoutExpired:
        try:
            os.killpg(proc.pid, signal.SIGKILL)
        except ProcessLookupError:
            pass
        proc.communicate()
        # a timeout is a failure with nothing worth parsing
        logger.error("Command %s timed out after %ss", label, timeout)
        return "", 1
    return (out or "").rstrip("\n"), proc.returncode


class LocalExecutor:
    """Runs commands on this host from the test base directory."""

    def __init__(self, base_path: str = "."):
        self.base_path = base_path

    def run(self, command: str, timeout: float) -> Result:
        cmd = f"cd {shlex.quote(self.base_path)}; {command}"
        return _run_shell(cmd, shell=True, timeout=timeout, label=command)


class RemoteExecutor:
    """Runs commands on another host over the system ssh client."""

    def __init__(
        self,
        host: str,
        *,
        user: str = "root",
        base_path: str = "/root",
        ssh_options: Sequence[str] = ("-o", "StrictHostKeyChecking=no", "-o", "BatchMode=yes"),
    ):
        self.host = host
        self.user = user
        self.base_path = base_path
        self.ssh_options = list(ssh_options)

    def run(self, command: str, timeout: float) -> Result:
        remote = f"cd {shlex.quote(self.base_path)}; {command}"
        argv = ["ssh", *self.ssh_options, f"{self.user}@{self.host}", remote]
        return _run_shell(argv, shell=False, timeout=timeout, label=f"{command} on {self.host}")
