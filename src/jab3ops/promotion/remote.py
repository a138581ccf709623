"""One multiplexed SSH session to the remote target.

The session is a single ControlMaster connection opened once per promotion.
Every remote step is a distinct command over that master, so each step gets
its own exit status while sharing one authenticated connection.
"""

from __future__ import annotations

import logging
import time
from pathlib import Path

from jab3ops.config import RemoteTarget
from jab3ops.exec import ExecResult, run_command

logger = logging.getLogger(__name__)

CONTROL_SOCKET = "cm-%C"


class RemoteSessionError(RuntimeError):
    """Raised when the SSH connection cannot be established."""

    def __init__(self, message: str, result: ExecResult | None = None):
        super().__init__(message)
        self.result = result


def in_work_dir(work_dir: str, command: str) -> str:
    """Prefix a remote command with the working directory change.

    The directory is inserted unquoted so the remote shell expands ``~`` and
    variables, as a login shell would for ``cd``.
    """
    return f"cd {work_dir} && {command}"


class RemoteSession:
    """Run remote commands over one SSH master connection."""

    def __init__(
        self,
        target: RemoteTarget,
        *,
        key_path: Path,
        known_hosts_path: Path,
        control_dir: Path,
        connect_timeout: int = 15,
        command_timeout: float | None = None,
    ):
        self.target = target
        self.key_path = key_path
        self.known_hosts_path = known_hosts_path
        self.control_path = control_dir / CONTROL_SOCKET
        self.connect_timeout = connect_timeout
        self.command_timeout = command_timeout
        self.is_open = False

    def _base_argv(self) -> list[str]:
        return [
            "ssh",
            "-i", str(self.key_path),
            "-p", str(self.target.port),
            "-o", "BatchMode=yes",
            "-o", "IdentitiesOnly=yes",
            "-o", "StrictHostKeyChecking=yes",
            "-o", f"UserKnownHostsFile={self.known_hosts_path}",
            "-o", f"ConnectTimeout={self.connect_timeout}",
            "-o", f"ControlPath={self.control_path}",
        ]

    def _exec(self, argv: list[str], timeout: float | None) -> ExecResult:
        try:
            return run_command(argv, cwd=self.key_path.parent, check=False, timeout=timeout)
        except FileNotFoundError as exc:
            raise RemoteSessionError(f"ssh client not available: {exc}") from exc

    def open(self) -> None:
        """Establish the master connection.

        Raises:
            RemoteSessionError: On connection or authentication failure
        """
        argv = [
            *self._base_argv(),
            "-o", "ControlMaster=auto",
            "-o", "ControlPersist=yes",
            self.target.login,
            "true",
        ]
        logger.info("opening ssh session to %s", self.target.login)
        result = self._exec(argv, timeout=self.connect_timeout + 5)
        if not result.ok:
            raise RemoteSessionError(
                f"ssh connection to {self.target.login} failed (exit {result.returncode}): "
                f"{result.output_tail()}",
                result,
            )
        self.is_open = True

    def run(self, command: str) -> tuple[ExecResult, float]:
        """Issue one remote command; returns the result and its duration."""
        if not self.is_open:
            raise RemoteSessionError("session is not open")
        argv = [*self._base_argv(), "-o", "ControlMaster=no", self.target.login, command]
        logger.info("remote: %s", command)
        started = time.monotonic()
        result = self._exec(argv, timeout=self.command_timeout)
        return result, time.monotonic() - started

    def close(self) -> None:
        """Tear down the master connection. Safe to call when never opened."""
        if not self.is_open:
            return
        result = self._exec([*self._base_argv(), "-O", "exit", self.target.login], timeout=10)
        self.is_open = False
        if not result.ok:
            logger.warning("ssh master exit returned %d: %s", result.returncode, result.output_tail())
