"""Ephemeral SSH credential bundle for one promotion run.

The bundle owns the ssh directory for exactly one promotion: the private key
and the scanned known_hosts entry are written on enter, and the directory is
removed on exit whatever happened in between.
"""

from __future__ import annotations

import logging
import os
import shutil
from pathlib import Path
from types import TracebackType

from jab3ops.config import RemoteTarget
from jab3ops.exec import run_command

logger = logging.getLogger(__name__)

KEY_FILENAME = "id_rsa"
KNOWN_HOSTS_FILENAME = "known_hosts"


class CredentialError(RuntimeError):
    """Raised when the credential bundle cannot be installed."""


class CredentialBundle:
    """Scoped install and unconditional removal of the SSH identity."""

    def __init__(self, target: RemoteTarget, ssh_dir: Path, *, keyscan_timeout: float = 30.0):
        self.target = target
        self.ssh_dir = ssh_dir.expanduser()
        self.keyscan_timeout = keyscan_timeout
        self._owned = False

    @property
    def key_path(self) -> Path:
        return self.ssh_dir / KEY_FILENAME

    @property
    def known_hosts_path(self) -> Path:
        return self.ssh_dir / KNOWN_HOSTS_FILENAME

    def install(self) -> None:
        """Write the private key (0600) and seed known_hosts via ssh-keyscan.

        Raises:
            CredentialError: On a non-empty pre-existing ssh dir, or a failed scan
        """
        if self.ssh_dir.exists() and any(self.ssh_dir.iterdir()):
            raise CredentialError(
                f"refusing to install credentials into non-empty {self.ssh_dir}; "
                "it would be removed after promotion"
            )
        self.ssh_dir.mkdir(mode=0o700, parents=True, exist_ok=True)
        self._owned = True
        self.ssh_dir.chmod(0o700)

        key = self.target.private_key
        if not key.endswith("\n"):
            key += "\n"
        fd = os.open(self.key_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(key)
        self.key_path.chmod(0o600)

        argv = ["ssh-keyscan", "-H"]
        if self.target.port != 22:
            argv.extend(["-p", str(self.target.port)])
        argv.append(self.target.host)
        try:
            scan = run_command(argv, cwd=self.ssh_dir, check=False, timeout=self.keyscan_timeout)
        except FileNotFoundError as exc:
            raise CredentialError(f"ssh-keyscan not available: {exc}") from exc

        entries = [line for line in scan.stdout.splitlines() if line.strip() and not line.startswith("#")]
        if not scan.ok or not entries:
            raise CredentialError(
                f"ssh-keyscan found no host keys for {self.target.host} "
                f"(exit {scan.returncode}): {scan.output_tail()}"
            )
        self.known_hosts_path.write_text("\n".join(entries) + "\n", encoding="utf-8")
        logger.info("credentials installed in %s (%d host key(s))", self.ssh_dir, len(entries))

    def cleanup(self) -> None:
        """Remove the whole ssh dir. Idempotent."""
        if not self._owned:
            return
        if self.ssh_dir.exists():
            shutil.rmtree(self.ssh_dir)
        self._owned = False
        logger.info("credentials removed from %s", self.ssh_dir)

    def __enter__(self) -> CredentialBundle:
        try:
            self.install()
        except BaseException:
            self.cleanup()
            raise
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.cleanup()
