"""Single-flight locks for promotion.

The remote lock is a directory in the remote working directory: ``mkdir`` is
atomic, so only one promotion can hold it. The local lock is an ``O_EXCL``
file that stops two promotions on the same runner from overlapping.
"""

from __future__ import annotations

import os
import shlex
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from jab3ops.artifacts.canonical_json import timestamp

LOCKED_RETURNCODE = 75


class PromotionLockedError(RuntimeError):
    """Raised when another promotion holds the lock."""


def remote_acquire_command(lock_name: str, run_id: str) -> str:
    """Shell snippet that takes the lock or exits with LOCKED_RETURNCODE."""
    lock = shlex.quote(lock_name)
    owner = shlex.quote(run_id)
    return (
        f"if mkdir {lock} 2>/dev/null; then echo {owner} > {lock}/owner; "
        f"else echo \"held by $(cat {lock}/owner 2>/dev/null || echo unknown)\"; "
        f"exit {LOCKED_RETURNCODE}; fi"
    )


def remote_release_command(lock_name: str) -> str:
    return f"rm -rf {shlex.quote(lock_name)}"


@contextmanager
def local_run_lock(lock_path: Path, run_id: str) -> Iterator[Path]:
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    try:
        fd = os.open(lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
    except FileExistsError as exc:
        holder = lock_path.read_text(encoding="utf-8").strip() or "unknown"
        raise PromotionLockedError(f"promotion already running on this runner ({holder}); lock: {lock_path}") from exc
    with os.fdopen(fd, "w", encoding="utf-8") as handle:
        handle.write(f"run_id={run_id} pid={os.getpid()} created_at={timestamp('wallclock')}\n")

    try:
        yield lock_path
    finally:
        try:
            os.remove(lock_path)
        except FileNotFoundError:
            pass
