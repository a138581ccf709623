"""Promotion stage state machine.

States advance strictly in order:

    idle -> credentials_installed -> remote_synced -> remote_rebuilt
         -> service_restarted -> credentials_cleaned

Each remote step is its own call over one SSH session, so a failure is
reported against the step that failed and no later step is issued. Every
path out of the machine, success or failure, ends in credentials_cleaned.
There is no retry and no rollback of a partially applied update.
"""

from __future__ import annotations

import logging
import shlex
import uuid
from collections.abc import Callable
from contextlib import nullcontext
from pathlib import Path

from jab3ops.config import PipelineConfig, RemoteTarget
from jab3ops.promotion.credentials import CredentialBundle, CredentialError
from jab3ops.promotion.lock import (
    LOCKED_RETURNCODE,
    PromotionLockedError,
    local_run_lock,
    remote_acquire_command,
    remote_release_command,
)
from jab3ops.promotion.remote import RemoteSession, RemoteSessionError, in_work_dir
from jab3ops.promotion.types import (
    REMOTE_STEP_ORDER,
    STEP_COMPLETES_STATE,
    PromotionResult,
    PromotionState,
    RemoteStep,
    StepResult,
)

logger = logging.getLogger(__name__)

SessionFactory = Callable[[RemoteTarget, CredentialBundle, PipelineConfig], RemoteSession]


def step_command(target: RemoteTarget, step: RemoteStep, ref: str) -> str:
    """Remote shell command for one promotion step."""
    if step is RemoteStep.CHECKOUT:
        body = f"git checkout -f {shlex.quote(ref)}"
    elif step is RemoteStep.PULL:
        body = "git pull"
    elif step is RemoteStep.BUILD:
        body = target.build_command
    else:
        body = f"systemctl restart {shlex.quote(target.service_name)}"
    return in_work_dir(target.work_dir, body)


def legacy_chained_command(target: RemoteTarget, ref: str) -> str:
    """The single conjunctive command the step sequence replaces."""
    return (
        f"cd {target.work_dir}"
        f" && git checkout -f {shlex.quote(ref)}"
        " && git pull"
        f" && {target.build_command}"
        f" && systemctl restart {shlex.quote(target.service_name)}"
    )


def plan(target: RemoteTarget, ref: str) -> list[tuple[RemoteStep, str]]:
    return [(step, step_command(target, step, ref)) for step in REMOTE_STEP_ORDER]


def _default_session(target: RemoteTarget, bundle: CredentialBundle, config: PipelineConfig) -> RemoteSession:
    return RemoteSession(
        target,
        key_path=bundle.key_path,
        known_hosts_path=bundle.known_hosts_path,
        control_dir=bundle.ssh_dir,
        connect_timeout=config.connect_timeout_seconds,
    )


class Promoter:
    """Drive one promotion of a ref onto the remote target."""

    def __init__(
        self,
        target: RemoteTarget,
        config: PipelineConfig,
        *,
        session_factory: SessionFactory = _default_session,
        local_lock_path: Path | None = None,
    ):
        self.target = target
        self.config = config
        self.session_factory = session_factory
        self.local_lock_path = local_lock_path

    def run(self, ref: str, run_id: str | None = None) -> PromotionResult:
        """Promote ``ref``. Failures are recorded on the result, never retried.

        Raises:
            OSError: If the credential directory cannot be removed
        """
        result = PromotionResult(ref=ref, run_id=run_id or uuid.uuid4().hex[:12])
        lock = (
            local_run_lock(self.local_lock_path, result.run_id)
            if self.local_lock_path is not None and self.config.single_flight
            else nullcontext()
        )
        try:
            with lock:
                self._run_with_credentials(ref, result)
        except PromotionLockedError as exc:
            result.fail("lock", str(exc))

        result.enter(PromotionState.CREDENTIALS_CLEANED)
        if result.succeeded:
            logger.info("promotion of %s completed", ref)
        else:
            logger.error("promotion of %s failed at %s: %s", ref, result.failed_step, result.error)
        return result

    def _run_with_credentials(self, ref: str, result: PromotionResult) -> None:
        bundle = CredentialBundle(self.target, self.config.ssh_dir)
        try:
            with bundle:
                result.enter(PromotionState.CREDENTIALS_INSTALLED)
                self._run_session(bundle, ref, result)
        except CredentialError as exc:
            result.fail("credentials", str(exc))

    def _run_session(self, bundle: CredentialBundle, ref: str, result: PromotionResult) -> None:
        session = self.session_factory(self.target, bundle, self.config)
        try:
            session.open()
        except RemoteSessionError as exc:
            result.fail("connect", str(exc))
            return

        locked = False
        try:
            if self.config.single_flight:
                self._acquire_remote_lock(session, result)
                locked = True
            self._run_steps(session, ref, result)
        except PromotionLockedError as exc:
            result.fail("lock", str(exc))
        except RemoteSessionError as exc:
            result.fail("session", str(exc))
        finally:
            if locked:
                self._release_remote_lock(session)
            session.close()

    def _acquire_remote_lock(self, session: RemoteSession, result: PromotionResult) -> None:
        command = in_work_dir(self.target.work_dir, remote_acquire_command(self.config.lock_name, result.run_id))
        exec_result, _ = session.run(command)
        if exec_result.returncode == LOCKED_RETURNCODE:
            raise PromotionLockedError(
                f"another promotion holds {self.config.lock_name} on {self.target.host}: "
                f"{exec_result.stdout.strip()}"
            )
        if not exec_result.ok:
            raise PromotionLockedError(
                f"could not take promotion lock (exit {exec_result.returncode}): {exec_result.output_tail()}"
            )

    def _release_remote_lock(self, session: RemoteSession) -> None:
        exec_result, _ = session.run(in_work_dir(self.target.work_dir, remote_release_command(self.config.lock_name)))
        if not exec_result.ok:
            logger.warning(
                "could not release %s on %s (exit %d); remove it manually",
                self.config.lock_name,
                self.target.host,
                exec_result.returncode,
            )

    def _run_steps(self, session: RemoteSession, ref: str, result: PromotionResult) -> None:
        for step, command in plan(self.target, ref):
            exec_result, duration = session.run(command)
            status = "passed" if exec_result.ok else "failed"
            result.steps.append(
                StepResult(
                    step=step,
                    command=command,
                    status=status,
                    returncode=exec_result.returncode,
                    duration_seconds=duration,
                    output=exec_result.output_tail(),
                )
            )
            if not exec_result.ok:
                result.fail(step.value, f"remote {step.value} exited {exec_result.returncode}")
                return
            if step in STEP_COMPLETES_STATE:
                result.enter(STEP_COMPLETES_STATE[step])
