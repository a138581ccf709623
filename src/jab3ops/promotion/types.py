"""Promotion stage types."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Literal


class PromotionState(str, Enum):
    IDLE = "idle"
    CREDENTIALS_INSTALLED = "credentials_installed"
    REMOTE_SYNCED = "remote_synced"
    REMOTE_REBUILT = "remote_rebuilt"
    SERVICE_RESTARTED = "service_restarted"
    CREDENTIALS_CLEANED = "credentials_cleaned"


class RemoteStep(str, Enum):
    CHECKOUT = "checkout"
    PULL = "pull"
    BUILD = "build"
    RESTART = "restart"


REMOTE_STEP_ORDER: tuple[RemoteStep, ...] = (
    RemoteStep.CHECKOUT,
    RemoteStep.PULL,
    RemoteStep.BUILD,
    RemoteStep.RESTART,
)

# State reached once the step completes; checkout alone does not complete a sync
STEP_COMPLETES_STATE: dict[RemoteStep, PromotionState] = {
    RemoteStep.PULL: PromotionState.REMOTE_SYNCED,
    RemoteStep.BUILD: PromotionState.REMOTE_REBUILT,
    RemoteStep.RESTART: PromotionState.SERVICE_RESTARTED,
}


@dataclass(frozen=True)
class StepResult:
    """One remote call issued during promotion."""

    step: RemoteStep
    command: str
    status: Literal["passed", "failed"]
    returncode: int
    duration_seconds: float
    output: str = ""

    def to_dict(self) -> dict:
        return {
            "step": self.step.value,
            "command": self.command,
            "status": self.status,
            "returncode": self.returncode,
            "duration_seconds": round(self.duration_seconds, 3),
            "output": self.output,
        }


@dataclass
class PromotionResult:
    """Outcome of one promotion run, including partial progress."""

    ref: str
    run_id: str
    states: list[PromotionState] = field(default_factory=lambda: [PromotionState.IDLE])
    steps: list[StepResult] = field(default_factory=list)
    failed_step: str | None = None
    error: str | None = None

    @property
    def state(self) -> PromotionState:
        return self.states[-1]

    @property
    def succeeded(self) -> bool:
        return (
            self.error is None
            and PromotionState.SERVICE_RESTARTED in self.states
            and len(self.steps) == len(REMOTE_STEP_ORDER)
            and all(s.status == "passed" for s in self.steps)
        )

    def enter(self, state: PromotionState) -> None:
        self.states.append(state)

    def fail(self, step: str, error: str) -> None:
        self.failed_step = step
        self.error = error

    def to_dict(self) -> dict:
        return {
            "ref": self.ref,
            "run_id": self.run_id,
            "status": "passed" if self.succeeded else "failed",
            "final_state": self.state.value,
            "states": [s.value for s in self.states],
            "steps": [s.to_dict() for s in self.steps],
            "failed_step": self.failed_step,
            "error": self.error,
        }
