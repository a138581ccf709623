"""Verification stage types."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Literal


class StageName(str, Enum):
    CHECK = "check"
    FMT = "fmt"
    CLIPPY = "clippy"
    TEST = "test"


REQUIRED_STAGES: tuple[StageName, ...] = (
    StageName.CHECK,
    StageName.FMT,
    StageName.CLIPPY,
    StageName.TEST,
)

STAGE_TITLES: dict[StageName, str] = {
    StageName.CHECK: "Compile check",
    StageName.FMT: "Format check",
    StageName.CLIPPY: "Lint check",
    StageName.TEST: "Test run",
}


@dataclass(frozen=True)
class StageSpec:
    name: StageName
    argv: tuple[str, ...]
    timeout_seconds: float | None = None


@dataclass(frozen=True)
class StageResult:
    """Outcome of one verification stage against one revision."""

    name: StageName
    status: Literal["passed", "failed"]
    returncode: int
    duration_seconds: float
    command: tuple[str, ...]
    stdout: str = ""
    stderr: str = ""

    @property
    def passed(self) -> bool:
        return self.status == "passed"

    def to_dict(self, include_output: bool = False) -> dict:
        data = {
            "name": self.name.value,
            "status": self.status,
            "returncode": self.returncode,
            "duration_seconds": round(self.duration_seconds, 3),
            "command": list(self.command),
        }
        if include_output:
            data["stdout"] = self.stdout
            data["stderr"] = self.stderr
        return data

    @classmethod
    def from_dict(cls, data: dict) -> StageResult:
        return cls(
            name=StageName(data["name"]),
            status=data["status"],
            returncode=int(data["returncode"]),
            duration_seconds=float(data.get("duration_seconds", 0.0)),
            command=tuple(data.get("command", [])),
            stdout=data.get("stdout", ""),
            stderr=data.get("stderr", ""),
        )
