"""Pipeline run types and the promotion gate."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from jab3ops.promotion.types import PromotionResult
from jab3ops.verify.types import REQUIRED_STAGES, StageResult


class TriggerKind(str, Enum):
    PULL_REQUEST = "pull_request"
    PUSH = "push"
    WORKFLOW_DISPATCH = "workflow_dispatch"


PROMOTING_TRIGGERS = frozenset({TriggerKind.WORKFLOW_DISPATCH})


@dataclass
class PipelineRun:
    """One invocation of the pipeline for a triggering event."""

    run_id: str
    trigger: TriggerKind
    ref: str
    stages: list[StageResult] = field(default_factory=list)
    promotion: PromotionResult | None = None
    promotion_skipped_reasons: list[str] = field(default_factory=list)
    generated_at: str = ""
    timestamp_mode: str = "deterministic"

    def promotion_decision(self) -> tuple[bool, list[str]]:
        """Whether promotion may run, and why not when it may not.

        Allowed only on a manual dispatch where every required stage ran and
        passed for this revision.
        """
        reasons: list[str] = []
        if self.trigger not in PROMOTING_TRIGGERS:
            reasons.append(f"trigger '{self.trigger.value}' never promotes")

        by_name = {s.name: s for s in self.stages}
        for stage in REQUIRED_STAGES:
            result = by_name.get(stage)
            if result is None:
                reasons.append(f"stage '{stage.value}' did not run")
            elif not result.passed:
                reasons.append(f"stage '{stage.value}' failed (exit {result.returncode})")

        return not reasons, reasons

    @property
    def status(self) -> str:
        if not self.stages or not all(s.passed for s in self.stages):
            return "failed"
        if self.promotion is not None and not self.promotion.succeeded:
            return "failed"
        return "passed"

    def to_dict(self) -> dict:
        allowed, reasons = self.promotion_decision()
        return {
            "schema_version": "1.0",
            "run_id": self.run_id,
            "trigger": self.trigger.value,
            "ref": self.ref,
            "generated_at": self.generated_at,
            "timestamp_mode": self.timestamp_mode,
            "status": self.status,
            "stages": [s.to_dict() for s in self.stages],
            "gate": {"promotion_allowed": allowed, "reasons": reasons},
            "promotion": self.promotion.to_dict() if self.promotion else None,
            "promotion_skipped_reasons": self.promotion_skipped_reasons,
        }
