"""Verification stages: compile, format, lint and test checks."""

from jab3ops.verify.runner import build_stage_specs, run_stage, run_verification
from jab3ops.verify.types import REQUIRED_STAGES, StageName, StageResult, StageSpec

__all__ = [
    "REQUIRED_STAGES",
    "StageName",
    "StageResult",
    "StageSpec",
    "build_stage_specs",
    "run_stage",
    "run_verification",
]
