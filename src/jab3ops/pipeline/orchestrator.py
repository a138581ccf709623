"""Run verification, apply the promotion gate, then promote when allowed."""

from __future__ import annotations

import logging
from pathlib import Path

from jab3ops.artifacts.canonical_json import timestamp
from jab3ops.config import PipelineConfig, RemoteTarget
from jab3ops.pipeline.report import write_pipeline_run
from jab3ops.pipeline.types import PipelineRun, TriggerKind
from jab3ops.promotion.machine import Promoter
from jab3ops.verify.runner import build_stage_specs, run_verification
from jab3ops.verify.types import StageName

logger = logging.getLogger(__name__)

PROMOTION_LOCK_FILENAME = "promotion.lock"


def make_run_id(trigger: TriggerKind, ref: str, stamp: str) -> str:
    safe_ref = "".join(ch if ch.isalnum() or ch in "-_." else "-" for ch in ref)
    safe_stamp = stamp.replace(":", "").replace("-", "")
    return f"{safe_stamp}_{trigger.value}_{safe_ref}"


def run_pipeline(
    *,
    workspace: Path,
    trigger: TriggerKind,
    ref: str,
    config: PipelineConfig,
    target: RemoteTarget | None = None,
    promoter: Promoter | None = None,
    stages: list[StageName] | None = None,
    timestamp_mode: str = "wallclock",
    run_id: str | None = None,
) -> tuple[PipelineRun, Path]:
    """Run one pipeline for a triggering event.

    Promotion only starts after every verification stage has reported and
    the gate allows it. A gated-out promotion never installs credentials or
    opens SSH.

    Args:
        workspace: Source tree at the triggering revision
        trigger: Event that started the run
        ref: Revision reference to promote
        config: Pipeline settings
        target: Remote target; required only if promotion is allowed
        promoter: Pre-built promoter (tests); built from target otherwise
        stages: Narrow verification to some stages (never promotes)
        timestamp_mode: "deterministic" or "wallclock"
        run_id: Explicit run id

    Returns:
        Tuple of (run, run_dir)
    """
    generated_at = timestamp(timestamp_mode)
    run = PipelineRun(
        run_id=run_id or make_run_id(trigger, ref, generated_at),
        trigger=trigger,
        ref=ref,
        generated_at=generated_at,
        timestamp_mode=timestamp_mode,
    )
    run_dir = config.out_dir / "runs" / run.run_id
    logger.info("pipeline %s: trigger=%s ref=%s", run.run_id, trigger.value, ref)

    specs = build_stage_specs(config, stages)
    run.stages = run_verification(specs, workspace=workspace, max_parallel=config.max_parallel)

    allowed, reasons = run.promotion_decision()
    if allowed and promoter is None and target is None:
        allowed, reasons = False, ["no remote target configured"]

    if allowed:
        promoter = promoter or Promoter(
            target,
            config,
            local_lock_path=config.out_dir / PROMOTION_LOCK_FILENAME,
        )
        run.promotion = promoter.run(ref, run_id=run.run_id)
    else:
        run.promotion_skipped_reasons = reasons
        logger.info("promotion skipped: %s", "; ".join(reasons))

    write_pipeline_run(run, run_dir)
    logger.info("pipeline %s %s", run.run_id, run.status)
    return run, run_dir
