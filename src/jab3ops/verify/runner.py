"""Run verification stages independently against one source tree.

Stages share no mutable state, so they run concurrently in a thread pool.
Results come back in the order the stages were declared. There is no retry
and no auto-fix: a stage either passes on its single run or fails.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

from jab3ops.config import PipelineConfig
from jab3ops.exec import run_command
from jab3ops.verify.types import REQUIRED_STAGES, StageName, StageResult, StageSpec

logger = logging.getLogger(__name__)

NOT_FOUND_RETURNCODE = 127


def build_stage_specs(
    config: PipelineConfig,
    stages: list[StageName] | None = None,
) -> list[StageSpec]:
    """Stage specs from config, for all required stages unless narrowed."""
    selected = stages or list(REQUIRED_STAGES)
    return [
        StageSpec(
            name=stage,
            argv=tuple(config.command_for(stage.value)),
            timeout_seconds=config.stage_timeout_seconds,
        )
        for stage in selected
    ]


def run_stage(spec: StageSpec, *, workspace: Path) -> StageResult:
    """Run one stage. A missing tool is a failed stage, not an exception."""
    logger.info("stage %s: %s", spec.name.value, " ".join(spec.argv))
    started = time.monotonic()
    try:
        result = run_command(
            list(spec.argv),
            cwd=workspace,
            check=False,
            timeout=spec.timeout_seconds,
        )
        returncode, stdout, stderr = result.returncode, result.stdout, result.stderr
    except FileNotFoundError as exc:
        returncode, stdout, stderr = NOT_FOUND_RETURNCODE, "", f"executable not found: {exc}"
    duration = time.monotonic() - started

    status = "passed" if returncode == 0 else "failed"
    log = logger.info if status == "passed" else logger.error
    log("stage %s %s (exit %d, %.1fs)", spec.name.value, status, returncode, duration)
    return StageResult(
        name=spec.name,
        status=status,
        returncode=returncode,
        duration_seconds=duration,
        command=spec.argv,
        stdout=stdout,
        stderr=stderr,
    )


def run_verification(
    specs: list[StageSpec],
    *,
    workspace: Path,
    max_parallel: int = 4,
) -> list[StageResult]:
    """Run all stages concurrently and return results in declared order."""
    if not specs:
        return []
    workers = max(1, min(max_parallel, len(specs)))
    with ThreadPoolExecutor(max_workers=workers) as pool:
        futures = [pool.submit(run_stage, spec, workspace=workspace) for spec in specs]
        return [future.result() for future in futures]
