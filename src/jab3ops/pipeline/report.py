"""PIPELINE_RUN.json / PIPELINE_RUN.md writers."""

from __future__ import annotations

import json
from pathlib import Path

from jab3ops.artifacts.canonical_json import write_json
from jab3ops.pipeline.types import PipelineRun, TriggerKind
from jab3ops.verify.types import STAGE_TITLES, StageResult

RUN_JSON = "PIPELINE_RUN.json"
RUN_MD = "PIPELINE_RUN.md"


def write_pipeline_run(run: PipelineRun, run_dir: Path) -> dict[str, str]:
    run_dir.mkdir(parents=True, exist_ok=True)
    json_path = run_dir / RUN_JSON
    md_path = run_dir / RUN_MD
    write_json(json_path, run.to_dict())
    md_path.write_text(render_markdown(run), encoding="utf-8")
    return {"json": str(json_path), "markdown": str(md_path)}


def load_pipeline_run(run_dir: Path) -> PipelineRun:
    """Reload stage results of an earlier run, for gating a later promotion.

    Raises:
        FileNotFoundError: If the run has no PIPELINE_RUN.json
        ValueError: If the file is not a valid run record
    """
    path = run_dir / RUN_JSON
    if not path.exists():
        raise FileNotFoundError(f"{RUN_JSON} not found in {run_dir}")
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        return PipelineRun(
            run_id=data["run_id"],
            trigger=TriggerKind(data["trigger"]),
            ref=data["ref"],
            stages=[StageResult.from_dict(s) for s in data["stages"]],
            generated_at=data.get("generated_at", ""),
            timestamp_mode=data.get("timestamp_mode", "deterministic"),
        )
    except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
        raise ValueError(f"Invalid run record {path}: {e}") from e


def render_markdown(run: PipelineRun) -> str:
    status_emoji = "✅" if run.status == "passed" else "❌"
    lines = [
        "# jab3 Pipeline Run",
        "",
        f"**Status**: {status_emoji} {run.status.upper()}",
        f"**Run ID**: {run.run_id}",
        f"**Trigger**: {run.trigger.value}",
        f"**Ref**: {run.ref}",
        f"**Generated**: {run.generated_at} ({run.timestamp_mode})",
        "",
        "## Verification",
        "",
        "| Stage | Status | Exit | Seconds |",
        "|---|---|---|---|",
    ]
    for stage in run.stages:
        mark = "✅" if stage.passed else "❌"
        lines.append(
            f"| {STAGE_TITLES[stage.name]} (`{stage.name.value}`) | {mark} {stage.status} "
            f"| {stage.returncode} | {stage.duration_seconds:.1f} |"
        )

    lines.extend(["", "## Promotion", ""])
    if run.promotion is None:
        lines.append("**Ran**: No")
        for reason in run.promotion_skipped_reasons:
            lines.append(f"- {reason}")
    else:
        promotion = run.promotion
        mark = "✅" if promotion.succeeded else "❌"
        lines.append(f"**Ran**: Yes, {mark} {'passed' if promotion.succeeded else 'failed'}")
        lines.append(f"**States**: {' → '.join(s.value for s in promotion.states)}")
        if promotion.error:
            lines.append(f"**Failed at**: `{promotion.failed_step}`: {promotion.error}")
        lines.append("")
        for step in promotion.steps:
            mark = "✅" if step.status == "passed" else "❌"
            lines.append(f"- {mark} `{step.step.value}` (exit {step.returncode}): `{step.command}`")
    lines.append("")
    return "\n".join(lines)
