"""Pipeline orchestration: verification gate and promotion."""

from jab3ops.pipeline.orchestrator import run_pipeline
from jab3ops.pipeline.report import load_pipeline_run, write_pipeline_run
from jab3ops.pipeline.types import PipelineRun, TriggerKind

__all__ = ["PipelineRun", "TriggerKind", "load_pipeline_run", "run_pipeline", "write_pipeline_run"]
