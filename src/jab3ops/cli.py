"""jab3ops CLI - build, verify and promote jab3."""

import os
from enum import Enum
from pathlib import Path

import typer

from jab3ops import __version__
from jab3ops.config import ConfigError, PipelineConfig, load_pipeline_config, remote_target_from_env
from jab3ops.image import (
    BuildRecipe,
    DockerNotFoundError,
    ImageBuildError,
    build_image,
    inspect_image,
    write_dockerfile,
)
from jab3ops.pipeline import PipelineRun, TriggerKind, load_pipeline_run, run_pipeline, write_pipeline_run
from jab3ops.pipeline.orchestrator import PROMOTION_LOCK_FILENAME
from jab3ops.promotion import Promoter, PromotionResult, legacy_chained_command, plan
from jab3ops.ui import Spinner, configure_logging, console, status_mark
from jab3ops.verify.types import STAGE_TITLES, StageName
from jab3ops.workflows import DEFAULT_INSTALL_SPEC, write_workflows

EXIT_FAILED = 1
EXIT_REFUSED = 2
EXIT_CONFIG = 3

cli = typer.Typer(
    name="jab3ops",
    help="jab3ops - build, verify and promote the jab3 service",
    no_args_is_help=True,
)
image_app = typer.Typer(help="Two-stage runtime image for jab3.", no_args_is_help=True)
cli.add_typer(image_app, name="image")
workflows_app = typer.Typer(help="CI workflow definitions.", no_args_is_help=True)
cli.add_typer(workflows_app, name="workflows")


class TimestampMode(str, Enum):
    DETERMINISTIC = "deterministic"
    WALLCLOCK = "wallclock"


def _load_config(workspace: Path) -> PipelineConfig:
    try:
        return load_pipeline_config(workspace.resolve())
    except ConfigError as exc:
        console.print(f"[bold red]Error:[/bold red] {exc}")
        raise typer.Exit(EXIT_CONFIG) from exc


def _apply_toolchains(config: PipelineConfig, values: list[str] | None) -> PipelineConfig:
    """Apply repeated ``--toolchain STAGE=NAME`` options."""
    if not values:
        return config
    overrides: dict[str, str] = {}
    for value in values:
        stage_name, sep, toolchain = value.partition("=")
        if not sep or not stage_name or not toolchain:
            console.print(f"[bold red]Error:[/bold red] --toolchain expects STAGE=TOOLCHAIN, got {value!r}")
            raise typer.Exit(EXIT_CONFIG)
        overrides[stage_name] = toolchain
    try:
        return config.with_toolchains(overrides)
    except ValueError as exc:
        console.print(f"[bold red]Error:[/bold red] {exc}")
        raise typer.Exit(EXIT_CONFIG) from exc


def _print_stages(run: PipelineRun) -> None:
    for stage in run.stages:
        console.print(
            f"{status_mark(stage.passed)} {STAGE_TITLES[stage.name]} "
            f"[dim]({' '.join(stage.command)}, exit {stage.returncode}, {stage.duration_seconds:.1f}s)[/dim]"
        )
        if not stage.passed:
            tail = (stage.stderr or stage.stdout).strip().splitlines()[-15:]
            for line in tail:
                console.print(f"    [red]{line}[/red]", markup=False, highlight=False)


def _print_promotion(result: PromotionResult) -> None:
    for step in result.steps:
        console.print(f"{status_mark(step.status == 'passed')} remote {step.step.value}: {step.command}")
    console.print(f"[cyan]States:[/cyan] {' → '.join(s.value for s in result.states)}")
    if result.error:
        console.print(f"[bold red]Promotion failed at {result.failed_step}:[/bold red] {result.error}")
    else:
        console.print("[green]✓ Promotion completed[/green]")


@cli.callback()
def _cli_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging."),
) -> None:
    configure_logging(verbose)


@cli.command()
def version() -> None:
    """Show jab3ops version."""
    typer.echo(__version__)


@cli.command()
def verify(
    workspace: Path = typer.Option(Path("."), "--workspace", "-w", help="Source tree to verify."),
    stage: list[StageName] = typer.Option(
        None, "--stage", "-s", help="Run only this stage (repeatable). Narrowed runs never promote."
    ),
    trigger: TriggerKind = typer.Option(TriggerKind.PUSH, "--trigger", help="Triggering event kind."),
    ref: str = typer.Option("HEAD", "--ref", envvar="GITHUB_REF_NAME", help="Revision reference."),
    timestamp_mode: TimestampMode = typer.Option(TimestampMode.WALLCLOCK, "--timestamp-mode"),
    toolchain: list[str] = typer.Option(
        None, "--toolchain", help="Pin a stage to a toolchain, STAGE=NAME (repeatable)."
    ),
) -> None:
    """Run the verification stages (compile, format, lint, test)."""
    config = _apply_toolchains(_load_config(workspace), toolchain)
    run, run_dir = Spinner("Verifying...").run(
        lambda: run_pipeline(
            workspace=workspace.resolve(),
            trigger=trigger,
            ref=ref,
            config=config,
            stages=stage or None,
            timestamp_mode=timestamp_mode.value,
        )
    )
    _print_stages(run)
    console.print(f"[cyan]Run:[/cyan] {run_dir}")
    if run.status != "passed":
        raise typer.Exit(EXIT_FAILED)


@cli.command()
def pipeline(
    workspace: Path = typer.Option(Path("."), "--workspace", "-w", help="Source tree at the triggering revision."),
    trigger: TriggerKind = typer.Option(..., "--trigger", help="Triggering event kind."),
    ref: str = typer.Option(..., "--ref", envvar="GITHUB_REF_NAME", help="Revision reference to promote."),
    timestamp_mode: TimestampMode = typer.Option(TimestampMode.WALLCLOCK, "--timestamp-mode"),
    toolchain: list[str] = typer.Option(
        None, "--toolchain", help="Pin a stage to a toolchain, STAGE=NAME (repeatable)."
    ),
) -> None:
    """Verify, then promote over SSH when the trigger is a manual dispatch and every stage passed."""
    config = _apply_toolchains(_load_config(workspace), toolchain)
    target = None
    if trigger is TriggerKind.WORKFLOW_DISPATCH:
        try:
            target = remote_target_from_env(os.environ)
        except ConfigError as exc:
            console.print(f"[bold red]Error:[/bold red] {exc}")
            raise typer.Exit(EXIT_CONFIG) from exc

    run, run_dir = run_pipeline(
        workspace=workspace.resolve(),
        trigger=trigger,
        ref=ref,
        config=config,
        target=target,
        timestamp_mode=timestamp_mode.value,
    )
    _print_stages(run)
    if run.promotion is not None:
        _print_promotion(run.promotion)
    else:
        for reason in run.promotion_skipped_reasons:
            console.print(f"[yellow]Promotion skipped:[/yellow] {reason}")
    console.print(f"[cyan]Run:[/cyan] {run_dir}")
    if run.status != "passed":
        raise typer.Exit(EXIT_FAILED)


@cli.command()
def promote(
    run_dir: Path | None = typer.Option(
        None, "--run-dir", help="Verified run whose PIPELINE_RUN.json gates this promotion."
    ),
    ref: str | None = typer.Option(None, "--ref", help="Must match the verified run's ref when given."),
    workspace: Path = typer.Option(Path("."), "--workspace", "-w", help="Workspace holding .jab3ops config."),
    dry_run: bool = typer.Option(False, "--dry-run", help="Print the remote commands without connecting."),
) -> None:
    """Promote a verified run: install credentials, sync, rebuild, restart, clean up."""
    config = _load_config(workspace)
    try:
        target = remote_target_from_env(os.environ)
    except ConfigError as exc:
        console.print(f"[bold red]Error:[/bold red] {exc}")
        raise typer.Exit(EXIT_CONFIG) from exc

    if dry_run:
        planned_ref = ref or "HEAD"
        for step, command in plan(target, planned_ref):
            console.print(f"[cyan]{step.value}:[/cyan] ssh {target.login} {command!r}", highlight=False)
        console.print(f"[dim]chained equivalent: {legacy_chained_command(target, planned_ref)}[/dim]", highlight=False)
        return

    if run_dir is None:
        console.print("[bold red]Error:[/bold red] --run-dir is required (or use `jab3ops pipeline`)")
        raise typer.Exit(EXIT_REFUSED)

    try:
        run = load_pipeline_run(run_dir)
    except (FileNotFoundError, ValueError) as exc:
        console.print(f"[bold red]Error:[/bold red] {exc}")
        raise typer.Exit(EXIT_REFUSED) from exc

    if ref is not None and ref != run.ref:
        console.print(f"[bold red]Refused:[/bold red] run verified ref '{run.ref}', not '{ref}'")
        raise typer.Exit(EXIT_REFUSED)

    allowed, reasons = run.promotion_decision()
    if not allowed:
        for reason in reasons:
            console.print(f"[bold red]Refused:[/bold red] {reason}")
        raise typer.Exit(EXIT_REFUSED)

    promoter = Promoter(target, config, local_lock_path=config.out_dir / PROMOTION_LOCK_FILENAME)
    run.promotion = promoter.run(run.ref, run_id=run.run_id)
    write_pipeline_run(run, run_dir)
    _print_promotion(run.promotion)
    if not run.promotion.succeeded:
        raise typer.Exit(EXIT_FAILED)


@image_app.command("render")
def image_render(
    dest: Path = typer.Option(Path("Dockerfile"), "--dest", help="Where to write the Dockerfile."),
    binary: str = typer.Option("jab3", "--binary", help="Name of the compiled binary."),
) -> None:
    """Write the two-stage Dockerfile."""
    path = write_dockerfile(BuildRecipe(binary_name=binary), dest)
    console.print(f"[green]✓ Dockerfile written[/green] {path}")


@image_app.command("build")
def image_build(
    context: Path = typer.Option(Path("."), "--context", help="Source tree (build context)."),
    tag: str = typer.Option("jab3:latest", "--tag", "-t"),
    binary: str = typer.Option("jab3", "--binary"),
    check: bool = typer.Option(True, "--check/--no-check", help="Inspect the image for leaked toolchain/source."),
) -> None:
    """Build the runtime image; fails without tagging on compile errors."""
    recipe = BuildRecipe(binary_name=binary)
    try:
        Spinner(f"Building {tag}...").run(lambda: build_image(recipe, context_dir=context, tag=tag))
    except (DockerNotFoundError, ImageBuildError) as exc:
        console.print(f"[bold red]Error:[/bold red] {exc}")
        raise typer.Exit(EXIT_FAILED) from exc
    console.print(f"[green]✓ Built[/green] {tag}")
    if check:
        image_inspect(tag=tag, binary=binary)


@image_app.command("inspect")
def image_inspect(
    tag: str = typer.Option("jab3:latest", "--tag", "-t"),
    binary: str = typer.Option("jab3", "--binary"),
) -> None:
    """Check the runtime image holds the binary and no toolchain or source."""
    try:
        inspection = inspect_image(BuildRecipe(binary_name=binary), tag)
    except DockerNotFoundError as exc:
        console.print(f"[bold red]Error:[/bold red] {exc}")
        raise typer.Exit(EXIT_FAILED) from exc
    for item in inspection.checks:
        console.print(f"{status_mark(item.status == 'pass')} {item.id}: {item.message}")
    if not inspection.passed:
        raise typer.Exit(EXIT_FAILED)


@workflows_app.command("render")
def workflows_render(
    dest: Path = typer.Option(Path(".github/workflows"), "--dest", help="Workflow directory."),
    install_spec: str = typer.Option(
        DEFAULT_INSTALL_SPEC,
        "--install-spec",
        help="Where jobs install jab3ops from: a repository path or a VCS URL pinned to a revision.",
    ),
) -> None:
    """Write the check-and-deploy and manual deploy workflows."""
    try:
        written = write_workflows(dest, install_spec)
    except ValueError as exc:
        console.print(f"[bold red]Error:[/bold red] {exc}")
        raise typer.Exit(EXIT_CONFIG) from exc
    for path in written:
        console.print(f"[green]✓[/green] {path}")


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
