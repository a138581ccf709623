"""GitHub Actions workflow definitions driving jab3ops.

Two workflows are rendered:

- ``check-and-deploy.yml``: four independent verification jobs on every pull
  request and push, plus a deploy job that needs all four and only runs on a
  manual dispatch.
- ``manual_deploy.yml``: manual dispatch only; runs the whole pipeline, so
  verification still gates the promotion.

jab3ops itself is installed from a spec the workflow controls: a path inside
the checked-out revision or a VCS URL pinned to a revision. A bare package
name is refused, since the deploy job runs next to the SSH secrets.
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Any

import yaml

from jab3ops.config import REQUIRED_SECRETS, SECRET_PORT
from jab3ops.verify.types import REQUIRED_STAGES, STAGE_TITLES, StageName

CHECK_AND_DEPLOY = "check-and-deploy.yml"
MANUAL_DEPLOY = "manual_deploy.yml"

VERIFY_ENVIRONMENT = "prod"
DEPLOY_ENVIRONMENT = "prod-manual"

DEFAULT_TOOLCHAIN = "stable"
DEFAULT_INSTALL_SPEC = "./tools/jab3ops"

# (toolchain, components) per stage; fmt runs on nightly
STAGE_TOOLCHAINS: dict[StageName, tuple[str, str]] = {
    StageName.CHECK: (DEFAULT_TOOLCHAIN, ""),
    StageName.FMT: ("nightly", "rustfmt"),
    StageName.CLIPPY: (DEFAULT_TOOLCHAIN, "clippy"),
    StageName.TEST: (DEFAULT_TOOLCHAIN, ""),
}

# git+<url>@<rev>, optionally followed by #egg=... or #subdirectory=...
_PINNED_VCS = re.compile(r"^git\+\S+@[^@/#\s]+(#\S*)?$")


def validate_install_spec(spec: str) -> str:
    """Accept a local path or a revision-pinned VCS URL.

    Raises:
        ValueError: For a bare distribution name or an unpinned URL
    """
    if spec.startswith(("./", "../", "/")) or _PINNED_VCS.match(spec):
        return spec
    raise ValueError(
        f"install spec {spec!r} must be a path in the repository (./...) "
        "or a VCS URL pinned to a revision (git+https://...@<rev>)"
    )


def _rust_step(toolchain: str, components: str) -> dict[str, Any]:
    step: dict[str, Any] = {"uses": "dtolnay/rust-toolchain@master", "with": {"toolchain": toolchain}}
    if components:
        step["with"]["components"] = components
    return step


def _setup_steps(toolchains: list[tuple[str, str]], install_spec: str) -> list[dict[str, Any]]:
    return [
        {"uses": "actions/checkout@v4"},
        *(_rust_step(toolchain, components) for toolchain, components in toolchains),
        {"uses": "actions/setup-python@v5", "with": {"python-version": "3.12"}},
        {"run": f"pip install {install_spec}"},
    ]


def _pipeline_toolchains() -> list[tuple[str, str]]:
    """Every toolchain the four stages need, with the default installed last.

    The action makes the last toolchain it installs the default, so stages
    pinned elsewhere select theirs with ``--toolchain``.
    """
    components: dict[str, list[str]] = {}
    for stage in REQUIRED_STAGES:
        toolchain, extra = STAGE_TOOLCHAINS[stage]
        names = components.setdefault(toolchain, [])
        if extra and extra not in names:
            names.append(extra)
    ordered = sorted(components, key=lambda name: name == DEFAULT_TOOLCHAIN)
    return [(name, ", ".join(components[name])) for name in ordered]


def _toolchain_flags() -> str:
    return "".join(
        f" --toolchain {stage.value}={STAGE_TOOLCHAINS[stage][0]}"
        for stage in REQUIRED_STAGES
        if STAGE_TOOLCHAINS[stage][0] != DEFAULT_TOOLCHAIN
    )


def _secret_env() -> dict[str, str]:
    return {name: f"${{{{ secrets.{name} }}}}" for name in (*REQUIRED_SECRETS, SECRET_PORT)}


def _verify_job(stage: StageName, install_spec: str) -> dict[str, Any]:
    return {
        "name": STAGE_TITLES[stage],
        "runs-on": "ubuntu-latest",
        "environment": VERIFY_ENVIRONMENT,
        "steps": [
            *_setup_steps([STAGE_TOOLCHAINS[stage]], install_spec),
            {"run": f"jab3ops verify --stage {stage.value} --trigger ${{{{ github.event_name }}}}"},
        ],
    }


def _pipeline_job(needs: list[str] | None, install_spec: str) -> dict[str, Any]:
    job: dict[str, Any] = {
        "name": "Deploy",
        "runs-on": "ubuntu-latest",
        "environment": DEPLOY_ENVIRONMENT,
    }
    if needs:
        job["needs"] = needs
        job["if"] = "github.event_name == 'workflow_dispatch'"
    job["concurrency"] = {"group": "jab3-deploy", "cancel-in-progress": False}
    job["env"] = _secret_env()
    job["steps"] = [
        *_setup_steps(_pipeline_toolchains(), install_spec),
        {
            "name": "verify, then promote over ssh",
            "run": (
                "jab3ops pipeline --trigger ${{ github.event_name }} --ref ${{ github.ref_name }}"
                + _toolchain_flags()
            ),
        },
    ]
    return job


def render_check_and_deploy(install_spec: str = DEFAULT_INSTALL_SPEC) -> dict[str, Any]:
    install_spec = validate_install_spec(install_spec)
    jobs: dict[str, Any] = {stage.value: _verify_job(stage, install_spec) for stage in REQUIRED_STAGES}
    jobs["deploy"] = _pipeline_job([stage.value for stage in REQUIRED_STAGES], install_spec)
    return {
        "name": "Check and Deploy",
        "on": {"pull_request": None, "push": None, "workflow_dispatch": None},
        "jobs": jobs,
    }


def render_manual_deploy(install_spec: str = DEFAULT_INSTALL_SPEC) -> dict[str, Any]:
    install_spec = validate_install_spec(install_spec)
    return {
        "name": "Manual Deploy",
        "on": {"workflow_dispatch": None},
        "jobs": {"deploy": _pipeline_job(None, install_spec)},
    }


def dump_workflow(workflow: dict[str, Any]) -> str:
    return yaml.safe_dump(workflow, sort_keys=False, default_flow_style=False)


def write_workflows(dest_dir: Path, install_spec: str = DEFAULT_INSTALL_SPEC) -> list[Path]:
    workflows = (
        (CHECK_AND_DEPLOY, render_check_and_deploy(install_spec)),
        (MANUAL_DEPLOY, render_manual_deploy(install_spec)),
    )
    dest_dir.mkdir(parents=True, exist_ok=True)
    written = []
    for filename, workflow in workflows:
        path = dest_dir / filename
        path.write_text(dump_workflow(workflow), encoding="utf-8")
        written.append(path)
    return written
