"""Image build and non-leakage inspection via the ``docker`` CLI."""

from __future__ import annotations

import json
import logging
import shlex
import shutil
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

from jab3ops.exec import run_command
from jab3ops.image.recipe import BuildRecipe, render_dockerfile

logger = logging.getLogger(__name__)


class DockerNotFoundError(RuntimeError):
    """Raised when ``docker`` is not on PATH."""


class ImageBuildError(RuntimeError):
    """Raised when the image build fails. No image is tagged."""


@dataclass
class CheckItem:
    """Individual inspection result."""

    id: str
    status: Literal["pass", "fail"]
    message: str


@dataclass
class ImageInspection:
    tag: str
    checks: list[CheckItem] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return bool(self.checks) and all(c.status == "pass" for c in self.checks)


def find_docker() -> str:
    docker = shutil.which("docker")
    if docker is None:
        raise DockerNotFoundError(
            "docker CLI not found on PATH. Install Docker: https://docs.docker.com/engine/install/"
        )
    return docker


def build_image(recipe: BuildRecipe, *, context_dir: Path, tag: str) -> str:
    """Build the runtime image from a source tree and return its tag.

    Raises:
        DockerNotFoundError: If docker is unavailable
        ImageBuildError: If either stage fails (compile errors included)
    """
    docker = find_docker()
    context_dir = context_dir.resolve()
    with tempfile.TemporaryDirectory(prefix="jab3ops-image-") as tmp:
        dockerfile = Path(tmp) / "Dockerfile"
        dockerfile.write_text(render_dockerfile(recipe), encoding="utf-8")
        logger.info("building image %s from %s", tag, context_dir)
        result = run_command(
            [docker, "build", "-f", str(dockerfile), "-t", tag, str(context_dir)],
            cwd=context_dir,
            check=False,
        )
    if not result.ok:
        raise ImageBuildError(f"image build failed ({result.returncode}) for {tag}:\n{result.output_tail(40)}")
    logger.info("built image %s", tag)
    return tag


def _probe_script(recipe: BuildRecipe) -> str:
    """Shell script run inside the image; prints one ``key=value`` per probe."""
    lines = [f"test -x {shlex.quote(recipe.artifact_path)} && echo artifact=yes || echo artifact=no"]
    for binary in recipe.toolchain_binaries:
        lines.append(
            f"command -v {shlex.quote(binary)} >/dev/null 2>&1 && echo bin:{binary}=yes || echo bin:{binary}=no"
        )
    for path in (*recipe.toolchain_paths, *recipe.source_markers):
        lines.append(f"test -e {shlex.quote(path)} && echo path:{path}=yes || echo path:{path}=no")
    return "; ".join(lines)


def _parse_probe(stdout: str) -> dict[str, bool]:
    found: dict[str, bool] = {}
    for line in stdout.splitlines():
        key, sep, value = line.strip().partition("=")
        if sep:
            found[key] = value == "yes"
    return found


def inspect_image(recipe: BuildRecipe, tag: str) -> ImageInspection:
    """Check the runtime image carries the artifact and nothing from the build stage."""
    docker = find_docker()
    inspection = ImageInspection(tag=tag)
    cwd = Path.cwd()

    meta = run_command([docker, "image", "inspect", tag], cwd=cwd, check=False)
    if not meta.ok:
        inspection.checks.append(CheckItem("image_exists", "fail", f"image not found: {tag}"))
        return inspection

    config = json.loads(meta.stdout)[0].get("Config", {})
    entry = (config.get("Entrypoint") or []) + (config.get("Cmd") or [])
    if entry == [recipe.artifact_path]:
        inspection.checks.append(CheckItem("entrypoint", "pass", f"runs {recipe.artifact_path}"))
    else:
        inspection.checks.append(CheckItem("entrypoint", "fail", f"unexpected entry point: {entry}"))

    probe = run_command(
        [docker, "run", "--rm", "--entrypoint", "/bin/sh", tag, "-c", _probe_script(recipe)],
        cwd=cwd,
        check=False,
    )
    if not probe.ok:
        inspection.checks.append(CheckItem("probe", "fail", f"probe failed: {probe.output_tail()}"))
        return inspection

    found = _parse_probe(probe.stdout)
    if found.get("artifact"):
        inspection.checks.append(CheckItem("artifact", "pass", f"{recipe.artifact_path} is executable"))
    else:
        inspection.checks.append(CheckItem("artifact", "fail", f"{recipe.artifact_path} missing"))

    for binary in recipe.toolchain_binaries:
        present = found.get(f"bin:{binary}", True)
        inspection.checks.append(CheckItem(
            f"no_{binary}",
            "fail" if present else "pass",
            f"toolchain binary {binary} {'present' if present else 'absent'}",
        ))
    for path in (*recipe.toolchain_paths, *recipe.source_markers):
        present = found.get(f"path:{path}", True)
        inspection.checks.append(CheckItem(
            f"no_path:{path}",
            "fail" if present else "pass",
            f"{path} {'present' if present else 'absent'}",
        ))
    return inspection
