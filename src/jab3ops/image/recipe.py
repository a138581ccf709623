"""Dockerfile rendering for the compile + assemble image build."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path

BUILDER_STAGE = "builder"


@dataclass(frozen=True)
class BuildRecipe:
    """Inputs for the two-stage image build."""

    builder_image: str = "rust:bookworm"
    runtime_image: str = "debian:bookworm-slim"
    runtime_packages: tuple[str, ...] = ("libssl-dev", "ca-certificates")
    binary_name: str = "jab3"
    build_command: tuple[str, ...] = ("cargo", "build", "--release")
    toolchain_paths: tuple[str, ...] = field(default=("/usr/local/cargo", "/usr/local/rustup"))
    toolchain_binaries: tuple[str, ...] = ("cargo", "rustc")

    @property
    def artifact_path(self) -> str:
        """Fixed path of the binary in both stages."""
        return f"/target/release/{self.binary_name}"

    @property
    def source_markers(self) -> tuple[str, ...]:
        """Paths that only exist when the source tree leaked into the image."""
        return ("/Cargo.toml", "/Cargo.lock", "/src")


def render_dockerfile(recipe: BuildRecipe) -> str:
    """Render the multi-stage Dockerfile.

    Stage 1 compiles the full source tree with the toolchain image. Stage 2
    starts from the slim base, installs only the runtime packages and copies
    the single artifact; nothing else crosses the stage boundary.
    """
    packages = " ".join(recipe.runtime_packages)
    lines = [
        "# syntax=docker/dockerfile:1",
        f"FROM {recipe.builder_image} AS {BUILDER_STAGE}",
        "COPY . .",
        f"RUN {' '.join(recipe.build_command)}",
        "",
        f"FROM {recipe.runtime_image}",
    ]
    if packages:
        lines.append(
            "RUN apt-get update"
            f" && apt-get install -y --no-install-recommends {packages}"
            " && rm -rf /var/lib/apt/lists/*"
        )
    lines.extend([
        f"COPY --from={BUILDER_STAGE} {recipe.artifact_path} {recipe.artifact_path}",
        f"CMD {json.dumps([recipe.artifact_path])}",
        "",
    ])
    return "\n".join(lines)


def write_dockerfile(recipe: BuildRecipe, path: Path) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(render_dockerfile(recipe), encoding="utf-8")
    return path
