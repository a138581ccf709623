"""Tests for Dockerfile rendering."""

from __future__ import annotations

from pathlib import Path

from jab3ops.image.recipe import BuildRecipe, render_dockerfile, write_dockerfile


def _stages(dockerfile: str) -> list[list[str]]:
    stages: list[list[str]] = []
    for line in dockerfile.splitlines():
        if line.startswith("FROM "):
            stages.append([])
        if stages and line.strip():
            stages[-1].append(line)
    return stages


def test_renders_two_stages() -> None:
    builder, runtime = _stages(render_dockerfile(BuildRecipe()))
    assert builder[0] == "FROM rust:bookworm AS builder"
    assert "COPY . ." in builder
    assert "RUN cargo build --release" in builder
    assert runtime[0] == "FROM debian:bookworm-slim"


def test_runtime_stage_copies_only_the_artifact() -> None:
    _, runtime = _stages(render_dockerfile(BuildRecipe()))
    copies = [line for line in runtime if line.startswith("COPY")]
    assert copies == ["COPY --from=builder /target/release/jab3 /target/release/jab3"]
    assert runtime[-1] == 'CMD ["/target/release/jab3"]'


def test_runtime_stage_installs_tls_and_ca_roots() -> None:
    _, runtime = _stages(render_dockerfile(BuildRecipe()))
    install = next(line for line in runtime if line.startswith("RUN"))
    assert "libssl-dev" in install
    assert "ca-certificates" in install
    assert "rm -rf /var/lib/apt/lists/*" in install
    assert "cargo" not in install


def test_custom_binary_name(tmp_path: Path) -> None:
    path = write_dockerfile(BuildRecipe(binary_name="jab3-bot"), tmp_path / "docker" / "Dockerfile")
    text = path.read_text(encoding="utf-8")
    assert 'CMD ["/target/release/jab3-bot"]' in text
    assert text.startswith("# syntax=docker/dockerfile:1\n")
