"""Tests for image build and inspection with a stubbed docker CLI."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from jab3ops.exec import ExecResult
from jab3ops.image.builder import DockerNotFoundError, ImageBuildError, build_image, inspect_image
from jab3ops.image.recipe import BuildRecipe

CLEAN_PROBE = "\n".join([
    "artifact=yes",
    "bin:cargo=no",
    "bin:rustc=no",
    "path:/usr/local/cargo=no",
    "path:/usr/local/rustup=no",
    "path:/Cargo.toml=no",
    "path:/Cargo.lock=no",
    "path:/src=no",
])


class _DockerStub:
    def __init__(self, responses: dict[str, ExecResult]):
        self.responses = responses
        self.calls: list[list[str]] = []

    def __call__(self, argv, *, cwd, check=True, env=None, input_text=None, timeout=None):
        self.calls.append(list(argv))
        sub = argv[1] if argv[1] != "image" else "image " + argv[2]
        return self.responses[sub]


def _result(code: int = 0, stdout: str = "", stderr: str = "") -> ExecResult:
    return ExecResult(argv=("docker",), cwd=Path("/"), returncode=code, stdout=stdout, stderr=stderr)


def _inspect_payload(cmd: list[str]) -> str:
    return json.dumps([{"Config": {"Entrypoint": None, "Cmd": cmd}}])


@pytest.fixture
def docker_on_path(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("jab3ops.image.builder.shutil.which", lambda name: "/usr/bin/docker")


def test_missing_docker(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setattr("jab3ops.image.builder.shutil.which", lambda name: None)
    with pytest.raises(DockerNotFoundError):
        build_image(BuildRecipe(), context_dir=tmp_path, tag="jab3:test")


def test_build_invokes_docker_with_rendered_file(
    docker_on_path: None, monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    stub = _DockerStub({"build": _result()})
    monkeypatch.setattr("jab3ops.image.builder.run_command", stub)

    assert build_image(BuildRecipe(), context_dir=tmp_path, tag="jab3:test") == "jab3:test"
    argv = stub.calls[0]
    assert argv[:2] == ["/usr/bin/docker", "build"]
    assert argv[argv.index("-t") + 1] == "jab3:test"
    assert argv[-1] == str(tmp_path.resolve())
    assert argv[argv.index("-f") + 1].endswith("Dockerfile")


def test_compile_failure_raises(docker_on_path: None, monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    stub = _DockerStub({"build": _result(1, stderr="error[E0425]: cannot find value `x`")})
    monkeypatch.setattr("jab3ops.image.builder.run_command", stub)

    with pytest.raises(ImageBuildError, match="E0425"):
        build_image(BuildRecipe(), context_dir=tmp_path, tag="jab3:test")


def test_inspect_clean_image(docker_on_path: None, monkeypatch: pytest.MonkeyPatch) -> None:
    stub = _DockerStub({
        "image inspect": _result(stdout=_inspect_payload(["/target/release/jab3"])),
        "run": _result(stdout=CLEAN_PROBE),
    })
    monkeypatch.setattr("jab3ops.image.builder.run_command", stub)

    inspection = inspect_image(BuildRecipe(), "jab3:test")
    assert inspection.passed, [c for c in inspection.checks if c.status == "fail"]
    run_argv = stub.calls[1]
    assert run_argv[run_argv.index("--entrypoint") + 1] == "/bin/sh"


def test_inspect_flags_leaked_toolchain_and_source(docker_on_path: None, monkeypatch: pytest.MonkeyPatch) -> None:
    leaky = CLEAN_PROBE.replace("bin:cargo=no", "bin:cargo=yes").replace("path:/src=no", "path:/src=yes")
    stub = _DockerStub({
        "image inspect": _result(stdout=_inspect_payload(["/target/release/jab3"])),
        "run": _result(stdout=leaky),
    })
    monkeypatch.setattr("jab3ops.image.builder.run_command", stub)

    inspection = inspect_image(BuildRecipe(), "jab3:test")
    failed = {c.id for c in inspection.checks if c.status == "fail"}
    assert failed == {"no_cargo", "no_path:/src"}
    assert not inspection.passed


def test_inspect_wrong_entrypoint(docker_on_path: None, monkeypatch: pytest.MonkeyPatch) -> None:
    stub = _DockerStub({
        "image inspect": _result(stdout=_inspect_payload(["/bin/bash"])),
        "run": _result(stdout=CLEAN_PROBE),
    })
    monkeypatch.setattr("jab3ops.image.builder.run_command", stub)

    inspection = inspect_image(BuildRecipe(), "jab3:test")
    assert [c.id for c in inspection.checks if c.status == "fail"] == ["entrypoint"]


def test_inspect_missing_image(docker_on_path: None, monkeypatch: pytest.MonkeyPatch) -> None:
    stub = _DockerStub({"image inspect": _result(1, stderr="No such image")})
    monkeypatch.setattr("jab3ops.image.builder.run_command", stub)

    inspection = inspect_image(BuildRecipe(), "jab3:missing")
    assert not inspection.passed
    assert inspection.checks[0].id == "image_exists"
