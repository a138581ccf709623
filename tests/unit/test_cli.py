"""CLI tests via typer's CliRunner."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from jab3ops.cli import EXIT_CONFIG, EXIT_FAILED, EXIT_REFUSED, cli
from jab3ops.exec import ExecResult
from jab3ops.promotion import Promoter
from jab3ops.pipeline.report import RUN_JSON

RUNNER = CliRunner()

SECRETS = {
    "SSH_HOST": "deploy.example.net",
    "SSH_USER": "jab",
    "SSH_PRIVATE_KEY": "KEY",
    "WORK_DIR": "/srv/jab3",
    "CARGO": "cargo",
    "SERVICE_NAME": "jab3",
}


def _cargo(failing: str | None = None):
    def _run(argv, *, cwd, check=True, env=None, input_text=None, timeout=None):
        code = 1 if failing and failing in argv else 0
        return ExecResult(argv=tuple(argv), cwd=cwd, returncode=code, stdout="", stderr="bad" if code else "")

    return _run


@pytest.fixture
def workspace(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    monkeypatch.chdir(tmp_path)
    for name in SECRETS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.delenv("GITHUB_REF_NAME", raising=False)
    return tmp_path


def _run_dirs(workspace: Path) -> list[Path]:
    return sorted((workspace / "out" / "jab3ops" / "runs").iterdir())


def test_version() -> None:
    result = RUNNER.invoke(cli, ["version"])
    assert result.exit_code == 0
    assert result.stdout.strip() == "0.1.0"


def test_verify_passes(workspace: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("jab3ops.verify.runner.run_command", _cargo())
    result = RUNNER.invoke(cli, ["verify", "--workspace", str(workspace), "--ref", "main"])
    assert result.exit_code == 0, result.stdout
    data = json.loads((_run_dirs(workspace)[0] / RUN_JSON).read_text(encoding="utf-8"))
    assert [s["name"] for s in data["stages"]] == ["check", "fmt", "clippy", "test"]


def test_verify_single_stage_failure(workspace: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("jab3ops.verify.runner.run_command", _cargo(failing="fmt"))
    result = RUNNER.invoke(cli, ["verify", "--workspace", str(workspace), "--stage", "fmt"])
    assert result.exit_code == EXIT_FAILED
    assert "Format check" in result.stdout


def test_pipeline_push_needs_no_secrets(workspace: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("jab3ops.verify.runner.run_command", _cargo())
    result = RUNNER.invoke(
        cli, ["pipeline", "--workspace", str(workspace), "--trigger", "push", "--ref", "main"]
    )
    assert result.exit_code == 0, result.stdout
    assert "never promotes" in result.stdout


def test_pipeline_dispatch_requires_secrets(workspace: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("jab3ops.verify.runner.run_command", _cargo())
    result = RUNNER.invoke(
        cli, ["pipeline", "--workspace", str(workspace), "--trigger", "workflow_dispatch", "--ref", "main"]
    )
    assert result.exit_code == EXIT_CONFIG
    assert "SSH_HOST" in result.stdout


def test_promote_dry_run(workspace: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    for name, value in SECRETS.items():
        monkeypatch.setenv(name, value)
    result = RUNNER.invoke(cli, ["promote", "--dry-run", "--ref", "main", "--workspace", str(workspace)])
    assert result.exit_code == 0, result.stdout
    output = " ".join(result.stdout.split())
    assert "cd /srv/jab3 && git checkout -f main && git pull && cargo build --release && systemctl restart jab3" in output
    assert not (workspace / "out").exists()


def test_promote_refuses_unverified_run(workspace: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("jab3ops.verify.runner.run_command", _cargo(failing="clippy"))
    RUNNER.invoke(
        cli, ["verify", "--workspace", str(workspace), "--trigger", "workflow_dispatch", "--ref", "main"]
    )
    for name, value in SECRETS.items():
        monkeypatch.setenv(name, value)

    def _no_ssh(*args, **kwargs):
        raise AssertionError("promotion must not start")

    monkeypatch.setattr("jab3ops.cli.Promoter.run", _no_ssh)
    result = RUNNER.invoke(
        cli, ["promote", "--run-dir", str(_run_dirs(workspace)[0]), "--workspace", str(workspace)]
    )
    assert result.exit_code == EXIT_REFUSED
    assert "clippy" in result.stdout


def test_promote_refuses_ref_mismatch(workspace: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("jab3ops.verify.runner.run_command", _cargo())
    RUNNER.invoke(
        cli, ["verify", "--workspace", str(workspace), "--trigger", "workflow_dispatch", "--ref", "main"]
    )
    for name, value in SECRETS.items():
        monkeypatch.setenv(name, value)
    result = RUNNER.invoke(
        cli,
        ["promote", "--run-dir", str(_run_dirs(workspace)[0]), "--ref", "other", "--workspace", str(workspace)],
    )
    assert result.exit_code == EXIT_REFUSED


def test_image_render(workspace: Path) -> None:
    result = RUNNER.invoke(cli, ["image", "render", "--dest", str(workspace / "Dockerfile")])
    assert result.exit_code == 0
    assert "FROM debian:bookworm-slim" in (workspace / "Dockerfile").read_text(encoding="utf-8")


def test_workflows_render(workspace: Path) -> None:
    result = RUNNER.invoke(cli, ["workflows", "render", "--dest", str(workspace / "wf")])
    assert result.exit_code == 0
    assert (workspace / "wf" / "check-and-deploy.yml").exists()
    assert (workspace / "wf" / "manual_deploy.yml").exists()


class _RemoteRecorder:
    """Stands in for the SSH session; every remote command exits 0."""

    def __init__(self):
        self.commands: list[str] = []
        self.closed = False

    def open(self) -> None:
        pass

    def run(self, command: str) -> tuple[ExecResult, float]:
        self.commands.append(command)
        return ExecResult(argv=("ssh",), cwd=Path("/"), returncode=0, stdout="", stderr=""), 0.01

    def close(self) -> None:
        self.closed = True


def test_promote_verified_dispatch_run(workspace: Path, monkeypatch: pytest.MonkeyPatch, keyscan_ok) -> None:
    (workspace / ".jab3ops").mkdir()
    (workspace / ".jab3ops" / "pipeline.toml").write_text(
        f'[promote]\nssh_dir = "{workspace / "ssh"}"\n', encoding="utf-8"
    )
    monkeypatch.setattr("jab3ops.verify.runner.run_command", _cargo())
    RUNNER.invoke(
        cli, ["verify", "--workspace", str(workspace), "--trigger", "workflow_dispatch", "--ref", "main"]
    )
    run_dir = _run_dirs(workspace)[0]
    for name, value in SECRETS.items():
        monkeypatch.setenv(name, value)

    remote = _RemoteRecorder()
    monkeypatch.setattr(
        "jab3ops.cli.Promoter",
        lambda target, config, **kwargs: Promoter(
            target, config, session_factory=lambda *_: remote, **kwargs
        ),
    )
    result = RUNNER.invoke(
        cli, ["promote", "--run-dir", str(run_dir), "--ref", "main", "--workspace", str(workspace)]
    )

    assert result.exit_code == 0, result.stdout
    assert "Promotion completed" in result.stdout
    assert [c for c in remote.commands if "mkdir" not in c and "rm -rf" not in c] == [
        "cd /srv/jab3 && git checkout -f main",
        "cd /srv/jab3 && git pull",
        "cd /srv/jab3 && cargo build --release",
        "cd /srv/jab3 && systemctl restart jab3",
    ]
    assert remote.closed
    assert not (workspace / "ssh").exists()

    data = json.loads((run_dir / RUN_JSON).read_text(encoding="utf-8"))
    assert data["status"] == "passed"
    assert data["promotion"]["status"] == "passed"
    assert data["promotion"]["final_state"] == "credentials_cleaned"
    assert [s["step"] for s in data["promotion"]["steps"]] == ["checkout", "pull", "build", "restart"]


def test_verify_malformed_config_section(workspace: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    (workspace / ".jab3ops").mkdir()
    (workspace / ".jab3ops" / "pipeline.toml").write_text('verify = "fast"\n', encoding="utf-8")

    def _no_cargo(*args, **kwargs):
        raise AssertionError("stages must not run")

    monkeypatch.setattr("jab3ops.verify.runner.run_command", _no_cargo)
    result = RUNNER.invoke(cli, ["verify", "--workspace", str(workspace)])
    assert result.exit_code == EXIT_CONFIG
    assert "verify must be a table" in result.stdout


def test_verify_stage_toolchain(workspace: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    seen: list[list[str]] = []
    cargo = _cargo()

    def _recording(argv, **kwargs):
        seen.append(list(argv))
        return cargo(argv, **kwargs)

    monkeypatch.setattr("jab3ops.verify.runner.run_command", _recording)
    result = RUNNER.invoke(
        cli, ["verify", "--workspace", str(workspace), "--stage", "fmt", "--toolchain", "fmt=nightly"]
    )
    assert result.exit_code == 0, result.stdout
    assert seen == [["cargo", "+nightly", "fmt", "--all", "--", "--check"]]


@pytest.mark.parametrize("value", ["nightly", "bench=nightly"])
def test_verify_bad_toolchain_option(workspace: Path, value: str) -> None:
    result = RUNNER.invoke(cli, ["verify", "--workspace", str(workspace), "--toolchain", value])
    assert result.exit_code == EXIT_CONFIG


def test_workflows_render_rejects_bare_package_name(workspace: Path) -> None:
    result = RUNNER.invoke(
        cli, ["workflows", "render", "--dest", str(workspace / "wf"), "--install-spec", "jab3ops"]
    )
    assert result.exit_code == EXIT_CONFIG
    assert not (workspace / "wf").exists()
