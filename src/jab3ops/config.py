"""Pipeline configuration and remote target secrets.

Supports .jab3ops/pipeline.toml or .jab3ops/pipeline.yaml for tuning the
verification stages and promotion behaviour. Remote target secrets are read
from the environment once, at the CLI boundary, and handed to the promotion
stage as an immutable RemoteTarget.
"""

import tomllib
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

import yaml

CONFIG_DIR = ".jab3ops"

# Secret names as exposed by the CI environment
SECRET_HOST = "SSH_HOST"
SECRET_USER = "SSH_USER"
SECRET_PRIVATE_KEY = "SSH_PRIVATE_KEY"
SECRET_WORK_DIR = "WORK_DIR"
SECRET_CARGO = "CARGO"
SECRET_SERVICE_NAME = "SERVICE_NAME"
SECRET_PORT = "SSH_PORT"

REQUIRED_SECRETS: tuple[str, ...] = (
    SECRET_HOST,
    SECRET_USER,
    SECRET_PRIVATE_KEY,
    SECRET_WORK_DIR,
    SECRET_CARGO,
    SECRET_SERVICE_NAME,
)

DEFAULT_STAGE_COMMANDS: dict[str, list[str]] = {
    "check": ["cargo", "check"],
    "fmt": ["cargo", "fmt", "--all", "--", "--check"],
    "clippy": ["cargo", "clippy", "--all-features", "--"],
    "test": ["cargo", "test", "--workspace"],
}


class ConfigError(RuntimeError):
    """Raised when configuration or secrets are missing or malformed."""


@dataclass(frozen=True)
class RemoteTarget:
    """Where and what a promotion updates. Read-only to the pipeline."""

    host: str
    user: str
    private_key: str = field(repr=False)
    work_dir: str
    build_command: str
    service_name: str
    port: int = 22

    @property
    def login(self) -> str:
        return f"{self.user}@{self.host}"


@dataclass(frozen=True)
class PipelineConfig:
    """Verification and promotion settings for one workspace."""

    stage_commands: dict[str, list[str]] = field(
        default_factory=lambda: {k: list(v) for k, v in DEFAULT_STAGE_COMMANDS.items()}
    )
    stage_toolchains: dict[str, str] = field(default_factory=dict)
    lint_severity: str = "warnings"
    stage_timeout_seconds: float | None = None
    max_parallel: int = 4
    ssh_dir: Path = field(default_factory=lambda: Path.home() / ".ssh")
    single_flight: bool = True
    lock_name: str = ".jab3ops.lock"
    connect_timeout_seconds: int = 15
    out_dir: Path = Path("out/jab3ops")

    def command_for(self, stage: str) -> list[str]:
        """Resolved argv for a stage.

        The lint severity is applied to clippy, and a pinned toolchain is
        passed to cargo as ``+toolchain`` unless the command already names one.
        """
        argv = list(self.stage_commands[stage])
        if stage == "clippy" and "-D" not in argv:
            argv.extend(["-D", self.lint_severity])
        toolchain = self.stage_toolchains.get(stage)
        if toolchain and argv[0] == "cargo" and not (len(argv) > 1 and argv[1].startswith("+")):
            argv.insert(1, f"+{toolchain}")
        return argv

    def with_toolchains(self, overrides: Mapping[str, str]) -> "PipelineConfig":
        """Copy of this config with per-stage toolchains replaced by ``overrides``."""
        for name in overrides:
            if name not in self.stage_commands:
                raise ValueError(f"unknown verification stage: {name}")
        return replace(self, stage_toolchains={**self.stage_toolchains, **overrides})

    @classmethod
    def from_dict(cls, data: dict[str, Any], workspace_root: Path | None = None) -> "PipelineConfig":
        """Parse and validate config dict into PipelineConfig."""
        verify = _section(data, "verify")
        promote = _section(data, "promote")

        stage_commands = {k: list(v) for k, v in DEFAULT_STAGE_COMMANDS.items()}
        for name, argv in _section(verify, "commands", "verify.").items():
            if name not in stage_commands:
                raise ValueError(f"unknown verification stage: {name}")
            if isinstance(argv, str):
                argv = argv.split()
            if not argv or not all(isinstance(a, str) for a in argv):
                raise ValueError(f"stage '{name}' command must be a non-empty list of strings")
            stage_commands[name] = list(argv)

        stage_toolchains: dict[str, str] = {}
        for name, toolchain in _section(verify, "toolchains", "verify.").items():
            if name not in stage_commands:
                raise ValueError(f"unknown verification stage: {name}")
            stage_toolchains[name] = str(toolchain)

        kwargs: dict[str, Any] = {"stage_commands": stage_commands, "stage_toolchains": stage_toolchains}
        if "lint_severity" in verify:
            kwargs["lint_severity"] = str(verify["lint_severity"])
        if "timeout_seconds" in verify:
            kwargs["stage_timeout_seconds"] = float(verify["timeout_seconds"])
        if "max_parallel" in verify:
            max_parallel = int(verify["max_parallel"])
            if max_parallel < 1:
                raise ValueError("verify.max_parallel must be >= 1")
            kwargs["max_parallel"] = max_parallel

        if "ssh_dir" in promote:
            kwargs["ssh_dir"] = Path(promote["ssh_dir"]).expanduser()
        if "single_flight" in promote:
            kwargs["single_flight"] = bool(promote["single_flight"])
        if "lock_name" in promote:
            kwargs["lock_name"] = str(promote["lock_name"])
        if "connect_timeout_seconds" in promote:
            kwargs["connect_timeout_seconds"] = int(promote["connect_timeout_seconds"])

        if "out_dir" in data:
            out_dir = Path(data["out_dir"])
            if workspace_root is not None and not out_dir.is_absolute():
                out_dir = workspace_root / out_dir
            kwargs["out_dir"] = out_dir
        elif workspace_root is not None:
            kwargs["out_dir"] = workspace_root / cls.out_dir

        return cls(**kwargs)


def _section(data: dict[str, Any], key: str, prefix: str = "") -> dict[str, Any]:
    value = data.get(key, {})
    if not isinstance(value, dict):
        raise TypeError(f"{prefix}{key} must be a table, got {type(value).__name__}")
    return value


def load_pipeline_config(workspace_root: Path) -> PipelineConfig:
    """Load pipeline configuration from .jab3ops/pipeline.toml or .jab3ops/pipeline.yaml.

    Priority order:
    1. .jab3ops/pipeline.toml (preferred)
    2. .jab3ops/pipeline.yaml (fallback)

    Args:
        workspace_root: Source tree root

    Returns:
        PipelineConfig from the first file found, or defaults

    Raises:
        ConfigError: If a config file is malformed or invalid
    """
    config_dir = workspace_root / CONFIG_DIR

    toml_path = config_dir / "pipeline.toml"
    if toml_path.exists():
        try:
            with open(toml_path, "rb") as f:
                data = tomllib.load(f)
            return PipelineConfig.from_dict(data, workspace_root)
        except tomllib.TOMLDecodeError as e:
            raise ConfigError(f"Malformed TOML config at {toml_path}: {e}") from e
        except (KeyError, TypeError, ValueError) as e:
            raise ConfigError(f"Invalid config structure in {toml_path}: {e}") from e

    yaml_path = config_dir / "pipeline.yaml"
    if yaml_path.exists():
        try:
            with open(yaml_path, encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
            if not isinstance(data, dict):
                raise TypeError("top level must be a mapping")
            return PipelineConfig.from_dict(data, workspace_root)
        except yaml.YAMLError as e:
            raise ConfigError(f"Malformed YAML config at {yaml_path}: {e}") from e
        except (KeyError, TypeError, ValueError) as e:
            raise ConfigError(f"Invalid config structure in {yaml_path}: {e}") from e

    return PipelineConfig.from_dict({}, workspace_root)


def remote_target_from_env(env: Mapping[str, str]) -> RemoteTarget:
    """Build the RemoteTarget from CI secrets.

    Raises:
        ConfigError: Listing every missing secret, or on a bad port
    """
    missing = [name for name in REQUIRED_SECRETS if not env.get(name, "").strip()]
    if missing:
        raise ConfigError(f"Missing required secrets: {', '.join(missing)}")

    port_raw = env.get(SECRET_PORT, "").strip() or "22"
    try:
        port = int(port_raw)
    except ValueError as e:
        raise ConfigError(f"{SECRET_PORT} must be an integer, got {port_raw!r}") from e

    return RemoteTarget(
        host=env[SECRET_HOST].strip(),
        user=env[SECRET_USER].strip(),
        private_key=env[SECRET_PRIVATE_KEY],
        work_dir=env[SECRET_WORK_DIR].strip(),
        build_command=f"{env[SECRET_CARGO].strip()} build --release",
        service_name=env[SECRET_SERVICE_NAME].strip(),
        port=port,
    )
