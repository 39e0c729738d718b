"""Configuration for fleetcmd: runner settings, binary lookup and cluster files."""

from __future__ import annotations

import logging
import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

import yaml

from .colors import color_err
from .errors import BinaryNotFoundError

LOG_LEVEL_ENV = "FLEETCMD_LOG_LEVEL"
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

SHELL_ENV = "SHELL"
SSH_BIN_ENV = "SSH_BIN_PATH"

MODES = ("parallel", "sequential")


def setup_logging(level: str | None = None) -> None:
    """Configure root logging for the command line tool."""
    level = level or os.getenv(LOG_LEVEL_ENV, "WARNING")
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)


# =============================================================================
# Binary resolution
# =============================================================================

def shell_candidates(
    override: str | None = None, env: Mapping[str, str] | None = None
) -> list[str]:
    """Shells to try, in order: override, $SHELL, bash, sh."""
    env = os.environ if env is None else env
    candidates = [override, env.get(SHELL_ENV), "bash", "sh"]
    return [c for c in candidates if c]


def ssh_candidates(env: Mapping[str, str] | None = None) -> list[str]:
    """SSH clients to try, in order: $SSH_BIN_PATH, ssh."""
    env = os.environ if env is None else env
    candidates = [env.get(SSH_BIN_ENV), "ssh"]
    return [c for c in candidates if c]


def resolve_binary(
    candidates: list[str], what: str = "shell", search_path: str | None = None
) -> str:
    """Return the first candidate found on ``search_path`` (default $PATH)."""
    for candidate in candidates:
        path = shutil.which(candidate, path=search_path)
        if path:
            return path
    raise BinaryNotFoundError(what, candidates)


# =============================================================================
# Runner configuration
# =============================================================================

@dataclass
class Prefixes:
    """Prefixes for the echoed command line, stdout lines and stderr lines."""

    cmd: str = "$ "
    stdout: str = "> "
    stderr: str = field(default_factory=lambda: color_err("@err "))


@dataclass
class RunnerConfig:
    """Settings of a CommandRunner.

    Output is recorded even when muted; muting only discards what would
    have been printed.
    """

    shell_path: str | None = None
    interactive: bool = False
    login: bool = False
    record_stdout: bool = True
    record_stderr: bool = True
    mute_stdout: bool = False
    mute_stderr: bool = False
    mute_echo: bool = False
    prefix: Prefixes = field(default_factory=Prefixes)
    search_path: str | None = None
    # Seconds to keep reading pipes after a timeout kill.
    drain_timeout: float = 1.0


# =============================================================================
# Hosts
# =============================================================================

@dataclass
class HostTarget:
    """One remote host and how to reach it.

    A ``user@host`` string is split at construction; an explicit ``user``
    takes precedence over the embedded one.
    """

    host: str
    user: str | None = None
    port: int | None = None
    key: Path | None = None
    cwd: str | None = None
    interactive: bool = False

    def __post_init__(self) -> None:
        if "@" in self.host:
            user, _, host = self.host.rpartition("@")
            self.host = host
            if self.user is None and user:
                self.user = user

    @property
    def address(self) -> str:
        if self.user:
            return f"{self.user}@{self.host}"
        return self.host


# =============================================================================
# Cluster file
# =============================================================================

@dataclass
class Defaults:
    """Default values that can be overridden per host."""

    user: str | None = None
    port: int | None = None
    ssh_key: Path | None = None
    work_dir: str | None = None
    interactive: bool = False
    stop_on_error: bool = False
    timeout: float | None = None
    mode: str = "parallel"


@dataclass
class ClusterConfig:
    """A fleet of hosts and the commands to run on them."""

    hosts: list[HostTarget]
    commands: list[str]
    defaults: Defaults = field(default_factory=Defaults)
    log_dir: Path = field(default_factory=lambda: Path("logs"))
    source_path: Path | None = None  # Path to the original config file


def load_config(config_path: str | Path) -> ClusterConfig:
    """Load and validate a cluster configuration from a YAML file."""
    config_path = Path(config_path).resolve()

    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path) as f:
        raw = yaml.safe_load(f)

    if not isinstance(raw, dict):
        raise ValueError("Configuration must be a mapping")

    config = _parse_config(raw)
    config.source_path = config_path
    return config


def _parse_defaults(raw: dict[str, Any]) -> Defaults:
    """Parse the defaults section."""
    defaults_raw = raw.get("defaults") or {}
    ssh_key = defaults_raw.get("ssh_key")
    mode = defaults_raw.get("mode", "parallel")
    if mode not in MODES:
        raise ValueError(f"Unknown mode '{mode}', expected one of {MODES}")
    timeout = defaults_raw.get("timeout")
    return Defaults(
        user=defaults_raw.get("user"),
        port=defaults_raw.get("port"),
        ssh_key=Path(ssh_key).expanduser() if ssh_key else None,
        work_dir=defaults_raw.get("work_dir"),
        interactive=defaults_raw.get("interactive", False),
        stop_on_error=defaults_raw.get("stop_on_error", False),
        timeout=float(timeout) if timeout else None,
        mode=mode,
    )


def _parse_config(raw: dict[str, Any]) -> ClusterConfig:
    """Parse raw YAML data into a ClusterConfig."""
    defaults = _parse_defaults(raw)

    log_dir = Path(raw.get("log_dir", "logs")).expanduser().resolve()

    command_groups: dict[str, list[str]] = raw.get("command_groups") or {}

    hosts_raw = raw.get("hosts") or []
    if not hosts_raw:
        raise ValueError("No hosts defined in configuration")

    hosts = [_parse_host(host_raw, defaults) for host_raw in hosts_raw]

    commands = _resolve_commands(raw.get("commands") or [], command_groups)
    if not commands:
        raise ValueError("Configuration must have at least one command")

    return ClusterConfig(
        hosts=hosts,
        commands=commands,
        defaults=defaults,
        log_dir=log_dir,
    )


def _parse_host(host_raw: str | dict[str, Any], defaults: Defaults) -> HostTarget:
    """Parse a single host entry, either a bare string or a mapping."""
    if isinstance(host_raw, str):
        host_raw = {"host": host_raw}
    elif not isinstance(host_raw, dict):
        raise ValueError(f"Invalid host entry: {host_raw!r}")

    host = host_raw.get("host")
    if not host:
        raise ValueError(f"Host entry must have a 'host' field: {host_raw!r}")

    port = host_raw.get("port", defaults.port)
    if port is not None and not isinstance(port, int):
        raise ValueError(f"Host '{host}' has a non-integer port: {port!r}")

    ssh_key = defaults.ssh_key
    if "ssh_key" in host_raw:
        ssh_key = Path(host_raw["ssh_key"]).expanduser()

    # An embedded user@ beats the default user, an explicit per-host user beats both.
    user = host_raw.get("user")
    if user is None and "@" not in host:
        user = defaults.user

    return HostTarget(
        host=host,
        user=user,
        port=port,
        key=ssh_key,
        cwd=host_raw.get("work_dir", defaults.work_dir),
        interactive=host_raw.get("interactive", defaults.interactive),
    )


def _resolve_commands(
    commands_raw: list[str], command_groups: dict[str, list[str]]
) -> list[str]:
    """Resolve command group references to actual commands."""
    commands = []

    for cmd in commands_raw:
        if cmd in command_groups:
            commands.extend(command_groups[cmd])
        else:
            commands.append(cmd)

    return commands
