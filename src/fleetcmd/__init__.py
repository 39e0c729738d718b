"""fleetcmd: Run shell commands locally or across SSH hosts with prefixed, real-time output."""

from .cluster import Cluster, ClusterMember, ExecutionMode, HostResult, HostStatus, Round
from .command import CommandResult, CommandRunner
from .config import ClusterConfig, Defaults, HostTarget, Prefixes, RunnerConfig, load_config
from .errors import (
    BinaryNotFoundError,
    ClusterError,
    CommandError,
    CommandTimeoutError,
    ExecError,
    KeyFileNotFoundError,
    NoHostError,
    ResolutionError,
    RunnerStateError,
)
from .ssh import SSHCommand
from .stream import PrefixedLineStream

__all__ = [
    "Cluster",
    "ClusterMember",
    "ExecutionMode",
    "HostResult",
    "HostStatus",
    "Round",
    "CommandResult",
    "CommandRunner",
    "ClusterConfig",
    "Defaults",
    "HostTarget",
    "Prefixes",
    "RunnerConfig",
    "load_config",
    "BinaryNotFoundError",
    "ClusterError",
    "CommandError",
    "CommandTimeoutError",
    "ExecError",
    "KeyFileNotFoundError",
    "NoHostError",
    "ResolutionError",
    "RunnerStateError",
    "SSHCommand",
    "PrefixedLineStream",
]
