"""Remote command execution through the OpenSSH client binary."""

from __future__ import annotations

import logging
import shlex
from dataclasses import replace
from pathlib import Path
from typing import TextIO

from .colors import color, color_err
from .command import CommandResult, CommandRunner
from .config import HostTarget, RunnerConfig, resolve_binary, ssh_candidates
from .errors import KeyFileNotFoundError, NoHostError

logger = logging.getLogger(__name__)

# Commands containing this need a terminal for the password prompt.
SUDO = "sudo"


def quote(command: str) -> str:
    """Single-quote ``command`` for one more round of shell evaluation."""
    return "'" + command.replace("'", "'\\''") + "'"


def remote_dir(path: str) -> str:
    """Quote a remote directory, leaving a leading ``~`` for the remote shell."""
    if path == "~" or path.startswith("~/"):
        rest = path[2:]
        return "~/" + shlex.quote(rest) if rest else "~"
    return shlex.quote(path)


class SSHCommand:
    """A CommandRunner that runs its commands on ``target`` over ssh.

    The ssh invocation is built locally and executed by the wrapped runner
    through the local shell, so the same start/wait/run contract applies.
    """

    def __init__(
        self,
        target: str | HostTarget,
        config: RunnerConfig | None = None,
        ssh_bin: str | None = None,
        stdout: TextIO | None = None,
        stderr: TextIO | None = None,
    ):
        if isinstance(target, str):
            target = HostTarget(target)
        self.target = target
        self.ssh_bin = ssh_bin

        config = replace(config) if config else RunnerConfig()
        tag = color(target.host)
        config.prefix = replace(
            config.prefix, stdout=tag + " ", stderr=tag + color_err("@err ")
        )
        self.cmd = CommandRunner(config, stdout=stdout, stderr=stderr)

    @property
    def host(self) -> str:
        return self.target.host

    @property
    def cwd(self) -> str | None:
        return self.target.cwd

    @cwd.setter
    def cwd(self, value: str | None) -> None:
        self.target.cwd = value

    def resolve_ssh(self) -> str:
        if self.ssh_bin is None:
            self.ssh_bin = resolve_binary(
                ssh_candidates(), "ssh", self.cmd.config.search_path
            )
        return self.ssh_bin

    def build_args(self, command: str) -> list[str]:
        """Turn ``command`` into ssh client arguments quoted for the local shell."""
        target = self.target
        args = [shlex.quote(self.resolve_ssh()), target.address]

        if target.interactive or SUDO in command:
            args.append("-tt")
        if target.port:
            args.extend(["-p", str(target.port)])
        if target.key:
            key = Path(target.key).expanduser()
            if not key.exists():
                raise KeyFileNotFoundError(str(key))
            args.extend(["-i", shlex.quote(str(key))])
        if target.cwd:
            command = f"cd {remote_dir(target.cwd)} && {command}"

        args.append(quote(command))
        return args

    async def start(self, command: str, timeout: float | None = None) -> CommandResult:
        if not self.target.host:
            raise NoHostError()

        args = self.build_args(command)
        logger.debug("%s: %s", self.host, args)
        return await self.cmd.start(" ".join(args), timeout)

    async def wait(self) -> None:
        await self.cmd.wait()

    def kill(self) -> bool:
        return self.cmd.kill()

    async def run(self, command: str, timeout: float | None = None) -> CommandResult:
        result = await self.start(command, timeout)
        await self.wait()
        return result
