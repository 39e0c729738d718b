"""Exceptions raised by fleetcmd."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .command import CommandResult


class ExecError(Exception):
    """Base class for every fleetcmd error."""


class ResolutionError(ExecError):
    """Something needed before spawning could not be found."""


class BinaryNotFoundError(ResolutionError):
    """None of the candidate executables is on the search path."""

    def __init__(self, what: str, candidates: list[str]):
        self.what = what
        self.candidates = candidates
        super().__init__(f"can't find {what} binary: {candidates}")


class KeyFileNotFoundError(ResolutionError):
    """The SSH identity file does not exist."""

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"ssh key not found: {path}")


class NoHostError(ResolutionError):
    def __init__(self) -> None:
        super().__init__("no host to run ssh command")


class RunnerStateError(ExecError, RuntimeError):
    """start/wait called out of order."""


class CommandError(ExecError):
    """The child process exited unsuccessfully.

    ``returncode`` is the raw asyncio return code, negative when the child
    was killed by a signal. ``signal`` is that signal number, or None for
    a normal non-zero exit. ``result`` is the CommandResult of the failed
    invocation when it is known.
    """

    def __init__(
        self,
        command: str,
        returncode: int,
        signal: int | None = None,
        result: CommandResult | None = None,
    ):
        self.command = command
        self.returncode = returncode
        self.signal = signal
        self.result = result
        super().__init__(self._describe())

    def _describe(self) -> str:
        if self.signal is not None:
            return f"command killed by signal {self.signal}: {self.command}"
        return f"command exited with status {self.returncode}: {self.command}"


class CommandTimeoutError(CommandError):
    """The child was killed because its timeout elapsed."""

    def __init__(
        self,
        command: str,
        returncode: int,
        signal: int | None,
        timeout: float,
        result: CommandResult | None = None,
    ):
        self.timeout = timeout
        super().__init__(command, returncode, signal, result)

    def _describe(self) -> str:
        return f"command timed out after {self.timeout}s (signal {self.signal}): {self.command}"


class ClusterError(ExecError):
    """Summary error of a cluster round, chained to the host's own error."""

    def __init__(self, host: str, phase: str, error: BaseException):
        self.host = host
        self.phase = phase
        self.error = error
        super().__init__(f"{host}: {phase} failed: {error}")
