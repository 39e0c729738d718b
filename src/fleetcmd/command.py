"""Local shell command execution with prefixed, recorded output."""

from __future__ import annotations

import asyncio
import io
import logging
import sys
from dataclasses import dataclass
from typing import TextIO

from .config import RunnerConfig, resolve_binary, shell_candidates
from .errors import CommandError, CommandTimeoutError, RunnerStateError
from .stream import PrefixedLineStream

logger = logging.getLogger(__name__)

READ_CHUNK = 64 * 1024


@dataclass(frozen=True)
class CommandResult:
    """Captured output of one invocation.

    The buffers are the live recording buffers of the invocation's streams:
    they can be read while the command runs and are complete once ``wait``
    has returned.
    """

    command: str
    stdout_buffer: io.StringIO
    stderr_buffer: io.StringIO
    pid: int | None = None

    @property
    def stdout(self) -> str:
        return self.stdout_buffer.getvalue()

    @property
    def stderr(self) -> str:
        return self.stderr_buffer.getvalue()


class _Discard:
    """Sink for muted streams."""

    def write(self, text: str) -> int:
        return len(text)

    def flush(self) -> None:
        pass


async def _pump(reader: asyncio.StreamReader, stream: PrefixedLineStream) -> None:
    while True:
        chunk = await reader.read(READ_CHUNK)
        if not chunk:
            break
        stream.write(chunk)


class CommandRunner:
    """Runs shell commands one at a time, streaming their output.

    ``start`` spawns the command and returns at once; ``wait`` blocks until
    it exits. The runner can be reused for any number of start/wait cycles.
    """

    def __init__(
        self,
        config: RunnerConfig | None = None,
        stdout: TextIO | None = None,
        stderr: TextIO | None = None,
    ):
        self.config = config or RunnerConfig()
        # None means whatever sys.stdout/sys.stderr is when start() runs.
        self.stdout = stdout
        self.stderr = stderr
        self.shell_path: str | None = None

        self._proc: asyncio.subprocess.Process | None = None
        self._command = ""
        self._streams: tuple[PrefixedLineStream, PrefixedLineStream] | None = None
        self._readers: list[asyncio.Task] = []
        self._timer: asyncio.TimerHandle | None = None
        self._timeout: float | None = None
        self._timed_out = False
        self._killed = False
        self._result: CommandResult | None = None

    @property
    def running(self) -> bool:
        return self._proc is not None

    def resolve_shell(self) -> str:
        if self.shell_path is None:
            self.shell_path = resolve_binary(
                shell_candidates(self.config.shell_path),
                "shell",
                self.config.search_path,
            )
        return self.shell_path

    def build_args(self, command: str) -> list[str]:
        args = [self.resolve_shell()]
        if self.config.interactive:
            args.append("-i")
        if self.config.login:
            args.append("-l")
        args.extend(["-c", command])
        return args

    async def start(self, command: str, timeout: float | None = None) -> CommandResult:
        """Spawn ``command`` in the shell without waiting for it."""
        if self._proc is not None:
            raise RunnerStateError(f"command already running: {self._command}")

        args = self.build_args(command)
        cfg = self.config
        stdout = self.stdout or sys.stdout
        stderr = self.stderr or sys.stderr

        stdout_stream = PrefixedLineStream(
            _Discard() if cfg.mute_stdout else stdout, cfg.prefix.stdout, cfg.record_stdout
        )
        stderr_stream = PrefixedLineStream(
            _Discard() if cfg.mute_stderr else stderr, cfg.prefix.stderr, cfg.record_stderr
        )

        if not cfg.mute_echo:
            stdout.write(f"{cfg.prefix.cmd}{command}\n")
            stdout.flush()

        logger.debug("Spawning %s", args)
        proc = await asyncio.create_subprocess_exec(
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        logger.debug("Started pid %d: %s", proc.pid, command)

        self._proc = proc
        self._command = command
        self._streams = (stdout_stream, stderr_stream)
        self._readers = [
            asyncio.create_task(_pump(proc.stdout, stdout_stream)),
            asyncio.create_task(_pump(proc.stderr, stderr_stream)),
        ]
        self._timeout = timeout
        self._timed_out = False
        self._killed = False
        if timeout is not None and timeout > 0:
            self._timer = asyncio.get_running_loop().call_later(
                timeout, self._kill_on_timeout
            )

        self._result = CommandResult(
            command=command,
            stdout_buffer=stdout_stream.get(),
            stderr_buffer=stderr_stream.get(),
            pid=proc.pid,
        )
        return self._result

    async def wait(self) -> None:
        """Wait for the started command to exit.

        Raises CommandTimeoutError if the timeout killed it and CommandError
        for any other unsuccessful exit.
        """
        if self._proc is None:
            raise RunnerStateError("wait() called before start()")

        proc = self._proc
        try:
            returncode = await proc.wait()
            await self._drain()
        finally:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            for reader in self._readers:
                reader.cancel()
            for stream in self._streams:
                stream.close()
            self._proc = None
            self._streams = None
            self._readers = []

        if returncode == 0:
            return

        signal = -returncode if returncode < 0 else None
        if self._timed_out:
            raise CommandTimeoutError(
                self._command, returncode, signal, self._timeout, self._result
            )
        raise CommandError(self._command, returncode, signal, self._result)

    async def run(self, command: str, timeout: float | None = None) -> CommandResult:
        """Start ``command`` and wait for it."""
        result = await self.start(command, timeout)
        await self.wait()
        return result

    def kill(self) -> bool:
        """Send SIGKILL to the running command.

        Returns False when there was nothing to kill. ``wait`` still has to
        be called to reap the child.
        """
        if self._proc is None or self._proc.returncode is not None:
            return False
        try:
            self._proc.kill()
        except ProcessLookupError:
            return False
        self._killed = True
        return True

    async def _drain(self) -> None:
        if not self._killed:
            await asyncio.gather(*self._readers)
            return
        # Grandchildren of a killed shell may keep the pipes open.
        done, pending = await asyncio.wait(
            self._readers, timeout=self.config.drain_timeout
        )
        if pending:
            logger.debug("Abandoning %d output reader(s) of pid %d", len(pending), self._proc.pid)
        for task in done:
            task.result()

    def _kill_on_timeout(self) -> None:
        self._timer = None
        if self.kill():
            self._timed_out = True
            logger.warning(
                "Killed pid %d after %ss timeout: %s", self._proc.pid, self._timeout, self._command
            )
