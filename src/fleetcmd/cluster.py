"""Run one command across a fixed, ordered list of hosts."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Callable, Sequence, TextIO

from .command import CommandResult
from .config import HostTarget, RunnerConfig
from .errors import ClusterError, CommandError, ExecError, RunnerStateError
from .ssh import SSHCommand

logger = logging.getLogger(__name__)


class ExecutionMode(Enum):
    """How a round visits the hosts."""

    PARALLEL = "parallel"
    SEQUENTIAL = "sequential"


class HostStatus(Enum):
    """Status of one host within a round."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"


@dataclass
class HostResult:
    """Outcome of a round on a single host."""

    host: str
    index: int
    error: BaseException | None = None
    result: CommandResult | None = None
    status: HostStatus = HostStatus.PENDING
    phase: str | None = None  # "start", "wait" or "run" when error is set

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class ClusterMember:
    """A host and the adapter that runs commands on it."""

    target: HostTarget
    cmd: SSHCommand
    # The host's own working directory, used when the cluster has no override.
    base_cwd: str | None = None

    @property
    def host(self) -> str:
        return self.target.host


@dataclass
class Round:
    """One command run across the cluster.

    ``results`` follows the order of the cluster's host list. ``error`` is
    the summary error: the first failing host in list order.

    ``pending`` holds reaper tasks for hosts still running when a
    stop-on-error wait returned early; ``Cluster.settle`` awaits them.
    """

    command: str
    mode: ExecutionMode
    results: list[HostResult] = field(default_factory=list)
    waited: bool = False
    pending: list[asyncio.Task] = field(default_factory=list, repr=False)
    _failure: HostResult | None = field(default=None, repr=False)

    @property
    def error(self) -> BaseException | None:
        return self._failure.error if self._failure else None

    @property
    def ok(self) -> bool:
        return self._failure is None

    @property
    def failed(self) -> list[HostResult]:
        return [r for r in self.results if r.error is not None]

    def raise_for_error(self) -> None:
        """Raise ClusterError for the summary error, if any."""
        failure = self._failure
        if failure is not None:
            raise ClusterError(failure.host, failure.phase, failure.error) from failure.error


# Type alias for status callback
StatusCallback = Callable[[str, HostStatus], None]  # (host, status) -> None


class Cluster:
    """Runs commands on every host of an ordered host list.

    One SSHCommand is created per list entry at construction, so a host
    listed twice gets two independent adapters. A cluster is not safe for
    concurrent rounds; each round replaces ``last_round``.
    """

    def __init__(
        self,
        hosts: Sequence[str | HostTarget],
        stop_on_error: bool = False,
        config: RunnerConfig | None = None,
        ssh_bin: str | None = None,
        stdout: TextIO | None = None,
        stderr: TextIO | None = None,
        on_status: StatusCallback | None = None,
    ):
        self.stop_on_error = stop_on_error
        self.on_status = on_status
        # Overrides every host's own working directory while set.
        self.cwd: str | None = None
        self.last_round: Round | None = None

        self.members: list[ClusterMember] = []
        for entry in hosts:
            target = HostTarget(entry) if isinstance(entry, str) else replace(entry)
            cmd = SSHCommand(target, config, ssh_bin=ssh_bin, stdout=stdout, stderr=stderr)
            self.members.append(ClusterMember(target, cmd, target.cwd))

    @property
    def hosts(self) -> list[str]:
        return [member.host for member in self.members]

    async def run(
        self,
        command: str,
        timeout: float | None = None,
        mode: ExecutionMode = ExecutionMode.PARALLEL,
    ) -> Round:
        if mode is ExecutionMode.SEQUENTIAL:
            return await self.run_sequential(command, timeout)
        return await self.run_all(command, timeout)

    async def run_all(self, command: str, timeout: float | None = None) -> Round:
        """Start ``command`` on all hosts at once and wait for all of them."""
        rnd = await self.start_all(command, timeout)
        return await self.wait_all(rnd)

    async def start_all(self, command: str, timeout: float | None = None) -> Round:
        """Start ``command`` on every host without waiting.

        With stop_on_error the first start failure ends the round; hosts
        after it are left out of the results. Pass the returned round to
        ``wait_all`` to reap the hosts that did start.
        """
        await self.settle()
        rnd = self._new_round(command, ExecutionMode.PARALLEL)

        for index, member in enumerate(self.members):
            self._apply_cwd(member)
            result = HostResult(member.host, index)
            rnd.results.append(result)

            try:
                result.result = await member.cmd.start(command, timeout)
            except (ExecError, OSError) as e:
                self._fail(rnd, result, e, "start")
                if self.stop_on_error:
                    return rnd
                continue

            self._emit_status(result, HostStatus.RUNNING)

        return rnd

    async def wait_all(self, rnd: Round | None = None) -> Round:
        """Wait for every started host of ``rnd`` in host order.

        With stop_on_error the first failure in host order ends the wait.
        Hosts after it keep running; their outcome is recorded in the
        background and collected by ``settle``.
        """
        rnd = rnd or self.last_round
        if rnd is None:
            raise RunnerStateError("wait_all() called before start_all()")
        if rnd.waited:
            raise RunnerStateError("round has already been waited")

        stopped = False
        for result in rnd.results:
            if result.error is not None:
                stopped = stopped or self.stop_on_error
                continue

            if stopped:
                rnd.pending.append(asyncio.create_task(self._reap(rnd, result)))
                continue

            await self._wait_one(rnd, result)
            if result.error is not None and self.stop_on_error:
                stopped = True

        rnd.waited = True
        self._summarize(rnd)
        return rnd

    async def settle(self, rnd: Round | None = None) -> None:
        """Wait for hosts a stop-on-error ``wait_all`` left running."""
        rnd = rnd or self.last_round
        if rnd is None or not rnd.pending:
            return
        pending, rnd.pending = rnd.pending, []
        await asyncio.gather(*pending)

    async def run_sequential(self, command: str, timeout: float | None = None) -> Round:
        """Run ``command`` on one host after another.

        With stop_on_error hosts after the first failure are never tried.
        """
        await self.settle()
        rnd = self._new_round(command, ExecutionMode.SEQUENTIAL)

        for index, member in enumerate(self.members):
            self._apply_cwd(member)
            result = HostResult(member.host, index)
            rnd.results.append(result)
            self._emit_status(result, HostStatus.RUNNING)

            try:
                result.result = await member.cmd.run(command, timeout)
            except (ExecError, OSError) as e:
                self._fail(rnd, result, e, "run")
                if self.stop_on_error:
                    break
                continue

            self._emit_status(result, HostStatus.SUCCESS)

        rnd.waited = True
        self._summarize(rnd)
        return rnd

    def _new_round(self, command: str, mode: ExecutionMode) -> Round:
        rnd = Round(command=command, mode=mode)
        self.last_round = rnd
        logger.info("Running on %d host(s) (%s): %s", len(self.members), mode.value, command)
        return rnd

    def _apply_cwd(self, member: ClusterMember) -> None:
        member.cmd.cwd = self.cwd if self.cwd is not None else member.base_cwd

    async def _wait_one(self, rnd: Round, result: HostResult) -> None:
        try:
            await self.members[result.index].cmd.wait()
        except ExecError as e:
            self._fail(rnd, result, e, "wait")
        else:
            self._emit_status(result, HostStatus.SUCCESS)

    async def _reap(self, rnd: Round, result: HostResult) -> None:
        # Runs after the summary is fixed, so only the host's own result changes.
        await self._wait_one(rnd, result)
        logger.debug("%s: reaped after stop (%s)", result.host, result.status.value)

    def _fail(self, rnd: Round, result: HostResult, error: BaseException, phase: str) -> None:
        result.error = error
        result.phase = phase
        if result.result is None and isinstance(error, CommandError):
            result.result = error.result
        if rnd._failure is None:
            rnd._failure = result
        logger.warning("%s: %s failed: %s", result.host, phase, error)
        self._emit_status(result, HostStatus.FAILED)

    def _summarize(self, rnd: Round) -> None:
        failures = [r for r in rnd.results if r.error is not None]
        rnd._failure = failures[0] if failures else None
        failed, running = len(rnd.failed), len(rnd.pending)
        logger.info(
            "Round finished: %d ok, %d failed, %d still running",
            len(rnd.results) - failed - running, failed, running,
        )

    def _emit_status(self, result: HostResult, status: HostStatus) -> None:
        result.status = status
        if self.on_status:
            self.on_status(result.host, status)
