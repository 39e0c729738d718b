"""Tests for fleetcmd.cluster module."""

import pytest

from fleetcmd.cluster import Cluster, ExecutionMode, HostStatus
from fleetcmd.config import HostTarget, RunnerConfig
from fleetcmd.errors import (
    BinaryNotFoundError,
    ClusterError,
    CommandError,
    CommandTimeoutError,
    RunnerStateError,
)

DUMMY_HOSTS = ["localhost", "127.0.0.1"]


def make_cluster(sinks, hosts=DUMMY_HOSTS, **kwargs) -> Cluster:
    stdout, stderr = sinks
    return Cluster(
        hosts, config=RunnerConfig(drain_timeout=0.2), stdout=stdout, stderr=stderr, **kwargs
    )


class TestConstruction:
    """Tests for Cluster construction."""

    def test_one_adapter_per_entry(self, sinks):
        """Duplicate hosts get independent adapters."""
        cluster = make_cluster(sinks, hosts=["a", "a", "b"])

        assert cluster.hosts == ["a", "a", "b"]
        assert cluster.members[0].cmd is not cluster.members[1].cmd

    def test_user_split(self, sinks):
        cluster = make_cluster(sinks, hosts=["deploy@web1"])
        assert cluster.members[0].target.user == "deploy"
        assert cluster.hosts == ["web1"]

    def test_targets_copied(self, sinks):
        """Setting cwd on the cluster does not touch the caller's targets."""
        target = HostTarget("web1")
        cluster = make_cluster(sinks, hosts=[target])
        cluster.cwd = "/tmp"
        cluster._apply_cwd(cluster.members[0])
        assert target.cwd is None


class TestRunAll:
    """Tests for parallel rounds."""

    @pytest.mark.asyncio
    async def test_run_all(self, sinks, fake_ssh):
        cluster = make_cluster(sinks)

        rnd = await cluster.run_all("VAR=world; echo Parallel stdout $VAR; echo Parallel stderr $VAR >&2")

        assert rnd.error is None
        assert rnd.ok
        assert len(rnd.results) == len(DUMMY_HOSTS)
        assert [r.host for r in rnd.results] == DUMMY_HOSTS
        for res in rnd.results:
            assert res.error is None
            assert res.status is HostStatus.SUCCESS
            assert res.result.stdout == "Parallel stdout world\n"
            assert res.result.stderr == "Parallel stderr world\n"

    @pytest.mark.asyncio
    async def test_echo_hi(self, sinks, fake_ssh):
        cluster = make_cluster(sinks)
        rnd = await cluster.run("echo hi")
        assert rnd.error is None
        assert [r.result.stdout for r in rnd.results] == ["hi\n", "hi\n"]

    @pytest.mark.asyncio
    async def test_start_and_wait(self, sinks, fake_ssh):
        """start_all returns a round that wait_all completes."""
        cluster = make_cluster(sinks)

        rnd = await cluster.start_all("echo 'Hello, World!'")
        assert not rnd.waited
        assert all(r.status is HostStatus.RUNNING for r in rnd.results)
        assert cluster.last_round is rnd

        await cluster.wait_all(rnd)

        assert rnd.waited
        assert rnd.error is None
        for res in rnd.results:
            assert res.result.stdout == "Hello, World!\n"

    @pytest.mark.asyncio
    async def test_wait_all_defaults_to_last_round(self, sinks, fake_ssh):
        cluster = make_cluster(sinks)
        await cluster.start_all("true")
        rnd = await cluster.wait_all()
        assert rnd is cluster.last_round
        assert rnd.ok

    @pytest.mark.asyncio
    async def test_wait_all_twice(self, sinks, fake_ssh):
        cluster = make_cluster(sinks)
        rnd = await cluster.run_all("true")
        with pytest.raises(RunnerStateError):
            await cluster.wait_all(rnd)

    @pytest.mark.asyncio
    async def test_wait_all_without_round(self, sinks):
        cluster = make_cluster(sinks)
        with pytest.raises(RunnerStateError):
            await cluster.wait_all()

    @pytest.mark.asyncio
    async def test_error_on_every_host(self, sinks, fake_ssh):
        cluster = make_cluster(sinks)

        rnd = await cluster.run_all("nonexistent-binary")

        assert isinstance(rnd.error, CommandError)
        assert len(rnd.results) == len(DUMMY_HOSTS)
        for res in rnd.results:
            assert res.error is not None
            assert res.status is HostStatus.FAILED
            assert "nonexistent-binary" in res.result.stderr

    @pytest.mark.asyncio
    async def test_first_host_in_list_wins(self, sinks, fake_ssh):
        """The summary error is the first failing host in list order."""
        cluster = make_cluster(sinks, hosts=["first", HostTarget("second", cwd="/i-am-nowhere")])

        rnd = await cluster.run_all("sleep 0.3; exit 4")

        assert rnd.error is rnd.results[0].error
        assert rnd.results[0].error.returncode == 4
        assert rnd.results[1].error is not None
        assert rnd.results[1].error is not rnd.error

    @pytest.mark.asyncio
    async def test_timeout(self, sinks, fake_ssh):
        cluster = make_cluster(sinks)

        rnd = await cluster.run_all("sleep 3; echo OK", timeout=0.5)
        assert isinstance(rnd.error, CommandTimeoutError)
        for res in rnd.results:
            assert isinstance(res.error, CommandTimeoutError)

        rnd = await cluster.run_all("sleep 0.2; echo OK", timeout=3)
        assert rnd.error is None

    @pytest.mark.asyncio
    async def test_cwd(self, sinks, fake_ssh):
        cluster = make_cluster(sinks)
        cluster.cwd = "/tmp"

        rnd = await cluster.run_all("pwd")

        assert [r.result.stdout for r in rnd.results] == ["/tmp\n", "/tmp\n"]

    @pytest.mark.asyncio
    async def test_cwd_override_cleared(self, sinks, fake_ssh):
        """Clearing the override brings back each host's own directory."""
        cluster = make_cluster(sinks, hosts=[HostTarget("a", cwd="/"), "b"])

        cluster.cwd = "/tmp"
        rnd = await cluster.run_all("pwd")
        assert [r.result.stdout for r in rnd.results] == ["/tmp\n", "/tmp\n"]

        cluster.cwd = None
        rnd = await cluster.run_all("pwd")
        assert rnd.results[0].result.stdout == "/\n"
        assert cluster.members[1].cmd.cwd is None

    @pytest.mark.asyncio
    async def test_rounds_are_independent(self, sinks, fake_ssh):
        """A second round does not carry data from the first."""
        cluster = make_cluster(sinks)

        first = await cluster.run_all("echo same")
        second = await cluster.run_all("echo same")

        assert first is not second
        assert cluster.last_round is second
        for a, b in zip(first.results, second.results):
            assert a.result.stdout == b.result.stdout == "same\n"
            assert a.result.stdout_buffer is not b.result.stdout_buffer

    @pytest.mark.asyncio
    async def test_start_errors_recorded(self, sinks, fake_ssh, tmp_path):
        """Without stop_on_error every host is attempted."""
        hosts = [HostTarget("a", key=tmp_path / "missing"), HostTarget("b")]
        cluster = make_cluster(sinks, hosts=hosts)

        rnd = await cluster.run_all("echo ok")

        assert len(rnd.results) == 2
        assert rnd.results[0].phase == "start"
        assert rnd.results[0].result is None
        assert rnd.results[1].error is None
        assert rnd.results[1].result.stdout == "ok\n"
        assert rnd.error is rnd.results[0].error

    @pytest.mark.asyncio
    async def test_raise_for_error(self, sinks, fake_ssh):
        cluster = make_cluster(sinks)
        rnd = await cluster.run_all("exit 1")

        with pytest.raises(ClusterError) as exc_info:
            rnd.raise_for_error()

        assert exc_info.value.host == "localhost"
        assert exc_info.value.phase == "wait"
        assert exc_info.value.__cause__ is rnd.results[0].error


class TestStopOnError:
    """Tests for stop_on_error rounds."""

    @pytest.mark.asyncio
    async def test_start_failure_truncates(self, sinks, monkeypatch, tmp_path):
        """A start failure ends the round; later hosts are left out."""
        monkeypatch.setenv("SSH_BIN_PATH", "no-such-ssh")
        monkeypatch.setenv("PATH", str(tmp_path))
        cluster = make_cluster(sinks, stop_on_error=True)

        rnd = await cluster.start_all("echo hi")

        assert len(rnd.results) == 1
        assert isinstance(rnd.error, BinaryNotFoundError)

        await cluster.wait_all(rnd)
        assert isinstance(rnd.error, BinaryNotFoundError)

    @pytest.mark.asyncio
    async def test_wait_failure_leaves_rest_running(self, sinks, fake_ssh, tmp_path):
        """Hosts after the first failure finish on their own and keep their own outcome."""
        bad_dir = tmp_path / "bad"
        bad_dir.mkdir()
        (bad_dir / "fail").touch()
        hosts = [HostTarget("bad", cwd=str(bad_dir)), HostTarget("good", cwd=str(tmp_path))]
        cluster = make_cluster(sinks, hosts=hosts, stop_on_error=True)

        rnd = await cluster.run_all("test -e fail && exit 3; sleep 0.5; echo done")

        assert rnd.results[0].status is HostStatus.FAILED
        assert rnd.error is rnd.results[0].error
        assert rnd.results[1].status is HostStatus.RUNNING
        assert len(rnd.pending) == 1

        await cluster.settle(rnd)

        good = rnd.results[1]
        assert good.status is HostStatus.SUCCESS
        assert good.error is None
        assert good.result.stdout == "done\n"
        assert rnd.error is rnd.results[0].error
        assert not cluster.members[1].cmd.cmd.running

    @pytest.mark.asyncio
    async def test_next_round_reaps_leftovers(self, sinks, fake_ssh):
        """A new round waits for hosts the previous round left running."""
        hosts = [HostTarget("bad", cwd="/i-am-nowhere"), HostTarget("busy")]
        cluster = make_cluster(sinks, hosts=hosts, stop_on_error=True)

        first = await cluster.run_all("sleep 0.3; echo first")
        second = await cluster.run_all("echo second")
        await cluster.settle()

        assert first.pending == []
        assert first.results[1].result.stdout == "first\n"
        assert first.results[1].status is HostStatus.SUCCESS
        assert second.results[1].result.stdout == "second\n"

    @pytest.mark.asyncio
    async def test_sequential_stops(self, sinks, fake_ssh):
        """run_sequential never tries hosts after the failing one."""
        hosts = [HostTarget("a", cwd="/i-am-nowhere"), "b"]
        cluster = make_cluster(sinks, hosts=hosts, stop_on_error=True)

        rnd = await cluster.run_sequential("echo reached")

        assert len(rnd.results) == 1
        assert rnd.results[0].host == "a"
        assert rnd.error is rnd.results[0].error
        assert rnd.results[0].phase == "run"

    @pytest.mark.asyncio
    async def test_sequential_timeout(self, sinks, fake_ssh):
        cluster = make_cluster(sinks, stop_on_error=True)

        rnd = await cluster.run_sequential("sleep 3; echo OK", timeout=0.5)
        assert isinstance(rnd.error, CommandTimeoutError)
        assert len(rnd.results) == 1

        rnd = await cluster.run_sequential("sleep 0.2; echo OK", timeout=3)
        assert rnd.error is None
        assert len(rnd.results) == 2


class TestRunSequential:
    """Tests for one-by-one rounds."""

    @pytest.mark.asyncio
    async def test_run_sequential(self, sinks, fake_ssh):
        cluster = make_cluster(sinks)

        rnd = await cluster.run("VAR=world; echo Serial stdout $VAR; echo Serial stderr $VAR >&2",
                                mode=ExecutionMode.SEQUENTIAL)

        assert rnd.mode is ExecutionMode.SEQUENTIAL
        assert rnd.error is None
        assert len(rnd.results) == len(DUMMY_HOSTS)
        for res in rnd.results:
            assert res.result.stdout == "Serial stdout world\n"
            assert res.result.stderr == "Serial stderr world\n"

    @pytest.mark.asyncio
    async def test_continues_past_errors(self, sinks, fake_ssh):
        cluster = make_cluster(sinks, hosts=[HostTarget("a", cwd="/i-am-nowhere"), "b"])

        rnd = await cluster.run_sequential("echo reached")

        assert len(rnd.results) == 2
        assert rnd.results[0].error is not None
        assert rnd.results[1].result.stdout == "reached\n"
        assert rnd.error is rnd.results[0].error

    @pytest.mark.asyncio
    async def test_runs_one_at_a_time(self, sinks, fake_ssh, tmp_path):
        """The second host starts only after the first finished."""
        marker = tmp_path / "marker"
        cluster = make_cluster(sinks)

        rnd = await cluster.run_sequential(
            f"test ! -e {marker} || exit 9; touch {marker}; sleep 0.2; rm {marker}"
        )

        assert rnd.error is None

    @pytest.mark.asyncio
    async def test_status_callback(self, sinks, fake_ssh):
        seen = []
        cluster = make_cluster(sinks, on_status=lambda host, status: seen.append((host, status)))

        await cluster.run_sequential("true")

        assert seen == [
            ("localhost", HostStatus.RUNNING),
            ("localhost", HostStatus.SUCCESS),
            ("127.0.0.1", HostStatus.RUNNING),
            ("127.0.0.1", HostStatus.SUCCESS),
        ]
